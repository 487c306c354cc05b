"""
sheet.py — Grade sheet state and input handlers.

A GradeSheet holds the raw entries for one class x subject set x term and
reacts to teacher input the way the grading screens do: every change
recomputes that cell and is pushed to `on_grade_change`. Saving is the
callback's business; the sheet never waits on it.
"""

import logging
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional, Sequence

from core.curricula import CurriculumProfile
from core.grading import (
    ABSENT,
    DerivedGrade,
    RawScoreEntry,
    clamp_score,
    derive_grade,
    is_locked,
    set_label_override,
)
from core.stats import CONDUCT_RATINGS, aggregate, subject_summary

logger = logging.getLogger(__name__)

GradeChangeCallback = Callable[[str, str, DerivedGrade], Any]

ABSENT_REMARK = "Student was absent"


class GradeSheet:
    def __init__(
        self,
        profile: CurriculumProfile,
        students: Sequence[str],
        subjects: Sequence[str],
        grades: Optional[Dict[str, Dict[str, RawScoreEntry]]] = None,
        on_grade_change: Optional[GradeChangeCallback] = None,
        is_read_only: bool = False,
        is_view_only: bool = False,
        is_principal: bool = False,
    ):
        self.profile = profile
        self.students = list(students)
        self.subjects = list(subjects)
        self.on_grade_change = on_grade_change
        self.view_mode = is_read_only or is_view_only
        self.is_principal = is_principal

        self.grades: Dict[str, Dict[str, RawScoreEntry]] = {}
        self.derived: Dict[str, Dict[str, DerivedGrade]] = {}
        for student_id, by_subject in (grades or {}).items():
            for subject_id, entry in by_subject.items():
                self._store(entry)

    # ── Internals ──

    def _entry(self, student_id: str, subject_id: str) -> RawScoreEntry:
        entry = self.grades.get(student_id, {}).get(subject_id)
        if entry is None:
            return RawScoreEntry(student_id=student_id, subject_id=subject_id)
        # Handlers edit a copy; the caller's records stay as they were passed in.
        return replace(entry, component_scores=dict(entry.component_scores))

    def _editable(self, entry: RawScoreEntry) -> bool:
        return not self.view_mode and not is_locked(entry.status)

    def _store(self, entry: RawScoreEntry, grade: Optional[DerivedGrade] = None) -> DerivedGrade:
        grade = grade or derive_grade(entry, self.profile)
        self.grades.setdefault(entry.student_id, {})[entry.subject_id] = entry
        self.derived.setdefault(entry.student_id, {})[entry.subject_id] = grade
        return grade

    def _commit(self, entry: RawScoreEntry, grade: Optional[DerivedGrade] = None) -> DerivedGrade:
        grade = self._store(entry, grade)
        if self.on_grade_change is not None:
            self.on_grade_change(entry.student_id, entry.subject_id, grade)
        return grade

    # ── Input Handlers ──

    def handle_score_change(self, student_id: str, subject_id: str, component: str, value: Any) -> Optional[DerivedGrade]:
        """A score field changed. Blank clears the component; everything else is clamped."""
        if component not in self.profile.components:
            raise ValueError(
                f"'{component}' is not a {self.profile.id.value.upper()} score component. "
                f"Expected one of: {list(self.profile.components)}"
            )
        entry = self._entry(student_id, subject_id)
        if not self._editable(entry):
            return None

        score = clamp_score(value)
        # Typing a score clears any earlier absence on the cell.
        scores = {c: None if v == ABSENT else v for c, v in entry.component_scores.items()}
        scores[component] = None if score == ABSENT else score
        entry.component_scores = scores
        entry.is_absent = False
        return self._commit(entry)

    def handle_absent_change(self, student_id: str, subject_id: str, is_absent: bool) -> Optional[DerivedGrade]:
        entry = self._entry(student_id, subject_id)
        if not self._editable(entry):
            return None

        entry.is_absent = bool(is_absent)
        entry.component_scores = {c: ABSENT if is_absent else None for c in self.profile.components}
        entry.remarks = ABSENT_REMARK if is_absent else ""
        return self._commit(entry)

    def handle_remarks_change(self, student_id: str, subject_id: str, remarks: str) -> Optional[DerivedGrade]:
        entry = self._entry(student_id, subject_id)
        if not self._editable(entry):
            return None
        entry.remarks = remarks
        return self._commit(entry, self._keep_override(entry))

    def handle_conduct_change(self, student_id: str, subject_id: str, conduct: str) -> Optional[DerivedGrade]:
        if conduct not in CONDUCT_RATINGS:
            raise ValueError(f"Conduct must be one of: {CONDUCT_RATINGS}")
        entry = self._entry(student_id, subject_id)
        if not self._editable(entry):
            return None
        entry.conduct = conduct
        return self._commit(entry, self._keep_override(entry))

    def handle_label_override(self, student_id: str, subject_id: str, label: str) -> Optional[DerivedGrade]:
        """
        Principal override of a computed label.

        Ignored unless the sheet is editable, the caller is a principal, the
        profile allows overrides and the cell has a computed total. Raises
        InvalidLabelError for labels
        outside the profile.
        """
        entry = self._entry(student_id, subject_id)
        if not self._editable(entry) or not self.is_principal or not self.profile.allows_override:
            logger.info(
                "Ignoring grade override for %s/%s (principal=%s, curriculum=%s)",
                student_id, subject_id, self.is_principal, self.profile.id.value,
            )
            return None

        current = self.derived.get(student_id, {}).get(subject_id) or derive_grade(entry, self.profile)
        if not current.is_scored:
            logger.info("Ignoring grade override for %s/%s: no computed grade to replace", student_id, subject_id)
            return None
        return self._commit(entry, set_label_override(current, label, self.profile))

    def _keep_override(self, entry: RawScoreEntry) -> DerivedGrade:
        """Recompute a cell whose scores did not change, keeping any manual label."""
        grade = derive_grade(entry, self.profile)
        previous = self.derived.get(entry.student_id, {}).get(entry.subject_id)
        if previous is not None and previous.overridden:
            grade = set_label_override(grade, previous.label, self.profile)
        return grade

    # ── Views ──

    def incomplete_rows(self) -> List[str]:
        """Students with at least one subject neither scored nor marked absent."""
        incomplete = []
        for student_id in self.students:
            for subject_id in self.subjects:
                grade = self.derived.get(student_id, {}).get(subject_id)
                if grade is None or not (grade.is_scored or grade.is_absent):
                    incomplete.append(student_id)
                    break
        return incomplete

    def derived_rows(self) -> List[List[Optional[DerivedGrade]]]:
        return [
            [self.derived.get(student_id, {}).get(subject_id) for subject_id in self.subjects]
            for student_id in self.students
        ]

    def statistics(self) -> Dict[str, Any]:
        stats = aggregate(self.derived_rows(), self.profile)
        # Rows without any captured cell carry no id of their own.
        for student_id, total in zip(self.students, stats["student_totals"]):
            total["student_id"] = student_id
        return stats

    def subject_summary(self) -> List[Dict[str, Any]]:
        return subject_summary(self.derived_rows(), self.profile)
