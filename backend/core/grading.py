"""
grading.py — Per-cell grade computation.

Turns the raw component scores captured for one (student, subject) cell into
a derived grade: weighted total rounded half-up to an integer, plus the label
from the active curriculum profile.

Input policy:
- out-of-range scores are clamped to 0-100
- unparseable or blank scores count as missing (total stays None)
- an "absent" component marks the whole cell absent; absent cells are
  excluded from aggregates rather than scored as zero
"""

import math
from dataclasses import asdict, dataclass, field, replace
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union

from core.curricula import CurriculumProfile, InvalidLabelError

ABSENT = "absent"

ScoreValue = Union[float, str, None]


class EntryStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass
class RawScoreEntry:
    student_id: str
    subject_id: str
    component_scores: Dict[str, ScoreValue] = field(default_factory=dict)
    remarks: Optional[str] = None
    conduct: Optional[str] = None
    status: EntryStatus = EntryStatus.DRAFT
    is_absent: bool = False

    def __post_init__(self):
        self.status = _parse_status(self.status)


@dataclass
class DerivedGrade:
    student_id: str
    subject_id: str
    total_score: Optional[int]
    label: Optional[str]
    is_absent: bool = False
    component_scores: Dict[str, ScoreValue] = field(default_factory=dict)
    remarks: Optional[str] = None
    conduct: Optional[str] = None
    status: EntryStatus = EntryStatus.DRAFT
    overridden: bool = False

    def __post_init__(self):
        self.status = _parse_status(self.status)

    @property
    def is_scored(self) -> bool:
        return not self.is_absent and self.total_score is not None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


# ── Score Handling ──────────────────────────────────────────────────

def clamp_score(score: Any) -> ScoreValue:
    """Clamp a raw score to 0-100. Returns None when it cannot be read, ABSENT unchanged."""
    if score is None:
        return None
    if isinstance(score, str):
        text = score.strip()
        if text.lower() == ABSENT:
            return ABSENT
        if not text:
            return None
        score = text
    if isinstance(score, bool):
        return None
    try:
        value = float(score)
    except (TypeError, ValueError):
        return None
    if math.isnan(value):
        return None
    return max(0.0, min(100.0, value))


def _round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_total(component_scores: Mapping[str, Any], weights: Mapping[str, float]) -> Union[int, str, None]:
    """
    Weighted total of the components named in `weights`.

    Returns ABSENT if any component is absent, None if any is missing,
    otherwise the integer total. Decimal arithmetic keeps 86.5 from becoming
    86.49999.
    """
    values = {}
    for component in weights:
        values[component] = clamp_score(component_scores.get(component))

    if any(v == ABSENT for v in values.values()):
        return ABSENT
    if any(v is None for v in values.values()):
        return None

    total = Decimal("0")
    for component, weight in weights.items():
        total += Decimal(str(values[component])) * Decimal(str(weight))
    return _round_half_up(total)


def compute_label(total_score: Any, profile: CurriculumProfile) -> Optional[str]:
    """First band whose threshold is at or below the total, scanning high to low."""
    if total_score is None or total_score == ABSENT:
        return None
    for band in profile.boundaries:
        if total_score >= band.min_score:
            return band.label
    return profile.boundaries[-1].label


def derive_grade(entry: RawScoreEntry, profile: CurriculumProfile) -> DerivedGrade:
    scores = {component: clamp_score(entry.component_scores.get(component)) for component in profile.components}
    total = ABSENT if entry.is_absent else compute_total(scores, profile.weights)
    is_absent = total == ABSENT
    if is_absent:
        total = None

    return DerivedGrade(
        student_id=entry.student_id,
        subject_id=entry.subject_id,
        total_score=total,
        label=compute_label(total, profile),
        is_absent=is_absent,
        component_scores=scores,
        remarks=entry.remarks,
        conduct=entry.conduct,
        status=entry.status,
    )


def set_label_override(grade: DerivedGrade, new_label: str, profile: CurriculumProfile) -> DerivedGrade:
    """Replace a computed label by hand. The total score is left as it was."""
    if not grade.is_scored:
        raise ValueError("Only a scored grade can have its label overridden.")
    if new_label not in profile.labels:
        raise InvalidLabelError(new_label, profile.id.value)
    return replace(grade, label=new_label, overridden=True)


def is_locked(status: Any, is_read_only: bool = False, is_view_only: bool = False) -> bool:
    """A cell is editable only while in draft and when the caller allows editing."""
    if is_read_only or is_view_only:
        return True
    if status is None:
        return False
    return EntryStatus(status) is not EntryStatus.DRAFT


# ── Boundary Validation ─────────────────────────────────────────────

def _parse_status(value: Any) -> EntryStatus:
    if isinstance(value, EntryStatus):
        return value
    if value is None or value == "":
        return EntryStatus.DRAFT
    try:
        return EntryStatus(str(value).strip().lower())
    except ValueError:
        raise ValueError(f"Unknown grade status: {value!r}")


def _parse_flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def entry_from_dict(record: Mapping[str, Any], profile: CurriculumProfile) -> RawScoreEntry:
    """
    Build a RawScoreEntry from an external record.

    Component scores may come nested under "component_scores" or flat as
    "<component>_score" / "<component>" keys, the shape the grade sheets
    store them in.
    """
    student_id = record.get("student_id")
    subject_id = record.get("subject_id")
    if student_id in (None, "") or subject_id in (None, ""):
        raise ValueError("Grade entries need both student_id and subject_id.")

    nested = record.get("component_scores") or {}
    if not isinstance(nested, Mapping):
        raise ValueError("component_scores must be an object.")

    scores: Dict[str, ScoreValue] = {}
    for component in profile.components:
        if component in nested:
            raw = nested[component]
        elif f"{component}_score" in record:
            raw = record[f"{component}_score"]
        else:
            raw = record.get(component)
        scores[component] = clamp_score(raw)

    remarks = record.get("remarks")
    if remarks is None:
        remarks = record.get("teacher_remarks")

    return RawScoreEntry(
        student_id=str(student_id),
        subject_id=str(subject_id),
        component_scores=scores,
        remarks=remarks,
        conduct=record.get("conduct"),
        status=_parse_status(record.get("status")),
        is_absent=_parse_flag(record.get("is_absent")),
    )


def grade_from_dict(record: Mapping[str, Any], profile: CurriculumProfile) -> DerivedGrade:
    """Rebuild a DerivedGrade sent back by a client, recomputing what can be recomputed."""
    grade = derive_grade(entry_from_dict(record, profile), profile)
    label = record.get("label")
    if label and label != grade.label and record.get("overridden"):
        grade = set_label_override(grade, label, profile)
    return grade
