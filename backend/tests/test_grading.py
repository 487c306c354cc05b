"""
Tests for core/grading.py — totals, labels, clamping, absence and overrides.
"""

import os
import sys
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.curricula import CBC, IGCSE, STANDARD, InvalidLabelError
from core.grading import (
    ABSENT,
    DerivedGrade,
    EntryStatus,
    RawScoreEntry,
    clamp_score,
    compute_label,
    compute_total,
    derive_grade,
    entry_from_dict,
    grade_from_dict,
    is_locked,
    set_label_override,
)


class TestClampScore:
    """Raw input handling."""

    @pytest.mark.parametrize("raw,expected", [
        (150, 100.0),
        (-20, 0.0),
        ("85", 85.0),
        ("  72.5 ", 72.5),
        (0, 0.0),
        (100, 100.0),
    ])
    def test_clamps_to_range(self, raw, expected):
        assert clamp_score(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "   ", "abc", float("nan"), True])
    def test_unreadable_is_missing(self, raw):
        assert clamp_score(raw) is None

    def test_absent_passes_through(self):
        assert clamp_score("absent") == ABSENT
        assert clamp_score("Absent") == ABSENT


class TestComputeTotal:
    """Weighted totals."""

    def test_cbc_clamping_example(self):
        total = compute_total({"formative": 150, "summative": -20}, CBC.weights)
        assert total == 40
        assert compute_label(total, CBC) == "AE"

    def test_igcse_worked_example(self):
        total = compute_total({"coursework": 90, "exam": 85}, IGCSE.weights)
        assert total == 87
        assert compute_label(total, IGCSE) == "A"

    def test_half_rounds_up(self):
        # 32.4 + 42 = 74.4, 32 + 43.5 = 75.5
        assert compute_total({"formative": 81, "summative": 70}, CBC.weights) == 74
        assert compute_total({"formative": 80, "summative": 72.5}, CBC.weights) == 76
        assert compute_total({"score": 64.5}, STANDARD.weights) == 65

    def test_missing_component_is_incomplete(self):
        assert compute_total({"formative": 80}, CBC.weights) is None
        assert compute_total({"formative": 80, "summative": None}, CBC.weights) is None
        assert compute_total({}, STANDARD.weights) is None

    def test_absent_component_excludes_cell(self):
        total = compute_total({"formative": 80, "summative": "absent"}, CBC.weights)
        assert total == ABSENT
        assert total is not None
        assert total != 0

    def test_ignores_components_outside_profile(self):
        assert compute_total({"score": 70, "bonus": 30}, STANDARD.weights) == 70

    def test_is_idempotent(self):
        scores = {"coursework": 63.3, "exam": 71.7}
        first = compute_total(scores, IGCSE.weights)
        assert compute_total(scores, IGCSE.weights) == first
        assert compute_label(first, IGCSE) == compute_label(first, IGCSE)


class TestComputeLabel:
    """Band lookup."""

    def test_standard_boundary_exactness(self):
        assert compute_label(75, STANDARD) == "A-"
        assert compute_label(74.999, STANDARD) == "B+"

    @pytest.mark.parametrize("score,label", [
        (100, "A+"), (90, "A+"), (89, "A"), (80, "A"), (79, "A-"), (70, "B+"),
        (65, "B"), (60, "B-"), (55, "C+"), (50, "C"), (45, "C-"), (40, "D+"),
        (35, "D"), (30, "D-"), (29, "E"), (0, "E"),
    ])
    def test_standard_bands(self, score, label):
        assert compute_label(score, STANDARD) == label

    @pytest.mark.parametrize("score,label", [(80, "EE"), (79, "ME"), (50, "ME"), (49, "AE"), (40, "AE"), (39, "BE")])
    def test_cbc_bands(self, score, label):
        assert compute_label(score, CBC) == label

    @pytest.mark.parametrize("score,label", [(90, "A*"), (89, "A"), (40, "E"), (39, "F"), (20, "G"), (19, "U")])
    def test_igcse_bands(self, score, label):
        assert compute_label(score, IGCSE) == label

    def test_no_total_no_label(self):
        assert compute_label(None, STANDARD) is None
        assert compute_label(ABSENT, STANDARD) is None


class TestDeriveGrade:
    """Whole-cell derivation."""

    def test_scored_cell(self):
        entry = RawScoreEntry("S1", "MATH", {"formative": 70, "summative": 90}, remarks="Good work")
        grade = derive_grade(entry, CBC)
        assert grade.total_score == 82
        assert grade.label == "EE"
        assert grade.is_scored
        assert not grade.is_absent
        assert grade.remarks == "Good work"

    def test_scores_are_stored_clamped(self):
        grade = derive_grade(RawScoreEntry("S1", "MATH", {"score": "140"}), STANDARD)
        assert grade.component_scores == {"score": 100.0}
        assert grade.total_score == 100

    def test_absent_flag(self):
        grade = derive_grade(RawScoreEntry("S1", "MATH", {"score": 50}, is_absent=True), STANDARD)
        assert grade.is_absent
        assert grade.total_score is None
        assert grade.label is None
        assert not grade.is_scored

    def test_incomplete_cell(self):
        grade = derive_grade(RawScoreEntry("S1", "PHY", {"coursework": 50}), IGCSE)
        assert grade.total_score is None
        assert grade.label is None
        assert not grade.is_absent

    def test_string_status_is_parsed(self):
        entry = RawScoreEntry("S1", "MATH", {"score": 50}, status="Approved")
        assert entry.status is EntryStatus.APPROVED
        grade = derive_grade(entry, STANDARD)
        assert grade.to_dict()["status"] == "approved"
        assert DerivedGrade("S1", "MATH", 50, "C", status="submitted").status is EntryStatus.SUBMITTED

    def test_unknown_status_rejected(self):
        with pytest.raises(ValueError):
            RawScoreEntry("S1", "MATH", status="archived")

    def test_to_dict(self):
        grade = derive_grade(RawScoreEntry("S1", "MATH", {"score": 55}), STANDARD)
        data = grade.to_dict()
        assert data["total_score"] == 55
        assert data["label"] == "C+"
        assert data["status"] == "draft"
        assert data["overridden"] is False


class TestLabelOverride:
    """Manual label overrides."""

    @pytest.fixture
    def igcse_grade(self):
        return derive_grade(RawScoreEntry("S1", "MATH", {"coursework": 90, "exam": 85}), IGCSE)

    def test_invalid_label_raises(self, igcse_grade):
        with pytest.raises(InvalidLabelError) as exc:
            set_label_override(igcse_grade, "Z", IGCSE)
        assert exc.value.label == "Z"
        assert exc.value.curriculum == "igcse"

    def test_label_from_other_profile_raises(self, igcse_grade):
        with pytest.raises(InvalidLabelError):
            set_label_override(igcse_grade, "EE", IGCSE)

    def test_valid_label_replaces_only_label(self, igcse_grade):
        overridden = set_label_override(igcse_grade, "B", IGCSE)
        assert overridden.label == "B"
        assert overridden.total_score == 87
        assert overridden.overridden
        assert igcse_grade.label == "A"

    def test_invalid_label_error_is_value_error(self):
        assert issubclass(InvalidLabelError, ValueError)

    def test_absent_grade_cannot_be_overridden(self):
        grade = derive_grade(RawScoreEntry("S1", "MATH", {}, is_absent=True), IGCSE)
        with pytest.raises(ValueError):
            set_label_override(grade, "A*", IGCSE)

    def test_incomplete_grade_cannot_be_overridden(self):
        grade = derive_grade(RawScoreEntry("S1", "MATH", {"coursework": 90}), IGCSE)
        with pytest.raises(ValueError):
            set_label_override(grade, "A*", IGCSE)


class TestIsLocked:
    """Advisory edit lock."""

    def test_draft_is_editable(self):
        assert not is_locked("draft")
        assert not is_locked(EntryStatus.DRAFT)
        assert not is_locked(None)

    @pytest.mark.parametrize("status", ["submitted", "approved", "rejected"])
    def test_non_draft_is_locked(self, status):
        assert is_locked(status)

    def test_caller_flags_lock(self):
        assert is_locked("draft", is_read_only=True)
        assert is_locked(None, is_view_only=True)


class TestEntryFromDict:
    """Validation of external records."""

    def test_flat_score_keys(self):
        entry = entry_from_dict(
            {"student_id": "S1", "subject_id": "ENG", "formative_score": 80, "summative_score": "70",
             "teacher_remarks": "Steady"},
            CBC,
        )
        assert entry.component_scores == {"formative": 80.0, "summative": 70.0}
        assert entry.remarks == "Steady"
        assert derive_grade(entry, CBC).total_score == 74

    def test_nested_component_scores(self):
        entry = entry_from_dict(
            {"student_id": 7, "subject_id": 3, "component_scores": {"coursework": 90, "exam": "absent"}},
            IGCSE,
        )
        assert entry.student_id == "7"
        assert entry.component_scores["exam"] == ABSENT
        assert derive_grade(entry, IGCSE).is_absent

    def test_status_parsed(self):
        entry = entry_from_dict({"student_id": "S1", "subject_id": "M", "score": 60, "status": "Approved"}, STANDARD)
        assert entry.status is EntryStatus.APPROVED

    def test_missing_ids_rejected(self):
        with pytest.raises(ValueError):
            entry_from_dict({"subject_id": "M", "score": 60}, STANDARD)

    def test_unknown_status_rejected(self):
        with pytest.raises(ValueError):
            entry_from_dict({"student_id": "S1", "subject_id": "M", "status": "archived"}, STANDARD)

    def test_grade_from_dict_keeps_override(self):
        grade = grade_from_dict(
            {"student_id": "S1", "subject_id": "M", "score": 72, "label": "A", "overridden": True},
            STANDARD,
        )
        assert isinstance(grade, DerivedGrade)
        assert grade.total_score == 72
        assert grade.label == "A"
        assert grade.overridden

    @pytest.mark.parametrize("flag,expected", [
        ("false", False), ("0", False), ("", False), ("no", False),
        ("true", True), ("Yes", True), ("1", True), (True, True), (0, False),
    ])
    def test_is_absent_flag_parsing(self, flag, expected):
        entry = entry_from_dict({"student_id": "S1", "subject_id": "M", "score": 60, "is_absent": flag}, STANDARD)
        assert entry.is_absent is expected

    def test_grade_from_dict_recomputes_stale_label(self):
        grade = grade_from_dict({"student_id": "S1", "subject_id": "M", "score": 72, "label": "A"}, STANDARD)
        assert grade.label == "B+"
        assert not grade.overridden
