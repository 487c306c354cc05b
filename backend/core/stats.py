"""
stats.py — Class-level aggregation of derived grades.

Computes, for one class x subject set x term:
- Label distribution (every label of the profile, zero-filled)
- Completion, average and pass rates
- Per-student totals, mean grade and conduct summary
- Class positions (standard competition ranking, scipy.stats.rankdata)
- Per-subject summaries for charts
"""

from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
from scipy import stats as sp_stats

from core.curricula import CurriculumProfile
from core.grading import DerivedGrade, compute_label

GradeRows = Sequence[Sequence[Optional[DerivedGrade]]]

CONDUCT_RATINGS = ["Excellent", "Very Good", "Good", "Fair", "Poor"]
CONDUCT_POINTS = {"Excellent": 5, "Very Good": 4, "Good": 3, "Fair": 2, "Poor": 1}


# ── Helpers ─────────────────────────────────────────────────────────

def _safe_float(val) -> Optional[float]:
    """Convert to float or return None."""
    try:
        v = float(val)
        return None if np.isnan(v) or np.isinf(v) else round(v, 2)
    except (TypeError, ValueError):
        return None


def _rate(part: int, whole: int) -> float:
    if whole <= 0:
        return 0.0
    return round(part / whole * 100, 2)


def _sanitize(obj):
    """Recursively coerce numpy/pandas scalars to JSON-safe Python types."""
    if isinstance(obj, dict):
        return {k: _sanitize(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_sanitize(v) for v in obj]
    if isinstance(obj, (np.bool_,)):
        return bool(obj)
    if isinstance(obj, (np.integer,)):
        return int(obj)
    if isinstance(obj, (np.floating, float)):
        v = float(obj)
        return None if (np.isnan(v) or np.isinf(v)) else v
    return obj


def _row_student_id(row: Sequence[Optional[DerivedGrade]]) -> Optional[str]:
    for grade in row:
        if grade is not None:
            return grade.student_id
    return None


# ── Ranking ─────────────────────────────────────────────────────────

def compute_positions(aggregate_scores: Sequence[float]) -> List[int]:
    """
    Standard competition ranking, highest score first.

    Ties share a position and the next score skips ahead by the tie size
    ([200, 200, 150] -> [1, 1, 3]). A score of 0 means nothing was entered
    and gets position 0.
    """
    if len(aggregate_scores) == 0:
        return []
    scores = np.asarray(aggregate_scores, dtype=float)
    ranks = sp_stats.rankdata(-scores, method="min")
    return [int(rank) if score > 0 else 0 for rank, score in zip(ranks, scores)]


def summarize_conduct(ratings: Sequence[Optional[str]]) -> Optional[str]:
    """Average conduct rating across subjects, None when none was recorded."""
    points = [CONDUCT_POINTS[r] for r in ratings if r in CONDUCT_POINTS]
    if not points:
        return None
    mean = sum(points) / len(points)
    if mean >= 4.5:
        return "Excellent"
    if mean >= 3.5:
        return "Very Good"
    if mean >= 2.5:
        return "Good"
    if mean >= 1.5:
        return "Fair"
    return "Poor"


# ── Student Totals ──────────────────────────────────────────────────

def compute_student_totals(rows: GradeRows, profile: CurriculumProfile) -> List[Dict[str, Any]]:
    """One summary per roster row; absent and unscored subjects are left out."""
    totals = []
    for row in rows:
        scored = [g for g in row if g is not None and g.is_scored]
        total_score = sum(g.total_score for g in scored)
        subject_count = len(scored)
        average = total_score / subject_count if subject_count else 0.0

        totals.append({
            "student_id": _row_student_id(row),
            "total_score": total_score,
            "total_possible": subject_count * 100,
            "subject_count": subject_count,
            "average_score": round(average, 2),
            "percentage": _rate(total_score, subject_count * 100),
            "mean_label": compute_label(average, profile) if average > 0 else None,
            "overall_conduct": summarize_conduct(
                [g.conduct for g in row if g is not None and not g.is_absent]
            ),
            "position": None,
        })

    if profile.ranks_students:
        positions = compute_positions([t["total_score"] for t in totals])
        for total, position in zip(totals, positions):
            total["position"] = position
    return totals


# ── Class Statistics ────────────────────────────────────────────────

def aggregate(rows: GradeRows, profile: CurriculumProfile) -> Dict[str, Any]:
    """
    Reduce an N students x M subjects grid of derived grades to class statistics.

    Cells may be None when nothing was captured yet. Absent cells count as
    complete but stay out of the averages and the pass/fail denominator.
    Positions are only produced for profiles that rank students.
    """
    label_counts = {label: 0 for label in profile.labels}
    total_cells = 0
    absent_count = 0
    scored_totals: List[int] = []
    labelled = 0
    passed = 0

    for row in rows:
        for grade in row:
            total_cells += 1
            if grade is None:
                continue
            if grade.is_absent:
                absent_count += 1
                continue
            if grade.total_score is not None:
                scored_totals.append(grade.total_score)
            if grade.label in label_counts:
                label_counts[grade.label] += 1
                labelled += 1
                if profile.is_passing(grade.label):
                    passed += 1

    graded_count = len(scored_totals)
    student_totals = compute_student_totals(rows, profile)

    return _sanitize({
        "curriculum": profile.id.value,
        "label_counts": label_counts,
        "total_cells": total_cells,
        "graded_count": graded_count,
        "absent_count": absent_count,
        "missing_count": total_cells - graded_count - absent_count,
        "completion_rate": _rate(graded_count + absent_count, total_cells),
        "average_score": _safe_float(np.mean(scored_totals)) if scored_totals else 0.0,
        "pass_rate": _rate(passed, labelled),
        "positions": [t["position"] for t in student_totals] if profile.ranks_students else [],
        "student_totals": student_totals,
    })


def subject_summary(rows: GradeRows, profile: CurriculumProfile) -> List[Dict[str, Any]]:
    """Per-subject mean, median, spread, pass rate and label distribution."""
    records = [
        {"subject_id": g.subject_id, "total_score": g.total_score, "label": g.label}
        for row in rows
        for g in row
        if g is not None and g.is_scored
    ]
    if not records:
        return []

    df = pd.DataFrame(records)
    summaries = []
    for subject_id, group in df.groupby("subject_id", sort=False):
        scores = group["total_score"].astype(float)
        counts = group["label"].value_counts()
        passed = sum(int(counts.get(label, 0)) for label in profile.labels if profile.is_passing(label))
        summaries.append({
            "subject_id": subject_id,
            "count": int(len(scores)),
            "mean": _safe_float(scores.mean()),
            "median": _safe_float(scores.median()),
            "std": _safe_float(scores.std()) if len(scores) > 1 else 0.0,
            "min": _safe_float(scores.min()),
            "max": _safe_float(scores.max()),
            "pass_rate": _rate(passed, int(counts.sum())),
            "label_counts": {label: int(counts.get(label, 0)) for label in profile.labels},
        })
    return _sanitize(summaries)
