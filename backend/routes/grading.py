"""
Grading routes — curriculum profiles, per-cell grades, overrides and class sheets.
"""

import logging
import os

from fastapi import APIRouter, HTTPException

from core.curricula import (
    PROFILES,
    InvalidLabelError,
    profile_summary,
    resolve_profile,
    with_boundaries,
)
from core.grading import derive_grade, entry_from_dict, grade_from_dict, set_label_override
from core.sheet import GradeSheet

router = APIRouter()
logger = logging.getLogger(__name__)

DEFAULT_CURRICULUM = os.getenv("DEFAULT_CURRICULUM", "standard")


def _profile_from_payload(payload: dict):
    """Resolve the curriculum and apply any per-session boundary changes."""
    profile = resolve_profile(payload.get("curriculum") or DEFAULT_CURRICULUM)
    boundaries = payload.get("boundaries")
    if boundaries:
        if not isinstance(boundaries, dict):
            raise HTTPException(400, "boundaries must map grade labels to minimum scores.")
        try:
            profile = with_boundaries(profile, boundaries)
        except ValueError as e:
            raise HTTPException(400, str(e))
    return profile


@router.get("/profiles")
async def list_profiles():
    """All built-in curriculum profiles with their grade scales."""
    return {"profiles": [profile_summary(p) for p in PROFILES.values()]}


@router.get("/profiles/{curriculum_type}")
async def get_profile(curriculum_type: str):
    """Profile for a curriculum token. Unknown tokens resolve to Standard."""
    return profile_summary(resolve_profile(curriculum_type))


@router.post("/compute")
async def compute(payload: dict):
    """
    Derive the total and label for one grade cell.
    Expects: { "curriculum": "cbc", "entry": { "student_id", "subject_id", "component_scores": {...} } }
    """
    entry = payload.get("entry")
    if not isinstance(entry, dict):
        raise HTTPException(400, "No grade entry provided.")
    profile = _profile_from_payload(payload)
    try:
        raw = entry_from_dict(entry, profile)
    except ValueError as e:
        raise HTTPException(400, str(e))
    return derive_grade(raw, profile).to_dict()


@router.post("/override")
async def override(payload: dict):
    """
    Principal override of a computed label.
    Expects: { "curriculum", "grade": {...}, "label": "B", "is_principal": true }
    """
    grade = payload.get("grade")
    if not isinstance(grade, dict):
        raise HTTPException(400, "No grade provided.")
    profile = _profile_from_payload(payload)

    if not payload.get("is_principal"):
        logger.info("Rejected grade override from a non-principal caller")
        raise HTTPException(403, "Only principals can override grades.")
    if not profile.allows_override:
        raise HTTPException(403, f"{profile.name} grades cannot be overridden.")

    try:
        current = grade_from_dict(grade, profile)
        return set_label_override(current, payload.get("label"), profile).to_dict()
    except InvalidLabelError as e:
        raise HTTPException(400, {"message": str(e), "valid_labels": list(profile.labels)})
    except ValueError as e:
        raise HTTPException(400, str(e))


@router.post("/sheet")
async def sheet(payload: dict):
    """
    Compute a full class grade sheet: derived grades, statistics and positions.
    Expects: { "curriculum", "students": [...ids], "subjects": [...ids], "entries": [...] }
    """
    students = payload.get("students") or []
    subjects = payload.get("subjects") or []
    if not students or not subjects:
        raise HTTPException(400, "Both students and subjects are required.")
    profile = _profile_from_payload(payload)

    grades = {}
    try:
        for record in payload.get("entries") or []:
            entry = entry_from_dict(record, profile)
            grades.setdefault(entry.student_id, {})[entry.subject_id] = entry
    except (ValueError, AttributeError) as e:
        raise HTTPException(400, f"Invalid grade entry: {e}")

    grade_sheet = GradeSheet(profile, [str(s) for s in students], [str(s) for s in subjects], grades)
    return {
        "curriculum": profile.id.value,
        "students": grade_sheet.students,
        "subjects": grade_sheet.subjects,
        "grades": [
            [g.to_dict() if g is not None else None for g in row]
            for row in grade_sheet.derived_rows()
        ],
        "statistics": grade_sheet.statistics(),
        "subject_summary": grade_sheet.subject_summary(),
        "incomplete_rows": grade_sheet.incomplete_rows(),
    }
