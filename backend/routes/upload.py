"""
Upload routes — bulk grade entry from a CSV, Excel or ODS score sheet.
"""

import json
import logging
import os
import uuid
from pathlib import Path
from typing import Optional

import pandas as pd
from fastapi import APIRouter, UploadFile, File, HTTPException, Form

from core.curricula import resolve_profile
from core.grading import derive_grade
from core.parser import (
    parse_upload,
    detect_layout,
    suggest_column_mapping,
    convert_wide_to_long,
    validate_data,
    rows_to_entries,
    SAMPLE_DATA_DIR,
)
from core.sheet import GradeSheet

router = APIRouter()
logger = logging.getLogger(__name__)

DEFAULT_CURRICULUM = os.getenv("DEFAULT_CURRICULUM", "standard")
ALLOWED_EXTENSIONS = (".csv", ".xlsx", ".xls", ".ods")

# Keep upload path stable regardless of process working directory.
UPLOAD_DIR = Path(__file__).resolve().parent.parent / "uploads"
UPLOAD_DIR.mkdir(exist_ok=True)


def _apply_override(mapping: dict, mapping_override: Optional[dict], df: pd.DataFrame) -> dict:
    """Client mapping wins over the suggestion; None un-maps a field."""
    for field, column in (mapping_override or {}).items():
        if column is None or column in df.columns:
            mapping[field] = column
    return mapping


def _import_sheets(sheets_data, curriculum: str, mapping_override: Optional[dict] = None) -> dict:
    """Map, validate and grade every sheet of an uploaded score sheet."""
    profile = resolve_profile(curriculum)

    combined_df = pd.concat(list(sheets_data.values()), ignore_index=True)
    layout = detect_layout(combined_df, profile)
    mapping = _apply_override(suggest_column_mapping(combined_df, profile), mapping_override, combined_df)

    if layout == "wide":
        combined_df = convert_wide_to_long(combined_df, mapping, profile)
        mapping = _apply_override(suggest_column_mapping(combined_df, profile), mapping_override, combined_df)

    issues = validate_data(combined_df, profile, mapping)
    if any(issue["severity"] == "critical" for issue in issues):
        return {
            "curriculum": profile.id.value,
            "layout": layout,
            "mapping": mapping,
            "issues": issues,
            "entry_count": 0,
            "grades": [],
            "statistics": None,
        }

    entries = rows_to_entries(combined_df, profile, mapping)
    students = list(dict.fromkeys(e.student_id for e in entries))
    subjects = list(dict.fromkeys(e.subject_id for e in entries))
    grades = {}
    for entry in entries:
        grades.setdefault(entry.student_id, {})[entry.subject_id] = entry

    grade_sheet = GradeSheet(profile, students, subjects, grades)
    return {
        "curriculum": profile.id.value,
        "layout": layout,
        "mapping": mapping,
        "issues": issues,
        "entry_count": len(entries),
        "students": students,
        "subjects": subjects,
        "grades": [derive_grade(e, profile).to_dict() for e in entries],
        "statistics": grade_sheet.statistics(),
        "incomplete_rows": grade_sheet.incomplete_rows(),
    }


@router.post("/scores")
async def upload_scores(
    file: UploadFile = File(...),
    curriculum: str = Form(None),
    mapping: Optional[str] = Form(None),  # JSON string of column mapping
):
    """
    Upload a score sheet and grade it under the chosen curriculum.
    The file is deleted as soon as it has been read.
    """
    ext = Path(file.filename).suffix.lower()
    if ext not in ALLOWED_EXTENSIONS:
        raise HTTPException(400, f"Unsupported file type: {ext}. Use CSV, Excel, or ODS.")

    mapping_override = None
    if mapping:
        try:
            mapping_override = json.loads(mapping)
        except json.JSONDecodeError:
            raise HTTPException(400, "Invalid mapping JSON.")
        if not isinstance(mapping_override, dict):
            raise HTTPException(400, "Mapping must be a JSON object.")

    save_path = UPLOAD_DIR / f"{uuid.uuid4()}{ext}"
    try:
        with open(save_path, "wb") as f:
            while True:
                chunk = await file.read(1024 * 1024)
                if not chunk:
                    break
                f.write(chunk)
        sheets_data = parse_upload(str(save_path))
    except Exception as e:
        logger.warning("Could not parse score sheet %r: %s", file.filename, e)
        raise HTTPException(400, f"Failed to process upload '{file.filename}': {str(e)}")
    finally:
        save_path.unlink(missing_ok=True)

    result = _import_sheets(sheets_data, curriculum or DEFAULT_CURRICULUM, mapping_override)
    result["filename"] = file.filename
    return result


@router.get("/sample/{curriculum}")
async def load_sample_scores(curriculum: str):
    """Grade the bundled sample score sheet for a curriculum."""
    sample_files = {
        "standard": SAMPLE_DATA_DIR / "sample_standard.csv",
        "cbc": SAMPLE_DATA_DIR / "sample_cbc.csv",
        "igcse": SAMPLE_DATA_DIR / "sample_igcse.csv",
    }
    if curriculum not in sample_files:
        raise HTTPException(404, f"Sample sheet '{curriculum}' not found. Available: {list(sample_files.keys())}")

    file_path = sample_files[curriculum]
    if not file_path.exists():
        raise HTTPException(404, f"Sample file not found on disk: {file_path}")

    result = _import_sheets(parse_upload(str(file_path)), curriculum)
    result["filename"] = file_path.name
    return result
