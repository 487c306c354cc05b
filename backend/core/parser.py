"""
parser.py — Score sheet ingestion (CSV, Excel, ODS) for bulk grade entry.

Supports:
- CSV files
- Excel (.xlsx, .xls) — single and multi-sheet
- ODS (OpenDocument Spreadsheet)
- Long layout (one row per student + subject) and wide layout (one row per
  student, subjects as columns) for single-score curricula
- Fuzzy column name mapping, including each curriculum's score components
"""

from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd

from core.curricula import CurriculumProfile
from core.grading import ABSENT, RawScoreEntry, clamp_score

SAMPLE_DATA_DIR = Path(__file__).parent.parent / "sample_data"

ABSENT_MARKERS = {"abs", "absent", "x"}

# Common column name variations for auto-mapping
COLUMN_ALIASES = {
    "student_id": [
        "student_id", "studentid", "student id", "id", "admission_no",
        "admission no", "admission_number", "admission number", "adm_no",
        "adm no", "reg_no", "index_no", "index no", "roll_number", "roll no",
    ],
    "name": [
        "name", "student_name", "student name", "full_name", "full name", "learner",
    ],
    "subject": [
        "subject", "subject_id", "subject_name", "subject name", "course",
        "learning area", "learning_area",
    ],
    "remarks": [
        "remarks", "teacher_remarks", "teacher remarks", "comment", "comments",
    ],
    "conduct": [
        "conduct", "behaviour", "behavior",
    ],
}

COMPONENT_ALIASES = {
    "formative": [
        "formative", "formative_score", "formative score", "cat", "cats",
        "continuous assessment", "classwork",
    ],
    "summative": [
        "summative", "summative_score", "summative score", "end term",
        "end_term", "endterm",
    ],
    "coursework": [
        "coursework", "coursework_score", "coursework score", "course work",
        "practical",
    ],
    "exam": [
        "exam", "exam_score", "exam score", "examination", "paper",
    ],
    "score": [
        "score", "marks", "mark", "total", "total_score", "total score",
        "raw_score", "raw score", "percentage",
    ],
}


def parse_upload(file_path: str) -> Dict[str, pd.DataFrame]:
    """
    Parse an uploaded file and return a dict of {sheet_name: DataFrame}.
    For CSV files, returns {"Sheet1": df}.
    """
    path = Path(file_path)
    ext = path.suffix.lower()

    if ext == ".csv":
        df = pd.read_csv(file_path, dtype=str)
        return {"Sheet1": df}

    elif ext in (".xlsx", ".xls", ".ods"):
        engine = {".xlsx": "openpyxl", ".xls": "xlrd", ".ods": "odf"}[ext]
        xls = pd.ExcelFile(file_path, engine=engine)
        sheets = {}
        for sheet_name in xls.sheet_names:
            df = pd.read_excel(xls, sheet_name=sheet_name, dtype=str)
            # Skip empty sheets
            if not df.empty and len(df.columns) > 1:
                sheets[sheet_name] = df
        if not sheets:
            raise ValueError("No valid sheets found in the spreadsheet.")
        return sheets

    else:
        raise ValueError(f"Unsupported file type: {ext}")


def _aliases_for(profile: CurriculumProfile) -> Dict[str, List[str]]:
    aliases = dict(COLUMN_ALIASES)
    for component in profile.components:
        aliases[component] = COMPONENT_ALIASES.get(component, [component, f"{component}_score"])
    return aliases


def suggest_column_mapping(df: pd.DataFrame, profile: CurriculumProfile) -> Dict[str, Optional[str]]:
    """
    Suggest a mapping from expected field names to actual column names.
    Returns: { expected_field: actual_column_name_or_None }
    """
    cols_lower = {str(c).lower().strip(): c for c in df.columns}
    mapping: Dict[str, Optional[str]] = {}
    taken = set()

    for field, aliases in _aliases_for(profile).items():
        matched = None
        for alias in aliases:
            column = cols_lower.get(alias)
            if column is not None and column not in taken:
                matched = column
                break
        if matched is not None:
            taken.add(matched)
        mapping[field] = matched

    return mapping


def detect_layout(df: pd.DataFrame, profile: CurriculumProfile) -> str:
    """
    'long' when the sheet has a subject column, 'wide' when subjects are the
    columns themselves. Wide layout only makes sense for one-score profiles.
    """
    mapping = suggest_column_mapping(df, profile)
    if mapping.get("subject") or len(profile.components) > 1:
        return "long"
    if mapping.get(profile.components[0]) is not None:
        return "long"
    known = {mapping.get(f) for f in COLUMN_ALIASES}
    subject_cols = [c for c in df.columns if c not in known]
    return "wide" if subject_cols else "long"


def convert_wide_to_long(df: pd.DataFrame, mapping: Dict[str, Optional[str]], profile: CurriculumProfile) -> pd.DataFrame:
    """
    Convert a wide-format DataFrame to long format.
    Non-mapped columns are treated as subject score columns.
    """
    metadata_cols = [v for v in mapping.values() if v and v in df.columns]
    subject_cols = [c for c in df.columns if c not in metadata_cols]

    if not subject_cols:
        return df

    return df.melt(
        id_vars=metadata_cols,
        value_vars=subject_cols,
        var_name="subject",
        value_name=profile.components[0],
    )


def validate_data(df: pd.DataFrame, profile: CurriculumProfile, mapping: Dict[str, Optional[str]]) -> List[Dict]:
    """
    Validate the parsed data and return a list of issues found.
    """
    issues = []

    required_fields = ["student_id", "subject", *profile.components]
    for field in required_fields:
        if mapping.get(field) is None:
            issues.append({
                "type": "missing_column",
                "severity": "critical",
                "message": f"Required column '{field}' not found. "
                           f"Expected one of: {_aliases_for(profile).get(field, [])}",
            })

    if len(df) == 0:
        issues.append({
            "type": "empty_data",
            "severity": "critical",
            "message": "The uploaded file contains no data rows.",
        })

    for component in profile.components:
        col = mapping.get(component)
        if not col or col not in df.columns:
            continue
        raw = df[col].fillna("").astype(str).str.strip()
        absent = raw.str.lower().isin(ABSENT_MARKERS)
        blank = raw == ""
        scores = pd.to_numeric(raw.where(~absent & ~blank), errors="coerce")
        invalid_count = int((scores.isna() & ~absent & ~blank).sum())
        if invalid_count > 0:
            issues.append({
                "type": "invalid_scores",
                "severity": "warning",
                "message": f"{invalid_count} '{component}' scores could not be parsed as numbers "
                           f"and will be treated as missing.",
            })
        valid_scores = scores.dropna()
        out_of_range = int(((valid_scores < 0) | (valid_scores > 100)).sum())
        if out_of_range > 0:
            issues.append({
                "type": "out_of_range_scores",
                "severity": "info",
                "message": f"{out_of_range} '{component}' scores fall outside 0-100 and will be clamped.",
            })

    id_col = mapping.get("student_id")
    subject_col = mapping.get("subject")
    if id_col and subject_col and id_col in df.columns and subject_col in df.columns:
        dupe_count = int(df.duplicated(subset=[id_col, subject_col], keep=False).sum())
        if dupe_count > 0:
            issues.append({
                "type": "duplicates",
                "severity": "warning",
                "message": f"{dupe_count} duplicate entries detected (same student + subject). "
                           f"The last one wins.",
            })

    return issues


def _cell_score(value):
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return None
    if str(value).strip().lower() in ABSENT_MARKERS:
        return ABSENT
    return clamp_score(value)


def rows_to_entries(df: pd.DataFrame, profile: CurriculumProfile, mapping: Dict[str, Optional[str]]) -> List[RawScoreEntry]:
    """Build raw entries from a long-format sheet. Rows without ids are skipped."""
    id_col = mapping.get("student_id")
    subject_col = mapping.get("subject")
    if not id_col or not subject_col:
        raise ValueError("Both a student and a subject column are needed to read scores.")

    entries: Dict[tuple, RawScoreEntry] = {}
    for record in df.to_dict(orient="records"):
        student_id = record.get(id_col)
        subject_id = record.get(subject_col)
        if pd.isna(student_id) or pd.isna(subject_id):
            continue
        student_id = str(student_id).strip()
        subject_id = str(subject_id).strip()
        if not student_id or not subject_id:
            continue

        scores = {}
        for component in profile.components:
            col = mapping.get(component)
            scores[component] = _cell_score(record.get(col)) if col else None

        remarks = record.get(mapping["remarks"]) if mapping.get("remarks") else None
        conduct = record.get(mapping["conduct"]) if mapping.get("conduct") else None
        entries[(student_id, subject_id)] = RawScoreEntry(
            student_id=student_id,
            subject_id=subject_id,
            component_scores=scores,
            remarks=None if pd.isna(remarks) else str(remarks),
            conduct=None if pd.isna(conduct) else str(conduct).strip(),
            is_absent=any(v == ABSENT for v in scores.values()),
        )

    return list(entries.values())
