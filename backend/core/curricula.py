"""
curricula.py — Curriculum profiles and the profile registry.

Each profile describes one grading scheme:
- CBC: formative/summative, 4 competency bands (EE/ME/AE/BE)
- IGCSE: coursework/exam, 9 letter grades (A* to U)
- Standard (8-4-4): single score, 13 letter grades (A+ to E), class ranking

Profiles are immutable. A school that moves its boundaries gets a new
profile built with with_boundaries(), never a patched default.
"""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Mapping, NamedTuple, Optional, Tuple

logger = logging.getLogger(__name__)

WEIGHT_TOLERANCE = 1e-9


class Curriculum(str, Enum):
    CBC = "cbc"
    IGCSE = "igcse"
    STANDARD = "standard"


class GradeBand(NamedTuple):
    label: str
    min_score: float
    description: str


class InvalidLabelError(ValueError):
    """Raised when a label is not part of the active profile's label set."""

    def __init__(self, label: Any, curriculum: str):
        self.label = label
        self.curriculum = curriculum
        super().__init__(f"'{label}' is not a valid {curriculum.upper()} grade.")


@dataclass(frozen=True)
class CurriculumProfile:
    """
    Declarative description of one grading scheme.

    component_weights is an ordered tuple of (component, weight) pairs and
    boundaries is ordered from the highest threshold down to 0.
    """

    id: Curriculum
    name: str
    component_weights: Tuple[Tuple[str, float], ...]
    boundaries: Tuple[GradeBand, ...]
    failing_labels: FrozenSet[str] = field(default_factory=frozenset)
    ranks_students: bool = False
    allows_override: bool = False

    def __post_init__(self) -> None:
        if not self.component_weights:
            raise ValueError("A profile needs at least one score component.")
        names = [name for name, _ in self.component_weights]
        if len(names) != len(set(names)):
            raise ValueError(f"Component names must be unique: {names}")
        total = sum(weight for _, weight in self.component_weights)
        if abs(total - 1.0) > WEIGHT_TOLERANCE:
            raise ValueError(f"Component weights must sum to 1.0, got {total}")
        if any(weight < 0 for _, weight in self.component_weights):
            raise ValueError("Component weights cannot be negative.")

        if not self.boundaries:
            raise ValueError("A profile needs at least one grade band.")
        labels = [band.label for band in self.boundaries]
        if len(labels) != len(set(labels)):
            raise ValueError(f"Grade labels must be unique: {labels}")
        thresholds = [band.min_score for band in self.boundaries]
        for higher, lower in zip(thresholds, thresholds[1:]):
            if not higher > lower:
                raise ValueError(f"Grade thresholds must be strictly descending: {thresholds}")
        if thresholds[-1] != 0:
            raise ValueError("The lowest grade threshold must be 0.")
        if thresholds[0] > 100:
            raise ValueError("Grade thresholds cannot exceed 100.")

        unknown = set(self.failing_labels) - set(labels)
        if unknown:
            raise ValueError(f"Failing labels not in the grade scale: {sorted(unknown)}")

    @property
    def labels(self) -> Tuple[str, ...]:
        return tuple(band.label for band in self.boundaries)

    @property
    def components(self) -> Tuple[str, ...]:
        return tuple(name for name, _ in self.component_weights)

    @property
    def weights(self) -> Dict[str, float]:
        return dict(self.component_weights)

    def is_passing(self, label: str) -> bool:
        return label in self.labels and label not in self.failing_labels


# ── Built-in Profiles ───────────────────────────────────────────────

CBC = CurriculumProfile(
    id=Curriculum.CBC,
    name="Competency-Based Curriculum",
    component_weights=(("formative", 0.4), ("summative", 0.6)),
    boundaries=(
        GradeBand("EE", 80, "Exceeding Expectation"),
        GradeBand("ME", 50, "Meeting Expectation"),
        GradeBand("AE", 40, "Approaching Expectation"),
        GradeBand("BE", 0, "Below Expectation"),
    ),
)

IGCSE = CurriculumProfile(
    id=Curriculum.IGCSE,
    name="IGCSE",
    component_weights=(("coursework", 0.3), ("exam", 0.7)),
    boundaries=(
        GradeBand("A*", 90, "Outstanding"),
        GradeBand("A", 80, "Excellent"),
        GradeBand("B", 70, "Very Good"),
        GradeBand("C", 60, "Good"),
        GradeBand("D", 50, "Satisfactory"),
        GradeBand("E", 40, "Pass"),
        GradeBand("F", 30, "Below Pass"),
        GradeBand("G", 20, "Poor"),
        GradeBand("U", 0, "Ungraded"),
    ),
    failing_labels=frozenset({"F", "G", "U"}),
    allows_override=True,
)

STANDARD = CurriculumProfile(
    id=Curriculum.STANDARD,
    name="Standard (8-4-4)",
    component_weights=(("score", 1.0),),
    boundaries=(
        GradeBand("A+", 90, "Distinction"),
        GradeBand("A", 80, "Excellent"),
        GradeBand("A-", 75, "Very Good"),
        GradeBand("B+", 70, "Good"),
        GradeBand("B", 65, "Above Average"),
        GradeBand("B-", 60, "Average"),
        GradeBand("C+", 55, "Below Average"),
        GradeBand("C", 50, "Pass"),
        GradeBand("C-", 45, "Weak Pass"),
        GradeBand("D+", 40, "Poor"),
        GradeBand("D", 35, "Very Poor"),
        GradeBand("D-", 30, "Fail"),
        GradeBand("E", 0, "Fail"),
    ),
    failing_labels=frozenset({"E"}),
    ranks_students=True,
    allows_override=True,
)

PROFILES: Dict[Curriculum, CurriculumProfile] = {
    Curriculum.CBC: CBC,
    Curriculum.IGCSE: IGCSE,
    Curriculum.STANDARD: STANDARD,
}

TOKEN_ALIASES = {
    "cbc": Curriculum.CBC,
    "igcse": Curriculum.IGCSE,
    "standard": Curriculum.STANDARD,
    "8-4-4": Curriculum.STANDARD,
    "844": Curriculum.STANDARD,
}


# ── Registry ────────────────────────────────────────────────────────

def resolve_profile(curriculum_type: Optional[str]) -> CurriculumProfile:
    """
    Map a free-form curriculum token to a built-in profile.

    Never raises: anything unrecognised falls back to STANDARD.
    """
    token = str(curriculum_type or "").strip().lower()
    curriculum = TOKEN_ALIASES.get(token)
    if curriculum is None:
        logger.warning("Unrecognised curriculum type %r, falling back to standard grading", curriculum_type)
        curriculum = Curriculum.STANDARD
    return PROFILES[curriculum]


def with_boundaries(profile: CurriculumProfile, thresholds: Mapping[str, float]) -> CurriculumProfile:
    """
    Return a copy of `profile` with some grade thresholds moved.

    `thresholds` maps label -> new minimum score. Labels keep their order, so
    the result must still be strictly descending and end at 0.
    """
    for label in thresholds:
        if label not in profile.labels:
            raise InvalidLabelError(label, profile.id.value)

    bands = []
    for band in profile.boundaries:
        if band.label in thresholds:
            try:
                min_score = float(thresholds[band.label])
            except (TypeError, ValueError):
                raise ValueError(f"Threshold for '{band.label}' must be a number.")
            band = band._replace(min_score=min_score)
        bands.append(band)

    return replace(profile, boundaries=tuple(bands))


def get_all_grade_thresholds(profile: CurriculumProfile) -> List[Dict[str, Any]]:
    """Return the full grade scale for legend/reference."""
    thresholds = []
    for idx, band in enumerate(profile.boundaries):
        max_score = 100.0 if idx == 0 else profile.boundaries[idx - 1].min_score - 0.01
        thresholds.append(
            {
                "min": band.min_score,
                "max": round(max_score, 2),
                "label": band.label,
                "description": band.description,
                "passing": profile.is_passing(band.label),
            }
        )
    return thresholds


def profile_summary(profile: CurriculumProfile) -> Dict[str, Any]:
    return {
        "id": profile.id.value,
        "name": profile.name,
        "components": [
            {"name": name, "weight": weight} for name, weight in profile.component_weights
        ],
        "labels": list(profile.labels),
        "failing_labels": [label for label in profile.labels if label in profile.failing_labels],
        "ranks_students": profile.ranks_students,
        "allows_override": profile.allows_override,
        "grade_scale": get_all_grade_thresholds(profile),
    }


# ── Subject Breakdown ───────────────────────────────────────────────

CBC_STRANDS = {
    "Mathematics": [
        "Number and Place Value",
        "Addition and Subtraction",
        "Multiplication and Division",
        "Fractions",
        "Geometry",
        "Measurement",
        "Statistics",
    ],
    "English": [
        "Reading",
        "Writing",
        "Speaking and Listening",
        "Grammar and Vocabulary",
        "Comprehension",
        "Creative Writing",
        "Literature",
    ],
    "Kiswahili": [
        "Kusoma",
        "Kuandika",
        "Kuzungumza na Kusikiliza",
        "Sarufi na Msamiati",
        "Ufahamu",
        "Uandishi wa Kibunifu",
        "Fasihi",
    ],
    "Science": [
        "Scientific Inquiry",
        "Life Processes",
        "Materials and their Properties",
        "Physical Processes",
        "Earth and Space",
        "Working Scientifically",
    ],
    "Social Studies": [
        "Citizenship",
        "History",
        "Geography",
        "Economics",
        "Environmental Awareness",
        "Cultural Understanding",
    ],
    "default": [
        "Communication",
        "Problem Solving",
        "Application",
        "Understanding",
        "Creativity",
        "Collaboration",
        "Critical Thinking",
    ],
}

_FOUR_PAPERS = ["Paper 1", "Paper 2", "Paper 3", "Paper 4"]
_SIX_PAPERS = _FOUR_PAPERS + ["Paper 5", "Paper 6"]
_TWO_COMPONENTS = ["Component 1", "Component 2"]

IGCSE_COMPONENTS = {
    "Mathematics": _FOUR_PAPERS,
    "English Language": _FOUR_PAPERS,
    "English Literature": _FOUR_PAPERS,
    "Biology": _SIX_PAPERS,
    "Chemistry": _SIX_PAPERS,
    "Physics": _SIX_PAPERS,
    "History": _FOUR_PAPERS,
    "Geography": _FOUR_PAPERS,
    "Economics": _FOUR_PAPERS,
    "Business Studies": _FOUR_PAPERS,
    "Computer Science": _FOUR_PAPERS,
    "Art & Design": _TWO_COMPONENTS,
    "Music": _TWO_COMPONENTS,
    "Physical Education": _TWO_COMPONENTS,
    "default": ["Coursework", "Examination"],
}


def _lookup_by_subject(table: Dict[str, List[str]], subject_name: str) -> List[str]:
    normalized = str(subject_name or "").strip().lower()
    for key, items in table.items():
        if key != "default" and key.lower() in normalized:
            return list(items)
    return list(table["default"])


def get_subject_strands(subject_name: str) -> List[str]:
    """CBC strands assessed under a subject (substring match on the name)."""
    return _lookup_by_subject(CBC_STRANDS, subject_name)


def get_subject_components(subject_name: str) -> List[str]:
    """IGCSE papers/components for a subject."""
    return _lookup_by_subject(IGCSE_COMPONENTS, subject_name)
