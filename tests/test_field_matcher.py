"""Unit tests for header-based column suggestions."""

from app.importer.field_matcher import best_column, match_fields, score_header
from app.importer.profiles import STUDENTS
from app.importer.similarity import CharacterOverlapScorer, SequenceRatioScorer
from app.importer.types import ColumnMapping, FieldDescriptor


# =============================================================================
# Scoring
# =============================================================================


def test_score_exact_match_is_case_insensitive() -> None:
    assert score_header("  PHONE ", "phone") == 100


def test_score_header_contains_pattern() -> None:
    assert score_header("Student phone", "phone") == 80


def test_score_pattern_contains_header() -> None:
    """Test the reverse containment needs more than two characters."""
    assert score_header("name", "parent name") == 60
    assert score_header("ab", "abc") == 0


def test_score_similar_characters() -> None:
    assert score_header("cab", "abc") == 50
    assert score_header("zzz", "phone") == 0
    assert score_header("", "phone") == 0


def test_scorers() -> None:
    assert CharacterOverlapScorer().similarity("cab", "abc") == 1.0
    assert SequenceRatioScorer().similarity("cab", "abc") < 0.7
    assert score_header("cab", "abc", SequenceRatioScorer()) == 0


def test_best_column_prefers_leftmost_on_ties() -> None:
    descriptor = FieldDescriptor("phone", "Phone")
    assert best_column(["Phone", "phone"], descriptor) == (0, 100)
    assert best_column(["Address", "Notes"], descriptor) == (None, 0)


def test_best_column_prefers_higher_score() -> None:
    descriptor = FieldDescriptor("phone", "Phone", aliases=("mobile",))
    assert best_column(["Mobile phone", "Mobile"], descriptor) == (1, 100)


# =============================================================================
# Matching a profile
# =============================================================================


def test_match_student_headers() -> None:
    """Test a typical student sheet maps each column to its field."""
    mapping = ColumnMapping()
    matched = match_fields(["Full Name", "Mobile", "Birth Year", "Course"], STUDENTS.fields, mapping)

    assert mapping.fields == {"name": 0, "phone": 1, "birth_year": 2, "course_id": 3}
    assert matched == {"name", "phone", "birth_year", "course_id"}


def test_match_hebrew_headers() -> None:
    mapping = ColumnMapping()
    match_fields(["שם מלא", "טלפון", "שנת לידה"], STUDENTS.fields, mapping)

    assert mapping.get("name") == 0
    assert mapping.get("phone") == 1
    assert mapping.get("birth_year") == 2


def test_match_can_reuse_a_column() -> None:
    """Test that one column may be suggested for several fields."""
    mapping = ColumnMapping()
    match_fields(["Name", "Phone"], STUDENTS.fields, mapping)

    assert mapping.get("name") == 0
    assert mapping.get("parent_name") == 0
    assert mapping.get("phone") == 1
    assert mapping.get("parent_phone") == 1


def test_match_keeps_user_choices() -> None:
    """Test that fields already mapped are not touched."""
    mapping = ColumnMapping()
    mapping.assign("phone", 2)

    matched = match_fields(["Full Name", "Mobile", "Other number"], STUDENTS.fields, mapping)

    assert mapping.get("phone") == 2
    assert "phone" not in matched
    assert mapping.get("name") == 0


def test_match_nothing() -> None:
    mapping = ColumnMapping()
    assert match_fields(["zzz", "qqq"], STUDENTS.fields, mapping) == set()
    assert mapping.fields == {}
