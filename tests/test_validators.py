"""Unit tests for row validation and partitioning."""

from datetime import date

from app.importer.profiles import COURSES, STUDENTS, TEMPLATES
from app.importer.types import ColumnMapping, PreparedRow, RowRef

TODAY = date(2026, 10, 19)

STUDENT_MAPPING = ColumnMapping(fields={"name": 0, "phone": 1, "birth_year": 2})


def _row(index: int, cells: list, **kwargs) -> PreparedRow:
    return PreparedRow(ref=RowRef.for_index(index), cells=tuple(cells), **kwargs)


def _student_validator(store):
    return STUDENTS.create_validator(store, today=TODAY)


# =============================================================================
# Students
# =============================================================================


async def test_students_are_partitioned(store) -> None:
    """Test every row lands in exactly one of valid, invalid and duplicates."""
    store.add("students", first_name="Existing", phone="054-222-2222", is_active=True)
    rows = [
        _row(0, ["Dana Levi", "052-123-4567", "2015"]),
        _row(1, ["Omer Cohen", "123", "2016"]),
        _row(2, ["", "0541111111", "2014"]),
        _row(3, ["Noa Bar", "0542222222", "2013"]),
        _row(4, ["Tal Ron", "0543333333", ""]),
    ]

    result = await _student_validator(store).validate(rows, STUDENT_MAPPING)

    assert [r.row_number for r in result.valid] == [2]
    assert [r.row_number for r in result.invalid] == [3, 4, 6]
    assert [r.row_number for r in result.duplicates] == [5]
    assert result.total_rows == 5
    assert result.importable_count == 2

    assert result.invalid[0].errors == ("invalid phone number",)
    assert result.invalid[1].errors == ("missing name",)
    assert result.invalid[2].errors == ("missing birth year",)


async def test_missing_name_is_invalid(store) -> None:
    rows = [
        _row(0, ["Dana Cohen", "050-1234567", "2012"]),
        _row(1, ["", "0501234567", "2012"]),
    ]

    result = await _student_validator(store).validate(rows, STUDENT_MAPPING)

    assert result.total_rows == 2
    assert result.valid[0].extracted["first_name"] == "Dana"
    assert result.valid[0].extracted["phone"] == "050-123-4567"
    assert result.invalid[0].errors == ("missing name",)


async def test_student_fields_are_extracted(store) -> None:
    rows = [_row(0, ["  Dana   Bat Levi ", "+972-52-123-4567", 2015])]

    result = await _student_validator(store).validate(rows, STUDENT_MAPPING)
    record = result.valid[0]

    assert record.extracted == {
        "first_name": "Dana",
        "last_name": "Bat Levi",
        "phone": "052-123-4567",
        "birth_date": date(2015, 1, 1),
    }


async def test_duplicate_carries_existing_record_and_warning(store) -> None:
    existing_id = store.add("students", first_name="Noa", phone="054-222-2222")
    rows = [_row(0, ["Noa Bar", "0542222222", "2013"])]

    result = await _student_validator(store).validate(rows, STUDENT_MAPPING)
    record = result.duplicates[0]

    assert record.duplicate_id == existing_id
    assert record.warnings == ("a student with the same phone number already exists",)


async def test_inactive_students_are_not_duplicates(store) -> None:
    store.add("students", first_name="Old", phone="054-222-2222", is_active=False)
    rows = [_row(0, ["Noa Bar", "0542222222", "2013"])]

    result = await _student_validator(store).validate(rows, STUDENT_MAPPING)

    assert len(result.valid) == 1
    assert result.duplicates == ()


async def test_errors_take_precedence_over_duplicates(store) -> None:
    """Test a row with errors is invalid even if its phone matches."""
    existing_id = store.add("students", first_name="Noa", phone="054-222-2222")
    rows = [_row(0, ["", "0542222222", "2013"])]

    result = await _student_validator(store).validate(rows, STUDENT_MAPPING)

    assert len(result.invalid) == 1
    assert result.invalid[0].duplicate_id == existing_id
    assert result.invalid[0].warnings == ("a student with the same phone number already exists",)
    assert result.duplicates == ()


async def test_skipped_value_excludes_row(store) -> None:
    rows = [
        _row(0, ["Dana Levi", "0521234567", "2015", "Hip Hop"], skipped=(("course_id", "Hip Hop"),)),
    ]
    mapping = ColumnMapping(fields={"name": 0, "phone": 1, "birth_year": 2, "course_id": 3})

    result = await _student_validator(store).validate(rows, mapping)

    assert result.invalid[0].errors == ("Row skipped: Course 'Hip Hop' is marked to skip",)


async def test_relational_values(store) -> None:
    """Test resolved ids are stored or linked, unmatched ones only warn."""
    mapping = ColumnMapping(fields={"name": 0, "phone": 1, "birth_year": 2, "branch_id": 3, "course_id": 4})
    rows = [
        _row(
            0,
            ["Dana Levi", "0521234567", "2015", "North", "Intro A"],
            resolved={"branch_id": "b-north", "course_id": "c-intro-a"},
        ),
        _row(
            1,
            ["Omer Cohen", "0527654321", "2016", "North", "Hip Hop"],
            resolved={"branch_id": "b-north"},
            unresolved=(("course_id", "Hip Hop"),),
        ),
    ]

    result = await _student_validator(store).validate(rows, mapping)
    first, second = result.valid

    assert first.extracted["branch_id"] == "b-north"
    assert "course_id" not in first.extracted
    assert first.links == {"course_id": "c-intro-a"}
    assert second.links == {}
    assert second.warnings == ("Course 'Hip Hop' was not matched and was ignored",)


async def test_optional_fields_warn_when_invalid(store) -> None:
    mapping = ColumnMapping(
        fields={"name": 0, "phone": 1, "birth_year": 2, "parent_email": 3, "photo_url": 4, "parent_phone": 5},
        custom_fields={"Belt": 6, "Trial": 7},
    )
    rows = [
        _row(0, ["Dana Levi", "0521234567", "2015", "not-an-email", "photo.jpg", "12", "blue", "yes"]),
    ]

    result = await _student_validator(store).validate(rows, mapping)
    record = result.valid[0]

    assert record.warnings == (
        "parent phone is invalid and was not imported",
        "parent email is invalid and was not imported",
        "photo URL is invalid and was not imported",
    )
    assert "parent_email" not in record.extracted
    assert record.extracted["custom_fields"] == {"Belt": "blue", "Trial": True}


# =============================================================================
# Courses
# =============================================================================


async def test_course_rows(store) -> None:
    mapping = ColumnMapping(
        fields={"name": 0, "start_date": 1, "end_date": 2, "price": 3, "template_ids": 4}
    )
    rows = [
        _row(0, ["Intro A", "01/09/2026", "30/06/2027", "1,200", "Ballet, Jazz"],
             resolved={"template_ids": ["tpl-ballet", "tpl-jazz"]}),
        _row(1, ["Backwards", "2027-01-01", "2026-01-01", "free", ""]),
        _row(2, ["", "someday", "", None, ""]),
    ]

    result = await COURSES.create_validator(store).validate(rows, mapping)

    assert len(result.valid) == 1
    assert result.valid[0].extracted == {
        "name": "Intro A",
        "start_date": date(2026, 9, 1),
        "end_date": date(2027, 6, 30),
        "price": 1200.0,
        "template_ids": ["tpl-ballet", "tpl-jazz"],
    }
    backwards, empty = result.invalid
    assert backwards.errors == ("end date is before start date",)
    assert backwards.warnings == ("price 'free' is not a number and was ignored",)
    assert empty.errors == ("missing course name", "invalid start date", "missing end date")
    assert result.duplicates == ()


# =============================================================================
# Class templates
# =============================================================================


TEMPLATE_MAPPING = ColumnMapping(
    fields={
        "name": 0,
        "duration": 1,
        "teacher_id": 2,
        "branch_id": 3,
        "location_id": 4,
        "day_of_week": 5,
        "start_time": 6,
    }
)
RESOLVED_SITE = {"teacher_id": "t-dana", "branch_id": "b-north", "location_id": "l-north-1"}


async def test_template_slots_must_be_free(store) -> None:
    """Test a slot taken by an existing template or an earlier row is refused."""
    store.add(
        "templates",
        name="Morning Ballet",
        branch_id="b-north",
        location_id="l-north-1",
        day_of_week=0,
        start_time="17:00",
        is_active=True,
    )
    rows = [
        _row(0, ["Ballet", 45, "Dana", "North", "Hall 1", "Sunday", "17:00"], resolved=RESOLVED_SITE),
        _row(1, ["Jazz", 60, "Dana", "North", "Hall 1", "Monday", "18:00"], resolved=RESOLVED_SITE),
        _row(2, ["Tap", 30, "Dana", "North", "Hall 1", "שני", "18:00"], resolved=RESOLVED_SITE),
    ]

    result = await TEMPLATES.create_validator(store).validate(rows, TEMPLATE_MAPPING)

    assert [r.row_number for r in result.valid] == [3]
    assert result.valid[0].extracted["day_of_week"] == 1
    assert result.invalid[0].errors == (
        "duplicate template: Morning Ballet already runs at this branch, location, day and time",
    )
    assert result.invalid[1].errors == (
        "duplicate template: row 3 already runs at this branch, location, day and time",
    )


async def test_template_requires_its_relations(store) -> None:
    rows = [
        _row(
            0,
            ["Ballet", "forty", "Ghost", "", "", "", "7pm"],
            unresolved=(("teacher_id", "Ghost"),),
        ),
    ]

    result = await TEMPLATES.create_validator(store).validate(rows, TEMPLATE_MAPPING)
    record = result.invalid[0]

    assert record.errors == (
        "invalid duration",
        "Teacher 'Ghost' was not found",
        "missing branch",
        "missing location",
    )
    assert record.warnings == ("invalid time '7pm' (expected HH:MM)",)
