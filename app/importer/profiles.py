"""Import profiles: the fields, relational columns and validator per entity kind."""

from collections.abc import Callable
from dataclasses import dataclass, field

from app.exceptions import ImportConfigurationError
from app.importer.capabilities import RecordStore
from app.importer.types import FieldDescriptor, RelationalFieldConfig
from app.importer.validators import (
    CourseRowValidator,
    RowValidator,
    StudentRowValidator,
    TemplateRowValidator,
)


@dataclass(frozen=True)
class ImportProfile:
    """Everything the wizard needs to know about one kind of import.

    Attributes:
        key: Profile name, also the record store kind
        title: Human readable name
        fields: Required fields first, then optional ones
        relational_fields: Fields resolved against existing entities, by key
        validator_class: Row validator for this kind
        supports_duplicates: Whether validation can report duplicates
        enrollment_capable: Whether the wizard offers an enrollment step
    """

    key: str
    title: str
    fields: tuple[FieldDescriptor, ...]
    relational_fields: dict[str, RelationalFieldConfig] = field(default_factory=dict)
    validator_class: Callable[..., RowValidator] = RowValidator
    supports_duplicates: bool = False
    enrollment_capable: bool = False

    @property
    def required_fields(self) -> list[FieldDescriptor]:
        return [f for f in self.fields if f.required]

    @property
    def optional_fields(self) -> list[FieldDescriptor]:
        return [f for f in self.fields if not f.required]

    def descriptor(self, key: str) -> FieldDescriptor | None:
        return next((f for f in self.fields if f.key == key), None)

    def create_validator(self, store: RecordStore, **kwargs) -> RowValidator:
        return self.validator_class(store, self.relational_fields, **kwargs)


STUDENTS = ImportProfile(
    key="students",
    title="Students",
    fields=(
        FieldDescriptor("name", "Full name", required=True, aliases=("student name", "student", "שם", "שם מלא", "שם התלמיד")),
        FieldDescriptor("phone", "Phone", required=True, aliases=("mobile", "phone number", "טלפון", "נייד")),
        FieldDescriptor("birth_year", "Birth year", required=True, aliases=("year of birth", "born", "שנת לידה")),
        FieldDescriptor("parent_name", "Parent name", aliases=("guardian", "שם הורה")),
        FieldDescriptor("parent_phone", "Parent phone", aliases=("guardian phone", "טלפון הורה")),
        FieldDescriptor("parent_email", "Parent email", aliases=("email", "אימייל", "מייל")),
        FieldDescriptor("address", "Address", aliases=("כתובת",)),
        FieldDescriptor("medical_notes", "Medical notes", aliases=("medical", "allergies", "הערות רפואיות")),
        FieldDescriptor("photo_url", "Photo URL", aliases=("photo", "picture", "תמונה")),
        FieldDescriptor("branch_id", "Branch", aliases=("סניף",)),
        FieldDescriptor("teacher_id", "Teacher", aliases=("מורה", "מדריך")),
        FieldDescriptor("course_id", "Course", aliases=("קורס",)),
        FieldDescriptor("occurrence_id", "Class", aliases=("lesson", "session", "שיעור")),
    ),
    relational_fields={
        "branch_id": RelationalFieldConfig(label="Branch", source="branches"),
        "teacher_id": RelationalFieldConfig(
            label="Teacher", source="teachers", name_fields=("first_name", "last_name")
        ),
        "course_id": RelationalFieldConfig(label="Course", source="courses"),
        "occurrence_id": RelationalFieldConfig(
            label="Class", source="occurrences", name_fields=("display_name",), search_only=True
        ),
    },
    validator_class=StudentRowValidator,
    supports_duplicates=True,
    enrollment_capable=True,
)

COURSES = ImportProfile(
    key="courses",
    title="Courses",
    fields=(
        FieldDescriptor("name", "Course name", required=True, aliases=("course", "שם קורס", "שם")),
        FieldDescriptor("start_date", "Start date", required=True, aliases=("start", "from", "תאריך התחלה")),
        FieldDescriptor("end_date", "End date", required=True, aliases=("end", "until", "תאריך סיום")),
        FieldDescriptor("price", "Price", aliases=("cost", "fee", "מחיר")),
        FieldDescriptor("max_students", "Max students", aliases=("capacity", "מקסימום תלמידים")),
        FieldDescriptor("description", "Description", aliases=("תיאור",)),
        FieldDescriptor(
            "template_ids",
            "Class templates",
            aliases=("templates", "classes", "תבניות", "שיעורים"),
            description="Several templates may be listed in one cell, separated by commas",
        ),
    ),
    relational_fields={
        "template_ids": RelationalFieldConfig(label="Class template", source="templates", separator=","),
    },
    validator_class=CourseRowValidator,
)

TEMPLATES = ImportProfile(
    key="templates",
    title="Class templates",
    fields=(
        FieldDescriptor("name", "Template name", required=True, aliases=("class", "class name", "שם שיעור", "שם")),
        FieldDescriptor("duration", "Duration (minutes)", required=True, aliases=("duration", "minutes", "משך")),
        FieldDescriptor("teacher_id", "Teacher", required=True, aliases=("instructor", "מורה", "מדריך")),
        FieldDescriptor("branch_id", "Branch", required=True, aliases=("סניף",)),
        FieldDescriptor("location_id", "Location", required=True, aliases=("room", "hall", "מיקום", "חדר")),
        FieldDescriptor("day_of_week", "Day", aliases=("weekday", "day of week", "יום")),
        FieldDescriptor("start_time", "Start time", aliases=("time", "hour", "שעה", "שעת התחלה")),
        FieldDescriptor("price", "Price", aliases=("cost", "מחיר")),
        FieldDescriptor("description", "Description", aliases=("תיאור",)),
    ),
    relational_fields={
        "teacher_id": RelationalFieldConfig(
            label="Teacher", source="teachers", name_fields=("first_name", "last_name")
        ),
        "branch_id": RelationalFieldConfig(label="Branch", source="branches"),
        "location_id": RelationalFieldConfig(
            label="Location", source="locations", depends_on="branch_id", filter_field="branch_id"
        ),
    },
    validator_class=TemplateRowValidator,
)

PROFILES: dict[str, ImportProfile] = {p.key: p for p in (STUDENTS, COURSES, TEMPLATES)}


def get_profile(key: str) -> ImportProfile:
    """Look up a profile by key.

    Raises:
        ImportConfigurationError: If no such profile exists
    """
    profile = PROFILES.get(key)
    if profile is None:
        raise ImportConfigurationError(
            f"Unknown import type '{key}'. Available: {', '.join(sorted(PROFILES))}"
        )
    return profile
