"""Per-entity row validation.

Each validator turns prepared rows into RowRecords and partitions them:
rows with errors are invalid, rows matching an existing entity are
duplicates, everything else is valid. Warnings never change the bucket.
"""

import logging
from collections.abc import Mapping, Sequence
from datetime import date
from typing import Any

from app.importer.capabilities import RecordStore
from app.importer.coercion import (
    cell_text,
    coerce_custom_value,
    format_phone,
    is_valid_email,
    is_valid_url,
    parse_birth_year,
    parse_date,
    parse_day_of_week,
    parse_number,
    parse_time,
    phone_key,
)
from app.importer.types import (
    ColumnMapping,
    PreparedRow,
    RelationalFieldConfig,
    RowRecord,
    ValidationResult,
)

logger = logging.getLogger(__name__)


class RowValidator:
    """Base class: shared extraction helpers and the partitioning loop."""

    kind: str = ""

    def __init__(
        self,
        store: RecordStore,
        relational_fields: Mapping[str, RelationalFieldConfig] | None = None,
        *,
        today: date | None = None,
    ):
        self.store = store
        self.relational_fields = dict(relational_fields or {})
        self.today = today or date.today()

    async def prepare(self) -> None:
        """Load whatever existing data duplicate detection needs."""

    def validate_row(self, row: PreparedRow, mapping: ColumnMapping) -> RowRecord:
        raise NotImplementedError

    async def validate(self, rows: Sequence[PreparedRow], mapping: ColumnMapping) -> ValidationResult:
        await self.prepare()

        valid: list[RowRecord] = []
        invalid: list[RowRecord] = []
        duplicates: list[RowRecord] = []
        for row in rows:
            record = self._excluded(row) or self.validate_row(row, mapping)
            if record.errors:
                invalid.append(record)
            elif record.duplicate is not None:
                duplicates.append(record)
            else:
                valid.append(record)

        logger.info(
            f"Validated {len(rows)} {self.kind} rows: {len(valid)} valid, "
            f"{len(invalid)} invalid, {len(duplicates)} duplicates"
        )
        return ValidationResult(valid=tuple(valid), invalid=tuple(invalid), duplicates=tuple(duplicates))

    # === Helpers ===

    def _label(self, field: str) -> str:
        config = self.relational_fields.get(field)
        return config.label if config else field

    def _excluded(self, row: PreparedRow) -> RowRecord | None:
        """Rows carrying a value the user chose to skip are not imported."""
        if not row.skipped:
            return None
        errors = tuple(
            f"Row skipped: {self._label(field)} '{raw}' is marked to skip" for field, raw in row.skipped
        )
        return RowRecord(ref=row.ref, raw=row.cells, extracted={}, errors=errors)

    @staticmethod
    def _text(row: PreparedRow, mapping: ColumnMapping, field: str) -> str | None:
        column = mapping.get(field)
        if column is None or column >= len(row.cells):
            return None
        return cell_text(row.cells[column])

    @staticmethod
    def _cell(row: PreparedRow, mapping: ColumnMapping, field: str):
        column = mapping.get(field)
        if column is None or column >= len(row.cells):
            return None
        value = row.cells[column]
        if isinstance(value, str) and not value.strip():
            return None
        return value

    def _relational(
        self,
        row: PreparedRow,
        mapping: ColumnMapping,
        field: str,
        errors: list[str],
        warnings: list[str],
        *,
        required: bool = False,
    ):
        """Get the resolved id(s) of a relational field, reporting what did not resolve."""
        label = self._label(field)
        value = row.resolved.get(field)
        for name, raw in row.unresolved:
            if name != field:
                continue
            if required:
                errors.append(f"{label} '{raw}' was not found")
            else:
                warnings.append(f"{label} '{raw}' was not matched and was ignored")
        if value is None and required and not any(name == field for name, _ in row.unresolved):
            errors.append(f"missing {label.lower()}")
        return value

    @staticmethod
    def _custom_fields(row: PreparedRow, mapping: ColumnMapping) -> dict[str, Any]:
        values = {}
        for name, column in mapping.custom_fields.items():
            if column >= len(row.cells):
                continue
            cell = row.cells[column]
            if cell is None or (isinstance(cell, str) and not cell.strip()):
                continue
            values[name] = coerce_custom_value(cell)
        return values


class StudentRowValidator(RowValidator):
    """Students: name, phone and birth year are required; phone finds duplicates."""

    kind = "students"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.existing_by_phone: dict[str, Mapping[str, Any]] = {}

    async def prepare(self) -> None:
        existing = await self.store.query(self.kind, lambda record: record.get("is_active", True))
        self.existing_by_phone = {}
        for student in existing:
            key = phone_key(student.get("phone"))
            if key and key not in self.existing_by_phone:
                self.existing_by_phone[key] = student
        logger.debug(f"Loaded {len(self.existing_by_phone)} existing phone numbers")

    def validate_row(self, row: PreparedRow, mapping: ColumnMapping) -> RowRecord:
        errors: list[str] = []
        warnings: list[str] = []
        extracted: dict[str, Any] = {}
        links: dict[str, str] = {}
        duplicate = None

        name = self._text(row, mapping, "name")
        if name:
            first, _, last = " ".join(name.split()).partition(" ")
            extracted["first_name"] = first
            extracted["last_name"] = last
        else:
            errors.append("missing name")

        phone = self._text(row, mapping, "phone")
        if phone:
            try:
                extracted["phone"] = format_phone(phone)
            except ValueError:
                errors.append("invalid phone number")
            else:
                duplicate = self.existing_by_phone.get(phone_key(extracted["phone"]))
                if duplicate is not None:
                    warnings.append("a student with the same phone number already exists")
        else:
            errors.append("missing phone")

        birth_year = self._cell(row, mapping, "birth_year")
        if birth_year is not None:
            try:
                extracted["birth_date"] = date(parse_birth_year(birth_year, self.today), 1, 1)
            except ValueError:
                errors.append("invalid birth year")
        else:
            errors.append("missing birth year")

        for field in ("parent_name", "address", "medical_notes"):
            value = self._text(row, mapping, field)
            if value:
                extracted[field] = value

        parent_phone = self._text(row, mapping, "parent_phone")
        if parent_phone:
            try:
                extracted["parent_phone"] = format_phone(parent_phone)
            except ValueError:
                warnings.append("parent phone is invalid and was not imported")

        parent_email = self._text(row, mapping, "parent_email")
        if parent_email:
            if is_valid_email(parent_email):
                extracted["parent_email"] = parent_email
            else:
                warnings.append("parent email is invalid and was not imported")

        photo_url = self._text(row, mapping, "photo_url")
        if photo_url:
            if is_valid_url(photo_url):
                extracted["photo_url"] = photo_url
            else:
                warnings.append("photo URL is invalid and was not imported")

        for field in ("branch_id", "teacher_id"):
            value = self._relational(row, mapping, field, errors, warnings)
            if value:
                extracted[field] = value
        for field in ("course_id", "occurrence_id"):
            value = self._relational(row, mapping, field, errors, warnings)
            if value:
                links[field] = value

        if mapping.custom_fields:
            extracted["custom_fields"] = self._custom_fields(row, mapping)

        return RowRecord(
            ref=row.ref,
            raw=row.cells,
            extracted=extracted,
            errors=tuple(errors),
            warnings=tuple(warnings),
            duplicate=duplicate,
            links=links,
        )


class CourseRowValidator(RowValidator):
    """Courses: name and a valid date range are required. No duplicate check."""

    kind = "courses"

    def validate_row(self, row: PreparedRow, mapping: ColumnMapping) -> RowRecord:
        errors: list[str] = []
        warnings: list[str] = []
        extracted: dict[str, Any] = {}

        name = self._text(row, mapping, "name")
        if name:
            extracted["name"] = name
        else:
            errors.append("missing course name")

        for field, label in (("start_date", "start date"), ("end_date", "end date")):
            value = self._cell(row, mapping, field)
            if value is None:
                errors.append(f"missing {label}")
                continue
            try:
                extracted[field] = parse_date(value)
            except ValueError:
                errors.append(f"invalid {label}")

        if "start_date" in extracted and "end_date" in extracted:
            if extracted["end_date"] < extracted["start_date"]:
                errors.append("end date is before start date")

        price = self._cell(row, mapping, "price")
        if price is not None:
            try:
                extracted["price"] = parse_number(price)
            except ValueError:
                warnings.append(f"price '{price}' is not a number and was ignored")

        max_students = self._cell(row, mapping, "max_students")
        if max_students is not None:
            try:
                extracted["max_students"] = int(parse_number(max_students))
            except ValueError:
                warnings.append(f"max students '{max_students}' is not a number and was ignored")

        description = self._text(row, mapping, "description")
        if description:
            extracted["description"] = description

        template_ids = self._relational(row, mapping, "template_ids", errors, warnings)
        if template_ids:
            extracted["template_ids"] = list(template_ids)

        return RowRecord(
            ref=row.ref,
            raw=row.cells,
            extracted=extracted,
            errors=tuple(errors),
            warnings=tuple(warnings),
        )


class TemplateRowValidator(RowValidator):
    """Class templates: one active template per branch, location, day and time."""

    kind = "templates"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.taken_slots: dict[tuple, str] = {}

    @staticmethod
    def _slot(data: Mapping[str, Any]) -> tuple | None:
        values = tuple(
            str(data.get(k)) if data.get(k) is not None else None
            for k in ("branch_id", "location_id", "day_of_week", "start_time")
        )
        return None if None in values else values

    async def prepare(self) -> None:
        existing = await self.store.query(self.kind, lambda record: record.get("is_active", True))
        self.taken_slots = {}
        for template in existing:
            slot = self._slot(template)
            if slot is not None:
                self.taken_slots.setdefault(slot, template.get("name") or "an existing template")

    def validate_row(self, row: PreparedRow, mapping: ColumnMapping) -> RowRecord:
        errors: list[str] = []
        warnings: list[str] = []
        extracted: dict[str, Any] = {}

        name = self._text(row, mapping, "name")
        if name:
            extracted["name"] = name
        else:
            errors.append("missing template name")

        duration = self._cell(row, mapping, "duration")
        if duration is None:
            errors.append("missing duration (minutes)")
        else:
            try:
                minutes = parse_number(duration)
            except ValueError:
                minutes = 0
            if minutes > 0:
                extracted["duration"] = int(minutes)
            else:
                errors.append("invalid duration")

        description = self._text(row, mapping, "description")
        if description:
            extracted["description"] = description

        price = self._cell(row, mapping, "price")
        if price is not None:
            try:
                extracted["price"] = parse_number(price)
            except ValueError:
                warnings.append(f"price '{price}' is not a number and was ignored")

        day = self._cell(row, mapping, "day_of_week")
        if day is not None:
            try:
                extracted["day_of_week"] = parse_day_of_week(day)
            except ValueError:
                warnings.append(f"day '{day}' is not a day of the week and was ignored")

        start_time = self._cell(row, mapping, "start_time")
        if start_time is not None:
            try:
                extracted["start_time"] = parse_time(start_time)
            except ValueError:
                warnings.append(f"invalid time '{start_time}' (expected HH:MM)")

        for field in ("teacher_id", "branch_id", "location_id"):
            value = self._relational(row, mapping, field, errors, warnings, required=True)
            if value:
                extracted[field] = value

        slot = self._slot(extracted)
        if slot is not None:
            taken_by = self.taken_slots.get(slot)
            if taken_by is not None:
                errors.append(
                    f"duplicate template: {taken_by} already runs at this branch, location, day and time"
                )
            elif not errors:
                self.taken_slots[slot] = f"row {row.ref.display_row_number}"

        return RowRecord(
            ref=row.ref,
            raw=row.cells,
            extracted=extracted,
            errors=tuple(errors),
            warnings=tuple(warnings),
        )
