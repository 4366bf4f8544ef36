"""Value types shared by the import engine.

Everything here is plain data: the engine never holds database objects, so a
wizard session can outlive the request (and database session) that created it.
"""

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Union

# A single spreadsheet cell after normalization
Cell = Union[str, int, float, bool, None]

# Number of header rows above the first data row in an uploaded sheet
HEADER_ROWS = 1

SKIP_TOKEN = "__skip__"
CREATE_TOKEN = "__create__"

# Called as (processed, total); may be a plain function or a coroutine function
ProgressCallback = Callable[[int, int], Union[None, Awaitable[None]]]


@dataclass(frozen=True, order=True)
class RowRef:
    """Stable reference to a data row.

    ``source_row_index`` is 0-based over the data rows and is what the engine
    keys on. ``display_row_number`` is the 1-based spreadsheet line number
    (header included) shown to people.
    """

    source_row_index: int
    display_row_number: int

    @classmethod
    def for_index(cls, index: int) -> "RowRef":
        return cls(source_row_index=index, display_row_number=index + HEADER_ROWS + 1)


@dataclass(frozen=True)
class ParsedDataset:
    """A normalized sheet: one header row and positional data rows."""

    headers: tuple[str, ...]
    rows: tuple[tuple[Cell, ...], ...]
    file_name: str | None = None

    @property
    def total_rows(self) -> int:
        return len(self.rows)

    def cell(self, row: tuple[Cell, ...], column: int | None) -> Cell:
        """Get a cell by column index, tolerating short rows."""
        if column is None or column < 0 or column >= len(row):
            return None
        return row[column]

    def iter_rows(self):
        """Yield ``(RowRef, row)`` pairs in source order."""
        for index, row in enumerate(self.rows):
            yield RowRef.for_index(index), row

    def preview(self, limit: int) -> list[list[Cell]]:
        return [list(row) for row in self.rows[:limit]]


@dataclass(frozen=True)
class FieldDescriptor:
    """A target field the user can map a column to."""

    key: str
    label: str
    required: bool = False
    aliases: tuple[str, ...] = ()
    description: str | None = None

    @property
    def patterns(self) -> tuple[str, ...]:
        """Strings a header is compared against: label, key, then aliases."""
        return (self.label, self.key, *self.aliases)


@dataclass
class ColumnMapping:
    """Field key to column index, plus free-form custom fields."""

    fields: dict[str, int] = field(default_factory=dict)
    custom_fields: dict[str, int] = field(default_factory=dict)

    def get(self, key: str) -> int | None:
        return self.fields.get(key)

    def is_mapped(self, key: str) -> bool:
        return key in self.fields

    def assign(self, key: str, column: int | None) -> None:
        if column is None:
            self.fields.pop(key, None)
        else:
            self.fields[key] = column

    def assign_custom(self, name: str, column: int | None) -> None:
        if column is None:
            self.custom_fields.pop(name, None)
        else:
            self.custom_fields[name] = column

    def as_dict(self) -> dict[str, dict[str, int]]:
        return {"fields": dict(self.fields), "custom_fields": dict(self.custom_fields)}


@dataclass(frozen=True)
class RelationalFieldConfig:
    """How a mapped column resolves against a reference list.

    Attributes:
        label: Human readable name used in messages
        source: Name of the lookup source that provides the options
        name_fields: Attributes joined with a space to form the option name
        separator: Splits one cell into several values when set
        depends_on: Field whose resolved id filters this field's options
        filter_field: Option attribute compared against the parent's id
        search_only: Options are fetched by search term instead of in bulk
    """

    label: str
    source: str
    name_fields: tuple[str, ...] = ("name",)
    separator: str | None = None
    depends_on: str | None = None
    filter_field: str | None = None
    search_only: bool = False


@dataclass(frozen=True)
class SystemOption:
    """An existing entity a raw value can resolve to."""

    id: str
    name: str
    original: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)


# === Resolved values ===


@dataclass(frozen=True)
class Resolved:
    """The raw value maps to an existing entity."""

    id: str


@dataclass(frozen=True)
class Skipped:
    """Rows carrying the raw value are excluded."""


@dataclass(frozen=True)
class CreateRequested:
    """The user asked for a new entity to be created from the raw value."""


ResolvedValue = Union[Resolved, Skipped, CreateRequested]

SKIPPED = Skipped()
CREATE_REQUESTED = CreateRequested()


def parse_resolved_value(raw: str) -> ResolvedValue:
    """Read a resolved value from its wire form (an id or a reserved token)."""
    if raw == SKIP_TOKEN:
        return SKIPPED
    if raw == CREATE_TOKEN:
        return CREATE_REQUESTED
    return Resolved(raw)


def dump_resolved_value(value: ResolvedValue) -> str:
    if isinstance(value, Resolved):
        return value.id
    if isinstance(value, Skipped):
        return SKIP_TOKEN
    return CREATE_TOKEN


@dataclass(frozen=True)
class PreparedRow:
    """A data row together with the resolution of its relational columns.

    ``resolved`` holds an id (or a list of ids for multi-valued fields) per
    relational field that resolved. ``skipped`` and ``unresolved`` list
    ``(field, raw value)`` pairs for the rest.
    """

    ref: RowRef
    cells: tuple[Cell, ...]
    resolved: Mapping[str, Any] = field(default_factory=dict)
    skipped: tuple[tuple[str, str], ...] = ()
    unresolved: tuple[tuple[str, str], ...] = ()


# === Validation ===


@dataclass(frozen=True)
class RowRecord:
    """The outcome of validating one row."""

    ref: RowRef
    raw: tuple[Cell, ...]
    extracted: Mapping[str, Any]
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    duplicate: Mapping[str, Any] | None = None
    # Relational ids that are not stored on the entity itself (enrollment targets)
    links: Mapping[str, str] = field(default_factory=dict)

    @property
    def row_number(self) -> int:
        return self.ref.display_row_number

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def duplicate_id(self) -> str | None:
        if self.duplicate is None:
            return None
        return str(self.duplicate["id"])


@dataclass(frozen=True)
class ValidationResult:
    """Rows partitioned into exactly one of three buckets."""

    valid: tuple[RowRecord, ...] = ()
    invalid: tuple[RowRecord, ...] = ()
    duplicates: tuple[RowRecord, ...] = ()

    @property
    def total_rows(self) -> int:
        return len(self.valid) + len(self.invalid) + len(self.duplicates)

    @property
    def importable_count(self) -> int:
        return len(self.valid) + len(self.duplicates)

    def find(self, display_row_number: int) -> RowRecord | None:
        for record in (*self.valid, *self.invalid, *self.duplicates):
            if record.ref.display_row_number == display_row_number:
                return record
        return None


class DuplicateDecision(str, Enum):
    """What to do with a row that matches an existing entity."""

    SKIP = "skip"
    UPDATE = "update"


# === Import execution ===


@dataclass(frozen=True)
class ImportedRow:
    """One row's import outcome."""

    record: RowRecord
    entity_id: str | None = None
    error: str | None = None

    @property
    def row_number(self) -> int:
        return self.record.ref.display_row_number


@dataclass(frozen=True)
class ImportResult:
    success: tuple[ImportedRow, ...] = ()
    updated: tuple[ImportedRow, ...] = ()
    failed: tuple[ImportedRow, ...] = ()
    skipped_duplicates: tuple[ImportedRow, ...] = ()
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def processed(self) -> int:
        return len(self.success) + len(self.updated) + len(self.failed) + len(self.skipped_duplicates)


# === Enrollment ===


class TargetKind(str, Enum):
    COURSE = "course"
    OCCURRENCE = "occurrence"


@dataclass(frozen=True)
class EnrollmentTarget:
    """A course or a single occurrence students can be enrolled in."""

    kind: TargetKind
    id: str
    name: str | None = field(default=None, compare=False)

    def __str__(self) -> str:
        return f"{self.kind.value} {self.name or self.id}"


class EnrollmentOutcome(str, Enum):
    ENROLLED = "enrolled"
    ALREADY_ENROLLED = "already_enrolled"
    FAILED = "failed"


class StudentOrigin(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    EXISTING = "existing"


@dataclass(frozen=True)
class StudentCandidate:
    """A student produced (or matched) by the import, eligible for enrollment."""

    entity_id: str
    origin: StudentOrigin
    record: RowRecord | None = None


@dataclass(frozen=True)
class EnrollmentFailure:
    student_id: str
    reason: str
    row_number: int | None = None


@dataclass
class TargetSummary:
    """Per-target tally. Failure details are capped, the count is not."""

    target: EnrollmentTarget
    successful: int = 0
    already_enrolled: int = 0
    failed_count: int = 0
    failures: list[EnrollmentFailure] = field(default_factory=list)


@dataclass
class EnrollmentReport:
    successful_enrollments: int = 0
    already_enrolled: int = 0
    failed: int = 0
    details: list[TargetSummary] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.successful_enrollments + self.already_enrolled + self.failed
