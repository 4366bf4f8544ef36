"""In-memory implementations of the import engine's capabilities."""

import uuid
from collections import defaultdict
from collections.abc import Callable, Mapping, Sequence
from datetime import date
from typing import Any

from app.exceptions import AlreadyEnrolledError, ConflictException, NotFoundException
from app.importer.types import Cell, EnrollmentTarget, ParsedDataset


def make_dataset(headers: Sequence[str], rows: Sequence[Sequence[Cell]], file_name: str = "data.csv") -> ParsedDataset:
    """Helper to build a dataset without going through a parser."""
    return ParsedDataset(
        headers=tuple(headers),
        rows=tuple(tuple(row) for row in rows),
        file_name=file_name,
    )


class InMemoryRecordStore:
    """Record store keeping entities in dicts, with optional per-row failures."""

    def __init__(self, fail_when: Callable[[str, Mapping[str, Any]], bool] | None = None):
        self.records: dict[str, dict[str, dict[str, Any]]] = defaultdict(dict)
        self.fail_when = fail_when
        self.writes: list[tuple[str, str, str]] = []

    def add(self, kind: str, **data) -> str:
        entity_id = data.pop("id", None) or str(uuid.uuid4())
        self.records[kind][entity_id] = {"id": entity_id, **data}
        return entity_id

    async def create(self, kind: str, data: Mapping[str, Any]) -> str:
        if self.fail_when and self.fail_when(kind, data):
            raise ConflictException(f"Cannot store {data.get('first_name') or data.get('name')}")
        entity_id = str(uuid.uuid4())
        self.records[kind][entity_id] = {"id": entity_id, **data}
        self.writes.append(("create", kind, entity_id))
        return entity_id

    async def update(self, kind: str, entity_id: str, data: Mapping[str, Any]) -> None:
        if entity_id not in self.records[kind]:
            raise NotFoundException(kind)
        if self.fail_when and self.fail_when(kind, data):
            raise ConflictException("Update rejected")
        self.records[kind][entity_id].update(data)
        self.writes.append(("update", kind, entity_id))

    async def exists(self, kind: str, entity_id: str) -> bool:
        return entity_id in self.records[kind]

    async def query(self, kind: str, predicate=None) -> list[Mapping[str, Any]]:
        records = list(self.records[kind].values())
        if predicate is not None:
            records = [r for r in records if predicate(r)]
        return records


class FakeLookupSource:
    """Lookup source over a fixed list, counting remote calls."""

    def __init__(self, items: Sequence[Mapping[str, Any]]):
        self.items = [dict(item) for item in items]
        self.list_calls = 0

    async def list_all(self, tenant_id: str) -> list[Mapping[str, Any]]:
        self.list_calls += 1
        return list(self.items)


class FakeSearchableLookupSource(FakeLookupSource):
    def __init__(self, items: Sequence[Mapping[str, Any]], name_field: str = "name"):
        super().__init__(items)
        self.name_field = name_field
        self.search_calls: list[str] = []

    async def search(self, tenant_id: str, term: str) -> list[Mapping[str, Any]]:
        self.search_calls.append(term)
        needle = term.lower()
        return [item for item in self.items if needle in str(item.get(self.name_field, "")).lower()]


class FakeEnrollmentGateway:
    """Enrollments as sets of student ids per target."""

    def __init__(self, failing_students: set[str] | None = None, crashing_students: set[str] | None = None):
        self.enrolled: dict[EnrollmentTarget, set[str]] = defaultdict(set)
        self.failing_students = failing_students or set()
        self.crashing_students = crashing_students or set()
        self.calls: list[tuple[str, EnrollmentTarget, str, date]] = []

    async def enroll(self, target: EnrollmentTarget, student_id: str, effective_date: date) -> None:
        self.calls.append(("enroll", target, student_id, effective_date))
        if student_id in self.crashing_students:
            raise RuntimeError("connection reset")
        if student_id in self.failing_students:
            raise ConflictException("Course is full")
        if student_id in self.enrolled[target]:
            raise AlreadyEnrolledError(str(target), student_id)
        self.enrolled[target].add(student_id)

    async def unenroll(self, target: EnrollmentTarget, student_id: str, effective_date: date) -> None:
        self.calls.append(("unenroll", target, student_id, effective_date))
        if student_id not in self.enrolled[target]:
            raise NotFoundException("Enrollment")
        self.enrolled[target].discard(student_id)

    async def list_active_enrollments(self, target: EnrollmentTarget, as_of: date) -> list[str]:
        return sorted(self.enrolled[target])


class FakeOccurrenceRoster:
    """Course templates, dated occurrences and source-tagged roster entries."""

    def __init__(self):
        self.course_templates: dict[str, list[str]] = {}
        self.occurrences: dict[str, list[tuple[str, date]]] = defaultdict(list)
        self.entries: dict[tuple[str, str], set[str]] = defaultdict(set)
        self.unavailable = False

    def add_course(self, course_id: str, template_ids: Sequence[str]) -> None:
        self.course_templates[course_id] = list(template_ids)

    def add_occurrence(self, template_id: str, on_date: date) -> str:
        occurrence_id = str(uuid.uuid4())
        self.occurrences[template_id].append((occurrence_id, on_date))
        return occurrence_id

    def students_on(self, occurrence_id: str) -> set[str]:
        return {student for (occ, student), sources in self.entries.items() if occ == occurrence_id and sources}

    async def course_template_ids(self, course_id: str) -> list[str]:
        return list(self.course_templates.get(course_id, []))

    async def future_occurrence_ids(self, template_id: str, from_date: date) -> list[str]:
        return [occ for occ, on_date in self.occurrences[template_id] if on_date >= from_date]

    async def roster_sources(self, occurrence_id: str, student_id: str) -> set[str]:
        return set(self.entries.get((occurrence_id, student_id), set()))

    async def add_entry(self, occurrence_id: str, student_id: str, source: str) -> None:
        if self.unavailable:
            raise RuntimeError("roster store unavailable")
        self.entries[(occurrence_id, student_id)].add(source)

    async def remove_entry(self, occurrence_id: str, student_id: str, source: str) -> None:
        self.entries[(occurrence_id, student_id)].discard(source)
