"""Interfaces the import engine depends on.

The engine only talks to storage through these protocols. The SQLAlchemy
implementations live in ``app.services.capabilities``; tests use in-memory
ones.
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Protocol, runtime_checkable

from app.importer.types import EnrollmentTarget, ParsedDataset


class DatasetParser(Protocol):
    def parse(self, content: bytes, file_name: str) -> ParsedDataset:
        """Turn an uploaded file into a dataset, raising DatasetError if it cannot."""
        ...


class LookupSource(Protocol):
    async def list_all(self, tenant_id: str) -> list[Mapping[str, Any]]:
        """Get every entity of this kind for the tenant, with an ``id`` key."""
        ...


@runtime_checkable
class SearchableLookupSource(LookupSource, Protocol):
    async def search(self, tenant_id: str, term: str) -> list[Mapping[str, Any]]:
        """Get the entities whose display name matches ``term``."""
        ...


class RecordStore(Protocol):
    async def create(self, kind: str, data: Mapping[str, Any]) -> str:
        """Create an entity and return its id."""
        ...

    async def update(self, kind: str, entity_id: str, data: Mapping[str, Any]) -> None:
        ...

    async def exists(self, kind: str, entity_id: str) -> bool:
        ...

    async def query(
        self,
        kind: str,
        predicate: Callable[[Mapping[str, Any]], bool] | None = None,
    ) -> list[Mapping[str, Any]]:
        ...


class EnrollmentGateway(Protocol):
    async def enroll(self, target: EnrollmentTarget, student_id: str, effective_date: date) -> None:
        """Enroll a student, raising AlreadyEnrolledError if they already are."""
        ...

    async def unenroll(self, target: EnrollmentTarget, student_id: str, effective_date: date) -> None:
        ...

    async def list_active_enrollments(self, target: EnrollmentTarget, as_of: date) -> list[str]:
        """Get the ids of students actively enrolled in the target on a date."""
        ...


class OccurrenceRoster(Protocol):
    """Per-occurrence rosters that course enrollments propagate into.

    Entries are tagged with a source so a student added by a course can be
    removed again without touching entries that came from elsewhere.
    """

    async def course_template_ids(self, course_id: str) -> list[str]:
        ...

    async def future_occurrence_ids(self, template_id: str, from_date: date) -> list[str]:
        ...

    async def roster_sources(self, occurrence_id: str, student_id: str) -> set[str]:
        ...

    async def add_entry(self, occurrence_id: str, student_id: str, source: str) -> None:
        ...

    async def remove_entry(self, occurrence_id: str, student_id: str, source: str) -> None:
        ...


@dataclass
class ImportCapabilities:
    """The set of capabilities a wizard session runs against.

    A session keeps plain data only, so the API rebinds a fresh set (bound to
    the request's database session) before every call.
    """

    store: RecordStore
    lookups: Mapping[str, LookupSource] = field(default_factory=dict)
    enrollments: EnrollmentGateway | None = None
    roster: OccurrenceRoster | None = None
