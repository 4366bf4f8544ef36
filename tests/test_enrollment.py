"""Unit tests for enrollment and roster propagation."""

from datetime import date, timedelta

import pytest

from app.exceptions import AlreadyEnrolledError, ImportConfigurationError
from app.importer.enrollment import EnrollmentSynchronizer, OccurrencePropagator, candidates_from
from app.importer.types import (
    EnrollmentTarget,
    ImportedRow,
    ImportResult,
    RowRecord,
    RowRef,
    StudentCandidate,
    StudentOrigin,
    TargetKind,
)

from tests.fakes import FakeEnrollmentGateway

TODAY = date(2026, 10, 19)

INTRO = EnrollmentTarget(TargetKind.COURSE, "c-intro-a", "Intro A")
ADVANCED = EnrollmentTarget(TargetKind.COURSE, "c-advanced", "Advanced Ballet")


def _candidate(student_id: str, index: int = 0, **links) -> StudentCandidate:
    record = RowRecord(ref=RowRef.for_index(index), raw=(), extracted={}, links=links)
    return StudentCandidate(entity_id=student_id, origin=StudentOrigin.CREATED, record=record)


@pytest.fixture
def course_roster(roster):
    """Intro A runs Ballet and Jazz, with one past and two future Ballet classes."""
    roster.add_course("c-intro-a", ["tpl-ballet", "tpl-jazz"])
    roster.add_course("c-advanced", ["tpl-ballet"])
    roster.past = roster.add_occurrence("tpl-ballet", TODAY - timedelta(days=7))
    roster.ballet = [
        roster.add_occurrence("tpl-ballet", TODAY + timedelta(days=offset)) for offset in (0, 7)
    ]
    roster.jazz = roster.add_occurrence("tpl-jazz", TODAY + timedelta(days=3))
    return roster


def _synchronizer(gateway, roster, **kwargs) -> EnrollmentSynchronizer:
    return EnrollmentSynchronizer(gateway, roster, effective_date=TODAY, **kwargs)


# =============================================================================
# Candidates
# =============================================================================


def test_candidates_from_import_result() -> None:
    """Test created, updated and skipped rows become candidates once each."""
    rec = RowRecord(ref=RowRef.for_index(0), raw=(), extracted={})
    result = ImportResult(
        success=(ImportedRow(rec, "s-1"),),
        updated=(ImportedRow(rec, "s-2"),),
        failed=(ImportedRow(rec, error="boom"),),
        skipped_duplicates=(ImportedRow(rec, "s-3"), ImportedRow(rec, "s-1")),
    )

    candidates = candidates_from(result)

    assert [(c.entity_id, c.origin) for c in candidates] == [
        ("s-1", StudentOrigin.CREATED),
        ("s-2", StudentOrigin.UPDATED),
        ("s-3", StudentOrigin.EXISTING),
    ]


# =============================================================================
# Propagation
# =============================================================================


async def test_course_enrollment_propagates_to_future_occurrences(gateway, course_roster) -> None:
    await _synchronizer(gateway, course_roster).enroll(INTRO, "s-1")

    assert gateway.enrolled[INTRO] == {"s-1"}
    for occurrence_id in [*course_roster.ballet, course_roster.jazz]:
        assert course_roster.students_on(occurrence_id) == {"s-1"}
    assert course_roster.students_on(course_roster.past) == set()


async def test_unenroll_keeps_entries_from_other_sources(gateway, course_roster) -> None:
    """Test un-enrolling removes only what the course added."""
    direct_occurrence = course_roster.ballet[1]
    await course_roster.add_entry(direct_occurrence, "s-1", "direct")
    synchronizer = _synchronizer(gateway, course_roster)
    await synchronizer.enroll(INTRO, "s-1")
    await synchronizer.enroll(ADVANCED, "s-1")

    await synchronizer.unenroll(INTRO, "s-1")

    assert "s-1" not in gateway.enrolled[INTRO]
    assert course_roster.students_on(course_roster.jazz) == set()
    assert await course_roster.roster_sources(course_roster.ballet[0], "s-1") == {"course:c-advanced"}
    assert await course_roster.roster_sources(direct_occurrence, "s-1") == {"direct", "course:c-advanced"}


async def test_propagator_counts_new_rosters_only(course_roster) -> None:
    propagator = OccurrencePropagator(course_roster)
    await course_roster.add_entry(course_roster.ballet[0], "s-1", "direct")

    assert await propagator.add("c-intro-a", "s-1", TODAY) == 2
    assert await propagator.add("c-intro-a", "s-1", TODAY) == 0
    assert await propagator.remove("c-intro-a", "s-1", TODAY) == 2


async def test_occurrence_enrollment_does_not_propagate(gateway, course_roster) -> None:
    target = EnrollmentTarget(TargetKind.OCCURRENCE, course_roster.jazz)
    await _synchronizer(gateway, course_roster).enroll(target, "s-1")

    assert gateway.enrolled[target] == {"s-1"}
    assert all(not sources for sources in course_roster.entries.values())


# =============================================================================
# Bulk enrollment
# =============================================================================


async def test_bulk_enrollment_counts_already_enrolled(gateway, course_roster) -> None:
    """Test a student enrolled twice is counted once as already enrolled."""
    synchronizer = _synchronizer(gateway, course_roster)
    await synchronizer.enroll(INTRO, "s-1")

    report = await synchronizer.enroll_bulk([INTRO, ADVANCED, INTRO], [_candidate("s-1"), _candidate("s-2")])

    assert report.successful_enrollments == 3
    assert report.already_enrolled == 1
    assert report.failed == 0
    assert report.total == 4
    assert [summary.target for summary in report.details] == [INTRO, ADVANCED]
    assert report.details[0].already_enrolled == 1
    assert gateway.enrolled[INTRO] == {"s-1", "s-2"}


async def test_bulk_enrollment_requires_a_target(gateway, roster) -> None:
    with pytest.raises(ImportConfigurationError):
        await _synchronizer(gateway, roster).enroll_bulk([], [_candidate("s-1")])


async def test_failure_details_are_capped(course_roster) -> None:
    students = [f"s-{i}" for i in range(4)]
    gateway = FakeEnrollmentGateway(failing_students=set(students[:3]), crashing_students={students[3]})
    synchronizer = _synchronizer(gateway, course_roster, failure_detail_limit=2)

    report = await synchronizer.enroll_bulk(
        [INTRO], [_candidate(student, index) for index, student in enumerate(students)]
    )
    summary = report.details[0]

    assert report.failed == 4
    assert summary.failed_count == 4
    assert len(summary.failures) == 2
    assert summary.failures[0].reason == "Course is full"
    assert summary.failures[0].row_number == 2
    assert course_roster.students_on(course_roster.jazz) == set()


async def test_unexpected_errors_are_generic_failures(course_roster) -> None:
    gateway = FakeEnrollmentGateway(crashing_students={"s-1"})

    report = await _synchronizer(gateway, course_roster).enroll_bulk([INTRO], [_candidate("s-1")])

    assert report.failed == 1
    assert report.details[0].failures[0].reason == "RuntimeError: connection reset"


async def test_failed_propagation_withdraws_the_enrollment(gateway, course_roster) -> None:
    """Test a course enrollment never outlives a failed roster update."""
    course_roster.unavailable = True
    synchronizer = _synchronizer(gateway, course_roster)

    report = await synchronizer.enroll_bulk([INTRO], [_candidate("s-1")])

    assert report.failed == 1
    assert report.details[0].failures[0].reason == "RuntimeError: roster store unavailable"
    assert gateway.enrolled[INTRO] == set()

    course_roster.unavailable = False
    report = await synchronizer.enroll_bulk([INTRO], [_candidate("s-1")])

    assert report.successful_enrollments == 1
    assert gateway.enrolled[INTRO] == {"s-1"}
    assert course_roster.students_on(course_roster.jazz) == {"s-1"}


async def test_already_enrolled_student_is_propagated(gateway, course_roster) -> None:
    """Test a rerun fills rosters for an enrollment made without them."""
    gateway.enrolled[INTRO].add("s-1")

    report = await _synchronizer(gateway, course_roster).enroll_bulk([INTRO], [_candidate("s-1")])

    assert report.already_enrolled == 1
    assert course_roster.students_on(course_roster.jazz) == {"s-1"}
    assert course_roster.students_on(course_roster.ballet[1]) == {"s-1"}
    assert course_roster.students_on(course_roster.past) == set()


async def test_progress_callback(gateway, roster) -> None:
    calls = []
    await _synchronizer(gateway, roster).enroll_bulk(
        [INTRO], [_candidate("s-1"), _candidate("s-2")], on_progress=lambda d, t: calls.append((d, t))
    )
    assert calls == [(0, 2), (1, 2), (2, 2)]


# =============================================================================
# Mapped enrollment
# =============================================================================


async def test_mapped_enrollment_uses_row_links(gateway, course_roster) -> None:
    """Test each student goes into the course and class named on their row."""
    students = [
        _candidate("s-1", 0, course_id="c-intro-a"),
        _candidate("s-2", 1, course_id="c-advanced", occurrence_id="o-jazz-1"),
        _candidate("s-3", 2),
        StudentCandidate(entity_id="s-4", origin=StudentOrigin.EXISTING),
    ]

    report = await _synchronizer(gateway, course_roster).enroll_mapped(
        students, target_names={"c-intro-a": "Intro A"}
    )

    occurrence = EnrollmentTarget(TargetKind.OCCURRENCE, "o-jazz-1")
    assert report.successful_enrollments == 3
    assert gateway.enrolled[INTRO] == {"s-1"}
    assert gateway.enrolled[ADVANCED] == {"s-2"}
    assert gateway.enrolled[occurrence] == {"s-2"}
    assert report.details[0].target.name == "Intro A"


async def test_gateway_reports_double_enrollment(gateway) -> None:
    await gateway.enroll(INTRO, "s-1", TODAY)
    with pytest.raises(AlreadyEnrolledError) as exc_info:
        await gateway.enroll(INTRO, "s-1", TODAY)
    assert exc_info.value.code == "already_enrolled"
