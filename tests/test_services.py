"""Service tests against the SQLite test database."""

import uuid
from datetime import date, timedelta

import pytest
from sqlalchemy import select

from app.exceptions import AlreadyEnrolledError, NotFoundException, TenantContextError
from app.importer import WizardOptions, WizardStep
from app.importer.enrollment import EnrollmentSynchronizer
from app.importer.executor import BatchImportExecutor
from app.importer.types import EnrollmentTarget, RowRecord, RowRef, TargetKind, ValidationResult
from app.models import CourseEnrollment, EnrollmentStatus, ImportStatus, Student
from app.services.capabilities import (
    SqlEnrollmentGateway,
    SqlOccurrenceRoster,
    SqlRecordStore,
    build_lookup_sources,
)
from app.services.course_service import CourseService
from app.services.enrollment_service import EnrollmentService
from app.services.import_service import ImportService
from app.services.occurrence_service import OccurrenceService
from app.services.template_service import TemplateService


def _student_record(index: int, **extracted) -> RowRecord:
    return RowRecord(ref=RowRef.for_index(index), raw=(), extracted=extracted)


async def _create_student(db, first_name: str = "Dana", phone: str = "052-123-4567") -> str:
    return await SqlRecordStore(db).create(
        "students", {"first_name": first_name, "last_name": "Levi", "phone": phone}
    )


async def _roster_sources(db, occurrence_id, student_id) -> set[str]:
    return await SqlOccurrenceRoster(db).roster_sources(str(occurrence_id), str(student_id))


# =============================================================================
# Record store
# =============================================================================


async def test_record_store_create_update_query(db, seed) -> None:
    store = SqlRecordStore(db)

    student_id = await _create_student(db)
    await store.update("students", student_id, {"last_name": "Bar", "created_at": None, "tenant_id": None})
    records = await store.query("students", lambda r: r["phone"] == "052-123-4567")

    assert [r["last_name"] for r in records] == ["Bar"]
    assert records[0]["tenant_id"] == seed.tenant.id
    assert await store.exists("students", student_id)
    assert not await store.exists("students", str(uuid.uuid4()))
    with pytest.raises(NotFoundException):
        await store.query("invoices")


async def test_failed_row_does_not_poison_the_batch(db, seed) -> None:
    """Test a row that fails inside its savepoint leaves the others committed."""
    validation = ValidationResult(
        valid=(
            _student_record(0, first_name="Dana", phone="052-123-4567"),
            _student_record(1, first_name="Omer", teacher_id=str(uuid.uuid4())),
            _student_record(2, first_name="Noa", teacher_id=str(seed.teacher.id)),
        )
    )

    result = await BatchImportExecutor(SqlRecordStore(db), "students", batch_delay=0).execute(validation)
    await db.commit()

    assert len(result.success) == 2
    assert result.failed[0].error == "Teacher not found"
    names = (await db.execute(select(Student.first_name).order_by(Student.first_name))).scalars().all()
    assert names == ["Dana", "Noa"]


async def test_course_store_keeps_templates(db, seed) -> None:
    store = SqlRecordStore(db)
    today = date.today()

    course_id = await store.create(
        "courses",
        {
            "name": "Summer",
            "start_date": today,
            "end_date": today + timedelta(days=60),
            "template_ids": [str(seed.template.id)],
        },
    )
    course = await CourseService().get_course(db, uuid.UUID(course_id))

    assert course.template_ids == [seed.template.id]
    assert course.schedule[0]["start_time"] == "17:00"


# =============================================================================
# Templates
# =============================================================================


async def test_new_template_gets_an_automatic_course(db, seed) -> None:
    template = await TemplateService().create_template(
        db,
        {
            "name": "Jazz",
            "teacher_id": str(seed.teacher.id),
            "branch_id": str(seed.branch.id),
            "location_id": str(seed.location.id),
            "day_of_week": 2,
            "start_time": "18:00",
            "duration": 60,
            "price": 80,
        },
    )

    courses = await CourseService().get_courses_for_template(db, template.id)

    assert len(courses) == 1
    assert courses[0].name == "רק Jazz (*אוטומטי)"
    assert courses[0].auto_created
    assert courses[0].price == 80
    assert courses[0].end_date - courses[0].start_date == timedelta(days=365)


# =============================================================================
# Enrollment
# =============================================================================


async def test_course_enrollment_propagates_and_reverses(db, seed) -> None:
    """Test enrolling fills future rosters and un-enrolling empties them again."""
    student_id = await _create_student(db)
    target = EnrollmentTarget(TargetKind.COURSE, str(seed.course.id), seed.course.name)
    synchronizer = EnrollmentSynchronizer(SqlEnrollmentGateway(db), SqlOccurrenceRoster(db))

    await synchronizer.enroll(target, student_id)

    source = f"course:{seed.course.id}"
    for occurrence in seed.future_occurrences:
        assert await _roster_sources(db, occurrence.id, student_id) == {source}
    assert await _roster_sources(db, seed.past_occurrence.id, student_id) == set()
    with pytest.raises(AlreadyEnrolledError):
        await synchronizer.enroll(target, student_id)

    await synchronizer.unenroll(target, student_id)

    for occurrence in seed.future_occurrences:
        assert await _roster_sources(db, occurrence.id, student_id) == set()
    enrollment = (await db.execute(select(CourseEnrollment))).scalar_one()
    # Ended before it started, so it is cancelled
    assert enrollment.status == EnrollmentStatus.CANCELLED.value
    assert enrollment.effective_to == date.today() - timedelta(days=1)


async def test_unenroll_ends_enrollment_the_day_before(db, seed) -> None:
    student_id = uuid.UUID(await _create_student(db))
    service = EnrollmentService()
    today = date.today()
    await service.enroll_in_course(db, seed.course.id, student_id, today - timedelta(days=10))

    enrollment = await service.unenroll_from_course(db, seed.course.id, student_id, today)

    assert enrollment.effective_to == today - timedelta(days=1)
    assert enrollment.status == EnrollmentStatus.ACTIVE.value
    assert not enrollment.is_active_on(today)
    assert await service.get_active_enrollment(db, seed.course.id, student_id, today) is None
    with pytest.raises(NotFoundException):
        await service.unenroll_from_course(db, seed.course.id, student_id, today)


async def test_direct_entry_survives_course_unenrollment(db, seed) -> None:
    student_id = await _create_student(db)
    occurrence = seed.future_occurrences[0]
    gateway = SqlEnrollmentGateway(db)
    direct = EnrollmentTarget(TargetKind.OCCURRENCE, str(occurrence.id))
    course = EnrollmentTarget(TargetKind.COURSE, str(seed.course.id))
    synchronizer = EnrollmentSynchronizer(gateway, SqlOccurrenceRoster(db))

    await synchronizer.enroll(direct, student_id)
    with pytest.raises(AlreadyEnrolledError):
        await synchronizer.enroll(direct, student_id)
    await synchronizer.enroll(course, student_id)
    await synchronizer.unenroll(course, student_id)

    assert await _roster_sources(db, occurrence.id, student_id) == {"direct"}
    assert await gateway.list_active_enrollments(direct, date.today()) == [student_id]

    await synchronizer.unenroll(direct, student_id)
    assert await gateway.list_active_enrollments(direct, date.today()) == []


async def test_regenerate_roster_from_enrollments(db, seed) -> None:
    student_id = uuid.UUID(await _create_student(db))
    await EnrollmentService().enroll_in_course(db, seed.course.id, student_id, date.today())
    occurrences = OccurrenceService()
    occurrence_id = seed.future_occurrences[0].id

    assert await occurrences.regenerate_roster(db, occurrence_id) == {"added": 1, "removed": 0}
    assert await occurrences.regenerate_roster(db, occurrence_id) == {"added": 0, "removed": 0}
    assert await occurrences.get_roster(db, occurrence_id) == [student_id]


# =============================================================================
# Lookups
# =============================================================================


async def test_lookup_sources(db, seed, tenant_id) -> None:
    lookups = build_lookup_sources(db)

    teachers = await lookups["teachers"].list_all(str(tenant_id))
    locations = await lookups["locations"].list_all(str(tenant_id))
    occurrences = await lookups["occurrences"].search(str(tenant_id), "ball")

    assert [(t["first_name"], t["last_name"]) for t in teachers] == [("Dana", "Levi")]
    assert locations[0]["branch_id"] == seed.branch.id
    assert [o["id"] for o in occurrences] == [o.id for o in seed.future_occurrences]
    assert occurrences[0]["display_name"].startswith("Ballet - ")


async def test_lookup_sources_check_the_tenant(db, seed) -> None:
    with pytest.raises(TenantContextError):
        await build_lookup_sources(db)["branches"].list_all(str(uuid.uuid4()))


# =============================================================================
# Import service
# =============================================================================


STUDENT_CSV = (
    "Full Name,Mobile,Birth Year,Course\n"
    "Dana Levi,0521234567,2015,Intro A\n"
    "Omer Cohen,0527654321,2016,Intro A\n"
    "No Phone,,2014,Intro A\n"
).encode("utf-8")


@pytest.fixture
def service() -> ImportService:
    return ImportService(options=WizardOptions(batch_size=2, batch_delay=0, timeout=5.0))


async def test_import_job_lifecycle(db, seed, service) -> None:
    """Test upload, import and mapped enrollment through the service."""
    job, session = await service.create_job(db, "students.csv", "students", STUDENT_CSV)
    assert session.step == WizardStep.COLUMN_MAPPING
    assert job.total_rows == 3
    assert job.status == ImportStatus.PENDING.value

    assert await session.advance() == WizardStep.VALUE_MAPPING
    assert session.auto_match_report.unresolved == {}
    assert await session.advance() == WizardStep.VALIDATION
    assert await session.advance() == WizardStep.IMPORT

    job, result = await service.run_import(db, job.id)
    await db.commit()

    assert job.status == ImportStatus.COMPLETED.value
    assert job.success_count == 2
    assert job.error_count == 1
    assert job.errors[0]["row"] == 4
    assert job.column_mapping["fields"]["course_id"] == 3

    assert await session.advance() == WizardStep.ENROLLMENT
    report = await service.run_enrollment(db, job.id)
    await db.commit()

    assert report.successful_enrollments == 2
    assert job.enrollment_summary["failed"] == 0
    roster = await OccurrenceService().get_roster(db, seed.future_occurrences[0].id)
    assert {str(s) for s in roster} == {row.entity_id for row in result.success}


async def test_import_jobs_are_listed_per_tenant(db, seed, service) -> None:
    await service.create_job(db, "a.csv", "students", STUDENT_CSV)
    await service.create_job(db, "b.csv", "courses", b"Course name,Start date,End date\nIntro,2026-09-01,2027-06-30\n")
    await db.commit()

    jobs, total = await service.list_jobs(db, page=1, page_size=1)

    assert total == 2
    assert len(jobs) == 1


async def test_unknown_job_and_expired_sessions(db, seed) -> None:
    service = ImportService(session_ttl_seconds=0)
    job, _ = await service.create_job(db, "a.csv", "students", STUDENT_CSV)

    with pytest.raises(NotFoundException):
        await service.get_job(db, uuid.uuid4())
    with pytest.raises(NotFoundException, match="Import session"):
        await service.get_session(db, job.id)
