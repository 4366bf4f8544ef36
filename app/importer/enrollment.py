"""Enroll imported students into courses and class occurrences.

Two modes:

* bulk: every imported student into every chosen target
* mapped: each student into the course/occurrence named on their own row

A course enrollment is also propagated to the roster of every future
occurrence of the course's templates, tagged with the course as its source.
Un-enrolling removes exactly those entries again.
"""

import logging
from collections.abc import Mapping, Sequence
from datetime import date

from app.exceptions import AlreadyEnrolledError, ImportConfigurationError, RosterlyException
from app.importer.capabilities import EnrollmentGateway, OccurrenceRoster
from app.importer.types import (
    EnrollmentFailure,
    EnrollmentOutcome,
    EnrollmentReport,
    EnrollmentTarget,
    ImportResult,
    ProgressCallback,
    StudentCandidate,
    StudentOrigin,
    TargetKind,
    TargetSummary,
)
from app.models.occurrence import course_source
from app.utils.aio import notify, with_timeout

logger = logging.getLogger(__name__)

LINK_FIELDS = {
    TargetKind.COURSE: "course_id",
    TargetKind.OCCURRENCE: "occurrence_id",
}


def candidates_from(result: ImportResult) -> list[StudentCandidate]:
    """Students an import produced or matched, one per entity id."""
    seen: set[str] = set()
    candidates = []
    for rows, origin in (
        (result.success, StudentOrigin.CREATED),
        (result.updated, StudentOrigin.UPDATED),
        (result.skipped_duplicates, StudentOrigin.EXISTING),
    ):
        for row in rows:
            if row.entity_id is None or row.entity_id in seen:
                continue
            seen.add(row.entity_id)
            candidates.append(StudentCandidate(entity_id=row.entity_id, origin=origin, record=row.record))
    return candidates


class OccurrencePropagator:
    """Mirror course membership onto future occurrence rosters."""

    def __init__(self, roster: OccurrenceRoster, *, timeout: float | None = None):
        self.roster = roster
        self.timeout = timeout

    async def _future_occurrences(self, course_id: str, from_date: date) -> list[str]:
        occurrence_ids: list[str] = []
        template_ids = await with_timeout(
            self.roster.course_template_ids(course_id), self.timeout, "Loading course templates"
        )
        for template_id in template_ids:
            occurrence_ids.extend(
                await with_timeout(
                    self.roster.future_occurrence_ids(template_id, from_date),
                    self.timeout,
                    "Loading future occurrences",
                )
            )
        return list(dict.fromkeys(occurrence_ids))

    async def add(self, course_id: str, student_id: str, from_date: date) -> int:
        """Add the student to every future occurrence of the course.

        Returns:
            Number of rosters the student newly joined
        """
        source = course_source(course_id)
        joined = 0
        for occurrence_id in await self._future_occurrences(course_id, from_date):
            sources = await self.roster.roster_sources(occurrence_id, student_id)
            if source in sources:
                continue
            await self.roster.add_entry(occurrence_id, student_id, source)
            if not sources:
                joined += 1
        logger.debug(f"Propagated student {student_id} into {joined} occurrences of course {course_id}")
        return joined

    async def remove(self, course_id: str, student_id: str, from_date: date) -> int:
        """Remove the course's entries for the student from future occurrences.

        Returns:
            Number of rosters the student left entirely
        """
        source = course_source(course_id)
        left = 0
        for occurrence_id in await self._future_occurrences(course_id, from_date):
            sources = await self.roster.roster_sources(occurrence_id, student_id)
            if source not in sources:
                continue
            await self.roster.remove_entry(occurrence_id, student_id, source)
            if sources == {source}:
                left += 1
        return left


class EnrollmentSynchronizer:
    """Enroll students into targets and tally the outcome per target."""

    def __init__(
        self,
        gateway: EnrollmentGateway,
        roster: OccurrenceRoster | None = None,
        *,
        effective_date: date | None = None,
        failure_detail_limit: int = 5,
        timeout: float | None = None,
    ):
        self.gateway = gateway
        self.propagator = OccurrencePropagator(roster, timeout=timeout) if roster is not None else None
        self.effective_date = effective_date or date.today()
        self.failure_detail_limit = failure_detail_limit
        self.timeout = timeout

    async def enroll(self, target: EnrollmentTarget, student_id: str) -> None:
        """Enroll one student, propagating course membership to occurrences.

        Propagation also runs for a student who is already enrolled in the
        course, so an earlier partial run is completed. When propagation of a
        new enrollment fails, the enrollment is withdrawn before the error is
        raised again.

        Raises:
            AlreadyEnrolledError: If the student is already enrolled in the target
        """
        propagate = target.kind == TargetKind.COURSE and self.propagator is not None
        try:
            await with_timeout(
                self.gateway.enroll(target, student_id, self.effective_date),
                self.timeout,
                f"Enrolling into {target}",
            )
        except AlreadyEnrolledError:
            if propagate:
                await self.propagator.add(target.id, student_id, self.effective_date)
            raise
        if not propagate:
            return
        try:
            await self.propagator.add(target.id, student_id, self.effective_date)
        except Exception:
            logger.warning(f"Propagating {student_id} into {target} failed; withdrawing the enrollment")
            await self._withdraw(target, student_id)
            raise

    async def _withdraw(self, target: EnrollmentTarget, student_id: str) -> None:
        try:
            await self.unenroll(target, student_id)
        except Exception:
            logger.exception(f"Could not withdraw the enrollment of {student_id} in {target}")

    async def unenroll(self, target: EnrollmentTarget, student_id: str) -> None:
        """Reverse ``enroll`` as of the effective date."""
        await with_timeout(
            self.gateway.unenroll(target, student_id, self.effective_date),
            self.timeout,
            f"Un-enrolling from {target}",
        )
        if target.kind == TargetKind.COURSE and self.propagator is not None:
            await self.propagator.remove(target.id, student_id, self.effective_date)

    async def _attempt(
        self, target: EnrollmentTarget, candidate: StudentCandidate, summary: TargetSummary
    ) -> EnrollmentOutcome:
        try:
            await self.enroll(target, candidate.entity_id)
        except AlreadyEnrolledError:
            summary.already_enrolled += 1
            return EnrollmentOutcome.ALREADY_ENROLLED
        except Exception as e:
            reason = e.message if isinstance(e, RosterlyException) else f"{type(e).__name__}: {e}"
            if not isinstance(e, RosterlyException):
                logger.exception(f"Enrolling {candidate.entity_id} into {target} failed unexpectedly")
            else:
                logger.warning(f"Enrolling {candidate.entity_id} into {target} failed: {reason}")
            summary.failed_count += 1
            if len(summary.failures) < self.failure_detail_limit:
                summary.failures.append(
                    EnrollmentFailure(
                        student_id=candidate.entity_id,
                        reason=reason,
                        row_number=candidate.record.row_number if candidate.record else None,
                    )
                )
            return EnrollmentOutcome.FAILED
        summary.successful += 1
        return EnrollmentOutcome.ENROLLED

    async def _run(
        self,
        pairs: Sequence[tuple[EnrollmentTarget, StudentCandidate]],
        on_progress: ProgressCallback | None,
    ) -> EnrollmentReport:
        report = EnrollmentReport()
        summaries: dict[EnrollmentTarget, TargetSummary] = {}
        total = len(pairs)
        await notify(on_progress, 0, total)

        for done, (target, candidate) in enumerate(pairs, start=1):
            summary = summaries.get(target)
            if summary is None:
                summary = summaries[target] = TargetSummary(target=target)
                report.details.append(summary)
            outcome = await self._attempt(target, candidate, summary)
            if outcome == EnrollmentOutcome.ENROLLED:
                report.successful_enrollments += 1
            elif outcome == EnrollmentOutcome.ALREADY_ENROLLED:
                report.already_enrolled += 1
            else:
                report.failed += 1
            await notify(on_progress, done, total)

        logger.info(
            f"Enrollment finished: {report.successful_enrollments} enrolled, "
            f"{report.already_enrolled} already enrolled, {report.failed} failed"
        )
        return report

    async def enroll_bulk(
        self,
        targets: Sequence[EnrollmentTarget],
        students: Sequence[StudentCandidate],
        on_progress: ProgressCallback | None = None,
    ) -> EnrollmentReport:
        """Enroll every student into every target."""
        if not targets:
            raise ImportConfigurationError("Choose at least one course or class to enroll into")
        unique_targets = list(dict.fromkeys(targets))
        pairs = [(target, student) for target in unique_targets for student in students]
        return await self._run(pairs, on_progress)

    async def enroll_mapped(
        self,
        students: Sequence[StudentCandidate],
        target_names: Mapping[str, str] | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> EnrollmentReport:
        """Enroll each student into the targets resolved on their own row.

        Students whose row names no target are left out.
        """
        target_names = target_names or {}
        pairs = []
        for student in students:
            if student.record is None:
                continue
            for kind, link in LINK_FIELDS.items():
                target_id = student.record.links.get(link)
                if target_id:
                    target = EnrollmentTarget(kind=kind, id=target_id, name=target_names.get(target_id))
                    pairs.append((target, student))
        return await self._run(pairs, on_progress)

