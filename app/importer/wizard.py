"""The import wizard as an explicit, caller-owned session object.

Steps run strictly forward: upload, column mapping, value mapping (only when
a relational column is mapped), validation, import, then enrollment (only
for profiles that support it). Each forward move checks its gate first.
Going back is allowed up to the import; leaving validation backwards throws
away its result, while the dataset and mappings are kept.
"""

import logging
import time
import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from enum import Enum

from app.exceptions import ImportConfigurationError, ValidationException, WizardStateError
from app.importer.capabilities import DatasetParser, ImportCapabilities
from app.importer.enrollment import EnrollmentSynchronizer, candidates_from
from app.importer.executor import BatchImportExecutor
from app.importer.field_matcher import match_fields
from app.importer.profiles import ImportProfile
from app.importer.similarity import SimilarityScorer
from app.importer.types import (
    ColumnMapping,
    DuplicateDecision,
    EnrollmentReport,
    EnrollmentTarget,
    ImportResult,
    ParsedDataset,
    ProgressCallback,
    ResolvedValue,
    SystemOption,
    ValidationResult,
)
from app.importer.value_resolver import AutoMatchReport, RelationalValueResolver, key_from_path

logger = logging.getLogger(__name__)


class WizardStep(str, Enum):
    UPLOAD = "upload"
    COLUMN_MAPPING = "column_mapping"
    VALUE_MAPPING = "value_mapping"
    VALIDATION = "validation"
    IMPORT = "import"
    ENROLLMENT = "enrollment"


@dataclass(frozen=True)
class WizardOptions:
    batch_size: int = 10
    batch_delay: float = 0.1
    timeout: float | None = 30.0
    min_search_length: int = 2
    failure_detail_limit: int = 5

    @classmethod
    def from_settings(cls, settings) -> "WizardOptions":
        return cls(
            batch_size=settings.import_batch_size,
            batch_delay=settings.import_batch_delay_seconds,
            timeout=settings.import_operation_timeout_seconds,
            min_search_length=settings.import_search_min_term_length,
            failure_detail_limit=settings.import_failure_detail_limit,
        )


class ImportWizardSession:
    """State of one import from upload to enrollment."""

    def __init__(
        self,
        profile: ImportProfile,
        tenant_id: str,
        capabilities: ImportCapabilities,
        *,
        options: WizardOptions | None = None,
        parser: DatasetParser | None = None,
        scorer: SimilarityScorer | None = None,
        session_id: str | None = None,
    ):
        self.id = session_id or str(uuid.uuid4())
        self.profile = profile
        self.tenant_id = tenant_id
        self.capabilities = capabilities
        self.options = options or WizardOptions()
        self.parser = parser
        self.scorer = scorer

        self._step = WizardStep.UPLOAD
        self.dataset: ParsedDataset | None = None
        self.mapping = ColumnMapping()
        self.auto_matched: set[str] = set()
        self.resolver: RelationalValueResolver | None = None
        self.auto_match_report: AutoMatchReport | None = None
        self.validation: ValidationResult | None = None
        self.decisions: dict[int, DuplicateDecision] = {}
        self.import_result: ImportResult | None = None
        self.enrollment_report: EnrollmentReport | None = None
        self._import_started = False
        self.touched_at = time.monotonic()

    # === State ===

    @property
    def step(self) -> WizardStep:
        return self._step

    @property
    def enrollment_enabled(self) -> bool:
        return self.profile.enrollment_capable and self.capabilities.enrollments is not None

    @property
    def needs_value_mapping(self) -> bool:
        return self.resolver is not None and bool(self.resolver.active_fields())

    @property
    def steps(self) -> list[WizardStep]:
        """The steps this session will go through, given the current mapping."""
        steps = [WizardStep.UPLOAD, WizardStep.COLUMN_MAPPING]
        if self.needs_value_mapping:
            steps.append(WizardStep.VALUE_MAPPING)
        steps += [WizardStep.VALIDATION, WizardStep.IMPORT]
        if self.enrollment_enabled:
            steps.append(WizardStep.ENROLLMENT)
        return steps

    def bind(self, capabilities: ImportCapabilities) -> None:
        """Point the session at a fresh set of capabilities."""
        self.capabilities = capabilities
        if self.resolver is not None:
            self.resolver.bind_lookups(capabilities.lookups)
        self.touched_at = time.monotonic()

    def _require(self, *steps: WizardStep) -> None:
        if self._step not in steps:
            allowed = ", ".join(s.value for s in steps)
            raise WizardStateError(f"Not allowed at step '{self._step.value}' (only at: {allowed})")

    def missing_required_fields(self) -> list[str]:
        return [f.label for f in self.profile.required_fields if not self.mapping.is_mapped(f.key)]

    # === Upload ===

    def load_dataset(self, dataset: ParsedDataset) -> None:
        """Start over with a new dataset."""
        self._require(WizardStep.UPLOAD)
        self.dataset = dataset
        self.mapping = ColumnMapping()
        self.auto_matched = set()
        self.resolver = RelationalValueResolver(
            self.tenant_id,
            self.profile.relational_fields,
            dataset,
            self.mapping,
            self.capabilities.lookups,
            min_search_length=self.options.min_search_length,
            timeout=self.options.timeout,
        )
        self.auto_match_report = None
        self.validation = None
        self.decisions = {}

    def upload(self, content: bytes, file_name: str) -> ParsedDataset:
        if self.parser is None:
            raise ImportConfigurationError("No file parser configured")
        self._require(WizardStep.UPLOAD)
        dataset = self.parser.parse(content, file_name)
        self.load_dataset(dataset)
        return dataset

    # === Column mapping ===

    def map_column(self, field: str, column: int | None) -> None:
        self._require(WizardStep.COLUMN_MAPPING)
        if self.profile.descriptor(field) is None:
            raise ValidationException([{"field": field, "message": "Unknown field"}])
        if column is not None and not 0 <= column < len(self.dataset.headers):
            raise ValidationException([{"field": field, "message": f"Column {column} does not exist"}])

        previous = self.mapping.get(field)
        self.mapping.assign(field, column)
        self.auto_matched.discard(field)
        if field in self.profile.relational_fields and previous != column:
            self.resolver.invalidate_field(field)

    def map_custom_field(self, name: str, column: int | None) -> None:
        self._require(WizardStep.COLUMN_MAPPING)
        name = (name or "").strip()
        if not name or self.profile.descriptor(name) is not None:
            raise ValidationException([{"field": name or "custom_field", "message": "Invalid custom field name"}])
        if column is not None and not 0 <= column < len(self.dataset.headers):
            raise ValidationException([{"field": name, "message": f"Column {column} does not exist"}])
        self.mapping.assign_custom(name, column)

    # === Value mapping ===

    async def search_options(self, field: str, term: str) -> list[SystemOption]:
        self._require(WizardStep.VALUE_MAPPING)
        return await self.resolver.search(field, term)

    def set_value_mapping(self, field: str, path: Sequence[str], value: ResolvedValue) -> None:
        self._require(WizardStep.VALUE_MAPPING)
        if not path:
            raise ValidationException([{"field": field, "message": "A value is required"}])
        self.resolver.set_mapping(field, key_from_path(path), value)

    def clear_value_mapping(self, field: str, path: Sequence[str]) -> None:
        self._require(WizardStep.VALUE_MAPPING)
        self.resolver.clear_mapping(field, key_from_path(path))

    # === Validation ===

    async def _validate(self) -> None:
        rows = self.resolver.prepare_rows()
        validator = self.profile.create_validator(self.capabilities.store)
        self.validation = await validator.validate(rows, self.mapping)
        self.decisions = {}

    def set_duplicate_decision(self, row_number: int, decision: DuplicateDecision) -> None:
        """Choose skip or update for a duplicate, by its displayed row number."""
        self._require(WizardStep.VALIDATION, WizardStep.IMPORT)
        if self._import_started:
            raise WizardStateError("The import has already run")
        record = self.validation.find(row_number)
        if record is None or record not in self.validation.duplicates:
            raise ValidationException([{"field": "row", "message": f"Row {row_number} is not a duplicate"}])
        self.decisions[record.ref.source_row_index] = decision

    def set_all_duplicate_decisions(self, decision: DuplicateDecision) -> None:
        self._require(WizardStep.VALIDATION, WizardStep.IMPORT)
        if self._import_started:
            raise WizardStateError("The import has already run")
        for record in self.validation.duplicates:
            self.decisions[record.ref.source_row_index] = decision

    # === Navigation ===

    async def advance(self) -> WizardStep:
        """Move to the next step once the current step's gate is satisfied.

        Raises:
            WizardStateError: If the gate is not satisfied
        """
        step = self._step
        if step == WizardStep.UPLOAD:
            if self.dataset is None:
                raise WizardStateError("Upload a file first")
            self.auto_matched |= match_fields(
                self.dataset.headers, self.profile.fields, self.mapping, self.scorer
            )
            self._step = WizardStep.COLUMN_MAPPING

        elif step == WizardStep.COLUMN_MAPPING:
            missing = self.missing_required_fields()
            if missing:
                raise WizardStateError(f"Map the required fields first: {', '.join(missing)}")
            if self.needs_value_mapping:
                await self.resolver.load_options()
                self.auto_match_report = await self.resolver.auto_match()
                self._step = WizardStep.VALUE_MAPPING
            else:
                await self._validate()
                self._step = WizardStep.VALIDATION

        elif step == WizardStep.VALUE_MAPPING:
            await self._validate()
            self._step = WizardStep.VALIDATION

        elif step == WizardStep.VALIDATION:
            if not self.validation or not self.validation.importable_count:
                raise WizardStateError("There are no valid rows to import")
            self._step = WizardStep.IMPORT

        elif step == WizardStep.IMPORT:
            if self.import_result is None:
                raise WizardStateError("Run the import first")
            if not self.enrollment_enabled:
                raise WizardStateError("The import is complete")
            self._step = WizardStep.ENROLLMENT

        else:
            raise WizardStateError("The wizard is already at its last step")

        logger.info(f"Import session {self.id} ({self.profile.key}): {step.value} -> {self._step.value}")
        return self._step

    def back(self) -> WizardStep:
        """Return to the previous step, keeping the dataset and mappings."""
        if self._step in (WizardStep.UPLOAD, WizardStep.IMPORT, WizardStep.ENROLLMENT):
            raise WizardStateError(f"Cannot go back from step '{self._step.value}'")
        steps = self.steps
        previous = steps[steps.index(self._step) - 1]
        if self._step == WizardStep.VALIDATION:
            self.validation = None
            self.decisions = {}
        logger.info(f"Import session {self.id} ({self.profile.key}): {self._step.value} -> {previous.value}")
        self._step = previous
        return previous

    # === Import and enrollment ===

    async def run_import(self, on_progress: ProgressCallback | None = None) -> ImportResult:
        """Import the validated rows. Runs at most once per session."""
        self._require(WizardStep.IMPORT)
        if self._import_started:
            raise WizardStateError("This file has already been imported")
        self._import_started = True

        executor = BatchImportExecutor(
            self.capabilities.store,
            self.profile.key,
            batch_size=self.options.batch_size,
            batch_delay=self.options.batch_delay,
            timeout=self.options.timeout,
        )
        self.import_result = await executor.execute(self.validation, self.decisions, on_progress)
        return self.import_result

    def target_names(self) -> dict[str, str]:
        names = {}
        for field in ("course_id", "occurrence_id"):
            if field in self.profile.relational_fields and self.resolver is not None:
                names.update({o.id: o.name for o in self.resolver.options(field)})
        return names

    async def run_enrollment(
        self,
        targets: Sequence[EnrollmentTarget] | None = None,
        *,
        effective_date: date | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> EnrollmentReport:
        """Enroll the imported students.

        With ``targets`` every student goes into every target; without, each
        student goes into the course or class named on their row.
        """
        self._require(WizardStep.ENROLLMENT)
        synchronizer = EnrollmentSynchronizer(
            self.capabilities.enrollments,
            self.capabilities.roster,
            effective_date=effective_date,
            failure_detail_limit=self.options.failure_detail_limit,
            timeout=self.options.timeout,
        )
        students = candidates_from(self.import_result)
        if targets:
            self.enrollment_report = await synchronizer.enroll_bulk(targets, students, on_progress)
        else:
            self.enrollment_report = await synchronizer.enroll_mapped(
                students, self.target_names(), on_progress
            )
        return self.enrollment_report
