"""Ingest workflow tying the extraction client to the record store."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from .errors import DuplicateKeyError, PersistenceError, ValidationFailedError
from .extraction import ExtractionClient
from .schemas import ExtractedFields, ExtractionResult, ExtractionSource, IdentityRecord, RecordInput
from .store import RecordStore
from .synthetic import generate_id_number

logger = logging.getLogger(__name__)


@dataclass
class SaveOutcome:
    """A freshly saved record and the most recent records after the save."""

    record: IdentityRecord
    recent: List[IdentityRecord] = field(default_factory=list)


@dataclass
class IngestResult:
    """Outcome of extract-and-persist; ``record`` is ``None`` when not persisted."""

    fields: ExtractedFields
    source: ExtractionSource
    record: Optional[IdentityRecord] = None

    @property
    def persisted(self) -> bool:
        return self.record is not None


def _as_record_input(fields: ExtractedFields) -> RecordInput:
    return RecordInput(
        full_name=fields.full_name or "",
        id_number=fields.id_number or "",
        date_of_birth=fields.date_of_birth or "",
        expiry_date=fields.expiry_date,
        address=fields.address,
    )


class IngestWorkflow:
    """Extract fields from images and save reviewed records."""

    def __init__(
        self,
        extractor: ExtractionClient,
        store: RecordStore,
        *,
        recent_limit: int = 5,
        regenerate_duplicate_ids: bool = False,
    ) -> None:
        self.extractor = extractor
        self.store = store
        self.recent_limit = recent_limit
        self.regenerate_duplicate_ids = regenerate_duplicate_ids

    def extract(self, image: str) -> ExtractionResult:
        """Extract fields without saving; the caller saves after review."""

        return self.extractor.extract(image)

    def ingest(self, image: str) -> IngestResult:
        """Extract fields and try to save them straight away.

        Saving problems never reach the caller: the extracted fields are
        returned unsaved instead.
        """

        result = self.extractor.extract(image)
        record_input = _as_record_input(result.fields)

        try:
            record = self._insert_for_ingest(record_input)
        except ValidationFailedError as exc:
            logger.warning("Extracted fields incomplete, not saving: %s", exc)
            record = None
        except (DuplicateKeyError, PersistenceError) as exc:
            logger.warning("Could not save extracted record, returning it unsaved: %s", exc)
            record = None

        return IngestResult(fields=result.fields, source=result.source, record=record)

    def _insert_for_ingest(self, record_input: RecordInput) -> IdentityRecord:
        try:
            return self.store.insert(record_input)
        except DuplicateKeyError:
            if not self.regenerate_duplicate_ids:
                raise
            replacement = generate_id_number()
            logger.warning(
                "ID number %s already saved, retrying once with generated number %s",
                record_input.id_number,
                replacement,
            )
            return self.store.insert(record_input.model_copy(update={"id_number": replacement}))

    def save(self, record_input: RecordInput) -> SaveOutcome:
        """Validate, check for duplicates and save a reviewed record.

        Raises :class:`ValidationFailedError` naming the blank required
        fields, :class:`DuplicateKeyError` carrying the existing record and
        :class:`PersistenceError` for any other storage failure.
        """

        cleaned = record_input.cleaned()
        missing = cleaned.missing_fields()
        if missing:
            raise ValidationFailedError(missing)

        # Advisory only; the store's own constraint decides on a race.
        existing = self.store.find_by_id_number(cleaned.id_number)
        if existing is not None:
            raise DuplicateKeyError(cleaned.id_number, existing)

        record = self.store.insert(cleaned)
        return SaveOutcome(record=record, recent=self.store.list_recent(self.recent_limit))

    def list_records(self) -> List[IdentityRecord]:
        return self.store.list_all()
