"""Pydantic models used by the ID scanner API."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

ExtractionSource = Literal["model", "simulated"]

# Field names the extraction prompt asks for, in the order they are shown.
FIELD_NAMES = ("fullName", "idNumber", "dateOfBirth", "expiryDate", "address")


class _CamelModel(BaseModel):
    """Base model serialising snake_case attributes as camelCase JSON keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ExtractedFields(_CamelModel):
    """Identity fields read from a document image; any of them may be missing."""

    full_name: Optional[str] = Field(None, description="Holder's full name.")
    id_number: Optional[str] = Field(None, description="Document number printed on the ID.")
    date_of_birth: Optional[str] = Field(
        None, description="Date of birth, formatted as YYYY-MM-DD where possible."
    )
    expiry_date: Optional[str] = Field(None, description="Document expiry date.")
    address: Optional[str] = Field(None, description="Address printed on the document.")


class ExtractionResult(BaseModel):
    """Extracted fields together with where they came from."""

    fields: ExtractedFields
    source: ExtractionSource = "model"

    @property
    def simulated(self) -> bool:
        return self.source == "simulated"


class ExtractionRequest(BaseModel):
    """Body accepted by the ``/extract`` and ``/ingest`` endpoints."""

    image: Optional[str] = Field(
        None,
        description="Base64 encoded image, optionally wrapped in a data URL.",
    )


class ExtractionResponse(ExtractedFields):
    """Response of the extraction endpoints: the five fields plus their origin."""

    source: ExtractionSource = Field(
        "model",
        description="``simulated`` when the fields were generated locally instead of read.",
    )

    @classmethod
    def from_result(cls, result: ExtractionResult) -> "ExtractionResponse":
        return cls(**result.fields.model_dump(), source=result.source)


class RecordInput(_CamelModel):
    """Field values submitted for saving after the user reviewed them."""

    full_name: str = ""
    id_number: str = ""
    date_of_birth: str = ""
    expiry_date: Optional[str] = None
    address: Optional[str] = None

    def missing_fields(self) -> List[str]:
        """Return the labels of required fields left blank, in display order."""

        labels = (
            ("Full Name", self.full_name),
            ("ID Number", self.id_number),
            ("Date of Birth", self.date_of_birth),
        )
        return [label for label, value in labels if not (value or "").strip()]

    def cleaned(self) -> "RecordInput":
        """Return a copy with the ID number trimmed and blank optionals nulled."""

        return RecordInput(
            full_name=self.full_name,
            id_number=(self.id_number or "").strip(),
            date_of_birth=self.date_of_birth,
            expiry_date=self.expiry_date or None,
            address=self.address or None,
        )


class IdentityRecord(_CamelModel):
    """A persisted identity record."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )

    id: int
    full_name: str
    id_number: str
    date_of_birth: str
    expiry_date: Optional[str] = None
    address: Optional[str] = None
    photo_url: Optional[str] = None
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def created_at_as_utc(cls, value: datetime) -> datetime:
        # SQLite hands back naive values; they are stored in UTC.
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class RecordListResponse(BaseModel):
    """Envelope returned by ``GET /records/list``."""

    records: List[IdentityRecord]
    count: int


class SaveResponse(BaseModel):
    """Envelope returned after a successful save."""

    record: IdentityRecord
    recent: List[IdentityRecord] = Field(default_factory=list)


class IngestResponse(BaseModel):
    """Result of the extract-and-persist endpoint."""

    persisted: bool
    source: ExtractionSource
    fields: ExtractedFields
    record: Optional[IdentityRecord] = None
