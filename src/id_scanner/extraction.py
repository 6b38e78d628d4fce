"""Field extraction from ID document images through a multimodal model.

The client sends the image together with a fixed instruction prompt to the
OpenAI chat completions API, asks for a JSON object and reshapes the answer
into :class:`~id_scanner.schemas.ExtractedFields`.  Any failure along the way
is logged and replaced by locally generated data so the review form can
always be filled; the result's ``source`` tells the two cases apart.
"""

from __future__ import annotations

import base64
import binascii
import io
import json
import logging
import random
from typing import Any, Mapping, Optional

from PIL import Image, UnidentifiedImageError

from .errors import ExternalServiceError, MissingInputError
from .schemas import FIELD_NAMES, ExtractedFields, ExtractionResult
from .synthetic import generate_simulated_fields

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o"
DEFAULT_MAX_TOKENS = 1000
DEFAULT_MEDIA_TYPE = "image/jpeg"

SYSTEM_PROMPT = (
    "You are an expert at extracting information from ID documents. Extract all "
    "relevant personal information from the ID image provided, including: full name, "
    "ID number, date of birth, expiry date, and address. Return ONLY a JSON object "
    "with the fields: fullName, idNumber, dateOfBirth, expiryDate, address. If you "
    "can't read some information, put null for that field. Format dates as "
    "YYYY-MM-DD if possible. DO NOT include explanatory text."
)

USER_PROMPT = (
    "Extract all information from this ID document. Return as JSON with fields: "
    "fullName, idNumber, dateOfBirth, expiryDate, address. No extra text."
)

# Only the leading bytes are needed to recognise the image format.
_SNIFF_CHARS = 4096


def _sniff_media_type(encoded: str) -> str:
    """Guess the MIME type of a base64 payload, defaulting to JPEG."""

    head = encoded[:_SNIFF_CHARS]
    head = head[: len(head) - len(head) % 4]
    try:
        raw = base64.b64decode(head, validate=False)
    except (binascii.Error, ValueError):
        return DEFAULT_MEDIA_TYPE

    try:
        with Image.open(io.BytesIO(raw)) as img:
            fmt = img.format
    except (UnidentifiedImageError, OSError):
        return DEFAULT_MEDIA_TYPE

    return Image.MIME.get(fmt or "", DEFAULT_MEDIA_TYPE)


def to_data_url(image: str) -> str:
    """Return ``image`` as a data URL, adding the prefix when it is absent."""

    if image is None or not image.strip():
        raise MissingInputError("Image data is required.")

    payload = image.strip()
    if payload.startswith("data:"):
        return payload
    return f"data:{_sniff_media_type(payload)};base64,{payload}"


def encode_image_bytes(image_bytes: bytes, content_type: Optional[str] = None) -> str:
    """Wrap raw uploaded bytes into a data URL."""

    if not image_bytes:
        raise MissingInputError("The uploaded file appears to be empty.")

    encoded = base64.b64encode(image_bytes).decode("ascii")
    media_type = content_type or _sniff_media_type(encoded)
    return f"data:{media_type};base64,{encoded}"


def _coerce_field(value: Any) -> Optional[str]:
    if not value:
        return None
    if isinstance(value, Mapping):
        value = list(value.values())
    if isinstance(value, (list, tuple)):
        # Structured answers (e.g. an address split into lines) are flattened.
        parts = [_coerce_field(item) for item in value]
        return ", ".join(part for part in parts if part) or None
    if not isinstance(value, (str, int, float)):
        return None
    text = value if isinstance(value, str) else str(value)
    return text.strip() or None


def parse_fields(payload: Mapping[str, Any]) -> ExtractedFields:
    """Keep the five recognised keys of a model answer, nulling falsy values."""

    return ExtractedFields(**{name: _coerce_field(payload.get(name)) for name in FIELD_NAMES})


def _parse_content(content: Optional[str]) -> ExtractedFields:
    if not content:
        raise ExternalServiceError("The extraction API returned no message content.")

    data = json.loads(content)
    if not isinstance(data, dict):
        raise ExternalServiceError(
            f"Expected a JSON object from the extraction API, got {type(data).__name__}."
        )
    return parse_fields(data)


class ExtractionClient:
    """Read identity fields from an image, falling back to simulated data."""

    def __init__(
        self,
        client: Any = None,
        *,
        model: str = DEFAULT_MODEL,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        simulate: bool = False,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._client = client
        self.model = model
        self.max_tokens = max_tokens
        self.simulate = simulate or client is None
        self._rng = rng

    def _request_fields(self, data_url: str) -> ExtractedFields:
        response = self._client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": USER_PROMPT},
                        {"type": "image_url", "image_url": {"url": data_url}},
                    ],
                },
            ],
            max_tokens=self.max_tokens,
            response_format={"type": "json_object"},
        )

        if not getattr(response, "choices", None):
            raise ExternalServiceError("The extraction API returned no choices.")
        return _parse_content(response.choices[0].message.content)

    def _simulated(self) -> ExtractionResult:
        return ExtractionResult(fields=generate_simulated_fields(self._rng), source="simulated")

    def extract(self, image: str) -> ExtractionResult:
        """Extract fields from a base64 image or data URL.

        Raises :class:`MissingInputError` for an empty image; every other
        failure results in simulated fields.
        """

        data_url = to_data_url(image)
        logger.info("Processing ID image (%d characters)", len(data_url))

        if self.simulate:
            logger.info("Extraction API not configured; returning simulated data")
            return self._simulated()

        try:
            fields = self._request_fields(data_url)
        except Exception as exc:  # any failure is replaced by simulated data
            logger.warning("Extraction API call failed, falling back to simulated data: %s", exc)
            return self._simulated()

        logger.info(
            "Extraction API returned fields: %s",
            ", ".join(name for name, value in fields.model_dump(by_alias=True).items() if value)
            or "none",
        )
        return ExtractionResult(fields=fields, source="model")
