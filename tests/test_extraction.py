"""Tests for the extraction client and the simulated-data fallback."""

from __future__ import annotations

import random
from datetime import date
from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import openai
import pytest

from conftest import JANE_DOE, completion, openai_returning
from id_scanner.errors import MissingInputError
from id_scanner.extraction import ExtractionClient, encode_image_bytes, parse_fields, to_data_url
from id_scanner.schemas import FIELD_NAMES
from id_scanner.synthetic import SAMPLE_NAMES, generate_simulated_fields


def _assert_well_formed(fields) -> None:
    dumped = fields.model_dump(by_alias=True)
    assert tuple(dumped) == FIELD_NAMES
    assert all(value is None or isinstance(value, str) for value in dumped.values())


def test_extract_returns_model_fields(png_base64: str) -> None:
    client = openai_returning(JANE_DOE)

    result = ExtractionClient(client).extract(png_base64)

    assert result.source == "model"
    assert result.fields.full_name == "Jane Doe"
    assert result.fields.id_number == "ID12345678"
    assert result.fields.date_of_birth == "1990-04-12"
    _assert_well_formed(result.fields)


def test_extract_sends_prompt_image_and_json_mode(png_base64: str) -> None:
    client = openai_returning(JANE_DOE)

    ExtractionClient(client, model="gpt-4o-mini", max_tokens=500).extract(png_base64)

    kwargs = client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "gpt-4o-mini"
    assert kwargs["max_tokens"] == 500
    assert kwargs["response_format"] == {"type": "json_object"}
    system, user = kwargs["messages"]
    assert system["role"] == "system"
    assert "fullName, idNumber, dateOfBirth, expiryDate, address" in system["content"]
    image_part = user["content"][1]
    assert image_part["type"] == "image_url"
    assert image_part["image_url"]["url"] == f"data:image/png;base64,{png_base64}"


def test_missing_and_falsy_fields_become_null_and_extras_are_dropped(png_base64: str) -> None:
    client = openai_returning(
        {"fullName": "Jane Doe", "idNumber": "", "dateOfBirth": None, "nationality": "US"}
    )

    fields = ExtractionClient(client).extract(png_base64).fields

    assert fields.model_dump(by_alias=True) == {
        "fullName": "Jane Doe",
        "idNumber": None,
        "dateOfBirth": None,
        "expiryDate": None,
        "address": None,
    }


def test_parse_fields_converts_non_string_values() -> None:
    fields = parse_fields({"fullName": "Jane Doe", "idNumber": 12345678})

    assert fields.id_number == "12345678"


@pytest.mark.parametrize(
    "content",
    [None, "", "not json at all", "[1, 2, 3]", '"just a string"'],
)
def test_unusable_content_falls_back_to_simulated_data(png_base64: str, content) -> None:
    client = MagicMock()
    client.chat.completions.create.return_value = completion(content)

    result = ExtractionClient(client).extract(png_base64)

    assert result.source == "simulated"
    assert result.fields.full_name in SAMPLE_NAMES
    _assert_well_formed(result.fields)


def test_api_errors_fall_back_to_simulated_data(png_base64: str) -> None:
    client = MagicMock()
    client.chat.completions.create.side_effect = openai.APITimeoutError(
        request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    )

    result = ExtractionClient(client).extract(png_base64)

    assert result.source == "simulated"
    assert result.simulated
    client.chat.completions.create.assert_called_once()


def test_response_without_choices_falls_back(png_base64: str) -> None:
    client = MagicMock()
    client.chat.completions.create.return_value = MagicMock(choices=[])

    assert ExtractionClient(client).extract(png_base64).source == "simulated"


def test_client_without_api_does_not_call_out(png_base64: str) -> None:
    result = ExtractionClient(None).extract(png_base64)

    assert result.source == "simulated"


def test_simulate_flag_skips_the_api(png_base64: str) -> None:
    client = openai_returning(JANE_DOE)

    result = ExtractionClient(client, simulate=True).extract(png_base64)

    assert result.source == "simulated"
    client.chat.completions.create.assert_not_called()


@pytest.mark.parametrize("image", ["", "   "])
def test_empty_image_is_rejected(image: str) -> None:
    client = openai_returning(JANE_DOE)

    with pytest.raises(MissingInputError):
        ExtractionClient(client).extract(image)
    client.chat.completions.create.assert_not_called()


def test_to_data_url_keeps_existing_prefix() -> None:
    assert to_data_url("data:image/webp;base64,AAAA") == "data:image/webp;base64,AAAA"


def test_to_data_url_defaults_to_jpeg_for_unknown_bytes() -> None:
    assert to_data_url("bm90IGFuIGltYWdl") == "data:image/jpeg;base64,bm90IGFuIGltYWdl"


def test_encode_image_bytes(png_bytes: bytes) -> None:
    assert encode_image_bytes(png_bytes).startswith("data:image/png;base64,")
    assert encode_image_bytes(png_bytes, "image/jpeg").startswith("data:image/jpeg;base64,")
    with pytest.raises(MissingInputError):
        encode_image_bytes(b"")


def test_simulated_fields_are_self_consistent() -> None:
    rng = random.Random(7)
    today = date(2026, 10, 19)

    for _ in range(50):
        fields = generate_simulated_fields(rng, today=today)

        assert fields.full_name in SAMPLE_NAMES
        assert fields.id_number.startswith("ID") and len(fields.id_number) == 10
        assert fields.id_number[2:].isdigit()
        birth = date.fromisoformat(fields.date_of_birth)
        expiry = date.fromisoformat(fields.expiry_date)
        assert 1960 <= birth.year <= 1999
        assert today.year + 5 <= expiry.year <= today.year + 9
        assert expiry > birth
        assert fields.address.count(",") == 2


def test_simulated_fields_are_reproducible_with_a_seed() -> None:
    today = date(2026, 1, 1)

    first = generate_simulated_fields(random.Random(3), today=today)
    second = generate_simulated_fields(random.Random(3), today=today)

    assert first == second


@pytest.mark.parametrize(
    "error", [TypeError("unexpected keyword"), RuntimeError("client closed"), KeyError("choices")]
)
def test_any_client_error_falls_back_to_simulated_data(png_base64: str, error) -> None:
    client = MagicMock()
    client.chat.completions.create.side_effect = error

    result = ExtractionClient(client).extract(png_base64)

    assert result.source == "simulated"
    _assert_well_formed(result.fields)


def test_choice_without_message_falls_back(png_base64: str) -> None:
    client = MagicMock()
    client.chat.completions.create.return_value = SimpleNamespace(
        choices=[SimpleNamespace(message=None)]
    )

    result = ExtractionClient(client).extract(png_base64)

    assert result.source == "simulated"


def test_structured_values_are_flattened_to_text() -> None:
    fields = parse_fields(
        {
            "fullName": ["Jane Doe"],
            "address": {"line1": "456 Oak Ave", "city": "Chicago", "zip": 60601},
            "expiryDate": {"nested": {"deep": None}},
        }
    )

    assert fields.full_name == "Jane Doe"
    assert fields.address == "456 Oak Ave, Chicago, 60601"
    assert fields.expiry_date is None
