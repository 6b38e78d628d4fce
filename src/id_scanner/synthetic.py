"""Generate plausible stand-in identity fields.

The extraction client substitutes these values when the external API cannot
be reached or answers with something unusable, so the scan-review-save flow
keeps working without it. Results are flagged ``simulated`` by the caller.
"""

from __future__ import annotations

import random
from datetime import date
from typing import Optional

from .schemas import ExtractedFields

SAMPLE_NAMES = ("John Smith", "Jane Doe", "Alice Johnson", "Robert Brown", "Emily Davis")
SAMPLE_STREETS = ("123 Main St", "456 Oak Ave", "789 Pine Rd", "321 Elm Blvd", "654 Maple Dr")
SAMPLE_CITIES = ("New York", "Los Angeles", "Chicago", "Houston", "Phoenix")
SAMPLE_STATES = ("NY", "CA", "IL", "TX", "AZ")

BIRTH_YEAR_RANGE = (1960, 1999)
EXPIRY_YEARS_AHEAD = (5, 9)


def _random_date(rng: random.Random, year: int) -> str:
    # Days stop at 28 so every month is valid.
    return f"{year:04d}-{rng.randint(1, 12):02d}-{rng.randint(1, 28):02d}"


def generate_id_number(rng: Optional[random.Random] = None) -> str:
    """Return an ID number of the form ``ID`` followed by eight digits."""

    rng = rng or random.Random()
    return f"ID{rng.randint(10_000_000, 99_999_999)}"


def generate_simulated_fields(
    rng: Optional[random.Random] = None,
    *,
    today: Optional[date] = None,
) -> ExtractedFields:
    """Build a complete, self-consistent set of fabricated identity fields.

    Parameters
    ----------
    rng:
        Source of randomness; pass a seeded :class:`random.Random` for
        reproducible output.
    today:
        Reference date for the expiry year. Defaults to :func:`date.today`.
    """

    rng = rng or random.Random()
    today = today or date.today()

    birth_year = rng.randint(*BIRTH_YEAR_RANGE)
    expiry_year = today.year + rng.randint(*EXPIRY_YEARS_AHEAD)

    address = "{street}, {city}, {state} {zip_code}".format(
        street=rng.choice(SAMPLE_STREETS),
        city=rng.choice(SAMPLE_CITIES),
        state=rng.choice(SAMPLE_STATES),
        zip_code=rng.randint(10_000, 99_999),
    )

    return ExtractedFields(
        full_name=rng.choice(SAMPLE_NAMES),
        id_number=generate_id_number(rng),
        date_of_birth=_random_date(rng, birth_year),
        expiry_date=_random_date(rng, expiry_year),
        address=address,
    )
