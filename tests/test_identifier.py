"""Tests for the vehicle-identifier validator."""

from __future__ import annotations

import pytest

from src.engine.identifier import (
    IdentifierFormat,
    RejectionReason,
    canonicalize_identifier,
    validate_identifier,
)
from src.errors import IdentifierValidationError


def test_full_17_identifier_is_valid() -> None:
    verdict = validate_identifier("1FTEW1EG7GFA12345")

    assert verdict.is_valid
    assert verdict.format == IdentifierFormat.FULL_17
    assert verdict.canonical == "1FTEW1EG7GFA12345"


def test_letter_o_is_rejected() -> None:
    """O is outside the restricted alphabet (confusable with 0)."""
    verdict = validate_identifier("1FTEW1EG7GFA1O345")

    assert not verdict.is_valid
    assert verdict.rejection == RejectionReason.INVALID_CHARACTERS


@pytest.mark.parametrize("raw", ["AB-12345ABCDEJ01", "FR-ABC12345B707"])
def test_regional_format_is_valid(raw: str) -> None:
    verdict = validate_identifier(raw)

    assert verdict.is_valid
    assert verdict.format == IdentifierFormat.REGIONAL


def test_two_characters_is_too_short() -> None:
    verdict = validate_identifier("AB")

    assert not verdict.is_valid
    assert verdict.rejection == RejectionReason.TOO_SHORT


def test_eighteen_characters_is_too_long() -> None:
    verdict = validate_identifier("1FTEW1EG7GFA123456")

    assert verdict.rejection == RejectionReason.TOO_LONG


def test_legacy_short_identifier_is_valid() -> None:
    """Pre-1981 and equipment identifiers fail the 17-char rule but are accepted."""
    verdict = validate_identifier("F10GRK12345")

    assert verdict.is_valid
    assert verdict.format == IdentifierFormat.LEGACY


def test_canonicalization_uppercases_and_trims() -> None:
    verdict = validate_identifier("  1ftew1eg7gfa12345 ")

    assert verdict.is_valid
    assert verdict.canonical == "1FTEW1EG7GFA12345"


@pytest.mark.parametrize("raw", [None, "", "   "])
def test_blank_is_empty(raw) -> None:
    verdict = validate_identifier(raw)

    assert verdict.rejection == RejectionReason.EMPTY
    assert verdict.canonical is None


def test_hyphenated_non_regional_is_malformed_regional() -> None:
    verdict = validate_identifier("AB-123")

    assert verdict.rejection == RejectionReason.MALFORMED_REGIONAL


def test_regional_month_letter_out_of_range() -> None:
    """Month letter must be A-L."""
    verdict = validate_identifier("FR-ABC12345M707")

    assert verdict.rejection == RejectionReason.MALFORMED_REGIONAL


def test_validation_is_deterministic() -> None:
    assert validate_identifier("1FTEW1EG7GFA12345") == validate_identifier("1FTEW1EG7GFA12345")


def test_raise_for_rejection() -> None:
    with pytest.raises(IdentifierValidationError) as exc_info:
        validate_identifier("AB").raise_for_rejection("AB")

    assert exc_info.value.reason == "invalid_identifier:too_short"
    assert exc_info.value.error_class.value == "validation"


def test_canonicalize_identifier_blank_is_none() -> None:
    assert canonicalize_identifier("  ") is None
    assert canonicalize_identifier(" abc ") == "ABC"
