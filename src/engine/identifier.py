"""
Lotline — Vehicle-Identifier Validator

Pure, total classification of raw vehicle identifiers.

Canonical form is uppercase + trimmed. Accepted formats, tried in order:
    full_17   17 chars over [A-HJ-NPR-Z0-9] (I, O, Q excluded). No checksum.
    regional  CC-WMIssssssMpYY, e.g. "FR-ABC12345B707", "AB-12345ABCDEJ01"
    legacy    3-17 chars over the same restricted alphabet (pre-1981 plates)

Anything else is rejected with a machine-readable reason code.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import NamedTuple

from src.errors import IdentifierValidationError


class IdentifierFormat(str, Enum):
    FULL_17 = "full_17"
    REGIONAL = "regional"
    LEGACY = "legacy"


class RejectionReason(str, Enum):
    EMPTY = "empty"
    TOO_SHORT = "too_short"
    TOO_LONG = "too_long"
    INVALID_CHARACTERS = "invalid_characters"
    MALFORMED_REGIONAL = "malformed_regional"


_ALPHABET = "A-HJ-NPR-Z0-9"
_FULL_17 = re.compile(rf"^[{_ALPHABET}]{{17}}$")
# country, hyphen, manufacturer (3), serial (5), month letter, production (1-2), model year
_REGIONAL = re.compile(
    rf"^[A-Z]{{2}}-[{_ALPHABET}]{{3}}[{_ALPHABET}]{{5}}[A-L][{_ALPHABET}]{{1,2}}[0-9]{{2}}$"
)
_LEGACY = re.compile(rf"^[{_ALPHABET}]{{3,17}}$")
_RESTRICTED_CHARS = re.compile(rf"^[{_ALPHABET}]*$")

MIN_LENGTH = 3
MAX_LENGTH = 17


class IdentifierVerdict(NamedTuple):
    """Outcome of validating one identifier."""
    canonical: str | None
    format: IdentifierFormat | None
    rejection: RejectionReason | None

    @property
    def is_valid(self) -> bool:
        return self.rejection is None

    def raise_for_rejection(self, raw: str | None = None) -> None:
        if self.rejection is not None:
            raise IdentifierValidationError(
                f"invalid_identifier:{self.rejection.value}",
                raw_identifier=raw,
                canonical=self.canonical,
            )


def canonicalize_identifier(raw: str | None) -> str | None:
    """Uppercase + trim. Blank → None."""
    if raw is None:
        return None
    canonical = str(raw).strip().upper()
    return canonical or None


def validate_identifier(raw: str | None) -> IdentifierVerdict:
    """
    Classify a raw identifier.

    Never raises: every input maps to exactly one accepted format or one
    rejection reason.
    """
    canonical = canonicalize_identifier(raw)
    if canonical is None:
        return IdentifierVerdict(None, None, RejectionReason.EMPTY)

    if _FULL_17.match(canonical):
        return IdentifierVerdict(canonical, IdentifierFormat.FULL_17, None)
    if _REGIONAL.match(canonical):
        return IdentifierVerdict(canonical, IdentifierFormat.REGIONAL, None)
    if "-" in canonical:
        return IdentifierVerdict(canonical, None, RejectionReason.MALFORMED_REGIONAL)
    if _LEGACY.match(canonical):
        return IdentifierVerdict(canonical, IdentifierFormat.LEGACY, None)

    if not _RESTRICTED_CHARS.match(canonical):
        reason = RejectionReason.INVALID_CHARACTERS
    elif len(canonical) < MIN_LENGTH:
        reason = RejectionReason.TOO_SHORT
    else:
        reason = RejectionReason.TOO_LONG
    return IdentifierVerdict(canonical, None, reason)
