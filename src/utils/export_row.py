"""
Lotline — Export Row Model

Typed view over a staged record's field bag. The vendor export uses
human-readable column headers ("Lot number", "Sale Date M/D/CY", ...);
this model maps them onto snake_case fields and does the lenient parsing
the export needs (blank → None, 0 amounts → None, compact sale dates).

Never raises on bad cell content: unparseable values become None and the
merge engine simply has less to merge.
"""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from src.utils.taxonomy import normalize_status
from src.utils.timeutil import ensure_utc

_DEFAULT_SALE_TIME = time(9, 0)

# Column ranges: DECIMAL(12, 2) amounts, 32-bit INTEGER counts.
_MAX_AMOUNT = Decimal("9999999999.99")
_MAX_INT = 2**31 - 1


# ---------------------------------------------------------------------------
# Cell parsers
# ---------------------------------------------------------------------------


def blank_to_none(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def parse_amount(value: Any) -> Decimal | None:
    """Money cell → Decimal. Blank, zero and garbage become None. Never float."""
    value = blank_to_none(value)
    if value is None:
        return None
    try:
        amount = Decimal(str(value).replace("$", "").replace(",", ""))
    except (InvalidOperation, ValueError):
        return None
    if not amount.is_finite() or amount == 0:
        return None
    return amount


def parse_timestamp(value: Any) -> datetime | None:
    """ISO-8601 timestamp (with or without offset) → aware UTC datetime."""
    value = blank_to_none(value)
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return ensure_utc(datetime.fromisoformat(text))
    except ValueError:
        return None


def _parse_sale_date(raw: str) -> date | None:
    digits = raw.split(".")[0]
    if digits.isdigit() and len(digits) in (5, 6):
        # MDDYY or MMDDYY, e.g. "12025" = 2025-01-20, "102025" = 2025-10-20
        month_len = len(digits) - 4
        month, day, year = int(digits[:month_len]), int(digits[month_len:month_len + 2]), 2000 + int(digits[-2:])
        try:
            return date(year, month, day)
        except ValueError:
            return None
    for fmt in ("%Y-%m-%d", "%m/%d/%Y"):
        try:
            return datetime.strptime(raw, fmt).date()
        except ValueError:
            continue
    return None


def _parse_sale_time(raw: str | None) -> time:
    if not raw:
        return _DEFAULT_SALE_TIME
    digits = raw.split(".")[0].zfill(4)
    if not digits.isdigit() or len(digits) != 4:
        return _DEFAULT_SALE_TIME
    try:
        return time(int(digits[:2]), int(digits[2:]))
    except ValueError:
        return _DEFAULT_SALE_TIME


def parse_sale_datetime(sale_date: Any, sale_time: Any = None) -> datetime | None:
    """
    Combine the export's sale date and HHMM time into an aware datetime.

    Dates come as compact MDDYY/MMDDYY digits or ISO / US formats. A missing
    time defaults to 09:00. Times are taken as UTC.
    """
    sale_date = blank_to_none(sale_date)
    if sale_date is None or str(sale_date) == "0":
        return None
    parsed = _parse_sale_date(str(sale_date))
    if parsed is None:
        return None
    sale_time = blank_to_none(sale_time)
    return datetime.combine(parsed, _parse_sale_time(None if sale_time is None else str(sale_time)), tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Row model
# ---------------------------------------------------------------------------


class ExportRow(BaseModel):
    """One export row, typed."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    # --- Identity ---
    external_lot_id: str | None = Field(default=None, validation_alias=AliasChoices("Lot number", "external_lot_id"))
    vehicle_identifier: str | None = Field(default=None, validation_alias=AliasChoices("VIN", "vehicle_identifier"))
    source_timestamp: datetime | None = Field(default=None, validation_alias=AliasChoices("Last Updated Time", "source_timestamp"))

    # --- Sale ---
    sale_date: str | None = Field(default=None, validation_alias=AliasChoices("Sale Date M/D/CY", "sale_date"))
    sale_time: str | None = Field(default=None, validation_alias=AliasChoices("Sale time (HHMM)", "sale_time"))
    sale_status: str | None = Field(default=None, validation_alias=AliasChoices("Sale Status", "sale_status"))
    current_bid: Decimal | None = Field(
        default=None,
        validation_alias=AliasChoices("High Bid =non-vix,Sealed=Vix", "Current Bid", "current_bid"),
    )
    buy_now_amount: Decimal | None = Field(default=None, validation_alias=AliasChoices("Buy-It-Now Price", "buy_now_amount"))
    currency: str | None = Field(default=None, validation_alias=AliasChoices("Currency Code", "currency"))

    # --- Vehicle ---
    year: int | None = Field(default=None, validation_alias=AliasChoices("Year", "year"))
    make: str | None = Field(default=None, validation_alias=AliasChoices("Make", "make"))
    model: str | None = Field(default=None, validation_alias=AliasChoices("Model Group", "Model Detail", "model"))
    trim: str | None = Field(default=None, validation_alias=AliasChoices("Trim", "trim"))
    body: str | None = Field(default=None, validation_alias=AliasChoices("Body Style", "body"))
    fuel: str | None = Field(default=None, validation_alias=AliasChoices("Fuel Type", "fuel"))
    transmission: str | None = Field(default=None, validation_alias=AliasChoices("Transmission", "transmission"))
    drive: str | None = Field(default=None, validation_alias=AliasChoices("Drive", "drive"))
    engine: str | None = Field(default=None, validation_alias=AliasChoices("Engine", "engine"))
    color: str | None = Field(default=None, validation_alias=AliasChoices("Color", "color"))

    # --- Location & condition ---
    yard_name: str | None = Field(default=None, validation_alias=AliasChoices("Yard name", "yard_name"))
    location_city: str | None = Field(default=None, validation_alias=AliasChoices("Location city", "location_city"))
    location_state: str | None = Field(default=None, validation_alias=AliasChoices("Location state", "location_state"))
    location_country: str | None = Field(default=None, validation_alias=AliasChoices("Location country", "location_country"))
    location_zip: str | None = Field(default=None, validation_alias=AliasChoices("Location ZIP", "location_zip"))
    damage_primary: str | None = Field(default=None, validation_alias=AliasChoices("Damage Description", "damage_primary"))
    damage_secondary: str | None = Field(default=None, validation_alias=AliasChoices("Secondary Damage", "damage_secondary"))
    title_type: str | None = Field(default=None, validation_alias=AliasChoices("Sale Title Type", "title_type"))
    odometer: int | None = Field(default=None, validation_alias=AliasChoices("Odometer", "odometer"))
    retail_value: Decimal | None = Field(default=None, validation_alias=AliasChoices("Est. Retail Value", "retail_value"))
    repair_cost: Decimal | None = Field(default=None, validation_alias=AliasChoices("Repair cost", "repair_cost"))
    runs_drives: str | None = Field(default=None, validation_alias=AliasChoices("Runs/Drives", "runs_drives"))
    has_keys: bool | None = Field(default=None, validation_alias=AliasChoices("Has Keys-Yes or No", "has_keys"))

    @field_validator("*", mode="before")
    @classmethod
    def strip_blank(cls, v: Any) -> Any:
        """Trim text cells; empty cells are missing values."""
        return blank_to_none(v)

    @field_validator("current_bid", "buy_now_amount", "retail_value", "repair_cost", mode="before")
    @classmethod
    def parse_money(cls, v: Any) -> Decimal | None:
        amount = parse_amount(v)
        if amount is None or abs(amount) > _MAX_AMOUNT:
            return None
        return amount

    @field_validator("year", "odometer", mode="before")
    @classmethod
    def parse_int(cls, v: Any) -> int | None:
        amount = parse_amount(v)
        if amount is None or abs(amount) > _MAX_INT:
            return None
        return int(amount)

    @field_validator("source_timestamp", mode="before")
    @classmethod
    def parse_source_timestamp(cls, v: Any) -> datetime | None:
        return parse_timestamp(v)

    @field_validator("has_keys", mode="before")
    @classmethod
    def parse_yes_no(cls, v: Any) -> bool | None:
        v = blank_to_none(v)
        if v is None or isinstance(v, bool):
            return v
        return {"YES": True, "Y": True, "NO": False, "N": False}.get(str(v).upper())

    @field_validator(
        "external_lot_id", "vehicle_identifier", "sale_date", "sale_time", "location_zip", mode="before"
    )
    @classmethod
    def coerce_text(cls, v: Any) -> str | None:
        # Numeric-looking cells may arrive as numbers from JSON field bags.
        v = blank_to_none(v)
        return None if v is None else str(v).strip() or None

    @classmethod
    def from_field_bag(cls, bag: Mapping[str, Any]) -> "ExportRow":
        return cls.model_validate(dict(bag))

    @property
    def auction_time(self) -> datetime | None:
        return parse_sale_datetime(self.sale_date, self.sale_time)

    @property
    def status_code(self) -> str:
        return normalize_status(self.sale_status)
