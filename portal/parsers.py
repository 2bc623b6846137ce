"""Payload decoding for profile and ledger files.

Decoding never raises for bad input: it returns a tagged result
(``ProfilePayload``, ``LedgerPayload`` or ``DecodeFailure``) so the pipeline
can branch on it. A profile file that actually holds a ledger array is
rerouted to ledger data instead of failing.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Literal, Mapping

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

LEDGER_KEY_FIELDS = ("reference", "transactionId", "transaction_id")


class PayloadKind(str, Enum):
    """Entity a payload file is expected to hold."""
    PROFILE = "profile"
    LEDGER = "ledger"


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


class ProfileFields(BaseModel):
    """Profile object as found in the archive."""
    model_config = ConfigDict(
        populate_by_name=True,
        str_strip_whitespace=True,
        coerce_numbers_to_str=True,
        extra="ignore",
    )

    user_id: str | None = Field(default=None, validation_alias=AliasChoices("userId", "user_id"))
    first_name: str = Field(min_length=1, validation_alias=AliasChoices("firstName", "first_name"))
    last_name: str = Field(min_length=1, validation_alias=AliasChoices("lastName", "last_name"))
    birthday: date | None = None
    country: str | None = Field(default=None, max_length=2)
    phone: str | None = None

    @field_validator("user_id", "birthday", "country", "phone", mode="before")
    @classmethod
    def blank_optional(cls, v):
        return _blank_to_none(v)

    @field_validator("country")
    @classmethod
    def upper_country(cls, v: str | None) -> str | None:
        return v.upper() if v else v


class LedgerFields(BaseModel):
    """One ledger entry as found in the archive."""
    model_config = ConfigDict(
        populate_by_name=True,
        str_strip_whitespace=True,
        coerce_numbers_to_str=True,
        extra="ignore",
    )

    reference: str = Field(
        min_length=1,
        validation_alias=AliasChoices(*LEDGER_KEY_FIELDS),
    )
    amount: Decimal = Field(max_digits=12, decimal_places=2)
    currency: str | None = Field(default=None, max_length=16)
    message: str | None = None
    timestamp: datetime

    @field_validator("currency", "message", mode="before")
    @classmethod
    def blank_optional(cls, v):
        return _blank_to_none(v)

    @field_validator("timestamp")
    @classmethod
    def naive_utc(cls, v: datetime) -> datetime:
        """Store timestamps as naive UTC."""
        if v.tzinfo is not None:
            return v.astimezone(timezone.utc).replace(tzinfo=None)
        return v


@dataclass(frozen=True)
class ProfilePayload:
    """A decoded profile object."""
    fields: ProfileFields
    kind: Literal["profile"] = "profile"


@dataclass(frozen=True)
class LedgerPayload:
    """A decoded ledger array; entries are validated one by one later."""
    entries: tuple[Any, ...]
    rerouted: bool = False
    kind: Literal["ledger"] = "ledger"


@dataclass(frozen=True)
class DecodeFailure:
    """A payload that could not be decoded into its expected shape."""
    expected: PayloadKind
    content: str
    message: str
    line: int | None = None
    column: int | None = None
    kind: Literal["failure"] = "failure"


ParseResult = ProfilePayload | LedgerPayload | DecodeFailure


def describe_validation_error(exc: ValidationError) -> str:
    """Flatten a pydantic error into a single readable line."""
    parts = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"]) or "entry"
        parts.append(f"{location}: {error['msg']}")
    return "; ".join(parts)


def ledger_key(entry: Any) -> str | None:
    """Business key of a raw ledger entry, whichever spelling it uses."""
    if not isinstance(entry, Mapping):
        return None
    for field in LEDGER_KEY_FIELDS:
        value = entry.get(field)
        if value not in (None, ""):
            return str(value)
    return None


def looks_like_ledger(data: Any) -> bool:
    """Structural check for a ledger array.

    A non-empty list of objects whose first element carries a ledger
    business key.
    """
    if not isinstance(data, list) or not data:
        return False
    if not all(isinstance(item, Mapping) for item in data):
        return False
    return ledger_key(data[0]) is not None


def decode_payload(raw: bytes | str, expected: PayloadKind) -> ParseResult:
    """Decode a payload file into a tagged result.

    Args:
        raw: File content.
        expected: Entity the file name implies.

    Returns:
        ProfilePayload, LedgerPayload (possibly rerouted from a profile file),
        or DecodeFailure.
    """
    if isinstance(raw, bytes):
        try:
            text = raw.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            return DecodeFailure(
                expected=expected,
                content=raw.decode("utf-8", errors="replace"),
                message=f"File is not valid UTF-8: {e}",
            )
    else:
        text = raw

    try:
        data = json.loads(text, parse_float=Decimal)
    except json.JSONDecodeError as e:
        logger.error(f"JSON syntax error in {expected.value} payload: {e}")
        return DecodeFailure(
            expected=expected,
            content=text,
            message=f"Invalid JSON syntax: {e.msg}",
            line=e.lineno,
            column=e.colno,
        )

    if expected is PayloadKind.LEDGER:
        if not isinstance(data, list):
            return DecodeFailure(
                expected=expected,
                content=text,
                message=f"Expected an array of transactions, got {type(data).__name__}",
            )
        return LedgerPayload(entries=tuple(data))

    if isinstance(data, Mapping):
        try:
            return ProfilePayload(fields=ProfileFields.model_validate(data))
        except ValidationError as e:
            return DecodeFailure(
                expected=expected,
                content=text,
                message=f"Invalid user data: {describe_validation_error(e)}",
            )

    if looks_like_ledger(data):
        logger.warning("User data file contains transaction data, treating it as transactions")
        return LedgerPayload(entries=tuple(data), rerouted=True)

    return DecodeFailure(
        expected=expected,
        content=text,
        message=f"Expected a user object, got {type(data).__name__}",
    )


def coerce_ledger_entry(entry: Any) -> LedgerFields:
    """Validate one raw ledger entry.

    Raises:
        ValidationError: If the entry is not a well-formed transaction.
    """
    return LedgerFields.model_validate(entry)
