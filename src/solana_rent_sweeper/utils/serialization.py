"""Helpers turning core results into JSON-friendly structures."""

from __future__ import annotations

import base64
from dataclasses import fields, is_dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from solders.hash import Hash
from solders.instruction import Instruction
from solders.pubkey import Pubkey


def instruction_to_dict(instruction: Instruction) -> dict[str, Any]:
    return {
        "program_id": str(instruction.program_id),
        "accounts": [
            {
                "pubkey": str(meta.pubkey),
                "is_signer": meta.is_signer,
                "is_writable": meta.is_writable,
            }
            for meta in instruction.accounts
        ],
        "data": base64.b64encode(bytes(instruction.data)).decode("ascii"),
    }


def to_serializable(value: Any) -> Any:
    """Recursively convert dataclasses, chain types and datetimes into JSON-friendly structures."""

    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_serializable(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, Instruction):
        return instruction_to_dict(value)
    if isinstance(value, (Pubkey, Hash)):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(key): to_serializable(val) for key, val in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_serializable(item) for item in value]
    return value


def format_token_amount(amount: int | str, decimals: int) -> str:
    """Render a raw integer token amount as a decimal string without float rounding."""

    raw = int(amount)
    if decimals <= 0:
        return str(raw)
    sign = "-" if raw < 0 else ""
    whole, fraction = divmod(abs(raw), 10**decimals)
    fraction_text = str(fraction).rjust(decimals, "0").rstrip("0")
    if not fraction_text:
        return f"{sign}{whole}"
    return f"{sign}{whole}.{fraction_text}"


__all__ = ["instruction_to_dict", "to_serializable", "format_token_amount"]
