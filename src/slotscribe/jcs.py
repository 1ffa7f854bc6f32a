from __future__ import annotations

import json
import math
from collections.abc import Mapping, Sequence
from decimal import Decimal
from typing import Any

from slotscribe.errors import CanonicalizationError

__all__ = ["canonicalize", "canonicalize_to_str"]

# Integers beyond this magnitude are not exactly representable as IEEE-754
# doubles, so they are rendered the way a double would print them.
_MAX_SAFE_INTEGER = 2**53


def canonicalize(obj: Any) -> bytes:
    """
    Serialize *obj* to canonical JSON as UTF-8 bytes.

    Only standard JSON data types are supported (dict, list, tuple, str,
    int, float, Decimal, bool, None). Numbers must be finite.
    """
    return canonicalize_to_str(obj).encode("utf-8")


def canonicalize_to_str(obj: Any) -> str:
    """Return the canonical JSON text for *obj*."""
    return _serialize(obj)


def _serialize(value: Any) -> str:
    if value is None:
        return "null"
    if value is True:
        return "true"
    if value is False:
        return "false"
    if isinstance(value, str):
        return _encode_string(value)
    if isinstance(value, (int, float, Decimal)):
        return _encode_number(value)
    if isinstance(value, Mapping):
        items = []
        for key, item in value.items():
            if not isinstance(key, str):
                raise CanonicalizationError(
                    f"canonical JSON requires string keys, got {type(key).__name__}"
                )
            items.append((key, item))
        # Ordinal UTF-16 code unit order, not code point order.
        items.sort(key=lambda kv: kv[0].encode("utf-16-be", "surrogatepass"))
        serialized = [
            f"{_encode_string(key)}:{_serialize(item)}" for key, item in items
        ]
        return "{" + ",".join(serialized) + "}"
    if isinstance(value, Sequence) and not isinstance(value, (bytes, bytearray, str)):
        return "[" + ",".join(_serialize(item) for item in value) + "]"
    raise CanonicalizationError(
        f"Cannot canonicalize value of type {type(value).__name__}"
    )


def _encode_string(value: str) -> str:
    try:
        value.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise CanonicalizationError(f"string is not valid Unicode: {exc.reason}") from exc
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def _encode_number(value: Any) -> str:
    if isinstance(value, int):
        if abs(value) <= _MAX_SAFE_INTEGER:
            return str(value)
        try:
            value = float(value)
        except OverflowError:
            raise CanonicalizationError("JSON cannot represent Infinity or NaN") from None
    if isinstance(value, float) and not math.isfinite(value):
        raise CanonicalizationError("JSON cannot represent Infinity or NaN")
    dec = value if isinstance(value, Decimal) else Decimal(repr(value))
    if not dec.is_finite():
        raise CanonicalizationError("JSON cannot represent Infinity or NaN")
    if dec.is_zero():
        return "0"

    sign = "-" if dec.is_signed() else ""
    _, digit_tuple, exponent = abs(dec).normalize().as_tuple()
    digits = "".join(map(str, digit_tuple))
    k = len(digits)
    # abs(value) == 0.<digits> * 10**n
    n = k + exponent

    if k <= n <= 21:
        return sign + digits + "0" * (n - k)
    if 0 < n <= 21:
        return sign + digits[:n] + "." + digits[n:]
    if -6 < n <= 0:
        return sign + "0." + "0" * -n + digits
    mantissa = digits[0] + ("." + digits[1:] if k > 1 else "")
    e = n - 1
    return f"{sign}{mantissa}e{'+' if e > 0 else '-'}{abs(e)}"
