"""Value casts applied by the mapping executor.

A mapping's ``cast`` section names one or more casts per target path::

    cast:
      age: integer
      tags: "jsonToArray,array"
      email: "unsetIfValue=="

Casts run in the listed order against the value currently stored at the
path.  The core casts (``string``, ``integer``/``int``, ``float``,
``boolean``/``bool``, ``array``) are strict: a value that cannot be
converted raises ``MappingError`` naming the path and the cast.  ``None``
is never converted.

Parameterised casts carry their argument after a marker:

* ``unsetIfValue==X`` -- remove the path when the value equals ``X`` (an
  empty ``X`` matches any empty value).
* ``setNullIfValue==X`` -- same match, but the value becomes ``None``.
* ``countValue:other.path`` -- replace the value with the length of the
  list or object found at ``other.path`` in the output.
"""

from __future__ import annotations

import base64
import binascii
import html
import json
import logging
import unicodedata
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from urllib.parse import quote, quote_plus, unquote, unquote_plus

from sync_reconciler.sync.errors import MappingError
from sync_reconciler.sync.paths import delete_path, get_path, has_path, set_path

logger = logging.getLogger(__name__)

# Returned by a cast handler to remove the path from the output.
UNSET = object()

_PARAM_MARKERS = (
    ("unsetIfValue==", "unsetIfValue"),
    ("setNullIfValue==", "setNullIfValue"),
    ("countValue:", "countValue"),
)

_TRUE_STRINGS = {"true", "1", "yes", "on"}
_FALSE_STRINGS = {"false", "0", "no", "off", ""}


class CastFailed(Exception):
    """Raised by a handler when the value cannot be converted."""


@dataclass
class CastContext:
    """What a cast handler may look at besides the value itself."""

    path: str
    argument: str | None
    output: Any


CastHandler = Callable[[Any, CastContext], Any]


def parse_casts(declared: str | list[str]) -> list[str]:
    """Normalise a cast declaration into a list of cast names.

    Strings are split on commas.  The parameterised casts keep everything
    after their marker, so ``"unsetIfValue==a,b"`` is a single cast.
    """
    if isinstance(declared, list):
        return [str(item).strip() for item in declared if str(item).strip()]
    text = str(declared).strip()
    for marker, _ in _PARAM_MARKERS:
        if text.startswith(marker):
            return [text]
    return [part.strip() for part in text.split(",") if part.strip()]


def split_cast(cast: str) -> tuple[str, str | None]:
    """Split ``"countValue:items"`` into ``("countValue", "items")``."""
    for marker, name in _PARAM_MARKERS:
        if cast.startswith(marker):
            return name, cast[len(marker) :]
    return cast, None


# ------------------------------------------------------------------
# Core casts
# ------------------------------------------------------------------


def _to_string(value: Any, ctx: CastContext) -> Any:
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    raise CastFailed()


def _to_integer(value: Any, ctx: CastContext) -> Any:
    if value is None:
        return None
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        raise CastFailed()
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            pass
        try:
            number = float(text)
        except ValueError:
            raise CastFailed() from None
        if number.is_integer():
            return int(number)
    raise CastFailed()


def _to_float(value: Any, ctx: CastContext) -> Any:
    if value is None:
        return None
    if isinstance(value, (bool, int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            raise CastFailed() from None
    raise CastFailed()


def _to_boolean(value: Any, ctx: CastContext) -> Any:
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        if value in (0, 1):
            return bool(value)
        raise CastFailed()
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
    raise CastFailed()


def _to_array(value: Any, ctx: CastContext) -> Any:
    if value is None or isinstance(value, list):
        return value
    return [value]


# ------------------------------------------------------------------
# Encoding casts
# ------------------------------------------------------------------


def _require_str(value: Any) -> str:
    if not isinstance(value, str):
        raise CastFailed()
    return value


def _skip_none(func: Callable[[str], Any]) -> CastHandler:
    def handler(value: Any, ctx: CastContext) -> Any:
        if value is None:
            return None
        return func(_require_str(value))

    return handler


def _base64_decode(text: str) -> str:
    try:
        return base64.b64decode(text, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        raise CastFailed() from None


def _json_decode(text: str) -> Any:
    try:
        return json.loads(html.unescape(text))
    except json.JSONDecodeError:
        raise CastFailed() from None


def _to_json(value: Any, ctx: CastContext) -> Any:
    return json.dumps(value, ensure_ascii=False)


def _to_ascii(text: str) -> str:
    normalized = unicodedata.normalize("NFKD", text)
    return normalized.encode("ascii", "ignore").decode("ascii")


def _to_date(value: Any, ctx: CastContext) -> Any:
    """Normalise an epoch number or ISO-8601 string to ISO-8601."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise CastFailed()
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc).isoformat()
        except (OverflowError, OSError, ValueError):
            raise CastFailed() from None
    text = _require_str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text).isoformat()
    except ValueError:
        raise CastFailed() from None


# ------------------------------------------------------------------
# Conditional and structural casts
# ------------------------------------------------------------------


def _is_empty(value: Any) -> bool:
    return value in (None, "", "0", 0, False) or value == [] or value == {}


def _all_empty(value: Any) -> bool:
    """Return ``True`` if every leaf inside a list/object is empty."""
    items = value.values() if isinstance(value, dict) else value
    for item in items:
        if isinstance(item, (dict, list)):
            if not _all_empty(item):
                return False
        elif not _is_empty(item):
            return False
    return True


def _matches_marker(value: Any, marker: str | None) -> bool:
    if not marker:
        if _is_empty(value):
            return True
        return isinstance(value, (dict, list)) and _all_empty(value)
    if isinstance(value, bool):
        return marker.lower() == ("true" if value else "false")
    if isinstance(value, (str, int, float)):
        return str(value) == marker
    return False


def _unset_if_value(value: Any, ctx: CastContext) -> Any:
    return UNSET if _matches_marker(value, ctx.argument) else value


def _null_if_value(value: Any, ctx: CastContext) -> Any:
    return None if _matches_marker(value, ctx.argument) else value


def _null_string_to_null(value: Any, ctx: CastContext) -> Any:
    return None if value == "null" else value


def _key_cant_be_value(value: Any, ctx: CastContext) -> Any:
    key = ctx.path.rsplit(".", 1)[-1]
    return UNSET if value in (ctx.path, key) else value


def _count_value(value: Any, ctx: CastContext) -> Any:
    if not ctx.argument or not has_path(ctx.output, ctx.argument):
        return value
    counted = get_path(ctx.output, ctx.argument)
    if isinstance(counted, (list, dict)):
        return len(counted)
    return value


def _coordinates(value: Any, ctx: CastContext) -> Any:
    """``"52.1 4.9 52.2 5.0"`` -> ``[["52.1", "4.9"], ["52.2", "5.0"]]``.

    A single pair is returned flat (``["52.1", "4.9"]``).
    """
    if value is None:
        return None
    parts = _require_str(value).split()
    points = [parts[i : i + 2] for i in range(0, len(parts), 2)]
    if len(points) == 1:
        return points[0]
    return points


def _money_to_int(value: Any, ctx: CastContext) -> Any:
    """``"1.234,56"`` -> ``123456`` (amount in cents)."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise CastFailed()
    if isinstance(value, int):
        return value
    digits = str(value).replace(".", "").replace(",", "").strip()
    try:
        return int(digits)
    except ValueError:
        raise CastFailed() from None


def _int_to_money(value: Any, ctx: CastContext) -> Any:
    """``123456`` -> ``"1.234,56"``."""
    if value is None:
        return None
    amount = _to_float(value, ctx) / 100
    formatted = f"{amount:,.2f}"
    return formatted.replace(",", "_").replace(".", ",").replace("_", ".")


CAST_HANDLERS: dict[str, CastHandler] = {
    "string": _to_string,
    "integer": _to_integer,
    "int": _to_integer,
    "float": _to_float,
    "boolean": _to_boolean,
    "bool": _to_boolean,
    "array": _to_array,
    "date": _to_date,
    "url": _skip_none(quote_plus),
    "urlDecode": _skip_none(unquote_plus),
    "rawurl": _skip_none(lambda text: quote(text, safe="")),
    "rawurlDecode": _skip_none(unquote),
    "html": _skip_none(html.escape),
    "htmlDecode": _skip_none(html.unescape),
    "base64": _skip_none(
        lambda text: base64.b64encode(text.encode("utf-8")).decode("ascii")
    ),
    "base64Decode": _skip_none(_base64_decode),
    "json": _to_json,
    "jsonToArray": _skip_none(_json_decode),
    "utf8": _skip_none(_to_ascii),
    "nullStringToNull": _null_string_to_null,
    "coordinateStringToArray": _coordinates,
    "keyCantBeValue": _key_cant_be_value,
    "unsetIfValue": _unset_if_value,
    "setNullIfValue": _null_if_value,
    "countValue": _count_value,
    "moneyStringToInt": _money_to_int,
    "intToMoneyString": _int_to_money,
}


def apply_cast(output: dict, path: str, cast: str) -> None:
    """Apply one cast to the value at *path* inside *output* (in place).

    Missing paths are left alone.  Unknown casts are logged and ignored.

    Raises:
        MappingError: If the value cannot be converted.
    """
    if not has_path(output, path):
        return

    name, argument = split_cast(cast)
    handler = CAST_HANDLERS.get(name)
    if handler is None:
        logger.warning("Ignoring unsupported cast %r on '%s'", cast, path)
        return

    value = get_path(output, path)
    ctx = CastContext(path=path, argument=argument, output=output)
    try:
        result = handler(value, ctx)
    except CastFailed:
        raise MappingError.cast_failed(path, name, value) from None

    if result is UNSET:
        delete_path(output, path)
    else:
        set_path(output, path, result)
