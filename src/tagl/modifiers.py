"""Built-in modifiers, functions and the default call allow-list."""

from __future__ import annotations

import html
import json
import re
from datetime import date as _date
from datetime import datetime
from typing import Any, Mapping, MutableMapping
from urllib.parse import quote, quote_plus, unquote_plus, urlencode

from tagl.runtime import to_str

_TAG_RE = re.compile(r"<[^>]*>")
_SPACE_RE = re.compile(r"\s+")


def _to_datetime(value: Any) -> datetime:
    if value is None or value == "":
        return datetime.now()
    if isinstance(value, datetime):
        return value
    if isinstance(value, _date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value)
    text = to_str(value).strip()
    if re.fullmatch(r"-?\d+(\.\d+)?", text):
        return datetime.fromtimestamp(float(text))
    return datetime.fromisoformat(text)


def upper(value: Any) -> str:
    return to_str(value).upper()


def lower(value: Any) -> str:
    return to_str(value).lower()


def date_format(value: Any, format: str = "%b %d, %Y") -> str:
    """Format a timestamp, date or ISO string with strftime."""
    return _to_datetime(value).strftime(format)


def date(value: Any, format: str = "%Y-%m-%d") -> str:
    return _to_datetime(value).strftime(format)


def truncate(
    value: Any,
    length: int = 80,
    etc: str = "...",
    by_words: bool = False,
    middle: bool = False,
) -> str:
    """Shorten text to length characters including the etc marker.

    With by_words the cut moves back to a word boundary; with middle the
    marker replaces the middle of the text instead of its tail.
    """
    text = to_str(value)
    if len(text) <= length:
        return text
    length -= min(length, len(etc))
    if middle:
        head = length // 2
        return text[:head] + etc + text[len(text) - (length - head):]
    if by_words:
        text = re.sub(r"\s+?(\S+)?$", "", text[: length + 1])
    return text[:length] + etc


def escape(value: Any, kind: str = "html") -> str:
    text = to_str(value)
    if kind == "html":
        return html.escape(text, quote=True)
    if kind == "url":
        return quote_plus(text)
    if kind == "js":
        return json.dumps(text)[1:-1]
    raise ValueError(f"Unknown escape kind '{kind}'")


def unescape(value: Any, kind: str = "html") -> str:
    text = to_str(value)
    if kind == "html":
        return html.unescape(text)
    if kind == "url":
        return unquote_plus(text)
    raise ValueError(f"Unknown unescape kind '{kind}'")


def url(value: Any) -> str:
    return quote_plus(to_str(value))


def strip(value: Any, replace: str = " ") -> str:
    """Collapse runs of whitespace into replace."""
    return _SPACE_RE.sub(replace, to_str(value).strip())


def default(value: Any, fallback: Any = "") -> Any:
    return fallback if value is None or value == "" else value


MODIFIERS = {
    "upper": upper,
    "lower": lower,
    "date_format": date_format,
    "date": date,
    "truncate": truncate,
    "escape": escape,
    "e": escape,
    "url": url,
    "unescape": unescape,
    "strip": strip,
    "default": default,
}


def capture(params: Mapping[str, Any], content: str, scope: MutableMapping[str, Any]) -> str:
    """``{capture name="x"}...{/capture}`` stores the body in ``$x``."""
    name = params.get("name") or params.get("assign")
    if not name:
        raise ValueError("{capture} requires a name parameter")
    scope[to_str(name)] = content
    return ""


def mailto(params: Mapping[str, Any], scope: Mapping[str, Any]) -> str:
    """``{mailto address=... [text=...] [subject=...] [cc=...] [bcc=...]}``"""
    address = to_str(params.get("address"))
    if not address:
        raise ValueError("{mailto} requires an address parameter")
    text = to_str(params.get("text")) or address
    query = {
        key: to_str(params[key]) for key in ("subject", "cc", "bcc") if params.get(key)
    }
    href = "mailto:" + address
    if query:
        href += "?" + urlencode(query, quote_via=quote)
    return f'<a href="{html.escape(href)}">{html.escape(text)}</a>'


def empty(value: Any) -> bool:
    return not value


def isset(value: Any) -> bool:
    return value is not None


def is_string(value: Any) -> bool:
    return isinstance(value, str)


def is_numeric(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return True
    try:
        float(to_str(value))
    except ValueError:
        return False
    return True


def is_array(value: Any) -> bool:
    return isinstance(value, (list, tuple, dict))


def json_encode(value: Any) -> str:
    return json.dumps(value)


def json_decode(value: Any) -> Any:
    return json.loads(to_str(value))


def strip_tags(value: Any) -> str:
    return _TAG_RE.sub("", to_str(value))


def nl2br(value: Any) -> str:
    return to_str(value).replace("\n", "<br />\n")


ALLOWED_FUNCTIONS = {
    "len": len,
    "count": len,
    "str": str,
    "int": int,
    "float": float,
    "bool": bool,
    "abs": abs,
    "round": round,
    "min": min,
    "max": max,
    "sum": sum,
    "sorted": sorted,
    "range": range,
    "empty": empty,
    "isset": isset,
    "is_string": is_string,
    "is_numeric": is_numeric,
    "is_array": is_array,
    "json_encode": json_encode,
    "json_decode": json_decode,
    "strip_tags": strip_tags,
    "nl2br": nl2br,
}
