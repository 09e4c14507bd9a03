"""
Normalize raw external field values into canonical comparable forms.

All functions here are pure: no I/O, no clock, no locale-dependent case
folding. Empty or whitespace-only input normalizes to "" and callers must
reject empty identifying fields rather than persist them.
"""

from typing import Any, Optional
from datetime import date, datetime, timezone
import html
import re

import pandas as pd

_ORG_SUFFIX_RE = re.compile(
    r"\b(inc\.?|incorporated|llc|llp|l\.l\.c\.?|corp\.?|corporation|co\.?|company"
    r"|ltd\.?|limited|plc|pllc|lp|l\.p\.)\b"
)
_DBA_RE = re.compile(r"\s*\bd/?b/?a\b.*")
_PUNCT_RE = re.compile(r"[^\w\s-]")
_WS_RE = re.compile(r"\s+")
_REGION_SUFFIX_RE = re.compile(r"(?:\s+(?:county|parish|borough))+$")
_SLUG_STRIP_RE = re.compile(r"[^a-z0-9\s-]")
_HTML_TAG_RE = re.compile(r"<[^>]*>")

_US_DATE_RE = re.compile(r"^(\d{1,2})[/-](\d{1,2})[/-](\d{4})$")
_US_SHORT_DATE_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{2})$")
_ISO_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})")
_COMPACT_DATE_RE = re.compile(r"^(\d{4})(\d{2})(\d{2})$")


def _org_pass(value: str) -> str:
    value = value.lower().strip()
    value = _ORG_SUFFIX_RE.sub("", value)
    value = _DBA_RE.sub("", value)
    value = _PUNCT_RE.sub("", value)
    return _WS_RE.sub(" ", value).strip()


def normalize_org_name(raw: Optional[str]) -> str:
    """
    Canonical organization name used for matching and slugs.

    Lowercases, strips corporate suffixes (Inc, LLC, Corp, Ltd, ...) as whole
    words, drops a "d/b/a" clause and everything after it, removes
    punctuation except hyphens and collapses whitespace.

    The pass is repeated until nothing changes, so "Acme Co. Inc." and
    "Acme" both end up as "acme" and normalizing twice is a no-op.
    """
    if not raw:
        return ""

    current = _org_pass(raw)
    while True:
        nxt = _org_pass(current)
        if nxt == current:
            return current
        current = nxt


def slugify(canonical: Optional[str]) -> str:
    """URL-safe identifier: [a-z0-9-], single hyphens, no leading/trailing hyphen"""
    if not canonical:
        return ""

    value = _SLUG_STRIP_RE.sub("", canonical.lower())
    value = _WS_RE.sub("-", value.strip())
    value = re.sub(r"-+", "-", value)
    return value.strip("-")


def normalize_region_name(raw: Optional[str]) -> str:
    """Lowercase, drop a trailing "County"/"Parish"/"Borough", collapse whitespace"""
    if not raw:
        return ""

    value = _WS_RE.sub(" ", raw.lower()).strip()
    value = _REGION_SUFFIX_RE.sub("", value)
    return value.strip()


def clean_html(value: Optional[str]) -> Optional[str]:
    """Strip tags, decode entities and collapse whitespace"""
    if not value:
        return None

    text = _HTML_TAG_RE.sub("", value)
    text = html.unescape(text).replace("\xa0", " ")
    text = _WS_RE.sub(" ", text).strip()
    return text or None


def parse_number(value: Any) -> Optional[int]:
    """
    Parse a count such as "1,200" or " 150 employees".

    Every non-digit is discarded; no digits means no value.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return None if value != value else int(value)

    digits = re.sub(r"[^\d]", "", str(value))
    if not digits:
        return None
    return int(digits)


def parse_float(value: Any) -> Optional[float]:
    """Safely parse float value"""
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (ValueError, TypeError):
        return None


def parse_date(value: Any) -> Optional[date]:
    """
    Parse the date formats seen in agency exports.

    Accepts MM/DD/YYYY, MM/DD/YY (20xx), MM-DD-YYYY, ISO (date part only)
    and compact YYYYMMDD, then falls back to pandas for free text. Returns
    None when nothing matches or the parts form an impossible date.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    if not text:
        return None

    try:
        match = _US_DATE_RE.match(text)
        if match:
            month, day, year = (int(p) for p in match.groups())
            return date(year, month, day)

        match = _US_SHORT_DATE_RE.match(text)
        if match:
            month, day, year = (int(p) for p in match.groups())
            return date(2000 + year, month, day)

        match = _ISO_DATE_RE.match(text)
        if match:
            year, month, day = (int(p) for p in match.groups())
            return date(year, month, day)

        match = _COMPACT_DATE_RE.match(text)
        if match:
            year, month, day = (int(p) for p in match.groups())
            return date(year, month, day)
    except ValueError:
        return None

    parsed = pd.to_datetime(text, errors="coerce")
    if pd.isna(parsed):
        return None
    return parsed.date()


def to_naive_utc(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values pass through"""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def parse_datetime(value: Any) -> Optional[datetime]:
    """Safely parse a timestamp into naive UTC"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, (int, float)):
        # Epoch milliseconds (utility APIs)
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc).replace(tzinfo=None)

    text = str(value).strip()
    try:
        return to_naive_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError:
        pass

    parsed = pd.to_datetime(text, errors="coerce", utc=True)
    if pd.isna(parsed):
        return None
    return parsed.tz_convert(None).to_pydatetime()
