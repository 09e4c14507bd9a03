"""
Dedupe fingerprints for sources where historical reappearance must be
suppressed (layoff notices).
"""

from typing import Optional, Union
from datetime import date, datetime
import hashlib

from core.exceptions import DataFormatError
from ingestion.transformers.normalizer import (
    normalize_org_name,
    normalize_region_name,
    parse_date,
)

# Not expected inside any normalized field
FINGERPRINT_SEPARATOR = "|"


def iso_date_part(value: Union[date, datetime, str]) -> str:
    """YYYY-MM-DD for a date, a datetime or a parseable date string"""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()

    parsed = parse_date(value)
    if parsed is None:
        raise DataFormatError(
            f"Unparseable date for fingerprint: {value!r}",
            context={"value": str(value)},
        )
    return parsed.isoformat()


def fingerprint_parts(
    source_code: str,
    org_name_raw: str,
    region_raw: Optional[str],
    notice_date: Union[date, datetime, str],
    count: Optional[int],
) -> list:
    """Ordered composite key the fingerprint is computed from"""
    return [
        source_code.upper(),
        normalize_org_name(org_name_raw),
        normalize_region_name(region_raw or ""),
        iso_date_part(notice_date),
        str(count or 0),
    ]


def fingerprint(
    source_code: str,
    org_name_raw: str,
    region_raw: Optional[str],
    notice_date: Union[date, datetime, str],
    count: Optional[int],
) -> str:
    """
    SHA-256 hex digest over the identifying fields of a record.

    The impacted count is part of the key: two filings that differ only in
    the number of affected workers are distinct notices (amendments), so
    they get distinct fingerprints.

    Example:
        fingerprint("NC", "Acme Inc.", "Wake County", date(2024, 11, 15), 150)
        == sha256("NC|acme|wake|2024-11-15|150")
    """
    key = FINGERPRINT_SEPARATOR.join(
        fingerprint_parts(source_code, org_name_raw, region_raw, notice_date, count)
    )
    return hashlib.sha256(key.encode("utf-8")).hexdigest()
