"""
Utility functions for formatting, hashing, dates, and text processing.
"""

import hashlib
import json
import re
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional


def format_address(address: Dict[str, str]) -> str:
    """
    Format a structured address into a single line.

    Args:
        address: Dict with street, city, state, zipCode

    Returns:
        Formatted address string
    """
    if not address:
        return ''

    parts = []
    if address.get('street'):
        parts.append(address['street'])
    if address.get('city'):
        parts.append(address['city'])

    region = ' '.join(p for p in [address.get('state'), address.get('zipCode')] if p)
    if region:
        parts.append(region)

    country = address.get('country')
    if country and country != 'US':
        parts.append(country)

    return ', '.join(parts)


def parse_date(value: Any) -> Optional[date]:
    """
    Parse a date from an ISO string, date or datetime.

    Returns None when the value cannot be interpreted as a date.
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        return value.date()

    if isinstance(value, date):
        return value

    if isinstance(value, str):
        str_value = value.strip()
        if not str_value:
            return None
        try:
            return datetime.strptime(str_value, '%Y-%m-%d').date()
        except ValueError:
            pass
        try:
            return datetime.fromisoformat(str_value.replace('Z', '+00:00')).date()
        except ValueError:
            return None

    return None


def format_date(date_value: Any) -> str:
    """
    Format a date value for the instrument body (e.g. January 5, 2026).

    Args:
        date_value: Date string, date or datetime

    Returns:
        Formatted date string, or the raw value if it cannot be parsed
    """
    if date_value is None:
        return ''

    parsed = parse_date(date_value)
    if parsed is None:
        return str(date_value)

    return f'{parsed.strftime("%B")} {parsed.day}, {parsed.year}'


def age_on(birth_date: date, reference_date: date) -> int:
    """Whole years between birth_date and reference_date."""
    age = reference_date.year - birth_date.year
    if (reference_date.month, reference_date.day) < (birth_date.month, birth_date.day):
        age -= 1
    return age


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, matching how timestamps are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def format_timestamp(timestamp: datetime, tz_name: str = 'UTC') -> str:
    """
    Format a stored generation timestamp for display in a document.

    Naive timestamps are treated as UTC.
    """
    if timestamp is None:
        return ''

    tz = timezone.utc
    if tz_name and tz_name.upper() != 'UTC':
        from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
        try:
            tz = ZoneInfo(tz_name)
        except ZoneInfoNotFoundError:
            pass

    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    local_time = timestamp.astimezone(tz)
    return local_time.strftime('%B %d, %Y at %I:%M %p %Z')


def calculate_sha256(data: bytes) -> str:
    """
    Calculate SHA256 hash of data.

    Args:
        data: Bytes to hash

    Returns:
        Hexadecimal hash string
    """
    return hashlib.sha256(data).hexdigest()


def canonical_json(data: Any) -> str:
    """Serialize data with stable key ordering so equal inputs hash equally."""
    return json.dumps(data, sort_keys=True, separators=(',', ':'), default=str)


def escape_text(text: str) -> str:
    """
    Escape special characters in text for safe PDF rendering.

    Args:
        text: Input text

    Returns:
        Escaped text safe for ReportLab
    """
    if not text:
        return ''

    # ReportLab uses XML-like escaping for special characters
    replacements = [
        ('&', '&amp;'),
        ('<', '&lt;'),
        ('>', '&gt;'),
        ('"', '&quot;'),
    ]

    result = str(text)
    for old, new in replacements:
        result = result.replace(old, new)

    return result


FILENAME_UNSAFE_PATTERN = re.compile(r'[^a-z0-9]+')
MAX_FILENAME_COMPONENT = 50


def sanitize_filename_component(value: str, fallback: str = 'unnamed',
                                max_length: int = MAX_FILENAME_COMPONENT) -> str:
    """
    Reduce a free-text value to lowercase letters, digits and single underscores.

    Args:
        value: Raw text (e.g. a principal's name)
        fallback: Returned when nothing usable remains
        max_length: Maximum length of the result

    Returns:
        Sanitized filename component
    """
    if not value:
        return fallback

    cleaned = FILENAME_UNSAFE_PATTERN.sub('_', str(value).lower()).strip('_')
    cleaned = cleaned[:max_length].rstrip('_')
    return cleaned or fallback


def number_to_words(n: int) -> str:
    """
    Convert a small number to words (for instrument text).

    Args:
        n: Integer number

    Returns:
        Number in words
    """
    if n == 0:
        return 'zero'

    ones = ['', 'one', 'two', 'three', 'four', 'five', 'six', 'seven', 'eight', 'nine']
    teens = ['ten', 'eleven', 'twelve', 'thirteen', 'fourteen', 'fifteen',
             'sixteen', 'seventeen', 'eighteen', 'nineteen']
    tens = ['', '', 'twenty', 'thirty', 'forty', 'fifty', 'sixty', 'seventy', 'eighty', 'ninety']

    if n < 10:
        return ones[n]
    if n < 20:
        return teens[n - 10]
    if n < 100:
        return tens[n // 10] + ('' if n % 10 == 0 else '-' + ones[n % 10])
    return str(n)


ORDINAL_WORDS = ['first', 'second', 'third', 'fourth', 'fifth',
                 'sixth', 'seventh', 'eighth', 'ninth', 'tenth']


def ordinal(n: int) -> str:
    """
    Convert a number to its ordinal word form (first, second, ...).

    Falls back to 11th, 12th style beyond ten.
    """
    if 1 <= n <= len(ORDINAL_WORDS):
        return ORDINAL_WORDS[n - 1]
    if 10 <= n % 100 <= 20:
        suffix = 'th'
    else:
        suffix = {1: 'st', 2: 'nd', 3: 'rd'}.get(n % 10, 'th')
    return f'{n}{suffix}'
