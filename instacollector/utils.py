#!/usr/bin/env python3
"""
Utilities - Path, host list and formatting helpers
"""

import os
import re
import shutil
from datetime import datetime, timedelta, timezone
from typing import Iterable, List

from .errors import ArgumentValidationError

DECIMAL_ABBRS = ['B', 'kB', 'MB', 'GB', 'TB', 'PB', 'EB', 'ZB', 'YB']

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# Fraction of a second directly followed by the UTC offset
FRACTION_PATTERN = re.compile(r"\.(\d+)(?=[+-]\d{2}:\d{2}$)")


def expand(path: str) -> str:
    """Expand a leading '~' or '~/' using $HOME; '~user' is left untouched"""
    if not path:
        return path
    if path[0] != '~':
        return path
    if len(path) > 1 and path[1] != '/':
        return path
    home = os.environ.get('HOME', '')
    rest = path[2:]
    if not rest:
        return home
    return os.path.join(home, rest)


def exists(path: str) -> bool:
    return os.path.exists(path)


def copy_file(src: str, dst: str):
    shutil.copyfile(src, dst)


def join_to_set(a: Iterable[str], b: Iterable[str]) -> List[str]:
    """
    Merge two host lists into one ordered, duplicate free list.

    Items are whitespace-trimmed and empty items are dropped. The first
    occurrence of each value decides its position.
    """
    values = []
    seen = set()
    for items in (a or [], b or []):
        for item in items:
            value = item.strip()
            if value and value not in seen:
                seen.add(value)
                values.append(value)
    return values


def human_size(size: float) -> str:
    """Human readable size capped at 4 significant digits (eg. "2.746 MB")"""
    i = 0
    while size >= 1000.0 and i < len(DECIMAL_ABBRS) - 1:
        size = size / 1000.0
        i += 1
    return f"{size:.4g} {DECIMAL_ABBRS[i]}"


def parse_timestamp(value: str) -> datetime:
    """
    Parse an RFC 3339 datetime into an aware UTC datetime.

    The date/time separator may be 'T', 't' or a space and the fraction of
    a second may have any number of digits; it is cut to microseconds.
    """
    text = value.strip()
    if text.endswith('Z') or text.endswith('z'):
        text = text[:-1] + '+00:00'
    if len(text) > 10 and text[10] in 'tT ':
        text = text[:10] + 'T' + text[11:]
    text = FRACTION_PATTERN.sub(lambda m: '.' + m.group(1)[:6].ljust(6, '0'), text)
    try:
        timestamp = datetime.fromisoformat(text)
    except ValueError as e:
        raise ArgumentValidationError(f"Invalid RFC3339 datetime '{value}' ({e})")
    if timestamp.tzinfo is None:
        raise ArgumentValidationError(f"Invalid RFC3339 datetime '{value}' (missing time zone offset)")
    return timestamp.astimezone(timezone.utc)


def epoch_ms_to_utc(ms: int) -> datetime:
    """Milliseconds since the Unix epoch as an aware UTC datetime"""
    return EPOCH + timedelta(milliseconds=ms)
