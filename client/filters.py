"""
Client-side filtering for the admin tables.

The admin screens load a whole collection once and narrow it down locally
as the admin types, so every helper here takes a list of record dicts and
returns a new list.
"""
import datetime
import math

from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime

ALL = 'all'

FLAG_VALUES = {
    'verified': True,
    'unverified': False,
    'published': True,
    'unpublished': False,
    'active': True,
    'inactive': False,
    'true': True,
    'false': False,
}


def is_unfiltered(value):
    return value is None or value == '' or value == ALL


def search(items, query, fields):
    """Case-insensitive substring match on any of ``fields``; missing or empty fields never match."""
    query = (query or '').lower().strip()
    if not query:
        return list(items)
    return [
        item for item in items
        if any(query in str(item.get(field) or '').lower() for field in fields if item.get(field))
    ]


def search_values(rows, query):
    """Substring match across every value of a row."""
    if not query:
        return list(rows)
    query = query.lower()
    return [row for row in rows if any(query in str(value).lower() for value in row.values())]


def exact(items, field, value, ignore_case=False):
    if is_unfiltered(value):
        return list(items)
    if ignore_case:
        value = str(value).lower()
        return [item for item in items if str(item.get(field) or '').lower() == value]
    return [item for item in items if item.get(field) == value]


def flag(items, field, value):
    """Filter on a boolean field; ``value`` is a bool or a label such as 'verified'."""
    if is_unfiltered(value):
        return list(items)
    if not isinstance(value, bool):
        try:
            value = FLAG_VALUES[str(value).lower()]
        except KeyError:
            raise ValueError(f'Unknown filter value {value!r} for {field}')
    return [item for item in items if bool(item.get(field)) is value]


def contains(items, field, value):
    if not value:
        return list(items)
    value = value.lower()
    return [item for item in items if value in str(item.get(field) or '').lower()]


def _as_date(value):
    if value is None or value == '':
        return None
    if isinstance(value, datetime.datetime):
        return timezone.localtime(value).date() if timezone.is_aware(value) else value.date()
    if isinstance(value, datetime.date):
        return value
    parsed = parse_datetime(value)
    if parsed is not None:
        return _as_date(parsed)
    parsed = parse_date(value)
    if parsed is None:
        raise ValueError(f'Invalid date {value!r}')
    return parsed


def date_range(items, field, date_from=None, date_to=None):
    """Keep records whose ``field`` falls on or between the two dates."""
    start = _as_date(date_from)
    end = _as_date(date_to)
    if start is None and end is None:
        return list(items)
    kept = []
    for item in items:
        day = _as_date(item.get(field))
        if day is None:
            continue
        if start is not None and day < start:
            continue
        if end is not None and day > end:
            continue
        kept.append(item)
    return kept


def paginate(items, page=1, per_page=10):
    """Return ``(page_items, total_pages)`` for a 1-based page number."""
    total_pages = max(1, math.ceil(len(items) / per_page))
    page = min(max(1, page), total_pages)
    start = (page - 1) * per_page
    return items[start:start + per_page], total_pages
