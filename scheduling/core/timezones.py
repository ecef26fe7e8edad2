"""Timezone resolution and conversion.

All comparisons and storage use UTC instants. Human-facing values are rendered
on demand for a zone, never stored, so daylight-saving changes cannot leave a
stale offset behind.
"""

import re
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from scheduling.core.errors import InvalidTimeFormat, InvalidZone

LOCAL_TIME_FORMAT = '%Y-%m-%d %H:%M'
LOCAL_TIME_PATTERN = re.compile(r'\d{4}-\d{2}-\d{2}[ T]\d{2}:\d{2}')
UTC_ISO_FORMAT = '%Y-%m-%dT%H:%M:%SZ'


@lru_cache(maxsize=256)
def _load_zone(zone_id: str) -> ZoneInfo | None:
    try:
        return ZoneInfo(zone_id)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        return None


def is_valid_zone(candidate: str | None) -> bool:
    if not candidate or not isinstance(candidate, str):
        return False
    return _load_zone(candidate.strip()) is not None


def ensure_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything we write is UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_utc(value: datetime) -> str:
    return ensure_utc(value).strftime(UTC_ISO_FORMAT)


def format_offset(offset: timedelta | None) -> str:
    total_minutes = int((offset or timedelta(0)).total_seconds() // 60)
    sign = '+' if total_minutes >= 0 else '-'
    hours, minutes = divmod(abs(total_minutes), 60)
    return f'{sign}{hours:02d}:{minutes:02d}'


class TimeZoneResolver:
    """Converts between local wall-clock strings and UTC instants."""

    def __init__(self, default_zone: str) -> None:
        self.default_zone = default_zone

    def resolve_zone(self, candidate: str | None) -> str:
        """Return ``candidate`` if it names a valid zone, else the default zone."""
        if is_valid_zone(candidate):
            return candidate.strip()
        return self.default_zone

    def _zone(self, candidate: str | None) -> tuple[str, ZoneInfo]:
        zone_id = self.resolve_zone(candidate)
        zone = _load_zone(zone_id)
        if zone is None:
            raise InvalidZone(f'Timezone {zone_id!r} could not be loaded.', zone=zone_id)
        return zone_id, zone

    def local_to_instant(self, local_string: str, zone_id: str | None = None) -> datetime:
        """Parse ``YYYY-MM-DD HH:MM`` in ``zone_id`` and return the UTC instant.

        Wall-clock times inside a spring-forward gap do not exist and are
        rejected. Times inside a fall-back overlap resolve to their first
        occurrence.
        """
        if not isinstance(local_string, str) or not LOCAL_TIME_PATTERN.fullmatch(local_string.strip()):
            raise InvalidTimeFormat(
                'Local times must use the format YYYY-MM-DD HH:MM.',
                value=local_string,
            )

        normalized = local_string.strip().replace('T', ' ')
        try:
            naive = datetime.strptime(normalized, LOCAL_TIME_FORMAT)
        except ValueError as exc:
            raise InvalidTimeFormat(f'{normalized} is not a valid date and time.', value=local_string) from exc

        resolved_zone, zone = self._zone(zone_id)
        instant = naive.replace(tzinfo=zone).astimezone(timezone.utc)

        if instant.astimezone(zone).replace(tzinfo=None) != naive:
            raise InvalidTimeFormat(
                f'{normalized} does not exist in {resolved_zone} (daylight saving gap).',
                value=local_string,
                zone=resolved_zone,
            )

        return instant

    def instant_to_display(self, instant: datetime, zone_id: str | None = None) -> dict:
        resolved_zone, zone = self._zone(zone_id)
        utc_instant = ensure_utc(instant)
        local = utc_instant.astimezone(zone)
        return {
            'utc': utc_instant.strftime(UTC_ISO_FORMAT),
            'local': local.strftime(LOCAL_TIME_FORMAT),
            'zone': resolved_zone,
            'abbreviation': local.tzname() or resolved_zone,
            'offset': format_offset(local.utcoffset()),
        }

    def range_display(self, start: datetime, end: datetime, zone_id: str | None = None) -> dict:
        start_display = self.instant_to_display(start, zone_id)
        end_display = self.instant_to_display(end, zone_id)

        start_date, start_clock = start_display['local'].split(' ')
        end_date, end_clock = end_display['local'].split(' ')
        end_label = end_clock if end_date == start_date else end_display['local']

        return {
            'start': start_display,
            'end': end_display,
            'label': f"{start_date} {start_clock}–{end_label} {start_display['abbreviation']}",
        }
