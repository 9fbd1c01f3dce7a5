"""
iCalendar (RFC 5545) reader, VEVENT subset.

- Line unfolding (CRLF/LF followed by space or tab)
- UID / SUMMARY / DESCRIPTION / LOCATION / DTSTART / DTEND
- DTSTART/DTEND: UTC ``Z``, ``TZID=`` via zoneinfo, floating (read as UTC),
  ``VALUE=DATE`` all-day
- Events without UID, SUMMARY or DTSTART are skipped; duplicate UIDs: last wins
"""
from __future__ import annotations
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from tour_intake.common.exceptions import FeedParseError
import structlog

logger = structlog.get_logger()

_ESCAPE_RE = re.compile(r"\\([\\;,nN])")
_END_OF_DAY = time(23, 59, 59)


@dataclass(frozen=True)
class FeedEvent:
    uid: str
    summary: str
    starts_at: datetime
    ends_at: datetime
    description: str | None = None
    location: str | None = None
    all_day: bool = False


def unescape_text(value: str) -> str:
    def _sub(match: re.Match) -> str:
        ch = match.group(1)
        return "\n" if ch in "nN" else ch
    return _ESCAPE_RE.sub(_sub, value)


def unfold_lines(payload: str) -> list[str]:
    lines: list[str] = []
    for raw in re.split(r"\r\n|\n|\r", payload):
        if raw[:1] in (" ", "\t") and lines:
            lines[-1] += raw[1:]
        elif raw:
            lines.append(raw)
    return lines


def split_property(line: str) -> tuple[str, dict[str, str], str]:
    """``NAME;P1=a;P2="b:c":value`` → (NAME, {P1: a, P2: b:c}, value)."""
    in_quotes = False
    colon = -1
    for idx, ch in enumerate(line):
        if ch == '"':
            in_quotes = not in_quotes
        elif ch == ":" and not in_quotes:
            colon = idx
            break
    if colon < 0:
        return line.strip().upper(), {}, ""
    head, value = line[:colon], line[colon + 1:]
    name, *raw_params = head.split(";")
    params: dict[str, str] = {}
    for p in raw_params:
        key, _, val = p.partition("=")
        params[key.strip().upper()] = val.strip().strip('"')
    return name.strip().upper(), params, value


def _zone(tzid: str):
    try:
        return ZoneInfo(tzid)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("ical_unknown_tzid", tzid=tzid)
        return timezone.utc


def parse_ical_datetime(value: str, params: dict[str, str]) -> tuple[datetime, bool]:
    """Returns (UTC datetime, all_day)."""
    value = value.strip()
    if params.get("VALUE", "").upper() == "DATE" or (len(value) == 8 and value.isdigit()):
        day = datetime.strptime(value[:8], "%Y%m%d").date()
        return datetime.combine(day, time(0, 0), tzinfo=timezone.utc), True

    utc = value.endswith("Z")
    stamp = value.rstrip("Z")
    fmt = "%Y%m%dT%H%M%S" if len(stamp) >= 15 else "%Y%m%dT%H%M"
    parsed = datetime.strptime(stamp, fmt)
    if utc:
        return parsed.replace(tzinfo=timezone.utc), False
    if "TZID" in params:
        return parsed.replace(tzinfo=_zone(params["TZID"])).astimezone(timezone.utc), False
    return parsed.replace(tzinfo=timezone.utc), False


def _all_day_end(start: date, end_exclusive: date | None) -> datetime:
    # DTEND on all-day events is exclusive
    last_day = start
    if end_exclusive is not None and end_exclusive > start:
        last_day = end_exclusive - timedelta(days=1)
    return datetime.combine(last_day, _END_OF_DAY, tzinfo=timezone.utc)


def _build_event(props: dict[str, tuple[dict[str, str], str]]) -> FeedEvent | None:
    uid = props.get("UID", ({}, ""))[1].strip()
    summary = unescape_text(props.get("SUMMARY", ({}, ""))[1]).strip()
    if not uid or not summary or "DTSTART" not in props:
        return None

    try:
        start, all_day = parse_ical_datetime(props["DTSTART"][1], props["DTSTART"][0])
        end = None
        if "DTEND" in props:
            end, _ = parse_ical_datetime(props["DTEND"][1], props["DTEND"][0])
    except ValueError:
        logger.warning("ical_bad_datetime", uid=uid)
        return None

    if all_day:
        ends_at = _all_day_end(start.date(), end.date() if end else None)
    else:
        ends_at = end if end is not None and end >= start else start

    description = props.get("DESCRIPTION")
    location = props.get("LOCATION")
    return FeedEvent(
        uid=uid,
        summary=summary,
        starts_at=start,
        ends_at=ends_at,
        description=unescape_text(description[1]) or None if description else None,
        location=unescape_text(location[1]) or None if location else None,
        all_day=all_day,
    )


def parse_feed(payload: str | bytes) -> list[FeedEvent]:
    if isinstance(payload, bytes):
        payload = payload.decode("utf-8", errors="replace")
    lines = unfold_lines(payload.lstrip("\ufeff"))
    if not any(line.strip().upper() == "BEGIN:VCALENDAR" for line in lines):
        raise FeedParseError("Payload is not an iCalendar feed")

    events: dict[str, FeedEvent] = {}
    skipped = 0
    props: dict[str, tuple[dict[str, str], str]] | None = None
    nested = 0  # VALARM etc. inside a VEVENT

    for line in lines:
        name, params, value = split_property(line)
        if name == "BEGIN":
            if value.strip().upper() == "VEVENT":
                props, nested = {}, 0
            elif props is not None:
                nested += 1
            continue
        if name == "END":
            if value.strip().upper() == "VEVENT" and props is not None:
                event = _build_event(props)
                if event is None:
                    skipped += 1
                else:
                    events.pop(event.uid, None)
                    events[event.uid] = event
                props = None
            elif props is not None and nested:
                nested -= 1
            continue
        if props is not None and not nested and name not in props:
            props[name] = (params, value)

    if skipped:
        logger.info("ical_events_skipped", skipped=skipped)
    return list(events.values())
