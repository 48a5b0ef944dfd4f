"""Parsing of duration expressions ("1d2,5h30m", "Fri:7,5h") and clock times.

Durations are measured in working time: a day is a fixed 7.5 hour work day
and a week is 5 such days. The decimal separator may be either "." or ",".
Minutes must be whole numbers.
"""

from datetime import date, datetime, time, timedelta
from decimal import ROUND_HALF_UP, Decimal

from models import PlannedEntry
from patterns import Patterns

SECONDS_PER_HOUR = 3600
HOURS_PER_DAY = Decimal("7.5")
DAYS_PER_WEEK = 5
MIN_DURATION_SECONDS = 60

# Weekday anchored entries start at this clock time
DEFAULT_START_TIME = time(8, 0)

UNIT_SECONDS = {
    "w": DAYS_PER_WEEK * HOURS_PER_DAY * SECONDS_PER_HOUR,
    "d": HOURS_PER_DAY * SECONDS_PER_HOUR,
    "h": Decimal(SECONDS_PER_HOUR),
    "m": Decimal(60),
    "min": Decimal(60),
}

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


class ParseError(ValueError):
    """User input that could not be understood."""

    def __init__(self, message: str, token: str):
        super().__init__(message)
        self.token = token


class MalformedNumberError(ParseError):
    pass


class MalformedUnitError(ParseError):
    pass


class FractionalMinutesError(ParseError):
    pass


class UnknownWeekdayError(ParseError):
    pass


class InvalidDateTimeError(ParseError):
    pass


class EndsInFutureError(ParseError):
    pass


def parse_duration(expression: str) -> int:
    """Convert a duration expression into seconds.

    Tokens may come in any order ("30m1h" == "1h30m") and may be separated
    by whitespace, but each unit may only be given once.

    Raises:
        ParseError: one of its subclasses, naming the offending token.
    """
    text = expression.strip()
    if not text:
        raise ParseError("Missing duration, expected something like '1h30m'", expression)

    total = Decimal(0)
    seen_units: set[str] = set()
    pos = 0
    while pos < len(text):
        match = Patterns.DURATION_TOKEN.match(text, pos)
        number, unit = match.groups()
        token = match.group(0).strip()
        pos = match.end()

        if not Patterns.DECIMAL.match(number):
            raise MalformedNumberError(
                f"Malformed number '{number}' in '{token}', expected digits like 7 or 7,5", token
            )

        unit_key = unit.lower()
        if unit_key not in UNIT_SECONDS:
            if not unit:
                message = f"Missing unit after '{number}', use one of w, d, h, m"
            else:
                message = f"Unknown unit '{unit}' in '{token}', use one of w, d, h, m"
            raise MalformedUnitError(message, token)

        canonical = "m" if unit_key == "min" else unit_key
        if canonical in seen_units:
            raise MalformedUnitError(f"Unit '{unit}' given more than once in '{expression}'", token)
        seen_units.add(canonical)

        # Sub-minute precision is never accepted
        if canonical == "m" and not number.isdigit():
            raise FractionalMinutesError(f"Minutes must be a whole number, got '{token}'", token)

        total += Decimal(number.replace(",", ".")) * UNIT_SECONDS[unit_key]

    return int(total.to_integral_value(rounding=ROUND_HALF_UP))


def parse_weekday(token: str) -> int:
    """Weekday number (Monday=0) from an English name or 3-letter abbreviation."""
    name = token.strip().lower()
    for index, weekday in enumerate(WEEKDAYS):
        if name in (weekday, weekday[:3]):
            return index
    raise UnknownWeekdayError(f"Unknown weekday '{token}', use Mon, Tue, ... Sun", token)


def last_weekday(now: datetime, weekday: int) -> date:
    """Most recent date falling on weekday, today included."""
    return now.date() - timedelta(days=(now.weekday() - weekday) % 7)


def parse_date_time(text: str, now: datetime) -> datetime:
    """Parse a start/stop time given on the command line.

    Accepts "08:00" (today), "2024-11-04" (08:00 on that date) and
    "2024-11-04T08:00". The result carries the time zone of now.
    """
    value = text.strip()
    try:
        if Patterns.TIME_FORMAT.match(value):
            clock = datetime.strptime(value, "%H:%M").time()
            naive = datetime.combine(now.date(), clock)
        elif Patterns.DATE_FORMAT.match(value):
            naive = datetime.combine(datetime.strptime(value, "%Y-%m-%d").date(), DEFAULT_START_TIME)
        elif Patterns.DATE_TIME_FORMAT.match(value):
            naive = datetime.strptime(value, "%Y-%m-%dT%H:%M")
        else:
            raise InvalidDateTimeError(
                f"Cannot understand '{text}', expected HH:MM, YYYY-MM-DD or YYYY-MM-DDTHH:MM", text
            )
    except ValueError as e:
        if isinstance(e, ParseError):
            raise
        raise InvalidDateTimeError(f"Invalid date or time '{text}': {e}", text) from e
    return naive.replace(tzinfo=now.tzinfo)


def parse_since(text: str, now: datetime) -> datetime:
    """Lower bound of a report or sync window.

    A plain date means the start of that day, not 08:00; other forms are
    read as by parse_date_time.
    """
    value = text.strip()
    if Patterns.DATE_FORMAT.match(value):
        return parse_date_time(value, now).replace(hour=0, minute=0)
    return parse_date_time(value, now)


def calculate_started(seconds: int, now: datetime, started: datetime | None = None) -> datetime:
    """Start of an entry: the given start, or now minus the duration.

    An entry may not end after now.
    """
    start = started if started is not None else now - timedelta(seconds=seconds)
    end = start + timedelta(seconds=seconds)
    if end > now:
        raise EndsInFutureError(
            f"Starting at {start:%Y-%m-%d %H:%M} and lasting {seconds // 60} minutes "
            f"ends at {end:%Y-%m-%d %H:%M}, which is after now",
            start.isoformat(),
        )
    return start


def expand_durations(
    tokens: list[str], now: datetime, started: datetime | None = None
) -> list[PlannedEntry]:
    """Turn the duration arguments of one invocation into planned entries.

    Every "<Weekday>:<duration>" token becomes its own entry starting at
    08:00 on the most recent such weekday. At most one plain duration may
    be given; it starts at started, or ends now.

    All tokens are parsed before returning, so nothing is submitted when
    any of them is wrong.
    """
    if not tokens:
        raise ParseError("Need at least one duration", "")

    planned = []
    plain_seen = False
    for token in tokens:
        match = Patterns.WEEKDAY_PREFIX.match(token.strip())
        if match:
            day_name, expression = match.groups()
            day = last_weekday(now, parse_weekday(day_name))
            anchor = datetime.combine(day, DEFAULT_START_TIME, tzinfo=now.tzinfo)
            seconds = _checked_duration(expression)
            start = calculate_started(seconds, now, anchor)
        else:
            if plain_seen:
                raise ParseError(
                    f"Only one duration without a weekday prefix is allowed, got '{token}' as well",
                    token,
                )
            plain_seen = True
            seconds = _checked_duration(token)
            start = calculate_started(seconds, now, started)
        planned.append(PlannedEntry(expression=token, duration_seconds=seconds, started=start))
    return planned


def _checked_duration(expression: str) -> int:
    seconds = parse_duration(expression)
    if seconds < MIN_DURATION_SECONDS:
        raise ParseError(f"Duration '{expression}' is shorter than one minute", expression)
    return seconds
