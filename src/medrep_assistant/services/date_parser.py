"""
Spoken date phrases ("пятница", "завтра", "12.03") -> calendar dates
"""

from datetime import date, datetime, timedelta
from typing import Optional

# Monday == 0, as in date.weekday()
_WEEKDAY_STEMS = (
    ("понедельник", "monday"),
    ("вторник", "tuesday"),
    ("сред", "wednesday"),
    ("четверг", "thursday"),
    ("пятниц", "friday"),
    ("суббот", "saturday"),
    ("воскресень", "sunday"),
)

WEEKDAY_NAMES_RU = (
    "понедельник", "вторник", "среда", "четверг", "пятница", "суббота", "воскресенье",
)

_DATE_FORMATS = ("%Y-%m-%d", "%d.%m.%Y", "%d.%m.%y", "%d/%m/%Y")


def next_weekday(start: date, weekday: int) -> date:
    """Next date falling on `weekday`; a week ahead when `start` already is that day"""
    days_ahead = (weekday - start.weekday()) % 7
    if days_ahead == 0:
        days_ahead = 7
    return start + timedelta(days=days_ahead)


def parse_date_phrase(text: Optional[str], today: Optional[date] = None) -> date:
    """Resolve a date phrase relative to `today`; unknown phrases mean today"""
    today = today or date.today()
    if not text or not text.strip():
        return today

    phrase = text.strip().lower()

    for weekday, stems in enumerate(_WEEKDAY_STEMS):
        if any(stem in phrase for stem in stems):
            return next_weekday(today, weekday)

    if "сегодня" in phrase or "today" in phrase:
        return today
    if "послезавтра" in phrase:
        return today + timedelta(days=2)
    if "завтра" in phrase or "tomorrow" in phrase:
        return today + timedelta(days=1)
    if "вчера" in phrase or "yesterday" in phrase:
        return today - timedelta(days=1)

    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(phrase, fmt).date()
        except ValueError:
            continue

    # "12.03" without a year
    try:
        parsed = datetime.strptime(phrase, "%d.%m")
        return parsed.date().replace(year=today.year)
    except ValueError:
        return today


def format_iso(value: date) -> str:
    return value.strftime("%Y-%m-%d")
