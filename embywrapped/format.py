import random
import re
from datetime import date
from typing import Optional, Union

from .models import Personality, UserStats, WrappedHighlights
from .timerange import MONTH_NAMES

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]

HEAVY_VIEWER_MINUTES = 10000
LIGHT_VIEWER_MINUTES = 2000
MANY_BINGES = 5

DATE_PATTERN = re.compile(r"(\d{4})-(\d{1,2})-(\d{1,2})")


def split_duration(minutes: float) -> tuple[int, int, int]:
    """(days, hours, minutes) for a minute count."""
    days = int(minutes // 1440)
    hours = int((minutes % 1440) // 60)
    mins = int(minutes % 60 + 0.5)
    return days, hours, mins


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'' if count == 1 else 's'}"


def format_duration(minutes: float) -> str:
    """Format minutes as a human readable duration."""
    days, hours, mins = split_duration(minutes)
    if days > 0:
        text = _plural(days, "day")
        if hours > 0:
            text += f", {_plural(hours, 'hour')}"
        return text
    if hours > 0:
        text = _plural(hours, "hour")
        if mins > 0:
            text += f", {mins} min"
        return text
    return _plural(mins, "minute")


def format_number(value: Union[int, float]) -> str:
    return f"{value:,}"


def format_hour(hour: int) -> str:
    """Hour of day in 12-hour form, e.g. 12am, 9pm."""
    if hour == 0:
        return "12am"
    if hour == 12:
        return "12pm"
    if hour < 12:
        return f"{hour}am"
    return f"{hour - 12}pm"


def format_day(day: int) -> str:
    return DAY_NAMES[day]


def format_day_short(day: int) -> str:
    return DAY_NAMES[day][:3]


def format_month(month: int) -> str:
    return MONTH_NAMES[month]


def format_month_short(month: int) -> str:
    return MONTH_NAMES[month][:3]


def format_date(value: str) -> str:
    """'2025-03-01' -> 'March 1, 2025'. Unparseable values come back unchanged."""
    match = DATE_PATTERN.match(value)
    if not match:
        return value
    try:
        parsed = date(*(int(part) for part in match.groups()))
    except ValueError:
        return value
    return f"{MONTH_NAMES[parsed.month - 1]} {parsed.day}, {parsed.year}"


def build_highlights(stats: UserStats) -> WrappedHighlights:
    """Format the headline numbers of a report for display."""
    return WrappedHighlights(
        total_time=format_duration(stats.total_minutes),
        total_minutes=format_number(stats.total_minutes),
        peak_hour=format_hour(stats.peak_hour),
        peak_day=format_day(stats.peak_day),
        peak_month=format_month(stats.peak_month),
        first_watch_date=format_date(stats.first_watch.date) if stats.first_watch else None,
        last_watch_date=format_date(stats.last_watch.date) if stats.last_watch else None,
        day_labels=[format_day_short(day) for day in range(7)],
        month_labels=[format_month_short(month) for month in range(12)],
    )


def _comparison_pool(minutes: float) -> list[str]:
    hours = minutes / 60
    if minutes >= 10000:
        return [
            "Time well spent: that's the entire Lord of the Rings Extended Edition "
            f"{int(minutes // 726)}× over",
            f"You could have watched the entire Friends saga {int(hours // 80)} times",
            f"You could have flown to the Moon and back {int(hours // 76) // 2} times",
            f"Equivalent to driving from NYC to LA {int(hours // 41)} times non-stop",
        ]
    if minutes >= 5000:
        return [
            f"That time equals running {int(hours // 4.5)} marathons back-to-back",
            f"You could fly NYC to Tokyo {int(hours // 14)} times",
            f"Equivalent to watching Titanic {int(minutes // 194)} times",
            f"Time enough for {int(hours // 480)} full Everest expeditions",
        ]
    if minutes >= 2000:
        return [
            f"That's {int(hours // 12)} long road trips worth of entertainment",
            f"{int(hours // 5.5)} coast-to-coast flights",
            f"Equivalent to working a full-time job for {int(hours // 40)} weeks",
            f"You could listen to The Beatles' entire discography {int(minutes // 600)} times",
        ]
    if minutes >= 1000:
        return [
            f"That's {int(hours // 8)} full work days of viewing",
            f"Equivalent to listening to {int(hours // 10)} average-length audiobooks",
            "You could have watched the entire Harry Potter series "
            f"{int(minutes // 1179)} times",
        ]
    if minutes >= 500:
        return [
            f"That's roughly {int(minutes // 120)} feature films",
            f"Equivalent to flying from London to New York {int(hours // 7)} times",
            f"You could watch Titanic {int(minutes // 194)} times",
        ]
    movies = int(minutes // 120)
    return [
        f"{int(minutes // 22)} sitcom episodes worth of time",
        f"About {movies or 1} feature film{'s' if movies > 1 else ''}",
        f"{int(minutes // 45)} album listens back-to-back",
    ]


def get_time_comparison(minutes: float, seed: Optional[str] = None) -> str:
    """A fun comparison for a watch time; the same seed always picks the same line."""
    return random.Random(seed).choice(_comparison_pool(minutes))


def get_viewing_personality(
    is_night_owl: bool,
    is_early_bird: bool,
    is_weekend_warrior: bool,
    peak_hour: Optional[int] = None,
    binge_count: int = 0,
    total_minutes: int = 0,
) -> Personality:
    """Archetype for a combination of viewing traits, most specific first."""
    many_binges = binge_count >= MANY_BINGES
    heavy = total_minutes >= HEAVY_VIEWER_MINUTES
    light = total_minutes < LIGHT_VIEWER_MINUTES
    peak_late = peak_hour is not None and (peak_hour >= 23 or peak_hour <= 3)
    peak_morning = peak_hour is not None and 5 <= peak_hour <= 8

    rules = [
        (
            is_night_owl and is_weekend_warrior and many_binges,
            ("Vampire Cinema Club", "⁂", "Sleep is for the weak. Content is eternal."),
        ),
        (
            is_night_owl and peak_late and heavy,
            ("The Insomniac", "◎", "Who needs sleep when there's one more episode?"),
        ),
        (
            is_night_owl and many_binges,
            ("Goblin Mode Activated", "◬", "Thriving in the darkness, one season at a time."),
        ),
        (
            is_night_owl and is_weekend_warrior,
            ("Midnight Marathoner", "◐", "The couch calls after dark."),
        ),
        (is_early_bird and light, ("The Minimalist", "◇", "Quality over quantity, always.")),
        (
            is_early_bird and peak_morning,
            ("Sunrise Cinephile", "◑", "Coffee in hand, remote in the other."),
        ),
        (is_early_bird, ("Dawn Patrol", "☼", "Catching shows before the world wakes up.")),
        (
            is_weekend_warrior and many_binges,
            ("The Hibernator", "◉", "Weekdays are just the wait before the weekend binge."),
        ),
        (
            is_weekend_warrior and heavy,
            ("Couch Royalty", "◈", "The living room throne awaits every weekend."),
        ),
        (is_weekend_warrior, ("Weekend Warrior", "⚔", "Saving all the good stuff for Saturday.")),
        (is_night_owl, ("Night Owl", "◐", "The best shows come out after midnight.")),
        (
            heavy and many_binges,
            ("The Completionist", "✧", "If it exists, it must be watched. All of it."),
        ),
        (heavy, ("The Archivist", "∴", "Building a mental library, one show at a time.")),
        (light, ("The Phantom", "∿", "Appears briefly, watches intensely, vanishes.")),
    ]
    for matched, (label, symbol, tagline) in rules:
        if matched:
            return Personality(label=label, unicode=symbol, tagline=tagline)
    return Personality(label="The Curator", unicode="◇", tagline="A refined taste, perfectly balanced.")


DAY_PERSONALITIES = [
    ("Sunday Scroller", "The perfect end to the week"),
    ("Monday Motivator", "Starting the week right"),
    ("Tuesday Traveler", "Escaping the midweek blues"),
    ("Wednesday Warrior", "Hump day hero"),
    ("Thursday Thinker", "Almost there..."),
    ("Friday Fanatic", "Weekend mode: activated"),
    ("Saturday Binger", "This is what Saturdays are for"),
]


def get_day_personality(peak_day: int) -> Personality:
    if not 0 <= peak_day < len(DAY_PERSONALITIES):
        peak_day = 0
    label, tagline = DAY_PERSONALITIES[peak_day]
    return Personality(label=label, tagline=tagline)
