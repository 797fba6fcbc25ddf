from datetime import date, datetime, time

WEEKDAYS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")

_WEEKDAY_ALIASES = {
    "mon": "Mon", "monday": "Mon",
    "tue": "Tue", "tues": "Tue", "tuesday": "Tue",
    "wed": "Wed", "wednesday": "Wed",
    "thu": "Thu", "thur": "Thu", "thurs": "Thu", "thursday": "Thu",
    "fri": "Fri", "friday": "Fri",
    "sat": "Sat", "saturday": "Sat",
    "sun": "Sun", "sunday": "Sun",
}


def parse_time_string(time_str: str) -> time:
    """Parses time strings like '8pm', '8:30pm', '20:00', '20:30'."""
    formats = ["%I%p", "%I:%M%p", "%H:%M", "%H:%M:%S"]
    cleaned = time_str.lower().replace(" ", "")
    for fmt in formats:
        try:
            return datetime.strptime(cleaned, fmt).time()
        except ValueError:
            continue
    raise ValueError(f"Could not parse time: {time_str}")


def normalize_weekday(name: str) -> str:
    """Maps 'monday', 'MON', 'Mon' and friends to the canonical 'Mon'."""
    key = name.strip().lower().rstrip(".")
    try:
        return _WEEKDAY_ALIASES[key]
    except KeyError:
        raise ValueError(f"Unknown weekday: {name}") from None


def weekday_name(day: date) -> str:
    return WEEKDAYS[day.weekday()]


def format_clock(value: time) -> str:
    """Formats a time-of-day as HH:MM, keeping seconds only when set."""
    if value.second:
        return value.strftime("%H:%M:%S")
    return value.strftime("%H:%M")


def format_duration_seconds(seconds: int) -> str:
    """
    Formats a duration in seconds into a human-readable string (e.g., '2h 30m' or '45m').
    """
    minutes = seconds // 60
    if minutes == 0 and seconds > 0:
        return "<1m"
    elif minutes < 60:
        return f"{minutes}m"
    else:
        hours = minutes // 60
        remaining_minutes = minutes % 60
        return f"{hours}h {remaining_minutes}m"
