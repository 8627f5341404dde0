"""
Scheduler utility functions.
"""


def cron_to_human(cron_expr: str) -> str:
    """
    Convert a cron expression to human-readable format.

    Args:
        cron_expr: Standard 5-field cron expression (minute hour day month weekday)

    Returns:
        Human-readable description of the schedule

    Examples:
        - "1 0 * * *" → "Daily at 12:01 AM"
        - "0 4 * * 0" → "Sundays at 4:00 AM"
        - "*/15 * * * *" → "Every 15 minutes"
        - "0 0 1 * *" → "Monthly on day 1 at 12:00 AM"
    """
    if not cron_expr or not isinstance(cron_expr, str):
        return cron_expr or "N/A"

    parts = cron_expr.strip().split()
    if len(parts) != 5:
        return cron_expr

    minute, hour, day, month, weekday = parts

    def format_time(h: str, m: str) -> str:
        try:
            hour_int = int(h)
            min_int = int(m)
        except ValueError:
            return f"{h}:{m}"
        period = "AM" if hour_int < 12 else "PM"
        display_hour = hour_int % 12 or 12
        return f"{display_hour}:{min_int:02d} {period}"

    weekday_names = {
        '0': 'Sundays',
        '1': 'Mondays',
        '2': 'Tuesdays',
        '3': 'Wednesdays',
        '4': 'Thursdays',
        '5': 'Fridays',
        '6': 'Saturdays',
        '7': 'Sundays',
    }

    # Every N minutes: */N * * * *
    if minute.startswith('*/') and hour == '*' and day == '*' and month == '*' and weekday == '*':
        return f"Every {minute[2:]} minutes"

    # Every N hours: 0 */N * * *
    if minute == '0' and hour.startswith('*/') and day == '*' and month == '*' and weekday == '*':
        return f"Every {hour[2:]} hours"

    time_str = format_time(hour, minute)

    if day == '*' and month == '*' and weekday == '*':
        return f"Daily at {time_str}"

    if day == '*' and month == '*':
        if weekday in weekday_names:
            return f"{weekday_names[weekday]} at {time_str}"
        if weekday == '1-5':
            return f"Weekdays at {time_str}"
        return f"Weekday {weekday} at {time_str}"

    if month == '*' and weekday == '*':
        return f"Monthly on day {day} at {time_str}"

    return f"Cron: {cron_expr}"
