from datetime import datetime

_UNITS = ((86400, "d"), (3600, "h"), (60, "m"))


def relative_time(updated_at: datetime, now: datetime) -> str:
    """Format last activity. < 60s = 'just now', else '14m/3h/2d ago'."""
    delta_seconds = (now - updated_at).total_seconds()
    # clock skew puts some backend timestamps in the future
    if delta_seconds < 60:
        return "just now"
    for size, suffix in _UNITS:
        if delta_seconds >= size:
            return f"{int(delta_seconds // size)}{suffix} ago"
    return "just now"
