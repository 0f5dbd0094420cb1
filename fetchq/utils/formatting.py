"""
Helper functions for formatting data into human-readable strings.
"""

from rich.filesize import decimal

_DURATION_UNITS = (("h", 3600), ("m", 60), ("s", 1))


def format_size(num_bytes: int | None) -> str:
    """Byte count in the units the progress bars use, e.g. '145.3 MB'."""
    return decimal(num_bytes or 0)


def format_duration(seconds: float) -> str:
    """Elapsed time such as '2h 34m 12s'. Zero-valued units are dropped."""
    remaining = max(int(seconds), 0)
    parts = []
    for suffix, span in _DURATION_UNITS:
        amount, remaining = divmod(remaining, span)
        if amount:
            parts.append(f"{amount}{suffix}")
    return " ".join(parts) or "0s"


def format_percent(fraction: float | None) -> str:
    """Formats an aggregate progress fraction; None means indeterminate."""
    if fraction is None:
        return "n/a"
    return f"{round(fraction * 100)}%"
