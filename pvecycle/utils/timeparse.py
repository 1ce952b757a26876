import re
from typing import Union


def parse_duration(value: Union[str, int, float]) -> float:
    """
    Parse a duration like 15, '15', '15s', '10m' or '1h' into seconds.

    Plain numbers are taken as seconds.
    """
    if isinstance(value, bool):
        raise ValueError("Invalid duration format")
    if isinstance(value, (int, float)):
        if value < 0:
            raise ValueError("Duration must not be negative")
        return float(value)
    if not isinstance(value, str):
        raise ValueError("Invalid duration format")

    value = value.strip()
    if re.fullmatch(r"\d+(\.\d+)?", value):
        return float(value)
    return float(parse_time(value))


def parse_time(time_str: str) -> int:
    """
    Parse a time string like '15s', '10m', '1h' into seconds.
    """
    if not isinstance(time_str, str):
        raise ValueError("Invalid time string format")

    match = re.fullmatch(r"(\d+)([smh])", time_str.strip())
    if not match:
        raise ValueError("Invalid time string format")

    value, unit = match.groups()
    value = int(value)

    if unit == "s":
        return value
    elif unit == "m":
        return value * 60
    elif unit == "h":
        return value * 3600
    else:
        # This should not be reached due to the regex
        raise ValueError("Invalid time unit")
