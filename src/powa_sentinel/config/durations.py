import re
from datetime import timedelta

_UNITS: dict[str, float] = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_COMPONENT = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


def parse_duration(value: str) -> timedelta:
    """Parse a duration such as ``"24h"``, ``"1h30m"`` or ``"500ms"``.

    A bare ``"0"`` is accepted. Raises ValueError on anything else that is not
    a sequence of number/unit pairs.
    """
    text = value.strip()
    if not text:
        raise ValueError("empty duration")

    sign = 1.0
    if text[0] in "+-":
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]

    if text == "0":
        return timedelta(0)

    seconds = 0.0
    position = 0
    while position < len(text):
        match = _COMPONENT.match(text, position)
        if match is None:
            raise ValueError(f"invalid duration {value!r}")
        seconds += float(match.group(1)) * _UNITS[match.group(2)]
        position = match.end()

    if position == 0:
        raise ValueError(f"invalid duration {value!r}")

    return timedelta(seconds=sign * seconds)
