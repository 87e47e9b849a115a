"""Parsing of duration strings such as ``"0s"``, ``"250ms"`` or ``"1h2m3.5s"``."""

import re

_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_COMPONENT = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")


class DurationError(ValueError):
    """Raised when a duration string cannot be parsed."""


def parse_duration(text: str) -> float:
    """Return the number of seconds described by ``text``.

    A duration is an optionally signed sequence of decimal numbers, each with
    a unit suffix (``ns``, ``us``/``µs``, ``ms``, ``s``, ``m``, ``h``). The
    bare string ``"0"`` is also accepted.
    """
    original = text
    text = text.strip()
    sign = 1.0
    if text[:1] in ("+", "-"):
        if text[0] == "-":
            sign = -1.0
        text = text[1:]
    if text == "0":
        return 0.0
    if not text:
        raise DurationError(f"invalid duration {original!r}")

    total = 0.0
    position = 0
    while position < len(text):
        match = _COMPONENT.match(text, position)
        if match is None:
            raise DurationError(f"invalid duration {original!r}")
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        position = match.end()
    return sign * total
