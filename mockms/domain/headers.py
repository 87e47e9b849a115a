"""Header spec parsing and name canonicalization."""

from mockms.domain.http_types import find_header


class HeaderSpecError(ValueError):
    """Raised when a ``Name:Value`` header list is malformed."""


def canonical_header_name(name: str) -> str:
    """Canonicalize a header name, e.g. ``x-request-id`` -> ``X-Request-Id``."""
    return "-".join(part[:1].upper() + part[1:].lower() for part in name.split("-"))


def parse_header_spec(spec: str, keep_case: bool = False) -> list[tuple[str, str]]:
    """Parse a comma-separated list of ``Name:Value`` pairs.

    Each pair is split on its first colon, so values may themselves contain
    colons (``Authorization: Bearer a:b``). Surrounding whitespace is trimmed
    from both sides and empty items are ignored.
    """
    pairs: list[tuple[str, str]] = []
    for item in spec.split(","):
        if not item.strip():
            continue
        name, separator, value = item.partition(":")
        name = name.strip()
        if not separator or not name:
            raise HeaderSpecError(f"header {item.strip()!r} is not in Name:Value form")
        if not keep_case:
            name = canonical_header_name(name)
        pairs.append((name, value.strip()))
    return pairs


def build_injected_headers(
    pairs: list[tuple[str, str]], default_content_type: str
) -> dict[str, str]:
    """Return the headers to inject, adding the default Content-Type if absent."""
    headers: dict[str, str] = {}
    for name, value in pairs:
        existing = find_header(headers, name)
        if existing is not None and existing != name:
            del headers[existing]
        headers[name] = value
    if find_header(headers, "Content-Type") is None:
        headers["Content-Type"] = default_content_type
    return headers


def merge_headers(base: dict[str, str], overrides: dict[str, str]) -> dict[str, str]:
    """Merge ``overrides`` over ``base`` matching names case-insensitively."""
    merged = dict(base)
    for name, value in overrides.items():
        existing = find_header(merged, name)
        if existing is not None:
            del merged[existing]
        merged[name] = value
    return merged
