"""Substitution of resolved parameters into upstream URL templates."""

from __future__ import annotations

from typing import Mapping
from urllib.parse import quote

from .patterns import PLACEHOLDER_RE, strip_capture_suffix

# Characters encodeURIComponent leaves untouched besides alphanumerics.
_SEGMENT_SAFE = "-_.!~*'()"


def encode_segment(value: str) -> str:
    # Bare dot segments would be collapsed by URL normalisation.
    if value in {".", ".."}:
        return value.replace(".", "%2E")
    return quote(value, safe=_SEGMENT_SAFE)


def encode_value(value: str) -> str:
    """Encode a parameter value, keeping ``/`` separators of captured paths."""
    if "/" in value:
        return "/".join(encode_segment(segment) for segment in value.split("/"))
    return encode_segment(value)


def build_url(template: str, params: Mapping[str, str]) -> str:
    def _substitute(match) -> str:
        name = match.group(1)
        value = params.get(name)
        if value is None:
            value = params.get(strip_capture_suffix(name), "")
        return encode_value(value)

    return PLACEHOLDER_RE.sub(_substitute, template)
