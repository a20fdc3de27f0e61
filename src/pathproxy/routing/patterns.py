"""Route table: URL templates, their placeholders and cache lifetimes."""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional

from ..common.errors import ConfigurationError

DEFAULT_ROUTE = "DEFAULT"
CAPTURE_SUFFIX = "-last"

PLACEHOLDER_RE = re.compile(r"\{(\w+(?:-last)?)\}", re.ASCII)
CACHE_MARKER = "|cache:"
CACHE_ANNOTATION_RE = re.compile(r"\|cache:(\d+)\s*$")
ROUTE_NAME_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


class ParameterMode(str, enum.Enum):
    NAMED = "named"
    POSITIONAL = "positional"


def extract_placeholders(template: str) -> tuple[str, ...]:
    """Return placeholder tokens in template order, duplicates removed."""
    seen: dict[str, None] = {}
    for match in PLACEHOLDER_RE.finditer(template):
        seen.setdefault(match.group(1), None)
    return tuple(seen)


def strip_capture_suffix(name: str) -> str:
    if name.endswith(CAPTURE_SUFFIX):
        return name[: -len(CAPTURE_SUFFIX)]
    return name


def split_cache_annotation(raw_template: str) -> tuple[str, Optional[int]]:
    """Split ``https://host/{a}|cache:60`` into the template and its TTL."""
    match = CACHE_ANNOTATION_RE.search(raw_template)
    if match is None:
        if CACHE_MARKER in raw_template:
            raise ConfigurationError(f"Malformed cache annotation in {raw_template.strip()!r} (expected |cache:<seconds>)")
        return raw_template.strip(), None
    return raw_template[: match.start()].strip(), int(match.group(1))


@dataclass(frozen=True)
class RoutePattern:
    name: str
    template: str
    parameter_mode: ParameterMode = ParameterMode.NAMED
    cache_ttl_seconds: int = 0
    placeholders: tuple[str, ...] = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "placeholders", extract_placeholders(self.template))

    @property
    def required_parameters(self) -> tuple[str, ...]:
        """Names that must be resolved before the template can be built."""
        if self.parameter_mode is ParameterMode.NAMED:
            names = (strip_capture_suffix(name) for name in self.placeholders)
            return tuple(dict.fromkeys(names))
        return self.placeholders

    @property
    def max_positional_index(self) -> int:
        indices = [int(name) for name in self.placeholders if name.isdigit()]
        if not indices:
            raise ConfigurationError(f"Route {self.name} has no numeric placeholders")
        return max(indices)

    @property
    def caching_enabled(self) -> bool:
        return self.cache_ttl_seconds > 0

    def example_path(self, multi_route: bool) -> str:
        if self.parameter_mode is ParameterMode.POSITIONAL:
            parts = [f"<value{name}>" for name in self.placeholders if name.isdigit()]
        else:
            parts = [f"{name}/<{strip_capture_suffix(name)}>" for name in self.placeholders]
        path = "/".join(parts)
        return f"/service/{self.name}/{path}" if multi_route else f"/{path}"


def parse_route_entries(raw: str) -> dict[str, str]:
    """Parse ``name=template,name2=template2`` into raw (annotated) templates."""
    entries: dict[str, str] = {}
    for entry in raw.split(","):
        if not entry.strip():
            continue
        name, sep, template = entry.partition("=")
        name = name.strip()
        if not sep or not name or not template.strip():
            raise ConfigurationError(f"Malformed route entry: {entry.strip()!r} (expected NAME=URL)")
        entries[name] = template.strip()
    if not entries:
        raise ConfigurationError("URL_PATTERNS does not define any routes")
    return entries


def build_registry(
    *,
    url_pattern: Optional[str],
    url_patterns: Optional[str],
    parameter_mode: ParameterMode,
    default_ttl_seconds: int = 0,
) -> Mapping[str, RoutePattern]:
    """Build the read-only ``name -> RoutePattern`` table from raw configuration."""
    if url_pattern and url_patterns:
        raise ConfigurationError("Cannot use both URL_PATTERNS and URL_PATTERN. Use only one.")
    if not url_pattern and not url_patterns:
        raise ConfigurationError("Missing required configuration: URL_PATTERNS or URL_PATTERN")

    raw_entries = parse_route_entries(url_patterns) if url_patterns else {DEFAULT_ROUTE: url_pattern.strip()}

    routes: dict[str, RoutePattern] = {}
    for name, raw_template in raw_entries.items():
        if not ROUTE_NAME_RE.match(name) or name in {".", ".."}:
            raise ConfigurationError(f"Invalid route name: {name!r}")
        template, ttl = split_cache_annotation(raw_template)
        if not template:
            raise ConfigurationError(f"Route {name} has an empty URL template")
        route = RoutePattern(
            name=name,
            template=template,
            parameter_mode=parameter_mode,
            cache_ttl_seconds=default_ttl_seconds if ttl is None else ttl,
        )
        if parameter_mode is ParameterMode.POSITIONAL and not any(p.isdigit() for p in route.placeholders):
            raise ConfigurationError(f"Route {name} has no numeric placeholders for positional parameters")
        routes[name] = route
    return MappingProxyType(routes)
