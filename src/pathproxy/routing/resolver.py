"""Conversion of request path segments into template parameters."""

from __future__ import annotations

from typing import Mapping, Sequence

import structlog

from ..common.errors import MalformedPath, MissingParameter, UnknownRoute
from .patterns import CAPTURE_SUFFIX, ParameterMode, RoutePattern

LOGGER = structlog.get_logger("pathproxy.resolver")


def resolve_named(segments: Sequence[str]) -> dict[str, str]:
    """Read ``key/value/key2/value2`` pairs.

    A key ending in ``-last`` swallows every remaining segment, joined with
    ``/``, regardless of how many are left.
    """
    params: dict[str, str] = {}
    for index in range(0, len(segments), 2):
        key = segments[index]
        has_value = index + 1 < len(segments)
        if key.endswith(CAPTURE_SUFFIX) and has_value:
            name = key[: -len(CAPTURE_SUFFIX)]
            params[name] = "/".join(segments[index + 1 :])
            LOGGER.debug("capture_parameter", name=name, value=params[name])
            return params
        if not has_value:
            raise MalformedPath(f"Missing value for key: {key}")
        params[key] = segments[index + 1]

    if len(segments) % 2 != 0:
        raise MalformedPath("Invalid number of URL segments")
    return params


def resolve_positional(segments: Sequence[str], max_index: int) -> dict[str, str]:
    """Assign segments to ``{1}``, ``{2}``...; ``{max_index}`` captures the rest."""
    params: dict[str, str] = {}
    for offset, segment in enumerate(segments):
        position = offset + 1
        if position == max_index and offset < len(segments) - 1:
            params[str(position)] = "/".join(segments[offset:])
            LOGGER.debug("capture_parameter", name=str(position), value=params[str(position)])
            break
        params[str(position)] = segment
    return params


def ensure_complete(route: RoutePattern, params: Mapping[str, str]) -> None:
    for name in route.required_parameters:
        if not params.get(name):
            raise MissingParameter(name)


class PathResolver:
    """Resolves segments against the route table."""

    def __init__(self, routes: Mapping[str, RoutePattern]) -> None:
        self._routes = routes

    def route(self, route_name: str) -> RoutePattern:
        try:
            return self._routes[route_name]
        except KeyError:
            raise UnknownRoute(route_name) from None

    def resolve(self, route_name: str, segments: Sequence[str]) -> dict[str, str]:
        route = self.route(route_name)
        if route.parameter_mode is ParameterMode.POSITIONAL:
            params = resolve_positional(segments, route.max_positional_index)
        else:
            params = resolve_named(segments)
        LOGGER.debug("parsed_parameters", route=route_name, mode=route.parameter_mode.value, params=params)
        ensure_complete(route, params)
        return params
