"""Immutable proxy configuration assembled once at startup."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

import structlog

from ..common.settings import ProxySettings
from .allowlist import AllowList, describe_rules, parse_allow_rules
from .patterns import ParameterMode, RoutePattern, build_registry

LOGGER = structlog.get_logger("pathproxy.config")


@dataclass(frozen=True)
class ProxyConfig:
    routes: Mapping[str, RoutePattern]
    parameter_mode: ParameterMode
    allow_list: AllowList
    multi_route: bool

    @property
    def cache_ttls(self) -> dict[str, int]:
        return {name: route.cache_ttl_seconds for name, route in self.routes.items()}

    @property
    def caching_enabled(self) -> bool:
        return any(route.caching_enabled for route in self.routes.values())


def load_config(settings: ProxySettings) -> ProxyConfig:
    mode = ParameterMode.POSITIONAL if settings.use_positional_params else ParameterMode.NAMED
    routes = build_registry(
        url_pattern=settings.url_pattern,
        url_patterns=settings.url_patterns,
        parameter_mode=mode,
        default_ttl_seconds=settings.cache_default_ttl_seconds,
    )
    return ProxyConfig(
        routes=routes,
        parameter_mode=mode,
        allow_list=parse_allow_rules(settings.allowed),
        multi_route=bool(settings.url_patterns),
    )


def log_config_summary(config: ProxyConfig) -> None:
    LOGGER.info("parameter_mode", mode=config.parameter_mode.value)
    for route in config.routes.values():
        LOGGER.info(
            "route_configured",
            route=route.name,
            template=route.template,
            parameters=list(route.placeholders),
            cache_ttl_seconds=route.cache_ttl_seconds,
            example_path=route.example_path(config.multi_route),
        )
    if config.allow_list.rules:
        for index, rule in enumerate(describe_rules(config.allow_list), start=1):
            LOGGER.info("allow_rule", index=index, rule=rule)
    else:
        LOGGER.info("allow_list_open", detail="All requests allowed (no restrictions)")
