from __future__ import annotations

import dataclasses

import pytest

from pathproxy.common.errors import ConfigurationError
from pathproxy.common.settings import ProxySettings
from pathproxy.routing.config import load_config
from pathproxy.routing.patterns import (
    DEFAULT_ROUTE,
    ParameterMode,
    RoutePattern,
    build_registry,
    extract_placeholders,
    parse_route_entries,
    split_cache_annotation,
)

GITHUB = "https://github.com/{owner}/{repository}/releases/download/{tag}/{filename}"


def test_extract_placeholders_in_template_order() -> None:
    assert extract_placeholders(GITHUB) == ("owner", "repository", "tag", "filename")
    assert extract_placeholders("https://x/{a}/{b}/{a}") == ("a", "b")
    assert extract_placeholders("https://x/{path-last}") == ("path-last",)
    assert extract_placeholders("https://x/static") == ()


def test_split_cache_annotation() -> None:
    assert split_cache_annotation("https://x/{a}|cache:120") == ("https://x/{a}", 120)
    assert split_cache_annotation("https://x/{a}") == ("https://x/{a}", None)


def test_parse_route_entries_keeps_equals_in_urls() -> None:
    entries = parse_route_entries("github=https://github.com/{owner}, npm=https://registry/{pkg}?v=1")
    assert entries == {"github": "https://github.com/{owner}", "npm": "https://registry/{pkg}?v=1"}


@pytest.mark.parametrize("raw", ["github", "=https://x/{a}", "github="])
def test_parse_route_entries_rejects_malformed(raw: str) -> None:
    with pytest.raises(ConfigurationError):
        parse_route_entries(raw)


def test_single_pattern_uses_default_route() -> None:
    routes = build_registry(url_pattern=GITHUB, url_patterns=None, parameter_mode=ParameterMode.NAMED)
    assert list(routes) == [DEFAULT_ROUTE]
    assert routes[DEFAULT_ROUTE].template == GITHUB
    assert routes[DEFAULT_ROUTE].cache_ttl_seconds == 0


def test_multi_pattern_with_cache_annotation() -> None:
    routes = build_registry(
        url_pattern=None,
        url_patterns=f"github={GITHUB}|cache:3600,raw=https://raw.example.com/{{path}}",
        parameter_mode=ParameterMode.NAMED,
    )
    assert routes["github"].template == GITHUB
    assert routes["github"].cache_ttl_seconds == 3600
    assert routes["github"].caching_enabled
    assert routes["raw"].cache_ttl_seconds == 0


def test_default_ttl_applies_without_annotation() -> None:
    routes = build_registry(
        url_pattern=None,
        url_patterns="a=https://x/{a}|cache:5,b=https://y/{b}",
        parameter_mode=ParameterMode.NAMED,
        default_ttl_seconds=30,
    )
    assert routes["a"].cache_ttl_seconds == 5
    assert routes["b"].cache_ttl_seconds == 30


def test_registry_is_read_only() -> None:
    routes = build_registry(url_pattern=GITHUB, url_patterns=None, parameter_mode=ParameterMode.NAMED)
    with pytest.raises(TypeError):
        routes["other"] = routes[DEFAULT_ROUTE]  # type: ignore[index]
    with pytest.raises(dataclasses.FrozenInstanceError):
        routes[DEFAULT_ROUTE].template = "https://elsewhere"  # type: ignore[misc]


def test_both_sources_rejected() -> None:
    with pytest.raises(ConfigurationError, match="both"):
        build_registry(url_pattern=GITHUB, url_patterns=f"a={GITHUB}", parameter_mode=ParameterMode.NAMED)


def test_missing_sources_rejected() -> None:
    with pytest.raises(ConfigurationError, match="Missing"):
        build_registry(url_pattern=None, url_patterns=None, parameter_mode=ParameterMode.NAMED)


def test_positional_template_without_numeric_placeholders_rejected() -> None:
    with pytest.raises(ConfigurationError, match="numeric"):
        build_registry(url_pattern=GITHUB, url_patterns=None, parameter_mode=ParameterMode.POSITIONAL)


@pytest.mark.parametrize("name", ["..", "a/b", "bad name"])
def test_route_names_must_be_directory_safe(name: str) -> None:
    with pytest.raises(ConfigurationError, match="route name"):
        build_registry(url_pattern=None, url_patterns=f"{name}=https://x/{{a}}", parameter_mode=ParameterMode.NAMED)


def test_required_parameters_strip_capture_suffix() -> None:
    route = RoutePattern(name="r", template="https://x/{service}/{path-last}")
    assert route.placeholders == ("service", "path-last")
    assert route.required_parameters == ("service", "path")


def test_positional_route_max_index() -> None:
    route = RoutePattern(name="r", template="https://x/{1}/y/{3}/{2}", parameter_mode=ParameterMode.POSITIONAL)
    assert route.max_positional_index == 3
    assert route.example_path(multi_route=True) == "/service/r/<value1>/<value3>/<value2>"


def test_named_example_path() -> None:
    route = RoutePattern(name="r", template="https://x/{owner}/{path-last}")
    assert route.example_path(multi_route=False) == "/owner/<owner>/path-last/<path>"


def test_load_config_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("URL_PATTERN", raising=False)
    monkeypatch.setenv("URL_PATTERNS", "files=https://cdn.example.com/{1}/{2}|cache:60")
    monkeypatch.setenv("USE_POSITIONAL_PARAMS", "true")
    monkeypatch.setenv("ALLOWED", "1=public*")
    settings = ProxySettings(_env_file=None)

    config = load_config(settings)

    assert config.multi_route is True
    assert config.parameter_mode is ParameterMode.POSITIONAL
    assert config.cache_ttls == {"files": 60}
    assert config.caching_enabled
    assert len(config.allow_list) == 1


def test_blank_environment_values_count_as_missing(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("URL_PATTERNS", "")
    monkeypatch.setenv("URL_PATTERN", GITHUB)
    config = load_config(ProxySettings(_env_file=None))
    assert config.multi_route is False
    assert list(config.routes) == [DEFAULT_ROUTE]


@pytest.mark.parametrize("annotation", ["|cache:abc", "|cache:-5", "|cache:", "|cache:60 extra"])
def test_malformed_cache_annotation_is_rejected(annotation: str) -> None:
    with pytest.raises(ConfigurationError, match="Malformed cache annotation"):
        split_cache_annotation(f"https://x/{{a}}{annotation}")
    with pytest.raises(ConfigurationError):
        build_registry(url_pattern=None, url_patterns=f"x=https://x/{{a}}{annotation}", parameter_mode=ParameterMode.NAMED)
