"""Command-line entrypoint for running the proxy under uvicorn."""

from __future__ import annotations

import structlog
import uvicorn
from pydantic import ValidationError

from ..common.errors import ConfigurationError
from ..common.settings import ProxySettings
from .app import create_app

LOGGER = structlog.get_logger("pathproxy.main")


def main() -> None:
    try:
        settings = ProxySettings()
    except ValidationError as exc:
        LOGGER.error("invalid_settings", errors=exc.errors(include_url=False, include_context=False))
        raise SystemExit(1) from exc
    try:
        app = create_app(settings)
    except ConfigurationError as exc:
        LOGGER.error("invalid_configuration", error=exc.message)
        raise SystemExit(1) from exc
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
