"""Module entrypoint to run the diagnostics service with uvicorn.

Example:
    DIAG_SERVICES_PORT=8080 python -m diag_services
"""

from __future__ import annotations

import uvicorn
from uvicorn.config import Config

from diag_services.config import ServiceSettings, configure_logging


def main() -> None:
    settings = ServiceSettings.from_env()
    configure_logging(settings.log_level, log_file=settings.log_file)

    from diag_services.api.server import app

    config = Config(
        app=app,
        host=settings.host,
        port=settings.port,
        reload=settings.reload,
        log_level=settings.log_level,
    )
    server = uvicorn.Server(config)
    server.run()


if __name__ == "__main__":
    main()
