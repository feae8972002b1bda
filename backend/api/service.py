"""
API service entrypoint (console script ``settlement-api``).

In the combined role every uvicorn worker would start its own settlement
loop, so that role always runs a single worker.
"""
from __future__ import annotations

import os

import uvicorn

from shared.config import ServiceRole, Settings, get_settings


def uvicorn_options(settings: Settings) -> dict:
    """Keyword arguments for uvicorn.run; PORT from the platform wins over api_port."""
    workers = 1 if settings.service_role == ServiceRole.COMBINED else settings.api_workers
    return {
        "host": settings.api_host,
        "port": int(os.environ.get("PORT", settings.api_port)),
        "workers": workers,
        "log_level": settings.log_level.lower(),
        "access_log": False,  # request logging is done by the middleware
        "timeout_keep_alive": 30,
    }


def main() -> None:
    uvicorn.run("api.app:app", **uvicorn_options(get_settings()))


if __name__ == "__main__":
    main()
