"""
commerce_gateway.api.__main__

Entrypoint for running the gateway via `python -m commerce_gateway.api`.

Responsibilities:
- Load settings and configure structured logging.
- Hand control to the process lifecycle and exit with its status.
"""

from __future__ import annotations

import asyncio

from commerce_gateway.lifecycle import ProcessLifecycle
from commerce_gateway.observability.logging import configure_logging
from commerce_gateway.settings import get_settings


def main() -> None:
    settings = get_settings()
    configure_logging(service_name=settings.service_name, level=settings.log_level)

    lifecycle = ProcessLifecycle(settings=settings)
    lifecycle.install_crash_handlers()
    raise SystemExit(asyncio.run(lifecycle.run()))


if __name__ == "__main__":
    main()


# --- Module Notes -----------------------------------------------------------
# For production, this is commonly invoked behind a process manager (systemd/k8s)
# which sends SIGTERM and expects the process to drain before exiting 0.
