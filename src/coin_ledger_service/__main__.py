"""Run the service with uvicorn: ``python -m coin_ledger_service``."""

from __future__ import annotations

import uvicorn

from coin_ledger_service.app import create_app
from coin_ledger_service.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        create_app(),
        host=settings.server.host,
        port=settings.server.port,
        log_level=settings.server.log_level,
    )


if __name__ == "__main__":
    main()
