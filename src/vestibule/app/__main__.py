"""Run the service with uvicorn: ``python -m vestibule.app``."""

from __future__ import annotations

import uvicorn

from vestibule.infra.fastapi.settings import ServerSettings


def main() -> None:
    settings = ServerSettings()
    uvicorn.run(
        "vestibule.app:create_application",
        factory=True,
        host=settings.host,
        port=settings.port,
        proxy_headers=settings.proxy_headers,
        log_config=None,
    )


if __name__ == "__main__":
    main()
