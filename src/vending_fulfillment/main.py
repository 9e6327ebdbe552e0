from __future__ import annotations

import uvicorn

from vending_fulfillment.config import Settings


def main() -> int:
    settings = Settings.from_env()
    uvicorn.run(
        "vending_fulfillment.asgi:app_factory",
        factory=True,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
