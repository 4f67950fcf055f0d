"""
Run the gateway with uvicorn: ``python -m pageview_gateway``.
"""

import uvicorn

from pageview_gateway.config import settings


def main() -> None:
    uvicorn.run(
        "pageview_gateway.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
