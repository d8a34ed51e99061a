"""Run the server: python -m partygame"""

import uvicorn

from partygame.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "partygame.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
