"""Serve the API with uvicorn: ``python -m luxicle`` or ``luxicle-api``."""

import uvicorn

from luxicle.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "luxicle.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_config=None,
    )


if __name__ == "__main__":
    main()
