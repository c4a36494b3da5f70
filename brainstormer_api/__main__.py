"""Run the Brainstormer API with uvicorn: ``python -m brainstormer_api``.

Supports environment variables:
- HOST: Bind address (default: 0.0.0.0)
- PORT: HTTP port (default: 3000)
- LOG_LEVEL: uvicorn and application log level (default: INFO)
"""

import sys

import uvicorn

from brainstormer_api.config import get_settings


def main() -> None:
    """Start uvicorn with the configured bind address."""
    settings = get_settings()
    print(f"Starting Brainstormer API on {settings.host}:{settings.port}", file=sys.stderr)
    uvicorn.run(
        "brainstormer_api.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=False,
    )


if __name__ == "__main__":
    main()
