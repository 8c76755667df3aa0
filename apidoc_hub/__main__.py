# apidoc_hub/__main__.py
"""Run the hub with uvicorn: python -m apidoc_hub"""
from __future__ import annotations

import os

import uvicorn

from .config import Settings


def main() -> None:
    # Invalid configuration fails here, before uvicorn binds the port
    settings = Settings.from_env()
    uvicorn.run(
        "apidoc_hub.main:app",
        host=settings.host,
        port=settings.port,
        log_level="debug" if os.getenv("DEBUG") else "info",
    )


if __name__ == "__main__":
    main()
