"""
Process entry point: configure logging and serve the app with uvicorn.
"""
from __future__ import annotations

import logging

import uvicorn

from multisearch.config import settings


def main() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    uvicorn.run("multisearch.web_app:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
