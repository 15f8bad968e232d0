from __future__ import annotations

import logging

import uvicorn

from autotutor.config import load_settings


def main() -> None:
    settings = load_settings()
    # uvicorn only configures its own loggers; this covers the autotutor.* module loggers.
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    uvicorn.run("autotutor.main:app", host="0.0.0.0", port=settings.port, log_level=settings.log_level)


if __name__ == "__main__":
    main()
