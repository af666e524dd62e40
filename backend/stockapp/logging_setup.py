from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def setup_logging(app) -> None:
    """Configure the root logger once from app.config["LOG_LEVEL"]."""
    level_name = str(app.config.get("LOG_LEVEL", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)
    # avoid duplicate handlers when create_app runs more than once (tests)
    if not any(getattr(h, "_stockapp", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._stockapp = True
        root.addHandler(handler)

    logging.getLogger("stockapp").setLevel(level)
    app.logger.setLevel(level)
