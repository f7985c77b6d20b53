import logging
import os
import sys

# Third-party loggers that only get through at WARNING or above
NOISY_LOGGERS = ("pymongo", "httpx", "httpcore", "urllib3", "google_genai", "multipart")


def setup_logging(level: str | None = None) -> None:
    """
    Configure root logging once, before the app starts serving.

    A single stderr handler; our own modules log at LOG_LEVEL while
    chatty client libraries are capped at WARNING.
    """
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()

    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name, logging.INFO))

    # Remove any pre-existing handlers to avoid duplicates under reload.
    for h in list(root.handlers):
        root.removeHandler(h)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.captureWarnings(True)
