from __future__ import annotations

import logging

# Client libraries that are chatty at INFO; they only log below WARNING in debug mode.
_LIBRARY_LOGGERS = ("sqlalchemy.engine", "aiosmtplib", "redis", "firebase_admin", "passlib")


def configure_logging(*, debug: bool, process: str = "api") -> None:
    """Configure root logging for one process.

    ``process`` is ``api`` for the web app and ``worker`` for the job runner, so
    interleaved output from both can be told apart.
    """
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format=f"%(asctime)s | %(levelname)s | {process} | %(name)s | %(message)s",
        force=True,
    )

    if process == "api":
        logging.getLogger("uvicorn.error").setLevel(level)
        logging.getLogger("uvicorn.access").setLevel(level)
    for name in _LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(logging.INFO if debug else logging.WARNING)

    logging.getLogger(__name__).info("Logging configured process=%s debug=%s", process, debug)
