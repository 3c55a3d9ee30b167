import logging
import sys

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Install a single stdout handler on the root logger (idempotent)."""
    root = logging.getLogger()
    if not any(getattr(h, "_leadscraper", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._leadscraper = True
        root.addHandler(handler)
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))
