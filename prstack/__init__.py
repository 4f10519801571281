"""
prstack: split one large pull request into a stack of draft PRs.
"""
import logging
import sys
from typing import Optional, TextIO

LOG_FORMAT = '%(asctime)s.%(msecs)03d [%(levelname)s] %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# Libraries that are chatty at DEBUG; only shown from -vv
NOISY_LOGGERS = ("git", "github", "httpx", "httpcore", "urllib3")


def setup_logging(verbose: int = 0, stream: Optional[TextIO] = None) -> None:
    """Configure the root logger for CLI use.

    Args:
        verbose: 0 = INFO (git/github/llm calls are logged as "> ..."),
            1 = DEBUG for prstack itself, 2 = DEBUG for third-party libraries too.
        stream: Where to write, stderr by default.
    """
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT))
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if verbose >= 2 else logging.INFO)

    logging.getLogger(__name__).setLevel(logging.DEBUG if verbose >= 1 else logging.INFO)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if verbose >= 2 else logging.WARNING)
