from __future__ import annotations

import logging
import os
import platform
from collections import deque


LOG_NAME = "programme_variance"
LOG_DIR_ENV_VAR = "PROGRAMME_VARIANCE_LOG_DIR"
_RECENT_LOG_LINES: deque[str] = deque(maxlen=400)


def _log_path() -> str:
    override = (os.getenv(LOG_DIR_ENV_VAR) or "").strip()
    if override:
        return os.path.join(override, "programme_variance.log")

    system = platform.system()
    if system == "Windows":
        base = os.getenv("APPDATA") or os.path.join(os.path.expanduser("~"), "AppData", "Roaming")
        return os.path.join(base, "ProgrammeVariance", "programme_variance.log")
    if system == "Darwin":
        return os.path.join(
            os.path.expanduser("~"),
            "Library",
            "Application Support",
            "ProgrammeVariance",
            "programme_variance.log",
        )
    return os.path.join(os.path.expanduser("~"), ".programme_variance", "programme_variance.log")


def get_logger() -> logging.Logger:
    logger = logging.getLogger(LOG_NAME)
    if logger.handlers:
        return logger
    logger.setLevel(logging.INFO)
    logger.propagate = False
    fmt = logging.Formatter("%(asctime)s %(levelname)s %(message)s")

    class _RecentLogHandler(logging.Handler):
        def emit(self, record: logging.LogRecord) -> None:  # pragma: no cover
            try:
                _RECENT_LOG_LINES.append(fmt.format(record))
            except Exception:
                self.handleError(record)

    logger.addHandler(_RecentLogHandler())
    try:
        path = _log_path()
        os.makedirs(os.path.dirname(path), exist_ok=True)
        handler = logging.FileHandler(path, encoding="utf-8")
        handler.setFormatter(fmt)
        logger.addHandler(handler)
    except OSError:
        logger.addHandler(logging.NullHandler())
    return logger


def get_recent_logs(*, max_lines: int = 200) -> str:
    """
    Returns recent in-memory log lines (useful when the log file is not reachable).
    """
    try:
        n = max(1, min(int(max_lines), 400))
    except (TypeError, ValueError):
        n = 200
    lines = list(_RECENT_LOG_LINES)[-n:]
    return "\n".join(lines)
