import logging
import sys


class _ThirdPartyFilter(logging.Filter):
    """Keep taskhub logs; let other libraries through only at WARNING and above."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name == "taskhub" or record.name.startswith("taskhub."):
            return True
        return record.levelno >= logging.WARNING


class _TaskhubHandler(logging.StreamHandler):
    """Marks the handler installed here, so repeat calls replace only it."""


def setup_logging(level: str | int = logging.INFO) -> None:
    """
    Configure the root logger with a single taskhub stderr handler.

    Runs at application startup; calling it again swaps the previous taskhub
    handler and leaves handlers installed by anyone else alone.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    root = logging.getLogger()
    root.setLevel(level)

    for h in list(root.handlers):
        if isinstance(h, _TaskhubHandler):
            root.removeHandler(h)

    fmt = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    handler = _TaskhubHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(fmt)
    handler.addFilter(_ThirdPartyFilter())
    root.addHandler(handler)

    logging.captureWarnings(True)
