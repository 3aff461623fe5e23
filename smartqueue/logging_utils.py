"""
Logging setup shared by the CLI, the API server and tests.

Entrypoints call configure_logging() once at startup; library modules only
ever use logging.getLogger(__name__).
"""
import inspect
import logging
import os
import sys
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, List, Optional

_logging_configured = False
_run_id: Optional[str] = None
_HANDLER_TAG = "_smartqueue_handler"
_CONSOLE_FMT = "%(asctime)s | %(levelname)-5s | %(name)s | %(message)s"
_CONSOLE_FMT_WITH_RUN_ID = "%(asctime)s | %(levelname)-5s | %(name)s | run_id=%(run_id)s | %(message)s"
_FILE_FMT = "%(asctime)s | %(levelname)-5s | %(name)s | %(funcName)s:%(lineno)d | run_id=%(run_id)s | %(message)s"


class RunIdFilter(logging.Filter):
    """Attach the current run_id to every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = _run_id or "-"
        return True


def set_run_id(run_id: Optional[str]) -> None:
    global _run_id
    _run_id = run_id


def configure_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    file_level: str = "DEBUG",
    force: bool = False,
    run_id: Optional[str] = None,
    console: bool = True,
    show_run_id: bool = False,
) -> None:
    """
    Configure root logging for the process.

    Subsequent calls are ignored unless force=True. Handlers installed here are
    tagged so a forced reconfiguration only replaces our own handlers.

    Args:
        level: Console log level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional path to a log file
        file_level: Level for the file handler
        force: Reconfigure even if already configured
        run_id: Identifier injected into every record
        console: Whether to log to stdout
        show_run_id: Include run_id in console lines

    Environment variable overrides:
        LOG_LEVEL: Overrides level
        LOG_FILE: Used when log_file is not given
    """
    global _logging_configured

    if run_id:
        set_run_id(run_id)
    if _logging_configured and not force:
        return

    level = os.getenv("LOG_LEVEL", level).upper()
    if log_file is None:
        log_file = os.getenv("LOG_FILE")

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for handler in root.handlers[:]:
        if getattr(handler, _HANDLER_TAG, False):
            root.removeHandler(handler)

    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(getattr(logging, level, logging.INFO))
        fmt = _CONSOLE_FMT_WITH_RUN_ID if (show_run_id or level == "DEBUG") else _CONSOLE_FMT
        console_handler.setFormatter(logging.Formatter(fmt, datefmt="%H:%M:%S"))
        console_handler.addFilter(RunIdFilter())
        setattr(console_handler, _HANDLER_TAG, True)
        root.addHandler(console_handler)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(getattr(logging, file_level.upper(), logging.DEBUG))
        file_handler.setFormatter(logging.Formatter(_FILE_FMT, datefmt="%Y-%m-%d %H:%M:%S"))
        file_handler.addFilter(RunIdFilter())
        setattr(file_handler, _HANDLER_TAG, True)
        root.addHandler(file_handler)

    for noisy in ("urllib3", "requests", "httpx", "uvicorn.access"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    _logging_configured = True
    logging.getLogger(__name__).debug(
        f"Logging configured: level={level}, file={log_file or 'none'}, run_id={_run_id or '-'}"
    )


@contextmanager
def stage_timer(stage_name: str, logger: Optional[logging.Logger] = None, level: int = logging.DEBUG):
    """
    Time a block and log its duration.

    Usage:
        with stage_timer("Candidate gathering"):
            candidates = gather()
        # Logs: "Candidate gathering completed in 84ms"
    """
    if logger is None:
        frame = inspect.currentframe()
        caller = frame.f_back.f_back if frame and frame.f_back else None
        module = caller.f_globals.get("__name__", __name__) if caller else __name__
        logger = logging.getLogger(module)

    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed = time.perf_counter() - start
        if elapsed < 1:
            logger.log(level, f"{stage_name} completed in {elapsed * 1000:.0f}ms")
        else:
            logger.log(level, f"{stage_name} completed in {elapsed:.1f}s")


def format_count(n: int, singular: str, plural: Optional[str] = None) -> str:
    """Format "1 track" / "5 tracks"."""
    if plural is None:
        plural = singular + "s"
    return f"{n:,} {singular if n == 1 else plural}"


def truncate_list(items: List[Any], max_items: int = 3, format_fn=str) -> str:
    """Format a list for logging as "a, b, c (+5 more)"."""
    if not items:
        return "(none)"
    result = ", ".join(format_fn(item) for item in items[:max_items])
    if len(items) > max_items:
        result += f" (+{len(items) - max_items} more)"
    return result


def add_logging_args(parser) -> None:
    """Add --log-level/--debug/--quiet/--log-file to an argparse parser."""
    group = parser.add_argument_group("logging")
    group.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Set logging level (default: INFO)",
    )
    group.add_argument("--debug", action="store_true", help="Shortcut for --log-level DEBUG")
    group.add_argument("--quiet", action="store_true", help="Shortcut for --log-level WARNING")
    group.add_argument("--log-file", type=str, metavar="PATH", help="Write logs to file")


def resolve_log_level(args) -> str:
    """Resolve the level from parsed args. Priority: --debug > --quiet > --log-level."""
    if getattr(args, "debug", False):
        return "DEBUG"
    if getattr(args, "quiet", False):
        return "WARNING"
    return getattr(args, "log_level", "INFO")
