import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union


PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOG_DIR = PROJECT_ROOT / ".logs"
DEFAULT_LOG_FILE = LOG_DIR / "storefront_finance.log"
DEFAULT_LOG_LEVEL = "INFO"

_FORMATTER = logging.Formatter(
    fmt="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)


def _attach_file_handler(logger: logging.Logger, log_file: Path) -> None:
    for handler in [h for h in logger.handlers if isinstance(h, RotatingFileHandler)]:
        logger.removeHandler(handler)
        handler.close()
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=1_000_000,
            backupCount=5,
            encoding="utf-8",
        )
    except OSError as exc:
        print(
            f"Warning: unable to initialize log file at '{log_file}': {exc}",
            file=sys.stderr,
        )
        return
    file_handler.setFormatter(_FORMATTER)
    logger.addHandler(file_handler)


def configure_logging(
    log_file: Optional[Union[str, Path]] = None,
    level: Optional[Union[str, int]] = None,
) -> logging.Logger:
    """Point the package logger at ``log_file`` and set its ``level``.

    Called once at import with the defaults and again by
    :func:`storefront_finance.core_logic.load_runtime_context` with the
    ``[Logging]`` values from ``config.ini``. The stderr handler only ever
    shows warnings and above.

    Raises:
        ValueError: If ``level`` is not a known logging level name.
    """

    logger = logging.getLogger(__name__)
    if isinstance(level, int):
        resolved_level = level
    else:
        resolved_level = logging.getLevelName(str(level or DEFAULT_LOG_LEVEL).upper())
    if not isinstance(resolved_level, int):
        raise ValueError(f"Unknown log level: {level!r}")
    logger.setLevel(resolved_level)

    target = Path(log_file).expanduser() if log_file else DEFAULT_LOG_FILE
    current = next((h for h in logger.handlers if isinstance(h, RotatingFileHandler)), None)
    if current is None or Path(current.baseFilename) != target.resolve():
        _attach_file_handler(logger, target)

    if not any(type(h) is logging.StreamHandler for h in logger.handlers):
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.WARNING)
        console_handler.setFormatter(_FORMATTER)
        logger.addHandler(console_handler)

    return logger


log = configure_logging()
log.info("Logger initialized for the 'storefront_finance' package.")
