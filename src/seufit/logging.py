"""
Logging configuration for the SEU cross-section analysis.

Provides:
- Console output with rich formatting and optional file logging
- Timed pipeline stages (fit, covariance, bootstrap, intervals, GOF)
- Throttled progress for long bootstrap runs
"""

import logging
import time
from pathlib import Path
from typing import Optional
from contextlib import contextmanager

from rich.logging import RichHandler
from rich.console import Console

# Global console for rich output
console = Console(stderr=True)

# Logger registry
_loggers: dict[str, logging.Logger] = {}

FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


def setup_logging(
    level: str = "INFO",
    log_file: Optional[Path] = None,
    name: str = "seufit"
) -> logging.Logger:
    """
    Set up logging with rich console output and optional file logging.

    Calling this again for an already configured logger reconfigures its
    level and handlers.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to log file
        name: Logger name

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level.upper()))
    logger.handlers.clear()
    logger.propagate = False

    console_handler = RichHandler(
        console=console,
        show_time=True,
        show_path=False,
        rich_tracebacks=True,
        tracebacks_show_locals=False,
    )
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(console_handler)

    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        logger.addHandler(file_handler)

    _loggers[name] = logger
    return logger


def get_logger(name: str = "seufit") -> logging.Logger:
    """Get a logger instance, creating it if necessary."""
    if name not in _loggers:
        return setup_logging(name=name)
    return _loggers[name]


@contextmanager
def log_context(
    stage: str,
    logger: Optional[logging.Logger] = None,
    timings: Optional[dict[str, float]] = None,
):
    """
    Announce a pipeline stage and time it.

    Args:
        stage: Stage name, e.g. "Parametric bootstrap"
        logger: Logger to use (default: package logger)
        timings: Dict receiving ``stage -> seconds`` when the stage ends,
            whether or not it raised
    """
    if logger is None:
        logger = get_logger()

    logger.debug(f"[bold blue]>>> {stage}[/bold blue]", extra={"markup": True})
    start = time.perf_counter()
    try:
        yield logger
    except Exception as e:
        elapsed = time.perf_counter() - start
        logger.error(
            f"[bold red]!!! {stage} failed after {elapsed:.2f}s: {e}[/bold red]",
            extra={"markup": True},
        )
        raise
    else:
        elapsed = time.perf_counter() - start
        logger.debug(
            f"[bold green]<<< {stage} complete ({elapsed:.2f}s)[/bold green]",
            extra={"markup": True},
        )
    finally:
        if timings is not None:
            timings[stage] = time.perf_counter() - start


class ProgressLogger:
    """
    Progress of a long loop such as the bootstrap iterations.

    Every update is logged at DEBUG; an INFO line is written each time another
    ``info_every`` fraction of the total completes.
    """

    def __init__(
        self,
        total: int,
        description: str,
        logger: Optional[logging.Logger] = None,
        unit: str = "iterations",
        info_every: float = 0.25,
    ):
        self.total = total
        self.description = description
        self.logger = logger or get_logger()
        self.unit = unit
        self.info_every = info_every
        self.current = 0
        self._next_info = info_every

    @property
    def fraction(self) -> float:
        return self.current / self.total if self.total > 0 else 0.0

    def update(self, n: int = 1, message: str = "") -> None:
        """Update progress counter."""
        self.current += n
        line = f"{self.description}: {self.current}/{self.total} {self.unit} ({100 * self.fraction:.1f}%)"
        if message:
            line += f" - {message}"

        if self.total > 0 and self.fraction >= self._next_info and self.current < self.total:
            self.logger.info(line)
            while self._next_info <= self.fraction:
                self._next_info += self.info_every
        else:
            self.logger.debug(line)

    def done(self, stop_reason: str = "") -> None:
        """Mark the loop finished, or stopped early for ``stop_reason``."""
        if stop_reason:
            self.logger.info(
                f"{self.description} stopped early ({stop_reason}) after "
                f"{self.current}/{self.total} {self.unit}"
            )
        else:
            self.logger.info(f"{self.description}: completed {self.current}/{self.total} {self.unit}")
