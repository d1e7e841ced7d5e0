"""
Logging for tuition extraction runs.

Module code logs through logging.getLogger(__name__). PipelineLogger sits on
top for run-level reporting: one structured line per finished request,
tracked warnings/errors, and a batch tally printed when the batch closes.
"""

import logging
import sys
import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

LINE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s"
PHASE_LINE_FORMAT = "%(asctime)s | %(levelname)-8s | {phase} | %(name)s:%(lineno)d | %(message)s"

# Chatty client libraries, capped at WARNING
QUIET_LIBRARIES = ("httpx", "httpcore", "google_genai", "pymysql")


class MillisecondsFormatter(logging.Formatter):
    """ISO-ish timestamps with milliseconds: 2025-10-01 09:30:12,045."""

    default_time_format = "%Y-%m-%d %H:%M:%S"
    default_msec_format = "%s,%03d"


def make_formatter(phase: Optional[str] = None) -> MillisecondsFormatter:
    return MillisecondsFormatter(PHASE_LINE_FORMAT.format(phase=phase) if phase else LINE_FORMAT)


def with_fields(message: str, fields: dict[str, Any]) -> str:
    """Append key=value pairs: "Saved [school=Yale version=2]"."""
    if not fields:
        return message
    return f"{message} [{' '.join(f'{k}={v}' for k, v in fields.items())}]"


@dataclass
class TrackedEvent:
    message: str
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    exception: Optional[str] = None
    data: dict = field(default_factory=dict)


class PipelineLogger:
    """
    Run-level logger. Keeps every warning and error it emits so the CLI
    and batch runner can report them afterwards.
    """

    def __init__(
        self,
        name: str = "tuition_pipeline.run",
        log_level: str = "INFO",
        log_file: Optional[str] = None,
        log_dir: Optional[Path] = None,
        phase: Optional[str] = None,
    ):
        """
        Args:
            name: stdlib logger name (kept outside the package namespace so
                module loggers are unaffected)
            log_level: DEBUG, INFO, WARNING or ERROR
            log_file: File name to also write to; everything at DEBUG and up
            log_dir: Directory for log_file (defaults to ./logs)
            phase: Label inserted into every line
        """
        level = logging.getLevelName(log_level.upper())
        self.logger = logging.getLogger(name)
        self.logger.setLevel(level)
        self.logger.propagate = False
        self.logger.handlers.clear()

        formatter = make_formatter(phase)
        console = logging.StreamHandler(sys.stdout)
        console.setLevel(level)
        console.setFormatter(formatter)
        self.logger.addHandler(console)

        if log_file:
            log_path = (log_dir or Path.cwd() / "logs") / log_file
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_path)
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(formatter)
            self.logger.addHandler(file_handler)
            self.info("Writing log file", path=log_path)

        self.errors: list[TrackedEvent] = []
        self.warnings: list[TrackedEvent] = []

    def debug(self, message: str, **fields):
        self.logger.debug(with_fields(message, fields), stacklevel=2)

    def info(self, message: str, **fields):
        self.logger.info(with_fields(message, fields), stacklevel=2)

    def warning(self, message: str, **fields):
        text = with_fields(message, fields)
        self.logger.warning(text, stacklevel=2)
        self.warnings.append(TrackedEvent(text, data=fields))

    def error(self, message: str, exception: Optional[BaseException] = None, **fields):
        if exception is not None:
            message = f"{message}: {exception}"
        text = with_fields(message, fields)
        self.logger.error(text, exc_info=exception, stacklevel=2)
        self.errors.append(TrackedEvent(text, exception=repr(exception) if exception else None, data=fields))

    def log_extraction_complete(
        self,
        school: str,
        program: str,
        status: str,
        verification_status: str,
        retry_count: int,
        duration_seconds: float,
        cost_usd: float = 0.0,
    ):
        """One line per finished request."""
        self.logger.info(
            with_fields(
                f"Finished {school} - {program}",
                {
                    "status": status,
                    "verification": verification_status,
                    "retries": retry_count,
                    "seconds": round(duration_seconds, 2),
                    "cost_usd": round(cost_usd, 6),
                },
            ),
            stacklevel=2,
        )

    def get_error_summary(self) -> dict:
        return {
            "total_errors": len(self.errors),
            "total_warnings": len(self.warnings),
            "errors": [event.message for event in self.errors],
            "warnings": [event.message for event in self.warnings],
        }

    def clear_tracking(self):
        self.errors.clear()
        self.warnings.clear()


_run_logger: Optional[PipelineLogger] = None


def get_logger(log_level: str = "INFO", log_file: Optional[str] = None, phase: Optional[str] = None) -> PipelineLogger:
    """Process-wide PipelineLogger, created on first use."""
    global _run_logger
    if _run_logger is None:
        _run_logger = PipelineLogger(log_level=log_level, log_file=log_file, phase=phase)
    return _run_logger


class PipelineRunContext:
    """
    Tallies a batch by verification status and logs the totals on exit.

    Usage:
        with PipelineRunContext(run_logger, num_targets=len(requests)) as ctx:
            ctx.record(outcome.verification.status.value, outcome.cost_usd)
            ctx.record_cancelled()
    """

    def __init__(self, logger: PipelineLogger, num_targets: int):
        self.logger = logger
        self.num_targets = num_targets
        self.by_status: Counter = Counter()
        self.cancelled = 0
        self.total_cost_usd = 0.0
        self._started = 0.0

    @property
    def finished(self) -> int:
        return sum(self.by_status.values())

    def __enter__(self):
        self._started = time.monotonic()
        self.logger.info("Batch started", targets=self.num_targets)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        tally = {status: self.by_status[status] for status in sorted(self.by_status)}
        self.logger.info(
            "Batch finished",
            finished=self.finished,
            cancelled=self.cancelled,
            seconds=round(time.monotonic() - self._started, 2),
            cost_usd=round(self.total_cost_usd, 4),
            **tally,
        )
        return False

    def record(self, status: str, cost_usd: float = 0.0):
        self.by_status[status] += 1
        self.total_cost_usd += cost_usd

    def record_cancelled(self):
        self.cancelled += 1


def configure_global_logging(log_level: str = "INFO", phase: Optional[str] = None):
    """
    Route the root logger (and with it every module logger) to stdout in the
    pipeline format. Call once at CLI startup.
    """
    level = logging.getLevelName(log_level.upper())
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(make_formatter(phase))
    root.addHandler(handler)

    for name in QUIET_LIBRARIES:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
