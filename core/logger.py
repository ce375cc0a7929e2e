import logging
import sys
from datetime import datetime

from core import config

LOGGER_NAME = "resource_reconciler"


class ResourceFormatter(logging.Formatter):
    """Renders adapter state reports as a short block, everything else as one line."""

    _LINE_FMT = "[%(asctime)s] %(levelname)-7s %(name)s: %(message)s"
    _TIME_FMT = "%Y-%m-%d %H:%M:%S"

    def __init__(self) -> None:
        super().__init__(self._LINE_FMT, datefmt=self._TIME_FMT)

    def format(self, record: logging.LogRecord) -> str:
        report = record.msg
        # {"resource": "volume vol-1", "state": "AVAILABLE", "detail": "..."}
        if not (isinstance(report, dict) and "resource" in report and "state" in report):
            return super().format(record)

        stamp = datetime.fromtimestamp(record.created).strftime(self._TIME_FMT)
        lines = [f"[{stamp}] Resource: {report['resource']}", f"State: {report['state']}"]
        if report.get("detail"):
            lines.append(f"Detail: {report['detail']}")
        return "\n".join(lines)


def _build_logger() -> logging.Logger:
    log = logging.getLogger(LOGGER_NAME)
    if log.handlers:
        return log

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(getattr(logging, config.LOG_LEVEL, logging.INFO))
    console.setFormatter(ResourceFormatter())

    log.setLevel(logging.DEBUG)
    log.addHandler(console)
    log.propagate = False
    return log


logger: logging.Logger = _build_logger()
