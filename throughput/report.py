import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterable, Optional

from . import __version__
from .components.logs import configure_logging
from .model import SamplingOutcome, ThroughputResult, utcnow

configure_logging()
logger = logging.getLogger(__name__)

REPORT_NAME = "throughput-report"
MASK = "***"


class OutputFileError(Exception):
    pass


def mask_name(name: str, masks: Iterable[str]) -> str:
    """
    Replace every occurrence of each mask, ignoring case.
    """
    for mask in masks:
        if mask:
            name = re.sub(re.escape(mask), MASK, name, flags=re.IGNORECASE)
    return name


def slugify(customer_name: str) -> str:
    return re.sub(r"[^\w\d]+", "-", customer_name).strip("-").lower()


def output_path(
    customer_name: str, directory: str = ".", now: Optional[datetime] = None
) -> Path:
    stamp = (now or datetime.now()).strftime("%Y%m%d-%H%M%S")
    return Path(directory) / f"{slugify(customer_name)}-{REPORT_NAME}-{stamp}.json"


def validate_output_path(path: Path, allow_overwrite: bool = False):
    """
    Make sure the report can be written before spending hours collecting it.

    Raises:
        OutputFileError: If the file exists (and overwriting is not allowed) or cannot be
            created.
    """
    if path.exists() and not allow_overwrite:
        raise OutputFileError(f"File already exists at {path}, running would overwrite")

    existed = path.exists()
    try:
        with open(path, "a"):
            pass
    except OSError as err:
        raise OutputFileError(f"Unable to write to output file at {path}: {err}") from err

    if not existed:
        path.unlink()


@dataclass
class Report:
    customer_name: str
    message_transport: str
    report_method: str
    start_time: datetime
    end_time: datetime
    queues: list[ThroughputResult]
    report_duration: Optional[timedelta] = None
    ignored_queues: list[str] = field(default_factory=list)
    tool_version: str = __version__

    @classmethod
    def from_outcomes(
        cls,
        customer_name: str,
        message_transport: str,
        report_method: str,
        outcomes: list[SamplingOutcome],
        masks: Iterable[str] = (),
        report_duration: Optional[timedelta] = None,
    ) -> "Report":
        """
        Combine the outcomes of every source of a run. Sources that failed contribute
        nothing; their error has already been logged.
        """
        masks = list(masks)
        usable = [outcome for outcome in outcomes if outcome.ok]

        queues = [
            result.renamed(mask_name(result.queue_name, masks))
            for outcome in usable
            for result in outcome.results
        ]
        queues.sort(key=lambda q: q.queue_name)

        starts = [o.start_time for o in usable if o.start_time is not None]
        ends = [o.end_time for o in usable if o.end_time is not None]
        now = utcnow()

        ignored = sorted({mask_name(name, masks) for o in usable for name in o.ignored})

        return cls(
            customer_name,
            message_transport,
            mask_name(report_method, masks),
            min(starts, default=now),
            max(ends, default=now),
            queues,
            report_duration,
            ignored,
        )

    @property
    def total_throughput(self) -> int:
        return sum(q.throughput for q in self.queues if q.throughput is not None)

    @property
    def duration(self) -> timedelta:
        if self.report_duration is not None:
            return self.report_duration
        return self.end_time - self.start_time

    def as_dict(self) -> dict:
        result = {
            "customerName": self.customer_name,
            "messageTransport": self.message_transport,
            "reportMethod": self.report_method,
            "toolVersion": self.tool_version,
            "startTime": self.start_time.isoformat(),
            "endTime": self.end_time.isoformat(),
            "reportDuration": str(self.duration),
            "queues": [q.as_dict() for q in self.queues],
            "totalThroughput": self.total_throughput,
            "totalQueues": len(self.queues),
        }
        if self.ignored_queues:
            result["ignoredQueues"] = self.ignored_queues
        return result

    def write(self, path: Path):
        with open(path, "w") as file:
            json.dump(self.as_dict(), file, indent=2)

        logger.info(
            "Report written",
            {"path": str(path), "queues": len(self.queues), "total": self.total_throughput},
        )
