from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence


@dataclass(frozen=True)
class AuditRecordPage:
    """
    One page of a newest-first audit log. Page indices are 1-based.
    """

    timestamps: tuple[datetime, ...]
    page_index: int
    page_size: int

    @classmethod
    def of(cls, timestamps: Sequence[datetime], page_index: int, page_size: int):
        return cls(tuple(timestamps), page_index, page_size)

    @property
    def count(self) -> int:
        return len(self.timestamps)

    @property
    def empty(self) -> bool:
        return not self.timestamps

    @property
    def is_short(self) -> bool:
        """
        Fewer records than a full page, so nothing older exists past this page.
        """
        return self.count < self.page_size

    @property
    def oldest(self) -> Optional[datetime]:
        return min(self.timestamps) if self.timestamps else None

    @property
    def newest(self) -> Optional[datetime]:
        return max(self.timestamps) if self.timestamps else None

    @property
    def average_seconds_per_record(self) -> float:
        if not self.timestamps:
            return 0.0
        return (self.newest - self.oldest).total_seconds() / self.count

    def straddles(self, cutoff: datetime) -> bool:
        return bool(self.timestamps) and self.oldest <= cutoff <= self.newest

    def entirely_older(self, cutoff: datetime) -> bool:
        return self.empty or self.newest < cutoff

    def entirely_newer(self, cutoff: datetime) -> bool:
        return bool(self.timestamps) and self.oldest >= cutoff

    def count_since(self, cutoff: datetime) -> int:
        return sum(1 for ts in self.timestamps if ts >= cutoff)
