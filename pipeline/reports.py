"""
Report model: the submitted violation claim the pipeline analyses.

Only the status transition Submitted -> AI Processed is owned by this
package; the remaining statuses belong to the review workflow and are listed
so rows read from the datastore round-trip unchanged.
"""

from __future__ import annotations

import itertools
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class ViolationCategory(str, Enum):
    SIGNAL_JUMPING = "Signal Jumping"
    ILLEGAL_PARKING = "Illegal Parking"
    NO_HELMET = "No Helmet"
    TRIPLE_RIDING = "Triple Riding"
    WRONG_SIDE_DRIVING = "Wrong Side Driving"
    OVERSPEEDING = "Overspeeding"
    DANGEROUS_DRIVING = "Dangerous Driving"
    BLOCKING_ROAD = "Blocking Road"
    OTHER = "Other"

    @classmethod
    def parse(cls, value: object) -> "ViolationCategory":
        if isinstance(value, cls):
            return value
        wanted = str(value or "").strip().lower()
        for member in cls:
            if member.value.lower() == wanted or member.name.lower() == wanted:
                return member
        return cls.OTHER


class ReportStatus(str, Enum):
    SUBMITTED = "Submitted"
    AI_PROCESSED = "AI Processed"
    ADMIN_ACCEPTED = "Admin Accepted"
    ADMIN_REJECTED = "Admin Rejected"
    POLICE_CONFIRMED = "Police Confirmed"
    OWNER_NOTIFIED = "Owner Notified"


_report_counter = itertools.count(int(time.time() * 1000) + 1)


def next_report_id() -> str:
    """`RPT-<n>`, increasing in creation order within a process."""
    return f"RPT-{next(_report_counter)}"


@dataclass
class Report:
    """One submitted violation claim."""

    report_id: str
    category: ViolationCategory
    media_urls: tuple[str, ...] = ()
    remarks: str = ""
    submitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    status: ReportStatus = ReportStatus.SUBMITTED

    @property
    def primary_image(self) -> str | None:
        return self.media_urls[0] if self.media_urls else None

    def to_row(self) -> dict[str, Any]:
        return {
            "report_id": self.report_id,
            "crime_type": self.category.value,
            "comments": self.remarks,
            "media_urls": list(self.media_urls),
            "submission_time": self.submitted_at.isoformat(),
            "status": self.status.value,
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Report":
        submitted = row.get("submission_time")
        if isinstance(submitted, str):
            submitted = datetime.fromisoformat(submitted.replace("Z", "+00:00"))
        elif not isinstance(submitted, datetime):
            submitted = datetime.now(timezone.utc)

        try:
            status = ReportStatus(row.get("status") or ReportStatus.SUBMITTED.value)
        except ValueError:
            status = ReportStatus.SUBMITTED

        return cls(
            report_id=str(row["report_id"]),
            category=ViolationCategory.parse(row.get("crime_type")),
            media_urls=tuple(row.get("media_urls") or ()),
            remarks=row.get("comments") or "",
            submitted_at=submitted,
            status=status,
        )
