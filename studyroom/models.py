"""
Reservation data model shared by the bridge, the orchestrator and the store.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum


class ReservationStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class Companion:
    """A co-occupant registered on the booking."""

    student_id: str
    name: str
    ipid: str


@dataclass
class ReservationInstance:
    """One concrete calendar occurrence of a recurring reservation."""

    id: int
    owner_id: str
    group_id: str
    room_id: str
    reservation_date: date
    start_hour: int
    hours: int
    purpose: str
    companions: list[Companion] = field(default_factory=list)
    status: ReservationStatus = ReservationStatus.PENDING
    booking_id: str | None = None
    error_message: str | None = None


@dataclass
class RecurrenceGroup:
    """Display grouping of instances that share a generation id."""

    group_id: str
    room_id: str
    start_hour: int
    hours: int
    instances: list[ReservationInstance] = field(default_factory=list)


@dataclass
class InstanceOutcome:
    """Result of one submission attempt, as reported to callers."""

    reservation_id: int
    reservation_date: date
    status: ReservationStatus
    message: str
    booking_id: str | None = None


@dataclass
class BatchSummary:
    """Aggregate result of a batch run."""

    target_date: date
    results: list[InstanceOutcome] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def success(self) -> int:
        return sum(1 for r in self.results if r.status is ReservationStatus.SUCCESS)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.status is ReservationStatus.FAILED)


@dataclass
class CreationResult:
    """Response of a recurring-reservation registration."""

    success: bool
    message: str
    group_id: str
    dates: list[date] = field(default_factory=list)
    immediate_results: list[InstanceOutcome] = field(default_factory=list)
    scheduled_count: int = 0
