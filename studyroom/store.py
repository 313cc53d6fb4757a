"""
Record store for reservation instances and owner credentials.

``ReservationStore`` is what the orchestrator and the reservation services
depend on; ``DiskReservationStore`` keeps rows in a local ``diskcache`` with
last-write-wins updates per row.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date
from pathlib import Path
from typing import Iterable, Protocol

from diskcache import Cache

from studyroom.config import open_store_cache
from studyroom.dates import slot_times
from studyroom.models import Companion, ReservationInstance, ReservationStatus

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = (ReservationStatus.PENDING, ReservationStatus.SUCCESS)


class ReservationStore(Protocol):
    """Protocol for reservation record stores."""

    def create_instance(
        self,
        *,
        owner_id: str,
        group_id: str,
        room_id: str,
        reservation_date: date,
        start_hour: int,
        hours: int,
        purpose: str,
        companions: list[Companion],
    ) -> ReservationInstance: ...

    def get_instance(self, reservation_id: int) -> ReservationInstance | None: ...

    def update_status(
        self,
        reservation_id: int,
        status: ReservationStatus,
        *,
        error_message: str | None = None,
        booking_id: str | None = None,
    ) -> ReservationInstance: ...

    def list_due(self, target_date: date) -> list[ReservationInstance]: ...

    def list_by_owner(self, owner_id: str) -> list[ReservationInstance]: ...

    def save_credential(self, owner_id: str, encrypted_secret: str) -> None: ...

    def get_credential(self, owner_id: str) -> str | None: ...


class DiskReservationStore:
    """``ReservationStore`` backed by a diskcache directory."""

    INSTANCE_PREFIX = "reservation:"
    CREDENTIAL_PREFIX = "credential:"
    COUNTER_KEY = "reservation_id_counter"

    def __init__(self, cache: Cache | None = None, path: Path | str | None = None):
        self.cache = cache if cache is not None else open_store_cache(path)

    def _key(self, reservation_id: int) -> str:
        return f"{self.INSTANCE_PREFIX}{reservation_id}"

    def _instances(self) -> Iterable[ReservationInstance]:
        for key in list(self.cache.iterkeys()):
            if isinstance(key, str) and key.startswith(self.INSTANCE_PREFIX):
                instance = self.cache.get(key)
                if instance is not None:
                    yield instance

    def create_instance(
        self,
        *,
        owner_id: str,
        group_id: str,
        room_id: str,
        reservation_date: date,
        start_hour: int,
        hours: int,
        purpose: str,
        companions: list[Companion],
    ) -> ReservationInstance:
        with self.cache.transact():
            reservation_id = self.cache.incr(self.COUNTER_KEY, default=0)
            instance = ReservationInstance(
                id=reservation_id,
                owner_id=owner_id,
                group_id=group_id,
                room_id=room_id,
                reservation_date=reservation_date,
                start_hour=start_hour,
                hours=hours,
                purpose=purpose,
                companions=list(companions),
            )
            self.cache.set(self._key(reservation_id), instance)
        return instance

    def get_instance(self, reservation_id: int) -> ReservationInstance | None:
        return self.cache.get(self._key(reservation_id))

    def update_status(
        self,
        reservation_id: int,
        status: ReservationStatus,
        *,
        error_message: str | None = None,
        booking_id: str | None = None,
    ) -> ReservationInstance:
        """
        Set an instance's status.

        A booking id is only recorded together with a ``success`` status and
        is kept afterwards, so a cancelled booking still shows its id.

        Raises:
            KeyError: If the instance does not exist
        """
        with self.cache.transact():
            instance = self.get_instance(reservation_id)
            if instance is None:
                raise KeyError(f"Reservation {reservation_id} not found")

            changes = {"status": status}
            if error_message is not None:
                changes["error_message"] = error_message
            if status is ReservationStatus.SUCCESS and booking_id:
                changes["booking_id"] = booking_id

            updated = replace(instance, **changes)
            self.cache.set(self._key(reservation_id), updated)

        logger.debug(f"Reservation {reservation_id} -> {status.value}")
        return updated

    def list_due(self, target_date: date) -> list[ReservationInstance]:
        due = [
            instance
            for instance in self._instances()
            if instance.status is ReservationStatus.PENDING
            and instance.reservation_date == target_date
        ]
        return sorted(due, key=lambda instance: instance.id)

    def list_by_owner(self, owner_id: str) -> list[ReservationInstance]:
        owned = [i for i in self._instances() if i.owner_id == owner_id]
        return sorted(owned, key=lambda instance: (instance.reservation_date, instance.id))

    def save_credential(self, owner_id: str, encrypted_secret: str) -> None:
        self.cache.set(f"{self.CREDENTIAL_PREFIX}{owner_id}", encrypted_secret)

    def get_credential(self, owner_id: str) -> str | None:
        return self.cache.get(f"{self.CREDENTIAL_PREFIX}{owner_id}")

    def reserved_slots(self, room_id: str, dates: list[date]) -> dict[date, list[str]]:
        """
        Hourly slots already held by active reservations of a room.

        Failed and cancelled instances release their slots.
        """
        wanted = set(dates)
        slots: dict[date, list[str]] = {}
        for instance in self._instances():
            if (
                instance.room_id == room_id
                and instance.reservation_date in wanted
                and instance.status in ACTIVE_STATUSES
            ):
                slots.setdefault(instance.reservation_date, []).extend(
                    slot_times(instance.start_hour, instance.hours)
                )
        return {day: sorted(times) for day, times in slots.items()}

    def close(self) -> None:
        self.cache.close()
