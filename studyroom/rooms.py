from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class StudyRoom:
    """A bookable study room and its occupancy bounds."""

    id: str
    name: str
    min_people: int
    max_people: int


STUDY_ROOMS: list[StudyRoom] = [
    StudyRoom(id="11", name="Study Room 01", min_people=6, max_people=13),
    StudyRoom(id="10", name="Study Room 02", min_people=3, max_people=6),
    StudyRoom(id="12", name="Study Room 03", min_people=3, max_people=6),
    StudyRoom(id="13", name="Study Room 04", min_people=3, max_people=6),
    StudyRoom(id="14", name="Study Room 05", min_people=3, max_people=6),
    StudyRoom(id="15", name="Study Room 06", min_people=3, max_people=6),
    StudyRoom(id="1", name="Study Room 07", min_people=3, max_people=6),
    StudyRoom(id="2", name="Study Room 08", min_people=3, max_people=6),
    StudyRoom(id="3", name="Study Room 09", min_people=3, max_people=6),
    StudyRoom(id="9", name="Study Room 10", min_people=3, max_people=6),
    StudyRoom(id="4", name="Study Room 11", min_people=3, max_people=6),
    StudyRoom(id="5", name="Study Room 12", min_people=3, max_people=6),
    StudyRoom(id="16", name="Study Room 13", min_people=3, max_people=6),
]


def get_room(room_id: str) -> StudyRoom | None:
    return next((room for room in STUDY_ROOMS if room.id == room_id), None)


def check_occupancy(room: StudyRoom, companion_count: int) -> bool:
    """The owner counts as one occupant on top of the companions."""
    return room.min_people <= companion_count + 1 <= room.max_people
