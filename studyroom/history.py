from __future__ import annotations

from studyroom.dates import end_time
from studyroom.models import RecurrenceGroup, ReservationInstance
from studyroom.rooms import get_room


def group_history(instances: list[ReservationInstance]) -> list[RecurrenceGroup]:
    """
    Group an owner's instances by recurrence for display.

    Instances are ordered by date within a group; groups are ordered newest
    first by their earliest date.
    """
    groups: dict[str, RecurrenceGroup] = {}
    for instance in sorted(instances, key=lambda i: (i.reservation_date, i.id)):
        group = groups.get(instance.group_id)
        if group is None:
            group = groups[instance.group_id] = RecurrenceGroup(
                group_id=instance.group_id,
                room_id=instance.room_id,
                start_hour=instance.start_hour,
                hours=instance.hours,
            )
        group.instances.append(instance)

    return sorted(
        groups.values(),
        key=lambda g: g.instances[0].reservation_date,
        reverse=True,
    )


def describe_group(group: RecurrenceGroup) -> str:
    room = get_room(group.room_id)
    room_name = room.name if room else f"Study Room {group.room_id}"
    return (
        f"{room_name} {group.start_hour:02d}:00 ~ {end_time(group.start_hour, group.hours)} "
        f"({group.hours}h, {len(group.instances)} dates)"
    )
