"""
Rider-facing wording for ride statuses.
"""

from typing import List

from campus_shuttle.app.models.ride_enums import RideStatus

STATUS_TEXT = {
    RideStatus.PENDING: "Finding Driver...",
    RideStatus.ACCEPTED: "Driver Assigned",
    RideStatus.ARRIVING: "Driver Arriving",
    RideStatus.IN_PROGRESS: "On Trip",
    RideStatus.COMPLETED: "Completed",
    RideStatus.CANCELLED: "Cancelled",
}

PROGRESS_STEPS = [
    (RideStatus.PENDING, "Requested", "Finding a driver"),
    (RideStatus.ACCEPTED, "Accepted", "Driver assigned"),
    (RideStatus.ARRIVING, "Arriving", "Driver on the way"),
    (RideStatus.IN_PROGRESS, "On Trip", "Heading to destination"),
    (RideStatus.COMPLETED, "Completed", "Ride finished"),
]


def status_text(status: RideStatus) -> str:
    return STATUS_TEXT.get(status, status.value)


def progress_steps(status: RideStatus) -> List[dict]:
    """
    The five happy-path steps, each marked completed, current or pending.

    A cancelled ride is off the path, so every step reads as pending.
    """
    order = [step for step, _, _ in PROGRESS_STEPS]
    current = order.index(status) if status in order else -1

    return [
        {
            "id": step.value,
            "label": label,
            "description": description,
            "is_completed": index < current,
            "is_current": index == current,
            "is_pending": index > current,
        }
        for index, (step, label, description) in enumerate(PROGRESS_STEPS)
    ]
