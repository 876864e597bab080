"""Participant model - coordinate and presence store row."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from runnergate.models.enums import ParticipantRole


class Participant(BaseModel):
    """A requester or runner as seen by the coordinate store."""

    participant_id: str
    role: ParticipantRole

    # Last stored position
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    location_accuracy_m: Optional[float] = None
    location_updated_at: Optional[datetime] = None

    # Presence
    is_available: bool = False
    last_seen_at: Optional[datetime] = None

    # Quality
    average_rating: Optional[float] = None

    def has_stored_coordinates(self) -> bool:
        """Both coordinates present and numeric."""
        return _is_number(self.latitude) and _is_number(self.longitude)


def _is_number(value: object) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return value == value  # NaN check
