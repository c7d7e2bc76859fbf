"""
Trip-related enumerations.
"""

import enum


class TripStatus(str, enum.Enum):
    """Trip status enumeration."""
    PLANNED = "PLANNED"  # Scheduled, passengers still joining
    IN_PROGRESS = "IN_PROGRESS"  # Driver has started
    COMPLETED = "COMPLETED"  # Finalized, can be priced and settled
    CANCELLED = "CANCELLED"  # Trip cancelled
