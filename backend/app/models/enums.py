from __future__ import annotations

from enum import Enum


class EnrollmentStatus(str, Enum):
    """Lifecycle states of a course enrollment request."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
