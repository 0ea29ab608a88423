"""Process runners for campaign task execution."""

from release_gate.campaign.backend.base import (
    ProcessRunner,
    ProcessRunRequest,
    ProcessRunResult,
    ProcessStartError,
)
from release_gate.campaign.backend.subprocess_backend import SubprocessRunner

__all__ = [
    "ProcessRunRequest",
    "ProcessRunResult",
    "ProcessRunner",
    "ProcessStartError",
    "SubprocessRunner",
]
