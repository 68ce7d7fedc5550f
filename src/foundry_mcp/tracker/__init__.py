"""Tracker capability, its in-memory fake, and the Linear GraphQL adapter."""

from foundry_mcp.tracker.base import (
    PermanentTrackerError,
    Tracker,
    TrackerError,
    TransientTrackerError,
)
from foundry_mcp.tracker.linear import LinearTracker
from foundry_mcp.tracker.memory import InMemoryTracker, MemoryIssue

__all__ = [
    "InMemoryTracker",
    "LinearTracker",
    "MemoryIssue",
    "PermanentTrackerError",
    "Tracker",
    "TrackerError",
    "TransientTrackerError",
]
