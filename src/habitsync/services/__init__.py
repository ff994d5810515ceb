"""Service module exports."""

from . import habits, periods, sync, tracker

__all__ = ["habits", "periods", "sync", "tracker"]
