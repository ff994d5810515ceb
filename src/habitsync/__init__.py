"""habitsync: offline-first habit tracking with remote reconciliation."""

from __future__ import annotations

from .config import BaseConfig, DevConfig
from .context import AppContext, create_app_context

__version__ = "0.1.0"

__all__ = ["AppContext", "BaseConfig", "DevConfig", "create_app_context"]
