"""Domain exceptions shared by engine and services."""
from __future__ import annotations


class BuddyError(Exception):
    """Base class for pipeline errors."""


class InvalidTransitionError(BuddyError):
    def __init__(self, kind: str, current: str, target: str):
        self.kind = kind
        self.current = current
        self.target = target
        super().__init__(f"Illegal {kind} transition {current} -> {target}")


class TemplateMissingError(BuddyError):
    def __init__(self, spread_type: str):
        self.spread_type = spread_type
        super().__init__(f"No spread template registered for {spread_type}")


class ConfigurationError(BuddyError):
    """Required configuration is absent for a gating feature."""
