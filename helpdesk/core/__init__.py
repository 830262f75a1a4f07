"""Configuration, logging and clock primitives shared by the service."""

from .clock import Clock, SystemClock
from .config import Settings, get_settings

__all__ = ["Clock", "Settings", "SystemClock", "get_settings"]
