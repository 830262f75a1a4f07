"""Route modules exposed by the API package."""

from . import ping, sla, tickets, users

__all__ = ["ping", "sla", "tickets", "users"]
