"""API clients that route every call through the egress guard."""

from egress_guard.clients.teams import TeamsClient

__all__ = ["TeamsClient"]
