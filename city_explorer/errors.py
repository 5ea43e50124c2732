from typing import Optional


class ChatError(Exception):
    """Base class for errors raised by the chat core and its gateways."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(ChatError):
    """Malformed client input or tool-call arguments."""


class SessionNotFound(ChatError):
    def __init__(self, session_id: str) -> None:
        super().__init__("Session not found")
        self.session_id = session_id


class ResolutionError(ChatError):
    """A waypoint could not be turned into coordinates."""

    def __init__(self, position: int, message: str) -> None:
        super().__init__(f"waypoints[{position}]: {message}")
        self.position = position


class GatewayError(ChatError):
    """Upstream model, routing or geocoding failure."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class PersistenceError(ChatError):
    """Key-value store read or write failure."""
