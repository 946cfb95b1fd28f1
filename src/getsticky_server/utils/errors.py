"""Error taxonomy for the board protocol.

Every error raised by a handler maps onto one outbound ``error`` message sent
to the originating connection only. None of them closes the connection.
"""

from typing import Any


class GetStickyError(Exception):
    """Base class for errors reported back to a protocol client."""

    code = "error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def details(self) -> dict[str, Any]:
        """Structured payload attached to the outbound error message."""
        return {"code": self.code}


class ProtocolError(GetStickyError):
    """Malformed envelope or a message type outside the allow-list."""

    code = "protocol_error"


class NotFoundError(GetStickyError):
    """Operation targeted a node, edge, board or project that does not exist."""

    code = "not_found"

    def __init__(self, entity: str, target_id: str):
        self.entity = entity
        self.target_id = target_id
        super().__init__(f"{entity.capitalize()} not found: {target_id}")

    def details(self) -> dict[str, Any]:
        return {"code": self.code, "entity": self.entity, "target_id": self.target_id}


class BackendError(GetStickyError):
    """LLM backend unavailable, misconfigured, or failed mid-call."""

    code = "backend_error"


class InvalidRequestError(GetStickyError):
    """Payload rejected by validation before any state change."""

    code = "invalid_request"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)

    def details(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code}
        if self.field:
            payload["field"] = self.field
        return payload
