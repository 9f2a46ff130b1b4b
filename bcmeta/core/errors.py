"""
Error taxonomy.
Typed failures raised inside the client and carried by Err results at the public surface.
"""

from typing import Any


class BCMetaError(Exception):
    """Base class for all client errors."""

    code = "BC_ERROR"

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        """Serialize for logs and the tool layer."""
        return {
            "code": self.code,
            "type": type(self).__name__,
            "message": self.message,
            "context": self.context,
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r})"


class AuthenticationError(BCMetaError):
    """Credentials were rejected or the login page could not be parsed."""
    code = "BC_AUTH_ERROR"


class ConnectionError(BCMetaError):
    """Handshake failure, timeout, or network error."""
    code = "BC_CONNECTION_ERROR"


class ProtocolError(BCMetaError):
    """The server violated the expected wire contract."""
    code = "BC_PROTOCOL_ERROR"


class DecompressionError(ProtocolError):
    """A compressed payload could not be decoded."""
    code = "BC_DECOMPRESSION_ERROR"


class FormIdCollisionError(ProtocolError):
    """
    An open returned a form id already bound to a different logical page.

    Always fatal to the current load: proceeding would label another
    page's data as the requested one.
    """
    code = "BC_FORM_COLLISION"

    def __init__(self, form_id: str, requested_page: str, bound_page: str):
        super().__init__(
            f"Form {form_id} returned for page {requested_page} "
            f"is already bound to page {bound_page}",
            context={
                "form_id": form_id,
                "requested_page": requested_page,
                "bound_page": bound_page,
            },
        )
        self.form_id = form_id
        self.requested_page = requested_page
        self.bound_page = bound_page


class ParseError(BCMetaError):
    """A required handler or event was missing from a response."""
    code = "BC_PARSE_ERROR"

    def __init__(
        self,
        message: str,
        present_tags: list[str] | None = None,
        context: dict[str, Any] | None = None,
    ):
        self.present_tags = list(present_tags or [])
        merged = dict(context or {})
        merged["present_tags"] = self.present_tags
        super().__init__(message, merged)


class ValidationError(BCMetaError):
    """Invalid caller input, such as a form id that is not tracked."""
    code = "BC_VALIDATION_ERROR"


class BusinessLogicError(BCMetaError):
    """The server explicitly rejected the request."""
    code = "BC_BUSINESS_ERROR"

    def __init__(
        self,
        message: str,
        page_id: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        merged = dict(context or {})
        if page_id is not None:
            merged["page_id"] = page_id
        super().__init__(message, merged)
        self.page_id = page_id
