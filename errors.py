"""Error taxonomy for the conversation gateway."""

from __future__ import annotations

from typing import Any, Dict


class GatewayError(Exception):
    """Base exception for errors surfaced to the caller as an error envelope."""

    status_code: int = 500
    error_type: str = "internal_server_error"
    code: str = "error"

    def __init__(self, message: Any, *, status_code: int | None = None) -> None:
        super().__init__(message if isinstance(message, str) else repr(message))
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_envelope(self) -> Dict[str, Any]:
        return {
            "error": {
                "message": self.message,
                "type": self.error_type,
                "param": None,
                "code": self.code,
            }
        }


class RequestValidationError(GatewayError):
    """Inbound request has a bad shape or is missing credentials."""

    status_code = 400
    error_type = "invalid_request_error"
    code = "invalid_request"


class TokenAcquisitionError(GatewayError):
    """Anti-automation token could not be obtained; nothing was sent upstream."""

    status_code = 503
    error_type = "token_acquisition_error"
    code = "token_unavailable"


class TransportError(GatewayError):
    """Network failure or a non-200 upstream status."""

    status_code = 502
    error_type = "upstream_error"

    def __init__(
        self,
        message: Any,
        *,
        status_code: int | None = None,
        reason: str = "",
    ) -> None:
        super().__init__(message, status_code=status_code)
        if reason:
            self.error_type = reason


class UpstreamProtocolError(GatewayError):
    """Backend sent a structured error payload mid-stream."""

    status_code = 500
    error_type = "upstream_protocol_error"


class DecodeError(Exception):
    """An event line could not be parsed. Always recovered by the decoder."""
