# farmbasket/errors.py
from __future__ import annotations


class OrderFlowError(Exception):
    """Base class for every per-operation failure raised by the buyer core."""

    code = "order_flow_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code


class ValidationError(OrderFlowError):
    # empty basket, no pickup date, stale pickup date
    code = "validation_error"


class EditWindowClosed(OrderFlowError):
    code = "edit_window_closed"


class AuthRequired(OrderFlowError):
    code = "auth_required"


class NotFound(OrderFlowError):
    code = "not_found"


class RemoteFailure(OrderFlowError):
    code = "remote_failure"


class InvalidStatusTransition(OrderFlowError):
    code = "invalid_status_transition"
