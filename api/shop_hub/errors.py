# shop_hub/errors.py
"""
Domain errors.

Every error carries the HTTP status it maps to, a machine-readable code and
a human message. Services raise them; main.py turns them into
{"success": false, "error": {"code": ..., "message": ...}} responses.
"""
from __future__ import annotations
from typing import Any, Dict, Optional


class ShopError(Exception):
    status_code: int = 400
    code: str = "SHOP_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        err: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            err["details"] = self.details
        return {"success": False, "error": err}


class ValidationError(ShopError):
    status_code = 400
    code = "VALIDATION_ERROR"


class UnauthorizedError(ShopError):
    status_code = 401
    code = "UNAUTHORIZED"


class ForbiddenError(ShopError):
    status_code = 403
    code = "FORBIDDEN"


class NotFoundError(ShopError):
    status_code = 404
    code = "NOT_FOUND"


class ConflictError(ShopError):
    status_code = 409
    code = "CONFLICT"


class ConfigurationError(ShopError):
    status_code = 500
    code = "CONFIGURATION_ERROR"


# ----------------------------------------------------------------------------
# Specific errors used across services
# ----------------------------------------------------------------------------

class InsufficientStockError(ValidationError):
    code = "INSUFFICIENT_STOCK"

    def __init__(self, product_name: str, requested: int, available: int):
        super().__init__(
            f"Insufficient stock for product: {product_name}",
            details={"requested": requested, "available": available},
        )


class VoucherError(ValidationError):
    """Voucher could not be applied; `code` tells which rule failed."""
    code = "VOUCHER_INVALID"


class InvalidTransitionError(ValidationError):
    code = "INVALID_STATUS_TRANSITION"
