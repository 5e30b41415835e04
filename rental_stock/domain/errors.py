"""Business errors raised by the inventory engine.

All of them are terminal for the call that raised them and carry a message
meant to be shown to the operator as-is. ``status_code`` and ``code`` are
used by the HTTP layer.
"""


class InventoryError(Exception):
    status_code = 400
    code = "inventory_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(InventoryError):
    status_code = 422
    code = "validation_error"


class ConflictError(InventoryError):
    status_code = 409
    code = "conflict"


class NotFoundError(InventoryError):
    status_code = 404
    code = "not_found"


class PreconditionFailedError(InventoryError):
    status_code = 409
    code = "precondition_failed"


class InvalidTransitionError(PreconditionFailedError):
    code = "invalid_transition"


class InsufficientStockError(InventoryError):
    status_code = 409
    code = "insufficient_stock"

    def __init__(self, item_id: int, requested: int, available: int):
        super().__init__(
            f"Insufficient stock for item {item_id}: requested {requested}, "
            f"only {available} available"
        )
        self.item_id = item_id
        self.requested = requested
        self.available = available
