"""
Typed failures raised by the order, payment and shift services.

Routes never build HTTP errors for these by hand: `main.py` registers one
exception handler for `PosError` and maps each family to a status code.
"""


class PosError(Exception):
    """Base class for every failure surfaced to callers."""

    status_code = 400

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(detail)


class NotFoundError(PosError):
    """Entity absent, or outside the caller's tenant scope."""

    status_code = 404


class InvalidRequestError(PosError):
    status_code = 400


class ItemUnavailable(InvalidRequestError):
    def __init__(self, menu_item_id: int):
        self.menu_item_id = menu_item_id
        super().__init__(f"Menu item {menu_item_id} not found or inactive")


class InvalidTransition(InvalidRequestError):
    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move order from {current} to {requested}")


class ConflictError(PosError):
    status_code = 409


class AlreadyPaid(ConflictError):
    def __init__(self, order_id: int):
        self.order_id = order_id
        super().__init__("Order already paid")


class AlreadyConfirmed(ConflictError):
    def __init__(self, payment_id: int):
        self.payment_id = payment_id
        super().__init__("Payment already confirmed")


class PaymentRejected(ConflictError):
    def __init__(self, payment_id: int):
        self.payment_id = payment_id
        super().__init__("Payment was rejected")


class ShiftAlreadyOpen(ConflictError):
    def __init__(self, outlet_id: int, cashier_user_id: int):
        self.outlet_id = outlet_id
        self.cashier_user_id = cashier_user_id
        super().__init__("You already have an open shift. Please close it first.")


class ExhaustedError(PosError):
    status_code = 503


class CodeGenerationExhausted(ExhaustedError):
    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"Could not generate a unique order code after {attempts} attempts")
