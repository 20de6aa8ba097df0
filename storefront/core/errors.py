"""Storefront exception hierarchy"""

from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from ..models.cart import ValidationResult


class StorefrontError(Exception):
    """Base exception for storefront errors"""
    pass


class BackendError(StorefrontError):
    """The backend collaborator answered with an error response"""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code


class PermissionDeniedError(BackendError):
    """Request rejected by the backend's access policies"""
    pass


class NotFoundError(BackendError):
    """Requested resource does not exist"""
    pass


class BackendUnavailableError(StorefrontError):
    """Backend could not be reached"""
    pass


class StorageError(StorefrontError):
    """Durable storage read or write failed"""
    pass


class ProductDataError(StorefrontError):
    """Product data from the backend could not be parsed"""
    pass


class CheckoutError(StorefrontError):
    """Checkout failed; `user_message` is safe to show to the customer"""

    default_message = "We couldn't place your order. Please try again."

    def __init__(self, user_message: Optional[str] = None):
        self.user_message = user_message or self.default_message
        super().__init__(self.user_message)


class CartChangedError(CheckoutError):
    """Items in the cart no longer validate against the catalog"""

    default_message = (
        "Some items in your cart have changed or are no longer available. "
        "Please review your cart."
    )

    def __init__(
        self,
        validation: "ValidationResult",
        user_message: Optional[str] = None,
    ):
        super().__init__(user_message)
        self.validation = validation


class OrderRejectedError(CheckoutError):
    """Backend refused the order because amounts or fields broke a constraint"""

    default_message = (
        "Your order total could not be confirmed. "
        "Please review your cart and try again."
    )

    def __init__(self, user_message: Optional[str] = None, detail: Optional[str] = None):
        super().__init__(user_message)
        self.detail = detail


class PaymentRecordError(CheckoutError):
    """The order exists but its payment could not be recorded"""

    default_message = "Your order was placed but the payment record failed. Please contact us."

    def __init__(self, order_id: str, user_message: Optional[str] = None):
        super().__init__(user_message)
        self.order_id = order_id
