"""
Common Error Constants and Exceptions

Centralized error messages plus the exception taxonomy shared by the
local store, the remote gateway and the identity provider.
"""

# Local store errors
ERROR_LOCAL_STORE_UNAVAILABLE = "Local cart store unavailable"
ERROR_CORRUPT_CART = "Corrupt cart snapshot"

# Remote errors
ERROR_REMOTE_UNREACHABLE = "Cart API unreachable"
ERROR_REMOTE_STATUS = "Cart API returned an error status"
ERROR_AUTH_EXPIRED = "Authorization expired after token refresh"

# Identity errors
ERROR_NOT_AUTHENTICATED = "No authenticated user"
ERROR_TOKEN_REFRESH = "Failed to refresh identity token"

# Validation errors
ERROR_INVALID_QUANTITY = "quantity must be a positive integer"
ERROR_INVALID_PRICE = "price must be a non-negative number"
ERROR_INVALID_PRODUCT = "product_id must be a non-empty string"


class CartSyncError(Exception):
    """Base class for all cartsync errors."""


class LocalStoreError(CartSyncError):
    """Reading or writing the on-device cart snapshot failed."""


class GatewayError(CartSyncError):
    """A remote cart API call failed."""


class GatewayTransportError(GatewayError):
    """The request never produced an HTTP response (DNS, connect, timeout)."""


class GatewayHTTPError(GatewayError):
    """The API answered with a non-2xx status."""

    def __init__(self, status_code: int, body: str = "", message: str = ERROR_REMOTE_STATUS):
        super().__init__(f"{message}: HTTP {status_code}")
        self.status_code = status_code
        self.body = body


class AuthorizationExpiredError(GatewayHTTPError):
    """Still 401 after one forced token refresh."""

    def __init__(self, body: str = ""):
        super().__init__(401, body, ERROR_AUTH_EXPIRED)


class IdentityError(CartSyncError):
    """The identity provider rejected a sign-in or token refresh."""
