"""Identity providers."""
from .firebase import FirebaseAuth, FirebaseUser
from .identity import AuthStateListeners, IdentityProvider, IdentityUser

__all__ = [
    "AuthStateListeners",
    "FirebaseAuth",
    "FirebaseUser",
    "IdentityProvider",
    "IdentityUser",
]
