"""
Caller Identity

The authentication handshake happens elsewhere; this core only needs a
stable user id to namespace the ledger collection and the object store.
A provider returning None means "signed out", and every operation then
fails with `unauthenticated`.
"""

from abc import ABC, abstractmethod
from typing import Optional


class IdentityProvider(ABC):
    """Source of the current caller's user id."""

    @abstractmethod
    def current_user_id(self) -> Optional[str]:
        """The signed-in user's id, or None when nobody is signed in."""
        pass


class StaticIdentityProvider(IdentityProvider):
    """Identity held in memory; sign_in/sign_out swap it."""

    def __init__(self, user_id: Optional[str] = None):
        self._user_id = user_id

    def current_user_id(self) -> Optional[str]:
        return self._user_id

    def sign_in(self, user_id: str) -> None:
        self._user_id = user_id

    def sign_out(self) -> None:
        self._user_id = None
