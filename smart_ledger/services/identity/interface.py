"""
Abstract Identity Provider Interface

The dashboard only needs a stable owner identifier. Where it comes from
is the provider's business: a server-verified session, or a random id
the client generated once and kept.
"""

from abc import ABC, abstractmethod
from typing import Callable, Optional

from smart_ledger.models.identity import Identity


IdentityListener = Callable[[Optional[Identity]], None]
Unsubscribe = Callable[[], None]


class AuthError(Exception):
    """Sign-in, sign-out or session lookup failed."""
    pass


class IdentityProviderInterface(ABC):
    """Supplies the current actor and tells us when it changes."""

    supports_sign_in: bool = False

    @abstractmethod
    async def get_current_identity(self) -> Optional[Identity]:
        """
        The current actor, or None when nobody is signed in.

        Raises:
            AuthError: If the session could not be read
        """
        pass

    @abstractmethod
    def on_change(self, listener: IdentityListener) -> Unsubscribe:
        """
        Register a listener for identity changes (sign-in, sign-out,
        token refresh). Returns a function that removes the listener.
        """
        pass

    async def watch(self) -> None:
        """Start delivering provider events to listeners."""
        return None

    def unwatch(self) -> None:
        """Stop delivering provider events."""
        return None

    async def sign_in_with_provider(self, provider: str) -> Optional[str]:
        """
        Start a provider sign-in.

        Returns:
            URL the user must visit to continue, if any

        Raises:
            AuthError: If sign-in is unsupported or rejected
        """
        raise AuthError(f"{type(self).__name__} does not support sign-in")

    async def complete_sign_in(
        self,
        auth_code: str,
        flow_id: Optional[str] = None,
    ) -> Identity:
        """
        Finish a redirect-based sign-in with the code it returned.

        `flow_id` identifies the sign-in attempt when the provider
        redirect carried one.
        """
        raise AuthError(f"{type(self).__name__} does not support sign-in")

    @abstractmethod
    async def sign_out(self) -> None:
        """
        Invalidate the current session.

        Raises:
            AuthError: If the provider rejected the sign-out
        """
        pass
