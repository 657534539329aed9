"""
Auth provider seam.

The cart only needs to know who is signed in, to ask the UI for a login
prompt, and to hear about login/logout. Identity changes are pushed to
subscribers; nothing polls.
"""
import inspect
from typing import Awaitable, Callable, List, Optional, Protocol, Union, runtime_checkable

from storefront.logging import get_logger, mask_email_for_logging

from .models import Identity

logger = get_logger(__name__)

IdentityListener = Callable[[Optional[Identity]], Union[None, Awaitable[None]]]
Unsubscribe = Callable[[], None]


@runtime_checkable
class AuthProvider(Protocol):
    """What CartStore consumes from the auth layer."""

    def get_current_identity(self) -> Optional[Identity]:
        ...

    def require_login(self, action_label: str) -> None:
        """Ask the UI to show the login prompt for `action_label`."""
        ...

    def subscribe(self, listener: IdentityListener) -> Unsubscribe:
        """Register for identity changes; returns a callable that unregisters."""
        ...


class SessionAuthProvider:
    """
    In-process auth state for one storefront session.

    The hosting app calls login()/logout() when its session changes;
    listeners (CartStore) are notified in registration order. A
    `login_prompt` hook lets the UI react to require_login().
    """

    def __init__(
        self,
        identity: Optional[Identity] = None,
        login_prompt: Optional[Callable[[str], None]] = None,
    ) -> None:
        self._identity = identity
        self._listeners: List[IdentityListener] = []
        self._login_prompt = login_prompt
        self.login_prompts: List[str] = []

    def get_current_identity(self) -> Optional[Identity]:
        return self._identity

    def is_logged_in(self) -> bool:
        return self._identity is not None

    def require_login(self, action_label: str) -> None:
        self.login_prompts.append(action_label)
        logger.info(f"Login required to {action_label}")
        if self._login_prompt is not None:
            self._login_prompt(action_label)

    def subscribe(self, listener: IdentityListener) -> Unsubscribe:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def login(self, identity: Identity) -> None:
        if self._identity is not None and self._identity.id == identity.id:
            return
        logger.info(f"Session signed in: {mask_email_for_logging(identity.email or identity.id)}")
        self._identity = identity
        await self._emit()

    async def logout(self) -> None:
        if self._identity is None:
            return
        logger.info("Session signed out")
        self._identity = None
        await self._emit()

    async def _emit(self) -> None:
        identity = self._identity
        for listener in list(self._listeners):
            try:
                outcome = listener(identity)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                # One broken listener must not block the others
                logger.error(f"Identity listener failed: {e}", exc_info=True)
