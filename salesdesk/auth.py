"""Auth session state.

Login and logout belong to the external identity provider; this module only
tracks the resulting ``{user, is_loading}`` state and tells subscribers when it
changes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Optional

from .crm_models import User


class NotAuthenticated(RuntimeError):
    """Raised when an operation needs a signed-in user and there is none."""


@dataclass(frozen=True)
class AuthState:
    user: Optional[User]
    is_loading: bool


AuthListener = Callable[[AuthState], None]


class AuthSession:
    def __init__(self) -> None:
        self._state = AuthState(user=None, is_loading=True)
        self._listeners: List[AuthListener] = []

    @property
    def state(self) -> AuthState:
        return self._state

    def on_auth_state_changed(self, listener: AuthListener) -> Callable[[], None]:
        """Subscribe; the listener is called immediately with the current state."""
        self._listeners.append(listener)
        listener(self._state)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self, state: AuthState) -> None:
        self._state = state
        for listener in list(self._listeners):
            listener(state)

    def signed_in(self, user: User) -> None:
        self._publish(AuthState(user=user, is_loading=False))

    def signed_out(self) -> None:
        self._publish(AuthState(user=None, is_loading=False))

    def me(self) -> User:
        if self._state.user is None:
            raise NotAuthenticated("No user is signed in.")
        return self._state.user
