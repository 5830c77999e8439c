# core/session.py
import asyncio
from typing import Any, Callable, List, Optional

from core.config import logger as core_logger
from core.errors import NotSignedIn
from core.models import User

logger = core_logger.getChild("Session")

UserChangeListener = Callable[[Optional[User], Optional[User]], None]


class SessionState:
    """
    Process-wide view of the signed-in user.

    `start()` reads the current session and subscribes to auth state changes;
    `close()` cancels the subscription. Listeners are told when the signed-in
    identity changes (sign in, sign out, account switch), not on token refresh.
    Consumers ask for the user explicitly through `require_user()`.
    """

    def __init__(self, client: Any):
        self._client = client
        self._subscription = None
        self._listeners: List[UserChangeListener] = []
        self.current_user: Optional[User] = None
        self.access_token: Optional[str] = None

    @property
    def started(self) -> bool:
        return self._subscription is not None

    async def start(self) -> None:
        if self.started:
            return
        session = await asyncio.to_thread(self._client.auth.get_session)
        self._apply("INITIAL_SESSION", session)
        self._subscription = self._client.auth.on_auth_state_change(self._on_auth_state_change)
        logger.info(f"Session state started (signed in: {self.current_user is not None}).")

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
            logger.info("Session state subscription cancelled.")
        self._listeners.clear()

    def add_listener(self, listener: UserChangeListener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener) if listener in self._listeners else None

    def require_user(self) -> User:
        if self.current_user is None:
            raise NotSignedIn("You must be signed in.")
        return self.current_user

    def require_access_token(self) -> str:
        if not self.access_token:
            raise NotSignedIn("You must be signed in.")
        return self.access_token

    def _on_auth_state_change(self, event: Any, session: Any) -> None:
        self._apply(str(getattr(event, "value", event)), session)

    def _apply(self, event: str, session: Any) -> None:
        user = User.from_auth_user(session.user) if session is not None and session.user else None
        previous = self.current_user
        self.current_user = user
        self.access_token = session.access_token if session is not None else None

        previous_id = previous.id if previous else None
        new_id = user.id if user else None
        logger.debug(f"Auth event {event}: user {previous_id} -> {new_id}")
        if previous_id != new_id:
            for listener in list(self._listeners):
                listener(previous, user)
