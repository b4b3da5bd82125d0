import asyncio
import enum
import logging
from typing import Optional

from app.core.security import SessionContext

logger = logging.getLogger(__name__)


class AuthState(enum.Enum):
    UNKNOWN = "UNKNOWN"
    AUTHENTICATED = "AUTHENTICATED"
    ANONYMOUS = "ANONYMOUS"


class AuthGate:
    """
    Holds the device's sign-in state.

    Starts UNKNOWN until the stored session has been checked; code that needs
    to know whether the user is signed in awaits ``wait()`` instead of polling.
    """

    def __init__(self):
        self._state = AuthState.UNKNOWN
        self._session: Optional[SessionContext] = None
        self._resolved = asyncio.Event()

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def session(self) -> Optional[SessionContext]:
        return self._session

    def resolve(self, session: Optional[SessionContext]):
        """Record the outcome of the session check; None means signed out"""
        self._session = session
        self._state = AuthState.AUTHENTICATED if session is not None else AuthState.ANONYMOUS
        logger.debug("Auth state resolved to %s", self._state.value)
        self._resolved.set()

    def reset(self):
        """Back to UNKNOWN, e.g. while a token refresh is in flight"""
        self._session = None
        self._state = AuthState.UNKNOWN
        self._resolved.clear()

    async def wait(self, timeout: Optional[float] = None) -> AuthState:
        """Block until the state is known; raises asyncio.TimeoutError on timeout"""
        if timeout is None:
            await self._resolved.wait()
        else:
            await asyncio.wait_for(self._resolved.wait(), timeout=timeout)
        return self._state
