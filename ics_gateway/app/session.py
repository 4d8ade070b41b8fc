"""Ownership of the single authenticated hub session.

The hub accepts one authenticated session at a time and its driver calls are
blocking and order sensitive. :class:`SessionCoordinator` is the only owner of
the session handle: every hub call goes through :meth:`SessionCoordinator.login`
or :meth:`SessionCoordinator.with_session`, runs under one asyncio lock and is
executed on a dedicated worker thread so the event loop stays free.

The worker pool has exactly one thread. The lock orders the callers; the single
thread guarantees that a call abandoned after a timeout still completes before
the next one starts.
"""

from __future__ import annotations

import asyncio
import enum
import functools
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

from .hub import Hub, HubError, HubFactory
from .store import CorruptConfig, CredentialStore, Credentials, PersistError

_LOGGER = logging.getLogger("ics_session")

T = TypeVar("T")


class SessionState(str, enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"


class SessionError(Exception):
    """Base exception for failures of a session-bound operation."""


class NotAuthenticated(SessionError):
    """No live hub session; the client has to log in first."""


class HubCallFailed(SessionError):
    """The hub reported a failure while executing an operation."""

    def __init__(self, error: HubError):
        super().__init__(str(error) or type(error).__name__)
        self.error = error


class HubTimeout(SessionError):
    """A hub call did not finish within the configured timeout."""


class SessionReset(SessionError):
    """An operation failed unexpectedly; the session was dropped."""


@dataclass
class Session:
    handle: Hub | None = None


class SessionCoordinator:
    def __init__(
        self,
        *,
        hub_factory: HubFactory,
        store: CredentialStore,
        hub_timeout_s: float | None = None,
    ):
        self._hub_factory = hub_factory
        self._store = store
        self._hub_timeout_s = hub_timeout_s

        self._session = Session()
        self._state = SessionState.UNAUTHENTICATED
        self._lock = asyncio.Lock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="ics-hub")
        self._last_error: str | None = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def authenticated(self) -> bool:
        return self._state is SessionState.AUTHENTICATED

    @property
    def last_error(self) -> str | None:
        return self._last_error

    async def _run_blocking(self, fn: Callable[..., T], *args: Any) -> T:
        loop = asyncio.get_running_loop()
        fut = loop.run_in_executor(self._executor, functools.partial(fn, *args))
        if self._hub_timeout_s is None:
            return await fut
        try:
            return await asyncio.wait_for(fut, timeout=self._hub_timeout_s)
        except asyncio.TimeoutError as e:
            self._last_error = f"hub call timed out after {self._hub_timeout_s:g}s"
            _LOGGER.warning("Hub call %s timed out after %.1fs", getattr(fn, "__name__", fn), self._hub_timeout_s)
            raise HubTimeout(self._last_error) from e

    def _authenticate(self, credentials: Credentials) -> tuple[Hub, bool]:
        handle = self._hub_factory(credentials.identifier, credentials.secret)
        return handle, bool(handle.login())

    def _reset(self) -> None:
        self._session.handle = None
        self._state = SessionState.UNAUTHENTICATED

    async def login(self, credentials: Credentials, *, persist: bool = True) -> bool:
        """Authenticate against the hub, replacing the current session.

        Returns ``False`` when the hub rejects the credentials. Driver failures
        raise :class:`HubError`, an expired call raises :class:`HubTimeout`.
        """
        async with self._lock:
            self._session.handle = None
            self._state = SessionState.AUTHENTICATING
            try:
                handle, accepted = await self._run_blocking(self._authenticate, credentials)
            except (HubError, HubTimeout) as e:
                self._last_error = str(e) or type(e).__name__
                _LOGGER.warning("Login for %s failed: %s", credentials.identifier, self._last_error)
                raise
            except Exception as e:
                self._last_error = f"hub driver failed during login: {e}"
                _LOGGER.exception("Hub driver failed during login for %s", credentials.identifier)
                raise HubError(self._last_error) from e
            finally:
                self._state = SessionState.UNAUTHENTICATED

            if not accepted:
                _LOGGER.info("Hub rejected credentials for %s", credentials.identifier)
                return False

            self._session.handle = handle
            self._state = SessionState.AUTHENTICATED
            self._last_error = None
            _LOGGER.info("Logged in to hub as %s", credentials.identifier)

            if persist:
                try:
                    await asyncio.to_thread(self._store.save, credentials)
                except PersistError as e:
                    # The session stays usable, only the restart shortcut is lost.
                    self._last_error = f"credentials not saved: {e}"
                    _LOGGER.error("Could not persist credentials: %s", e)
            return True

    async def with_session(self, op: Callable[[Hub], T]) -> T:
        """Run ``op`` against the live hub handle, serialized with every other call."""
        async with self._lock:
            handle = self._session.handle
            if handle is None:
                raise NotAuthenticated("not logged in to the hub")
            try:
                return await self._run_blocking(op, handle)
            except HubError as e:
                self._last_error = str(e) or type(e).__name__
                _LOGGER.warning("Hub operation failed: %s", self._last_error)
                raise HubCallFailed(e) from e
            except HubTimeout:
                raise
            except Exception as e:
                _LOGGER.exception("Unexpected failure in hub operation, dropping session")
                self._reset()
                self._last_error = f"session reset after unexpected error: {e}"
                raise SessionReset(self._last_error) from e

    async def restore(self) -> bool:
        """Log in with the persisted credentials, if any. Never raises."""
        try:
            credentials = await asyncio.to_thread(self._store.load)
        except CorruptConfig as e:
            _LOGGER.warning("Ignoring corrupt credentials record: %s", e)
            return False
        except PersistError as e:
            _LOGGER.warning("Could not read credentials record: %s", e)
            return False

        if credentials is None:
            _LOGGER.info("No saved credentials at %s, waiting for /login", self._store.path)
            return False

        try:
            ok = await self.login(credentials, persist=False)
        except (HubError, HubTimeout) as e:
            _LOGGER.warning("Automatic login failed, staying unauthenticated: %s", e)
            return False
        if not ok:
            _LOGGER.warning("Saved credentials for %s were rejected by the hub", credentials.identifier)
        return ok

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
