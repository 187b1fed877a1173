"""Request authentication gate.

Checks run strictly in order and stop at the first failure:

1. Throttle   - client address over its failed-attempt limit -> 429
2. Extract    - no key presented               -> MissingCredentialError
3. Shape      - key fails validate_api_key()   -> MalformedCredentialError
4. Lookup     - no stored key matches          -> AuthenticationFailedError
5. Expiry     - key past its expiration        -> CredentialExpiredError
6. Permission - role lacks required permission -> InsufficientPermissionError
7. Touch      - last_used_at update scheduled in the background
8. Success    - AuthContext returned

Steps 2-6 share one time budget; running out raises
AuthenticationTimeoutError instead of a credential failure.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from .errors import (
    AuthError,
    AuthenticationFailedError,
    AuthenticationTimeoutError,
    CredentialExpiredError,
    InsufficientPermissionError,
    MalformedCredentialError,
    MissingCredentialError,
    TooManyFailedAttemptsError,
)
from .keys import validate_api_key
from .models import APIKey, AuthContext
from .store import CredentialStore
from .throttle import FailedAttemptTracker

if TYPE_CHECKING:
    from ..audit.logger import AuditLogger

logger = logging.getLogger("orbitkeys.auth.gate")

DEFAULT_AUTH_TIMEOUT = 0.5  # seconds

BackgroundErrorSink = Callable[[str, BaseException], None]


def _log_background_error(operation: str, error: BaseException) -> None:
    """Default sink for background task failures."""
    logger.warning(f"Background {operation} failed: {error}")


class AuthenticationGate:
    """Authenticates API keys and authorizes them against a permission.

    One gate is built at startup and shared by all requests; the decision
    path keeps no per-request state on the gate.

    Usage:
        gate = AuthenticationGate(store, tracker=FailedAttemptTracker())

        context = await gate.authenticate(
            request_key,
            required_permission="orders:read",
            client_address="10.0.0.7",
        )
        print(f"Authenticated key {context.key_id} with role {context.role.name}")
    """

    def __init__(
        self,
        store: CredentialStore,
        *,
        timeout: float = DEFAULT_AUTH_TIMEOUT,
        tracker: FailedAttemptTracker | None = None,
        audit_logger: AuditLogger | None = None,
        on_background_error: BackgroundErrorSink | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """Initialize the gate.

        Args:
            store: Credential store used for lookups and last-used updates.
            timeout: Time budget for a decision, in seconds.
            tracker: Optional failed-attempt tracker for brute-force throttling.
            audit_logger: Optional audit logger for authentication decisions.
            on_background_error: Sink for failures of background touches.
            clock: Source of the current UTC time.
        """
        self.store = store
        self.timeout = timeout
        self.tracker = tracker
        self.audit_logger = audit_logger
        self._on_background_error = on_background_error or _log_background_error
        self._clock = clock or (lambda: datetime.now(UTC))
        self._pending: set[asyncio.Task] = set()

    async def authenticate(
        self,
        key: str | None,
        required_permission: str | None = None,
        client_address: str | None = None,
    ) -> AuthContext:
        """Authenticate a key and check it grants a permission.

        Args:
            key: Raw key from the request header.
            required_permission: Permission the operation requires, if any.
            client_address: Client address used for failure throttling.

        Returns:
            AuthContext for the authenticated key.

        Raises:
            AuthError: One of the gate failure kinds (see module docstring).
        """
        if self.tracker and client_address and self.tracker.is_blocked(client_address):
            error = TooManyFailedAttemptsError(retry_after=self.tracker.retry_after(client_address))
            self._audit_failure(error, required_permission, client_address)
            raise error

        try:
            api_key = await asyncio.wait_for(
                self._check(key, required_permission),
                timeout=self.timeout,
            )
        except TimeoutError:
            error = AuthenticationTimeoutError(self.timeout)
            logger.error(f"Authentication exceeded {self.timeout}s budget")
            self._audit_failure(error, required_permission, client_address)
            raise error from None
        except AuthError as e:
            if self.tracker and client_address:
                self.tracker.record_failure(client_address)
            self._audit_failure(e, required_permission, client_address)
            raise

        # Only a decision reached within the budget records a use
        self.schedule_touch(api_key)
        context = AuthContext(api_key=api_key, role=api_key.role)

        if self.tracker and client_address:
            self.tracker.clear(client_address)

        if self.audit_logger:
            self.audit_logger.log_auth_event(
                allowed=True,
                key_id=api_key.id,
                role_id=api_key.role.id,
                required_permission=required_permission,
                source_ip=client_address,
            )

        return context

    async def _check(self, key: str | None, required_permission: str | None) -> APIKey:
        """Run the credential checks (steps 2-6) and return the matching key."""
        if not key:
            raise MissingCredentialError()

        if not validate_api_key(key):
            raise MalformedCredentialError()

        api_key = await asyncio.to_thread(self.store.find_by_token, key)
        if api_key is None or api_key.role is None:
            raise AuthenticationFailedError()

        now = self._clock()
        if api_key.is_expired(now):
            raise CredentialExpiredError()

        if required_permission and not api_key.role.has_permission(required_permission):
            raise InsufficientPermissionError(required_permission)

        return api_key

    def schedule_touch(self, api_key: APIKey, now: datetime | None = None) -> None:
        """Record a key use in the background without waiting for the store."""
        timestamp = api_key.touch(now or self._clock())
        task = asyncio.get_running_loop().create_task(
            asyncio.to_thread(self.store.update_last_used, api_key.id, timestamp)
        )
        self._pending.add(task)
        task.add_done_callback(self._touch_done)

    def _touch_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self._on_background_error("last_used_at update", error)

    async def drain(self) -> None:
        """Wait for pending background touches to finish."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    def _audit_failure(
        self,
        error: AuthError,
        required_permission: str | None,
        client_address: str | None,
    ) -> None:
        if self.audit_logger:
            self.audit_logger.log_auth_event(
                allowed=False,
                required_permission=required_permission,
                code=error.code,
                reason=error.message,
                source_ip=client_address,
            )
