"""
Account session coordinator.

Owns the login lifecycle of one account. Registers the resolution engine
and the confirmation handler with the external collaborators, logs in,
and logs in again whenever the session collaborator reports expiry.
Login is retried forever: a fixed number of attempts spaced by a short
delay, then a longer pause, then the cycle restarts.
"""

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Optional

from .collaborators import (
    CodeGenerator,
    ConfirmationHandlerFn,
    Credentials,
    OfferChangedHandler,
    SessionTransport,
    TradeOfferClient,
)
from .errors import AuthError, is_mobile_confirmation_error
from .events import AccountEvents
from .policies import RetryPolicy

logger = logging.getLogger(__name__)


class SessionState(Enum):
    """Login state of an account."""
    LOGGED_OUT = "logged_out"
    LOGGED_IN = "logged_in"


class SessionCoordinator:
    """Login and re-login for one account."""

    def __init__(
        self,
        account_id: str,
        credentials: Credentials,
        shared_secret: str,
        transport: SessionTransport,
        offers: TradeOfferClient,
        codes: CodeGenerator,
        events: Optional[AccountEvents] = None,
        policy: Optional[RetryPolicy] = None,
        confirmation_check_interval_s: float = 10.0,
        poll_interval_s: float = 5.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize the coordinator.

        Args:
            account_id: Owning account
            credentials: Username and password
            shared_secret: Secret for two-factor login codes
            transport: Session collaborator
            offers: Trade-offer collaborator (receives the session token)
            codes: Code-generation collaborator
            events: Outward event emitter
            policy: Login retry timing
            confirmation_check_interval_s: Poll interval of the confirmation checker
            poll_interval_s: Poll interval of offer state changes
            sleep: Wait used between login attempts
        """
        self.account_id = account_id
        self._credentials = credentials
        self._shared_secret = shared_secret
        self._transport = transport
        self._offers = offers
        self._codes = codes
        self._events = events or AccountEvents(account_id)
        self._policy = policy or RetryPolicy()
        self._confirmation_check_interval_s = confirmation_check_interval_s
        self._poll_interval_s = poll_interval_s
        self._sleep = sleep

        self.state = SessionState.LOGGED_OUT
        self._retry_task: Optional[asyncio.Task] = None
        self._polling = False

    @property
    def logged_in(self) -> bool:
        return self.state is SessionState.LOGGED_IN

    @property
    def retrying(self) -> bool:
        return self._retry_task is not None and not self._retry_task.done()

    async def start(
        self,
        on_offer_changed: OfferChangedHandler,
        on_new_confirmation: ConfirmationHandlerFn,
    ) -> bool:
        """
        Register listeners and log in.

        A failed first login hands over to the background retry loop.

        Returns:
            True if the first login succeeded
        """
        self._transport.on_session_expired(self.on_session_expired)
        self._transport.on_new_confirmation(on_new_confirmation)
        self._offers.on_offer_changed(on_offer_changed)

        try:
            await self.login()
        except AuthError as e:
            self._report_failure(e)
            self._events.err("Error starting session; retrying in the background")
            self._spawn_retry()
            return False
        return True

    async def login(self) -> None:
        """One login attempt. Raises AuthError."""
        self.state = SessionState.LOGGED_OUT
        self._events.info("Logging in")

        code = self._codes.auth_code(self._shared_secret)
        self._events.debug("Generated two-factor code")

        token = await self._transport.login(self._credentials, code)
        self._offers.set_session(token)
        self.state = SessionState.LOGGED_IN
        self._events.info("Logged in successfully")

        if not self._polling:
            self._transport.start_confirmation_checker(self._confirmation_check_interval_s)
            self._offers.start_polling(self._poll_interval_s)
            self._polling = True

    async def on_session_expired(self) -> None:
        """Handle the session collaborator reporting an expired session."""
        self.state = SessionState.LOGGED_OUT
        self._events.warning("Session expired")
        self._spawn_retry()

    def _spawn_retry(self) -> None:
        if self.retrying:
            return
        self._retry_task = asyncio.get_running_loop().create_task(
            self.retry_login(),
            name=f"login-{self.account_id}",
        )

    async def retry_login(self) -> None:
        """Log in again, never giving up."""
        while True:
            for _ in range(self._policy.login_attempts_per_cycle):
                try:
                    await self.login()
                    return
                except AuthError as e:
                    self._report_failure(e)
                    await self._sleep(self._policy.login_retry_delay_s)

            self._events.err(
                f"Unable to log in. Waiting {self._policy.login_cycle_pause_s:g}s before retrying"
            )
            await self._sleep(self._policy.login_cycle_pause_s)

    def _report_failure(self, error: AuthError) -> None:
        if is_mobile_confirmation_error(error):
            self._events.err(
                "Login requires a mobile authenticator step; operator action needed", error
            )
        else:
            self._events.err("Error logging in", error)

    async def stop(self) -> None:
        """Cancel a running retry loop."""
        task = self._retry_task
        self._retry_task = None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
