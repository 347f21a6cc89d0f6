"""
Connectivity state machine for the messaging session.

Transitions are driven only by provider connectivity events, nothing here
polls. The manager owns the reconnect policy: one pending reconnect task at
most, replaced rather than stacked, and cancelled once the session is ready.
"""

import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Callable, Optional

from wabridge.events import (
    AuthenticatedEvent,
    AuthFailureEvent,
    DisconnectedEvent,
    MessagingProvider,
    QrEvent,
    ReadyEvent,
    StateChangeEvent,
)
from wabridge.metrics import record_session_state

logger = logging.getLogger(__name__)

DEFAULT_RECONNECT_DELAY_SECONDS = 10.0

# Disconnect reasons after which re-authenticating cannot help
TERMINAL_DISCONNECT_REASONS = frozenset({"TOS_BLOCK"})


class SessionState(str, Enum):
    DISCONNECTED = "DISCONNECTED"
    AWAITING_AUTH = "AWAITING_AUTH"
    AUTHENTICATED = "AUTHENTICATED"
    READY = "READY"
    RECONNECTING = "RECONNECTING"


def log_challenge(code: str) -> None:
    """Default challenge handler: write the pairing code to the log."""
    logger.info("QR Code received. Scan with your phone", extra={"qr": code})


class SessionManager:
    def __init__(
        self,
        provider: MessagingProvider,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY_SECONDS,
        challenge_handler: Optional[Callable[[str], Any]] = None,
    ):
        self._provider = provider
        self.reconnect_delay = reconnect_delay
        self._challenge_handler = challenge_handler or log_challenge

        self._state = SessionState.DISCONNECTED
        self._disconnect_reason: Optional[str] = None
        self._blocked = False
        self._shown_code: Optional[str] = None

        # Waiting on the timer
        self._reconnect_task: Optional[asyncio.Task] = None
        # Timer fired, provider.initialize() running
        self._reconnect_attempt: Optional[asyncio.Task] = None
        self._background: set[asyncio.Task] = set()
        self._ready_callbacks: list[Callable] = []
        self._disconnected_callbacks: list[Callable] = []

        record_session_state(self._state.value, [s.value for s in SessionState])

    # =========================================================================
    # Public Contract
    # =========================================================================

    def current_state(self) -> SessionState:
        return self._state

    def is_ready(self) -> bool:
        return self._state is SessionState.READY and not self._blocked

    @property
    def is_blocked(self) -> bool:
        return self._blocked

    @property
    def disconnect_reason(self) -> Optional[str]:
        return self._disconnect_reason

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    def on_ready(self, callback: Callable[[], Any]) -> None:
        """Register a callback run (as its own task) every time the session becomes ready."""
        self._ready_callbacks.append(callback)

    def on_disconnected(self, callback: Callable[[str], Any]) -> None:
        """Register a callback run with the disconnect reason."""
        self._disconnected_callbacks.append(callback)

    async def start(self) -> None:
        """Initialize the provider for the first time."""
        await self._initialize_provider()

    async def shutdown(self) -> None:
        """Cancel pending work and destroy the provider connection."""
        self._cancel_reconnect()
        pending = list(self._background)
        if self._reconnect_attempt is not None and not self._reconnect_attempt.done():
            pending.append(self._reconnect_attempt)
        self._reconnect_attempt = None
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        try:
            await self._provider.destroy()
        except Exception as e:
            logger.error(f"Error destroying provider: {e}")

    async def drain(self) -> None:
        """Wait until every callback task started so far has finished."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # =========================================================================
    # Event Handling
    # =========================================================================

    async def handle_event(self, event) -> None:
        """Apply one provider connectivity event."""
        if self._blocked:
            logger.warning(f"Session is blocked, ignoring {event.kind} event")
            return

        if isinstance(event, QrEvent):
            self._handle_qr(event.code)
        elif isinstance(event, AuthenticatedEvent):
            logger.info("WhatsApp client authenticated")
            self._shown_code = None
            self._set_state(SessionState.AUTHENTICATED)
        elif isinstance(event, AuthFailureEvent):
            logger.error(f"WhatsApp client authentication failure: {event.message}")
            self._shown_code = None
            self._disconnect_reason = "AUTH_FAILURE"
            self._set_state(SessionState.DISCONNECTED)
        elif isinstance(event, ReadyEvent):
            self._handle_ready()
        elif isinstance(event, DisconnectedEvent):
            self._handle_disconnected(event.reason)
        elif isinstance(event, StateChangeEvent):
            logger.info(f"WhatsApp client state changed: {event.state}")
        else:
            logger.warning(f"Unsupported connectivity event: {event!r}")

    def _handle_qr(self, code: str) -> None:
        self._set_state(SessionState.AWAITING_AUTH)
        if code == self._shown_code:
            logger.debug("Challenge already displayed for this code")
            return
        self._shown_code = code
        try:
            self._challenge_handler(code)
        except Exception as e:
            logger.error(f"Challenge handler failed: {e}")

    def _handle_ready(self) -> None:
        logger.info("WhatsApp client is READY")
        self._cancel_reconnect()
        self._disconnect_reason = None
        self._set_state(SessionState.READY)
        self._notify(self._ready_callbacks)

    def _handle_disconnected(self, reason: str) -> None:
        logger.warning(f"WhatsApp client disconnected: {reason}")
        self._shown_code = None
        self._disconnect_reason = reason
        self._set_state(SessionState.DISCONNECTED)

        if reason in TERMINAL_DISCONNECT_REASONS:
            self._blocked = True
            self._cancel_reconnect()
            logger.critical(
                f"WhatsApp session terminated ({reason}). Re-authentication will not work."
            )
        else:
            self._schedule_reconnect()

        self._notify(self._disconnected_callbacks, reason)

    # =========================================================================
    # Reconnect
    # =========================================================================

    def _schedule_reconnect(self) -> None:
        self._cancel_reconnect()
        logger.info(f"Attempting to reconnect WhatsApp client in {self.reconnect_delay} seconds")
        self._reconnect_task = asyncio.create_task(self._reconnect_after(self.reconnect_delay))

    def _cancel_reconnect(self) -> None:
        if self._reconnect_task is not None and not self._reconnect_task.done():
            self._reconnect_task.cancel()
            logger.debug("Pending reconnect cancelled")
        self._reconnect_task = None

    async def _reconnect_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        # From here on this attempt is in flight, not pending
        self._reconnect_task = None
        if self._blocked or self._state is SessionState.READY:
            return
        self._reconnect_attempt = asyncio.current_task()
        self._set_state(SessionState.RECONNECTING)
        try:
            await self._initialize_provider()
        finally:
            if self._reconnect_attempt is asyncio.current_task():
                self._reconnect_attempt = None

    async def _initialize_provider(self) -> None:
        logger.info("Initializing WhatsApp client")
        try:
            await self._provider.initialize()
        except Exception as e:
            # The provider reports a disconnect if it could not come up
            logger.error(f"Failed to initialize WhatsApp client: {e}")

    # =========================================================================
    # Helpers
    # =========================================================================

    def _set_state(self, state: SessionState) -> None:
        if state is not self._state:
            logger.debug(f"Session state {self._state.value} -> {state.value}")
        self._state = state
        record_session_state(state.value, [s.value for s in SessionState])

    def _notify(self, callbacks: list[Callable], *args) -> None:
        for callback in callbacks:
            try:
                result = callback(*args)
            except Exception as e:
                logger.error(f"Session callback {callback!r} failed: {e}")
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(self._guard(result))
                self._background.add(task)
                task.add_done_callback(self._background.discard)

    async def _guard(self, awaitable) -> None:
        try:
            await awaitable
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Session callback failed: {e}")
