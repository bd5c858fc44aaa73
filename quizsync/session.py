"""Per-session controller and the registry that owns controllers by id.

``SessionController`` wires one session's poll loop, reconciler, recovery,
submission gate and autosave together and dispatches reconciler signals.
Outward signals (``navigate_active``, ``navigate_result``, ``error``) go to
the ``on_signal`` callback supplied by the UI layer.

``SessionRegistry`` holds one controller per session id. Closing a session
destroys its view-state, including the one-shot gate, so two sessions open
at the same time never share submission state.
"""

import asyncio
import inspect
import logging
import re
from typing import Awaitable, Callable

from . import config
from .api_client import SessionApiError
from .autosave import AnswerAutosave
from .constants import (
    SESSION_WAITING,
    SIG_AUTO_SUBMIT,
    SIG_ERROR,
    SIG_NAVIGATE_RESULT,
    SIG_RECOVER,
    SIG_STOP_POLLING,
    SUBMIT_MANUAL,
)
from .gate import SubmissionGate
from .models import ActiveSession
from .poll_loop import PollLoop, PollResult
from .reconciler import SessionView, StateReconciler
from .recovery import AutoJoinRecovery

logger = logging.getLogger(__name__)

SignalHandler = Callable[[dict], None]
Confirm = Callable[[], bool | Awaitable[bool]]

SUBMIT_CONFIRM_PROMPT = "Are you sure you want to submit? You cannot change answers after submission."

_SESSION_CODE_RE = re.compile(r"^[A-Z0-9]{6}$")


def format_time(seconds: int | None) -> str:
    """Render a countdown as ``MM:SS``; ``--:--`` when not timed yet."""
    if seconds is None:
        return "--:--"
    seconds = max(0, int(seconds))
    return f"{seconds // 60:02d}:{seconds % 60:02d}"


def normalize_session_code(code: str) -> str:
    """Upper-case and validate a 6-character join code."""
    normalized = (code or "").strip().upper()
    if not normalized:
        raise ValueError("Please enter a session code")
    if not _SESSION_CODE_RE.match(normalized):
        raise ValueError("Session code must be 6 letters or digits")
    return normalized


def resume_route(active: ActiveSession) -> str:
    """Where to send a participant who already has a live session."""
    if active.status == SESSION_WAITING:
        return f"/waiting/{active.session_id}"
    return f"/test/{active.session_id}"


class SessionController:
    def __init__(
        self,
        session_id: str,
        port,
        *,
        self_email: str | None = None,
        on_signal: SignalHandler | None = None,
        interval: float | None = None,
    ):
        self.session_id = session_id
        self.port = port
        self.interval = interval if interval is not None else config.POLL_INTERVAL
        self._on_signal = on_signal

        self.view = SessionView(session_id, self_email=self_email)
        self.poll_loop = PollLoop(port)
        self.recovery = AutoJoinRecovery(port, self.poll_loop)
        self.reconciler = StateReconciler(self.view, recovery=self.recovery)
        self.gate = SubmissionGate(
            session_id,
            port,
            on_fire=self.stop,
            on_submitted=self._on_submitted,
            on_failed=self._on_submit_failed,
        )
        self.view.gate = self.gate
        self.autosave = AnswerAutosave(self.view, port)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def polling(self) -> bool:
        return self.poll_loop.running

    def start(self):
        self.poll_loop.start(self.session_id, self.handle_result, self.interval)

    def stop(self):
        self.poll_loop.stop()
        self.view.deactivate()

    async def close(self):
        self.stop()
        await self.poll_loop.wait_idle()
        await self.autosave.flush()

    # ------------------------------------------------------------------
    # Derived view helpers
    # ------------------------------------------------------------------

    @property
    def ready_label(self) -> str:
        return f"{self.view.ready_count}/{self.view.total_count}"

    @property
    def remaining_display(self) -> str:
        return format_time(self.view.remaining_time)

    @property
    def answered_count(self) -> int:
        return len(self.view.selections)

    # ------------------------------------------------------------------
    # Participant actions
    # ------------------------------------------------------------------

    async def mark_ready(self) -> bool:
        try:
            await self.port.mark_ready(self.session_id)
        except SessionApiError as exc:
            logger.warning("Mark ready failed for %s: %s", self.session_id, exc.message)
            await self._dispatch(self.reconciler.note_failure(exc.kind, exc.message))
            return False
        self.reconciler.note_self_ready()
        self.poll_loop.poll_now()
        return True

    def select_answer(self, question_id: str, option: int) -> asyncio.Task | None:
        return self.autosave.select(question_id, option)

    def dismiss_warning(self):
        self.view.warning = None

    async def submit(self, confirm: Confirm) -> bool:
        """Manual submit; *confirm* must return True before the gate is tried."""
        if self.gate.fired or self.view.attempt_submitted:
            return False
        confirmed = confirm()
        if inspect.isawaitable(confirmed):
            confirmed = await confirmed
        if not confirmed:
            logger.debug("Manual submit for %s cancelled by user", self.session_id)
            return False
        return await self.gate.try_fire(SUBMIT_MANUAL)

    # ------------------------------------------------------------------
    # Signal dispatch
    # ------------------------------------------------------------------

    async def handle_result(self, result: PollResult):
        await self._dispatch(self.reconciler.reconcile(result))

    async def _dispatch(self, signals: list[dict]):
        for signal in signals:
            kind = signal["type"]
            if kind == SIG_AUTO_SUBMIT:
                await self.gate.try_fire(signal["reason"])
            elif kind == SIG_RECOVER:
                outcome = await self.recovery.run(self.session_id)
                await self._dispatch(self.reconciler.apply_recovery(outcome))
            elif kind == SIG_STOP_POLLING:
                self.poll_loop.stop()
            else:
                self._emit(signal)

    def _emit(self, signal: dict):
        if self._on_signal is None:
            return
        try:
            self._on_signal(signal)
        except Exception:
            logger.exception("Signal handler failed for %s", signal.get("type"))

    def _on_submitted(self, attempt_id: str):
        logger.info("Attempt %s submitted for session %s", attempt_id, self.session_id)
        self._emit({"type": SIG_NAVIGATE_RESULT, "session_id": self.session_id, "attempt_id": attempt_id})

    def _on_submit_failed(self, exc: SessionApiError):
        for signal in self.reconciler.note_failure(exc.kind, exc.message, terminal=True):
            if signal["type"] == SIG_ERROR:
                self._emit(signal)


class SessionRegistry:
    """Arena of open ``SessionController``s keyed by session id."""

    def __init__(
        self,
        port,
        *,
        self_email: str | None = None,
        on_signal: SignalHandler | None = None,
        interval: float | None = None,
    ):
        self.port = port
        self.self_email = self_email
        self._on_signal = on_signal
        self._interval = interval
        self._controllers: dict[str, SessionController] = {}

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._controllers

    def get(self, session_id: str) -> SessionController | None:
        return self._controllers.get(session_id)

    def open(self, session_id: str) -> SessionController:
        """Return the live controller for *session_id*, starting one if needed."""
        controller = self._controllers.get(session_id)
        if controller is None:
            controller = SessionController(
                session_id,
                self.port,
                self_email=self.self_email,
                on_signal=self._on_signal,
                interval=self._interval,
            )
            self._controllers[session_id] = controller
            controller.start()
            logger.info("Opened session %s", session_id)
        return controller

    async def close(self, session_id: str):
        controller = self._controllers.pop(session_id, None)
        if controller is None:
            return
        await controller.close()
        logger.info("Closed session %s", session_id)

    async def close_all(self):
        for session_id in list(self._controllers):
            await self.close(session_id)

    async def join(self, code: str) -> SessionController:
        """Join by code and open the resulting session."""
        result = await self.port.join_session(normalize_session_code(code))
        return self.open(result.session_id)

    async def resume(self) -> tuple[str, SessionController] | None:
        """Reopen the caller's WAITING/ACTIVE session, if the server has one."""
        active = await self.port.get_active_session()
        if active is None:
            return None
        return resume_route(active), self.open(active.session_id)
