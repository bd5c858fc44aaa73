"""Merge server snapshots into the client-local ``SessionView``.

The reconciler is the only writer of ``SessionView`` session/attempt state.
It never performs I/O itself: ``reconcile()`` applies one ``PollResult`` and
returns a list of signal dicts (``{"type": SIG_*, ...}``) that the session
controller dispatches to navigation, recovery or the submission gate.

Staleness rules
---------------
Two comparators guard the view against late replies:

- *Sequence number*: a result whose request was issued before the last
  applied snapshot is stale. It may only contribute monotonic facts:
  participants becoming READY, the attempt becoming SUBMITTED, new
  participants appearing, and a higher session status.
- *Status rank*: WAITING < ACTIVE < COMPLETED. A snapshot whose status is
  behind the highest applied status is treated as stale too, whatever its
  sequence number, so navigation can never regress.
"""

import logging
from dataclasses import dataclass, field

from .constants import (
    ERR_NOT_A_PARTICIPANT,
    ERR_NOT_FOUND,
    ERR_NOT_JOINABLE,
    ERR_TRANSIENT,
    PARTICIPANT_READY,
    RECOVERY_NOT_LISTED,
    RECOVERY_SKIPPED,
    SESSION_ACTIVE,
    SESSION_COMPLETED,
    SESSION_STATUS_RANK,
    SESSION_WAITING,
    SIG_AUTO_SUBMIT,
    SIG_ERROR,
    SIG_NAVIGATE_ACTIVE,
    SIG_NAVIGATE_RESULT,
    SIG_RECOVER,
    SIG_STOP_POLLING,
    SUBMIT_EXPIRY,
)
from .gate import SubmissionGate
from .models import Attempt, Session, SessionStatus
from .poll_loop import PollResult

logger = logging.getLogger(__name__)


@dataclass
class ViewError:
    kind: str
    message: str
    terminal: bool = False


@dataclass
class SessionView:
    """Best-effort projection of one session, rebuilt from every poll."""

    session_id: str
    self_email: str | None = None
    session: Session | None = None
    attempt: Attempt | None = None
    gate: SubmissionGate | None = None
    selections: dict[str, int] = field(default_factory=dict)
    error: ViewError | None = None
    warning: str | None = None
    self_ready: bool = False
    active: bool = True
    loading: bool = True
    entered_active: bool = False
    last_seq: int = 0
    status_rank: int = -1

    @property
    def status(self) -> str | None:
        return self.session.status if self.session else None

    @property
    def remaining_time(self) -> int | None:
        return self.session.remaining_time if self.session else None

    @property
    def has_submitted(self) -> bool:
        return bool(self.gate is not None and self.gate.fired)

    @property
    def attempt_submitted(self) -> bool:
        return self.attempt is not None and self.attempt.is_submitted

    @property
    def ready_count(self) -> int:
        if not self.session:
            return 0
        return sum(1 for p in self.session.participants if p.is_ready)

    @property
    def total_count(self) -> int:
        return len(self.session.participants) if self.session else 0

    def deactivate(self):
        self.active = False


def _merge_participants(current: Session, incoming: Session, *, fresh: bool):
    """Combine participant lists without ever reverting READY to JOINED."""
    ready = {p.email for p in current.participants if p.is_ready}
    ready.update(p.email for p in incoming.participants if p.is_ready)

    if fresh:
        base = list(incoming.participants)
        known = {p.email for p in base}
        # A participant can't leave; keep anyone the fresh list dropped.
        base.extend(p for p in current.participants if p.email not in known)
    else:
        base = list(current.participants)
        known = {p.email for p in base}
        base.extend(p for p in incoming.participants if p.email not in known)

    return [
        p.model_copy(update={"status": PARTICIPANT_READY}) if p.email in ready and not p.is_ready else p
        for p in base
    ]


class StateReconciler:
    def __init__(self, view: SessionView, *, recovery=None):
        self.view = view
        self._recovery = recovery

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def reconcile(self, result: PollResult) -> list[dict]:
        if not self.view.active:
            logger.debug("Dropping result #%d for inactive view %s", result.seq, self.view.session_id)
            return []
        if result.error is not None:
            return self._apply_error(result)
        if result.status is None:
            return []
        return self._apply_snapshot(result.seq, result.status)

    def note_self_ready(self):
        """Record a successful mark-ready ack; READY is monotonic."""
        self.view.self_ready = True

    def note_failure(self, kind: str, message: str, *, terminal: bool = False) -> list[dict]:
        """Surface a failure from an action outside the poll path."""
        self.view.error = ViewError(kind, message, terminal=terminal)
        signals = []
        if terminal and self.view.active:
            self.view.deactivate()
            signals.append({"type": SIG_STOP_POLLING, "session_id": self.view.session_id})
        signals.append({"type": SIG_ERROR, "kind": kind, "message": message, "terminal": terminal})
        return signals

    def apply_recovery(self, outcome) -> list[dict]:
        """Fold an ``AutoJoinRecovery`` outcome back into the view."""
        if outcome.outcome == RECOVERY_SKIPPED:
            return []
        if outcome.joined:
            return self.reconcile(outcome.result)
        if not self.view.active:
            return []
        kind = outcome.error.kind if outcome.error is not None else ERR_NOT_JOINABLE
        if outcome.outcome == RECOVERY_NOT_LISTED:
            kind = ERR_NOT_FOUND
        return self.note_failure(kind, outcome.message, terminal=outcome.terminal)

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def _apply_snapshot(self, seq: int, status: SessionStatus) -> list[dict]:
        view = self.view
        incoming = status.session
        incoming_rank = SESSION_STATUS_RANK[incoming.status]
        previous_rank = view.status_rank

        stale = seq < view.last_seq or incoming_rank < previous_rank
        if stale:
            logger.debug(
                "Stale snapshot #%d for %s (last #%d, status %s behind %s?)",
                seq, view.session_id, view.last_seq, incoming.status, view.status,
            )

        view.session = self._merge_session(view.session, incoming, stale=stale)
        view.attempt = self._merge_attempt(view.attempt, status.user_attempt, stale=stale)
        view.last_seq = max(view.last_seq, seq)
        view.status_rank = max(previous_rank, SESSION_STATUS_RANK[view.session.status])
        view.loading = False

        if view.attempt is not None:
            for question_id, option in view.attempt.answer_map().items():
                # Local selections win; a failed save must not be reverted.
                view.selections.setdefault(question_id, option)

        me = view.session.find_participant(view.self_email)
        if me is not None and me.is_ready:
            view.self_ready = True

        if view.error is not None and not view.error.terminal:
            view.error = None

        return self._detect_transitions(previous_rank)

    def _merge_session(self, current: Session | None, incoming: Session, *, stale: bool) -> Session:
        if current is None:
            return incoming
        participants = _merge_participants(current, incoming, fresh=not stale)
        if not stale:
            return incoming.model_copy(update={"participants": participants})

        update = {"participants": participants}
        if SESSION_STATUS_RANK[incoming.status] > SESSION_STATUS_RANK[current.status]:
            update["status"] = incoming.status
        return current.model_copy(update=update)

    @staticmethod
    def _merge_attempt(current: Attempt | None, incoming: Attempt | None, *, stale: bool) -> Attempt | None:
        if incoming is None:
            return current
        if current is None:
            return incoming
        if current.is_submitted and not incoming.is_submitted:
            return current
        if stale and not incoming.is_submitted:
            return current
        return incoming

    def _detect_transitions(self, previous_rank: int) -> list[dict]:
        view = self.view
        signals: list[dict] = []
        status = view.session.status

        if (
            status == SESSION_ACTIVE
            and not view.entered_active
            and previous_rank <= SESSION_STATUS_RANK[SESSION_WAITING]
        ):
            view.entered_active = True
            logger.info("Session %s is now ACTIVE", view.session_id)
            signals.append({"type": SIG_NAVIGATE_ACTIVE, "session_id": view.session_id})
        elif status != SESSION_WAITING:
            # Joined mid-session or skipped straight to COMPLETED: no entry signal.
            view.entered_active = True

        if status == SESSION_COMPLETED and view.attempt_submitted:
            logger.info("Session %s completed with attempt already submitted", view.session_id)
            view.deactivate()
            signals.append({"type": SIG_STOP_POLLING, "session_id": view.session_id})
            signals.append({
                "type": SIG_NAVIGATE_RESULT,
                "session_id": view.session_id,
                "attempt_id": view.attempt.id,
            })
            return signals

        if view.attempt_submitted or view.has_submitted:
            return signals

        if status == SESSION_COMPLETED:
            signals.append({"type": SIG_AUTO_SUBMIT, "reason": SUBMIT_EXPIRY, "session_id": view.session_id})
        elif status == SESSION_ACTIVE and view.remaining_time == 0:
            signals.append({"type": SIG_AUTO_SUBMIT, "reason": SUBMIT_EXPIRY, "session_id": view.session_id})
        return signals

    # ------------------------------------------------------------------
    # Errors
    # ------------------------------------------------------------------

    def _apply_error(self, result: PollResult) -> list[dict]:
        view = self.view
        exc = result.error
        view.loading = False

        if result.seq < view.last_seq:
            # Issued before a snapshot that already landed; it says nothing new.
            logger.debug("Dropping stale %s error #%d for %s", exc.kind, result.seq, view.session_id)
            return []

        if exc.kind == ERR_NOT_A_PARTICIPANT:
            if self._recovery is not None and self._recovery.in_flight:
                logger.debug("Recovery already in flight for %s, dropping", view.session_id)
                return []
            return [{"type": SIG_RECOVER, "session_id": view.session_id}]

        if exc.kind == ERR_TRANSIENT:
            view.error = ViewError(exc.kind, exc.message, terminal=False)
            return [{"type": SIG_ERROR, "kind": exc.kind, "message": exc.message, "terminal": False}]

        logger.warning("Terminal error for session %s: %s (%s)", view.session_id, exc.message, exc.kind)
        view.error = ViewError(exc.kind, exc.message, terminal=True)
        view.deactivate()
        return [
            {"type": SIG_STOP_POLLING, "session_id": view.session_id},
            {"type": SIG_ERROR, "kind": exc.kind, "message": exc.message, "terminal": True},
        ]
