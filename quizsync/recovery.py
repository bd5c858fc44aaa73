"""Re-join a session after the client lost its participant registration.

Triggered when a status poll reports ``NOT_A_PARTICIPANT`` (typically after
a page reload dropped the join). The session id is mapped back to its join
code through the session listing, the session is checked to still be
WAITING, and the join is issued once. Recovery is single-flight: a trigger
that arrives while a run is in progress is dropped, not queued.
"""

import logging
from dataclasses import dataclass

from .api_client import SessionApiError
from .constants import (
    ERR_ALREADY_JOINED,
    RECOVERY_JOIN_FAILED,
    RECOVERY_JOINED,
    RECOVERY_LOOKUP_FAILED,
    RECOVERY_NOT_JOINABLE,
    RECOVERY_NOT_LISTED,
    RECOVERY_REFETCH_FAILED,
    RECOVERY_SKIPPED,
    SESSION_WAITING,
)
from .poll_loop import PollResult

logger = logging.getLogger(__name__)

# Outcomes after which retrying on the next poll cannot help.
TERMINAL_OUTCOMES = frozenset({RECOVERY_NOT_LISTED, RECOVERY_NOT_JOINABLE})


@dataclass
class RecoveryOutcome:
    outcome: str
    message: str = ""
    result: PollResult | None = None
    error: SessionApiError | None = None

    @property
    def joined(self) -> bool:
        return self.outcome == RECOVERY_JOINED

    @property
    def terminal(self) -> bool:
        return self.outcome in TERMINAL_OUTCOMES


class AutoJoinRecovery:
    def __init__(self, port, poll_loop):
        self._port = port
        self._poll_loop = poll_loop
        self.in_flight = False

    async def run(self, session_id: str) -> RecoveryOutcome:
        # Check-and-set with no await in between.
        if self.in_flight:
            logger.debug("Recovery for %s already running, dropping trigger", session_id)
            return RecoveryOutcome(RECOVERY_SKIPPED)
        self.in_flight = True
        try:
            return await self._recover(session_id)
        finally:
            self.in_flight = False

    async def _recover(self, session_id: str) -> RecoveryOutcome:
        logger.info("Not a participant of %s, attempting auto-join", session_id)

        try:
            listings = await self._port.get_all_sessions()
        except SessionApiError as exc:
            logger.warning("Auto-join lookup failed for %s: %s", session_id, exc.message)
            return RecoveryOutcome(RECOVERY_LOOKUP_FAILED, exc.message, error=exc)

        target = next((s for s in listings if s.id == session_id), None)
        if target is None or not target.session_code:
            return RecoveryOutcome(RECOVERY_NOT_LISTED, "Session not found in history")

        if target.status != SESSION_WAITING:
            message = f"Cannot join this session. Session is {target.status}."
            logger.info("Auto-join refused for %s: status %s", session_id, target.status)
            return RecoveryOutcome(RECOVERY_NOT_JOINABLE, message)

        try:
            await self._port.join_session(target.session_code)
        except SessionApiError as exc:
            if exc.kind != ERR_ALREADY_JOINED:
                logger.warning("Auto-join failed for %s: %s", session_id, exc.message)
                return RecoveryOutcome(RECOVERY_JOIN_FAILED, exc.message, error=exc)
            logger.info("Already joined %s, re-fetching status", session_id)

        result = await self._poll_loop.fetch_once(session_id)
        if result.error is not None:
            return RecoveryOutcome(RECOVERY_REFETCH_FAILED, result.error.message, result=result, error=result.error)
        logger.info("Auto-joined session %s", session_id)
        return RecoveryOutcome(RECOVERY_JOINED, result=result)
