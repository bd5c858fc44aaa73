"""One-shot submission gate.

Two independent triggers can submit an attempt: the deadline (observed by the
poll loop) and the participant's submit button. Whichever reaches
``try_fire()`` first wins; the gate is marked fired before the first
suspension point, so a caller racing in the same event-loop tick sees it
already set and does nothing. The gate never retries and never unfires.
"""

import logging
from typing import Callable

from .api_client import SessionApiError

logger = logging.getLogger(__name__)


class SubmissionGate:
    def __init__(
        self,
        session_id: str,
        port,
        *,
        on_fire: Callable[[], None] | None = None,
        on_submitted: Callable[[str], None] | None = None,
        on_failed: Callable[[SessionApiError], None] | None = None,
    ):
        self.session_id = session_id
        self._port = port
        self._on_fire = on_fire
        self._on_submitted = on_submitted
        self._on_failed = on_failed
        self.fired = False
        self.settled = False
        self.reason: str | None = None
        self.attempt_id: str | None = None
        self.error: SessionApiError | None = None

    @property
    def submitting(self) -> bool:
        return self.fired and not self.settled

    async def try_fire(self, reason: str) -> bool:
        """Submit once. Returns True only for the caller that won the gate."""
        if self.fired:
            logger.debug("Gate for %s already fired (%s), ignoring %s", self.session_id, self.reason, reason)
            return False
        self.fired = True
        self.reason = reason
        logger.info("Submitting attempt for session %s (%s)", self.session_id, reason)

        if self._on_fire is not None:
            self._on_fire()

        try:
            result = await self._port.submit_attempt(self.session_id)
        except SessionApiError as exc:
            self.error = exc
            self.settled = True
            logger.error("Submit failed for session %s: %s (%s)", self.session_id, exc.message, exc.kind)
            if self._on_failed is not None:
                self._on_failed(exc)
            return True

        self.attempt_id = result.attempt_id
        self.settled = True
        if self._on_submitted is not None:
            self._on_submitted(result.attempt_id)
        return True
