"""Best-effort per-question answer saving.

A selection is written to the local map synchronously so the choice shows
immediately, then saved in its own task. A failed save leaves the local
choice in place and raises a soft warning on the view. Saves for different
questions are independent and may complete in any order.
"""

import asyncio
import logging

from .api_client import SessionApiError
from .reconciler import SessionView

logger = logging.getLogger(__name__)

SAVE_FAILED_WARNING = "Failed to save answer. Please try again."


def _save_done_callback(task: asyncio.Task):
    """Log unexpected save failures instead of leaving them unretrieved."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Answer save task failed: %s", exc, exc_info=exc)


class AnswerAutosave:
    def __init__(self, view: SessionView, port):
        self.view = view
        self._port = port
        self._pending: set[asyncio.Task] = set()

    @property
    def accepting(self) -> bool:
        return not (self.view.attempt_submitted or self.view.has_submitted)

    def select(self, question_id: str, option: int) -> asyncio.Task | None:
        """Record *option* for *question_id* and start saving it.

        Returns the save task, or None when the attempt no longer accepts
        answers.
        """
        if not self.accepting:
            logger.info("Ignoring selection for %s: attempt already submitted", question_id)
            return None
        self.view.selections[question_id] = option
        task = asyncio.ensure_future(self._save(question_id, option))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        task.add_done_callback(_save_done_callback)
        return task

    async def flush(self):
        """Wait for in-flight saves to settle."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _save(self, question_id: str, option: int) -> bool:
        try:
            await self._port.save_answer(self.view.session_id, question_id, option)
        except SessionApiError as exc:
            logger.warning("Failed to save answer for %s: %s", question_id, exc.message)
            self.view.warning = SAVE_FAILED_WARNING
            return False
        return True
