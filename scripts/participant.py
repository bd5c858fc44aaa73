#!/usr/bin/env python3
"""
Headless session participant.

Logs in, joins a session by code (or resumes the caller's live session),
marks ready, waits for the session to start, answers every question and
submits. Useful for load-testing the readiness barrier with several
participants against the reference server.

Usage:
    python scripts/participant.py --email a@x.io --code ABC123 --yes
    python scripts/participant.py --email b@x.io --code ABC123 --wait-expiry
    python scripts/participant.py --email a@x.io --resume
"""

import asyncio
import logging
import random
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from quizsync import config  # noqa: E402
from quizsync.api_client import SessionApiClient, SessionApiError  # noqa: E402
from quizsync.constants import SIG_ERROR, SIG_NAVIGATE_ACTIVE, SIG_NAVIGATE_RESULT  # noqa: E402
from quizsync.session import SUBMIT_CONFIRM_PROMPT, SessionRegistry  # noqa: E402

logger = logging.getLogger("participant")


def _ask(prompt: str) -> bool:
    return input(f"{prompt} [y/N] ").strip().lower() in ("y", "yes")


class _Signals:
    """Turn controller signals into awaitable events."""

    def __init__(self):
        self.active = asyncio.Event()
        self.finished = asyncio.Event()
        self.attempt_id: str | None = None
        self.error: str | None = None

    def __call__(self, signal: dict):
        kind = signal["type"]
        if kind == SIG_NAVIGATE_ACTIVE:
            self.active.set()
        elif kind == SIG_NAVIGATE_RESULT:
            self.attempt_id = signal["attempt_id"]
            self.finished.set()
        elif kind == SIG_ERROR:
            logger.warning("%s: %s", signal["kind"], signal["message"])
            if signal.get("terminal"):
                self.error = signal["message"]
                self.active.set()
                self.finished.set()


async def _run(args) -> int:
    signals = _Signals()
    async with SessionApiClient(args.api_url) as client:
        await client.login(args.email, args.name)
        registry = SessionRegistry(client, self_email=args.email, on_signal=signals, interval=args.interval)
        try:
            if args.resume:
                resumed = await registry.resume()
                if resumed is None:
                    print("No active session to resume", file=sys.stderr)
                    return 1
                route, controller = resumed
                print(f"Resuming {route}")
            else:
                controller = await registry.join(args.code)
            print(f"Session {controller.session_id}")

            if not await controller.mark_ready():
                print(f"Could not mark ready: {controller.view.error.message}", file=sys.stderr)
                return 1

            await signals.active.wait()
            if signals.error:
                print(f"Error: {signals.error}", file=sys.stderr)
                return 1

            while controller.view.session is None or not controller.view.session.test.questions:
                await asyncio.sleep(0.1)
            for question in controller.view.session.test.questions:
                if question.options:
                    controller.select_answer(question.id, random.randrange(len(question.options)))
            await controller.autosave.flush()
            print(f"Answered {controller.answered_count} questions, {controller.remaining_display} left")

            if not args.wait_expiry:
                if args.yes:
                    await controller.submit(lambda: True)
                else:
                    # Read stdin off the event loop so polling keeps running.
                    await controller.submit(lambda: asyncio.to_thread(_ask, SUBMIT_CONFIRM_PROMPT))
            await signals.finished.wait()
            if signals.error:
                print(f"Error: {signals.error}", file=sys.stderr)
                return 1

            if signals.attempt_id is not None:
                result = await client.get_attempt_result(signals.attempt_id)
                print(f"Score: {result.score}/{result.total}")
            summary = await client.get_session_summary(controller.session_id)
            for rank, entry in enumerate(summary.leaderboard, 1):
                state = "" if entry.submitted else " (not submitted)"
                print(f"  {rank}. {entry.name} {entry.score}/{entry.total}{state}")
            return 0
        except (SessionApiError, ValueError) as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return 1
        finally:
            await registry.close_all()


def main():
    import argparse
    parser = argparse.ArgumentParser(description="Run a headless session participant")
    parser.add_argument("--api-url", default=config.API_URL, help="Base URL of the session API")
    parser.add_argument("--email", required=True, help="Participant email (identity)")
    parser.add_argument("--name", default="", help="Display name")
    parser.add_argument("--code", help="6-character session code to join")
    parser.add_argument("--resume", action="store_true", help="Resume the caller's live session")
    parser.add_argument("--interval", type=float, default=config.POLL_INTERVAL, help="Poll interval in seconds")
    parser.add_argument("--wait-expiry", action="store_true",
                        help="Do not submit manually; let the session clock submit")
    parser.add_argument("-y", "--yes", action="store_true", help="Submit without asking for confirmation")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args()

    if not args.code and not args.resume:
        parser.error("Specify --code or --resume")

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    sys.exit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
