"""
Background sweep closing chats that went quiet.

Runs inside the API process as an asyncio task started on application
startup. A closed chat is reopened by the next visitor message.
"""
import asyncio
import logging
from datetime import timedelta

from starlette.concurrency import run_in_threadpool

from aiwidget.db import SessionFactory
from aiwidget.services.chat_store import close_inactive_chats

logger = logging.getLogger(__name__)


def sweep_once(session_factory: SessionFactory, inactivity_minutes: int) -> int:
    db = session_factory()
    try:
        return close_inactive_chats(db, timedelta(minutes=inactivity_minutes))
    finally:
        db.close()


async def run_inactivity_sweeper(
    session_factory: SessionFactory,
    inactivity_minutes: int,
    interval_seconds: float,
) -> None:
    """Sweep forever until cancelled; a failed sweep is logged and retried next interval."""
    logger.info(
        f"Inactivity sweeper started (threshold {inactivity_minutes} min, every {interval_seconds}s)"
    )
    while True:
        try:
            closed = await run_in_threadpool(sweep_once, session_factory, inactivity_minutes)
            if closed:
                logger.info(f"Inactivity sweep closed {closed} chats", extra={"event": "inactivity_sweep"})
        except Exception as e:
            logger.error(f"Inactivity sweep failed: {e}", exc_info=True)
        await asyncio.sleep(interval_seconds)
