import asyncio

from loguru import logger

from bookings import escrow, settings


async def release_sweep_loop(stop_event: asyncio.Event) -> None:
    """Periodically release escrow for completed bookings past their hold period."""
    logger.info(
        "Release sweep started (every {}s)", settings.RELEASE_SWEEP_INTERVAL_SECONDS
    )
    while not stop_event.is_set():
        try:
            await escrow.release_due()
        except Exception:
            logger.exception("Release sweep failed; retrying next tick")
        try:
            await asyncio.wait_for(
                stop_event.wait(), timeout=settings.RELEASE_SWEEP_INTERVAL_SECONDS
            )
        except asyncio.TimeoutError:
            continue
    logger.info("Release sweep stopped")
