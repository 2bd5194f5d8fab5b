import asyncio
import logging

from app.api.deps import get_dispatcher, get_gateway
from app.consumers.pending_order_sweeper import expire_stale_pending_orders
from app.core.config import POLLING_INTERVAL, MAX_ATTEMPTS, BATCH_SIZE
from app.core.db import init_db, close_db, get_sessionmaker
from app.events.outbox_utility import fetch_undelivered
from app.events.side_effects import SideEffectDispatcher
from app.services.payment_gateway import CheckoutGateway

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
log = logging.getLogger("outbox_poller")


async def poll_outbox_for_new_events(dispatcher: SideEffectDispatcher) -> int:
    """
    Retries side effects whose first, post-commit delivery failed.
    """
    # Select rows that haven't been published and haven't exceeded max attempts
    async with get_sessionmaker()() as session:
        events = await fetch_undelivered(session, MAX_ATTEMPTS, BATCH_SIZE)
    if not events:
        return 0

    delivered = await dispatcher.deliver_all(events)
    log.info(f"Outbox retry: {delivered}/{len(events)} side effects delivered.")
    return delivered


async def run_once(dispatcher: SideEffectDispatcher, gateway: CheckoutGateway) -> None:
    await poll_outbox_for_new_events(dispatcher)
    expired = await expire_stale_pending_orders(gateway)
    if expired:
        log.info(f"Abandoned checkout sweep failed {expired} pending orders.")


async def start_outbox_poller():
    """Main loop for the poller service."""
    await init_db()
    dispatcher = get_dispatcher()
    gateway = get_gateway()
    log.info("--- Outbox Poller Service Started ---")

    try:
        while True:
            try:
                await run_once(dispatcher, gateway)
            except Exception as e:
                log.error(f"Poller encountered a critical error: {e}.")

            await asyncio.sleep(POLLING_INTERVAL)
    finally:
        await dispatcher.notifier.broadcaster.close()
        await close_db()


if __name__ == "__main__":
    try:
        asyncio.run(start_outbox_poller())
    except KeyboardInterrupt:
        log.info("Poller service stopped.")
