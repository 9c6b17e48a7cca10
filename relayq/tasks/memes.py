# relayq/tasks/memes.py
from __future__ import annotations

from relayq.collaborators.gateway import BotGateway
from relayq.collaborators.store import Store
from relayq.core.defaults import SUBSCRIPTION_PAGE_SIZE
from relayq.core.errors import RecordNotFound
from relayq.core.logging import get_logger
from relayq.core.models.domain import SubscriptionChannel, SubscriptionType

logger = get_logger('tasks.memes')


async def broadcast_random_meme(
    store: Store, gateway: BotGateway, page_size: int = SUBSCRIPTION_PAGE_SIZE
) -> int:
    """Send one random meme to every telegram meme subscriber. Returns deliveries."""
    try:
        meme = await store.find_random_meme()
    except RecordNotFound:
        logger.warning('No meme stored yet, skipping subscription broadcast')
        return 0

    caption = meme.subscription_caption()
    delivered = 0
    offset = 0
    while True:
        page = await store.find_subscriptions(
            SubscriptionType.MEME, SubscriptionChannel.TELEGRAM, page_size, offset
        )
        for subscription in page:
            try:
                await gateway.send_message(
                    int(subscription.user_reference_id), caption, parse_mode='HTML'
                )
            except Exception as e:
                logger.error(
                    f'Failed to send meme {meme.id} to subscriber '
                    f'{subscription.user_reference_id}: {e}'
                )
                continue
            delivered += 1
        if len(page) < page_size:
            break
        offset += page_size

    logger.info(f'Meme {meme.id} delivered to {delivered} subscriber(s)')
    return delivered
