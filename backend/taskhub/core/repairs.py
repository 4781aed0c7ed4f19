import json
import logging

import redis.asyncio as redis

logger = logging.getLogger(__name__)


class RepairQueue:
    """Redis pub/sub channel of user ids whose pendingTasks need a rebuild.

    Without a redis url the queue only logs the request; the inconsistency
    then waits for a manual reconcile.
    """

    def __init__(self, redis_url=None, channel="taskhub_repairs", client=None):
        self.channel = channel
        self.client = client
        if self.client is None and redis_url:
            self.client = redis.from_url(redis_url, encoding="utf-8", decode_responses=True)

    @property
    def enabled(self) -> bool:
        return self.client is not None

    async def request(self, user_id: str) -> None:
        if not self.enabled:
            logger.warning("No repair queue configured; user %s needs reconciliation", user_id)
            return
        try:
            await self.client.publish(self.channel, json.dumps({"user_id": user_id}))
        except (redis.RedisError, OSError) as e:
            logger.error("Could not queue repair for user %s: %s", user_id, e)

    async def listen(self, handler):
        """Call ``await handler(user_id)`` for every repair request until cancelled."""
        pubsub = self.client.pubsub()
        await pubsub.subscribe(self.channel)
        logger.info("Listening for repairs on '%s'", self.channel)
        try:
            async for message in pubsub.listen():
                if message["type"] != "message":
                    continue
                try:
                    user_id = json.loads(message["data"])["user_id"]
                except (ValueError, KeyError, TypeError):
                    logger.warning("Ignoring malformed repair message: %r", message["data"])
                    continue
                try:
                    await handler(user_id)
                except Exception:
                    logger.exception("Repair of user %s failed", user_id)
        finally:
            await pubsub.unsubscribe(self.channel)
            await pubsub.aclose()

    async def close(self) -> None:
        if self.client is not None:
            await self.client.aclose()
