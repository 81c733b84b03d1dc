"""
Change-Notification Bridge

Redis publish/subscribe channel keyed by tenant (and optionally date).
Signals mean "something changed, recheck"; they never carry
authoritative state and may arrive more than once or out of order.

Each publish also bumps a version counter that availability cache keys
embed, so cached results computed before the change are never served
again once the signal has been observed.
"""

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Callable, Iterator, Optional

from ...config import AVAILABILITY_CHANNEL_PREFIX
from ...redis_client import get_redis_client

logger = logging.getLogger(__name__)

VERSION_TTL_SECONDS = 60 * 60 * 48


@dataclass
class ChangeSignal:
    tenant_id: int
    event: str
    date: Optional[str] = None
    details: dict = field(default_factory=dict)

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: str) -> "ChangeSignal":
        data = json.loads(raw)
        return cls(
            tenant_id=data["tenant_id"],
            event=data["event"],
            date=data.get("date"),
            details=data.get("details") or {},
        )


class ChangeNotificationBridge:
    """Publishes and relays availability change signals"""

    def __init__(
        self,
        client_factory: Callable = get_redis_client,
        prefix: str = AVAILABILITY_CHANNEL_PREFIX,
    ):
        self.client_factory = client_factory
        self.prefix = prefix
        self.redis_client = None

    def _get_client(self):
        if self.redis_client is None:
            try:
                self.redis_client = self.client_factory()
            except Exception as e:
                logger.warning(f"⚠️ Change notifications unavailable: {e}")
                return None
        return self.redis_client

    def channel_for(self, tenant_id: int, target_date: Optional[date] = None) -> str:
        if target_date is None:
            return f"{self.prefix}:{tenant_id}"
        return f"{self.prefix}:{tenant_id}:{target_date.isoformat()}"

    def _version_keys(self, tenant_id: int, target_date: date) -> list:
        return [
            f"{self.prefix}:version:{tenant_id}",
            f"{self.prefix}:version:{tenant_id}:{target_date.isoformat()}",
        ]

    def publish(
        self, tenant_id: int, target_date: Optional[date], event: str, **details
    ) -> bool:
        """
        Signal that holds/bookings/schedules changed.

        A date-less signal (schedule edits) invalidates every date of the
        tenant. Returns False when Redis could not be reached; observers
        then converge when their cache TTL lapses.
        """
        client = self._get_client()
        if not client:
            logger.error(
                f"❌ Change signal '{event}' for tenant {tenant_id} not published: Redis unavailable"
            )
            return False

        signal = ChangeSignal(
            tenant_id=tenant_id,
            event=event,
            date=target_date.isoformat() if target_date else None,
            details=details,
        )
        try:
            if target_date is None:
                version_key = f"{self.prefix}:version:{tenant_id}"
            else:
                version_key = self._version_keys(tenant_id, target_date)[1]
            client.incr(version_key)
            client.expire(version_key, VERSION_TTL_SECONDS)

            message = signal.to_json()
            client.publish(self.channel_for(tenant_id), message)
            if target_date is not None:
                client.publish(self.channel_for(tenant_id, target_date), message)
            logger.debug(f"📣 Published {event} for tenant {tenant_id} ({signal.date or 'all dates'})")
            return True
        except Exception as e:
            logger.error(f"❌ Failed to publish change signal '{event}' for tenant {tenant_id}: {e}")
            return False

    def current_version(self, tenant_id: int, target_date: date) -> str:
        """Combined tenant-wide and per-date version, used in cache keys"""
        client = self._get_client()
        if not client:
            return "0.0"
        try:
            tenant_version, date_version = client.mget(self._version_keys(tenant_id, target_date))
            return f"{tenant_version or 0}.{date_version or 0}"
        except Exception as e:
            logger.error(f"❌ Failed to read availability version for tenant {tenant_id}: {e}")
            return "0.0"

    def listen(
        self,
        tenant_id: int,
        target_date: Optional[date] = None,
        poll_timeout: float = 1.0,
    ) -> Iterator[Optional[ChangeSignal]]:
        """
        Yield signals for a tenant (or one date) as they arrive.

        Yields None after each idle poll so callers can send keep-alives
        or stop. Closing the generator unsubscribes.
        """
        client = self._get_client()
        if not client:
            return

        channel = self.channel_for(tenant_id, target_date)
        pubsub = client.pubsub(ignore_subscribe_messages=True)
        pubsub.subscribe(channel)
        logger.info(f"👂 Subscribed to {channel}")
        try:
            while True:
                message = pubsub.get_message(timeout=poll_timeout)
                if not message or message.get("type") != "message":
                    yield None
                    continue
                try:
                    yield ChangeSignal.from_json(message["data"])
                except (KeyError, TypeError, ValueError) as e:
                    logger.warning(f"⚠️ Ignoring malformed change signal on {channel}: {e}")
        finally:
            pubsub.close()
            logger.info(f"👋 Unsubscribed from {channel}")


# Global bridge instance
bridge = ChangeNotificationBridge()
