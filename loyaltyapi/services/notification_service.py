"""
Notification dispatcher backed by Redis pub/sub.
- Fire-and-forget: never raises (logs and returns False on failure)
- Lazy connection with health checks
- Channel name is the room the event is scoped to (e.g. restaurant:42)
"""

import json
import logging
from typing import Any, Dict, Optional

import redis

from loyaltyapi.config import Settings

logger = logging.getLogger(__name__)

POINTS_COMPLETED_EVENT = "points:completed"


def restaurant_room(restaurant_id: Optional[int]) -> str:
    return f"restaurant:{restaurant_id}"


class NotificationService:
    def __init__(self, settings: Settings, client: Optional[redis.Redis] = None):
        self._settings = settings
        self._client = client

    def _get_client(self) -> Optional[redis.Redis]:
        """Lazy connection with health check"""
        if self._client is None:
            if not self._settings.REDIS_ENABLED:
                return None
            try:
                redis_kwargs = {
                    "host": self._settings.REDIS_HOST,
                    "port": self._settings.REDIS_PORT,
                    "db": self._settings.REDIS_DB,
                    "decode_responses": True,
                    "socket_connect_timeout": 5,
                    "socket_keepalive": True,
                    "health_check_interval": 30,
                }

                # Only add password if it's set
                if self._settings.REDIS_PASSWORD:
                    redis_kwargs["password"] = self._settings.REDIS_PASSWORD

                client = redis.Redis(**redis_kwargs)
                client.ping()
                self._client = client
            except Exception as e:
                logger.warning(f"Redis connection failed: {e}")
                self._client = None
        return self._client

    def publish(self, topic: str, event: Dict[str, Any], room: str) -> bool:
        """Publish an event to a room, returns delivery status"""
        try:
            client = self._get_client()
            if client is None:
                logger.debug(f"Notifications disabled, dropping {topic} for {room}")
                return False
            message = json.dumps({"event": topic, "data": event}, default=str)
            client.publish(room, message)
            return True
        except Exception as e:
            logger.warning(f"Failed to publish {topic} to {room}: {e}")
            return False

    def close(self):
        """Close connection pool on app shutdown"""
        if self._client:
            self._client.close()
            self._client = None
