# file: assistmate/services/push.py

import logging
from typing import Dict, Optional

from fastapi.concurrency import run_in_threadpool
from firebase_admin import messaging

logger = logging.getLogger(__name__)


class PushSender:
    """Fire-and-forget FCM sender. Failures are logged, never raised."""

    async def send(self, token: str, title: str, body: str, data: Optional[Dict[str, object]] = None) -> Optional[str]:
        message = messaging.Message(
            token=token,
            notification=messaging.Notification(
                title=title,
                body=body
            ),
            # FCM data payloads only accept string values
            data={key: str(value) for key, value in (data or {}).items() if value is not None},
        )
        try:
            response = await run_in_threadpool(messaging.send, message)
        except Exception:
            logger.exception("Error sending notification to %s", token[:12])
            return None
        logger.info("Notification sent: %s", response)
        return response


push_sender = PushSender()


def get_push_sender() -> PushSender:
    return push_sender
