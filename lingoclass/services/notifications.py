from __future__ import annotations

import logging

import requests

from lingoclass.config import settings

log = logging.getLogger(__name__)


def notify(text: str) -> bool:
    """
    Post ``text`` to the configured Slack incoming webhook.
    Delivery is best effort: failures are logged and reported as False.
    """
    url = settings.SLACK_WEBHOOK_URL
    if not url:
        return False
    try:
        resp = requests.post(url, json={"text": text}, timeout=settings.NOTIFY_TIMEOUT_SECONDS)
        resp.raise_for_status()
    except requests.RequestException as e:
        log.warning("Notification delivery failed: %s", e)
        return False
    return True
