"""
Chat channel I/O: media download and outbound messages (Twilio REST API).
"""

import logging
from typing import Optional

import requests

from loyaltyguard.repository.base import Notifier

logger = logging.getLogger(__name__)

TWILIO_API = "https://api.twilio.com/2010-04-01"
WHATSAPP_PREFIX = "whatsapp:"


class MediaDownloadError(Exception):
    """Inbound media could not be fetched."""


class TwilioChannel(Notifier):
    """
    Downloads inbound media and sends WhatsApp messages.

    Media URLs require the account SID / auth token as basic auth.
    """

    def __init__(
        self,
        account_sid: Optional[str],
        auth_token: Optional[str],
        sender: Optional[str] = None,
        timeout: float = 15.0,
        session: Optional[requests.Session] = None,
    ):
        self.account_sid = account_sid
        self.sender = sender
        self.timeout = timeout
        self.session = session or requests.Session()
        if account_sid and auth_token:
            self.session.auth = (account_sid, auth_token)

    def fetch_media(self, media_url: str) -> bytes:
        """Download one inbound media item."""
        try:
            response = self.session.get(media_url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise MediaDownloadError(f"Failed to download media: {e}") from e
        logger.debug(f"Downloaded {len(response.content)} bytes from {media_url}")
        return response.content

    def send(self, conversation_id: str, message: str) -> None:
        if not (self.account_sid and self.sender):
            logger.warning(f"Outbound messaging not configured - dropping message to {conversation_id}")
            return
        to = conversation_id if conversation_id.startswith(WHATSAPP_PREFIX) else WHATSAPP_PREFIX + conversation_id
        sender = self.sender if self.sender.startswith(WHATSAPP_PREFIX) else WHATSAPP_PREFIX + self.sender
        response = self.session.post(
            f"{TWILIO_API}/Accounts/{self.account_sid}/Messages.json",
            data={"From": sender, "To": to, "Body": message},
            timeout=self.timeout,
        )
        response.raise_for_status()
        logger.info(f"Message sent to {conversation_id}")
