"""
Telegram notification relay for the emergency path.

Fire and forget: every send logs and swallows its own failure so an alert
path never breaks because Telegram is unreachable.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

import requests

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"
REQUEST_TIMEOUT = 15


@dataclass
class EmergencyContact:
    name: str
    phone: str


class TelegramRelay:
    """Sends text and photos to one fixed Telegram chat."""

    def __init__(
        self,
        token: Optional[str] = None,
        chat_id: Optional[str] = None,
        session: Optional[requests.Session] = None
    ):
        self.token = token or os.environ.get("TG_TOKEN")
        self.chat_id = chat_id or os.environ.get("TG_CHAT_ID")
        self.session = session or requests.Session()

        if not self.enabled:
            logger.warning("⚠️ TG_TOKEN / TG_CHAT_ID not set, Telegram relay disabled")

    @property
    def enabled(self) -> bool:
        return bool(self.token and self.chat_id)

    def _url(self, method: str) -> str:
        return f"{TELEGRAM_API_URL}/bot{self.token}/{method}"

    def _send_message(self, text: str) -> bool:
        response = self.session.post(
            self._url("sendMessage"),
            json={"chat_id": self.chat_id, "text": text},
            timeout=REQUEST_TIMEOUT
        )
        response.raise_for_status()
        return True

    def _send_photo(self, path: Path, caption: str) -> bool:
        with open(path, "rb") as photo:
            response = self.session.post(
                self._url("sendPhoto"),
                data={"chat_id": self.chat_id, "caption": caption},
                files={"photo": (path.name, photo, "image/jpeg")},
                timeout=REQUEST_TIMEOUT
            )
        response.raise_for_status()
        return True

    async def send_message(self, text: str) -> bool:
        """Relay a text message. Returns False when it could not be sent."""
        if not self.enabled:
            return False
        try:
            return await asyncio.to_thread(self._send_message, text)
        except (requests.RequestException, OSError) as e:
            logger.warning(f"⚠️ Telegram message failed (ignored): {e}")
            return False

    async def send_photo(self, path: Union[str, Path], caption: str) -> bool:
        """Relay a photo from disk. Returns False when it could not be sent."""
        if not self.enabled:
            return False
        try:
            return await asyncio.to_thread(self._send_photo, Path(path), caption)
        except (requests.RequestException, OSError) as e:
            logger.warning(f"⚠️ Telegram photo failed (ignored): {e}")
            return False


def maps_link(lat, lon) -> str:
    return f"https://maps.google.com/?q={lat},{lon}"


def build_sos_message(user_id: str, lat, lon, time: str) -> str:
    return (
        "🚨 SOS ALERT\n\n"
        f"User: {user_id}\n"
        f"⏰ {time}\n\n"
        "📍 Location:\n"
        f"{maps_link(lat, lon)}\n\n"
        "Please respond immediately."
    )


def notify_contacts(contacts: List[EmergencyContact], user_id: str, lat, lon, time: str) -> str:
    """
    Emergency-contact notification stub: logs the SOS message per contact.
    No SMS gateway is wired in.
    """
    message = build_sos_message(user_id, lat, lon, time)
    for contact in contacts:
        logger.info(f"📲 Sending to {contact.name} ({contact.phone})\n{message}")
    return message


def parse_contacts(raw: Optional[str]) -> List[EmergencyContact]:
    """Parse 'Name:+123,Other:+456' into contacts, skipping malformed entries."""
    contacts = []
    for entry in (raw or "").split(","):
        name, sep, phone = entry.partition(":")
        if sep and name.strip() and phone.strip():
            contacts.append(EmergencyContact(name=name.strip(), phone=phone.strip()))
    return contacts
