"""
Messaging Provider - resident notifications over the LINE Messaging API.

Pushes are best effort: a failed push is logged and reported as False,
it never aborts the desk operation that triggered it.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

from linebot.v3.messaging import (
    ApiClient,
    ApiException,
    Configuration,
    MessagingApi,
    PushMessageRequest,
    ReplyMessageRequest,
    TextMessage,
)
from linebot.v3.webhook import SignatureValidator
from urllib3.exceptions import HTTPError

from .config import LineSettings

logger = logging.getLogger(__name__)

# transport failures surface from urllib3, API errors from the SDK
LINE_ERRORS = (ApiException, HTTPError)


class Messenger(ABC):
    """Interface the desk and the webhook use to talk to residents."""

    @abstractmethod
    def is_configured(self) -> bool:
        ...

    @abstractmethod
    def push_text(self, to: str, text: str) -> bool:
        """Send a text message to a chat account. Returns True if sent."""
        ...

    @abstractmethod
    def reply_text(self, reply_token: str, text: str) -> bool:
        """Answer a webhook event through its reply token."""
        ...

    @abstractmethod
    def get_display_name(self, user_id: str) -> Optional[str]:
        ...

    @abstractmethod
    def verify_signature(self, body: bytes, signature: Optional[str]) -> bool:
        ...


def build_messaging_api(settings: LineSettings) -> MessagingApi:
    configuration = Configuration(host=settings.api_base, access_token=settings.channel_access_token)
    return MessagingApi(ApiClient(configuration))


class LineMessenger(Messenger):
    def __init__(self, settings: LineSettings, api: Optional[MessagingApi] = None):
        self.settings = settings
        self.api = api if api is not None else build_messaging_api(settings)
        self.validator = SignatureValidator(settings.channel_secret)

    def is_configured(self) -> bool:
        return self.settings.configured

    def push_text(self, to: str, text: str) -> bool:
        try:
            self.api.push_message(
                PushMessageRequest(to=to, messages=[TextMessage(text=text)]),
                _request_timeout=self.settings.timeout_seconds,
            )
            return True
        except LINE_ERRORS as e:
            logger.warning(f"LINE push to {to} failed: {e}")
            return False

    def reply_text(self, reply_token: str, text: str) -> bool:
        try:
            self.api.reply_message(
                ReplyMessageRequest(reply_token=reply_token, messages=[TextMessage(text=text)]),
                _request_timeout=self.settings.timeout_seconds,
            )
            return True
        except LINE_ERRORS as e:
            logger.warning(f"LINE reply failed: {e}")
            return False

    def get_display_name(self, user_id: str) -> Optional[str]:
        try:
            profile = self.api.get_profile(user_id, _request_timeout=self.settings.timeout_seconds)
            return profile.display_name
        except LINE_ERRORS as e:
            logger.warning(f"LINE profile lookup for {user_id} failed: {e}")
            return None

    def verify_signature(self, body: bytes, signature: Optional[str]) -> bool:
        if not signature:
            return False
        try:
            text = body.decode("utf-8")
        except UnicodeDecodeError:
            return False
        return self.validator.validate(text, signature)


class NullMessenger(Messenger):
    """Stands in when no LINE channel is configured; nothing leaves the server."""

    def is_configured(self) -> bool:
        return False

    def push_text(self, to: str, text: str) -> bool:
        logger.info(f"LINE not configured, dropping message to {to}")
        return False

    def reply_text(self, reply_token: str, text: str) -> bool:
        return False

    def get_display_name(self, user_id: str) -> Optional[str]:
        return None

    def verify_signature(self, body: bytes, signature: Optional[str]) -> bool:
        return False


def build_messenger(settings: LineSettings) -> Messenger:
    if settings.configured:
        return LineMessenger(settings)
    return NullMessenger()
