"""
Notification Module

Delivers authorization codes through an out-of-band channel: a Discord bot
DM, or any HTTP relay accepting a JSON webhook. Delivery is best-effort and runs
on a background worker pool after the code is stored: a failed delivery is
logged and never fails or undoes the issuance.
"""

import asyncio
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional

import httpx

from .logging_config import get_logger, log_action


def format_code_message(code: str) -> str:
    return f"Your PickleBank security code is: **{code}**"


class Notifier(ABC):
    """Abstract base class for code delivery channels"""

    @abstractmethod
    async def send_code(self, address: str, code: str) -> None:
        """Deliver a code to the handle. Raise on failure."""
        pass


class LogNotifier(Notifier):
    """
    Fallback when no delivery channel is configured

    Only records that a delivery was skipped. With reveal_codes the message,
    code included, is written to the log; that is for local development and
    must never be enabled where logs are shared.
    """

    def __init__(self, logger=None, reveal_codes: bool = False):
        self.logger = logger or get_logger("picklebank.notifier")
        self.reveal_codes = reveal_codes

    async def send_code(self, address: str, code: str) -> None:
        if self.reveal_codes:
            self.logger.info(f"Code for {address}: {format_code_message(code)}")
        else:
            self.logger.warning(f"No notifier configured, code delivery to {address} skipped")


class DiscordNotifier(Notifier):
    """
    Sends codes as a direct message from a Discord bot

    Addresses are Discord user ids, optionally written as "discord:<id>".
    Opens (or reuses) the DM channel with the user, then posts the message.
    """

    DEFAULT_API_URL = "https://discord.com/api/v10"

    def __init__(self, token: str, api_url: str = DEFAULT_API_URL, timeout: float = 5.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.token = token
        self.api_url = api_url
        self.timeout = timeout
        self.transport = transport

    @staticmethod
    def user_id(address: str) -> str:
        user_id = address[len("discord:"):] if address.startswith("discord:") else address
        if not user_id.isdigit():
            raise ValueError(f"Not a Discord user id: {address}")
        return user_id

    async def send_code(self, address: str, code: str) -> None:
        user_id = self.user_id(address)
        headers = {"Authorization": f"Bot {self.token}"}

        async with httpx.AsyncClient(base_url=self.api_url, headers=headers,
                                     timeout=self.timeout, transport=self.transport) as client:
            response = await client.post("/users/@me/channels", json={"recipient_id": user_id})
            response.raise_for_status()
            channel_id = response.json()["id"]

            response = await client.post(
                f"/channels/{channel_id}/messages",
                json={"content": format_code_message(code)}
            )
            response.raise_for_status()


class WebhookNotifier(Notifier):
    """
    Posts codes to a generic HTTP relay

    The relay receives {"recipient": <handle>, "content": <message>} and is
    responsible for the direct message on the chat platform.
    """

    def __init__(self, url: str, token: Optional[str] = None, timeout: float = 5.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.url = url
        self.token = token
        self.timeout = timeout
        self.transport = transport

    async def send_code(self, address: str, code: str) -> None:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        payload = {
            "recipient": address,
            "content": format_code_message(code)
        }
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await client.post(self.url, json=payload, headers=headers)
            response.raise_for_status()


class NotificationDispatcher:
    """
    Fire-and-forget delivery on a thread pool

    Each delivery runs its own event loop, so it is independent of the
    request that triggered it and cannot be cancelled with it. Errors are
    reported through the log only.
    """

    def __init__(self, notifier: Notifier, max_workers: int = 4):
        self.notifier = notifier
        self.logger = get_logger("picklebank.notifications")
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="picklebank-notify"
        )

    def dispatch(self, account_id: str, address: str, code: str) -> Future:
        """Queue delivery; the returned future resolves to True on success"""
        return self._executor.submit(self._deliver, account_id, address, code)

    def _deliver(self, account_id: str, address: str, code: str) -> bool:
        try:
            asyncio.run(self.notifier.send_code(address, code))
        except Exception as e:
            log_action(self.logger, "error", f"Code delivery failed: {e}",
                       account_id=account_id, action="deliver_code",
                       extra={"error_type": type(e).__name__})
            return False

        log_action(self.logger, "info", "Code delivered",
                   account_id=account_id, action="deliver_code")
        return True

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


def create_notifier(
    url: str = "",
    token: Optional[str] = None,
    timeout: float = 5.0,
    discord_token: Optional[str] = None,
    discord_api_url: str = DiscordNotifier.DEFAULT_API_URL,
    reveal_codes: bool = False
) -> Notifier:
    """
    Pick the delivery channel from configuration

    A Discord bot token wins over a relay URL. With neither, deliveries are
    skipped with a warning.
    """
    if discord_token:
        return DiscordNotifier(discord_token, api_url=discord_api_url, timeout=timeout)
    if url:
        return WebhookNotifier(url, token=token, timeout=timeout)
    logger = get_logger("picklebank.notifications")
    logger.warning("No notifier configured, security codes will not be delivered")
    return LogNotifier(reveal_codes=reveal_codes)
