"""
Tests for code delivery: notifiers and the background dispatcher
"""

import pytest
import asyncio
import json
import logging
from unittest.mock import patch

import httpx

from picklebank.notifications import (
    LogNotifier, DiscordNotifier, WebhookNotifier, NotificationDispatcher,
    create_notifier, format_code_message
)
from picklebank.config import PickleBankConfig
from picklebank.api.dependencies import LedgerSystem

from helpers import RecordingNotifier, FailingNotifier


class TestNotifiers:

    def test_message_contains_code(self):
        assert "012345" in format_code_message("012345")

    def test_log_notifier_skips_without_revealing_code(self, caplog):
        caplog.set_level(logging.DEBUG, logger="picklebank")
        asyncio.run(LogNotifier().send_code("discord:42", "123456"))
        assert "skipped" in caplog.text
        assert "123456" not in caplog.text

    def test_log_notifier_reveals_code_when_asked(self, caplog):
        caplog.set_level(logging.INFO, logger="picklebank")
        asyncio.run(LogNotifier(reveal_codes=True).send_code("discord:42", "123456"))
        assert "discord:42" in caplog.text
        assert "123456" in caplog.text

    def test_webhook_notifier_posts_payload(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(204)

        notifier = WebhookNotifier(
            "https://relay.example/codes", token="bot-token",
            transport=httpx.MockTransport(handler)
        )
        asyncio.run(notifier.send_code("discord:42", "654321"))

        assert len(requests) == 1
        request = requests[0]
        assert request.headers["Authorization"] == "Bearer bot-token"
        body = json.loads(request.content)
        assert body["recipient"] == "discord:42"
        assert "654321" in body["content"]

    def test_webhook_notifier_raises_on_error_status(self):
        notifier = WebhookNotifier(
            "https://relay.example/codes",
            transport=httpx.MockTransport(lambda request: httpx.Response(500))
        )
        with pytest.raises(httpx.HTTPStatusError):
            asyncio.run(notifier.send_code("discord:42", "654321"))

    def test_create_notifier(self):
        fallback = create_notifier("")
        assert isinstance(fallback, LogNotifier)
        assert not fallback.reveal_codes
        assert isinstance(create_notifier("https://relay.example/codes", discord_token="bot"),
                          DiscordNotifier)
        webhook = create_notifier("https://relay.example/codes", token="t", timeout=1.5)
        assert isinstance(webhook, WebhookNotifier)
        assert webhook.timeout == 1.5


class TestDiscordNotifier:

    def setup_method(self):
        self.requests = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path.endswith("/users/@me/channels"):
            return httpx.Response(200, json={"id": "555", "type": 1})
        return httpx.Response(200, json={"id": "999"})

    def make(self, handler=None) -> DiscordNotifier:
        return DiscordNotifier("bot-token", transport=httpx.MockTransport(handler or self.handler))

    def test_opens_dm_channel_then_posts_message(self):
        asyncio.run(self.make().send_code("discord:123456789", "042042"))

        open_dm, message = self.requests
        assert open_dm.method == "POST"
        assert open_dm.url == "https://discord.com/api/v10/users/@me/channels"
        assert json.loads(open_dm.content) == {"recipient_id": "123456789"}
        assert message.url == "https://discord.com/api/v10/channels/555/messages"
        assert "042042" in json.loads(message.content)["content"]
        for request in self.requests:
            assert request.headers["Authorization"] == "Bot bot-token"

    def test_bare_user_id(self):
        asyncio.run(self.make().send_code("123456789", "042042"))
        assert json.loads(self.requests[0].content) == {"recipient_id": "123456789"}

    def test_rejects_non_discord_address(self):
        with pytest.raises(ValueError):
            asyncio.run(self.make().send_code("mail:alice", "042042"))
        assert self.requests == []

    def test_api_error_raises(self):
        notifier = self.make(lambda request: httpx.Response(403, json={"message": "Cannot send"}))
        with pytest.raises(httpx.HTTPStatusError):
            asyncio.run(notifier.send_code("discord:123456789", "042042"))


class TestDefaultDelivery:
    """Without a configured channel codes are issued but never written to the log"""

    def test_codes_stay_out_of_the_log(self, caplog):
        caplog.set_level(logging.DEBUG, logger="picklebank")
        config = PickleBankConfig(_env_file=None, storage_backend="memory",
                                  discord_token=None, notifier_url="", log_codes=False)
        system = LedgerSystem(config=config)
        engine = system.engine
        engine.register_credential("CARD1", "alice")
        engine.link_notification_address("alice", "discord:1234")

        with patch("picklebank.authorization.secrets.randbelow", return_value=314159):
            issuance = engine.issue_authorization_code("alice", "CARD1")
        assert issuance.delivery.result(timeout=5) is True
        system.close()

        code = "314159"
        assert issuance.code.code == code
        assert caplog.records
        for record in caplog.records:
            assert code not in record.getMessage()
            assert code not in str(getattr(record, "extra", ""))
        assert "skipped" in caplog.text


class TestNotificationDispatcher:

    def test_successful_delivery(self):
        notifier = RecordingNotifier()
        dispatcher = NotificationDispatcher(notifier, max_workers=1)

        future = dispatcher.dispatch("alice", "discord:42", "123456")

        assert future.result(timeout=5) is True
        assert notifier.sent == [("discord:42", "123456")]
        dispatcher.shutdown()

    def test_failed_delivery_is_logged_not_raised(self, caplog):
        notifier = FailingNotifier()
        dispatcher = NotificationDispatcher(notifier, max_workers=1)

        future = dispatcher.dispatch("alice", "discord:42", "123456")

        assert future.result(timeout=5) is False
        assert notifier.attempts == 1
        assert "Code delivery failed" in caplog.text
        # The code itself stays out of the error log
        assert "123456" not in caplog.text
        dispatcher.shutdown()

    def test_shutdown_waits_for_pending_deliveries(self):
        notifier = RecordingNotifier()
        dispatcher = NotificationDispatcher(notifier, max_workers=2)

        for n in range(5):
            dispatcher.dispatch(f"user{n}", f"discord:{n}", f"00000{n}")
        dispatcher.shutdown(wait=True)

        assert len(notifier.sent) == 5
