"""Tests for Mandrill review mail delivery."""

import json

import httpx
import pytest

from review_mailer.config import Settings
from review_mailer.mailer.service import (
    REMINDER_SUBJECT,
    REVIEW_SUBJECT,
    DisabledMailSender,
    MandrillMailSender,
    TransientSendError,
    build_message,
    create_mail_sender,
    parse_from,
    render_review_email,
)


def _sender(handler, captured=None):
    def _handle(request: httpx.Request) -> httpx.Response:
        if captured is not None:
            captured.append(request)
        return handler(request)

    client = httpx.Client(transport=httpx.MockTransport(_handle))
    return MandrillMailSender("test-key", "https://mandrill.test/api/1.0/", client=client)


class TestParseFrom:
    def test_name_and_address(self):
        assert parse_from("Smartphoneshop <shop@example.dk>") == ("shop@example.dk", "Smartphoneshop")

    def test_bare_address(self):
        assert parse_from("shop@example.dk") == ("shop@example.dk", "")

    def test_explicit_name_wins(self):
        assert parse_from("Shop <shop@example.dk>", "Kundeservice") == ("shop@example.dk", "Kundeservice")


class TestBuildMessage:
    def test_review_message(self):
        cfg = Settings(from_email="Shop <shop@example.dk>", google_url="https://g.example/review")
        message = build_message("buyer@example.com", "Jane", 42, cfg=cfg)

        assert message["subject"] == REVIEW_SUBJECT
        assert message["from_email"] == "shop@example.dk"
        assert message["from_name"] == "Shop"
        assert message["to"] == [{"email": "buyer@example.com", "name": "Jane", "type": "to"}]
        assert message["metadata"] == {"review_job_id": "42"}
        assert message["tags"] == ["review-request"]
        assert "https://g.example/review" in message["html"]

    def test_reminder_message(self):
        message = build_message("buyer@example.com", "", None, is_reminder=True, cfg=Settings())

        assert message["subject"] == REMINDER_SUBJECT
        assert message["tags"] == ["review-reminder"]
        assert "metadata" not in message

    def test_name_is_escaped(self):
        html = render_review_email("<script>x</script>", cfg=Settings())
        assert "<script>x</script>" not in html


class TestMandrillMailSender:
    def test_sent_status_is_accepted(self):
        captured = []
        sender = _sender(lambda r: httpx.Response(200, json=[{"status": "sent", "_id": "abc"}]), captured)

        assert sender.send_review_email(" Buyer@Example.com ", "Jane", 7) is True

        request = captured[0]
        assert str(request.url) == "https://mandrill.test/api/1.0/messages/send.json"
        body = json.loads(request.content)
        assert body["key"] == "test-key"
        assert body["async"] is False
        assert body["message"]["to"][0]["email"] == "buyer@example.com"

    @pytest.mark.parametrize("status", ["queued", "scheduled"])
    def test_queued_statuses_are_accepted(self, status):
        sender = _sender(lambda r: httpx.Response(200, json=[{"status": status}]))
        assert sender.send_review_email("a@b.dk", "", 1) is True

    def test_rejected_is_not_accepted(self):
        sender = _sender(lambda r: httpx.Response(200, json=[{"status": "rejected", "reject_reason": "hard-bounce"}]))
        assert sender.send_review_email("a@b.dk", "", 1) is False

    def test_empty_result_is_accepted(self):
        sender = _sender(lambda r: httpx.Response(200, json=[]))
        assert sender.send_review_email("a@b.dk", "", 1) is True

    def test_http_error_raises_transient(self):
        sender = _sender(lambda r: httpx.Response(500, json={"status": "error"}))
        with pytest.raises(TransientSendError):
            sender.send_review_email("a@b.dk", "", 1)

    def test_network_error_raises_transient(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        sender = _sender(handler)
        with pytest.raises(TransientSendError):
            sender.send_review_email("a@b.dk", "", 1)

    def test_invalid_json_raises_transient(self):
        sender = _sender(lambda r: httpx.Response(200, content=b"not json"))
        with pytest.raises(TransientSendError):
            sender.send_review_email("a@b.dk", "", 1)

    def test_missing_recipient_not_sent(self):
        captured = []
        sender = _sender(lambda r: httpx.Response(200, json=[]), captured)

        assert sender.send_review_email("   ", "", 1) is False
        assert captured == []


class TestDisabledMailSender:
    def test_never_accepts(self):
        assert DisabledMailSender().send_review_email("a@b.dk", "", 1) is False


class TestCreateMailSender:
    def test_disabled_by_default(self):
        assert isinstance(create_mail_sender(Settings(mailer_enabled=False)), DisabledMailSender)

    def test_enabled_without_key_is_disabled(self):
        assert isinstance(create_mail_sender(Settings(mailer_enabled=True, mandrill_api_key="")), DisabledMailSender)

    def test_enabled_with_key(self):
        sender = create_mail_sender(Settings(mailer_enabled=True, mandrill_api_key="k"))
        assert isinstance(sender, MandrillMailSender)
