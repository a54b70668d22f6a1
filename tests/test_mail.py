"""
Tests for the mail relay endpoint and client.
"""

import base64
import json
from unittest.mock import patch

import httpx
import pytest

from fieldverify.core.errors import TransientRemoteError, ValidationError
from fieldverify.services import mailer
from fieldverify.services.mailer import MailAttachment, MailRelayClient, build_message, xoauth2_string

PAYLOAD = {
    "to": "client@example.com",
    "subject": "Case Approved: MX-1",
    "body": "Dear Client",
    "caseId": "c1",
    "RefNo": "MX-1",
    "attachments": [{"url": "https://cdn.example.com/r.pdf", "filename": "Report_MX-1.pdf"}],
}


class TestSendEmailEndpoint:
    def test_missing_fields(self, client):
        resp = client.post("/send-email", json={"to": "a@example.com"})
        assert resp.status_code == 400
        assert resp.text == "Missing required email fields."

    def test_success(self, client):
        with (
            patch("fieldverify.services.mailer.download_attachments", return_value=[("Report_MX-1.pdf", b"%PDF")]) as dl,
            patch("fieldverify.services.mailer.send_via_smtp") as send,
        ):
            resp = client.post("/send-email", json=PAYLOAD)
        assert resp.status_code == 200
        assert resp.text == "Email sent successfully"
        dl.assert_called_once_with(PAYLOAD["attachments"])
        msg = send.call_args[0][0]
        assert msg["To"] == "client@example.com"
        assert msg["Subject"] == "Case Approved: MX-1"

    def test_smtp_failure_is_500(self, client):
        with (
            patch("fieldverify.services.mailer.download_attachments", return_value=[]),
            patch("fieldverify.services.mailer.send_via_smtp", side_effect=TransientRemoteError("SMTP send failed")),
        ):
            resp = client.post("/send-email", json=PAYLOAD)
        assert resp.status_code == 500
        assert resp.json()["error"] == "Failed to send email"


class TestMessage:
    def test_attachments(self):
        msg = build_message("a@example.com", "S", "B", [("r.pdf", b"%PDF-1.4")])
        parts = list(msg.iter_attachments())
        assert [p.get_filename() for p in parts] == ["r.pdf"]
        assert parts[0].get_content_type() == "application/pdf"

    def test_xoauth2(self):
        raw = base64.b64decode(xoauth2_string("me@example.com", "tok")).decode()
        assert raw == "user=me@example.com\x01auth=Bearer tok\x01\x01"

    def test_download_attachments(self, monkeypatch):
        def handler(request):
            return httpx.Response(200, content=b"%PDF")

        monkeypatch.setattr(mailer, "http_client", lambda **kw: httpx.Client(transport=httpx.MockTransport(handler)))
        files = mailer.download_attachments([{"url": "https://cdn.example.com/a.pdf"}, {"url": ""}])
        assert files == [("a.pdf", b"%PDF")]


class TestRelayClient:
    def _client(self, monkeypatch, responses):
        seen = []

        def handler(request):
            seen.append(request)
            return responses.pop(0)

        monkeypatch.setattr(mailer, "http_client", lambda **kw: httpx.Client(transport=httpx.MockTransport(handler)))
        return seen

    def test_payload(self, monkeypatch):
        seen = self._client(monkeypatch, [httpx.Response(200, text="Email sent successfully")])
        MailRelayClient("http://relay.test/send-email", sleep=lambda s: None).send(
            to="c@example.com", subject="S", body="B", case_id="c1", ref_no="MX-1",
            attachments=[MailAttachment("https://cdn.example.com/r.pdf", "Report_MX-1.pdf")],
        )
        body = json.loads(seen[0].content)
        assert body["RefNo"] == "MX-1"
        assert body["caseId"] == "c1"
        assert body["attachments"] == [{"url": "https://cdn.example.com/r.pdf", "filename": "Report_MX-1.pdf"}]

    def test_retries_then_succeeds(self, monkeypatch):
        seen = self._client(monkeypatch, [httpx.Response(500), httpx.Response(200)])
        MailRelayClient("http://relay.test/send-email", attempts=3, sleep=lambda s: None).send(
            to="c@example.com", subject="S", body="B",
        )
        assert len(seen) == 2

    def test_gives_up(self, monkeypatch):
        seen = self._client(monkeypatch, [httpx.Response(500)] * 3)
        with pytest.raises(TransientRemoteError):
            MailRelayClient("http://relay.test/send-email", attempts=3, sleep=lambda s: None).send(
                to="c@example.com", subject="S", body="B",
            )
        assert len(seen) == 3

    def test_rejected_request_not_retried(self, monkeypatch):
        seen = self._client(monkeypatch, [httpx.Response(400, text="Missing required email fields.")] * 3)
        with pytest.raises(ValidationError) as exc:
            MailRelayClient("http://relay.test/send-email", attempts=3, sleep=lambda s: None).send(
                to="c@example.com", subject="S", body="B",
            )
        assert "Missing required email fields." in exc.value.message
        assert len(seen) == 1
