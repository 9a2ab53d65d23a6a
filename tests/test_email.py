import anyio
import httpx
import pytest

from certguard.infra.email import (
    SENDGRID_URL,
    EmailAdapter,
    NoopEmailAdapter,
    OutgoingEmail,
    build_mime_message,
    build_sendgrid_payload,
    resolve_email_adapter,
)
from certguard.settings import Settings, settings


@pytest.fixture()
def sendgrid_settings(monkeypatch):
    monkeypatch.setattr(settings, "email_mode", "sendgrid")
    monkeypatch.setattr(settings, "email_from", "dispatch@certguard.dev")
    monkeypatch.setattr(settings, "email_from_name", "Certguard Dispatch")
    monkeypatch.setattr(settings, "sendgrid_api_key", "sg-test-key")
    monkeypatch.setattr(settings, "email_http_backoff_seconds", 0.0)
    monkeypatch.setattr(settings, "email_http_backoff_max_seconds", 0.0)
    monkeypatch.setattr(settings, "email_http_max_attempts", 3)


def _assignment_email() -> OutgoingEmail:
    return OutgoingEmail(
        recipient="lee@example.com",
        subject="New assignment: WO-1001",
        body="You have been assigned to WO-1001.",
        headers={"X-Certguard-Work-Order": "wo-1"},
    )


def test_sendgrid_payload_carries_sender_and_headers(sendgrid_settings):
    payload = build_sendgrid_payload(_assignment_email())

    assert payload["personalizations"] == [{"to": [{"email": "lee@example.com"}]}]
    assert payload["from"] == {"email": "dispatch@certguard.dev", "name": "Certguard Dispatch"}
    assert payload["content"][0]["value"] == "You have been assigned to WO-1001."
    assert payload["headers"] == {"X-Certguard-Work-Order": "wo-1"}


def test_mime_message_formats_display_name(sendgrid_settings):
    message = build_mime_message(_assignment_email())

    assert message["From"] == "Certguard Dispatch <dispatch@certguard.dev>"
    assert message["To"] == "lee@example.com"
    assert message["X-Certguard-Work-Order"] == "wo-1"


def test_missing_sender_is_a_configuration_error(sendgrid_settings, monkeypatch):
    monkeypatch.setattr(settings, "email_from", None)

    with pytest.raises(RuntimeError, match="sendgrid_not_configured"):
        build_sendgrid_payload(_assignment_email())


def test_sendgrid_send_retries_server_errors(sendgrid_settings):
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(503 if len(calls) == 1 else 202)

    async def send() -> bool:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            adapter = EmailAdapter(http_client=client)
            return await adapter.send_email("lee@example.com", "Subject line", "Body text")

    assert anyio.run(send) is True
    assert len(calls) == 2
    assert str(calls[0].url) == SENDGRID_URL
    assert calls[0].headers["Authorization"] == "Bearer sg-test-key"


def test_sendgrid_client_error_is_raised(sendgrid_settings):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400)

    async def send() -> bool:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await EmailAdapter(http_client=client).send_email("lee@example.com", "Subject", "Body")

    with pytest.raises(RuntimeError, match="sendgrid_status_400"):
        anyio.run(send)


def test_email_off_or_blank_recipient_is_skipped(sendgrid_settings, monkeypatch):
    adapter = EmailAdapter()
    assert anyio.run(adapter.send_email, "", "Subject", "Body") is False

    monkeypatch.setattr(settings, "email_mode", "off")
    assert anyio.run(adapter.send_email, "lee@example.com", "Subject", "Body") is False


def test_resolve_email_adapter_uses_noop_when_disabled():
    assert isinstance(resolve_email_adapter(Settings(app_env="dev", email_mode="off")), NoopEmailAdapter)
    assert isinstance(resolve_email_adapter(Settings(app_env="dev", email_mode="smtp", testing=True)), NoopEmailAdapter)
    live = Settings(app_env="dev", email_mode="smtp", smtp_host="mail", testing=False)
    assert isinstance(resolve_email_adapter(live), EmailAdapter)
