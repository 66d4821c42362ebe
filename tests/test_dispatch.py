# tests/test_dispatch.py

from __future__ import annotations

import json
import logging

import httpx
import pytest

from routine_alerts.alerts.dispatcher import AlertMessage, NotificationDispatcher
from routine_alerts.alerts.push import FcmPushSender, LogPushSender, ServiceAccountTokenSource
from routine_alerts.core.errors import DispatchErrorKind, PushSendError

from .fakes import FakeAlertRepo, FakePushSender

MESSAGE = AlertMessage(title="Weather alert", body="Rain soon", data={"taskId": "7", "type": "weather_alert"})


@pytest.mark.asyncio
async def test_dispatch_delivers_to_registered_device() -> None:
    sender = FakePushSender()
    dispatcher = NotificationDispatcher(FakeAlertRepo([], tokens={"u1": "tok-1"}), sender)

    result = await dispatcher.dispatch("u1", MESSAGE)

    assert result.delivered
    assert result.provider_error_kind is None
    assert len(sender.sent) == 1
    assert sender.sent[0].token == "tok-1"
    assert sender.sent[0].data == {"taskId": "7", "type": "weather_alert"}


@pytest.mark.asyncio
async def test_no_registered_device_skips_provider() -> None:
    sender = FakePushSender()
    dispatcher = NotificationDispatcher(FakeAlertRepo([], tokens={}), sender)

    result = await dispatcher.dispatch("u1", MESSAGE)

    assert not result.delivered
    assert result.provider_error_kind == DispatchErrorKind.NO_REGISTERED_DEVICE
    assert sender.attempts == 0


@pytest.mark.asyncio
async def test_provider_failure_is_reported_not_raised() -> None:
    sender = FakePushSender(fail=True)
    dispatcher = NotificationDispatcher(FakeAlertRepo([], tokens={"u1": "tok-1"}), sender)

    result = await dispatcher.dispatch("u1", MESSAGE)

    assert not result.delivered
    assert result.provider_error_kind == DispatchErrorKind.PROVIDER_ERROR
    # single attempt
    assert sender.attempts == 1


@pytest.mark.asyncio
async def test_fcm_sender_posts_v1_message() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"name": "projects/demo/messages/1"})

    sender = FcmPushSender(
        project_id="demo",
        access_token="secret",
        base_url="https://fcm.test",
        transport=httpx.MockTransport(handler),
    )
    await sender.send(token="tok-1", title="T", body="B", data={"taskId": "7"})

    assert len(seen) == 1
    req = seen[0]
    assert str(req.url) == "https://fcm.test/v1/projects/demo/messages:send"
    assert req.headers["Authorization"] == "Bearer secret"
    payload = json.loads(req.content)
    assert payload == {
        "message": {
            "token": "tok-1",
            "notification": {"title": "T", "body": "B"},
            "data": {"taskId": "7"},
        }
    }


@pytest.mark.asyncio
async def test_fcm_sender_raises_on_rejection() -> None:
    sender = FcmPushSender(
        project_id="demo",
        access_token="secret",
        base_url="https://fcm.test",
        transport=httpx.MockTransport(lambda request: httpx.Response(404, json={"error": "UNREGISTERED"})),
    )
    with pytest.raises(PushSendError):
        await sender.send(token="stale", title="T", body="B", data={})


@pytest.mark.asyncio
async def test_fcm_sender_raises_on_network_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out")

    sender = FcmPushSender(
        project_id="demo",
        access_token="secret",
        base_url="https://fcm.test",
        transport=httpx.MockTransport(handler),
    )
    with pytest.raises(PushSendError):
        await sender.send(token="tok", title="T", body="B", data={})


def test_fcm_sender_requires_configuration() -> None:
    with pytest.raises(RuntimeError):
        FcmPushSender(project_id="", access_token="")


@pytest.mark.asyncio
async def test_log_sender_only_logs(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING, logger="routine_alerts.alerts.push"):
        await LogPushSender().send(token="tok-123456789", title="T", body="B", data={"taskId": "9"})
    assert "ALERT (no push provider)" in caplog.text
    assert "task=9" in caplog.text


class FakeCredentials:
    """Stands in for google.oauth2.service_account.Credentials: valid/token/refresh()."""

    def __init__(self, project_id: str | None = "sa-project") -> None:
        self.project_id = project_id
        self.token: str | None = None
        self.expired = False
        self.refreshes = 0

    @property
    def valid(self) -> bool:
        return self.token is not None and not self.expired

    def refresh(self, request) -> None:
        self.refreshes += 1
        self.token = f"sa-token-{self.refreshes}"
        self.expired = False


def _recording_sender(creds: FakeCredentials, status: int = 200) -> tuple[FcmPushSender, list[httpx.Request]]:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(status, json={"name": "projects/demo/messages/1"})

    sender = FcmPushSender(
        project_id="demo",
        token_source=ServiceAccountTokenSource(creds, request_factory=lambda: None),
        base_url="https://fcm.test",
        transport=httpx.MockTransport(handler),
    )
    return sender, seen


@pytest.mark.asyncio
async def test_service_account_token_is_refreshed_when_expired() -> None:
    creds = FakeCredentials()
    sender, seen = _recording_sender(creds)

    await sender.send(token="tok", title="T", body="B", data={})
    await sender.send(token="tok", title="T", body="B", data={})
    creds.expired = True
    await sender.send(token="tok", title="T", body="B", data={})

    assert [r.headers["Authorization"] for r in seen] == [
        "Bearer sa-token-1",
        "Bearer sa-token-1",
        "Bearer sa-token-2",
    ]
    assert creds.refreshes == 2


@pytest.mark.asyncio
async def test_unauthorized_forces_refresh_on_next_send() -> None:
    creds = FakeCredentials()
    sender, seen = _recording_sender(creds, status=401)

    with pytest.raises(PushSendError):
        await sender.send(token="tok", title="T", body="B", data={})
    with pytest.raises(PushSendError):
        await sender.send(token="tok", title="T", body="B", data={})

    assert creds.refreshes == 2
    assert seen[1].headers["Authorization"] == "Bearer sa-token-2"


@pytest.mark.asyncio
async def test_token_failure_is_a_send_error() -> None:
    class BrokenCredentials(FakeCredentials):
        def refresh(self, request) -> None:
            raise OSError("metadata server unreachable")

    sender, seen = _recording_sender(BrokenCredentials())

    with pytest.raises(PushSendError):
        await sender.send(token="tok", title="T", body="B", data={})
    assert seen == []


def test_from_settings_prefers_static_token_override(settings, monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[str] = []

    def fake_from_file(cls, path):
        calls.append(str(path))
        return ServiceAccountTokenSource(FakeCredentials(), request_factory=lambda: None)

    monkeypatch.setattr(ServiceAccountTokenSource, "from_file", classmethod(fake_from_file))

    settings.fcm_service_account_path = "/secrets/firebase.json"
    FcmPushSender.from_settings(settings)
    assert calls == []

    settings.fcm_access_token = None
    settings.fcm_project_id = None
    sender = FcmPushSender.from_settings(settings)
    assert calls == ["/secrets/firebase.json"]
    assert sender._url.endswith("/v1/projects/sa-project/messages:send")
