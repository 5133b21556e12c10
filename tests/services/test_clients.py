import json

import httpx
import pytest

from whitelist_vote.core.errors import ExternalServiceError
from whitelist_vote.services.notifier import EventKind, WebhookNotifier
from whitelist_vote.services.whitelist import (
    DisabledWhitelistSync,
    HttpWhitelistSync,
    WhitelistConfig,
)

CONFIG = WhitelistConfig(
    enabled=True,
    base_url="http://roster.test",
    token="roster-token",
    timeout_seconds=1.0,
)


def _client(handler):
    return HttpWhitelistSync(CONFIG, transport=httpx.MockTransport(handler))


def test_add_posts_player_with_token():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201, json={"ok": True})

    assert _client(handler).add("Notch", "uuid-1") is True

    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == "/whitelist"
    assert request.headers["Authorization"] == "Bearer roster-token"
    assert json.loads(request.content) == {"nickname": "Notch", "uuid": "uuid-1"}


def test_remove_sends_identity_key():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(204)

    assert _client(handler).remove("Notch", "uuid-1") is True
    assert seen[0].method == "DELETE"
    assert seen[0].url.path == "/whitelist/Notch"
    assert seen[0].url.params["uuid"] == "uuid-1"


def test_remove_of_unlisted_player_is_not_an_error():
    client = _client(lambda request: httpx.Response(404))
    assert client.remove("Ghost", None) is False


@pytest.mark.parametrize("status", [400, 409, 500, 503])
def test_error_statuses_raise(status):
    client = _client(lambda request: httpx.Response(status))
    with pytest.raises(ExternalServiceError):
        client.add("Notch", None)


def test_transport_failure_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(ExternalServiceError, match="request failed"):
        _client(handler).remove("Notch", None)


def test_close_drops_client():
    client = _client(lambda request: httpx.Response(201))
    client.add("Notch", None)
    client.close()
    assert client._client is None


def test_disabled_sync_only_logs(caplog):
    with caplog.at_level("INFO"):
        assert DisabledWhitelistSync().add("Notch", None) is False
    assert "would add Notch" in caplog.text


def test_webhook_notifier_posts_event():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(200)

    notifier = WebhookNotifier("http://hooks.test/events", transport=httpx.MockTransport(handler))
    notifier.notify(7, EventKind.APPLICATION_APPROVED, {"nickname": "Notch"})

    assert seen == [
        {"user_id": 7, "event": "application_approved", "payload": {"nickname": "Notch"}}
    ]


def test_webhook_notifier_raises_on_error_status():
    notifier = WebhookNotifier(
        "http://hooks.test/events",
        transport=httpx.MockTransport(lambda request: httpx.Response(502)),
    )
    with pytest.raises(ExternalServiceError):
        notifier.notify(7, EventKind.USER_EJECTED, {})
