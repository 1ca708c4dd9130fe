import base64
import threading
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import httplib2
import pytest
from google.auth.exceptions import RefreshError
from googleapiclient.errors import HttpError

from tests.fakes import FakeResponse, FakeSession
from tracker_proxy.core.errors import AuthenticationError, ExternalServiceError
from tracker_proxy.core.gmail import (
    GmailClient,
    build_authorize_url,
    ensure_access_token,
    exchange_code,
    extract_body,
    header_value,
)


def _b64(text):
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


def _http_error(status=500):
    return HttpError(httplib2.Response({"status": status}), b"{}")


def _message(message_id, body="Paid $89.99 to Amazon"):
    return {
        "id": message_id,
        "snippet": f"snippet {message_id}",
        "payload": {
            "mimeType": "text/plain",
            "headers": [
                {"name": "Subject", "value": f"Receipt {message_id}"},
                {"name": "From", "value": "orders@example.com"},
            ],
            "body": {"data": _b64(body)},
        },
    }


class _Request:
    def __init__(self, result=None, error=None):
        self._result = result
        self._error = error

    def execute(self):
        if self._error is not None:
            raise self._error
        return self._result


class FakeMessages:
    def __init__(self, ids, failing=(), list_error=None, get_error=None):
        self._ids = list(ids)
        self._failing = set(failing)
        self._list_error = list_error
        self._get_error = get_error
        self._lock = threading.Lock()
        self.list_kwargs = None
        self.fetched = []

    def list(self, **kwargs):
        self.list_kwargs = kwargs
        messages = [{"id": message_id, "threadId": "t"} for message_id in self._ids]
        return _Request({"messages": messages}, self._list_error)

    def get(self, userId=None, id=None, format=None):
        with self._lock:
            self.fetched.append(id)
        if self._get_error is not None:
            return _Request(error=self._get_error)
        if id in self._failing:
            return _Request(error=_http_error(404))
        return _Request(_message(id))


class FakeUsers:
    def __init__(self, messages):
        self._messages = messages

    def messages(self):
        return self._messages


class FakeGmailService:
    def __init__(self, messages):
        self._users = FakeUsers(messages)

    def users(self):
        return self._users


def test_extract_body_prefers_top_level_body():
    payload = {
        "body": {"data": _b64("top level")},
        "parts": [{"mimeType": "text/plain", "body": {"data": _b64("part")}}],
    }
    assert extract_body(payload) == "top level"


def test_extract_body_falls_back_to_first_plain_part():
    payload = {
        "body": {"size": 0},
        "parts": [
            {"mimeType": "text/html", "body": {"data": _b64("<p>html</p>")}},
            {"mimeType": "text/plain", "body": {"data": _b64("Débit de 12,50 €")}},
            {"mimeType": "text/plain", "body": {"data": _b64("second")}},
        ],
    }
    assert extract_body(payload) == "Débit de 12,50 €"


def test_extract_body_has_no_html_fallback():
    payload = {"parts": [{"mimeType": "text/html", "body": {"data": _b64("<p>only html</p>")}}]}
    assert extract_body(payload) == ""
    assert extract_body(None) == ""


def test_extract_body_returns_undecodable_data_raw():
    assert extract_body({"body": {"data": "abcde"}}) == "abcde"


def test_header_value():
    payload = _message("m1")["payload"]
    assert header_value(payload, "Subject") == "Receipt m1"
    assert header_value(payload, "From") == "orders@example.com"
    assert header_value(payload, "To") == ""


def test_fetch_inbox_lists_twenty_and_fetches_first_ten():
    ids = [f"m{i}" for i in range(12)]
    messages = FakeMessages(ids, failing={"m3"})
    client = GmailClient("token", service_factory=lambda: FakeGmailService(messages))

    emails = client.fetch_inbox_emails()

    assert messages.list_kwargs == {"userId": "me", "q": "label:INBOX", "maxResults": 20}
    assert sorted(messages.fetched) == sorted(ids[:10])
    assert [email.id for email in emails] == [i for i in ids[:10] if i != "m3"]
    assert emails[0].subject == "Receipt m0"
    assert emails[0].sender == "orders@example.com"
    assert emails[0].body == "Paid $89.99 to Amazon"
    assert emails[0].model_dump(by_alias=True)["from"] == "orders@example.com"


def test_fetch_inbox_empty_listing():
    messages = FakeMessages([])
    client = GmailClient("token", service_factory=lambda: FakeGmailService(messages))

    assert client.fetch_inbox_emails() == []


def test_fetch_inbox_list_failure_raises():
    messages = FakeMessages(["m1"], list_error=_http_error(401))
    client = GmailClient("token", service_factory=lambda: FakeGmailService(messages))

    with pytest.raises(ExternalServiceError) as excinfo:
        client.fetch_inbox_emails()
    assert excinfo.value.status_code == 401


@pytest.mark.parametrize(
    "error",
    [RefreshError("token revoked"), httplib2.ServerNotFoundError("no dns"), TimeoutError("timed out")],
)
def test_fetch_inbox_list_transport_failure_raises(error):
    messages = FakeMessages(["m1"], list_error=error)
    client = GmailClient("token", service_factory=lambda: FakeGmailService(messages))

    with pytest.raises(ExternalServiceError, match="Failed to fetch Gmail messages"):
        client.fetch_inbox_emails()


def test_fetch_inbox_message_transport_failure_raises():
    messages = FakeMessages(["m1", "m2"], get_error=RefreshError("token revoked"))
    client = GmailClient("token", service_factory=lambda: FakeGmailService(messages))

    with pytest.raises(ExternalServiceError, match="token revoked"):
        client.fetch_inbox_emails()


def test_fetch_inbox_builds_one_service_per_thread():
    messages = FakeMessages([f"m{i}" for i in range(10)])
    built = []

    def factory():
        built.append(threading.get_ident())
        return FakeGmailService(messages)

    GmailClient("token", service_factory=factory).fetch_inbox_emails()

    assert len(built) == len(set(built))
    assert len(built) <= 11


def test_build_authorize_url_carries_state_and_scope(settings):
    url = build_authorize_url(settings, "user-1")
    query = parse_qs(urlparse(url).query)

    assert url.startswith("https://accounts.google.com/o/oauth2/v2/auth?")
    assert query["state"] == ["user-1"]
    assert query["scope"] == ["https://www.googleapis.com/auth/gmail.readonly"]
    assert query["access_type"] == ["offline"]
    assert query["client_id"] == ["client-id"]


def test_exchange_code_posts_authorization_code_grant(settings):
    session = FakeSession(
        FakeResponse(200, {"access_token": "at", "refresh_token": "rt", "expires_in": 3600})
    )
    before = datetime.now(timezone.utc)

    tokens = exchange_code(settings, "auth-code", session=session)

    _, kwargs = session.calls[0]
    assert kwargs["data"]["grant_type"] == "authorization_code"
    assert kwargs["data"]["code"] == "auth-code"
    assert kwargs["data"]["redirect_uri"] == settings.google_redirect_uri
    assert tokens["access_token"] == "at"
    assert tokens["refresh_token"] == "rt"
    assert tokens["expires_at"] >= before + timedelta(seconds=3599)


def test_exchange_code_failure_raises(settings):
    session = FakeSession(FakeResponse(400, {"error": "invalid_grant"}))

    with pytest.raises(ExternalServiceError):
        exchange_code(settings, "bad-code", session=session)


def test_ensure_access_token_without_row(store, settings):
    with pytest.raises(AuthenticationError):
        ensure_access_token(store, settings, "user-1")


def test_ensure_access_token_still_valid(store, settings):
    expires_at = datetime.now(timezone.utc) + timedelta(hours=1)
    store.save_gmail_token("user-1", "current", refresh_token="rt", expires_at=expires_at)
    session = FakeSession(FakeResponse(500))

    assert ensure_access_token(store, settings, "user-1", session=session) == "current"
    assert session.calls == []


def test_ensure_access_token_expired_without_refresh_token(store, settings):
    expired = datetime.now(timezone.utc) - timedelta(minutes=5)
    store.save_gmail_token("user-1", "stale", refresh_token=None, expires_at=expired)

    with pytest.raises(AuthenticationError, match="no refresh token"):
        ensure_access_token(store, settings, "user-1")


def test_ensure_access_token_refreshes_and_persists(store, settings):
    expired = datetime.now(timezone.utc) - timedelta(minutes=5)
    store.save_gmail_token("user-1", "stale", refresh_token="rt", expires_at=expired)
    session = FakeSession(FakeResponse(200, {"access_token": "fresh", "expires_in": 3600}))

    token = ensure_access_token(store, settings, "user-1", session=session)

    assert token == "fresh"
    assert session.calls[0][1]["data"]["grant_type"] == "refresh_token"
    assert session.calls[0][1]["data"]["refresh_token"] == "rt"
    saved = store.get_gmail_token("user-1")
    assert saved["access_token"] == "fresh"
    assert saved["refresh_token"] == "rt"
    assert saved["expires_at"] > datetime.now(timezone.utc)
