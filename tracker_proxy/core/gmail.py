import base64
import binascii
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from urllib.parse import urlencode

import httplib2
import requests
from google.auth.exceptions import GoogleAuthError
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from .errors import AuthenticationError, ExternalServiceError
from .schemas import Email

AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
SCOPES = ["https://www.googleapis.com/auth/gmail.readonly"]

LIST_LIMIT = 20
FETCH_LIMIT = 10

# Failures that hit every request alike: revoked tokens, DNS, sockets.
TRANSPORT_ERRORS = (GoogleAuthError, httplib2.HttpLib2Error, OSError)

LOGGER = logging.getLogger("tracker_proxy.gmail")


def build_authorize_url(settings, user_id):
    client_id, _ = settings.require_google_client()
    params = {
        "client_id": client_id,
        "redirect_uri": settings.require_redirect_uri(),
        "response_type": "code",
        "scope": " ".join(SCOPES),
        "access_type": "offline",
        "prompt": "consent",
        "state": user_id,
    }
    return f"{AUTH_URL}?{urlencode(params)}"


def _token_request(settings, data, failure_message, session=None):
    client_id, client_secret = settings.require_google_client()
    payload = {"client_id": client_id, "client_secret": client_secret, **data}
    poster = session or requests
    try:
        response = poster.post(TOKEN_URL, data=payload, timeout=settings.request_timeout_seconds)
    except requests.RequestException as exc:
        raise ExternalServiceError(f"{failure_message}: {exc}") from exc
    if not response.ok:
        LOGGER.error("Token endpoint returned %s: %s", response.status_code, response.text[:500])
        raise ExternalServiceError(failure_message, status_code=response.status_code)
    try:
        tokens = response.json()
    except ValueError as exc:
        raise ExternalServiceError(f"{failure_message}: token endpoint returned non-JSON") from exc
    if not tokens.get("access_token"):
        raise ExternalServiceError(f"{failure_message}: no access_token in response")
    return tokens


def _expiry(tokens, now=None):
    now = now or datetime.now(timezone.utc)
    return now + timedelta(seconds=int(tokens.get("expires_in") or 3600))


def exchange_code(settings, code, session=None):
    tokens = _token_request(
        settings,
        {
            "code": code,
            "redirect_uri": settings.require_redirect_uri(),
            "grant_type": "authorization_code",
        },
        "Failed to exchange authorization code",
        session=session,
    )
    return {
        "access_token": tokens["access_token"],
        "refresh_token": tokens.get("refresh_token"),
        "expires_at": _expiry(tokens),
    }


def refresh_access_token(settings, refresh_token, session=None):
    tokens = _token_request(
        settings,
        {"refresh_token": refresh_token, "grant_type": "refresh_token"},
        "Failed to refresh access token",
        session=session,
    )
    return {"access_token": tokens["access_token"], "expires_at": _expiry(tokens)}


def ensure_access_token(store, settings, user_id, now=None, session=None):
    """Return a usable access token, refreshing and persisting it when expired."""
    token = store.get_gmail_token(user_id)
    if not token:
        raise AuthenticationError("No Gmail token found. Please connect your Gmail account.")

    now = now or datetime.now(timezone.utc)
    expires_at = token.get("expires_at")
    if expires_at is None or expires_at >= now:
        return token["access_token"]

    if not token.get("refresh_token"):
        raise AuthenticationError("Token expired and no refresh token available")

    LOGGER.info("Refreshing expired Gmail token for user %s", user_id)
    refreshed = refresh_access_token(settings, token["refresh_token"], session=session)
    store.update_access_token(user_id, refreshed["access_token"], refreshed["expires_at"])
    return refreshed["access_token"]


def _decode(data):
    padded = data + "=" * (-len(data) % 4)
    try:
        return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")
    except (binascii.Error, ValueError):
        return data


def extract_body(payload):
    if not payload:
        return ""

    data = (payload.get("body") or {}).get("data")
    if data:
        return _decode(data)

    for part in payload.get("parts") or []:
        part_data = (part.get("body") or {}).get("data")
        if part.get("mimeType") == "text/plain" and part_data:
            return _decode(part_data)

    return ""


def header_value(payload, name):
    for header in (payload or {}).get("headers") or []:
        if header.get("name") == name:
            return header.get("value") or ""
    return ""


class GmailClient:
    def __init__(self, access_token, service_factory=None):
        self.access_token = access_token
        self._credentials = Credentials(token=access_token)
        self._service_factory = service_factory or self._build_service
        self._local = threading.local()

    def _build_service(self):
        return build("gmail", "v1", credentials=self._credentials, cache_discovery=False)

    def _service(self):
        # The underlying http object is not thread-safe, so each worker thread
        # builds its own service once and reuses it.
        service = getattr(self._local, "service", None)
        if service is None:
            service = self._service_factory()
            self._local.service = service
        return service

    def list_message_ids(self, limit=LIST_LIMIT):
        try:
            result = (
                self._service()
                .users()
                .messages()
                .list(userId="me", q="label:INBOX", maxResults=limit)
                .execute()
            )
        except HttpError as exc:
            raise ExternalServiceError(
                "Failed to fetch Gmail messages", status_code=exc.resp.status
            ) from exc
        except TRANSPORT_ERRORS as exc:
            raise ExternalServiceError(f"Failed to fetch Gmail messages: {exc}") from exc
        return [message["id"] for message in result.get("messages") or []]

    def fetch_message(self, message_id):
        try:
            message = (
                self._service()
                .users()
                .messages()
                .get(userId="me", id=message_id, format="full")
                .execute()
            )
        except HttpError as exc:
            LOGGER.warning("Skipping message %s: %s", message_id, exc)
            return None
        except TRANSPORT_ERRORS as exc:
            raise ExternalServiceError(f"Failed to fetch Gmail message {message_id}: {exc}") from exc

        payload = message.get("payload")
        return Email(
            id=message.get("id", message_id),
            subject=header_value(payload, "Subject"),
            sender=header_value(payload, "From"),
            snippet=message.get("snippet") or "",
            body=extract_body(payload),
        )

    def fetch_inbox_emails(self):
        message_ids = self.list_message_ids()[:FETCH_LIMIT]
        if not message_ids:
            return []
        with ThreadPoolExecutor(max_workers=len(message_ids)) as pool:
            emails = list(pool.map(self.fetch_message, message_ids))
        valid = [email for email in emails if email is not None]
        LOGGER.info("Fetched %s of %s inbox messages", len(valid), len(message_ids))
        return valid


def fetch_inbox_emails(access_token, service_factory=None):
    return GmailClient(access_token, service_factory=service_factory).fetch_inbox_emails()
