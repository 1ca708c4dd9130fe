import logging
import os
from typing import Any

from dotenv import load_dotenv
from fastapi import Body, Depends, FastAPI, Header, Query
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import ValidationError

from tracker_proxy.core.agent import FinanceAssistant
from tracker_proxy.core.auth import authenticate
from tracker_proxy.core.categories import FIXED_CATEGORIES, TRANSACTION_TYPES
from tracker_proxy.core.errors import (
    AuthenticationError,
    ConfigurationError,
    ExternalServiceError,
    MalformedResponseError,
    StorageError,
    TrackerError,
)
from tracker_proxy.core.extract import TransactionExtractor, build_generation_client
from tracker_proxy.core.gmail import (
    GmailClient,
    build_authorize_url,
    ensure_access_token,
    exchange_code,
)
from tracker_proxy.core.importer import import_emails, import_text
from tracker_proxy.core.ledger import LedgerStore
from tracker_proxy.core.schemas import ChatRequest, ChatResponse, ImportRequest, ParseTextRequest
from tracker_proxy.core.settings import load_settings
from tracker_proxy.core.summary import filter_cutoff, summarize

load_dotenv()

logging.basicConfig(level=logging.INFO)
LOGGER = logging.getLogger("tracker_proxy")

_FILTER_PATTERN = "^(all|month|week)$"

_ERROR_STATUS = (
    (AuthenticationError, 401),
    (ConfigurationError, 500),
    (ExternalServiceError, 502),
    (MalformedResponseError, 502),
    (StorageError, 500),
)

_SETTINGS = None
_STORES = {}


def get_settings():
    global _SETTINGS
    if _SETTINGS is None:
        _SETTINGS = load_settings()
    return _SETTINGS


def get_store(settings=Depends(get_settings)):
    store = _STORES.get(settings.database_url)
    if store is None:
        store = LedgerStore(database_url=settings.database_url)
        store.init_db()
        _STORES[settings.database_url] = store
    return store


def get_generation_factory():
    return build_generation_client


def get_gmail_factory():
    return GmailClient


def get_http_session():
    # None means the module-level ``requests`` functions.
    return None


def current_user(authorization: str | None = Header(None), settings=Depends(get_settings)):
    return authenticate(authorization, settings)


def _error(message, status_code):
    return JSONResponse({"error": message}, status_code=status_code)


app = FastAPI(title="Transaction Tracker Proxy", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request, call_next):
    LOGGER.info("Request: %s %s", request.method, request.url.path)
    try:
        response = await call_next(request)
        LOGGER.info("Response: %s", response.status_code)
        return response
    except Exception as e:
        LOGGER.error("Request failed: %s", e)
        raise


@app.exception_handler(TrackerError)
async def tracker_error_handler(request, exc):
    status_code = next(
        (code for kind, code in _ERROR_STATUS if isinstance(exc, kind)),
        500,
    )
    if status_code >= 500:
        LOGGER.exception("%s %s failed: %s", request.method, request.url.path, exc)
    return _error(str(exc), status_code)


def _validation_message(errors):
    return "; ".join(
        f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg')}" for err in errors
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request, exc):
    # Gmail routes answer every failure with 400 {error}.
    if request.url.path.startswith("/gmail/"):
        return _error(f"Invalid request: {_validation_message(exc.errors())}", 400)
    return await request_validation_exception_handler(request, exc)


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/categories")
def list_categories():
    return {"categories": FIXED_CATEGORIES, "types": list(TRANSACTION_TYPES)}


@app.get("/gmail/emails")
def fetch_emails(
    authorization: str | None = Header(None),
    settings=Depends(get_settings),
    store=Depends(get_store),
    gmail_factory=Depends(get_gmail_factory),
    http_session=Depends(get_http_session),
):
    try:
        user_id = authenticate(authorization, settings)
        access_token = ensure_access_token(store, settings, user_id, session=http_session)
        emails = gmail_factory(access_token).fetch_inbox_emails()
    except TrackerError as exc:
        LOGGER.error("Gmail fetch error: %s", exc)
        return _error(str(exc), 400)
    return [email.model_dump(by_alias=True) for email in emails]


@app.post("/gmail/import")
def import_gmail(
    payload: Any = Body(None),
    authorization: str | None = Header(None),
    settings=Depends(get_settings),
    store=Depends(get_store),
    generation_factory=Depends(get_generation_factory),
):
    # Body is validated only after authentication.
    try:
        user_id = authenticate(authorization, settings)
        emails = payload.get("emails") if isinstance(payload, dict) else None
        if not isinstance(emails, list) or not emails:
            return _error("No emails provided", 400)
        try:
            request = ImportRequest.model_validate({"emails": emails})
        except ValidationError as exc:
            return _error(f"Invalid email payload: {_validation_message(exc.errors())}", 400)
        extractor = TransactionExtractor(generation_factory(settings))
        result = import_emails(request.emails, user_id, store, extractor)
    except TrackerError as exc:
        LOGGER.error("Gmail import error: %s", exc)
        return _error(str(exc), 400)
    return {
        "success": True,
        "transactionsCount": result.count,
        "failed": result.failed,
    }


@app.get("/gmail/callback")
def gmail_callback(
    code: str | None = Query(None),
    state: str | None = Query(None),
    settings=Depends(get_settings),
    store=Depends(get_store),
    http_session=Depends(get_http_session),
):
    if not code or not state:
        return _error("Missing code or state", 400)

    try:
        tokens = exchange_code(settings, code, session=http_session)
        store.save_gmail_token(
            state,
            tokens["access_token"],
            refresh_token=tokens.get("refresh_token"),
            expires_at=tokens["expires_at"],
        )
    except TrackerError as exc:
        LOGGER.exception("Gmail callback error: %s", exc)
        return _error(str(exc), 500)

    return RedirectResponse(f"{settings.app_url}/?gmail_connected=true", status_code=302)


@app.get("/gmail/authorize-url")
def gmail_authorize_url(user_id=Depends(current_user), settings=Depends(get_settings)):
    return {"url": build_authorize_url(settings, user_id)}


@app.get("/gmail/status")
def gmail_status(user_id=Depends(current_user), store=Depends(get_store)):
    token = store.get_gmail_token(user_id)
    if not token:
        return {"connected": False, "expires_at": None}
    expires_at = token.get("expires_at")
    return {
        "connected": True,
        "expires_at": expires_at.isoformat() if expires_at else None,
    }


@app.delete("/gmail/connection")
def gmail_disconnect(user_id=Depends(current_user), store=Depends(get_store)):
    # Imported transactions stay; only the OAuth token goes.
    removed = store.delete_gmail_token(user_id)
    return {"success": True, "disconnected": removed}


@app.post("/transactions/parse")
def parse_transactions(
    payload: ParseTextRequest,
    user_id=Depends(current_user),
    settings=Depends(get_settings),
    store=Depends(get_store),
    generation_factory=Depends(get_generation_factory),
):
    text = payload.text.strip()
    if not text:
        return _error("Text cannot be empty", 400)

    extractor = TransactionExtractor(generation_factory(settings))
    result = import_text(text, user_id, store, extractor)
    if not result.count:
        return _error("No transactions found in the text. Please try again.", 400)
    return {
        "success": True,
        "transactionsCount": result.count,
        "transactions": result.transactions,
    }


@app.get("/transactions")
def list_transactions(
    period: str = Query("all", alias="filter", pattern=_FILTER_PATTERN),
    user_id=Depends(current_user),
    store=Depends(get_store),
):
    transactions = store.list_transactions(user_id, since=filter_cutoff(period))
    return {"filter": period, "count": len(transactions), "transactions": transactions}


@app.get("/summary")
def transaction_summary(
    period: str = Query("month", alias="filter", pattern=_FILTER_PATTERN),
    user_id=Depends(current_user),
    store=Depends(get_store),
):
    return summarize(store.list_transactions(user_id), period)


@app.post("/chat", response_model=ChatResponse)
def chat(
    payload: ChatRequest,
    user_id=Depends(current_user),
    settings=Depends(get_settings),
    store=Depends(get_store),
    generation_factory=Depends(get_generation_factory),
):
    message = payload.message.strip()
    if not message:
        return _error("Message cannot be empty", 400)

    assistant = FinanceAssistant(generation_factory(settings))
    reply = assistant.ask(message, store.list_transactions(user_id))
    return {"reply": reply}


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", "8080"))
    uvicorn.run("tracker_proxy.main:app", host="0.0.0.0", port=port, log_level="info")
