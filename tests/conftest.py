import pytest

from tests.fakes import JWT_SECRET
from tracker_proxy.core.ledger import LedgerStore, create_session_factory
from tracker_proxy.core.settings import Settings


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite://",
        gemini_api_key="test-key",
        google_client_id="client-id",
        google_client_secret="client-secret",
        google_redirect_uri="http://localhost:8080/gmail/callback",
        app_url="http://localhost:5173",
        supabase_jwt_secret=JWT_SECRET,
    )


@pytest.fixture
def store():
    ledger = LedgerStore(session_factory=create_session_factory("sqlite://"))
    ledger.init_db()
    return ledger
