import logging
import uuid
from datetime import date, datetime, timezone

from sqlalchemy import Column, Date, DateTime, Numeric, String, Text, create_engine, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .errors import StorageError

Base = declarative_base()


def _utcnow():
    return datetime.now(timezone.utc)


def _new_id():
    return str(uuid.uuid4())


def as_utc(value):
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String, index=True, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    type = Column(String(6), nullable=False)  # 'credit' or 'debit'
    category = Column(String, nullable=False)
    merchant = Column(String, nullable=True)
    description = Column(Text, default="")
    transaction_date = Column(Date, index=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    raw_text = Column(Text, default="")
    # 'manual' or 'gmail:<message id>'
    source = Column(String, default="manual")

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "amount": float(self.amount),
            "type": self.type,
            "category": self.category,
            "merchant": self.merchant,
            "description": self.description or "",
            "transaction_date": self.transaction_date.isoformat(),
            "created_at": as_utc(self.created_at).isoformat() if self.created_at else None,
            "raw_text": self.raw_text or "",
            "source": self.source,
        }


class GmailToken(Base):
    __tablename__ = "gmail_tokens"

    user_id = Column(String, primary_key=True)
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)

    def to_dict(self):
        return {
            "user_id": self.user_id,
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": as_utc(self.expires_at),
        }


def create_session_factory(database_url):
    kwargs = {}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in database_url or database_url == "sqlite://":
            kwargs["poolclass"] = StaticPool
    engine = create_engine(database_url, **kwargs)
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


class LedgerStore:
    def __init__(self, session_factory=None, database_url=None):
        if session_factory is None:
            session_factory = create_session_factory(database_url or "sqlite:///tracker.db")
        self._session_factory = session_factory
        self._logger = logging.getLogger("tracker_proxy.ledger")

    def init_db(self):
        Base.metadata.create_all(bind=self._session_factory.kw["bind"])

    def insert_transactions(self, user_id, records):
        """Insert all records in one transaction; any failure rolls back the batch."""
        rows = []
        for record in records:
            transaction_date = record["transaction_date"]
            if isinstance(transaction_date, str):
                transaction_date = date.fromisoformat(transaction_date)
            rows.append(
                Transaction(
                    user_id=user_id,
                    amount=record["amount"],
                    type=record["type"],
                    category=record["category"],
                    merchant=record.get("merchant"),
                    description=record.get("description") or "",
                    transaction_date=transaction_date,
                    raw_text=record.get("raw_text") or "",
                    source=record.get("source") or "manual",
                )
            )
        if not rows:
            return []

        with self._session_factory() as session:
            try:
                session.add_all(rows)
                session.commit()
            except SQLAlchemyError as exc:
                session.rollback()
                self._logger.exception("Batch insert of %s transactions failed", len(rows))
                raise StorageError(f"Failed to store transactions: {exc}") from exc

        self._logger.info("Stored %s transactions for user %s", len(rows), user_id)
        return [row.to_dict() for row in rows]

    def list_transactions(self, user_id, since=None):
        query = select(Transaction).where(Transaction.user_id == user_id)
        if since is not None:
            query = query.where(Transaction.transaction_date >= since)
        query = query.order_by(Transaction.transaction_date.desc(), Transaction.created_at.desc())
        try:
            with self._session_factory() as session:
                return [row.to_dict() for row in session.scalars(query)]
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to load transactions: {exc}") from exc

    def get_gmail_token(self, user_id):
        try:
            with self._session_factory() as session:
                row = session.get(GmailToken, user_id)
                return row.to_dict() if row else None
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to load Gmail token: {exc}") from exc

    def save_gmail_token(self, user_id, access_token, refresh_token=None, expires_at=None):
        with self._session_factory() as session:
            try:
                row = session.get(GmailToken, user_id)
                if row is None:
                    row = GmailToken(user_id=user_id)
                    session.add(row)
                row.access_token = access_token
                # Google omits refresh_token on re-consent; keep the one we have.
                if refresh_token:
                    row.refresh_token = refresh_token
                row.expires_at = expires_at
                session.commit()
            except SQLAlchemyError as exc:
                session.rollback()
                raise StorageError(f"Failed to store tokens: {exc}") from exc
        self._logger.info("Saved Gmail token for user %s", user_id)

    def update_access_token(self, user_id, access_token, expires_at):
        with self._session_factory() as session:
            try:
                row = session.get(GmailToken, user_id)
                if row is None:
                    raise StorageError(f"No Gmail token stored for user {user_id}")
                row.access_token = access_token
                row.expires_at = expires_at
                session.commit()
            except SQLAlchemyError as exc:
                session.rollback()
                raise StorageError(f"Failed to update Gmail token: {exc}") from exc

    def delete_gmail_token(self, user_id):
        with self._session_factory() as session:
            try:
                row = session.get(GmailToken, user_id)
                if row is None:
                    return False
                session.delete(row)
                session.commit()
            except SQLAlchemyError as exc:
                session.rollback()
                raise StorageError(f"Failed to delete Gmail token: {exc}") from exc
        self._logger.info("Deleted Gmail token for user %s", user_id)
        return True
