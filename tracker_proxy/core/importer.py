import logging
from dataclasses import dataclass, field

from .errors import TrackerError

LOGGER = logging.getLogger("tracker_proxy.importer")


@dataclass
class ImportResult:
    transactions: list = field(default_factory=list)
    failed: list = field(default_factory=list)

    @property
    def count(self):
        return len(self.transactions)


def email_text(email):
    return f"Subject: {email.subject}\n\nFrom: {email.sender}\n\nContent: {email.body}"


def _record(parsed, raw_text, source):
    record = parsed.model_dump()
    record["raw_text"] = raw_text
    record["source"] = source
    return record


def import_emails(emails, user_id, store, extractor):
    """
    Extract every email and store the results as one batch.

    A failing email is recorded in ``failed`` and the loop moves on. The
    insert itself is all-or-nothing: a StorageError aborts the whole batch.
    """
    records = []
    failed = []
    for email in emails:
        text = email_text(email)
        try:
            parsed = extractor.parse(text)
        except TrackerError as exc:
            LOGGER.warning("Extraction failed for email %s: %s", email.id, exc)
            failed.append({"id": email.id, "error": str(exc)})
            continue
        records.extend(_record(item, text, f"gmail:{email.id}") for item in parsed)

    stored = store.insert_transactions(user_id, records)
    LOGGER.info(
        "Imported %s transactions from %s emails (%s failed)",
        len(stored),
        len(emails),
        len(failed),
    )
    return ImportResult(transactions=stored, failed=failed)


def import_text(text, user_id, store, extractor):
    parsed = extractor.parse(text)
    stored = store.insert_transactions(
        user_id, [_record(item, text, "manual") for item in parsed]
    )
    return ImportResult(transactions=stored)
