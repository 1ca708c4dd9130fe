import json
import logging

from .categories import FIXED_CATEGORIES

FALLBACK_REPLY = "Sorry, I could not generate a response."

# Only these fields go to the model; raw_text can hold whole emails.
_CONTEXT_FIELDS = ("amount", "type", "category", "merchant", "description", "transaction_date")


class FinanceAssistant:
    """Answers free-form questions about a user's stored transactions."""

    def __init__(self, client, max_transactions=200):
        self.client = client
        self.max_transactions = max_transactions
        self._logger = logging.getLogger("tracker_proxy.agent")

    def _context(self, transactions):
        rows = []
        for item in transactions[: self.max_transactions]:
            rows.append({key: item.get(key) for key in _CONTEXT_FIELDS})
        return json.dumps(rows, indent=2, default=str)

    def build_prompt(self, question, transactions):
        return f"""You are a financial assistant. Answer the user's question based on their transaction data.
Categories in use: {', '.join(FIXED_CATEGORIES)}.

Transaction Data:
{self._context(transactions)}

User Question: {question}

Provide a clear, concise answer with specific numbers and insights."""

    def ask(self, question, transactions):
        question = (question or "").strip()
        if not question:
            raise ValueError("Message cannot be empty")
        reply = self.client.generate(self.build_prompt(question, transactions))
        if not reply or not reply.strip():
            self._logger.warning("Empty reply from model for question %r", question)
            return FALLBACK_REPLY
        return reply.strip()
