DEFAULT_CATEGORY = "Other"
FIXED_CATEGORIES = [
    "Food & Dining",
    "Shopping",
    "Transport",
    "Bills & Utilities",
    "Entertainment",
    "Healthcare",
    "Salary",
    "Investment",
    DEFAULT_CATEGORY,
]

TRANSACTION_TYPES = ("credit", "debit")


def normalize_category(value):
    if not value:
        return None
    raw = " ".join(str(value).strip().split())
    for category in FIXED_CATEGORIES:
        if raw.lower() == category.lower():
            return category
    return None
