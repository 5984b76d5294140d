"""Account resolution and the balanced-entry guard."""

from bookkeeping_agent.ledger.accounts import (
    ACCOUNTS_PAYABLE,
    ACCOUNTS_RECEIVABLE,
    BANK,
    CASH,
    EXPENSE_RULES,
    PAYMENT_METHOD_RULES,
    SALES_REVENUE,
    AccountRule,
    ResolvedAccount,
    resolve_reference,
)
from bookkeeping_agent.ledger.guard import (
    BalancedEntryGuard,
    PostingAttempt,
    PostingLine,
    format_currency,
)

__all__ = [
    "ACCOUNTS_PAYABLE",
    "ACCOUNTS_RECEIVABLE",
    "BANK",
    "CASH",
    "EXPENSE_RULES",
    "PAYMENT_METHOD_RULES",
    "SALES_REVENUE",
    "AccountRule",
    "BalancedEntryGuard",
    "PostingAttempt",
    "PostingLine",
    "ResolvedAccount",
    "format_currency",
    "resolve_reference",
]
