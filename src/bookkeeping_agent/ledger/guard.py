"""Balanced-entry guard: the only path by which tools write ledger postings.

Every posting is checked before anything is sent to the backend. An entry
whose debits and credits differ by more than one cent, or which touches
fewer than two distinct accounts, is never submitted.
"""

import asyncio
import weakref
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Protocol

import structlog

from bookkeeping_agent.clients.bookkeeping_api import BookkeepingAPIError, NotFoundError
from bookkeeping_agent.errors import AgentError, InvariantError, ResolutionError, UpstreamError
from bookkeeping_agent.ledger.accounts import AccountRule, ResolvedAccount, resolve_reference
from bookkeeping_agent.memory.models import AuditLogEntry

logger = structlog.get_logger(__name__)

ZERO = Decimal("0")
CENT = Decimal("0.01")
BALANCE_TOLERANCE = CENT


def to_decimal(value: Any) -> Decimal:
    """Convert an amount to Decimal without float artifacts."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def format_currency(amount: Any, currency: str) -> str:
    """Format an amount like ``MYR 1,250.00``."""
    return f"{currency} {to_decimal(amount).quantize(CENT):,.2f}"


@dataclass
class PostingLine:
    """One debit or credit line of a posting.

    ``account`` is either an ``AccountRule`` for an implicit role, or an
    explicit account id or code.
    """

    account: AccountRule | str
    debit: Decimal = ZERO
    credit: Decimal = ZERO
    description: str | None = None

    def __post_init__(self) -> None:
        self.debit = to_decimal(self.debit)
        self.credit = to_decimal(self.credit)
        if self.debit < 0 or self.credit < 0:
            raise InvariantError("Debit and credit amounts cannot be negative")
        if self.debit > 0 and self.credit > 0:
            raise InvariantError("A line cannot carry both a debit and a credit")


@dataclass
class PostingAttempt:
    """Candidate journal entry pending validation."""

    entry_date: str
    description: str
    lines: list[PostingLine] = field(default_factory=list)
    reference: str | None = None
    source_type: str | None = None
    source_id: str | None = None

    @property
    def total_debit(self) -> Decimal:
        return sum((line.debit for line in self.lines), ZERO)

    @property
    def total_credit(self) -> Decimal:
        return sum((line.credit for line in self.lines), ZERO)


class LedgerBackend(Protocol):
    """Backend operations the guard depends on."""

    async def find_all_accounts(
        self, user_id: str, account_type: str | None = None, include_headers: bool = False
    ) -> list[dict[str, Any]]: ...

    async def create_journal_entry(self, user_id: str, data: dict[str, Any]) -> dict[str, Any]: ...

    async def post_journal_entry(self, user_id: str, entry_id: str) -> dict[str, Any]: ...

    async def get_journal_entry(self, user_id: str, entry_id: str) -> dict[str, Any]: ...

    async def reverse_journal_entry(
        self, user_id: str, entry_id: str, reason: str
    ) -> dict[str, Any]: ...


class AuditSink(Protocol):
    async def log_audit(self, entry: AuditLogEntry) -> None: ...


class BalancedEntryGuard:
    """Resolves accounts, validates double-entry invariants, then commits.

    Resolution, validation and commit for one user run under that user's
    lock, so two postings for the same user never interleave.
    """

    def __init__(
        self,
        backend: LedgerBackend,
        audit: AuditSink | None = None,
        currency: str = "MYR",
    ):
        self.backend = backend
        self.audit = audit
        self.currency = currency
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    def format(self, amount: Any) -> str:
        return format_currency(amount, self.currency)

    def check_balance(self, attempt: PostingAttempt) -> None:
        """Raise InvariantError unless debits equal credits within one cent."""
        debit, credit = attempt.total_debit, attempt.total_credit
        if debit == ZERO and credit == ZERO:
            raise InvariantError("Journal entry has no amounts")
        if abs(debit - credit) > BALANCE_TOLERANCE:
            raise InvariantError(
                f"Debits ({self.format(debit)}) must equal credits ({self.format(credit)})",
                details={"total_debit": str(debit), "total_credit": str(credit)},
            )

    async def submit(
        self,
        user_id: str,
        attempt: PostingAttempt,
        *,
        auto_post: bool,
        action: str,
        session_id: str | None = None,
    ) -> dict[str, Any]:
        """Validate and commit a posting.

        Args:
            user_id: Owner of the ledger.
            attempt: Lines to post.
            auto_post: Post immediately instead of leaving a draft.
            action: Name of the tool, recorded in the audit log.
            session_id: Conversation the posting came from.

        Returns:
            Success payload naming the resolved accounts, amount and status.

        Raises:
            InvariantError: Unbalanced entry or fewer than two accounts.
            ResolutionError: An account could not be resolved.
            UpstreamError: The backend failed.
        """
        log = logger.bind(user_id=user_id, action=action)
        try:
            self.check_balance(attempt)
            async with self._lock_for(user_id):
                resolved = await self._resolve_lines(user_id, attempt)
                if len({account.id for account in resolved}) < 2:
                    raise InvariantError("Journal entry must use at least two different accounts")
                payload = await self._commit(user_id, attempt, resolved, auto_post)
        except AgentError as e:
            await self._audit_failure(user_id, session_id, action, e)
            raise

        log.info("posting_committed", entry_id=payload["entry_id"], status=payload["status"])
        await self._audit(
            AuditLogEntry(
                user_id=user_id,
                session_id=session_id,
                action=action,
                resource_type="journal_entry",
                success=True,
                financial_impact={
                    "amount": str(attempt.total_debit.quantize(CENT)),
                    "currency": self.currency,
                    "accounts": payload["debit_accounts"] + payload["credit_accounts"],
                },
            )
        )
        return payload

    async def post_draft(
        self,
        user_id: str,
        entry_id: str,
        *,
        action: str,
        session_id: str | None = None,
    ) -> dict[str, Any]:
        """Post an existing draft after re-checking that it balances."""
        try:
            async with self._lock_for(user_id):
                entry = await self._fetch_entry(user_id, entry_id)
                status = entry.get("status")
                if status == "posted":
                    raise InvariantError("Journal entry is already posted")
                if status == "reversed":
                    raise InvariantError("Cannot post a reversed journal entry")

                lines = entry.get("lines") or []
                debit = sum((_line_amount(line, "debit") for line in lines), ZERO)
                credit = sum((_line_amount(line, "credit") for line in lines), ZERO)
                if abs(debit - credit) > BALANCE_TOLERANCE:
                    raise InvariantError(
                        f"Debits ({self.format(debit)}) must equal credits ({self.format(credit)})"
                    )
                if len({line.get("account_id") for line in lines}) < 2:
                    raise InvariantError("Journal entry must use at least two different accounts")

                try:
                    await self.backend.post_journal_entry(user_id, entry_id)
                except BookkeepingAPIError as e:
                    raise UpstreamError(f"Failed to post journal entry: {e}") from e
        except AgentError as e:
            await self._audit_failure(user_id, session_id, action, e)
            raise

        amount = self.format(debit)
        await self._audit(
            AuditLogEntry(
                user_id=user_id,
                session_id=session_id,
                action=action,
                resource_type="journal_entry",
                financial_impact={"amount": str(debit.quantize(CENT)), "currency": self.currency},
            )
        )
        return {
            "entry_id": entry_id,
            "entry_number": entry.get("entry_number"),
            "status": "posted",
            "amount": amount,
            "message": f"Journal entry {entry.get('entry_number') or entry_id} posted",
        }

    async def reverse(
        self,
        user_id: str,
        entry_id: str,
        reason: str,
        *,
        action: str,
        session_id: str | None = None,
    ) -> dict[str, Any]:
        """Reverse a posted entry with an equal and opposite entry."""
        try:
            async with self._lock_for(user_id):
                entry = await self._fetch_entry(user_id, entry_id)
                if entry.get("status") != "posted":
                    raise InvariantError("Only posted journal entries can be reversed")
                try:
                    reversal = await self.backend.reverse_journal_entry(user_id, entry_id, reason)
                except BookkeepingAPIError as e:
                    raise UpstreamError(f"Failed to reverse journal entry: {e}") from e
        except AgentError as e:
            await self._audit_failure(user_id, session_id, action, e)
            raise

        await self._audit(
            AuditLogEntry(
                user_id=user_id,
                session_id=session_id,
                action=action,
                resource_type="journal_entry",
                financial_impact={"reversed_entry_id": entry_id, "reason": reason},
            )
        )
        return {
            "original_entry": {
                "id": entry_id,
                "entry_number": entry.get("entry_number"),
                "status": "reversed",
            },
            "reversal_entry": {
                "id": reversal.get("id"),
                "entry_number": reversal.get("entry_number"),
                "description": reversal.get("description"),
            },
            "message": f"Journal entry {entry.get('entry_number') or entry_id} has been reversed",
        }

    async def _fetch_entry(self, user_id: str, entry_id: str) -> dict[str, Any]:
        try:
            return await self.backend.get_journal_entry(user_id, entry_id)
        except NotFoundError as e:
            raise ResolutionError(
                f"Journal entry not found: {entry_id}", role="journal entry"
            ) from e
        except BookkeepingAPIError as e:
            raise UpstreamError(f"Could not load journal entry: {e}") from e

    async def _resolve_lines(
        self, user_id: str, attempt: PostingAttempt
    ) -> list[ResolvedAccount]:
        try:
            raw_accounts = await self.backend.find_all_accounts(user_id)
        except BookkeepingAPIError as e:
            raise UpstreamError(f"Could not load chart of accounts: {e}") from e
        accounts = [ResolvedAccount.from_api(a) for a in raw_accounts if a.get("id")]

        resolved = []
        for line in attempt.lines:
            if isinstance(line.account, AccountRule):
                resolved.append(line.account.resolve(accounts))
            else:
                resolved.append(resolve_reference(line.account, accounts))
        return resolved

    async def _commit(
        self,
        user_id: str,
        attempt: PostingAttempt,
        resolved: list[ResolvedAccount],
        auto_post: bool,
    ) -> dict[str, Any]:
        data: dict[str, Any] = {
            "entry_date": attempt.entry_date,
            "description": attempt.description,
            "lines": [
                {
                    "account_id": account.id,
                    "debit": str(line.debit.quantize(CENT)),
                    "credit": str(line.credit.quantize(CENT)),
                    "description": line.description or attempt.description,
                }
                for line, account in zip(attempt.lines, resolved)
            ],
        }
        if attempt.reference:
            data["reference"] = attempt.reference
        if attempt.source_type:
            data["source_type"] = attempt.source_type
            data["source_id"] = attempt.source_id

        try:
            entry = await self.backend.create_journal_entry(user_id, data)
        except BookkeepingAPIError as e:
            raise UpstreamError(f"Failed to create journal entry: {e}", details=e.details) from e

        entry_id = str(entry.get("id", ""))
        status = "draft"
        if auto_post:
            try:
                await self.backend.post_journal_entry(user_id, entry_id)
            except BookkeepingAPIError as e:
                raise UpstreamError(
                    f"Journal entry {entry_id} was created but could not be posted: {e}",
                    details={"entry_id": entry_id, "status": "draft"},
                ) from e
            status = "posted"

        debit_accounts = _unique_labels(
            account for line, account in zip(attempt.lines, resolved) if line.debit > 0
        )
        credit_accounts = _unique_labels(
            account for line, account in zip(attempt.lines, resolved) if line.credit > 0
        )
        amount = self.format(attempt.total_debit)
        return {
            "entry_id": entry_id,
            "entry_number": entry.get("entry_number"),
            "status": status,
            "amount": amount,
            "debit_accounts": debit_accounts,
            "credit_accounts": credit_accounts,
            "message": (
                f"{'Posted' if status == 'posted' else 'Drafted'} {amount}: "
                f"debit {', '.join(debit_accounts)}; credit {', '.join(credit_accounts)}"
            ),
        }

    async def _audit_failure(
        self, user_id: str, session_id: str | None, action: str, error: AgentError
    ) -> None:
        logger.warning(
            "posting_rejected",
            user_id=user_id,
            action=action,
            error_type=error.error_type,
            error=error.message,
        )
        await self._audit(
            AuditLogEntry(
                user_id=user_id,
                session_id=session_id,
                action=action,
                resource_type="journal_entry",
                success=False,
                error_message=error.message,
            )
        )

    async def _audit(self, entry: AuditLogEntry) -> None:
        if self.audit is None:
            return
        try:
            await self.audit.log_audit(entry)
        except Exception:
            logger.exception("audit_log_failed", action=entry.action, user_id=entry.user_id)


def _line_amount(line: dict[str, Any], side: str) -> Decimal:
    value = line.get(side, line.get(f"{side}_amount"))
    return to_decimal(value) if value not in (None, "") else ZERO


def _unique_labels(accounts: Any) -> list[str]:
    labels: list[str] = []
    for account in accounts:
        if account.label not in labels:
            labels.append(account.label)
    return labels
