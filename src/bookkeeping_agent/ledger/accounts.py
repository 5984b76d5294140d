"""Deterministic resolution of account roles against a chart of accounts."""

from dataclasses import dataclass
from typing import Any

from bookkeeping_agent.errors import ResolutionError


@dataclass(frozen=True)
class ResolvedAccount:
    """An account from the user's chart of accounts."""

    id: str
    code: str
    name: str
    account_type: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "ResolvedAccount":
        return cls(
            id=str(data["id"]),
            code=str(data.get("code") or ""),
            name=str(data.get("name") or ""),
            account_type=data.get("account_type") or data.get("accountType"),
        )

    @property
    def label(self) -> str:
        return f"{self.code} {self.name}".strip()


@dataclass(frozen=True)
class AccountRule:
    """Ordered matching strategy for one account role.

    Precedence: exact code (codes tried in order), then case-insensitive name
    substring (terms tried in order, within the rule's account type when it
    has one), then account type optionally narrowed by a name term. The
    first level with any match decides; several distinct matches at that
    level are ambiguous.
    """

    role: str
    codes: tuple[str, ...] = ()
    name_terms: tuple[str, ...] = ()
    category: str | None = None
    category_term: str | None = None

    def resolve(self, accounts: list[ResolvedAccount]) -> ResolvedAccount:
        for code in self.codes:
            matches = [a for a in accounts if a.code == code]
            if matches:
                return self._decide(matches, f"code {code}")

        scoped = [a for a in accounts if self._in_category(a)] if self.category else accounts
        for term in self.name_terms:
            matches = [a for a in scoped if term.lower() in a.name.lower()]
            if matches:
                return self._decide(matches, f"name containing '{term}'")

        if self.category:
            matches = [
                a
                for a in accounts
                if self._in_category(a)
                and (not self.category_term or self.category_term in a.name.lower())
            ]
            if matches:
                return self._decide(matches, f"{self.category} accounts")

        raise ResolutionError(
            f"No {self.role} account found in chart of accounts. "
            f"Create one or record a manual journal entry.",
            role=self.role,
        )

    def _in_category(self, account: ResolvedAccount) -> bool:
        return (account.account_type or "").lower() == self.category

    def _decide(self, matches: list[ResolvedAccount], level: str) -> ResolvedAccount:
        distinct = {a.id: a for a in matches}
        if len(distinct) == 1:
            return next(iter(distinct.values()))
        raise ResolutionError(
            f"Ambiguous {self.role} account: {level} matches "
            + ", ".join(a.label for a in distinct.values()),
            role=self.role,
            details={"candidates": [a.label for a in distinct.values()]},
        )


def resolve_reference(reference: str, accounts: list[ResolvedAccount]) -> ResolvedAccount:
    """Resolve an explicit account id or code, exactly."""
    matches = {a.id: a for a in accounts if reference in (a.id, a.code)}
    if len(matches) == 1:
        return next(iter(matches.values()))
    if not matches:
        raise ResolutionError(f"Account not found: {reference}", role=reference)
    raise ResolutionError(
        f"Ambiguous account reference: {reference}",
        role=reference,
        details={"candidates": [a.label for a in matches.values()]},
    )


CASH = AccountRule("cash", codes=("1100",), name_terms=("cash",))
BANK = AccountRule("bank", codes=("1110",), name_terms=("bank",))
ACCOUNTS_RECEIVABLE = AccountRule(
    "accounts receivable", codes=("1200",), name_terms=("accounts receivable",)
)
ACCOUNTS_PAYABLE = AccountRule(
    "accounts payable", codes=("2100",), name_terms=("accounts payable",)
)
SALES_REVENUE = AccountRule(
    "sales revenue", codes=("4100", "4000"), category="revenue", category_term="sales"
)

EXPENSE_RULES: dict[str, AccountRule] = {
    "office": AccountRule(
        "office expense", codes=("6100",), name_terms=("office",), category="expense"
    ),
    "utilities": AccountRule(
        "utilities expense", codes=("6200",), name_terms=("utilities",), category="expense"
    ),
    "rent": AccountRule("rent expense", codes=("6300",), name_terms=("rent",), category="expense"),
    "salary": AccountRule(
        "salary expense", codes=("6400",), name_terms=("salary", "wages"), category="expense"
    ),
    "supplies": AccountRule(
        "supplies expense", codes=("6500",), name_terms=("supplies",), category="expense"
    ),
    "other": AccountRule(
        "other expense",
        codes=("6900",),
        name_terms=("other expense", "miscellaneous"),
        category="expense",
    ),
}

PAYMENT_METHOD_RULES: dict[str, AccountRule] = {
    "cash": CASH,
    "bank": BANK,
}
