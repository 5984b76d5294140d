"""Bookkeeping backend client: the persistence collaborator behind every tool.

Every call is scoped by the owning user, sent as the ``X-User-Id`` header.
The client never exposes an unscoped operation.
"""

import asyncio
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, cast

import httpx
import structlog

from bookkeeping_agent.config import get_settings

logger = structlog.get_logger(__name__)

DEFAULT_RETRY_AFTER = 60
IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "PUT", "DELETE"})
# Failures that happen before the request reaches the server
NOT_SENT_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout)


def parse_retry_after(value: str | None) -> int:
    """Seconds to wait from a Retry-After header, given as seconds or an HTTP-date."""
    if not value:
        return DEFAULT_RETRY_AFTER
    try:
        return max(int(value), 0)
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return DEFAULT_RETRY_AFTER
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(int((when - datetime.now(timezone.utc)).total_seconds()), 0)


class BookkeepingAPIError(Exception):
    """Base exception for bookkeeping backend errors."""

    def __init__(self, message: str, status_code: int | None = None, details: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details


class NotFoundError(BookkeepingAPIError):
    """Requested entity does not exist for this user."""

    pass


class RateLimitError(BookkeepingAPIError):
    """Rate limit exceeded."""

    pass


class BookkeepingAPIClient:
    """Async REST client for the bookkeeping backend."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.backend_api_url).rstrip("/")
        self._api_key = api_key or settings.backend_api_key.get_secret_value()
        self._timeout = timeout or settings.backend_timeout
        self._max_retries = settings.backend_max_retries if max_retries is None else max_retries

        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self._timeout),
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "BookkeepingAPIClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _get_headers(self, user_id: str) -> dict[str, str]:
        """Get request headers with service auth and user scope."""
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._api_key}",
            "X-User-Id": user_id,
        }

    # === Generic Request Methods ===

    async def _request(
        self,
        method: str,
        path: str,
        user_id: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        retry_count: int = 0,
    ) -> dict[str, Any] | list[dict[str, Any]]:
        """Make a user-scoped API request with retry logic."""
        client = await self._get_client()

        try:
            response = await client.request(
                method=method,
                url=path,
                params=params,
                json=json,
                headers=self._get_headers(user_id),
            )
        except httpx.RequestError as e:
            retryable = method.upper() in IDEMPOTENT_METHODS or isinstance(e, NOT_SENT_ERRORS)
            if retryable and retry_count < self._max_retries:
                logger.warning(
                    "backend_request_retry", method=method, path=path, attempt=retry_count + 1
                )
                await asyncio.sleep(2**retry_count)  # Exponential backoff
                return await self._request(method, path, user_id, params, json, retry_count + 1)
            raise BookkeepingAPIError(f"Request failed: {e}") from e

        if response.status_code == 429:
            retry_after = parse_retry_after(response.headers.get("Retry-After"))
            raise RateLimitError(
                f"Rate limited, retry after {retry_after}s",
                status_code=429,
                details={"retry_after": retry_after},
            )

        if response.status_code == 404:
            raise NotFoundError(f"Not found: {path}", status_code=404)

        if response.status_code >= 400:
            try:
                error_detail = response.json() if response.content else {}
            except ValueError:
                error_detail = {"raw": response.text[:500] if response.text else "empty response"}
            raise BookkeepingAPIError(
                f"API error: {response.status_code}",
                status_code=response.status_code,
                details=error_detail,
            )

        return response.json() if response.content else {}

    async def get(
        self, path: str, user_id: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any] | list[dict[str, Any]]:
        """Make GET request."""
        return await self._request("GET", path, user_id, params=params)

    async def post(
        self,
        path: str,
        user_id: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any] | list[dict[str, Any]]:
        """Make POST request."""
        return await self._request("POST", path, user_id, params=params, json=json)

    async def patch(
        self, path: str, user_id: str, json: dict[str, Any] | None = None
    ) -> dict[str, Any] | list[dict[str, Any]]:
        """Make PATCH request."""
        return await self._request("PATCH", path, user_id, json=json)

    @staticmethod
    def _clamp_limit(limit: int) -> int:
        return min(max(limit, 1), 500)

    @staticmethod
    def _extract_items(result: Any) -> list[dict[str, Any]]:
        """Return list of items from a list or paged response."""
        if isinstance(result, list):
            return result
        if isinstance(result, dict):
            items = result.get("items")
            if isinstance(items, list):
                return items
        return []

    @staticmethod
    def _as_dict(result: Any) -> dict[str, Any]:
        return cast(dict[str, Any], result) if isinstance(result, dict) else {}

    # === Chart of Accounts ===

    async def find_all_accounts(
        self,
        user_id: str,
        account_type: str | None = None,
        include_headers: bool = False,
    ) -> list[dict[str, Any]]:
        """List active accounts in the user's chart of accounts."""
        params: dict[str, Any] = {"is_active": "true", "is_header": str(include_headers).lower()}
        if account_type:
            params["account_type"] = account_type
        result = await self.get("/api/v1/chart-of-accounts/accounts", user_id, params=params)
        return self._extract_items(result)

    # === Invoices ===

    async def list_invoices(
        self, user_id: str, limit: int = 10, status: str | None = None
    ) -> list[dict[str, Any]]:
        """List invoices, most recent first."""
        params: dict[str, Any] = {"limit": self._clamp_limit(limit)}
        if status:
            params["status"] = status
        result = await self.get("/api/v1/invoices", user_id, params=params)
        return self._extract_items(result)

    async def get_invoice(self, user_id: str, invoice_id: str) -> dict[str, Any]:
        """Get invoice with line items."""
        return self._as_dict(await self.get(f"/api/v1/invoices/{invoice_id}", user_id))

    async def create_invoice(self, user_id: str, data: dict[str, Any]) -> dict[str, Any]:
        """Create a pending invoice with line items."""
        return self._as_dict(await self.post("/api/v1/invoices", user_id, json=data))

    async def update_invoice_status(
        self, user_id: str, invoice_id: str, status: str
    ) -> dict[str, Any]:
        """Set an invoice's status, e.g. ``success`` once paid."""
        return self._as_dict(
            await self.patch(
                f"/api/v1/invoices/{invoice_id}/status", user_id, json={"status": status}
            )
        )

    async def get_aging_report(
        self, user_id: str, customer_id: str | None = None
    ) -> dict[str, Any]:
        """Get receivables grouped by days overdue."""
        params = {"customer_id": customer_id} if customer_id else None
        return self._as_dict(await self.get("/api/v1/invoices/aging", user_id, params=params))

    async def get_dashboard_stats(self, user_id: str) -> dict[str, Any]:
        """Get revenue and invoice totals for the dashboard."""
        return self._as_dict(await self.get("/api/v1/dashboard/stats", user_id))

    # === Customers ===

    async def list_customers(self, user_id: str, limit: int = 20) -> list[dict[str, Any]]:
        """List customers."""
        result = await self.get(
            "/api/v1/customers", user_id, params={"limit": self._clamp_limit(limit)}
        )
        return self._extract_items(result)

    async def search_customers(
        self, user_id: str, query: str, limit: int = 20
    ) -> list[dict[str, Any]]:
        """Search customers by name, email or phone."""
        result = await self.get(
            "/api/v1/customers/search",
            user_id,
            params={"q": query, "limit": self._clamp_limit(limit)},
        )
        return self._extract_items(result)

    async def create_customer(self, user_id: str, data: dict[str, Any]) -> dict[str, Any]:
        """Create a new customer."""
        return self._as_dict(await self.post("/api/v1/customers", user_id, json=data))

    async def get_customer(self, user_id: str, customer_id: str) -> dict[str, Any]:
        """Get a customer by ID."""
        return self._as_dict(await self.get(f"/api/v1/customers/{customer_id}", user_id))

    async def get_customer_invoices(
        self, user_id: str, customer_id: str, unpaid_only: bool = False
    ) -> list[dict[str, Any]]:
        """List a customer's invoices, optionally only the unpaid ones."""
        result = await self.get(
            f"/api/v1/customers/{customer_id}/invoices",
            user_id,
            params={"unpaid_only": str(unpaid_only).lower()},
        )
        return self._extract_items(result)

    # === Vendors ===

    async def list_vendors(self, user_id: str, limit: int = 20) -> list[dict[str, Any]]:
        """List vendors."""
        result = await self.get(
            "/api/v1/vendors", user_id, params={"limit": self._clamp_limit(limit)}
        )
        return self._extract_items(result)

    async def create_vendor(self, user_id: str, data: dict[str, Any]) -> dict[str, Any]:
        """Create a new vendor."""
        return self._as_dict(await self.post("/api/v1/vendors", user_id, json=data))

    async def get_vendor(self, user_id: str, vendor_id: str) -> dict[str, Any]:
        """Get a vendor by ID."""
        return self._as_dict(await self.get(f"/api/v1/vendors/{vendor_id}", user_id))

    # === Bills ===

    async def list_bills(
        self, user_id: str, limit: int = 20, status: str | None = None
    ) -> list[dict[str, Any]]:
        """List vendor bills."""
        params: dict[str, Any] = {"limit": self._clamp_limit(limit)}
        if status:
            params["status"] = status
        result = await self.get("/api/v1/bills", user_id, params=params)
        return self._extract_items(result)

    async def get_unpaid_bills(
        self, user_id: str, vendor_id: str | None = None
    ) -> list[dict[str, Any]]:
        """List bills that are still awaiting payment."""
        params = {"vendor_id": vendor_id} if vendor_id else None
        result = await self.get("/api/v1/bills/unpaid", user_id, params=params)
        return self._extract_items(result)

    async def get_bill(self, user_id: str, bill_id: str) -> dict[str, Any]:
        """Get a bill with its vendor and line items."""
        return self._as_dict(await self.get(f"/api/v1/bills/{bill_id}", user_id))

    async def create_bill(self, user_id: str, data: dict[str, Any]) -> dict[str, Any]:
        """Create a pending bill."""
        return self._as_dict(await self.post("/api/v1/bills", user_id, json=data))

    async def update_bill_status(self, user_id: str, bill_id: str, status: str) -> dict[str, Any]:
        """Set a bill's status, e.g. ``paid``."""
        return self._as_dict(
            await self.patch(f"/api/v1/bills/{bill_id}/status", user_id, json={"status": status})
        )

    # === Quotations ===

    async def list_quotations(
        self, user_id: str, limit: int = 10, status: str | None = None
    ) -> list[dict[str, Any]]:
        """List quotations, most recent first."""
        params: dict[str, Any] = {"limit": self._clamp_limit(limit)}
        if status:
            params["status"] = status
        result = await self.get("/api/v1/quotations", user_id, params=params)
        return self._extract_items(result)

    async def get_quotation(self, user_id: str, quotation_id: str) -> dict[str, Any]:
        """Get a quotation by ID."""
        return self._as_dict(await self.get(f"/api/v1/quotations/{quotation_id}", user_id))

    async def get_quotation_stats(self, user_id: str) -> dict[str, Any]:
        """Get quotation counts and the conversion rate."""
        return self._as_dict(await self.get("/api/v1/quotations/stats", user_id))

    async def convert_quotation_to_invoice(
        self, user_id: str, quotation_id: str
    ) -> dict[str, Any]:
        """Convert a quotation into a pending invoice."""
        return self._as_dict(
            await self.post(f"/api/v1/quotations/{quotation_id}/convert", user_id)
        )

    # === Journal Entries ===

    async def create_journal_entry(self, user_id: str, data: dict[str, Any]) -> dict[str, Any]:
        """Create a draft journal entry."""
        return self._as_dict(await self.post("/api/v1/journal-entries", user_id, json=data))

    async def post_journal_entry(self, user_id: str, entry_id: str) -> dict[str, Any]:
        """Post a draft entry to the ledger."""
        return self._as_dict(
            await self.post(f"/api/v1/journal-entries/{entry_id}/post", user_id)
        )

    async def get_journal_entry(self, user_id: str, entry_id: str) -> dict[str, Any]:
        """Get a journal entry by ID."""
        return self._as_dict(await self.get(f"/api/v1/journal-entries/{entry_id}", user_id))

    async def reverse_journal_entry(
        self, user_id: str, entry_id: str, reason: str
    ) -> dict[str, Any]:
        """Reverse a posted entry, returning the reversal entry."""
        return self._as_dict(
            await self.post(
                f"/api/v1/journal-entries/{entry_id}/reverse",
                user_id,
                json={"reason": reason},
            )
        )

    # === Reports ===

    async def get_trial_balance(
        self, user_id: str, as_of_date: str | None = None
    ) -> dict[str, Any]:
        """Get trial balance report."""
        params = {"as_of_date": as_of_date} if as_of_date else None
        return self._as_dict(
            await self.get("/api/v1/reports/trial-balance", user_id, params=params)
        )

    async def get_profit_loss(
        self, user_id: str, start_date: str, end_date: str
    ) -> dict[str, Any]:
        """Get profit and loss report."""
        return self._as_dict(
            await self.get(
                "/api/v1/reports/profit-loss",
                user_id,
                params={"start_date": start_date, "end_date": end_date},
            )
        )

    async def get_balance_sheet(self, user_id: str, as_of_date: str) -> dict[str, Any]:
        """Get balance sheet report."""
        return self._as_dict(
            await self.get(
                "/api/v1/reports/balance-sheet", user_id, params={"as_of_date": as_of_date}
            )
        )

    # === Periods & Ledger ===

    async def list_accounting_periods(
        self, user_id: str, year: int | None = None
    ) -> list[dict[str, Any]]:
        """List explicitly recorded accounting periods."""
        params = {"year": year} if year else None
        result = await self.get("/api/v1/accounting-periods", user_id, params=params)
        return self._extract_items(result)

    async def search_ledger_transactions(
        self,
        user_id: str,
        query: str,
        start_date: str | None = None,
        end_date: str | None = None,
        limit: int = 20,
    ) -> list[dict[str, Any]]:
        """Search ledger transactions by description, reference or entry number."""
        params: dict[str, Any] = {"q": query, "limit": self._clamp_limit(limit)}
        if start_date:
            params["start_date"] = start_date
        if end_date:
            params["end_date"] = end_date
        result = await self.get("/api/v1/ledger/transactions", user_id, params=params)
        return self._extract_items(result)
