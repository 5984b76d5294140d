"""Read-only tools over invoices, contacts, accounts and reports."""

from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, Field

from bookkeeping_agent.clients.bookkeeping_api import NotFoundError
from bookkeeping_agent.errors import ResolutionError
from bookkeeping_agent.ledger.guard import CENT, format_currency, to_decimal
from bookkeeping_agent.tools.registry import ToolCategory, ToolContext, ToolSpec

DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"

AGING_BUCKETS = (
    ("current", "not yet due"),
    ("days_1_to_30", "1-30 days overdue"),
    ("days_31_to_60", "31-60 days overdue"),
    ("days_61_to_90", "61-90 days overdue"),
    ("over_90", "over 90 days overdue"),
)


# === Input models ===


class ListInvoicesInput(BaseModel):
    limit: int = Field(default=10, ge=1, description="Number of invoices to return (default 10)")
    status: Literal["pending", "success", "overdue", "expired", "refunded"] | None = Field(
        default=None, description="Filter by invoice status"
    )


class GetInvoiceDetailsInput(BaseModel):
    invoice_id: str = Field(description="The invoice ID to look up")


class ListContactsInput(BaseModel):
    limit: int = Field(default=20, ge=1, description="Number of records to return (default 20)")


class SearchCustomersInput(BaseModel):
    query: str = Field(min_length=1, description="Search query (name, email or phone)")
    limit: int = Field(default=20, ge=1, description="Maximum results (default 20)")


class ListBillsInput(BaseModel):
    limit: int = Field(default=20, ge=1, description="Number of bills to return (default 20)")
    status: Literal["draft", "pending", "paid", "overdue", "cancelled"] | None = Field(
        default=None, description="Filter by bill status"
    )


class ListAccountsInput(BaseModel):
    account_type: Literal["asset", "liability", "equity", "revenue", "expense"] | None = Field(
        default=None, description="Filter by account type"
    )
    limit: int = Field(default=50, ge=1, description="Number of accounts to return (default 50)")


class AsOfDateInput(BaseModel):
    as_of_date: str | None = Field(
        default=None,
        pattern=DATE_PATTERN,
        description="Report date (YYYY-MM-DD), defaults to today",
    )


class ProfitAndLossInput(BaseModel):
    start_date: str = Field(pattern=DATE_PATTERN, description="Start of period (YYYY-MM-DD)")
    end_date: str = Field(pattern=DATE_PATTERN, description="End of period (YYYY-MM-DD)")


class PeriodStatusInput(BaseModel):
    year: int | None = Field(default=None, ge=1900, le=2200, description="Filter by year")


class SearchLedgerInput(BaseModel):
    query: str = Field(
        min_length=1, description="Searches description, reference and entry number"
    )
    start_date: str | None = Field(default=None, pattern=DATE_PATTERN)
    end_date: str | None = Field(default=None, pattern=DATE_PATTERN)
    limit: int = Field(default=20, ge=1, description="Maximum results (default 20)")


class DashboardStatsInput(BaseModel):
    include_quotations: bool = Field(
        default=True, description="Include quotation totals and conversion rate"
    )


class AgingReportInput(BaseModel):
    customer_id: str | None = Field(default=None, description="Limit the report to one customer")


class CustomerInvoicesInput(BaseModel):
    customer_id: str = Field(description="The customer ID")
    unpaid_only: bool = Field(default=False, description="Return only unpaid invoices")


class ListQuotationsInput(BaseModel):
    limit: int = Field(default=10, ge=1, description="Number of quotations to return (default 10)")
    status: Literal["draft", "sent", "accepted", "rejected", "expired", "converted"] | None = (
        Field(default=None, description="Filter by quotation status")
    )


class UnpaidBillsInput(BaseModel):
    vendor_id: str | None = Field(default=None, description="Limit to one vendor")


# === Handlers ===


async def list_invoices(ctx: ToolContext, args: ListInvoicesInput) -> dict[str, Any]:
    invoices = await ctx.backend.list_invoices(ctx.user_id, limit=args.limit, status=args.status)
    return {"invoices": invoices, "count": len(invoices)}


async def get_invoice_details(ctx: ToolContext, args: GetInvoiceDetailsInput) -> dict[str, Any]:
    try:
        invoice = await ctx.backend.get_invoice(ctx.user_id, args.invoice_id)
    except NotFoundError as e:
        raise ResolutionError(f"Invoice not found: {args.invoice_id}", role="invoice") from e
    return {"invoice": invoice}


async def list_customers(ctx: ToolContext, args: ListContactsInput) -> dict[str, Any]:
    customers = await ctx.backend.list_customers(ctx.user_id, limit=args.limit)
    return {"customers": customers, "count": len(customers)}


async def search_customers(ctx: ToolContext, args: SearchCustomersInput) -> dict[str, Any]:
    customers = await ctx.backend.search_customers(ctx.user_id, args.query, limit=args.limit)
    return {"customers": customers, "count": len(customers)}


async def list_vendors(ctx: ToolContext, args: ListContactsInput) -> dict[str, Any]:
    vendors = await ctx.backend.list_vendors(ctx.user_id, limit=args.limit)
    return {"vendors": vendors, "count": len(vendors)}


async def list_bills(ctx: ToolContext, args: ListBillsInput) -> dict[str, Any]:
    bills = await ctx.backend.list_bills(ctx.user_id, limit=args.limit, status=args.status)
    return {"bills": bills, "count": len(bills)}


async def list_accounts(ctx: ToolContext, args: ListAccountsInput) -> dict[str, Any]:
    accounts = await ctx.backend.find_all_accounts(ctx.user_id, account_type=args.account_type)
    accounts = [
        {
            "id": a.get("id"),
            "code": a.get("code"),
            "name": a.get("name"),
            "account_type": a.get("account_type"),
        }
        for a in accounts[: args.limit]
    ]
    return {"accounts": accounts, "count": len(accounts)}


async def get_trial_balance(ctx: ToolContext, args: AsOfDateInput) -> dict[str, Any]:
    as_of = args.as_of_date or ctx.clock().date().isoformat()
    report = await ctx.backend.get_trial_balance(ctx.user_id, as_of_date=as_of)
    return {"as_of_date": as_of, "report": report}


async def get_profit_and_loss(ctx: ToolContext, args: ProfitAndLossInput) -> dict[str, Any]:
    report = await ctx.backend.get_profit_loss(ctx.user_id, args.start_date, args.end_date)
    return {"period": {"start": args.start_date, "end": args.end_date}, "report": report}


async def get_balance_sheet(ctx: ToolContext, args: AsOfDateInput) -> dict[str, Any]:
    as_of = args.as_of_date or ctx.clock().date().isoformat()
    report = await ctx.backend.get_balance_sheet(ctx.user_id, as_of)
    return {"as_of_date": as_of, "report": report}


async def get_accounting_period_status(
    ctx: ToolContext, args: PeriodStatusInput
) -> dict[str, Any]:
    periods = await ctx.backend.list_accounting_periods(ctx.user_id, year=args.year)
    if not periods:
        return {
            "periods": [],
            "all_open": True,
            "message": (
                "No period records exist, so all accounting periods are implicitly open "
                "and ready for posting. Periods only get records when explicitly closed."
            ),
        }

    closed = [p for p in periods if p.get("status") in ("closed", "locked")]
    return {
        "periods": periods,
        "all_open": not closed,
        "message": (
            f"{len(closed)} period(s) closed or locked; any period without a record is open."
        ),
    }


async def search_ledger_transactions(
    ctx: ToolContext, args: SearchLedgerInput
) -> dict[str, Any]:
    transactions = await ctx.backend.search_ledger_transactions(
        ctx.user_id,
        args.query,
        start_date=args.start_date,
        end_date=args.end_date,
        limit=args.limit,
    )
    return {"transactions": transactions, "count": len(transactions)}


async def get_dashboard_stats(ctx: ToolContext, args: DashboardStatsInput) -> dict[str, Any]:
    stats = await ctx.backend.get_dashboard_stats(ctx.user_id)
    result: dict[str, Any] = {
        "total_revenue": format_currency(stats.get("total_revenue") or 0, ctx.currency),
        "pending_amount": format_currency(stats.get("pending_amount") or 0, ctx.currency),
        "revenue_this_month": format_currency(
            stats.get("revenue_this_month") or 0, ctx.currency
        ),
        "total_invoices": stats.get("total_invoices", 0),
        "overdue_count": stats.get("overdue_count", 0),
        "paid_this_month": stats.get("paid_this_month", 0),
        "currency": ctx.currency,
    }
    if args.include_quotations:
        quotations = await ctx.backend.get_quotation_stats(ctx.user_id)
        result["quotations"] = {
            "total": quotations.get("total", 0),
            "converted": quotations.get("converted", 0),
            "conversion_rate": f"{quotations.get('conversion_rate', 0)}%",
        }
    return result


async def get_aging_report(ctx: ToolContext, args: AgingReportInput) -> dict[str, Any]:
    report = await ctx.backend.get_aging_report(ctx.user_id, customer_id=args.customer_id)
    totals = report.get("totals") or {}
    return {
        "summary": totals,
        "breakdown": {
            bucket: f"{totals.get(bucket, 0)} invoices ({label})"
            for bucket, label in AGING_BUCKETS
        },
        "total_unpaid": totals.get("total", 0),
    }


async def get_customer_invoices(ctx: ToolContext, args: CustomerInvoicesInput) -> dict[str, Any]:
    try:
        customer = await ctx.backend.get_customer(ctx.user_id, args.customer_id)
    except NotFoundError as e:
        raise ResolutionError(f"Customer not found: {args.customer_id}", role="customer") from e
    invoices = await ctx.backend.get_customer_invoices(
        ctx.user_id, args.customer_id, unpaid_only=args.unpaid_only
    )
    return {
        "customer": {
            "id": customer.get("id", args.customer_id),
            "name": customer.get("name"),
            "email": customer.get("email"),
        },
        "invoices": invoices,
        "count": len(invoices),
    }


async def list_quotations(ctx: ToolContext, args: ListQuotationsInput) -> dict[str, Any]:
    quotations = await ctx.backend.list_quotations(
        ctx.user_id, limit=args.limit, status=args.status
    )
    return {"quotations": quotations, "count": len(quotations)}


def _is_overdue(bill: dict[str, Any], today: str) -> bool:
    if bill.get("status") == "overdue":
        return True
    due_date = bill.get("due_date")
    return bool(due_date) and str(due_date)[:10] < today


async def get_unpaid_bills(ctx: ToolContext, args: UnpaidBillsInput) -> dict[str, Any]:
    bills = await ctx.backend.get_unpaid_bills(ctx.user_id, vendor_id=args.vendor_id)
    today = ctx.clock().date().isoformat()
    total = sum((to_decimal(b.get("total") or 0) for b in bills), Decimal("0"))
    return {
        "bills": [
            {
                **bill,
                "is_overdue": _is_overdue(bill, today),
            }
            for bill in bills
        ],
        "count": len(bills),
        "total_unpaid": format_currency(total, ctx.currency),
        "total_unpaid_raw": str(total.quantize(CENT)),
    }


READ_TOOLS = [
    ToolSpec(
        name="list_invoices",
        description=(
            "List invoices with an optional status filter. Use this to show recent "
            "invoices or find invoices by status."
        ),
        input_model=ListInvoicesInput,
        handler=list_invoices,
        category=ToolCategory.READ,
        result_family="invoices",
    ),
    ToolSpec(
        name="get_invoice_details",
        description="Get detailed information about a specific invoice, including line items.",
        input_model=GetInvoiceDetailsInput,
        handler=get_invoice_details,
        category=ToolCategory.READ,
    ),
    ToolSpec(
        name="list_customers",
        description="List customers with their contact details and balances.",
        input_model=ListContactsInput,
        handler=list_customers,
        category=ToolCategory.READ,
        result_family="customers",
    ),
    ToolSpec(
        name="search_customers",
        description="Search customers by name, email or phone.",
        input_model=SearchCustomersInput,
        handler=search_customers,
        category=ToolCategory.READ,
        result_family="customers",
    ),
    ToolSpec(
        name="list_vendors",
        description="List vendors and suppliers.",
        input_model=ListContactsInput,
        handler=list_vendors,
        category=ToolCategory.READ,
        result_family="vendors",
    ),
    ToolSpec(
        name="list_bills",
        description="List bills (vendor invoices) with an optional status filter.",
        input_model=ListBillsInput,
        handler=list_bills,
        category=ToolCategory.READ,
        result_family="bills",
    ),
    ToolSpec(
        name="list_accounts",
        description=(
            "List the chart of accounts with codes, names and types. Use the returned IDs "
            "or codes in create_journal_entry."
        ),
        input_model=ListAccountsInput,
        handler=list_accounts,
        category=ToolCategory.READ,
        result_family="accounts",
    ),
    ToolSpec(
        name="get_trial_balance",
        description="Get the trial balance as of a date to check that debits equal credits.",
        input_model=AsOfDateInput,
        handler=get_trial_balance,
        category=ToolCategory.READ,
    ),
    ToolSpec(
        name="get_profit_and_loss",
        description="Get the profit and loss statement (revenue, expenses, net profit) for dates.",
        input_model=ProfitAndLossInput,
        handler=get_profit_and_loss,
        category=ToolCategory.READ,
    ),
    ToolSpec(
        name="get_balance_sheet",
        description="Get the balance sheet (assets, liabilities, equity) as of a date.",
        input_model=AsOfDateInput,
        handler=get_balance_sheet,
        category=ToolCategory.READ,
    ),
    ToolSpec(
        name="get_accounting_period_status",
        description=(
            "Get the status of accounting periods (open, closed or locked). Periods are "
            "implicitly open: if no period records exist, every period accepts postings."
        ),
        input_model=PeriodStatusInput,
        handler=get_accounting_period_status,
        category=ToolCategory.READ,
        result_family="periods",
    ),
    ToolSpec(
        name="search_ledger_transactions",
        description="Search ledger transactions by description, reference or entry number.",
        input_model=SearchLedgerInput,
        handler=search_ledger_transactions,
        category=ToolCategory.READ,
        result_family="transactions",
    ),
    ToolSpec(
        name="get_dashboard_stats",
        description=(
            "Get business performance figures: total revenue, pending and overdue invoices, "
            "revenue this month and the quotation conversion rate."
        ),
        input_model=DashboardStatsInput,
        handler=get_dashboard_stats,
        category=ToolCategory.READ,
    ),
    ToolSpec(
        name="get_aging_report",
        description=(
            "Get the accounts receivable aging report: unpaid invoices grouped as current, "
            "1-30, 31-60, 61-90 and over 90 days overdue."
        ),
        input_model=AgingReportInput,
        handler=get_aging_report,
        category=ToolCategory.READ,
    ),
    ToolSpec(
        name="get_customer_invoices",
        description="Get a customer's invoice history, optionally only the unpaid invoices.",
        input_model=CustomerInvoicesInput,
        handler=get_customer_invoices,
        category=ToolCategory.READ,
        result_family="invoices",
    ),
    ToolSpec(
        name="list_quotations",
        description="List quotations with an optional status filter.",
        input_model=ListQuotationsInput,
        handler=list_quotations,
        category=ToolCategory.READ,
        result_family="quotations",
    ),
    ToolSpec(
        name="get_unpaid_bills",
        description="Get bills that still need to be paid, with the total outstanding.",
        input_model=UnpaidBillsInput,
        handler=get_unpaid_bills,
        category=ToolCategory.READ,
        result_family="bills",
    ),
]
