"""Tools that create contacts and documents or write to the ledger.

Every ledger write goes through the balanced-entry guard; no handler here
calls the backend's journal operations directly.
"""

from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, Field

from bookkeeping_agent.clients.bookkeeping_api import NotFoundError
from bookkeeping_agent.errors import ResolutionError, ValidationError
from bookkeeping_agent.ledger.accounts import (
    ACCOUNTS_PAYABLE,
    ACCOUNTS_RECEIVABLE,
    EXPENSE_RULES,
    PAYMENT_METHOD_RULES,
    SALES_REVENUE,
    AccountRule,
)
from bookkeeping_agent.ledger.guard import (
    CENT,
    PostingAttempt,
    PostingLine,
    format_currency,
    to_decimal,
)
from bookkeeping_agent.tools.read_tools import DATE_PATTERN
from bookkeeping_agent.tools.registry import ToolCategory, ToolContext, ToolSpec

# === Input models ===


class ContactInput(BaseModel):
    name: str = Field(min_length=1, max_length=255, description="Full name or company name")
    email: str | None = Field(
        default=None, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$", description="Email address"
    )
    phone: str | None = Field(default=None, description="Phone number")
    address: str | None = Field(default=None, description="Billing address")


class RecordSalesRevenueInput(BaseModel):
    amount: Decimal = Field(gt=0, decimal_places=2, description="Sale amount")
    description: str = Field(min_length=1, description="e.g. 'Sales to ABC Corp'")
    entry_date: str = Field(pattern=DATE_PATTERN, description="Date (YYYY-MM-DD)")
    payment_method: Literal["cash", "bank", "credit"] = Field(
        description="cash=DR Cash, bank=DR Bank, credit=DR Accounts Receivable"
    )
    reference: str | None = Field(default=None, description="Invoice number or reference")


class RecordExpenseInput(BaseModel):
    amount: Decimal = Field(gt=0, decimal_places=2, description="Expense amount")
    description: str = Field(min_length=1, description="What the expense was for")
    entry_date: str = Field(pattern=DATE_PATTERN, description="Date (YYYY-MM-DD)")
    expense_type: Literal["office", "utilities", "rent", "salary", "supplies", "other"]
    payment_method: Literal["cash", "bank", "credit"] = Field(
        description="cash/bank=paid now, credit=on account (Accounts Payable)"
    )
    reference: str | None = Field(default=None, description="Bill number or reference")


class RecordPaymentReceivedInput(BaseModel):
    amount: Decimal = Field(gt=0, decimal_places=2, description="Payment amount")
    customer_name: str = Field(min_length=1, description="Who paid")
    entry_date: str = Field(pattern=DATE_PATTERN, description="Date (YYYY-MM-DD)")
    deposit_to: Literal["cash", "bank"] = Field(description="Where the money was deposited")
    reference: str | None = Field(default=None, description="Invoice or receipt number")


class RecordPaymentMadeInput(BaseModel):
    amount: Decimal = Field(gt=0, decimal_places=2, description="Payment amount")
    vendor_name: str = Field(min_length=1, description="Who was paid")
    entry_date: str = Field(pattern=DATE_PATTERN, description="Date (YYYY-MM-DD)")
    paid_from: Literal["cash", "bank"] = Field(description="Paid from cash or bank")
    reference: str | None = Field(default=None, description="Bill or cheque number")


class PostInvoiceInput(BaseModel):
    invoice_id: str = Field(description="Invoice ID to post")
    entry_date: str | None = Field(
        default=None, pattern=DATE_PATTERN, description="Defaults to the invoice date"
    )


class JournalLineInput(BaseModel):
    account_id: str = Field(description="Account ID or code from list_accounts")
    debit: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    credit: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    description: str | None = None


class CreateJournalEntryInput(BaseModel):
    entry_date: str = Field(pattern=DATE_PATTERN, description="Date (YYYY-MM-DD)")
    description: str = Field(min_length=1, description="Entry description")
    reference: str | None = None
    lines: list[JournalLineInput] = Field(
        min_length=2, description="Entry lines; debits must equal credits"
    )


class JournalEntryIdInput(BaseModel):
    entry_id: str = Field(description="The journal entry ID")


class ReverseJournalEntryInput(BaseModel):
    entry_id: str = Field(description="The journal entry ID to reverse")
    reason: str = Field(min_length=1, description="Reason for reversal")


class InvoiceIdInput(BaseModel):
    invoice_id: str = Field(description="The ID of the invoice")


class BillIdInput(BaseModel):
    bill_id: str = Field(description="The ID of the bill")


class QuotationIdInput(BaseModel):
    quotation_id: str = Field(description="The ID of the quotation to convert")


class DocumentItemInput(BaseModel):
    description: str = Field(min_length=1, description="Item or service description")
    quantity: Decimal = Field(gt=0, description="Quantity")
    unit_price: Decimal = Field(ge=0, decimal_places=2, description="Unit price")


class CreateInvoiceInput(BaseModel):
    customer_id: str | None = Field(default=None, description="Customer ID to link the invoice")
    client_name: str = Field(min_length=1, description="Customer or client name")
    client_address: str | None = Field(default=None, description="Customer or client address")
    invoice_number: str = Field(min_length=1, description="Invoice number, e.g. 'INV-0001'")
    invoice_date: str = Field(pattern=DATE_PATTERN, description="Invoice date (YYYY-MM-DD)")
    due_date: str | None = Field(
        default=None, pattern=DATE_PATTERN, description="Due date (YYYY-MM-DD)"
    )
    currency: str | None = Field(
        default=None, min_length=3, max_length=3, description="Defaults to the business currency"
    )
    items: list[DocumentItemInput] = Field(min_length=1, description="At least one line item")
    notes: str | None = None
    terms: str | None = Field(default=None, description="Payment terms")


class CreateBillInput(BaseModel):
    vendor_id: str | None = Field(default=None, description="Vendor ID to link the bill")
    bill_number: str = Field(min_length=1, description="Bill or invoice number from the vendor")
    description: str | None = None
    bill_date: str = Field(pattern=DATE_PATTERN, description="Bill date (YYYY-MM-DD)")
    due_date: str | None = Field(
        default=None, pattern=DATE_PATTERN, description="Due date (YYYY-MM-DD)"
    )
    currency: str | None = Field(
        default=None, min_length=3, max_length=3, description="Defaults to the business currency"
    )
    items: list[DocumentItemInput] = Field(min_length=1, description="At least one line item")
    notes: str | None = None


# === Contact handlers ===


def _contact_payload(args: ContactInput) -> dict[str, Any]:
    return args.model_dump(mode="json", exclude_none=True)


async def create_customer(ctx: ToolContext, args: ContactInput) -> dict[str, Any]:
    customer = await ctx.backend.create_customer(ctx.user_id, _contact_payload(args))
    return {"customer": customer, "message": f"Customer '{args.name}' created"}


async def create_vendor(ctx: ToolContext, args: ContactInput) -> dict[str, Any]:
    vendor = await ctx.backend.create_vendor(ctx.user_id, _contact_payload(args))
    return {"vendor": vendor, "message": f"Vendor '{args.name}' created"}


# === Smart posting handlers ===


def _two_line_attempt(
    entry_date: str,
    description: str,
    reference: str | None,
    amount: Decimal,
    debit: AccountRule,
    credit: AccountRule,
    debit_memo: str,
    credit_memo: str,
) -> PostingAttempt:
    return PostingAttempt(
        entry_date=entry_date,
        description=description,
        reference=reference,
        source_type="ai_agent",
        lines=[
            PostingLine(account=debit, debit=amount, description=debit_memo),
            PostingLine(account=credit, credit=amount, description=credit_memo),
        ],
    )


async def record_sales_revenue(ctx: ToolContext, args: RecordSalesRevenueInput) -> dict[str, Any]:
    debit = ACCOUNTS_RECEIVABLE if args.payment_method == "credit" else PAYMENT_METHOD_RULES[
        args.payment_method
    ]
    attempt = _two_line_attempt(
        args.entry_date,
        f"Sales: {args.description}",
        args.reference,
        args.amount,
        debit,
        SALES_REVENUE,
        "AR raised" if args.payment_method == "credit" else f"{args.payment_method} received",
        "Sales revenue",
    )
    return await ctx.guard.submit(
        ctx.user_id,
        attempt,
        auto_post=True,
        action="record_sales_revenue",
        session_id=ctx.session_id,
    )


async def record_expense(ctx: ToolContext, args: RecordExpenseInput) -> dict[str, Any]:
    credit = ACCOUNTS_PAYABLE if args.payment_method == "credit" else PAYMENT_METHOD_RULES[
        args.payment_method
    ]
    attempt = _two_line_attempt(
        args.entry_date,
        f"Expense: {args.description}",
        args.reference,
        args.amount,
        EXPENSE_RULES[args.expense_type],
        credit,
        args.description,
        f"Payment via {args.payment_method}",
    )
    return await ctx.guard.submit(
        ctx.user_id,
        attempt,
        auto_post=True,
        action="record_expense",
        session_id=ctx.session_id,
    )


async def record_payment_received(
    ctx: ToolContext, args: RecordPaymentReceivedInput
) -> dict[str, Any]:
    attempt = _two_line_attempt(
        args.entry_date,
        f"Payment received from {args.customer_name}",
        args.reference,
        args.amount,
        PAYMENT_METHOD_RULES[args.deposit_to],
        ACCOUNTS_RECEIVABLE,
        f"Deposited to {args.deposit_to}",
        f"Payment from {args.customer_name}",
    )
    return await ctx.guard.submit(
        ctx.user_id,
        attempt,
        auto_post=True,
        action="record_payment_received",
        session_id=ctx.session_id,
    )


async def record_payment_made(ctx: ToolContext, args: RecordPaymentMadeInput) -> dict[str, Any]:
    attempt = _two_line_attempt(
        args.entry_date,
        f"Payment to {args.vendor_name}",
        args.reference,
        args.amount,
        ACCOUNTS_PAYABLE,
        PAYMENT_METHOD_RULES[args.paid_from],
        f"Paid to {args.vendor_name}",
        f"From {args.paid_from}",
    )
    return await ctx.guard.submit(
        ctx.user_id,
        attempt,
        auto_post=True,
        action="record_payment_made",
        session_id=ctx.session_id,
    )


def _invoice_total(invoice: dict[str, Any]) -> Decimal:
    for key in ("total_amount", "total"):
        if invoice.get(key) not in (None, ""):
            return to_decimal(invoice[key])
    lines = invoice.get("lines") or invoice.get("items") or []
    return sum(
        (
            to_decimal(line.get("quantity", 1)) * to_decimal(line.get("unit_price", 0))
            for line in lines
        ),
        Decimal("0"),
    )


async def post_invoice_to_ledger(ctx: ToolContext, args: PostInvoiceInput) -> dict[str, Any]:
    try:
        invoice = await ctx.backend.get_invoice(ctx.user_id, args.invoice_id)
    except NotFoundError as e:
        raise ResolutionError(f"Invoice not found: {args.invoice_id}", role="invoice") from e

    total = _invoice_total(invoice)
    if total <= 0:
        raise ValidationError(f"Invoice {args.invoice_id} has no billable amount")

    invoice_number = invoice.get("invoice_number") or args.invoice_id
    client_name = invoice.get("customer_name") or invoice.get("client_name") or "Unknown"
    entry_date = args.entry_date or invoice.get("invoice_date") or ctx.clock().date().isoformat()

    attempt = PostingAttempt(
        entry_date=entry_date,
        description=f"Invoice {invoice_number} - {client_name}",
        reference=invoice_number,
        source_type="invoice",
        source_id=args.invoice_id,
        lines=[
            PostingLine(
                account=ACCOUNTS_RECEIVABLE, debit=total, description=f"AR - {client_name}"
            ),
            PostingLine(
                account=SALES_REVENUE, credit=total, description=f"Sales - {invoice_number}"
            ),
        ],
    )
    result = await ctx.guard.submit(
        ctx.user_id,
        attempt,
        auto_post=True,
        action="post_invoice_to_ledger",
        session_id=ctx.session_id,
    )
    result["invoice_number"] = invoice_number
    result["client_name"] = client_name
    return result


# === Document handlers ===


async def _fetch(lookup, ctx: ToolContext, entity_id: str, role: str) -> dict[str, Any]:
    try:
        return await lookup(ctx.user_id, entity_id)
    except NotFoundError as e:
        raise ResolutionError(f"{role.capitalize()} not found: {entity_id}", role=role) from e


def _items_payload(items: list[DocumentItemInput]) -> tuple[list[dict[str, Any]], Decimal]:
    payload = [item.model_dump(mode="json") for item in items]
    total = sum((item.quantity * item.unit_price for item in items), Decimal("0"))
    return payload, total.quantize(CENT)


def _check_due_date(issued: str, due: str | None) -> None:
    if due is not None and due < issued:
        raise ValidationError(f"Due date {due} is before the document date {issued}")


async def mark_invoice_as_paid(ctx: ToolContext, args: InvoiceIdInput) -> dict[str, Any]:
    invoice = await _fetch(ctx.backend.get_invoice, ctx, args.invoice_id, "invoice")
    invoice_number = invoice.get("invoice_number") or args.invoice_id
    if invoice.get("status") == "success":
        raise ValidationError(f"Invoice {invoice_number} is already marked as paid")

    updated = await ctx.backend.update_invoice_status(ctx.user_id, args.invoice_id, "success")
    return {
        "success": True,
        "message": f"Invoice {invoice_number} has been marked as paid",
        "invoice": {
            "id": args.invoice_id,
            "invoice_number": invoice_number,
            "status": updated.get("status", "success"),
            "paid_at": updated.get("paid_at"),
        },
    }


async def mark_bill_as_paid(ctx: ToolContext, args: BillIdInput) -> dict[str, Any]:
    bill = await _fetch(ctx.backend.get_bill, ctx, args.bill_id, "bill")
    bill_number = bill.get("bill_number") or args.bill_id
    if bill.get("status") == "paid":
        raise ValidationError(f"Bill {bill_number} is already marked as paid")

    updated = await ctx.backend.update_bill_status(ctx.user_id, args.bill_id, "paid")
    return {
        "success": True,
        "message": f"Bill {bill_number} has been marked as paid",
        "bill": {
            "id": args.bill_id,
            "bill_number": bill_number,
            "vendor_name": bill.get("vendor_name"),
            "status": updated.get("status", "paid"),
            "paid_at": updated.get("paid_at"),
        },
    }


async def create_invoice(ctx: ToolContext, args: CreateInvoiceInput) -> dict[str, Any]:
    _check_due_date(args.invoice_date, args.due_date)
    if args.customer_id:
        await _fetch(ctx.backend.get_customer, ctx, args.customer_id, "customer")

    currency = args.currency or ctx.currency
    items, total = _items_payload(args.items)
    payload = args.model_dump(mode="json", exclude_none=True, exclude={"items", "currency"})
    invoice = await ctx.backend.create_invoice(
        ctx.user_id, {**payload, "currency": currency, "items": items, "status": "pending"}
    )
    return {
        "success": True,
        "message": f"Invoice {args.invoice_number} created for {args.client_name}",
        "invoice": {
            "id": invoice.get("id"),
            "invoice_number": args.invoice_number,
            "client_name": args.client_name,
            "amount": format_currency(total, currency),
            "amount_raw": str(total),
            "invoice_date": args.invoice_date,
            "due_date": args.due_date,
            "item_count": len(items),
            "status": "pending",
        },
    }


async def create_bill(ctx: ToolContext, args: CreateBillInput) -> dict[str, Any]:
    _check_due_date(args.bill_date, args.due_date)
    vendor_name = None
    if args.vendor_id:
        vendor = await _fetch(ctx.backend.get_vendor, ctx, args.vendor_id, "vendor")
        vendor_name = vendor.get("name")

    currency = args.currency or ctx.currency
    items, total = _items_payload(args.items)
    payload = args.model_dump(mode="json", exclude_none=True, exclude={"items", "currency"})
    bill = await ctx.backend.create_bill(
        ctx.user_id, {**payload, "currency": currency, "items": items, "status": "pending"}
    )
    suffix = f" from {vendor_name}" if vendor_name else ""
    return {
        "success": True,
        "message": f"Bill {args.bill_number} created{suffix}",
        "bill": {
            "id": bill.get("id"),
            "bill_number": args.bill_number,
            "vendor_name": vendor_name,
            "amount": format_currency(total, currency),
            "amount_raw": str(total),
            "bill_date": args.bill_date,
            "due_date": args.due_date,
            "item_count": len(items),
            "status": "pending",
        },
    }


async def convert_quotation_to_invoice(
    ctx: ToolContext, args: QuotationIdInput
) -> dict[str, Any]:
    quotation = await _fetch(ctx.backend.get_quotation, ctx, args.quotation_id, "quotation")
    quotation_number = quotation.get("quotation_number") or args.quotation_id
    if quotation.get("status") == "converted":
        raise ValidationError(f"Quotation {quotation_number} has already been converted")

    result = await ctx.backend.convert_quotation_to_invoice(ctx.user_id, args.quotation_id)
    return {
        "success": True,
        "message": f"Quotation {quotation_number} has been converted to an invoice",
        "invoice": {"id": result.get("invoice_id"), "status": "pending"},
        "quotation": {
            "id": args.quotation_id,
            "quotation_number": quotation_number,
            "status": "converted",
        },
    }



# === Manual journal handlers ===


async def create_journal_entry(ctx: ToolContext, args: CreateJournalEntryInput) -> dict[str, Any]:
    attempt = PostingAttempt(
        entry_date=args.entry_date,
        description=args.description,
        reference=args.reference,
        source_type="manual",
        lines=[
            PostingLine(
                account=line.account_id,
                debit=line.debit,
                credit=line.credit,
                description=line.description,
            )
            for line in args.lines
        ],
    )
    result = await ctx.guard.submit(
        ctx.user_id,
        attempt,
        auto_post=False,
        action="create_journal_entry",
        session_id=ctx.session_id,
    )
    result["message"] += " (draft, use post_journal_entry to post)"
    return result


async def post_journal_entry(ctx: ToolContext, args: JournalEntryIdInput) -> dict[str, Any]:
    return await ctx.guard.post_draft(
        ctx.user_id, args.entry_id, action="post_journal_entry", session_id=ctx.session_id
    )


async def reverse_journal_entry(
    ctx: ToolContext, args: ReverseJournalEntryInput
) -> dict[str, Any]:
    return await ctx.guard.reverse(
        ctx.user_id,
        args.entry_id,
        args.reason,
        action="reverse_journal_entry",
        session_id=ctx.session_id,
    )


WRITE_TOOLS = [
    ToolSpec(
        name="create_customer",
        description="Create a new customer. Returns the created customer.",
        input_model=ContactInput,
        handler=create_customer,
        category=ToolCategory.WRITE,
        audit_resource="customer",
    ),
    ToolSpec(
        name="create_vendor",
        description="Create a new vendor or supplier.",
        input_model=ContactInput,
        handler=create_vendor,
        category=ToolCategory.WRITE,
        audit_resource="vendor",
    ),
    ToolSpec(
        name="record_sales_revenue",
        description=(
            "Record a sale with automatic double entry and post it. Use for 'made a sale', "
            "'revenue from'. DR Cash/Bank/Accounts Receivable, CR Sales Revenue."
        ),
        input_model=RecordSalesRevenueInput,
        handler=record_sales_revenue,
        category=ToolCategory.WRITE,
    ),
    ToolSpec(
        name="record_expense",
        description=(
            "Record an expense with automatic double entry and post it. Use for 'paid for', "
            "'bought'. DR the expense account, CR Cash/Bank/Accounts Payable."
        ),
        input_model=RecordExpenseInput,
        handler=record_expense,
        category=ToolCategory.WRITE,
    ),
    ToolSpec(
        name="record_payment_received",
        description="Record a customer payment. DR Cash/Bank, CR Accounts Receivable.",
        input_model=RecordPaymentReceivedInput,
        handler=record_payment_received,
        category=ToolCategory.WRITE,
    ),
    ToolSpec(
        name="record_payment_made",
        description="Record a payment to a vendor. DR Accounts Payable, CR Cash/Bank.",
        input_model=RecordPaymentMadeInput,
        handler=record_payment_made,
        category=ToolCategory.WRITE,
    ),
    ToolSpec(
        name="post_invoice_to_ledger",
        description=(
            "Post an invoice to the ledger. DR Accounts Receivable, CR Sales Revenue for "
            "the invoice total."
        ),
        input_model=PostInvoiceInput,
        handler=post_invoice_to_ledger,
        category=ToolCategory.WRITE,
    ),
    ToolSpec(
        name="create_journal_entry",
        description=(
            "Create a custom draft journal entry. Only for entries the smart tools above "
            "do not cover. Debits must equal credits across at least two accounts."
        ),
        input_model=CreateJournalEntryInput,
        handler=create_journal_entry,
        category=ToolCategory.WRITE,
    ),
    ToolSpec(
        name="post_journal_entry",
        description="Post a draft journal entry to the ledger, updating account balances.",
        input_model=JournalEntryIdInput,
        handler=post_journal_entry,
        category=ToolCategory.WRITE,
    ),
    ToolSpec(
        name="reverse_journal_entry",
        description="Reverse a posted journal entry with an equal and opposite entry.",
        input_model=ReverseJournalEntryInput,
        handler=reverse_journal_entry,
        category=ToolCategory.WRITE,
    ),
    ToolSpec(
        name="mark_invoice_as_paid",
        description=(
            "Mark an invoice as paid once the user confirms payment was received. Changes "
            "the invoice status only; use record_payment_received to record the money."
        ),
        input_model=InvoiceIdInput,
        handler=mark_invoice_as_paid,
        category=ToolCategory.WRITE,
        audit_resource="invoice",
    ),
    ToolSpec(
        name="mark_bill_as_paid",
        description=(
            "Mark a bill as paid once the user has paid the vendor. Changes the bill status "
            "only; use record_payment_made to record the money."
        ),
        input_model=BillIdInput,
        handler=mark_bill_as_paid,
        category=ToolCategory.WRITE,
        audit_resource="bill",
    ),
    ToolSpec(
        name="create_invoice",
        description=(
            "Create a pending invoice for a customer with at least one line item. Use "
            "post_invoice_to_ledger afterwards to record it in the books."
        ),
        input_model=CreateInvoiceInput,
        handler=create_invoice,
        category=ToolCategory.WRITE,
        audit_resource="invoice",
    ),
    ToolSpec(
        name="create_bill",
        description=(
            "Create a pending bill (accounts payable) from a vendor invoice that needs "
            "to be paid."
        ),
        input_model=CreateBillInput,
        handler=create_bill,
        category=ToolCategory.WRITE,
        audit_resource="bill",
    ),
    ToolSpec(
        name="convert_quotation_to_invoice",
        description="Convert an accepted quotation into a pending invoice.",
        input_model=QuotationIdInput,
        handler=convert_quotation_to_invoice,
        category=ToolCategory.WRITE,
        audit_resource="quotation",
    ),
]
