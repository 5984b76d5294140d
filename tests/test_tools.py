"""Tests for the bookkeeping tools, run through the executor."""

from unittest.mock import AsyncMock

import pytest

from bookkeeping_agent.clients.bookkeeping_api import NotFoundError
from bookkeeping_agent.config import AgentLimits
from bookkeeping_agent.tools import TOOL_REGISTRY, ToolExecutor


@pytest.fixture
def executor(tool_context):
    return ToolExecutor(TOOL_REGISTRY, tool_context, AgentLimits(max_tool_calls_per_request=20))


class TestReadTools:
    """Tests for read-only tools."""

    @pytest.mark.asyncio
    async def test_list_invoices(self, executor, mock_backend, user_id):
        """Test invoices are listed with a count."""
        mock_backend.list_invoices = AsyncMock(return_value=[{"id": "inv-1"}, {"id": "inv-2"}])

        result = await executor.execute("list_invoices", {"status": "overdue"})

        assert result["success"] is True
        assert result["result"]["count"] == 2
        mock_backend.list_invoices.assert_awaited_once_with(user_id, limit=10, status="overdue")

    @pytest.mark.asyncio
    async def test_list_invoices_rejects_unknown_status(self, executor, mock_backend):
        """Test the status filter is restricted to known values."""
        mock_backend.list_invoices = AsyncMock(return_value=[])
        result = await executor.execute("list_invoices", {"status": "lost"})
        assert result["error_type"] == "ValidationError"
        mock_backend.list_invoices.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_list_invoices_capped(self, executor, mock_backend):
        """Test large invoice lists are truncated to the family cap."""
        mock_backend.list_invoices = AsyncMock(
            return_value=[{"id": f"inv-{i}"} for i in range(75)]
        )
        result = await executor.execute("list_invoices", {"limit": 100})
        assert len(result["result"]["invoices"]) == 50
        assert result["result"]["total"] == 75

    @pytest.mark.asyncio
    async def test_missing_invoice(self, executor, mock_backend):
        """Test a missing invoice is a resolution error."""
        mock_backend.get_invoice = AsyncMock(side_effect=NotFoundError("Not found", 404))
        result = await executor.execute("get_invoice_details", {"invoice_id": "inv-404"})
        assert result["error_type"] == "ResolutionError"

    @pytest.mark.asyncio
    async def test_list_accounts(self, executor):
        """Test accounts are returned with code and type."""
        result = await executor.execute("list_accounts", {})
        accounts = result["result"]["accounts"]
        assert accounts[0] == {
            "id": "acc-cash",
            "code": "1100",
            "name": "Cash",
            "account_type": "asset",
        }

    @pytest.mark.asyncio
    async def test_trial_balance_defaults_to_today(self, executor, mock_backend, user_id):
        """Test the trial balance defaults to the current date."""
        mock_backend.get_trial_balance = AsyncMock(return_value={"total_debit": "0"})
        result = await executor.execute("get_trial_balance", {})
        assert result["result"]["as_of_date"] == "2025-06-15"
        mock_backend.get_trial_balance.assert_awaited_once_with(user_id, as_of_date="2025-06-15")

    @pytest.mark.asyncio
    async def test_bad_date_rejected(self, executor):
        """Test report dates must be YYYY-MM-DD."""
        result = await executor.execute(
            "get_profit_and_loss", {"start_date": "01/06/2025", "end_date": "2025-06-30"}
        )
        assert result["error_type"] == "ValidationError"

    @pytest.mark.asyncio
    async def test_periods_implicitly_open(self, executor, mock_backend):
        """Test no period records means every period is open."""
        mock_backend.list_accounting_periods = AsyncMock(return_value=[])
        result = await executor.execute("get_accounting_period_status", {})
        assert result["result"]["all_open"] is True
        assert "implicitly open" in result["result"]["message"]

    @pytest.mark.asyncio
    async def test_closed_period_reported(self, executor, mock_backend):
        """Test closed periods are reported."""
        mock_backend.list_accounting_periods = AsyncMock(
            return_value=[{"name": "2025-05", "status": "closed"}]
        )
        result = await executor.execute("get_accounting_period_status", {"year": 2025})
        assert result["result"]["all_open"] is False

    @pytest.mark.asyncio
    async def test_unpaid_bills_flag_overdue(self, executor, mock_backend, user_id):
        """Test unpaid bills are totalled and past-due bills flagged."""
        mock_backend.get_unpaid_bills = AsyncMock(
            return_value=[
                {"id": "bill-1", "total": "120.50", "due_date": "2025-06-01"},
                {"id": "bill-2", "total": "79.50", "due_date": "2025-07-01"},
            ]
        )

        result = await executor.execute("get_unpaid_bills", {"vendor_id": "ven-1"})

        bills = result["result"]["bills"]
        assert [b["is_overdue"] for b in bills] == [True, False]
        assert result["result"]["total_unpaid"] == "MYR 200.00"
        assert result["result"]["total_unpaid_raw"] == "200.00"
        mock_backend.get_unpaid_bills.assert_awaited_once_with(user_id, vendor_id="ven-1")

    @pytest.mark.asyncio
    async def test_aging_report(self, executor, mock_backend):
        """Test aging buckets are summarized with their totals."""
        mock_backend.get_aging_report = AsyncMock(
            return_value={"totals": {"current": 2, "over_90": 1, "total": "900.00"}}
        )

        result = await executor.execute("get_aging_report", {})

        breakdown = result["result"]["breakdown"]
        assert breakdown["current"] == "2 invoices (not yet due)"
        assert breakdown["days_31_to_60"].startswith("0 invoices")
        assert result["result"]["total_unpaid"] == "900.00"

    @pytest.mark.asyncio
    async def test_dashboard_stats(self, executor, mock_backend):
        """Test dashboard figures are formatted and include quotations."""
        mock_backend.get_dashboard_stats = AsyncMock(
            return_value={"total_revenue": "12500", "overdue_count": 3}
        )
        mock_backend.get_quotation_stats = AsyncMock(
            return_value={"total": 10, "converted": 4, "conversion_rate": 40}
        )

        result = await executor.execute("get_dashboard_stats", {})

        assert result["result"]["total_revenue"] == "MYR 12,500.00"
        assert result["result"]["overdue_count"] == 3
        assert result["result"]["quotations"]["conversion_rate"] == "40%"

    @pytest.mark.asyncio
    async def test_customer_invoices_unknown_customer(self, executor, mock_backend):
        """Test an unknown customer is a resolution error."""
        mock_backend.get_customer = AsyncMock(side_effect=NotFoundError("Not found", 404))
        result = await executor.execute("get_customer_invoices", {"customer_id": "cus-404"})
        assert result["error_type"] == "ResolutionError"
        mock_backend.get_customer_invoices.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_list_quotations(self, executor, mock_backend, user_id):
        """Test quotations are listed by status."""
        mock_backend.list_quotations = AsyncMock(return_value=[{"id": "quo-1"}])
        result = await executor.execute("list_quotations", {"status": "accepted"})
        assert result["result"]["count"] == 1
        mock_backend.list_quotations.assert_awaited_once_with(user_id, limit=10, status="accepted")


class TestWriteTools:
    """Tests for ledger-writing tools."""

    @pytest.mark.asyncio
    async def test_record_cash_sale(self, executor, mock_backend):
        """Test a cash sale of 100 posts DR Cash, CR Sales Revenue."""
        result = await executor.execute(
            "record_sales_revenue",
            {
                "amount": "100.00",
                "description": "Walk-in customer",
                "entry_date": "2025-06-15",
                "payment_method": "cash",
            },
        )

        assert result["success"] is True
        posted = result["result"]
        assert posted["status"] == "posted"
        assert posted["debit_accounts"] == ["1100 Cash"]
        assert posted["credit_accounts"] == ["4100 Sales Revenue"]
        mock_backend.post_journal_entry.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_credit_sale_uses_receivable(self, executor):
        """Test a sale on credit debits Accounts Receivable."""
        result = await executor.execute(
            "record_sales_revenue",
            {
                "amount": 40,
                "description": "Consulting",
                "entry_date": "2025-06-15",
                "payment_method": "credit",
            },
        )
        assert result["result"]["debit_accounts"] == ["1200 Accounts Receivable"]

    @pytest.mark.asyncio
    async def test_record_expense(self, executor):
        """Test a rent expense paid by bank."""
        result = await executor.execute(
            "record_expense",
            {
                "amount": "1500",
                "description": "June rent",
                "entry_date": "2025-06-01",
                "expense_type": "rent",
                "payment_method": "bank",
            },
        )
        assert result["result"]["debit_accounts"] == ["6300 Rent Expense"]
        assert result["result"]["credit_accounts"] == ["1110 Bank - Maybank"]

    @pytest.mark.asyncio
    async def test_missing_expense_account(self, executor):
        """Test a missing expense account is reported, not guessed."""
        result = await executor.execute(
            "record_expense",
            {
                "amount": "20",
                "description": "Water bill",
                "entry_date": "2025-06-01",
                "expense_type": "utilities",
                "payment_method": "cash",
            },
        )
        assert result["error_type"] == "ResolutionError"

    @pytest.mark.asyncio
    async def test_non_positive_amount_rejected(self, executor, mock_backend):
        """Test amounts must be positive."""
        result = await executor.execute(
            "record_payment_received",
            {
                "amount": "0",
                "customer_name": "Acme",
                "entry_date": "2025-06-15",
                "deposit_to": "bank",
            },
        )
        assert result["error_type"] == "ValidationError"
        mock_backend.create_journal_entry.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_payment_made(self, executor):
        """Test a vendor payment debits Accounts Payable."""
        result = await executor.execute(
            "record_payment_made",
            {
                "amount": "300",
                "vendor_name": "Stationery Co",
                "entry_date": "2025-06-15",
                "paid_from": "cash",
            },
        )
        assert result["result"]["debit_accounts"] == ["2100 Accounts Payable"]
        assert result["result"]["credit_accounts"] == ["1100 Cash"]

    @pytest.mark.asyncio
    async def test_post_invoice_to_ledger(self, executor, mock_backend):
        """Test an invoice posts its total to AR and Sales."""
        mock_backend.get_invoice = AsyncMock(
            return_value={
                "invoice_number": "INV-0042",
                "customer_name": "Acme",
                "invoice_date": "2025-06-10",
                "lines": [
                    {"quantity": 2, "unit_price": "150.00"},
                    {"quantity": 1, "unit_price": "50.00"},
                ],
            }
        )

        result = await executor.execute("post_invoice_to_ledger", {"invoice_id": "inv-42"})

        assert result["result"]["amount"] == "MYR 350.00"
        assert result["result"]["invoice_number"] == "INV-0042"
        sent = mock_backend.create_journal_entry.call_args.args[1]
        assert sent["entry_date"] == "2025-06-10"
        assert sent["source_type"] == "invoice"

    @pytest.mark.asyncio
    async def test_unbalanced_journal_entry(self, executor, mock_backend):
        """Test an unbalanced manual entry is rejected with both totals."""
        result = await executor.execute(
            "create_journal_entry",
            {
                "entry_date": "2025-06-15",
                "description": "Adjustment",
                "lines": [
                    {"account_id": "1100", "debit": "100.00"},
                    {"account_id": "4100", "credit": "99.00"},
                ],
            },
        )

        assert result["error_type"] == "InvariantError"
        assert "MYR 100.00" in result["error"]
        assert "MYR 99.00" in result["error"]
        assert mock_backend.method_calls == []

    @pytest.mark.asyncio
    async def test_journal_entry_needs_two_lines(self, executor):
        """Test a one-line manual entry fails validation."""
        result = await executor.execute(
            "create_journal_entry",
            {
                "entry_date": "2025-06-15",
                "description": "Half",
                "lines": [{"account_id": "1100", "debit": "10"}],
            },
        )
        assert result["error_type"] == "ValidationError"

    @pytest.mark.asyncio
    async def test_manual_entry_is_draft(self, executor, mock_backend):
        """Test manual entries are created as drafts."""
        result = await executor.execute(
            "create_journal_entry",
            {
                "entry_date": "2025-06-15",
                "description": "Owner drawings",
                "lines": [
                    {"account_id": "acc-office", "debit": "25"},
                    {"account_id": "acc-bank", "credit": "25"},
                ],
            },
        )
        assert result["result"]["status"] == "draft"
        assert "post_journal_entry" in result["result"]["message"]
        mock_backend.post_journal_entry.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_create_customer(self, executor, mock_backend, user_id):
        """Test customers are created through the backend."""
        mock_backend.create_customer = AsyncMock(return_value={"id": "cus-1", "name": "Acme"})
        result = await executor.execute(
            "create_customer", {"name": "Acme", "email": "ap@acme.example"}
        )
        assert result["result"]["customer"]["id"] == "cus-1"
        mock_backend.create_customer.assert_awaited_once_with(
            user_id, {"name": "Acme", "email": "ap@acme.example"}
        )

    @pytest.mark.asyncio
    async def test_create_customer_bad_email(self, executor):
        """Test malformed email addresses are rejected."""
        result = await executor.execute("create_customer", {"name": "Acme", "email": "nope"})
        assert result["error_type"] == "ValidationError"


class TestDocumentTools:
    """Tests for invoice, bill and quotation tools."""

    @pytest.mark.asyncio
    async def test_mark_invoice_as_paid(self, executor, mock_backend, user_id):
        """Test marking paid changes the status without touching the ledger."""
        mock_backend.get_invoice = AsyncMock(
            return_value={"invoice_number": "INV-0007", "status": "pending"}
        )
        mock_backend.update_invoice_status = AsyncMock(
            return_value={"status": "success", "paid_at": "2025-06-15"}
        )

        result = await executor.execute("mark_invoice_as_paid", {"invoice_id": "inv-7"})

        assert result["result"]["invoice"]["status"] == "success"
        assert "INV-0007" in result["result"]["message"]
        mock_backend.update_invoice_status.assert_awaited_once_with(user_id, "inv-7", "success")
        mock_backend.create_journal_entry.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invoice_already_paid(self, executor, mock_backend):
        """Test an invoice already paid is not updated again."""
        mock_backend.get_invoice = AsyncMock(
            return_value={"invoice_number": "INV-0007", "status": "success"}
        )
        result = await executor.execute("mark_invoice_as_paid", {"invoice_id": "inv-7"})
        assert result["error_type"] == "ValidationError"
        mock_backend.update_invoice_status.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_mark_missing_bill_as_paid(self, executor, mock_backend):
        """Test a missing bill is a resolution error."""
        mock_backend.get_bill = AsyncMock(side_effect=NotFoundError("Not found", 404))
        result = await executor.execute("mark_bill_as_paid", {"bill_id": "bill-404"})
        assert result["error_type"] == "ResolutionError"

    @pytest.mark.asyncio
    async def test_mark_bill_as_paid(self, executor, mock_backend, user_id):
        """Test bills move to paid with the vendor name kept."""
        mock_backend.get_bill = AsyncMock(
            return_value={"bill_number": "B-12", "status": "pending", "vendor_name": "Supply Co"}
        )
        mock_backend.update_bill_status = AsyncMock(return_value={"status": "paid"})

        result = await executor.execute("mark_bill_as_paid", {"bill_id": "bill-12"})

        assert result["result"]["bill"]["vendor_name"] == "Supply Co"
        mock_backend.update_bill_status.assert_awaited_once_with(user_id, "bill-12", "paid")

    @pytest.mark.asyncio
    async def test_create_invoice(self, executor, mock_backend, user_id):
        """Test invoices are created pending in the business currency."""
        mock_backend.get_customer = AsyncMock(return_value={"id": "cus-1", "name": "Acme"})
        mock_backend.create_invoice = AsyncMock(return_value={"id": "inv-9"})

        result = await executor.execute(
            "create_invoice",
            {
                "customer_id": "cus-1",
                "client_name": "Acme",
                "invoice_number": "INV-0009",
                "invoice_date": "2025-06-15",
                "due_date": "2025-07-15",
                "items": [
                    {"description": "Consulting", "quantity": "3", "unit_price": "200.00"},
                    {"description": "Travel", "quantity": "1", "unit_price": "45.50"},
                ],
            },
        )

        invoice = result["result"]["invoice"]
        assert invoice["id"] == "inv-9"
        assert invoice["amount"] == "MYR 645.50"
        assert invoice["item_count"] == 2
        sent = mock_backend.create_invoice.call_args.args[1]
        assert sent["currency"] == "MYR"
        assert sent["status"] == "pending"
        assert sent["customer_id"] == "cus-1"
        mock_backend.get_customer.assert_awaited_once_with(user_id, "cus-1")

    @pytest.mark.asyncio
    async def test_invoice_due_before_issue(self, executor, mock_backend):
        """Test a due date before the invoice date is rejected."""
        result = await executor.execute(
            "create_invoice",
            {
                "client_name": "Acme",
                "invoice_number": "INV-0010",
                "invoice_date": "2025-06-15",
                "due_date": "2025-06-01",
                "items": [{"description": "Consulting", "quantity": "1", "unit_price": "10"}],
            },
        )
        assert result["error_type"] == "ValidationError"
        mock_backend.create_invoice.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invoice_needs_items(self, executor, mock_backend):
        """Test an invoice without line items fails validation."""
        result = await executor.execute(
            "create_invoice",
            {
                "client_name": "Acme",
                "invoice_number": "INV-0011",
                "invoice_date": "2025-06-15",
                "items": [],
            },
        )
        assert result["error_type"] == "ValidationError"

    @pytest.mark.asyncio
    async def test_create_bill_unknown_vendor(self, executor, mock_backend):
        """Test a bill for an unknown vendor is not created."""
        mock_backend.get_vendor = AsyncMock(side_effect=NotFoundError("Not found", 404))
        result = await executor.execute(
            "create_bill",
            {
                "vendor_id": "ven-404",
                "bill_number": "B-1",
                "bill_date": "2025-06-15",
                "items": [{"description": "Paper", "quantity": "5", "unit_price": "4.00"}],
            },
        )
        assert result["error_type"] == "ResolutionError"
        mock_backend.create_bill.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_create_bill(self, executor, mock_backend):
        """Test bills carry the vendor name and item total."""
        mock_backend.get_vendor = AsyncMock(return_value={"id": "ven-1", "name": "Supply Co"})
        mock_backend.create_bill = AsyncMock(return_value={"id": "bill-3"})

        result = await executor.execute(
            "create_bill",
            {
                "vendor_id": "ven-1",
                "bill_number": "B-3",
                "bill_date": "2025-06-15",
                "currency": "USD",
                "items": [{"description": "Paper", "quantity": "5", "unit_price": "4.00"}],
            },
        )

        assert result["result"]["message"] == "Bill B-3 created from Supply Co"
        assert result["result"]["bill"]["amount"] == "USD 20.00"

    @pytest.mark.asyncio
    async def test_convert_quotation(self, executor, mock_backend, user_id):
        """Test quotations convert to a pending invoice."""
        mock_backend.get_quotation = AsyncMock(
            return_value={"quotation_number": "QUO-0003", "status": "accepted"}
        )
        mock_backend.convert_quotation_to_invoice = AsyncMock(
            return_value={"invoice_id": "inv-30", "quotation_id": "quo-3"}
        )

        result = await executor.execute("convert_quotation_to_invoice", {"quotation_id": "quo-3"})

        assert result["result"]["invoice"] == {"id": "inv-30", "status": "pending"}
        assert result["result"]["quotation"]["status"] == "converted"
        mock_backend.convert_quotation_to_invoice.assert_awaited_once_with(user_id, "quo-3")

    @pytest.mark.asyncio
    async def test_quotation_converted_once(self, executor, mock_backend):
        """Test a converted quotation is not converted again."""
        mock_backend.get_quotation = AsyncMock(
            return_value={"quotation_number": "QUO-0003", "status": "converted"}
        )
        result = await executor.execute("convert_quotation_to_invoice", {"quotation_id": "quo-3"})
        assert result["error_type"] == "ValidationError"
        mock_backend.convert_quotation_to_invoice.assert_not_awaited()


class TestMemoryTools:
    """Tests for memory and planning tools."""

    @pytest.mark.asyncio
    async def test_memory_unavailable(self, executor):
        """Test memory tools fail cleanly without a store."""
        result = await executor.execute("recall_memories", {"query": "currency"})
        assert result["error_type"] == "ValidationError"

    @pytest.mark.asyncio
    async def test_remember_then_recall(self, tool_context, memory_store):
        """Test a remembered preference can be recalled."""
        tool_context.memory = memory_store
        executor = ToolExecutor(TOOL_REGISTRY, tool_context)

        stored = await executor.execute(
            "remember_preference",
            {"key": "invoice_terms", "value": "Net 30 days", "category": "preference"},
        )
        assert stored["success"] is True

        recalled = await executor.execute("recall_memories", {"query": "invoice terms"})
        assert recalled["result"]["memories"] == [
            {"category": "preference", "key": "invoice_terms", "value": "Net 30 days"}
        ]

    @pytest.mark.asyncio
    async def test_update_user_context(self, tool_context, memory_store, user_id):
        """Test business context is updated."""
        tool_context.memory = memory_store
        executor = ToolExecutor(TOOL_REGISTRY, tool_context)

        result = await executor.execute(
            "update_user_context", {"company_name": "Kedai Runcit", "default_currency": "MYR"}
        )
        assert result["success"] is True
        context = await memory_store.get_user_context(user_id)
        assert context.company_name == "Kedai Runcit"

    @pytest.mark.asyncio
    async def test_update_user_context_requires_fields(self, tool_context, memory_store):
        """Test an empty context update is rejected."""
        tool_context.memory = memory_store
        executor = ToolExecutor(TOOL_REGISTRY, tool_context)
        result = await executor.execute("update_user_context", {})
        assert result["error_type"] == "ValidationError"

    @pytest.mark.asyncio
    async def test_think_step(self, executor):
        """Test think_step echoes the plan and names the next action."""
        result = await executor.execute(
            "think_step",
            {"thought": "Need revenue", "plan": ["get_profit_and_loss", "summarize"]},
        )
        assert result["result"]["next_action"] == "get_profit_and_loss"
        assert result["result"]["uncertainties"] == []

    @pytest.mark.asyncio
    async def test_validate_action(self, executor, mock_backend):
        """Test validate_action echoes the check and makes no backend call."""
        result = await executor.execute(
            "validate_action",
            {
                "action": "mark_invoice_as_paid",
                "target": "INV-0007",
                "expected_outcome": "Invoice status becomes paid",
            },
        )
        assert result["result"]["proceed"] is True
        assert result["result"]["risks"] == []
        assert mock_backend.method_calls == []
