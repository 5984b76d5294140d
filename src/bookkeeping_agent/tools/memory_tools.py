"""Memory and planning tools."""

from typing import Any, Literal

from pydantic import BaseModel, Field

from bookkeeping_agent.errors import ValidationError
from bookkeeping_agent.memory.models import MemoryCategory, MemoryRecord, MemorySource
from bookkeeping_agent.tools.registry import ToolCategory, ToolContext, ToolSpec

# Confidence assigned to memories the user states in conversation
CONVERSATION_CONFIDENCE = 0.9
RECALL_LIMIT = 5


class RememberPreferenceInput(BaseModel):
    key: str = Field(
        min_length=1,
        max_length=100,
        description="Short descriptive key, e.g. 'invoice_prefix' or 'preferred_currency'",
    )
    value: str = Field(min_length=1, description="The content to remember")
    category: Literal["preference", "fact", "instruction"] = Field(
        description=(
            "preference (likes/dislikes), fact (business info), instruction (how to do things)"
        )
    )


class RecallMemoriesInput(BaseModel):
    query: str = Field(description="Keywords to search remembered preferences and facts")


class UpdateUserContextInput(BaseModel):
    company_name: str | None = Field(default=None, description="Company or business name")
    default_currency: str | None = Field(
        default=None, min_length=3, max_length=3, description="Currency code, e.g. MYR or USD"
    )
    fiscal_year_end: str | None = Field(
        default=None, pattern=r"^\d{2}-\d{2}$", description="Fiscal year end (MM-DD)"
    )
    industry: str | None = Field(default=None, description="Business industry")
    invoice_prefix: str | None = Field(default=None, description="Invoice number prefix")
    quotation_prefix: str | None = Field(default=None, description="Quotation number prefix")


class ThinkStepInput(BaseModel):
    thought: str = Field(description="Your reasoning about the current situation")
    plan: list[str] = Field(description="Steps you plan to take")
    uncertainties: list[str] = Field(
        default_factory=list, description="Things that might need clarification"
    )


class ValidateActionInput(BaseModel):
    action: str = Field(description="The action you are about to take")
    target: str = Field(description="What you are acting on, e.g. an invoice ID or customer name")
    expected_outcome: str = Field(description="What you expect to happen")
    risks: list[str] = Field(default_factory=list, description="Potential risks or issues")


def _require_memory(ctx: ToolContext):
    if ctx.memory is None:
        raise ValidationError("Long-term memory is not available in this conversation")
    return ctx.memory


async def remember_preference(ctx: ToolContext, args: RememberPreferenceInput) -> dict[str, Any]:
    memory = _require_memory(ctx)
    record = await memory.store_memory(
        ctx.user_id,
        MemoryRecord(
            user_id=ctx.user_id,
            category=MemoryCategory(args.category),
            key=args.key,
            value=args.value,
            confidence=CONVERSATION_CONFIDENCE,
            source_type=MemorySource.CONVERSATION,
            source_session_id=ctx.session_id or None,
        ),
    )
    return {
        "memory_id": record.id,
        "message": f'I\'ll remember that: "{args.key}" = "{args.value}"',
    }


async def recall_memories(ctx: ToolContext, args: RecallMemoriesInput) -> dict[str, Any]:
    memory = _require_memory(ctx)
    records = await memory.search_memories(ctx.user_id, args.query, limit=RECALL_LIMIT)
    if not records:
        return {"message": "No relevant memories found", "memories": []}
    return {
        "message": f"Found {len(records)} relevant memories",
        "memories": [
            {"category": r.category.value, "key": r.key, "value": r.value} for r in records
        ],
    }


async def update_user_context(ctx: ToolContext, args: UpdateUserContextInput) -> dict[str, Any]:
    memory = _require_memory(ctx)
    updates = args.model_dump(exclude_none=True)
    if not updates:
        raise ValidationError("No updates provided")
    await memory.upsert_user_context(ctx.user_id, **updates)
    return {"message": "Business context updated", "updated": updates}


async def think_step(ctx: ToolContext, args: ThinkStepInput) -> dict[str, Any]:
    return {
        "status": "planning_complete",
        "reasoning": args.thought,
        "planned_steps": args.plan,
        "uncertainties": args.uncertainties,
        "next_action": args.plan[0] if args.plan else "No action planned",
        "instruction": (
            "Planning complete. Call the tool for the first step now; do not answer "
            "the user until you have the actual data."
        ),
    }


async def validate_action(ctx: ToolContext, args: ValidateActionInput) -> dict[str, Any]:
    return {
        "validated": True,
        "action": args.action,
        "target": args.target,
        "expected_outcome": args.expected_outcome,
        "risks": args.risks,
        "proceed": True,
    }


MEMORY_TOOLS = [
    ToolSpec(
        name="remember_preference",
        description=(
            "Store a preference, fact or instruction to remember in future conversations. "
            "Use when the user states a preference or gives lasting instructions."
        ),
        input_model=RememberPreferenceInput,
        handler=remember_preference,
        category=ToolCategory.MEMORY,
    ),
    ToolSpec(
        name="recall_memories",
        description="Search remembered preferences, facts and instructions before acting.",
        input_model=RecallMemoriesInput,
        handler=recall_memories,
        category=ToolCategory.MEMORY,
        result_family="memories",
    ),
    ToolSpec(
        name="update_user_context",
        description=(
            "Update business context such as company name, default currency or invoice "
            "prefix when the user provides it."
        ),
        input_model=UpdateUserContextInput,
        handler=update_user_context,
        category=ToolCategory.MEMORY,
    ),
    ToolSpec(
        name="think_step",
        description=(
            "Think through a complex request step by step before acting. After calling "
            "this you must carry on executing the plan."
        ),
        input_model=ThinkStepInput,
        handler=think_step,
        category=ToolCategory.REASONING,
    ),
    ToolSpec(
        name="validate_action",
        description=(
            "Double-check a write before making it: state the action, its target, the "
            "expected outcome and any risks."
        ),
        input_model=ValidateActionInput,
        handler=validate_action,
        category=ToolCategory.REASONING,
    ),
]
