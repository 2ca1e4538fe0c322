"""Action catalog: function declarations and typed argument parsing for `/chat`."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError, validator

MIN_AMOUNT = Decimal("0.01")
MAX_INCOME_AMOUNT = Decimal("100000")
MAX_GOAL_UPDATE = Decimal("50000")
MAX_ACTIONS_PER_MESSAGE = 3
OVERSHOOT_RATIO = Decimal("1.5")
MAX_NOTES_LENGTH = 500
MAX_GOAL_NAME_LENGTH = 100
INCOME_DATE_WINDOW_DAYS = 365

IncomeSource = Literal["hackathon", "bounty", "freelance", "crypto", "other"]
INCOME_SOURCES: tuple[str, ...] = ("hackathon", "bounty", "freelance", "crypto", "other")


class ActionArgumentError(Exception):
    """Raised when an action's arguments fail validation."""


class UnknownActionError(ActionArgumentError):
    """Raised when the model calls a name outside the catalog."""


@dataclass
class ActionCall:
    """One action call as received from the model; arguments are untrusted."""

    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


def _coerce_number(value: Any, context: str) -> Decimal:
    if value is None or isinstance(value, bool):
        raise ValueError(f"{context}: Amount must be a valid number")
    try:
        # str() of a float is its shortest round-tripping form, so 10.1 stays 10.1.
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"{context}: Amount must be a valid number") from exc
    if not number.is_finite():
        raise ValueError(f"{context}: Amount must be a valid number")
    return number


def _check_amount(value: Decimal, ceiling: Decimal, context: str) -> Decimal:
    if value < MIN_AMOUNT:
        raise ValueError(f"{context}: Amount must be at least ${MIN_AMOUNT}")
    if value > ceiling:
        raise ValueError(f"{context}: Amount cannot exceed ${ceiling}")
    if value != value.quantize(MIN_AMOUNT):
        raise ValueError(f"{context}: Amount can only have up to 2 decimal places")
    return value


class AddIncomeArgs(BaseModel):
    amount: Decimal
    source: IncomeSource
    income_date: date | None = Field(default=None, alias="date")
    notes: str | None = None

    @validator("amount", pre=True)
    def coerce_amount(cls, value: Any) -> Decimal:
        return _coerce_number(value, "Income")

    @validator("amount")
    def validate_amount(cls, value: Decimal) -> Decimal:
        return _check_amount(value, MAX_INCOME_AMOUNT, "Income")

    @validator("source", pre=True)
    def normalize_source(cls, value: Any) -> str:
        normalized = value.strip().lower() if isinstance(value, str) else ""
        if normalized not in INCOME_SOURCES:
            raise ValueError(f"Invalid income source. Must be one of: {', '.join(INCOME_SOURCES)}")
        return normalized

    @validator("income_date", pre=True)
    def parse_income_date(cls, value: Any) -> date | None:
        if value is None or isinstance(value, date):
            return value
        text = str(value).strip()
        if not text:
            return None
        try:
            return date.fromisoformat(text)
        except ValueError as exc:
            raise ValueError("Invalid date. Use YYYY-MM-DD within the last year and not in the future") from exc

    @validator("notes", pre=True)
    def truncate_notes(cls, value: Any) -> str | None:
        if value is None:
            return None
        text = str(value).strip()
        return text[:MAX_NOTES_LENGTH] or None


class UpdateGoalProgressArgs(BaseModel):
    amount_to_add: Decimal
    goal_name: str

    @validator("amount_to_add", pre=True)
    def coerce_amount(cls, value: Any) -> Decimal:
        return _coerce_number(value, "Goal update")

    @validator("amount_to_add")
    def validate_amount(cls, value: Decimal) -> Decimal:
        # Sign is direction; the guardrail applies to the magnitude.
        _check_amount(abs(value), MAX_GOAL_UPDATE, "Goal update")
        return value

    @validator("goal_name", pre=True)
    def sanitize_goal_name(cls, value: Any) -> str:
        text = "" if value is None else str(value).strip()[:MAX_GOAL_NAME_LENGTH]
        if not text:
            raise ValueError("Goal name cannot be empty")
        return text


_ACTION_SPECS: dict[str, tuple[type[BaseModel], str]] = {
    "add_income": (
        AddIncomeArgs,
        "Add a new income entry for the user. Use this when user reports earning money.",
    ),
    "update_goal_progress": (
        UpdateGoalProgressArgs,
        "Add or subtract money from a goal's current savings. Use when user allocates money to a goal.",
    ),
}

ACTION_NAMES = frozenset(_ACTION_SPECS)


def action_schemas() -> list[dict[str, Any]]:
    """Return Gemini function declaration schema list."""
    return [
        {
            "name": "add_income",
            "description": _ACTION_SPECS["add_income"][1],
            "parameters": {
                "type": "OBJECT",
                "properties": {
                    "amount": {
                        "type": "NUMBER",
                        "description": f"The income amount in dollars (must be between {MIN_AMOUNT} and {MAX_INCOME_AMOUNT})",
                    },
                    "source": {
                        "type": "STRING",
                        "enum": list(INCOME_SOURCES),
                        "description": "The source of income.",
                    },
                    "date": {
                        "type": "STRING",
                        "description": "The date of income in YYYY-MM-DD format (defaults to today)",
                    },
                    "notes": {"type": "STRING", "description": "Optional notes about the income"},
                },
                "required": ["amount", "source"],
            },
        },
        {
            "name": "update_goal_progress",
            "description": _ACTION_SPECS["update_goal_progress"][1],
            "parameters": {
                "type": "OBJECT",
                "properties": {
                    "goal_name": {
                        "type": "STRING",
                        "description": "The name of the goal to update (must match existing goal name)",
                    },
                    "amount_to_add": {
                        "type": "NUMBER",
                        "description": (
                            "The amount to add (positive) or subtract (negative). "
                            f"Must be between -{MAX_GOAL_UPDATE} and {MAX_GOAL_UPDATE}."
                        ),
                    },
                },
                "required": ["goal_name", "amount_to_add"],
            },
        },
    ]


def _describe_validation_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)

    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = str(first.get("msg") or "invalid value")
    error_type = str(first.get("type") or "")

    if error_type == "missing":
        return f"Missing required field: {location}"
    if error_type.startswith("value_error"):
        # pydantic v2 prefixes messages raised from validators.
        return message.removeprefix("Value error, ")
    return f"Invalid {location}: {message}"


def parse_action(call: ActionCall) -> BaseModel:
    """Validate a raw call into its typed argument model."""
    spec = _ACTION_SPECS.get(call.name)
    if spec is None:
        raise UnknownActionError(f'Invalid function "{call.name}"')

    model_cls = spec[0]
    try:
        return model_cls.model_validate(call.arguments)
    except ValidationError as exc:
        raise ActionArgumentError(_describe_validation_error(exc)) from exc
