import json
from datetime import date
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from fitchat.core.beverages import BEVERAGE_TYPES

NAVIGATION_ROUTES: dict[str, str] = {
    "/": "Home",
    "/food-scanner": "Food Scanner",
    "/food-scanner?tab=menu": "Menu Scanner",
    "/meal-feed": "Meal Feed",
    "/meal-planner": "Meal Planner",
    "/workout-list": "Workout List",
    "/workout-plans": "Workout Plans",
    "/workout-history": "Workout History",
    "/at-home-workout-builder": "At-Home Workout Builder",
    "/run/setup": "Start a Run",
    "/run/history": "Run History",
    "/ride/setup": "Start a Ride",
    "/ride/history": "Ride History",
    "/swim/setup": "Start a Swim",
    "/swim/history": "Swim History",
    "/body-scan": "Body Scan",
    "/fitness-alarm": "Fitness Alarm",
    "/achievements": "Achievements",
    "/leaderboard": "Leaderboard",
    "/social": "Social Feed",
    "/profile-customize": "Profile Settings",
}

MODAL_TYPES: dict[str, str] = {
    "water_tracker": "Water Tracker",
    "sleep_tracker": "Sleep Tracker",
    "alcohol_tracker": "Alcohol Tracker",
    "cycle_tracker": "Cycle Tracker",
    "mood_checkin": "Mood Check-in",
    "weight_log": "Weight Log",
    "barcode_scanner": "Barcode Scanner",
}

MEAL_TYPES = ["breakfast", "lunch", "dinner", "snack"]
CYCLE_EVENT_TYPES = ["period_start", "period_end"]


class ToolArgumentError(ValueError):
    def __init__(self, tool_name: str, message: str):
        super().__init__(message)
        self.tool_name = tool_name


class _ToolArgs(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    confirmationMessage: str = Field(min_length=1, max_length=500)


class NavigateArgs(_ToolArgs):
    tool: Literal["navigate_to_page"] = "navigate_to_page"
    route: str = Field(min_length=1, max_length=200)
    pageName: str = Field(min_length=1, max_length=120)

    @field_validator("route")
    @classmethod
    def _known_route(cls, value: str) -> str:
        if value not in NAVIGATION_ROUTES:
            raise ValueError(f"unknown route {value!r}")
        return value


class OpenModalArgs(_ToolArgs):
    tool: Literal["open_modal"] = "open_modal"
    modalType: str
    modalName: str = Field(min_length=1, max_length=120)

    @field_validator("modalType")
    @classmethod
    def _known_modal(cls, value: str) -> str:
        if value not in MODAL_TYPES:
            raise ValueError(f"unknown modal {value!r}")
        return value


class LogBeverageArgs(_ToolArgs):
    tool: Literal["log_beverage"] = "log_beverage"
    beverageType: str
    amountOz: float = Field(gt=0, le=128)

    @field_validator("beverageType")
    @classmethod
    def _known_beverage(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in BEVERAGE_TYPES:
            raise ValueError(f"unknown beverage {value!r}")
        return normalized


class LogFoodArgs(_ToolArgs):
    tool: Literal["log_food"] = "log_food"
    foodDescription: str = Field(min_length=1, max_length=500)
    mealType: Literal["breakfast", "lunch", "dinner", "snack"]


class LogSleepArgs(_ToolArgs):
    tool: Literal["log_sleep"] = "log_sleep"
    durationHours: float = Field(gt=0, le=24)
    qualityScore: Optional[int] = None
    notes: Optional[str] = Field(default=None, max_length=500)

    @field_validator("qualityScore")
    @classmethod
    def _clamp_quality(cls, value: Optional[int]) -> Optional[int]:
        if value is None:
            return None
        return max(1, min(5, value))


class LogCycleEventArgs(_ToolArgs):
    tool: Literal["log_cycle_event"] = "log_cycle_event"
    eventType: Literal["period_start", "period_end"]
    eventDate: Optional[date] = None


ToolArguments = Union[NavigateArgs, OpenModalArgs, LogBeverageArgs, LogFoodArgs, LogSleepArgs, LogCycleEventArgs]

TOOL_ARGUMENT_MODELS: dict[str, type[_ToolArgs]] = {
    "navigate_to_page": NavigateArgs,
    "open_modal": OpenModalArgs,
    "log_beverage": LogBeverageArgs,
    "log_food": LogFoodArgs,
    "log_sleep": LogSleepArgs,
    "log_cycle_event": LogCycleEventArgs,
}

LOGGING_TOOL_NAMES = {"log_beverage", "log_food", "log_sleep", "log_cycle_event"}


def parse_tool_arguments(name: str, raw_arguments: Any) -> ToolArguments:
    model = TOOL_ARGUMENT_MODELS.get(name)
    if model is None:
        raise ToolArgumentError(name, f"Unknown tool: {name}")
    if isinstance(raw_arguments, dict):
        payload = raw_arguments
    else:
        try:
            payload = json.loads(raw_arguments or "")
        except (TypeError, json.JSONDecodeError) as exc:
            raise ToolArgumentError(name, f"Tool arguments are not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ToolArgumentError(name, "Tool arguments must be a JSON object")
    payload = {key: value for key, value in payload.items() if key != "tool"}
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise ToolArgumentError(name, f"Tool arguments failed validation: {exc.error_count()} error(s)") from exc


def _function_tool(name: str, description: str, properties: dict[str, Any], required: list[str]) -> dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": name,
            "description": description,
            "parameters": {"type": "object", "properties": properties, "required": required},
        },
    }


_CONFIRMATION = {
    "type": "string",
    "description": "Short, friendly confirmation spoken back to the user.",
}

NAVIGATE_TOOL = _function_tool(
    "navigate_to_page",
    "Take the user to a page in the app when they ask to go somewhere or start an activity.",
    {
        "route": {"type": "string", "enum": list(NAVIGATION_ROUTES.keys())},
        "pageName": {"type": "string", "description": "Human readable page name."},
        "confirmationMessage": _CONFIRMATION,
    },
    ["route", "pageName", "confirmationMessage"],
)

OPEN_MODAL_TOOL = _function_tool(
    "open_modal",
    "Open an in-app tracker or scanner dialog.",
    {
        "modalType": {"type": "string", "enum": list(MODAL_TYPES.keys())},
        "modalName": {"type": "string"},
        "confirmationMessage": _CONFIRMATION,
    },
    ["modalType", "modalName", "confirmationMessage"],
)

LOG_BEVERAGE_TOOL = _function_tool(
    "log_beverage",
    'Log a beverage when the user mentions drinking something. Examples: "I had water", "just drank coffee", "had a beer".',
    {
        "beverageType": {"type": "string", "enum": BEVERAGE_TYPES},
        "amountOz": {
            "type": "number",
            "description": "Amount in ounces. Default: glass=8oz, can=12oz, bottle=16oz, wine=5oz, shot=1.5oz",
        },
        "confirmationMessage": _CONFIRMATION,
    },
    ["beverageType", "amountOz", "confirmationMessage"],
)

LOG_FOOD_TOOL = _function_tool(
    "log_food",
    "Log food the user says they ate.",
    {
        "foodDescription": {"type": "string", "description": "What was eaten, with portions if mentioned."},
        "mealType": {"type": "string", "enum": MEAL_TYPES},
        "confirmationMessage": _CONFIRMATION,
    },
    ["foodDescription", "mealType", "confirmationMessage"],
)

LOG_SLEEP_TOOL = _function_tool(
    "log_sleep",
    "Log last night's sleep when the user reports how long or how well they slept.",
    {
        "durationHours": {"type": "number"},
        "qualityScore": {
            "type": "integer",
            "minimum": 1,
            "maximum": 5,
            "description": "1=terrible, 2=poor, 3=okay, 4=good, 5=great",
        },
        "notes": {"type": "string"},
        "confirmationMessage": _CONFIRMATION,
    },
    ["durationHours", "confirmationMessage"],
)

LOG_CYCLE_EVENT_TOOL = _function_tool(
    "log_cycle_event",
    "Log the start or end of a menstrual period.",
    {
        "eventType": {"type": "string", "enum": CYCLE_EVENT_TYPES},
        "eventDate": {"type": "string", "description": "YYYY-MM-DD, defaults to today."},
        "confirmationMessage": _CONFIRMATION,
    },
    ["eventType", "confirmationMessage"],
)

NUTRITION_TOOL = _function_tool(
    "return_nutrition",
    "Return the estimated nutrition for the described food.",
    {
        "foodItems": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "name": {"type": "string"},
                    "quantity": {"type": "string"},
                    "calories": {"type": "number"},
                    "protein": {"type": "number"},
                    "carbs": {"type": "number"},
                    "fat": {"type": "number"},
                },
                "required": ["name", "calories", "protein", "carbs", "fat"],
            },
        },
        "totalCalories": {"type": "number"},
        "totalProtein": {"type": "number"},
        "totalCarbs": {"type": "number"},
        "totalFat": {"type": "number"},
    },
    ["foodItems", "totalCalories", "totalProtein", "totalCarbs", "totalFat"],
)

NUTRITION_TOOL_CHOICE = {"type": "function", "function": {"name": "return_nutrition"}}


def tool_catalog(logging_enabled: bool) -> list[dict[str, Any]]:
    tools = [NAVIGATE_TOOL, OPEN_MODAL_TOOL]
    if logging_enabled:
        tools.extend([LOG_BEVERAGE_TOOL, LOG_FOOD_TOOL, LOG_SLEEP_TOOL, LOG_CYCLE_EVENT_TOOL])
    return tools
