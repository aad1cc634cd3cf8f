import asyncio
import json
import logging
import os
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Callable, Optional
from uuid import uuid4

from pydantic import BaseModel, Field
from sqlalchemy.orm import Session, sessionmaker

from fitchat.core.beverages import (
    beverage_nutrition,
    effective_hydration_ml,
    get_beverage_profile,
    has_meaningful_calories,
    ounces_to_ml,
    standard_drinks,
)
from fitchat.core.tools import (
    LOGGING_TOOL_NAMES,
    NUTRITION_TOOL,
    NUTRITION_TOOL_CHOICE,
    LogBeverageArgs,
    LogCycleEventArgs,
    LogFoodArgs,
    LogSleepArgs,
    NavigateArgs,
    OpenModalArgs,
    ToolArgumentError,
    ToolArguments,
)
from fitchat.db.models import AlcoholEntry, CycleTracking, FoodEntry, SleepLog, WaterIntake
from fitchat.services.llm import NUTRITION_MODEL, LLMClient, parse_llm_json
from fitchat.services.storage import ObjectStorage, food_image_path

logger = logging.getLogger("uvicorn.error")

WRITE_TIMEOUT_SECONDS = float(os.getenv("WRITE_TIMEOUT_SECONDS", "5"))
NUTRITION_TIMEOUT_SECONDS = float(os.getenv("NUTRITION_TIMEOUT_SECONDS", "20"))
IMAGE_TIMEOUT_SECONDS = float(os.getenv("IMAGE_TIMEOUT_SECONDS", "30"))
FOOD_IMAGE_ENABLED = os.getenv("FOOD_IMAGE_ENABLED", "true").strip().lower() in {"1", "true", "yes"}

WAKE_TIME = time(7, 0)
DEFAULT_SLEEP_QUALITY = 3
DEFAULT_CYCLE_LENGTH = 28
DEFAULT_PERIOD_LENGTH = 5

WRITE_OK = "ok"
WRITE_DEGRADED = "degraded"


class FoodItemEstimate(BaseModel):
    name: str = Field(min_length=1)
    quantity: Optional[str] = None
    calories: float = Field(ge=0)
    protein: float = Field(ge=0)
    carbs: float = Field(ge=0)
    fat: float = Field(ge=0)


class NutritionEstimate(BaseModel):
    foodItems: list[FoodItemEstimate] = Field(default_factory=list)
    totalCalories: float = Field(ge=0)
    totalProtein: float = Field(ge=0)
    totalCarbs: float = Field(ge=0)
    totalFat: float = Field(ge=0)


def default_nutrition(food_description: str) -> NutritionEstimate:
    return NutritionEstimate(
        foodItems=[FoodItemEstimate(name=food_description, calories=200, protein=10, carbs=20, fat=8)],
        totalCalories=200,
        totalProtein=10,
        totalCarbs=20,
        totalFat=8,
    )


@dataclass
class DispatchResult:
    confirmation: str
    action: dict[str, Any]


def _today() -> date:
    return datetime.now(timezone.utc).date()


def _nutrition_messages(food_description: str, meal_type: str) -> list[dict[str, str]]:
    return [
        {
            "role": "system",
            "content": (
                "You are a registered dietitian. Estimate realistic nutrition for the described food using "
                "typical portion sizes when none are given. Respond only by calling return_nutrition."
            ),
        },
        {"role": "user", "content": f"Meal type: {meal_type}\nFood: {food_description}"},
    ]


def _food_image_prompt(food_description: str) -> str:
    return (
        f"A photo-realistic, appetizing overhead photograph of {food_description}, served on a plate, "
        "natural lighting, shallow depth of field, no text."
    )


class ToolDispatcher:
    def __init__(self, session_factory: sessionmaker, llm_client: LLMClient, storage: ObjectStorage) -> None:
        self.session_factory = session_factory
        self.llm_client = llm_client
        self.storage = storage

    async def dispatch(
        self,
        user_id: Optional[str],
        args: ToolArguments,
        today: Optional[date] = None,
        request_id: Optional[str] = None,
    ) -> DispatchResult:
        if args.tool in LOGGING_TOOL_NAMES and not user_id:
            raise ToolArgumentError(args.tool, f"{args.tool} requires a signed-in user")
        day = today or _today()
        if isinstance(args, NavigateArgs):
            action = {"type": "navigate", "route": args.route, "pageName": args.pageName}
        elif isinstance(args, OpenModalArgs):
            action = {"type": "open_modal", "modalType": args.modalType, "modalName": args.modalName}
        elif isinstance(args, LogBeverageArgs):
            action = await self._log_beverage(user_id, args, day, request_id)
        elif isinstance(args, LogFoodArgs):
            action = await self._log_food(user_id, args, day, request_id)
        elif isinstance(args, LogSleepArgs):
            action = await self._log_sleep(user_id, args, day)
        elif isinstance(args, LogCycleEventArgs):
            action = await self._log_cycle_event(user_id, args, day)
        else:
            raise ToolArgumentError(getattr(args, "tool", "unknown"), "Unsupported tool arguments")
        logger.info(
            "tool_dispatched tool=%s user_id=%s write_status=%s",
            args.tool,
            user_id,
            action.get("writeStatus", "n/a"),
        )
        return DispatchResult(confirmation=args.confirmationMessage, action=action)

    async def _run_write(self, tool: str, user_id: str, writer: Callable[[Session], Any]) -> tuple[bool, Any]:
        def _run() -> Any:
            db = self.session_factory()
            try:
                result = writer(db)
                db.commit()
                return result
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()

        try:
            result = await asyncio.wait_for(asyncio.to_thread(_run), timeout=WRITE_TIMEOUT_SECONDS)
            return True, result
        except Exception as exc:
            logger.warning("tool_write_failed tool=%s user_id=%s detail=%s", tool, user_id, str(exc)[:220])
            return False, None

    async def _log_beverage(
        self, user_id: str, args: LogBeverageArgs, day: date, request_id: Optional[str]
    ) -> dict[str, Any]:
        profile = get_beverage_profile(args.beverageType)
        amount_ml = round(ounces_to_ml(args.amountOz))
        effective_ml = effective_hydration_ml(args.amountOz, args.beverageType)
        nutrition = beverage_nutrition(args.amountOz, args.beverageType)
        calories = nutrition.calories if has_meaningful_calories(args.beverageType) else 0

        def _write(db: Session) -> None:
            if request_id:
                duplicate = (
                    db.query(WaterIntake)
                    .filter(WaterIntake.user_id == user_id, WaterIntake.client_request_id == request_id)
                    .first()
                )
                if duplicate:
                    return
            db.add(
                WaterIntake(
                    user_id=user_id,
                    logged_date=day,
                    amount_ml=amount_ml,
                    beverage_type=args.beverageType,
                    effective_hydration_ml=effective_ml,
                    client_request_id=request_id,
                )
            )
            if calories > 0:
                db.add(
                    FoodEntry(
                        user_id=user_id,
                        logged_date=day,
                        meal_type="snack",
                        food_items_json=json.dumps(
                            [
                                {
                                    "name": profile.name,
                                    "quantity": f"{args.amountOz:g} oz",
                                    "calories": calories,
                                    "protein": nutrition.protein,
                                    "carbs": nutrition.carbs,
                                    "fat": nutrition.fat,
                                }
                            ]
                        ),
                        total_calories=calories,
                        total_protein=nutrition.protein,
                        total_carbs=nutrition.carbs,
                        total_fat=nutrition.fat,
                        notes=f"Logged from beverage: {profile.name}",
                        client_request_id=request_id,
                    )
                )
            if profile.is_dehydrating:
                db.add(
                    AlcoholEntry(
                        user_id=user_id,
                        logged_date=day,
                        drink_type=args.beverageType,
                        quantity=standard_drinks(args.amountOz, args.beverageType) or 1.0,
                        alcohol_content=profile.alcohol_content,
                    )
                )

        ok, _ = await self._run_write("log_beverage", user_id, _write)
        return {
            "type": "log_beverage",
            "beverageType": args.beverageType,
            "beverageName": profile.name,
            "amountOz": args.amountOz,
            "amountMl": amount_ml,
            "effectiveHydrationMl": effective_ml,
            "isDehydrating": profile.is_dehydrating,
            "calories": calories,
            "macros": {"protein": nutrition.protein, "carbs": nutrition.carbs, "fat": nutrition.fat},
            "writeStatus": WRITE_OK if ok else WRITE_DEGRADED,
        }

    async def lookup_nutrition(self, food_description: str, meal_type: str) -> tuple[NutritionEstimate, bool]:
        """Returns the estimate and whether it came from the model (False means the default was used)."""
        try:
            completion = await asyncio.wait_for(
                self.llm_client.complete_chat(
                    _nutrition_messages(food_description, meal_type),
                    tools=[NUTRITION_TOOL],
                    tool_choice=NUTRITION_TOOL_CHOICE,
                    model=NUTRITION_MODEL,
                ),
                timeout=NUTRITION_TIMEOUT_SECONDS,
            )
            call = completion.first_tool_call
            if call is not None:
                payload = json.loads(call.arguments)
            elif completion.content:
                payload = parse_llm_json(completion.content)
            else:
                raise ValueError("Nutrition lookup returned neither a tool call nor content")
            return NutritionEstimate.model_validate(payload), True
        except Exception as exc:
            logger.warning(
                "nutrition_lookup_failed food=%s detail=%s", food_description[:80], str(exc)[:220]
            )
            return default_nutrition(food_description), False

    async def generate_food_photo(self, user_id: str, food_description: str) -> Optional[str]:
        try:
            image = await asyncio.wait_for(
                self.llm_client.generate_image(_food_image_prompt(food_description)),
                timeout=IMAGE_TIMEOUT_SECONDS,
            )
            path = food_image_path(user_id, uuid4().hex)
            return await asyncio.to_thread(self.storage.upload, path, image, "image/png")
        except Exception as exc:
            logger.warning("food_image_failed user_id=%s detail=%s", user_id, str(exc)[:220])
            return None

    async def _existing_food_entry(self, user_id: str, request_id: Optional[str]) -> Optional[FoodEntry]:
        if not request_id:
            return None

        def _read() -> Optional[FoodEntry]:
            db = self.session_factory()
            try:
                return (
                    db.query(FoodEntry)
                    .filter(FoodEntry.user_id == user_id, FoodEntry.client_request_id == request_id)
                    .first()
                )
            finally:
                db.close()

        try:
            return await asyncio.to_thread(_read)
        except Exception as exc:
            logger.warning("food_entry_lookup_failed user_id=%s detail=%s", user_id, str(exc)[:220])
            return None

    async def _log_food(
        self, user_id: str, args: LogFoodArgs, day: date, request_id: Optional[str]
    ) -> dict[str, Any]:
        existing = await self._existing_food_entry(user_id, request_id)
        if existing is not None:
            logger.info("food_log_duplicate_request user_id=%s request_id=%s", user_id, request_id)
            return {
                "type": "log_food",
                "foodDescription": args.foodDescription,
                "mealType": existing.meal_type,
                "nutrition": {
                    "calories": existing.total_calories,
                    "protein": existing.total_protein,
                    "carbs": existing.total_carbs,
                    "fat": existing.total_fat,
                },
                "foodItems": json.loads(existing.food_items_json or "[]"),
                "photoUrl": existing.photo_url,
                "estimated": False,
                "writeStatus": WRITE_OK,
            }

        nutrition, from_model = await self.lookup_nutrition(args.foodDescription, args.mealType)
        photo_url = None
        if FOOD_IMAGE_ENABLED:
            photo_url = await self.generate_food_photo(user_id, args.foodDescription)
        food_items = [item.model_dump(exclude_none=True) for item in nutrition.foodItems]

        def _write(db: Session) -> None:
            db.add(
                FoodEntry(
                    user_id=user_id,
                    logged_date=day,
                    meal_type=args.mealType,
                    food_items_json=json.dumps(food_items),
                    total_calories=nutrition.totalCalories,
                    total_protein=nutrition.totalProtein,
                    total_carbs=nutrition.totalCarbs,
                    total_fat=nutrition.totalFat,
                    notes=args.foodDescription,
                    photo_url=photo_url,
                    client_request_id=request_id,
                )
            )

        ok, _ = await self._run_write("log_food", user_id, _write)
        return {
            "type": "log_food",
            "foodDescription": args.foodDescription,
            "mealType": args.mealType,
            "nutrition": {
                "calories": nutrition.totalCalories,
                "protein": nutrition.totalProtein,
                "carbs": nutrition.totalCarbs,
                "fat": nutrition.totalFat,
            },
            "foodItems": food_items,
            "photoUrl": photo_url,
            "estimated": not from_model,
            "writeStatus": WRITE_OK if ok else WRITE_DEGRADED,
        }

    async def _log_sleep(self, user_id: str, args: LogSleepArgs, day: date) -> dict[str, Any]:
        quality = args.qualityScore if args.qualityScore is not None else DEFAULT_SLEEP_QUALITY
        wake_time = datetime.combine(day, WAKE_TIME)
        bedtime = wake_time - timedelta(hours=args.durationHours)
        sleep_date = day - timedelta(days=1)
        duration_minutes = round(args.durationHours * 60)

        def _write(db: Session) -> None:
            row = (
                db.query(SleepLog)
                .filter(SleepLog.user_id == user_id, SleepLog.sleep_date == sleep_date)
                .first()
            )
            if not row:
                row = SleepLog(user_id=user_id, sleep_date=sleep_date)
                db.add(row)
            row.bedtime = bedtime
            row.wake_time = wake_time
            row.duration_minutes = duration_minutes
            row.quality_score = quality
            row.notes = args.notes

        ok, _ = await self._run_write("log_sleep", user_id, _write)
        return {
            "type": "log_sleep",
            "durationHours": args.durationHours,
            "qualityScore": quality,
            "date": sleep_date.isoformat(),
            "bedtime": bedtime.strftime("%H:%M"),
            "wakeTime": wake_time.strftime("%H:%M"),
            "writeStatus": WRITE_OK if ok else WRITE_DEGRADED,
        }

    async def _log_cycle_event(self, user_id: str, args: LogCycleEventArgs, day: date) -> dict[str, Any]:
        event_date = args.eventDate or day

        if args.eventType == "period_start":

            def _write(db: Session) -> dict[str, int]:
                row = db.query(CycleTracking).filter(CycleTracking.user_id == user_id).first()
                if not row:
                    row = CycleTracking(
                        user_id=user_id,
                        average_cycle_length=DEFAULT_CYCLE_LENGTH,
                        average_period_length=DEFAULT_PERIOD_LENGTH,
                    )
                    db.add(row)
                row.is_enabled = True
                row.last_period_start = event_date
                return {
                    "averageCycleLength": row.average_cycle_length or DEFAULT_CYCLE_LENGTH,
                    "averagePeriodLength": row.average_period_length or DEFAULT_PERIOD_LENGTH,
                }

            ok, averages = await self._run_write("log_cycle_event", user_id, _write)
            action: dict[str, Any] = {
                "type": "log_cycle_event",
                "eventType": args.eventType,
                "date": event_date.isoformat(),
            }
            action.update(averages or {})
            action["writeStatus"] = WRITE_OK if ok else WRITE_DEGRADED
            return action

        def _write_end(db: Session) -> Optional[int]:
            row = db.query(CycleTracking).filter(CycleTracking.user_id == user_id).first()
            if not row or row.last_period_start is None:
                logger.info("period_end_without_start user_id=%s", user_id)
                return None
            if event_date < row.last_period_start:
                logger.info(
                    "period_end_before_start user_id=%s start=%s end=%s",
                    user_id,
                    row.last_period_start.isoformat(),
                    event_date.isoformat(),
                )
                return None
            period_length = (event_date - row.last_period_start).days + 1
            row.average_period_length = period_length
            return period_length

        ok, period_length = await self._run_write("log_cycle_event", user_id, _write_end)
        return {
            "type": "log_cycle_event",
            "eventType": args.eventType,
            "date": event_date.isoformat(),
            "periodLength": period_length,
            "writeStatus": WRITE_OK if ok else WRITE_DEGRADED,
        }
