import json
import os
import tempfile
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional, Union
from uuid import uuid4

os.environ.setdefault("DB_PATH", str(Path(tempfile.gettempdir()) / "fitchat_pytest_default.db"))
os.environ.setdefault("STORAGE_DIR", tempfile.mkdtemp(prefix="fitchat-storage-"))

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from fitchat.db.models import (  # noqa: E402
    AlcoholEntry,
    ExerciseLog,
    FoodEntry,
    FormAnalysisLog,
    MoodEntry,
    MuscleImbalance,
    PersonalRecord,
    Profile,
    RunSession,
    SleepLog,
    SwimSession,
    WaterIntake,
    WorkoutLog,
)
from fitchat.db.session import SessionLocal, configure_database, create_tables, get_session_factory  # noqa: E402
from fitchat.services.llm import (  # noqa: E402
    ChatCompletion,
    CreditsDepletedError,
    LLMRequestError,
    RateLimitedError,
    get_llm_client,
    parse_chat_completion,
)
from fitchat.services.storage import get_object_storage  # noqa: E402


class FakeScenario(str, Enum):
    PLAIN_ANSWER = "PLAIN_ANSWER"
    LOG_WATER = "LOG_WATER"
    LOG_BEER = "LOG_BEER"
    LOG_JUICE = "LOG_JUICE"
    SCAN_MENU = "SCAN_MENU"
    OPEN_MODAL = "OPEN_MODAL"
    LOG_FOOD = "LOG_FOOD"
    LOG_SLEEP_POOR = "LOG_SLEEP_POOR"
    PERIOD_START = "PERIOD_START"
    PERIOD_END = "PERIOD_END"
    MALFORMED_TOOL_ARGS = "MALFORMED_TOOL_ARGS"
    UNKNOWN_ROUTE = "UNKNOWN_ROUTE"
    MULTIPLE_TOOL_CALLS = "MULTIPLE_TOOL_CALLS"
    RATE_LIMITED = "RATE_LIMITED"
    CREDITS_DEPLETED = "CREDITS_DEPLETED"
    GATEWAY_ERROR = "GATEWAY_ERROR"
    TIMEOUT = "TIMEOUT"


FAKE_PNG = b"\x89PNG\r\n\x1a\nfake-image-bytes"


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def at(day: date, hour: int = 12, minute: int = 0) -> datetime:
    return datetime.combine(day, time(hour, minute))


class FakeLLMClient:
    def __init__(
        self,
        scenario: FakeScenario,
        fixture_dir: Path,
        nutrition_fails: bool = False,
        image_fails: bool = True,
    ) -> None:
        self.scenario = scenario
        self.fixture_dir = fixture_dir
        self.nutrition_fails = nutrition_fails
        self.image_fails = image_fails
        self.chat_calls: list[dict[str, Any]] = []
        self.image_prompts: list[str] = []

    def _load_json(self, name: str) -> dict:
        raw = (self.fixture_dir / f"{name}.json").read_text(encoding="utf-8")
        return json.loads(raw)

    async def complete_chat(
        self,
        messages: list[dict[str, Any]],
        tools: Optional[list[dict[str, Any]]] = None,
        tool_choice: Union[str, dict[str, Any]] = "auto",
        model: Optional[str] = None,
    ) -> ChatCompletion:
        self.chat_calls.append({"messages": messages, "tools": tools, "tool_choice": tool_choice, "model": model})
        tool_names = [tool["function"]["name"] for tool in tools or []]
        if tool_names == ["return_nutrition"]:
            if self.nutrition_fails:
                raise LLMRequestError(provider="openai", model="test", message="simulated nutrition failure")
            return parse_chat_completion(self._load_json("NUTRITION"))
        if self.scenario == FakeScenario.RATE_LIMITED:
            raise RateLimitedError(
                provider="openai", model="test", status_code=429, message="Rate limit exceeded."
            )
        if self.scenario == FakeScenario.CREDITS_DEPLETED:
            raise CreditsDepletedError(
                provider="openai", model="test", status_code=402, message="AI credits depleted."
            )
        if self.scenario == FakeScenario.GATEWAY_ERROR:
            raise LLMRequestError(
                provider="openai", model="test", status_code=503, message="Gateway request failed (status=503)"
            )
        if self.scenario == FakeScenario.TIMEOUT:
            raise TimeoutError("simulated timeout")
        return parse_chat_completion(self._load_json(self.scenario.value))

    async def generate_image(self, prompt: str) -> bytes:
        self.image_prompts.append(prompt)
        if self.image_fails:
            raise LLMRequestError(provider="openai", model="image-test", message="simulated image failure")
        return FAKE_PNG

    @property
    def system_prompt(self) -> str:
        return self.chat_calls[0]["messages"][0]["content"]


class InMemoryStorage:
    def __init__(self, fail: bool = False) -> None:
        self.objects: dict[str, bytes] = {}
        self.fail = fail

    def upload(self, path: str, data: bytes, content_type: str = "image/png") -> str:
        if self.fail:
            raise OSError("simulated storage outage")
        self.objects[path] = data
        return f"https://storage.test/{path}"


@pytest.fixture(scope="session")
def fixture_dir() -> Path:
    return Path(__file__).resolve().parent / "fixtures" / "gateway"


@pytest.fixture(scope="session")
def test_db_path(tmp_path_factory: pytest.TempPathFactory) -> Path:
    db_path = tmp_path_factory.mktemp("db") / "fitchat_test.db"
    configure_database(str(db_path))
    create_tables()
    return db_path


@pytest.fixture(scope="session")
def app(test_db_path: Path):
    from fitchat.main import app as fastapi_app

    return fastapi_app


@pytest.fixture
def client(app):
    app.dependency_overrides = {}
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides = {}


@pytest.fixture
def session_factory(test_db_path: Path):
    return get_session_factory()


@pytest.fixture
def db_session(test_db_path: Path):
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def user_id() -> str:
    return f"user-{uuid4().hex[:12]}"


@pytest.fixture
def seed_profile(db_session: Session):
    def _seed(uid: str) -> Profile:
        row = Profile(
            id=uid,
            display_name="Jordan",
            primary_goal="build muscle",
            experience_level="intermediate",
            weight_kg=80.0,
            height_cm=180.0,
            age=31,
            daily_calorie_goal=2600,
        )
        db_session.add(row)
        db_session.commit()
        return row

    return _seed


@pytest.fixture
def seed_history(db_session: Session):
    def _seed(uid: str, today: Optional[date] = None) -> None:
        day = today or utc_today()
        two_days_ago = day - timedelta(days=2)
        yesterday = day - timedelta(days=1)

        push = WorkoutLog(
            user_id=uid,
            workout_name="Push Day",
            muscle_group="chest",
            duration_minutes=45,
            calories_burned=320,
            total_sets=12,
            total_reps=96,
            completed_at=at(two_days_ago, 18),
        )
        push.exercises = [
            ExerciseLog(exercise_name="Bench Press", sets_completed=4, reps_completed=8, weight_used=185),
            ExerciseLog(exercise_name="Incline Press", sets_completed=3, reps_completed=10, weight_used=60),
        ]
        legs = WorkoutLog(
            user_id=uid,
            workout_name="Leg Day",
            muscle_group="legs",
            duration_minutes=60,
            calories_burned=450,
            total_sets=15,
            total_reps=120,
            completed_at=at(day, 7),
        )
        db_session.add_all([push, legs])
        db_session.add_all(
            [
                RunSession(
                    user_id=uid, started_at=at(two_days_ago, 6), total_distance_m=5000, moving_time_s=1680, calories=350
                ),
                SwimSession(
                    user_id=uid, started_at=at(yesterday, 6), total_distance_m=1500, moving_time_s=2400, calories=400
                ),
                FoodEntry(
                    user_id=uid,
                    logged_date=yesterday,
                    meal_type="breakfast",
                    food_items_json=json.dumps([{"name": "Oatmeal"}, {"name": "Blueberries"}]),
                    total_calories=350,
                    total_protein=12,
                    total_carbs=60,
                    total_fat=6,
                ),
                FoodEntry(
                    user_id=uid,
                    logged_date=yesterday,
                    meal_type="dinner",
                    food_items_json=json.dumps([{"name": "Salmon"}, {"name": "Rice"}]),
                    total_calories=650,
                    total_protein=45,
                    total_carbs=70,
                    total_fat=20,
                ),
                FoodEntry(
                    user_id=uid,
                    logged_date=day,
                    meal_type="breakfast",
                    food_items_json=json.dumps([{"name": "Eggs"}]),
                    total_calories=300,
                    total_protein=20,
                    total_carbs=2,
                    total_fat=22,
                ),
                WaterIntake(
                    user_id=uid, logged_date=yesterday, amount_ml=500, beverage_type="water", effective_hydration_ml=500
                ),
                WaterIntake(
                    user_id=uid, logged_date=yesterday, amount_ml=237, beverage_type="coffee", effective_hydration_ml=189
                ),
                WaterIntake(
                    user_id=uid, logged_date=day, amount_ml=473, beverage_type="water", effective_hydration_ml=473
                ),
                SleepLog(
                    user_id=uid,
                    sleep_date=two_days_ago,
                    bedtime=at(two_days_ago, 23),
                    wake_time=at(yesterday, 7),
                    duration_minutes=480,
                    quality_score=4,
                ),
                SleepLog(
                    user_id=uid,
                    sleep_date=yesterday,
                    bedtime=at(yesterday, 23, 30),
                    wake_time=at(day, 7),
                    duration_minutes=450,
                    quality_score=3,
                    notes="woke up once",
                ),
                AlcoholEntry(user_id=uid, logged_date=yesterday, drink_type="beer", quantity=2, alcohol_content=5),
                PersonalRecord(
                    user_id=uid, exercise_name="Bench Press", weight_lbs=205, reps=1, achieved_at=at(two_days_ago, 18)
                ),
                PersonalRecord(
                    user_id=uid, exercise_name="Squat", weight_lbs=275, reps=3, achieved_at=at(day, 7)
                ),
            ]
        )
        db_session.commit()

    return _seed


@pytest.fixture
def seed_wellbeing(db_session: Session):
    def _seed(uid: str, today: Optional[date] = None) -> None:
        day = today or utc_today()
        db_session.add_all(
            [
                MoodEntry(user_id=uid, mood_score=7, energy_level=6, stress_level=4, logged_at=at(day, 8)),
                MoodEntry(
                    user_id=uid,
                    mood_score=5,
                    energy_level=4,
                    stress_level=6,
                    notes="long day at work",
                    logged_at=at(day - timedelta(days=1), 20),
                ),
                MuscleImbalance(user_id=uid, muscle_group="quadriceps", imbalance_percent=12, weaker_side="left"),
                FormAnalysisLog(
                    user_id=uid,
                    exercise_name="Squat",
                    form_score=62,
                    issues="knees caving in",
                    analyzed_at=at(day - timedelta(days=3), 18),
                ),
            ]
        )
        db_session.commit()

    return _seed


@pytest.fixture
def fake_llm_factory(fixture_dir: Path) -> Callable[..., FakeLLMClient]:
    def _factory(scenario: FakeScenario, **kwargs: Any) -> FakeLLMClient:
        return FakeLLMClient(scenario=scenario, fixture_dir=fixture_dir, **kwargs)

    return _factory


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def override_llm(app, fake_llm_factory, storage):
    def _override(scenario: FakeScenario, **kwargs: Any) -> FakeLLMClient:
        fake = fake_llm_factory(scenario, **kwargs)
        app.dependency_overrides[get_llm_client] = lambda: fake
        app.dependency_overrides[get_object_storage] = lambda: storage
        return fake

    return _override
