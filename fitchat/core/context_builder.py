import asyncio
import json
import logging
import os
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session, sessionmaker

from fitchat.core.scoring import (
    calculate_injury_risk_score,
    calculate_readiness_score,
    describe_injury_risk,
    describe_readiness,
)
from fitchat.db.models import (
    AlcoholEntry,
    FoodEntry,
    FormAnalysisLog,
    MoodEntry,
    MuscleImbalance,
    PersonalRecord,
    Profile,
    RideSession,
    RunSession,
    SleepLog,
    SwimSession,
    WaterIntake,
    WorkoutLog,
)

logger = logging.getLogger("uvicorn.error")

HISTORY_DAYS = 30
MAX_PERSONAL_RECORDS = 10
CONTEXT_FETCH_TIMEOUT_SECONDS = float(os.getenv("CONTEXT_FETCH_TIMEOUT_SECONDS", "8"))


@dataclass
class HistoryData:
    profile: Optional[Profile] = None
    workouts: list[WorkoutLog] = field(default_factory=list)
    meals: list[FoodEntry] = field(default_factory=list)
    hydration: list[WaterIntake] = field(default_factory=list)
    sleep: list[SleepLog] = field(default_factory=list)
    alcohol: list[AlcoholEntry] = field(default_factory=list)
    runs: list[RunSession] = field(default_factory=list)
    rides: list[RideSession] = field(default_factory=list)
    swims: list[SwimSession] = field(default_factory=list)
    personal_records: list[PersonalRecord] = field(default_factory=list)


@dataclass
class ContextDigest:
    history_text: str
    today_text: str
    failed_domains: list[str] = field(default_factory=list)


def _today() -> date:
    return datetime.now(timezone.utc).date()


def _day_start(day: date) -> datetime:
    return datetime.combine(day, time.min)


def _fmt(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.1f}"


def _fetch_profile(db: Session, user_id: str, since: date, today: date) -> Optional[Profile]:
    return db.query(Profile).filter(Profile.id == user_id).first()


def _fetch_workouts(db: Session, user_id: str, since: date, today: date) -> list[WorkoutLog]:
    return (
        db.query(WorkoutLog)
        .filter(
            WorkoutLog.user_id == user_id,
            WorkoutLog.completed_at >= _day_start(since),
            WorkoutLog.completed_at < _day_start(today + timedelta(days=1)),
        )
        .order_by(WorkoutLog.completed_at.asc())
        .all()
    )


def _fetch_meals(db: Session, user_id: str, since: date, today: date) -> list[FoodEntry]:
    return (
        db.query(FoodEntry)
        .filter(FoodEntry.user_id == user_id, FoodEntry.logged_date >= since, FoodEntry.logged_date <= today)
        .order_by(FoodEntry.logged_date.asc(), FoodEntry.created_at.asc())
        .all()
    )


def _fetch_hydration(db: Session, user_id: str, since: date, today: date) -> list[WaterIntake]:
    return (
        db.query(WaterIntake)
        .filter(WaterIntake.user_id == user_id, WaterIntake.logged_date >= since, WaterIntake.logged_date <= today)
        .order_by(WaterIntake.logged_date.asc(), WaterIntake.created_at.asc())
        .all()
    )


def _fetch_sleep(db: Session, user_id: str, since: date, today: date) -> list[SleepLog]:
    return (
        db.query(SleepLog)
        .filter(SleepLog.user_id == user_id, SleepLog.sleep_date >= since, SleepLog.sleep_date <= today)
        .order_by(SleepLog.sleep_date.asc())
        .all()
    )


def _fetch_alcohol(db: Session, user_id: str, since: date, today: date) -> list[AlcoholEntry]:
    return (
        db.query(AlcoholEntry)
        .filter(AlcoholEntry.user_id == user_id, AlcoholEntry.logged_date >= since, AlcoholEntry.logged_date <= today)
        .order_by(AlcoholEntry.logged_date.asc(), AlcoholEntry.created_at.asc())
        .all()
    )


def _cardio_fetcher(model: Any) -> Callable[[Session, str, date, date], list[Any]]:
    def _fetch(db: Session, user_id: str, since: date, today: date) -> list[Any]:
        return (
            db.query(model)
            .filter(
                model.user_id == user_id,
                model.status == "completed",
                model.started_at >= _day_start(since),
                model.started_at < _day_start(today + timedelta(days=1)),
            )
            .order_by(model.started_at.asc())
            .all()
        )

    return _fetch


def _fetch_personal_records(db: Session, user_id: str, since: date, today: date) -> list[PersonalRecord]:
    return (
        db.query(PersonalRecord)
        .filter(PersonalRecord.user_id == user_id, PersonalRecord.achieved_at >= _day_start(since))
        .order_by(PersonalRecord.achieved_at.desc())
        .limit(MAX_PERSONAL_RECORDS)
        .all()
    )


DOMAIN_FETCHERS: dict[str, Callable[[Session, str, date, date], Any]] = {
    "profile": _fetch_profile,
    "workouts": _fetch_workouts,
    "meals": _fetch_meals,
    "hydration": _fetch_hydration,
    "sleep": _fetch_sleep,
    "alcohol": _fetch_alcohol,
    "runs": _cardio_fetcher(RunSession),
    "rides": _cardio_fetcher(RideSession),
    "swims": _cardio_fetcher(SwimSession),
    "personal_records": _fetch_personal_records,
}


async def _run_read(session_factory: sessionmaker, reader: Callable[[Session], Any]) -> Any:
    def _run() -> Any:
        db = session_factory()
        try:
            return reader(db)
        finally:
            db.close()

    return await asyncio.wait_for(asyncio.to_thread(_run), timeout=CONTEXT_FETCH_TIMEOUT_SECONDS)


async def _guarded_fetch(
    domain: str,
    fetcher: Callable[[Session, str, date, date], Any],
    session_factory: sessionmaker,
    user_id: str,
    since: date,
    today: date,
) -> tuple[str, Any, bool]:
    try:
        rows = await _run_read(session_factory, lambda db: fetcher(db, user_id, since, today))
        return domain, rows, True
    except Exception as exc:
        logger.warning("context_fetch_failed domain=%s user_id=%s detail=%s", domain, user_id, str(exc)[:220])
        return domain, None, False


async def fetch_history(
    session_factory: sessionmaker, user_id: str, today: Optional[date] = None
) -> tuple[HistoryData, list[str]]:
    day = today or _today()
    since = day - timedelta(days=HISTORY_DAYS - 1)
    results = await asyncio.gather(
        *[
            _guarded_fetch(domain, fetcher, session_factory, user_id, since, day)
            for domain, fetcher in DOMAIN_FETCHERS.items()
        ]
    )
    data = HistoryData()
    failed: list[str] = []
    for domain, rows, ok in results:
        if not ok:
            failed.append(domain)
            continue
        if rows is not None:
            setattr(data, domain, rows)
    return data, failed


def _food_item_names(entry: FoodEntry) -> str:
    names: list[str] = []
    try:
        items = json.loads(entry.food_items_json or "[]")
    except json.JSONDecodeError:
        items = []
    if isinstance(items, list):
        for item in items:
            if isinstance(item, dict) and str(item.get("name") or "").strip():
                names.append(str(item["name"]).strip())
    if names:
        return ", ".join(names)
    return (entry.notes or "unspecified food").strip()


def _render_profile(profile: Optional[Profile]) -> list[str]:
    lines = ["=== USER PROFILE ==="]
    if profile is None:
        lines.append("No profile entries on file.")
        return lines
    parts = []
    if profile.display_name:
        parts.append(f"Name: {profile.display_name}")
    if profile.primary_goal:
        parts.append(f"Goal: {profile.primary_goal}")
    if profile.experience_level:
        parts.append(f"Experience: {profile.experience_level}")
    if profile.weight_kg is not None:
        parts.append(f"Weight: {_fmt(profile.weight_kg)}kg")
    if profile.height_cm is not None:
        parts.append(f"Height: {_fmt(profile.height_cm)}cm")
    if profile.age is not None:
        parts.append(f"Age: {profile.age}")
    if profile.gender:
        parts.append(f"Gender: {profile.gender}")
    if profile.daily_calorie_goal:
        parts.append(f"Daily calorie goal: {profile.daily_calorie_goal} kcal")
    lines.append(" | ".join(parts) if parts else "Profile exists but has no details filled in.")
    return lines


def _render_workouts(workouts: list[WorkoutLog]) -> list[str]:
    lines = [f"=== WORKOUT HISTORY (LAST {HISTORY_DAYS} DAYS) ==="]
    if not workouts:
        lines.append(f"No workout entries in the last {HISTORY_DAYS} days.")
        return lines
    by_date: dict[date, list[WorkoutLog]] = defaultdict(list)
    for workout in workouts:
        by_date[workout.completed_at.date()].append(workout)
    for day in sorted(by_date):
        lines.append(f"{day.isoformat()}:")
        for workout in by_date[day]:
            label = workout.workout_name
            if workout.muscle_group:
                label += f" ({workout.muscle_group})"
            summary = (
                f"  - {label}, {workout.duration_minutes} min, {workout.calories_burned} kcal, "
                f"{workout.total_sets} sets"
            )
            exercises = [
                f"{ex.exercise_name} {ex.sets_completed}x{ex.reps_completed}"
                + (f" @ {_fmt(ex.weight_used)}lbs" if ex.weight_used else "")
                for ex in workout.exercises
            ]
            if exercises:
                summary += ": " + ", ".join(exercises)
            lines.append(summary)
    return lines


def _cardio_rows(data: HistoryData) -> list[tuple[datetime, str, Any]]:
    rows = [(r.started_at, "Run", r) for r in data.runs]
    rows += [(r.started_at, "Ride", r) for r in data.rides]
    rows += [(s.started_at, "Swim", s) for s in data.swims]
    return sorted(rows, key=lambda item: item[0])


def _render_cardio(data: HistoryData) -> list[str]:
    lines = [f"=== CARDIO SESSIONS (LAST {HISTORY_DAYS} DAYS) ==="]
    rows = _cardio_rows(data)
    if not rows:
        lines.append(f"No cardio entries in the last {HISTORY_DAYS} days.")
        return lines
    for started_at, kind, session in rows:
        if kind == "Swim":
            distance = f"{round(session.total_distance_m)} m"
        else:
            distance = f"{session.total_distance_m / 1000:.2f} km"
        minutes = round(session.moving_time_s / 60)
        lines.append(f"- {started_at.date().isoformat()} {kind}: {distance} in {minutes} min, {session.calories} kcal")
    return lines


def _render_food(meals: list[FoodEntry]) -> list[str]:
    lines = [f"=== FOOD HISTORY (LAST {HISTORY_DAYS} DAYS) ==="]
    if not meals:
        lines.append(f"No food entries in the last {HISTORY_DAYS} days.")
        return lines
    by_date: dict[date, list[FoodEntry]] = defaultdict(list)
    for meal in meals:
        by_date[meal.logged_date].append(meal)
    for day in sorted(by_date):
        entries = by_date[day]
        calories = sum(e.total_calories for e in entries)
        protein = sum(e.total_protein for e in entries)
        carbs = sum(e.total_carbs for e in entries)
        fat = sum(e.total_fat for e in entries)
        lines.append(
            f"{day.isoformat()} (total: {round(calories)} kcal, P {round(protein)}g, "
            f"C {round(carbs)}g, F {round(fat)}g):"
        )
        for entry in entries:
            lines.append(f"  - {entry.meal_type}: {_food_item_names(entry)} ({round(entry.total_calories)} kcal)")
    return lines


def _render_hydration(hydration: list[WaterIntake]) -> list[str]:
    lines = [f"=== HYDRATION (LAST {HISTORY_DAYS} DAYS) ==="]
    if not hydration:
        lines.append(f"No hydration entries in the last {HISTORY_DAYS} days.")
        return lines
    by_date: dict[date, list[WaterIntake]] = defaultdict(list)
    for row in hydration:
        by_date[row.logged_date].append(row)
    for day in sorted(by_date):
        rows = by_date[day]
        per_type: dict[str, int] = defaultdict(int)
        for row in rows:
            per_type[row.beverage_type] += row.amount_ml
        breakdown = ", ".join(f"{name} {amount} ml" for name, amount in per_type.items())
        lines.append(
            f"{day.isoformat()}: {sum(r.amount_ml for r in rows)} ml total, "
            f"{sum(r.effective_hydration_ml for r in rows)} ml effective ({breakdown})"
        )
    return lines


def _render_sleep(sleep: list[SleepLog]) -> list[str]:
    lines = [f"=== SLEEP (LAST {HISTORY_DAYS} DAYS) ==="]
    if not sleep:
        lines.append(f"No sleep entries in the last {HISTORY_DAYS} days.")
        return lines
    for row in sleep:
        line = (
            f"- {row.sleep_date.isoformat()}: {round(row.duration_minutes / 60, 1)} h, quality {row.quality_score}/5 "
            f"(bed {row.bedtime.strftime('%H:%M')}, wake {row.wake_time.strftime('%H:%M')})"
        )
        if row.notes:
            line += f" - {row.notes}"
        lines.append(line)
    return lines


def _render_alcohol(alcohol: list[AlcoholEntry]) -> list[str]:
    lines = [f"=== ALCOHOL (LAST {HISTORY_DAYS} DAYS) ==="]
    if not alcohol:
        lines.append(f"No alcohol entries in the last {HISTORY_DAYS} days.")
        return lines
    by_date: dict[date, list[AlcoholEntry]] = defaultdict(list)
    for row in alcohol:
        by_date[row.logged_date].append(row)
    for day in sorted(by_date):
        rows = by_date[day]
        per_type: dict[str, float] = defaultdict(float)
        for row in rows:
            per_type[row.drink_type] += row.quantity
        breakdown = ", ".join(f"{name} x{_fmt(qty)}" for name, qty in per_type.items())
        lines.append(f"{day.isoformat()}: {_fmt(sum(r.quantity for r in rows))} drinks ({breakdown})")
    return lines


def _render_personal_records(records: list[PersonalRecord]) -> list[str]:
    lines = ["=== PERSONAL RECORDS (MOST RECENT) ==="]
    if not records:
        lines.append(f"No personal record entries in the last {HISTORY_DAYS} days.")
        return lines
    ordered = sorted(records, key=lambda r: r.achieved_at, reverse=True)[:MAX_PERSONAL_RECORDS]
    for record in ordered:
        lines.append(
            f"- {record.achieved_at.date().isoformat()} {record.exercise_name}: "
            f"{_fmt(record.weight_lbs)} lbs x {record.reps}"
        )
    return lines


def _render_summary(data: HistoryData) -> list[str]:
    lines = [f"=== {HISTORY_DAYS}-DAY SUMMARY ==="]

    workout_minutes = sum(w.duration_minutes for w in data.workouts)
    workout_calories = sum(w.calories_burned for w in data.workouts)
    lines.append(
        f"Workouts: {len(data.workouts)} sessions, {workout_minutes} min, {workout_calories} kcal burned"
    )

    run_km = sum(r.total_distance_m for r in data.runs) / 1000
    ride_km = sum(r.total_distance_m for r in data.rides) / 1000
    swim_m = sum(s.total_distance_m for s in data.swims)
    cardio_count = len(data.runs) + len(data.rides) + len(data.swims)
    lines.append(
        f"Cardio: {cardio_count} sessions (run {run_km:.2f} km, ride {ride_km:.2f} km, swim {round(swim_m)} m)"
    )

    food_days = {m.logged_date for m in data.meals}
    if food_days:
        avg_calories = round(sum(m.total_calories for m in data.meals) / len(food_days))
        avg_protein = round(sum(m.total_protein for m in data.meals) / len(food_days))
        lines.append(
            f"Food: {len(food_days)} days logged, avg {avg_calories} kcal/day, avg {avg_protein}g protein/day"
        )
    else:
        lines.append("Food: 0 days logged")

    hydration_days = {h.logged_date for h in data.hydration}
    if hydration_days:
        avg_effective = round(sum(h.effective_hydration_ml for h in data.hydration) / len(hydration_days))
        lines.append(f"Hydration: {len(hydration_days)} days logged, avg {avg_effective} ml effective/day")
    else:
        lines.append("Hydration: 0 days logged")

    if data.sleep:
        avg_hours = round(sum(s.duration_minutes for s in data.sleep) / len(data.sleep) / 60, 1)
        avg_quality = round(sum(s.quality_score for s in data.sleep) / len(data.sleep), 1)
        lines.append(f"Sleep: {len(data.sleep)} nights, avg {avg_hours} h, avg quality {avg_quality}/5")
    else:
        lines.append("Sleep: 0 nights logged")

    drink_days = {a.logged_date for a in data.alcohol}
    lines.append(f"Alcohol: {_fmt(sum(a.quantity for a in data.alcohol))} drinks across {len(drink_days)} days")
    lines.append(f"Personal records: {len(data.personal_records)}")
    return lines


def render_history(data: HistoryData) -> str:
    sections = [
        _render_profile(data.profile),
        _render_workouts(data.workouts),
        _render_cardio(data),
        _render_food(data.meals),
        _render_hydration(data.hydration),
        _render_sleep(data.sleep),
        _render_alcohol(data.alcohol),
        _render_personal_records(data.personal_records),
        _render_summary(data),
    ]
    return "\n\n".join("\n".join(section) for section in sections)


def render_today(data: HistoryData, today: date) -> str:
    lines = [f"=== TODAY ({today.isoformat()}) ==="]

    meals = [m for m in data.meals if m.logged_date == today]
    if meals:
        lines.append(
            f"Food: {len(meals)} entries, {round(sum(m.total_calories for m in meals))} kcal "
            f"(P {round(sum(m.total_protein for m in meals))}g, C {round(sum(m.total_carbs for m in meals))}g, "
            f"F {round(sum(m.total_fat for m in meals))}g)"
        )
    else:
        lines.append("Food: nothing logged yet today.")

    drinks = [h for h in data.hydration if h.logged_date == today]
    if drinks:
        lines.append(
            f"Hydration: {sum(h.effective_hydration_ml for h in drinks)} ml effective "
            f"({sum(h.amount_ml for h in drinks)} ml total)"
        )
    else:
        lines.append("Hydration: nothing logged yet today.")

    workouts = [w for w in data.workouts if w.completed_at.date() == today]
    cardio = [row for row in _cardio_rows(data) if row[0].date() == today]
    if workouts or cardio:
        names = [w.workout_name for w in workouts] + [kind for _, kind, _ in cardio]
        lines.append(f"Training: {', '.join(names)}")
    else:
        lines.append("Training: no workouts logged yet today.")

    alcohol = [a for a in data.alcohol if a.logged_date == today]
    if alcohol:
        lines.append(f"Alcohol: {_fmt(sum(a.quantity for a in alcohol))} drinks")

    last_night = [s for s in data.sleep if s.sleep_date == today - timedelta(days=1)]
    if last_night:
        row = last_night[-1]
        lines.append(f"Last night's sleep: {round(row.duration_minutes / 60, 1)} h, quality {row.quality_score}/5")
    else:
        lines.append("Last night's sleep: not logged.")
    return "\n".join(lines)


async def build_context_digest(
    session_factory: sessionmaker, user_id: str, today: Optional[date] = None
) -> ContextDigest:
    day = today or _today()
    data, failed = await fetch_history(session_factory, user_id, day)
    if failed:
        logger.info("context_digest_partial user_id=%s failed_domains=%s", user_id, ",".join(failed))
    return ContextDigest(history_text=render_history(data), today_text=render_today(data, day), failed_domains=failed)


def _injury_context_text(db: Session, user_id: str, today: date) -> Optional[str]:
    score = calculate_injury_risk_score(db, user_id, today)
    imbalances = (
        db.query(MuscleImbalance)
        .filter(MuscleImbalance.user_id == user_id, MuscleImbalance.resolved.is_(False))
        .order_by(MuscleImbalance.imbalance_percent.desc())
        .limit(5)
        .all()
    )
    form_logs = (
        db.query(FormAnalysisLog)
        .filter(FormAnalysisLog.user_id == user_id, FormAnalysisLog.analyzed_at >= _day_start(today - timedelta(days=13)))
        .order_by(FormAnalysisLog.analyzed_at.desc())
        .limit(5)
        .all()
    )
    lines = ["=== INJURY RISK CONTEXT ===", f"Injury risk score: {score}/100 ({describe_injury_risk(score)})"]
    for item in imbalances:
        side = f", weaker {item.weaker_side} side" if item.weaker_side else ""
        lines.append(f"- Imbalance: {item.muscle_group} {_fmt(item.imbalance_percent)}%{side}")
    for log in form_logs:
        issues = f" - {log.issues}" if log.issues else ""
        lines.append(f"- Form check {log.analyzed_at.date().isoformat()} {log.exercise_name}: {log.form_score}/100{issues}")
    lines.append("Factor this risk into any training advice and suggest deloads or mobility work when risk is elevated.")
    return "\n".join(lines)


def _mood_context_text(db: Session, user_id: str, today: date) -> Optional[str]:
    score = calculate_readiness_score(db, user_id, today)
    moods = (
        db.query(MoodEntry)
        .filter(MoodEntry.user_id == user_id, MoodEntry.logged_at >= _day_start(today - timedelta(days=6)))
        .order_by(MoodEntry.logged_at.desc())
        .all()
    )
    lines = ["=== MOOD & READINESS CONTEXT ===", f"Readiness score: {score}/100 ({describe_readiness(score)})"]
    if moods:
        lines.append(
            f"Last 7 days: avg mood {round(sum(m.mood_score for m in moods) / len(moods), 1)}/10, "
            f"avg energy {round(sum(m.energy_level for m in moods) / len(moods), 1)}/10, "
            f"avg stress {round(sum(m.stress_level for m in moods) / len(moods), 1)}/10"
        )
        latest = moods[0]
        lines.append(
            f"Latest check-in {latest.logged_at.date().isoformat()}: mood {latest.mood_score}, "
            f"energy {latest.energy_level}, stress {latest.stress_level}"
            + (f" - {latest.notes}" if latest.notes else "")
        )
    lines.append("Match training intensity to readiness and acknowledge how the user is feeling.")
    return "\n".join(lines)


async def _optional_context(
    name: str,
    builder: Callable[[Session, str, date], Optional[str]],
    session_factory: sessionmaker,
    user_id: str,
    today: Optional[date],
) -> Optional[str]:
    day = today or _today()
    try:
        return await _run_read(session_factory, lambda db: builder(db, user_id, day))
    except Exception as exc:
        logger.warning("context_enrichment_failed section=%s user_id=%s detail=%s", name, user_id, str(exc)[:220])
        return None


async def build_injury_context(
    session_factory: sessionmaker, user_id: str, today: Optional[date] = None
) -> Optional[str]:
    return await _optional_context("injury", _injury_context_text, session_factory, user_id, today)


async def build_mood_context(
    session_factory: sessionmaker, user_id: str, today: Optional[date] = None
) -> Optional[str]:
    return await _optional_context("mood", _mood_context_text, session_factory, user_id, today)
