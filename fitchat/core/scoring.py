from datetime import date, datetime, time, timedelta, timezone
from statistics import mean
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from fitchat.db.models import FormAnalysisLog, MoodEntry, MuscleImbalance, SleepLog, WorkoutLog


def _today() -> date:
    return datetime.now(timezone.utc).date()


def _clamp_score(value: float) -> int:
    return int(max(0, min(100, round(value))))


def _avg(values: Iterable[float], fallback: float) -> float:
    data = list(values)
    if not data:
        return fallback
    return float(mean(data))


def _day_start(day: date) -> datetime:
    return datetime.combine(day, time.min)


def _training_load(workouts: list[WorkoutLog]) -> float:
    # Minutes weighted by volume; a session with no sets still counts its duration.
    return float(sum(w.duration_minutes * (1.0 + min(w.total_sets, 40) / 40.0) for w in workouts))


def calculate_injury_risk_score(db: Session, user_id: str, today: Optional[date] = None) -> int:
    """Injury risk 0..100, higher is riskier.

    Combines the acute:chronic workload ratio (7 vs 28 days), unresolved left/right
    imbalances and form scores from the last two weeks.
    """
    day = today or _today()
    end = _day_start(day + timedelta(days=1))
    acute_start = _day_start(day - timedelta(days=6))
    chronic_start = _day_start(day - timedelta(days=27))

    workouts = (
        db.query(WorkoutLog)
        .filter(WorkoutLog.user_id == user_id, WorkoutLog.completed_at >= chronic_start, WorkoutLog.completed_at < end)
        .all()
    )
    acute = _training_load([w for w in workouts if w.completed_at >= acute_start])
    chronic_weekly = _training_load(workouts) / 4.0

    if chronic_weekly <= 0:
        load_component = 20.0 if acute > 0 else 0.0
    else:
        ratio = acute / chronic_weekly
        if ratio > 1.5:
            load_component = min(50.0, 30.0 + (ratio - 1.5) * 40.0)
        elif ratio < 0.8:
            load_component = 10.0
        else:
            load_component = max(0.0, (ratio - 0.8) * 30.0)

    imbalances = (
        db.query(MuscleImbalance)
        .filter(MuscleImbalance.user_id == user_id, MuscleImbalance.resolved.is_(False))
        .all()
    )
    imbalance_component = min(30.0, sum(max(0.0, i.imbalance_percent - 5.0) for i in imbalances) * 1.5)

    form_logs = (
        db.query(FormAnalysisLog)
        .filter(FormAnalysisLog.user_id == user_id, FormAnalysisLog.analyzed_at >= _day_start(day - timedelta(days=13)))
        .all()
    )
    form_avg = _avg((f.form_score for f in form_logs), 80.0)
    form_component = min(20.0, max(0.0, (80.0 - form_avg) * 0.5))

    return _clamp_score(load_component + imbalance_component + form_component)


def calculate_readiness_score(db: Session, user_id: str, today: Optional[date] = None) -> int:
    """Recovery readiness 0..100, higher is more ready to train."""
    day = today or _today()
    last_night = (
        db.query(SleepLog)
        .filter(SleepLog.user_id == user_id, SleepLog.sleep_date <= day)
        .order_by(SleepLog.sleep_date.desc())
        .first()
    )
    if last_night:
        hours = last_night.duration_minutes / 60.0
        sleep_component = min(100.0, (hours / 8.0) * 100.0) * 0.7 + (last_night.quality_score / 5.0) * 100.0 * 0.3
    else:
        sleep_component = 60.0

    moods = (
        db.query(MoodEntry)
        .filter(MoodEntry.user_id == user_id, MoodEntry.logged_at >= _day_start(day - timedelta(days=2)))
        .all()
    )
    mood_avg = _avg((m.mood_score for m in moods), 6.0)
    energy_avg = _avg((m.energy_level for m in moods), 6.0)
    stress_avg = _avg((m.stress_level for m in moods), 5.0)
    wellbeing_component = ((mood_avg + energy_avg + (11.0 - stress_avg)) / 30.0) * 100.0

    yesterday_workouts = (
        db.query(WorkoutLog)
        .filter(
            WorkoutLog.user_id == user_id,
            WorkoutLog.completed_at >= _day_start(day - timedelta(days=1)),
            WorkoutLog.completed_at < _day_start(day),
        )
        .all()
    )
    fatigue_penalty = min(20.0, _training_load(yesterday_workouts) / 6.0)

    return _clamp_score(sleep_component * 0.5 + wellbeing_component * 0.5 - fatigue_penalty)


def describe_injury_risk(score: int) -> str:
    if score >= 60:
        return "high"
    if score >= 30:
        return "moderate"
    return "low"


def describe_readiness(score: int) -> str:
    if score >= 75:
        return "ready for a hard session"
    if score >= 50:
        return "ready for moderate training"
    return "prioritize recovery"
