from datetime import date, datetime
from typing import Optional

from sqlalchemy import Boolean, Date, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, declarative_base, mapped_column, relationship

Base = declarative_base()


class Profile(Base):
    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    primary_goal: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    experience_level: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    weight_kg: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    height_cm: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    age: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    gender: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    daily_calorie_goal: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


class WorkoutLog(Base):
    __tablename__ = "workout_logs"
    __table_args__ = (Index("ix_workout_logs_user_completed", "user_id", "completed_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    workout_name: Mapped[str] = mapped_column(String(120), nullable=False)
    muscle_group: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    calories_burned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_sets: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_reps: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)

    exercises: Mapped[list["ExerciseLog"]] = relationship(
        "ExerciseLog", back_populates="workout", cascade="all, delete-orphan", lazy="selectin"
    )


class ExerciseLog(Base):
    __tablename__ = "exercise_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    workout_log_id: Mapped[int] = mapped_column(ForeignKey("workout_logs.id"), nullable=False, index=True)
    exercise_name: Mapped[str] = mapped_column(String(120), nullable=False)
    sets_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reps_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    weight_used: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    workout: Mapped[WorkoutLog] = relationship("WorkoutLog", back_populates="exercises")


class FoodEntry(Base):
    __tablename__ = "food_entries"
    __table_args__ = (
        Index("ix_food_entries_user_date", "user_id", "logged_date"),
        UniqueConstraint("user_id", "client_request_id", name="uq_food_entries_user_request"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    logged_date: Mapped[date] = mapped_column(Date, nullable=False)
    meal_type: Mapped[str] = mapped_column(String(32), nullable=False)
    food_items_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    total_calories: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    total_protein: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    total_carbs: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    total_fat: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    photo_url: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    client_request_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


class WaterIntake(Base):
    __tablename__ = "water_intake"
    __table_args__ = (
        Index("ix_water_intake_user_date", "user_id", "logged_date"),
        UniqueConstraint("user_id", "client_request_id", name="uq_water_intake_user_request"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    logged_date: Mapped[date] = mapped_column(Date, nullable=False)
    amount_ml: Mapped[int] = mapped_column(Integer, nullable=False)
    beverage_type: Mapped[str] = mapped_column(String(32), nullable=False, default="water")
    effective_hydration_ml: Mapped[int] = mapped_column(Integer, nullable=False)
    client_request_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


class SleepLog(Base):
    __tablename__ = "sleep_logs"
    __table_args__ = (UniqueConstraint("user_id", "sleep_date", name="uq_sleep_logs_user_date"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    sleep_date: Mapped[date] = mapped_column(Date, nullable=False)
    bedtime: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    wake_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    quality_score: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class AlcoholEntry(Base):
    __tablename__ = "alcohol_entries"
    __table_args__ = (Index("ix_alcohol_entries_user_date", "user_id", "logged_date"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    logged_date: Mapped[date] = mapped_column(Date, nullable=False)
    drink_type: Mapped[str] = mapped_column(String(32), nullable=False)
    quantity: Mapped[float] = mapped_column(Float, nullable=False, default=1)
    alcohol_content: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


class _CardioSessionMixin:
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    total_distance_m: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    moving_time_s: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    calories: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="completed")


class RunSession(_CardioSessionMixin, Base):
    __tablename__ = "run_sessions"


class RideSession(_CardioSessionMixin, Base):
    __tablename__ = "ride_sessions"


class SwimSession(_CardioSessionMixin, Base):
    __tablename__ = "swim_sessions"

    stroke_type: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)


class PersonalRecord(Base):
    __tablename__ = "personal_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    exercise_name: Mapped[str] = mapped_column(String(120), nullable=False)
    weight_lbs: Mapped[float] = mapped_column(Float, nullable=False)
    reps: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    achieved_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)


class CycleTracking(Base):
    __tablename__ = "cycle_tracking"
    __table_args__ = (UniqueConstraint("user_id", name="uq_cycle_tracking_user_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    average_cycle_length: Mapped[int] = mapped_column(Integer, nullable=False, default=28)
    average_period_length: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    last_period_start: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class MoodEntry(Base):
    __tablename__ = "mood_entries"
    __table_args__ = (Index("ix_mood_entries_user_logged", "user_id", "logged_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    mood_score: Mapped[int] = mapped_column(Integer, nullable=False)
    energy_level: Mapped[int] = mapped_column(Integer, nullable=False)
    stress_level: Mapped[int] = mapped_column(Integer, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    logged_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class MuscleImbalance(Base):
    __tablename__ = "muscle_imbalances"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    muscle_group: Mapped[str] = mapped_column(String(64), nullable=False)
    imbalance_percent: Mapped[float] = mapped_column(Float, nullable=False)
    weaker_side: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    detected_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


class FormAnalysisLog(Base):
    __tablename__ = "form_analysis_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    exercise_name: Mapped[str] = mapped_column(String(120), nullable=False)
    form_score: Mapped[int] = mapped_column(Integer, nullable=False)
    issues: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    analyzed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
