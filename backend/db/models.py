from datetime import datetime
from sqlalchemy import (
    Column, Integer, Text, Boolean, ForeignKey, Index,
    DateTime,
)
from sqlalchemy.orm import relationship
from db.database import Base, PROGRESS_UNIQUE_INDEX


PROGRESS_STATUSES = ("pending", "completed", "missed", "partial", "skipped")
# Statuses reconciliation may create, promote and clean up.
ENGINE_OWNED_STATUSES = frozenset({"pending", "missed"})


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(Text, unique=True, nullable=False)
    username_normalized = Column(Text, unique=True, nullable=False)
    password_hash = Column(Text, nullable=False)
    display_name = Column(Text, nullable=False)
    token_version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    settings = relationship("UserSettings", back_populates="user", uselist=False, cascade="all, delete-orphan")
    objectives = relationship("LearningObjective", back_populates="user", cascade="all, delete-orphan")
    schedules = relationship("Schedule", back_populates="user", cascade="all, delete-orphan")
    progress = relationship("DailyProgress", back_populates="user", cascade="all, delete-orphan")
    notifications = relationship("Notification", back_populates="user", cascade="all, delete-orphan")


class UserSettings(Base):
    __tablename__ = "user_settings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    timezone = Column(Text, default="UTC")  # IANA name
    reminders_enabled = Column(Boolean, nullable=False, default=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="settings")


class LearningObjective(Base):
    __tablename__ = "learning_objectives"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    title = Column(Text, nullable=False)
    description = Column(Text)
    category = Column(Text, nullable=False, default="General")
    priority = Column(Text, nullable=False, default="medium")  # low | medium | high
    estimated_minutes = Column(Integer, nullable=False, default=60)
    color = Column(Text, default="#8b6d4b")
    icon = Column(Text, default="Book")
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="objectives")


class Schedule(Base):
    """Weekly template: one row per plan, days and items hang off it."""

    __tablename__ = "schedules"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    name = Column(Text, nullable=False)
    description = Column(Text)
    is_default = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="schedules")
    days = relationship(
        "ScheduleDay",
        back_populates="schedule",
        cascade="all, delete-orphan",
        order_by="ScheduleDay.id",
    )


class ScheduleDay(Base):
    __tablename__ = "schedule_days"

    id = Column(Integer, primary_key=True, autoincrement=True)
    schedule_id = Column(Integer, ForeignKey("schedules.id"), nullable=False)
    day = Column(Text, nullable=False)  # monday .. sunday
    is_active = Column(Boolean, nullable=False, default=True)

    schedule = relationship("Schedule", back_populates="days")
    items = relationship(
        "ScheduleItem",
        back_populates="schedule_day",
        cascade="all, delete-orphan",
        order_by="ScheduleItem.id",
    )


class ScheduleItem(Base):
    __tablename__ = "schedule_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    schedule_day_id = Column(Integer, ForeignKey("schedule_days.id"), nullable=False)
    objective_id = Column(Integer, ForeignKey("learning_objectives.id"), nullable=False)
    start_time = Column(Text)  # HH:MM, optional
    end_time = Column(Text)  # HH:MM, optional
    duration_minutes = Column(Integer, default=60)

    schedule_day = relationship("ScheduleDay", back_populates="items")
    objective = relationship("LearningObjective")


class DailyProgress(Base):
    __tablename__ = "daily_progress"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    objective_id = Column(Integer, ForeignKey("learning_objectives.id"), nullable=False)
    progress_date = Column(Text, nullable=False)  # YYYY-MM-DD, user-local calendar day
    status = Column(Text, nullable=False, default="pending")  # pending | completed | missed | partial | skipped
    remarks = Column(Text)
    notes = Column(Text, default="")
    time_spent = Column(Integer, nullable=False, default=0)  # minutes
    completed_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="progress")
    objective = relationship("LearningObjective")


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    category = Column(Text, nullable=False, default="info")  # info | reminder | success | summary
    title = Column(Text, nullable=False)
    message = Column(Text, nullable=False)
    payload = Column(Text)  # JSON object
    is_read = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    read_at = Column(DateTime)

    user = relationship("User", back_populates="notifications")


# Indexes
Index("idx_users_username_normalized", User.username_normalized, unique=True)
Index("idx_objectives_user_active", LearningObjective.user_id, LearningObjective.is_active)
Index("idx_objectives_user_category", LearningObjective.user_id, LearningObjective.category)
Index("idx_schedules_user_default", Schedule.user_id, Schedule.is_default, Schedule.is_active)
Index("idx_schedule_days_schedule", ScheduleDay.schedule_id, ScheduleDay.day)
Index("idx_schedule_items_day", ScheduleItem.schedule_day_id)
Index(
    PROGRESS_UNIQUE_INDEX,
    DailyProgress.user_id,
    DailyProgress.objective_id,
    DailyProgress.progress_date,
    unique=True,
)
Index("idx_daily_progress_user_date", DailyProgress.user_id, DailyProgress.progress_date)
Index("idx_daily_progress_user_status", DailyProgress.user_id, DailyProgress.status)
Index("idx_notifications_user_date", Notification.user_id, Notification.created_at)
Index("idx_notifications_user_read", Notification.user_id, Notification.is_read)
