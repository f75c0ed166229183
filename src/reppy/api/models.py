"""Request bodies for the Reppy API."""
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


ExerciseType = Literal["bodyweight", "weighted", "cardio", "timed"]
LogLevel = Literal["error", "warn", "info"]


# Auth
class SignUpRequest(BaseModel):
    email: str
    password: str = Field(min_length=6)
    display_name: Optional[str] = None
    username: Optional[str] = None

class SignInRequest(BaseModel):
    email: str
    password: str


# Profiles
class ProfileUpdate(BaseModel):
    display_name: Optional[str] = None
    username: Optional[str] = None
    current_weight: Optional[float] = None
    gender: Optional[str] = None
    date_of_birth: Optional[str] = None
    height: Optional[float] = None
    avatar: Optional[str] = None

class BodyWeightCreate(BaseModel):
    weight: float = Field(gt=0)
    date: Optional[str] = None


# Exercises
class ExerciseCreate(BaseModel):
    name: str = Field(min_length=1)
    type: ExerciseType = "weighted"
    image_url: Optional[str] = None


# Workouts
class WorkoutCreate(BaseModel):
    date: Optional[str] = None
    notes: Optional[str] = None
    photo_url: Optional[str] = None

class WorkoutUpdate(BaseModel):
    notes: Optional[str] = None
    photo_url: Optional[str] = None
    is_locked: Optional[bool] = None

class SetCreate(BaseModel):
    exercise_id: str
    set_number: Optional[int] = None
    reps: Optional[int] = None
    weight: Optional[float] = None
    distance_km: Optional[float] = None
    duration_minutes: Optional[float] = None
    plank_seconds: Optional[int] = None

class SetUpdate(BaseModel):
    set_number: Optional[int] = None
    reps: Optional[int] = None
    weight: Optional[float] = None
    distance_km: Optional[float] = None
    duration_minutes: Optional[float] = None
    plank_seconds: Optional[int] = None


# Friends
class FriendRequestCreate(BaseModel):
    addressee_id: str


# Logs
class LogEntry(BaseModel):
    level: LogLevel = "error"
    message: str
    stack: Optional[str] = None
    url: Optional[str] = None
    user_agent: Optional[str] = None
    metadata: dict[str, Any] = {}

class LogBatch(BaseModel):
    entries: list[LogEntry]


# Admin
class AdminFlagUpdate(BaseModel):
    is_admin: bool
