"""Application limits to protect the database from abuse."""

LIMITS = {
    # Workout limits
    "MAX_WORKOUTS_PER_DAY": 5,
    "MAX_EXERCISES_PER_WORKOUT": 30,
    "MAX_SETS_PER_EXERCISE": 20,
    "MAX_TOTAL_SETS_PER_WORKOUT": 100,

    # Notes limits
    "MAX_NOTES_LENGTH": 500,

    # Weighted exercises
    "MIN_WEIGHT_KG": 0.1,
    "MAX_WEIGHT_KG": 500,
    "MIN_REPS": 1,
    "MAX_REPS": 999,

    # Cardio exercises
    "MIN_DISTANCE_KM": 0.1,
    "MAX_DISTANCE_KM": 500,
    "MIN_DURATION_MINUTES": 1,
    "MAX_DURATION_MINUTES": 1440,  # 24 hours

    # Timed exercises
    "MIN_TIME_SECONDS": 1,
    "MAX_TIME_SECONDS": 3600,  # 1 hour
}

# field -> (min key, max key, label)
_RANGES = {
    "weight": ("MIN_WEIGHT_KG", "MAX_WEIGHT_KG", "Weight (kg)"),
    "reps": ("MIN_REPS", "MAX_REPS", "Reps"),
    "distance_km": ("MIN_DISTANCE_KM", "MAX_DISTANCE_KM", "Distance (km)"),
    "duration_minutes": ("MIN_DURATION_MINUTES", "MAX_DURATION_MINUTES", "Duration (min)"),
    "plank_seconds": ("MIN_TIME_SECONDS", "MAX_TIME_SECONDS", "Time (sec)"),
}


class LimitExceeded(ValueError):
    """A value or count is outside the application limits."""


def validate_set_values(values: dict) -> None:
    """Check the measurable fields of a set against the value limits.

    Missing and null fields are skipped; the exercise type decides which
    fields a client sends.
    """
    for field, (min_key, max_key, label) in _RANGES.items():
        value = values.get(field)
        if value is None:
            continue
        low, high = LIMITS[min_key], LIMITS[max_key]
        if value < low or value > high:
            raise LimitExceeded(f"{label} must be between {low} and {high}")


def validate_notes(notes) -> None:
    if notes is not None and len(notes) > LIMITS["MAX_NOTES_LENGTH"]:
        raise LimitExceeded(
            f"Notes cannot exceed {LIMITS['MAX_NOTES_LENGTH']} characters"
        )


def check_set_counts(total: int, exercises: int, for_exercise: int) -> None:
    """Check whether one more set fits in a workout.

    ``total`` is the workout's set count, ``exercises`` its distinct exercise
    count and ``for_exercise`` the sets already logged for the new set's
    exercise.
    """
    if total >= LIMITS["MAX_TOTAL_SETS_PER_WORKOUT"]:
        raise LimitExceeded(f"Maximum {LIMITS['MAX_TOTAL_SETS_PER_WORKOUT']} sets per workout")
    if for_exercise == 0 and exercises >= LIMITS["MAX_EXERCISES_PER_WORKOUT"]:
        raise LimitExceeded(f"Maximum {LIMITS['MAX_EXERCISES_PER_WORKOUT']} exercises per workout")
    if for_exercise >= LIMITS["MAX_SETS_PER_EXERCISE"]:
        raise LimitExceeded(f"Maximum {LIMITS['MAX_SETS_PER_EXERCISE']} sets per exercise")
