"""Training volume arithmetic shared by reports and progress views."""

from typing import Iterable, Optional


def calculate_set_volume(set_row: dict, body_weight: Optional[float] = None) -> float:
    """Volume for one set.

    Recorded weight wins. Bodyweight exercises fall back to the user's body
    weight, then to plain reps. Anything else without weight counts as zero.
    """
    reps = set_row.get("reps") or 0
    exercise = set_row.get("exercise") or {}
    exercise_type = exercise.get("type")

    if set_row.get("weight"):
        return reps * set_row["weight"]

    if exercise_type == "bodyweight" and body_weight:
        return reps * body_weight

    return reps if exercise_type == "bodyweight" else 0


def calculate_total_volume(sets: Iterable[dict], body_weight: Optional[float] = None) -> float:
    return sum(calculate_set_volume(s, body_weight) for s in sets)


def format_volume(volume: float, include_unit: bool = True) -> str:
    """Format volume with thousands separators; zero renders as an em dash."""
    if volume == 0:
        return "—"
    formatted = f"{round(volume):,}".replace(",", " ")
    return f"{formatted} kg × reps" if include_unit else formatted
