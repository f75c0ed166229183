"""
Online Reppy client.

One method per query or mutation the app performs. Reads go through the
shared ``QueryCache``; mutations invalidate the keys that depend on them.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional

import httpx

from .cache import QueryCache
from .errors import OfflineError, error_for

logger = logging.getLogger(__name__)


class ReppyClient:
    """Thin wrapper over an ``httpx.Client`` pointed at a Reppy server."""

    def __init__(self, http: httpx.Client, cache: Optional[QueryCache] = None):
        self.http = http
        self.cache = cache or QueryCache()
        self.token: Optional[str] = None
        self.user: Optional[dict] = None

    @classmethod
    def connect(cls, base_url: str, timeout: float = 10.0, **kwargs) -> "ReppyClient":
        return cls(httpx.Client(base_url=base_url, timeout=timeout), **kwargs)

    # ==================== Transport ====================

    @property
    def user_id(self) -> Optional[str]:
        return self.user["id"] if self.user else None

    @property
    def is_authenticated(self) -> bool:
        return self.token is not None

    def _request(self, method: str, path: str, *, auth: bool = True, raw: bool = False, **kwargs):
        headers = kwargs.pop("headers", {})
        if auth and self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        try:
            response = self.http.request(method, path, headers=headers, **kwargs)
        except httpx.TransportError as e:
            raise OfflineError(str(e)) from e

        if response.status_code >= 400:
            raise error_for(response.status_code, _error_message(response))
        if raw:
            return response.content
        if not response.content:
            return None
        return response.json()

    def _get(self, path, **kwargs):
        return self._request("GET", path, **kwargs)

    def _post(self, path, **kwargs):
        return self._request("POST", path, **kwargs)

    def _patch(self, path, **kwargs):
        return self._request("PATCH", path, **kwargs)

    def _delete(self, path, **kwargs):
        return self._request("DELETE", path, **kwargs)

    def _mutate(self, fn, invalidate: Iterable = ()):
        return self.cache.mutate(fn, invalidate=list(invalidate))

    # ==================== Session ====================

    def _start_session(self, session: dict) -> dict:
        self.token = session["access_token"]
        self.user = session["user"]
        return self.user

    def sign_up(self, email: str, password: str, display_name: Optional[str] = None,
                username: Optional[str] = None) -> dict:
        body = {"email": email, "password": password, "display_name": display_name, "username": username}
        return self._start_session(self._post("/api/auth/signup", json=body, auth=False))

    def sign_in(self, email: str, password: str) -> dict:
        body = {"email": email, "password": password}
        return self._start_session(self._post("/api/auth/signin", json=body, auth=False))

    def sign_out(self) -> None:
        self.token = None
        self.user = None
        self.cache.clear()

    def me(self) -> dict:
        return self._get("/api/auth/me")

    def status(self) -> dict:
        return self._get("/api/status", auth=False)

    # ==================== Profiles ====================

    def get_profile(self) -> dict:
        return self.cache.fetch(("profile", self.user_id), lambda: self._get("/api/profile"))

    def get_user_profile(self, user_id: str) -> dict:
        return self.cache.fetch(("profile", user_id), lambda: self._get(f"/api/profiles/{user_id}"))

    def update_profile(self, **changes) -> dict:
        return self._mutate(lambda: self._patch("/api/profile", json=changes), invalidate=["profile"])

    def all_profiles(self) -> List[dict]:
        return self.cache.fetch(("profiles", "all"), lambda: self._get("/api/profiles"))

    def body_weight_history(self) -> List[dict]:
        return self.cache.fetch(("bodyWeight", self.user_id), lambda: self._get("/api/body-weight"))

    def add_body_weight(self, weight: float, date: Optional[str] = None) -> dict:
        return self._mutate(
            lambda: self._post("/api/body-weight", json={"weight": weight, "date": date}),
            invalidate=["bodyWeight", "profile"],
        )

    # ==================== Exercises ====================

    def exercises(self) -> List[dict]:
        return self.cache.fetch(("exercises", self.user_id), lambda: self._get("/api/exercises"))

    def create_exercise(self, name: str, type: str = "weighted", image_url: Optional[str] = None) -> dict:
        body = {"name": name, "type": type, "image_url": image_url}
        return self._mutate(lambda: self._post("/api/exercises", json=body), invalidate=["exercises"])

    def delete_exercise(self, exercise_id: str) -> None:
        self._mutate(lambda: self._delete(f"/api/exercises/{exercise_id}"), invalidate=["exercises"])

    def last_set(self, exercise_id: str) -> Optional[dict]:
        return self._get(f"/api/exercises/{exercise_id}/last-set")

    def recent_sets(self, exercise_id: str, limit: int = 3) -> List[dict]:
        return self._get(f"/api/exercises/{exercise_id}/recent-sets", params={"limit": limit})

    def favorites(self) -> set:
        return self.cache.fetch(
            ("favorite-exercises", self.user_id),
            lambda: set(self._get("/api/favorites")["exercise_ids"]),
        )

    def add_favorite(self, exercise_id: str) -> None:
        self._post(f"/api/favorites/{exercise_id}")

    def remove_favorite(self, exercise_id: str) -> None:
        self._delete(f"/api/favorites/{exercise_id}")

    def toggle_favorite(self, exercise_id: str, is_favorite: bool) -> None:
        """Flip a favorite optimistically; the set is restored if the call fails."""
        key = ("favorite-exercises", self.user_id)

        def apply():
            self.cache.cancel(key)
            context = self.cache.snapshot([key])

            def patch(old):
                updated = set(old or ())
                if is_favorite:
                    updated.discard(exercise_id)
                else:
                    updated.add(exercise_id)
                return updated

            self.cache.set_data(key, patch)
            return context

        def call():
            if is_favorite:
                self.remove_favorite(exercise_id)
            else:
                self.add_favorite(exercise_id)

        self.cache.mutate(
            call,
            on_mutate=apply,
            on_error=lambda e, context: self.cache.restore(context),
            on_settled=lambda: self.cache.invalidate(key),
        )

    # ==================== Workouts ====================

    def workouts(self, month: Optional[str] = None, since: Optional[str] = None) -> List[dict]:
        if since:
            return self._get("/api/workouts", params={"since": since})
        if month:
            return self.cache.fetch(
                ("workouts", self.user_id, month),
                lambda: self._get("/api/workouts", params={"month": month}),
            )
        return self.cache.fetch(("workouts", self.user_id), lambda: self._get("/api/workouts"))

    def get_workout(self, workout_id: str) -> dict:
        return self._get(f"/api/workouts/{workout_id}")

    def create_workout(self, date: Optional[str] = None, notes: Optional[str] = None,
                       photo_url: Optional[str] = None) -> dict:
        body = {"date": date, "notes": notes, "photo_url": photo_url}
        return self._mutate(lambda: self._post("/api/workouts", json=body), invalidate=["workouts"])

    def update_workout(self, workout_id: str, **changes) -> dict:
        return self._mutate(
            lambda: self._patch(f"/api/workouts/{workout_id}", json=changes), invalidate=["workouts"]
        )

    def delete_workout(self, workout_id: str) -> None:
        self._mutate(lambda: self._delete(f"/api/workouts/{workout_id}"), invalidate=["workouts"])

    def add_set(self, workout_id: str, exercise_id: str, **values) -> dict:
        body = dict(values, exercise_id=exercise_id)
        return self._mutate(
            lambda: self._post(f"/api/workouts/{workout_id}/sets", json=body), invalidate=["workouts"]
        )

    def update_set(self, set_id: str, **values) -> dict:
        return self._mutate(lambda: self._patch(f"/api/sets/{set_id}", json=values), invalidate=["workouts"])

    def delete_set(self, set_id: str) -> None:
        self._mutate(lambda: self._delete(f"/api/sets/{set_id}"), invalidate=["workouts"])

    # ==================== Shares ====================

    def workout_share(self, workout_id: str) -> Optional[dict]:
        return self.cache.fetch(
            ("workout-share", workout_id), lambda: self._get(f"/api/workouts/{workout_id}/share")
        )

    def create_share(self, workout_id: str) -> dict:
        return self._mutate(
            lambda: self._post(f"/api/workouts/{workout_id}/share"),
            invalidate=[("workout-share", workout_id)],
        )

    def deactivate_share(self, share_id: str) -> None:
        self._mutate(lambda: self._delete(f"/api/shares/{share_id}"), invalidate=["workout-share"])

    def shared_workout(self, share_token: str) -> dict:
        return self._get(f"/api/shared/{share_token}", auth=False)

    # ==================== Reports & leaderboard ====================

    def monthly_report(self, month: Optional[str] = None) -> dict:
        return self._get("/api/reports/monthly", params=_params(month=month))

    def monthly_report_pdf(self, month: Optional[str] = None) -> bytes:
        return self._get("/api/reports/monthly/pdf", params=_params(month=month), raw=True)

    def leaderboard(self, exercise_name: str, period: str = "all") -> List[dict]:
        return self.cache.fetch(
            ("leaderboard", exercise_name, period),
            lambda: self._get("/api/leaderboard", params={"exercise": exercise_name, "period": period}),
        )

    # ==================== Friends ====================

    def friends(self) -> List[dict]:
        return self.cache.fetch(("friends", self.user_id), lambda: self._get("/api/friends"))

    def pending_requests(self) -> List[dict]:
        return self.cache.fetch(
            ("friendRequests", "pending", self.user_id), lambda: self._get("/api/friends/requests/pending")
        )

    def sent_requests(self) -> List[dict]:
        return self.cache.fetch(
            ("friendRequests", "sent", self.user_id), lambda: self._get("/api/friends/requests/sent")
        )

    def pending_count(self) -> int:
        return self.cache.fetch(
            ("friendRequests", "count", self.user_id),
            lambda: self._get("/api/friends/requests/count")["count"],
        )

    def search_users(self, query: str) -> List[dict]:
        if len(query) < 2:
            return []
        return self.cache.fetch(
            ("searchUsers", query), lambda: self._get("/api/users/search", params={"q": query})
        )

    def friendship_status(self, user_id: str) -> Optional[dict]:
        return self.cache.fetch(
            ("friendshipStatus", self.user_id, user_id), lambda: self._get(f"/api/friends/status/{user_id}")
        )

    def send_friend_request(self, addressee_id: str) -> dict:
        return self._mutate(
            lambda: self._post("/api/friends/requests", json={"addressee_id": addressee_id}),
            invalidate=[("friendRequests", "sent"), "searchUsers"],
        )

    def accept_friend_request(self, friendship_id: str) -> dict:
        return self._mutate(
            lambda: self._post(f"/api/friends/requests/{friendship_id}/accept"),
            invalidate=["friends", ("friendRequests", "pending")],
        )

    def reject_friend_request(self, friendship_id: str) -> dict:
        return self._mutate(
            lambda: self._post(f"/api/friends/requests/{friendship_id}/reject"),
            invalidate=[("friendRequests", "pending")],
        )

    def remove_friend(self, friendship_id: str) -> None:
        self._mutate(lambda: self._delete(f"/api/friends/{friendship_id}"), invalidate=["friends"])

    def cancel_friend_request(self, friendship_id: str) -> None:
        self._mutate(
            lambda: self._delete(f"/api/friends/{friendship_id}"), invalidate=[("friendRequests", "sent")]
        )

    # ==================== Logs ====================

    def send_logs(self, entries: List[Dict[str, Any]]) -> int:
        return self._post("/api/logs", json={"entries": entries})["inserted"]

    # ==================== Account functions ====================

    def delete_account(self) -> dict:
        result = self._post("/functions/v1/delete-account")
        self.sign_out()
        return result

    # ==================== Admin ====================

    def admin_stats(self) -> dict:
        return self.cache.fetch(("admin", "stats"), lambda: self._get("/api/admin/stats"))

    def admin_users(self, search: str = "") -> List[dict]:
        return self.cache.fetch(
            ("admin", "users", search), lambda: self._get("/api/admin/users", params={"search": search})
        )

    def set_admin(self, user_id: str, is_admin: bool) -> None:
        self._mutate(
            lambda: self._patch(f"/api/admin/users/{user_id}/admin", json={"is_admin": is_admin}),
            invalidate=[("admin", "users")],
        )

    def admin_delete_user(self, user_id: str) -> None:
        self._mutate(
            lambda: self._delete(f"/api/admin/users/{user_id}"),
            invalidate=[("admin", "users"), ("admin", "stats")],
        )

    def empty_workouts(self) -> List[dict]:
        return self.cache.fetch(("admin", "emptyWorkouts"), lambda: self._get("/api/admin/cleanup/empty-workouts"))

    def inactive_users(self, days: int = 30) -> List[dict]:
        return self.cache.fetch(
            ("admin", "inactiveUsers", days),
            lambda: self._get("/api/admin/cleanup/inactive-users", params={"days": days}),
        )

    def orphaned_sets_count(self) -> int:
        return self.cache.fetch(
            ("admin", "orphanedSets"), lambda: self._get("/api/admin/cleanup/orphaned-sets")["count"]
        )

    def admin_cleanup(self, action: str, ids: Optional[List[str]] = None) -> int:
        body = {"action": action, "ids": ids}
        result = self._mutate(
            lambda: self._post("/functions/v1/admin-cleanup", json=body), invalidate=["admin", "workouts"]
        )
        return result["count"]

    def admin_delete_exercise(self, exercise_id: str) -> dict:
        return self._mutate(
            lambda: self._post("/functions/v1/admin-delete-exercise", json={"exerciseId": exercise_id}),
            invalidate=["admin", "exercises"],
        )

    def app_logs(self, page: int = 1, page_size: int = 50, **filters) -> dict:
        filters = {k: v for k, v in filters.items() if v}
        key = ("appLogs", tuple(sorted(filters.items())), page, page_size)
        params = dict(filters, page=page, page_size=page_size)
        return self.cache.fetch(key, lambda: self._get("/api/admin/logs", params=params))

    def app_log_stats(self) -> dict:
        return self.cache.fetch(("appLogs", "stats"), lambda: self._get("/api/admin/logs/stats"))

    def delete_log(self, log_id: str) -> None:
        self._mutate(lambda: self._delete(f"/api/admin/logs/{log_id}"), invalidate=["appLogs"])

    def clear_old_logs(self, days_old: int = 30) -> int:
        result = self._mutate(
            lambda: self._delete("/api/admin/logs/old", params={"days_old": days_old}), invalidate=["appLogs"]
        )
        return result["count"]

    def clear_all_logs(self) -> int:
        return self._mutate(lambda: self._delete("/api/admin/logs"), invalidate=["appLogs"])["count"]


def _params(**values) -> dict:
    return {k: v for k, v in values.items() if v is not None}


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        detail = body.get("error") or body.get("detail")
        if isinstance(detail, list):
            return "; ".join(item.get("msg", str(item)) for item in detail)
        if detail:
            return str(detail)
    return response.reason_phrase
