"""HTTP client for the Wadake API plus a small response cache.

Credentials are never stored on the client: every call that needs
authentication takes an ``AuthContext``. The session cookie the server sets
on token issuance is discarded for the same reason.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

import requests

logger = logging.getLogger(__name__)

SESSION_COOKIE = "wadake_jwt_token"
ENTRY_RESOURCES = ("incomes", "expenses", "budgets")
SUMMARY_PERIODS = ("daily", "monthly", "yearly", "trend")


@dataclass(frozen=True)
class AuthContext:
    token: str

    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}


class ApiError(RuntimeError):
    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class ApiClient:
    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        session: Optional[Any] = None,
        timeout: float = 10.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        # Anything with requests' ``request(method, url, ...)`` signature works.
        self.session = session or requests.Session()
        self.timeout = timeout

    def _request(
        self,
        method: str,
        path: str,
        auth: Optional[AuthContext] = None,
        *,
        json: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, Any]] = None,
    ) -> Any:
        query = {k: v for k, v in (params or {}).items() if v is not None}
        response = self.session.request(
            method,
            f"{self.base_url}{path}",
            json=json,
            params=query or None,
            headers=auth.headers() if auth else {},
            timeout=self.timeout,
        )
        try:
            payload = response.json()
        except ValueError:
            payload = None
        if response.status_code >= 400:
            message = payload.get("error") if isinstance(payload, dict) else None
            logger.debug(f"api_error: {method} {path} status={response.status_code}")
            raise ApiError(
                response.status_code,
                message or f"Request failed with status {response.status_code}",
            )
        return payload

    @staticmethod
    def _entries_path(resource: str, group_id: Optional[str]) -> str:
        if resource not in ENTRY_RESOURCES:
            raise ValueError(f"Unknown resource: {resource}")
        if group_id:
            return f"/api/groups/{group_id}/{resource}"
        return f"/api/{resource}"

    # auth

    def issue_token(self, user: dict[str, Any]) -> dict[str, Any]:
        result = self._request("POST", "/api/auth/token", json={"user": user})
        self.session.cookies.pop(SESSION_COOKIE, None)
        return result

    def login(self, user: dict[str, Any]) -> AuthContext:
        return AuthContext(token=self.issue_token(user)["token"])

    def logout(self) -> dict[str, Any]:
        return self._request("POST", "/api/auth/logout")

    def me(self, auth: AuthContext) -> dict[str, Any]:
        return self._request("GET", "/api/auth/me", auth)

    # categories

    def categories(
        self, auth: AuthContext, type: Optional[str] = None
    ) -> list[dict[str, Any]]:
        return self._request("GET", "/api/categories", auth, params={"type": type})

    # incomes / expenses / budgets

    def list_entries(
        self, auth: AuthContext, resource: str, group_id: Optional[str] = None
    ) -> list[dict[str, Any]]:
        return self._request("GET", self._entries_path(resource, group_id), auth)

    def create_entry(
        self,
        auth: AuthContext,
        resource: str,
        data: dict[str, Any],
        group_id: Optional[str] = None,
    ) -> dict[str, Any]:
        return self._request(
            "POST", self._entries_path(resource, group_id), auth, json=data
        )

    def update_entry(
        self,
        auth: AuthContext,
        resource: str,
        entry_id: str,
        data: dict[str, Any],
        group_id: Optional[str] = None,
    ) -> dict[str, Any]:
        path = f"{self._entries_path(resource, group_id)}/{entry_id}"
        return self._request("PUT", path, auth, json=data)

    def delete_entry(
        self,
        auth: AuthContext,
        resource: str,
        entry_id: str,
        group_id: Optional[str] = None,
    ) -> dict[str, Any]:
        path = f"{self._entries_path(resource, group_id)}/{entry_id}"
        return self._request("DELETE", path, auth)

    # groups

    def create_group(self, auth: AuthContext, name: str) -> dict[str, Any]:
        return self._request("POST", "/api/groups", auth, json={"name": name})

    def user_groups(self, auth: AuthContext, user_id: str) -> list[dict[str, Any]]:
        return self._request("GET", f"/api/groups/user/{user_id}", auth)

    def invite(
        self, auth: AuthContext, group_id: str, user_id: str, role: str = "member"
    ) -> dict[str, Any]:
        return self._request(
            "POST",
            f"/api/groups/{group_id}/invite",
            auth,
            json={"userId": user_id, "role": role},
        )

    def members(self, auth: AuthContext, group_id: str) -> list[dict[str, Any]]:
        return self._request("GET", f"/api/groups/{group_id}/members", auth)

    # summaries

    def summary(
        self,
        auth: AuthContext,
        period: str,
        group_id: Optional[str] = None,
        **params: Any,
    ) -> dict[str, Any]:
        if period not in SUMMARY_PERIODS:
            raise ValueError(f"Unknown summary period: {period}")
        if group_id:
            return self._request(
                "POST", f"/api/summary/groups/{group_id}/{period}", auth, params=params
            )
        return self._request("GET", f"/api/summary/{period}", auth, params=params)


class ResourceCache:
    """Keyed cache of API responses with revalidation and optimistic writes.

    A failed optimistic write is repaired by re-fetching the key from the
    server, not by undoing the local change.
    """

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}
        self._fetchers: dict[str, Callable[[], Any]] = {}

    def get(self, key: str, fetcher: Optional[Callable[[], Any]] = None) -> Any:
        if fetcher is not None:
            self._fetchers[key] = fetcher
        if key not in self._data:
            return self.revalidate(key)
        return self._data[key]

    def peek(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def invalidate(self, key: str) -> None:
        self._data.pop(key, None)

    def revalidate(self, key: str) -> Any:
        fetcher = self._fetchers.get(key)
        if fetcher is None:
            raise KeyError(f"No fetcher registered for {key!r}")
        value = fetcher()
        self._data[key] = value
        return value

    def optimistic_update(
        self, key: str, new_data: Any, request: Callable[[], Any]
    ) -> Any:
        self._data[key] = new_data
        try:
            return request()
        except Exception as exc:
            logger.info(f"optimistic_update_failed: key={key} error={exc}")
            try:
                self.revalidate(key)
            except Exception:
                logger.exception(f"revalidate_failed: key={key}")
                self.invalidate(key)
            raise
