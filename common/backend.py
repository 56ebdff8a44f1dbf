"""
Data-access client for the managed backend

Thin wrapper over the backend's REST surfaces: row queries against
``/rest/v1/<table>`` and the auth endpoints under ``/auth/v1``.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from common.error_handling import ErrorCodes, ServiceError
from common.settings import settings

logger = logging.getLogger(__name__)

Row = Dict[str, Any]

class BackendError(ServiceError):
    """Backend answered with a non-2xx status"""
    def __init__(self, status: int, message: str):
        self.status = status
        super().__init__(ErrorCodes.BACKEND_ERROR, message)

def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        for key in ("msg", "message", "error_description", "error"):
            if body.get(key):
                return str(body[key])
    return f"HTTP {response.status_code}"

@dataclass
class AuthUser:
    id: str
    email: Optional[str] = None

    @classmethod
    def from_json(cls, data: Row) -> "AuthUser":
        return cls(id=data["id"], email=data.get("email"))

@dataclass
class AuthSession:
    access_token: str
    refresh_token: Optional[str]
    user: AuthUser

class Query:
    """Chainable row query against one table"""

    def __init__(self, client: "BackendClient", table: str):
        self.client = client
        self.table = table
        self.params: List[tuple] = []

    def select(self, columns: str = "*") -> "Query":
        self.params.append(("select", columns))
        return self

    def eq(self, column: str, value: Any) -> "Query":
        self.params.append((column, f"eq.{value}"))
        return self

    def or_(self, expression: str) -> "Query":
        self.params.append(("or", f"({expression})"))
        return self

    def order(self, column: str, ascending: bool = True) -> "Query":
        self.params.append(("order", f"{column}.{'asc' if ascending else 'desc'}"))
        return self

    def limit(self, count: int) -> "Query":
        self.params.append(("limit", str(count)))
        return self

    def execute(self) -> List[Row]:
        if not any(key == "select" for key, _ in self.params):
            self.params.insert(0, ("select", "*"))
        response = self.client.request("GET", f"/rest/v1/{self.table}", params=self.params)
        return response.json()

    def maybe_single(self) -> Optional[Row]:
        rows = self.execute()
        if len(rows) > 1:
            raise BackendError(406, f"Expected at most one row from {self.table}, got {len(rows)}")
        return rows[0] if rows else None

    def single(self) -> Row:
        row = self.maybe_single()
        if row is None:
            raise BackendError(406, f"Expected one row from {self.table}, got none")
        return row

    def insert(self, rows) -> List[Row]:
        payload = rows if isinstance(rows, list) else [rows]
        response = self.client.request(
            "POST",
            f"/rest/v1/{self.table}",
            json=payload,
            headers={"Prefer": "return=representation"},
        )
        return response.json() if response.content else []

class AuthClient:
    """Credential sign-in, sign-up, user lookup and sign-out"""

    def __init__(self, client: "BackendClient"):
        self.client = client

    def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        data = self.client.request(
            "POST",
            "/auth/v1/token",
            params=[("grant_type", "password")],
            json={"email": email, "password": password},
        ).json()
        return AuthSession(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            user=AuthUser.from_json(data["user"]),
        )

    def sign_up(self, email: str, password: str) -> tuple:
        """Returns (user, session); session is None while email confirmation is pending."""
        data = self.client.request(
            "POST", "/auth/v1/signup", json={"email": email, "password": password}
        ).json()
        if data.get("access_token"):
            user = AuthUser.from_json(data["user"])
            return user, AuthSession(data["access_token"], data.get("refresh_token"), user)
        return AuthUser.from_json(data.get("user") or data), None

    def get_user(self, access_token: str) -> Optional[AuthUser]:
        try:
            data = self.client.request("GET", "/auth/v1/user", token=access_token).json()
        except BackendError as e:
            if e.status in (401, 403):
                return None
            raise
        return AuthUser.from_json(data)

    def sign_out(self, access_token: str) -> None:
        try:
            self.client.request("POST", "/auth/v1/logout", token=access_token)
        except BackendError as e:
            # An already-expired token is as good as signed out
            if e.status not in (401, 403):
                raise

class BackendClient:
    def __init__(
        self,
        url: str = None,
        anon_key: str = None,
        access_token: Optional[str] = None,
        timeout: float = None,
        session: Optional[requests.Session] = None,
    ):
        self.url = (url or settings.backend_url).rstrip("/")
        self.anon_key = anon_key or settings.backend_anon_key
        self.access_token = access_token
        self.timeout = timeout or settings.backend_timeout_seconds
        self.session = session or requests.Session()
        self.auth = AuthClient(self)

    def with_token(self, access_token: Optional[str]) -> "BackendClient":
        """Client acting as the signed-in user; shares the connection pool."""
        return BackendClient(self.url, self.anon_key, access_token, self.timeout, self.session)

    def table(self, name: str) -> Query:
        return Query(self, name)

    def request(self, method: str, path: str, params=None, json=None,
                headers: Optional[Dict[str, str]] = None, token: Optional[str] = None) -> requests.Response:
        all_headers = {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {token or self.access_token or self.anon_key}",
        }
        all_headers.update(headers or {})
        try:
            response = self.session.request(
                method,
                f"{self.url}{path}",
                params=params,
                json=json,
                headers=all_headers,
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            raise ServiceError(ErrorCodes.TIMEOUT_ERROR, "Backend request timed out", e)
        except requests.ConnectionError as e:
            raise ServiceError(ErrorCodes.SERVICE_UNAVAILABLE, "Backend is unavailable", e)

        logger.debug(f"{method} {path} -> {response.status_code}")
        if not response.ok:
            message = _error_message(response)
            logger.warning(f"Backend error on {method} {path}: {response.status_code} {message}")
            raise BackendError(response.status_code, message)
        return response
