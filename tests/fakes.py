"""
In-memory stand-in for the backend client, used by the portal tests
"""
import uuid
from datetime import datetime, timezone

from common.backend import AuthSession, AuthUser, BackendError

def _matches_or(row, expression):
    for clause in expression.split(","):
        column, op, value = clause.split(".", 2)
        if op == "eq" and str(row.get(column)) == value:
            return True
    return False

class FakeQuery:
    def __init__(self, backend, table):
        self.backend = backend
        self.table = table
        self.filters = []
        self.sort = None
        self.count = None

    def select(self, columns="*"):
        return self

    def eq(self, column, value):
        self.filters.append(lambda row: str(row.get(column)) == str(value))
        return self

    def or_(self, expression):
        self.filters.append(lambda row: _matches_or(row, expression))
        return self

    def order(self, column, ascending=True):
        self.sort = (column, ascending)
        return self

    def limit(self, count):
        self.count = count
        return self

    def execute(self):
        self.backend.reads.append(self.table)
        if self.table in self.backend.failing_tables:
            raise BackendError(400, f"{self.table} unavailable")
        rows = [dict(r) for r in self.backend.tables.get(self.table, []) if all(f(r) for f in self.filters)]
        if self.sort:
            column, ascending = self.sort
            rows.sort(key=lambda r: r.get(column) or "", reverse=not ascending)
        if self.count is not None:
            rows = rows[:self.count]
        return rows

    def maybe_single(self):
        rows = self.execute()
        if len(rows) > 1:
            raise BackendError(406, "multiple rows")
        return rows[0] if rows else None

    def single(self):
        row = self.maybe_single()
        if row is None:
            raise BackendError(406, "no rows")
        return row

    def insert(self, rows):
        payload = rows if isinstance(rows, list) else [rows]
        if self.table in self.backend.failing_tables:
            raise BackendError(400, f"insert into {self.table} rejected")
        created = []
        for row in payload:
            row = dict(row)
            row.setdefault("id", str(uuid.uuid4()))
            row.setdefault("created_at", datetime.now(timezone.utc).isoformat())
            if self.table == "payments":
                row.setdefault("status", "CREATED")
                row.setdefault("failure_reason", None)
            self.backend.tables.setdefault(self.table, []).append(row)
            created.append(dict(row))
        return created

class FakeAuth:
    def __init__(self, backend):
        self.backend = backend

    def sign_in_with_password(self, email, password):
        user = self.backend.users.get(email)
        if not user or user["password"] != password:
            raise BackendError(400, "Invalid login credentials")
        token = f"token-{user['id']}"
        self.backend.tokens[token] = user["id"]
        return AuthSession(token, "refresh", AuthUser(user["id"], email))

    def sign_up(self, email, password):
        if email in self.backend.users:
            raise BackendError(422, "User already registered")
        user_id = str(uuid.uuid4())
        self.backend.users[email] = {"id": user_id, "password": password}
        token = f"token-{user_id}"
        self.backend.tokens[token] = user_id
        user = AuthUser(user_id, email)
        return user, AuthSession(token, "refresh", user)

    def get_user(self, access_token):
        user_id = self.backend.tokens.get(access_token)
        return AuthUser(user_id) if user_id else None

    def sign_out(self, access_token):
        self.backend.tokens.pop(access_token, None)

class FakeBackend:
    def __init__(self, tables=None, users=None):
        self.tables = {name: [dict(r) for r in rows] for name, rows in (tables or {}).items()}
        self.users = dict(users or {})
        self.tokens = {}
        self.reads = []
        self.failing_tables = set()
        self.auth = FakeAuth(self)

    def with_token(self, access_token):
        return self

    def table(self, name):
        return FakeQuery(self, name)

    def set_status(self, payment_id, status, failure_reason=None):
        for row in self.tables["payments"]:
            if row["id"] == payment_id:
                row["status"] = status
                row["failure_reason"] = failure_reason

ALICE = {"id": "u-alice", "full_name": "Alice", "account_id": "100200300", "balance": 500.0, "currency": "USD"}
BOB = {"id": "u-bob", "full_name": "Bob", "account_id": "400500600", "balance": 120.0, "currency": "USD"}
CAROL = {"id": "u-carol", "full_name": "Carol", "account_id": "700800900", "balance": 75.0, "currency": "USD"}

def seeded_backend():
    """Alice, Bob and Carol with a handful of payments between them"""
    return FakeBackend(
        tables={
            "profiles": [ALICE, BOB, CAROL],
            "payments": [
                {"id": "pay-sent-ok", "sender_id": "u-alice", "receiver_id": "400500600", "amount": 100.0,
                 "status": "success", "failure_reason": None, "created_at": "2024-05-01T10:00:00+00:00"},
                {"id": "pay-recv-ok", "sender_id": "u-bob", "receiver_id": "100200300", "amount": 40.0,
                 "status": "SUCCESS", "failure_reason": None, "created_at": "2024-05-02T10:00:00+00:00"},
                {"id": "pay-sent-fail", "sender_id": "u-alice", "receiver_id": "700800900", "amount": 15.0,
                 "status": "FAILURE", "failure_reason": "Insufficient balance", "created_at": "2024-05-03T10:00:00+00:00"},
                {"id": "pay-pending", "sender_id": "u-carol", "receiver_id": "100200300", "amount": 7.5,
                 "status": "PROCESSING", "failure_reason": None, "created_at": "2024-05-04T10:00:00+00:00"},
                {"id": "pay-others", "sender_id": "u-bob", "receiver_id": "700800900", "amount": 9.0,
                 "status": "SUCCESS", "failure_reason": None, "created_at": "2024-05-05T10:00:00+00:00"},
            ],
            "support_queries": [],
        },
        users={
            "alice@example.com": {"id": "u-alice", "password": "secret"},
            "bob@example.com": {"id": "u-bob", "password": "hunter2"},
        },
    )
