import copy
import os
import uuid
from datetime import datetime
from types import SimpleNamespace

import pytest

# Settings are read at import time: configure them before importing app modules.
os.environ.setdefault("SUPABASE_URL", "http://supabase.test")
os.environ.setdefault("SUPABASE_ANON_KEY", "anon-key")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "service-key")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("APP_URL", "https://portal.test")
os.environ.setdefault("CRON_SECRET", "cron-secret")
os.environ.setdefault("OAUTH_STATE_SECRET", "state-secret")
os.environ.setdefault("GOOGLE_CLIENT_ID", "google-id")
os.environ.setdefault("GOOGLE_CLIENT_SECRET", "google-secret")
os.environ.setdefault("MICROSOFT_CLIENT_ID", "ms-id")
os.environ.setdefault("MICROSOFT_CLIENT_SECRET", "ms-secret")
os.environ.setdefault("DROPBOX_CLIENT_ID", "dbx-id")
os.environ.setdefault("DROPBOX_CLIENT_SECRET", "dbx-secret")
os.environ.setdefault("AWS_S3_BUCKET_NAME", "test-bucket")
os.environ.pop("REDIS_URL", None)
os.environ.pop("SENTRY_DSN", None)

from postgrest.exceptions import APIError  # noqa: E402

from app.services.sync.storage import ObjectStorage  # noqa: E402


# ============================================================================
# In-memory stand-in for the supabase-py query builder
# ============================================================================

UNIQUE_KEYS = {
    "oauth_integrations": [("user_id", "provider")],
    "organization_files": [("organization_id", "source_provider", "source_file_id")],
    "file_sync_cursors": [("oauth_integration_id", "provider")],
    "file_sync_leases": [("oauth_integration_id",)],
    "organization_file_storage_settings": [("organization_id",)],
}

PRIMARY_KEYS = {
    "file_sync_leases": "oauth_integration_id",
    "organization_file_storage_settings": "organization_id",
}


def _as_time(value):
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return value
    return value


def unique_violation(table):
    return APIError({
        "message": f'duplicate key value violates unique constraint "{table}_key"',
        "code": "23505",
        "hint": None,
        "details": None,
    })


class FakeResponse:
    def __init__(self, data):
        self.data = data


class FakeQuery:
    def __init__(self, db, table):
        self.db = db
        self.table = table
        self.op = "select"
        self.payload = None
        self.on_conflict = None
        self.filters = []
        self._negate = False
        self._order = None
        self._limit = None
        self._single = False

    # -- operations ---------------------------------------------------------
    def select(self, *columns):
        return self

    def insert(self, payload):
        self.op, self.payload = "insert", payload
        return self

    def upsert(self, payload, on_conflict=None):
        self.op, self.payload, self.on_conflict = "upsert", payload, on_conflict
        return self

    def update(self, payload):
        self.op, self.payload = "update", payload
        return self

    def delete(self):
        self.op = "delete"
        return self

    # -- filters ------------------------------------------------------------
    @property
    def not_(self):
        self._negate = True
        return self

    def _add(self, predicate):
        negate, self._negate = self._negate, False
        self.filters.append((lambda row: not predicate(row)) if negate else predicate)
        return self

    def eq(self, column, value):
        return self._add(lambda row: row.get(column) == value)

    def lt(self, column, value):
        return self._add(lambda row: row.get(column) is not None and _as_time(row[column]) < _as_time(value))

    def in_(self, column, values):
        values = list(values)
        return self._add(lambda row: row.get(column) in values)

    def is_(self, column, value):
        assert value == "null"
        return self._add(lambda row: row.get(column) is None)

    def order(self, column, desc=False, nullsfirst=False):
        self._order = (column, desc, nullsfirst)
        return self

    def limit(self, n):
        self._limit = n
        return self

    def maybe_single(self):
        self._single = True
        return self

    # -- execution ----------------------------------------------------------
    def _matches(self):
        return [row for row in self.db.rows(self.table) if all(f(row) for f in self.filters)]

    def execute(self):
        self.db.calls.append((self.table, self.op, copy.deepcopy(self.payload)))
        failure = self.db.failures.get((self.table, self.op))
        if failure is not None:
            raise failure

        if self.op == "select":
            rows = self._matches()
            if self._order:
                column, desc, nullsfirst = self._order
                present = sorted((r for r in rows if r.get(column) is not None),
                                 key=lambda r: _as_time(r[column]), reverse=desc)
                missing = [r for r in rows if r.get(column) is None]
                rows = missing + present if nullsfirst else present + missing
            if self._limit is not None:
                rows = rows[:self._limit]
            rows = copy.deepcopy(rows)
            if self._single:
                return FakeResponse(rows[0] if rows else None)
            return FakeResponse(rows)

        if self.op == "insert":
            return FakeResponse([copy.deepcopy(self.db.insert_row(self.table, self.payload))])

        if self.op == "upsert":
            conflict = tuple(c.strip() for c in self.on_conflict.split(","))
            existing = [r for r in self.db.rows(self.table)
                        if all(r.get(c) == self.payload.get(c) for c in conflict)]
            if existing:
                existing[0].update(copy.deepcopy(self.payload))
                return FakeResponse([copy.deepcopy(existing[0])])
            return FakeResponse([copy.deepcopy(self.db.insert_row(self.table, self.payload))])

        if self.op == "update":
            updated = []
            for row in self._matches():
                row.update(copy.deepcopy(self.payload))
                updated.append(copy.deepcopy(row))
            return FakeResponse(updated)

        if self.op == "delete":
            doomed = self._matches()
            self.db.tables[self.table] = [r for r in self.db.rows(self.table) if r not in doomed]
            return FakeResponse(copy.deepcopy(doomed))

        raise AssertionError(f"unsupported op {self.op}")


class FakeAuth:
    def __init__(self):
        self.users = {}

    def get_user(self, token):
        if token not in self.users:
            raise RuntimeError("invalid JWT")
        return SimpleNamespace(user=self.users[token])


class FakeSupabase:
    def __init__(self):
        self.tables = {}
        self.calls = []
        self.failures = {}
        self.auth = FakeAuth()

    def rows(self, table):
        return self.tables.setdefault(table, [])

    def table(self, name):
        return FakeQuery(self, name)

    def fail(self, table, op, exc):
        self.failures[(table, op)] = exc

    def insert_row(self, table, payload):
        row = copy.deepcopy(payload)
        pk = PRIMARY_KEYS.get(table, "id")
        if pk == "id":
            row.setdefault("id", str(uuid.uuid4()))
        for key in UNIQUE_KEYS.get(table, []) + [(pk,)]:
            if any(all(r.get(c) == row.get(c) for c in key) for r in self.rows(table)):
                raise unique_violation(table)
        self.rows(table).append(row)
        return row

    def add_user(self, token, user_id, organization_id=None, role="client", email="user@example.com"):
        self.auth.users[token] = SimpleNamespace(id=user_id, email=email)
        self.insert_row("users", {"id": user_id, "organization_id": organization_id, "role": role})


# ============================================================================
# S3 stand-in
# ============================================================================

class FakeS3Client:
    def __init__(self):
        self.objects = {}
        self.put_calls = []
        self.deleted = []

    def put_object(self, **params):
        self.put_calls.append(params)
        self.objects[(params["Bucket"], params["Key"])] = params["Body"]
        return {"ETag": '"etag"'}

    def delete_object(self, Bucket, Key):
        self.deleted.append((Bucket, Key))
        self.objects.pop((Bucket, Key), None)
        return {}


@pytest.fixture
def supabase():
    return FakeSupabase()


@pytest.fixture
def s3_client():
    return FakeS3Client()


@pytest.fixture
def storage(s3_client):
    return ObjectStorage(bucket_name="test-bucket", client=s3_client)
