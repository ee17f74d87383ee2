import copy
import itertools
from typing import Any, Dict, List

import pytest
from fastapi.testclient import TestClient

from fasalsetu.auth import AuthUser, current_user
from fasalsetu.main import app, get_db

ID_COLUMNS = {
    "crop_cycles": "crop_id",
    "disease_logs": "disease_log_id",
    "crop_suggestions": "suggestion_id",
    "farm_soil_data": "farm_id",
}


class FakeResult:
    def __init__(self, data):
        self.data = data


class FakeQuery:
    """Just enough of the postgrest query builder for the db helpers."""

    def __init__(self, db: "FakeSupabase", table: str):
        self.db = db
        self.table = table
        self.action = "select"
        self.payload = None
        self.filters = []
        self.order_by = None
        self.limit_n = None

    def select(self, *columns):
        self.action = "select"
        return self

    def insert(self, payload):
        self.action = "insert"
        self.payload = payload
        return self

    def update(self, payload):
        self.action = "update"
        self.payload = payload
        return self

    def delete(self):
        self.action = "delete"
        return self

    def eq(self, column, value):
        self.filters.append(lambda row: row.get(column) == value)
        return self

    def gte(self, column, value):
        self.filters.append(lambda row: row.get(column) is not None and row.get(column) >= value)
        return self

    def lt(self, column, value):
        self.filters.append(lambda row: row.get(column) is not None and row.get(column) < value)
        return self

    def or_(self, filters):
        """PostgREST `col.op.value,...` disjunction; supports is.null, eq, gt, gte and lt."""
        tests = []
        for cond in filters.split(","):
            column, op, value = cond.split(".", 2)
            if op == "is" and value == "null":
                tests.append(lambda row, c=column: row.get(c) is None)
            elif op == "eq":
                tests.append(lambda row, c=column, v=value: str(row.get(c)) == v)
            elif op in ("gt", "gte", "lt"):
                cmp = {"gt": str.__gt__, "gte": str.__ge__, "lt": str.__lt__}[op]
                tests.append(lambda row, c=column, v=value, f=cmp: row.get(c) is not None and f(row.get(c), v))
            else:
                raise ValueError(f"unsupported filter {cond}")
        self.filters.append(lambda row: any(t(row) for t in tests))
        return self

    def order(self, column, desc=False):
        self.order_by = (column, desc)
        return self

    def limit(self, n):
        self.limit_n = n
        return self

    def _matching(self) -> List[Dict[str, Any]]:
        return [r for r in self.db.rows(self.table) if all(f(r) for f in self.filters)]

    def execute(self):
        if self.db.fail_tables and self.table in self.db.fail_tables:
            raise RuntimeError(f"{self.table} unavailable")
        rows = self.db.rows(self.table)
        if self.action == "insert":
            items = self.payload if isinstance(self.payload, list) else [self.payload]
            out = []
            for item in items:
                row = dict(item)
                id_col = ID_COLUMNS.get(self.table)
                if id_col and id_col not in row:
                    row[id_col] = next(self.db.ids)
                rows.append(row)
                out.append(copy.deepcopy(row))
            return FakeResult(out)
        if self.action == "update":
            out = []
            for row in self._matching():
                row.update(self.payload)
                out.append(copy.deepcopy(row))
            return FakeResult(out)
        if self.action == "delete":
            gone = self._matching()
            self.db.tables[self.table] = [r for r in rows if r not in gone]
            return FakeResult(copy.deepcopy(gone))

        out = self._matching()
        if self.order_by:
            col, desc = self.order_by
            out = sorted(out, key=lambda r: (r.get(col) is None, r.get(col)), reverse=desc)
        if self.limit_n is not None:
            out = out[: self.limit_n]
        return FakeResult(copy.deepcopy(out))


class FakeBucket:
    def __init__(self, storage: "FakeStorage", name: str):
        self.storage = storage
        self.name = name

    def upload(self, path, data, options=None):
        if self.storage.fail:
            raise RuntimeError("storage unavailable")
        self.storage.objects[f"{self.name}/{path}"] = data
        return {"path": path}

    def get_public_url(self, path):
        return f"https://example.supabase.co/storage/v1/object/public/{self.name}/{path}"


class FakeStorage:
    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.fail = False

    def from_(self, bucket):
        return FakeBucket(self, bucket)


class FakeSupabase:
    def __init__(self):
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self.ids = itertools.count(1)
        self.storage = FakeStorage()
        self.fail_tables = set()

    def rows(self, table: str) -> List[Dict[str, Any]]:
        return self.tables.setdefault(table, [])

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)


@pytest.fixture
def fake_db() -> FakeSupabase:
    return FakeSupabase()


@pytest.fixture
def user() -> AuthUser:
    return AuthUser(id="user-1", phone="+919876543210", token="test-token")


@pytest.fixture(autouse=True)
def offline(monkeypatch):
    """No Gemini keys and no live weather unless a test opts in."""
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.delenv("GEMINI_API_KEYS", raising=False)
    monkeypatch.delenv("WEATHER_API_KEY", raising=False)

    def _no_weather(*args, **kwargs):
        raise ValueError("Weather API error: offline")

    monkeypatch.setattr("fasalsetu.agents.crop_advisory.fetch_forecast", _no_weather)


@pytest.fixture
def client(fake_db, user):
    fake_db.rows("users").append({"id": user.id, "phone": user.phone, "preferred_language": "en"})
    app.dependency_overrides[current_user] = lambda: user
    app.dependency_overrides[get_db] = lambda: fake_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def make_day(date_str: str, **overrides) -> Dict[str, Any]:
    day = {
        "maxtemp_c": 28.0,
        "mintemp_c": 18.0,
        "avgtemp_c": 23.0,
        "maxwind_kph": 12.0,
        "totalprecip_mm": 3.0,
        "avghumidity": 55.0,
        "daily_chance_of_rain": 40.0,
        "uv": 5.0,
        "condition": {"text": "Partly cloudy"},
    }
    day.update(overrides)
    return {"date": date_str, "day": day}


def make_forecast(days: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        "source": "weatherapi",
        "current": {"temp_c": 24.0, "humidity": 60, "wind_kph": 10.0, "condition": {"text": "Sunny"}},
        "forecast": {"forecastday": days},
    }
