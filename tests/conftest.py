"""
Shared fixtures for the permissions service test suite.

Both repository backends run against in-process stand-ins: the relational
one on SQLite through aiosqlite, the tabular one on a fake Baserow rows API
served by ``httpx.MockTransport``.
"""

import json
from collections import Counter, defaultdict
from typing import Any, Optional
from urllib.parse import parse_qs

import httpx
import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from lexintake.core.cache import TTLCache
from lexintake.core.config import settings
from lexintake.core.database import create_session_factory, init_database
from lexintake.models import (
    InstitutionConfig,
    Menu,
    Permission,
    Role,
    RolePermission,
    User,
    UserFeatureOverride,
    UserRole,
)
from lexintake.repositories.sql import SqlPermissionsRepository
from lexintake.repositories.tabular import TabularPermissionsRepository
from lexintake.services.container import build_services

BASEROW_URL = "https://baserow.test/api"

TABLE_IDS = {
    "users": 236,
    "roles": 237,
    "menus": 238,
    "permissions": 239,
    "role_permissions": 240,
    "user_roles": 241,
    "audit": 242,
    "user_features": 250,
    "institution_configs": 224,
}

# Columns the fake API stores as link cells
LINK_FIELDS = {
    TABLE_IDS["role_permissions"]: ("role_id", "permission_id"),
    TABLE_IDS["user_roles"]: ("user_id", "role_id"),
    TABLE_IDS["permissions"]: ("menu_id",),
    TABLE_IDS["menus"]: ("parent_id",),
}

WRITE_OPERATIONS = {
    "create_user",
    "update_user",
    "delete_user",
    "create_role_permission",
    "delete_role_permission",
    "create_user_role",
    "delete_user_role",
    "create_menus",
    "set_menu_active",
    "create_feature_override",
    "set_feature_override",
    "record_audit",
}


# ── Helpers ─────────────────────────────────────────────────────


class ManualClock:
    """Clock that only moves when a test advances it"""

    def __init__(self, start: float = 1000.0):
        self.current = start

    def now(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


class FakeBaserow:
    """In-memory stand-in for the Baserow database rows API"""

    def __init__(self):
        self.tables: dict[int, dict[int, dict[str, Any]]] = defaultdict(dict)
        self._next_id: dict[int, int] = defaultdict(lambda: 1)
        self.requests: list[tuple[str, str]] = []
        self.fail_with: Optional[int] = None

    @property
    def writes(self) -> list[tuple[str, str]]:
        return [request for request in self.requests if request[0] != "GET"]

    def _link(self, table_id: int, row: dict[str, Any]) -> dict[str, Any]:
        for field in LINK_FIELDS.get(table_id, ()):
            value = row.get(field)
            if isinstance(value, list):
                row[field] = [
                    entry if isinstance(entry, dict) else {"id": entry, "value": str(entry)} for entry in value
                ]
        return row

    def insert(self, table_id: int, values: dict[str, Any]) -> dict[str, Any]:
        row_id = self._next_id[table_id]
        self._next_id[table_id] += 1
        row = self._link(table_id, {"id": row_id, **values})
        self.tables[table_id][row_id] = row
        return row

    def add(self, table: str, values: dict[str, Any]) -> dict[str, Any]:
        return self.insert(TABLE_IDS[table], values)

    def rows(self, table: str) -> list[dict[str, Any]]:
        return list(self.tables[TABLE_IDS[table]].values())

    def _matches(self, row: dict[str, Any], params: dict[str, str]) -> bool:
        for key, expected in params.items():
            if not key.startswith("filter__"):
                continue
            field, operator = key[len("filter__"):].rsplit("__", 1)
            actual = row.get(field)
            if operator == "equal" and str(actual) != expected:
                return False
            if operator == "contains" and expected.lower() not in str(actual or "").lower():
                return False
        return True

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append((request.method, request.url.path))
        if request.headers.get("Authorization") != "Token test-key":
            return httpx.Response(401, json={"error": "ERROR_INVALID_TOKEN"})
        if self.fail_with is not None:
            return httpx.Response(self.fail_with, json={"error": "unavailable"})

        parts = [part for part in request.url.path.split("/") if part]
        # api / database / rows / table / {table_id} [/ {row_id} | / batch]
        table_id = int(parts[4])
        table = self.tables[table_id]
        params = {key: values[0] for key, values in parse_qs(request.url.query.decode()).items()}
        body = json.loads(request.content) if request.content else {}

        if len(parts) == 5:
            if request.method == "GET":
                matching = [row for row in table.values() if self._matches(row, params)]
                size = int(params.get("size", 100))
                page = int(params.get("page", 1))
                chunk = matching[(page - 1) * size: page * size]
                next_url = f"{request.url}&page={page + 1}" if page * size < len(matching) else None
                return httpx.Response(200, json={"count": len(matching), "next": next_url, "results": chunk})
            if request.method == "POST":
                return httpx.Response(200, json=self.insert(table_id, body))

        if len(parts) == 6 and parts[5] == "batch" and request.method == "POST":
            created = [self.insert(table_id, item) for item in body.get("items", [])]
            return httpx.Response(200, json={"items": created})

        row_id = int(parts[5])
        row = table.get(row_id)
        if row is None:
            return httpx.Response(404, json={"error": "ERROR_ROW_DOES_NOT_EXIST"})
        if request.method == "GET":
            return httpx.Response(200, json=row)
        if request.method == "PATCH":
            row.update(self._link(table_id, dict(body)))
            return httpx.Response(200, json=row)
        if request.method == "DELETE":
            del table[row_id]
            return httpx.Response(204)
        return httpx.Response(405)


class CallCounter:
    """Repository proxy that counts every operation it forwards"""

    def __init__(self, inner):
        self.inner = inner
        self.calls: Counter = Counter()

    def __getattr__(self, name):
        attr = getattr(self.inner, name)
        if name.startswith("_") or not callable(attr):
            return attr

        async def counted(*args, **kwargs):
            self.calls[name] += 1
            return await attr(*args, **kwargs)

        return counted

    @property
    def total(self) -> int:
        return sum(self.calls.values())

    @property
    def writes(self) -> int:
        return sum(count for name, count in self.calls.items() if name in WRITE_OPERATIONS)

    def reset(self) -> None:
        self.calls.clear()


class SqlSeeder:
    def __init__(self, session_factory):
        self._session_factory = session_factory

    async def _add(self, obj) -> int:
        async with self._session_factory() as session:
            session.add(obj)
            await session.commit()
            return obj.id

    async def user(self, institution_id: int, **fields) -> int:
        return await self._add(User(institution_id=institution_id, **fields))

    async def role(self, institution_id: int, name: str, **fields) -> int:
        return await self._add(Role(institution_id=institution_id, name=name, **fields))

    async def permission(self, institution_id: int, code: str) -> int:
        return await self._add(Permission(institution_id=institution_id, code=code))

    async def menu(self, institution_id: int, path: str, is_active: bool = True, label: str = "") -> int:
        return await self._add(
            Menu(institution_id=institution_id, path=path, is_active=is_active, label=label or path)
        )

    async def user_role(self, institution_id: int, user_id: int, role_id: int) -> int:
        return await self._add(UserRole(institution_id=institution_id, user_id=user_id, role_id=role_id))

    async def role_permission(self, institution_id: int, role_id: int, permission_id: int) -> int:
        return await self._add(
            RolePermission(institution_id=institution_id, role_id=role_id, permission_id=permission_id)
        )

    async def override(self, institution_id: int, user_id: int, feature_key: str, is_enabled: bool) -> int:
        return await self._add(
            UserFeatureOverride(
                institution_id=institution_id,
                user_id=user_id,
                feature_key=feature_key,
                is_enabled=is_enabled,
            )
        )

    async def institution_config(self, institution_id: Optional[int], company_name: Optional[str] = None) -> int:
        return await self._add(InstitutionConfig(institution_id=institution_id, company_name=company_name))


class TabularSeeder:
    def __init__(self, fake: FakeBaserow):
        self._fake = fake

    def _add(self, table: str, values: dict[str, Any]) -> int:
        return self._fake.add(table, values)["id"]

    async def user(self, institution_id: int, **fields) -> int:
        if "oab" in fields:
            fields["OAB"] = fields.pop("oab")
        return self._add("users", {"institution_id": institution_id, **fields})

    async def role(self, institution_id: int, name: str, **fields) -> int:
        return self._add("roles", {"institution_id": institution_id, "name": name, **fields})

    async def permission(self, institution_id: int, code: str) -> int:
        return self._add("permissions", {"institution_id": institution_id, "code": code})

    async def menu(self, institution_id: int, path: str, is_active: bool = True, label: str = "") -> int:
        return self._add(
            "menus",
            {"institution_id": institution_id, "path": path, "is_active": is_active, "label": label or path},
        )

    async def user_role(self, institution_id: int, user_id: int, role_id: int) -> int:
        return self._add("user_roles", {"institution_id": institution_id, "user_id": [user_id], "role_id": [role_id]})

    async def role_permission(self, institution_id: int, role_id: int, permission_id: int) -> int:
        return self._add(
            "role_permissions",
            {"institution_id": institution_id, "role_id": [role_id], "permission_id": [permission_id]},
        )

    async def override(self, institution_id: int, user_id: int, feature_key: str, is_enabled: bool) -> int:
        return self._add(
            "user_features",
            {
                "institution_id": institution_id,
                "user_id": user_id,
                "feature_key": feature_key,
                "is_enabled": is_enabled,
            },
        )

    async def institution_config(self, institution_id: Optional[int], company_name: Optional[str] = None) -> int:
        return self._add(
            "institution_configs",
            {"body.auth.institutionId": institution_id, "body.tenant.companyName": company_name},
        )


# ==================== Fixtures ====================


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def fake_baserow():
    return FakeBaserow()


@pytest.fixture
async def tabular_repository(fake_baserow):
    client = httpx.AsyncClient(transport=httpx.MockTransport(fake_baserow.handler))
    repository = TabularPermissionsRepository(
        base_url=BASEROW_URL,
        api_key="test-key",
        table_ids=TABLE_IDS,
        page_size=2,
        client=client,
    )
    yield repository
    await client.aclose()


@pytest.fixture
async def sql_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'permissions.db'}")
    await init_database(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(sql_engine):
    return create_session_factory(sql_engine)


@pytest.fixture
def sql_repository(session_factory):
    return SqlPermissionsRepository(session_factory)


@pytest.fixture(params=["sql", "tabular"])
def backend(request, sql_repository, session_factory, tabular_repository, fake_baserow):
    """(repository, seeder) for each backend, so scenarios run against both"""
    if request.param == "sql":
        return sql_repository, SqlSeeder(session_factory)
    return tabular_repository, TabularSeeder(fake_baserow)


@pytest.fixture
def repository(backend):
    """Call-counting view of the parametrized backend"""
    return CallCounter(backend[0])


@pytest.fixture
def seed(backend):
    return backend[1]


@pytest.fixture
def services(repository, clock):
    return build_services(repository, settings, clock=clock)


@pytest.fixture
def user_cache(clock):
    return TTLCache("users", default_ttl_seconds=600, clock=clock)
