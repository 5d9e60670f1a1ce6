"""In-memory stand-ins for the Supabase REST/auth endpoints used in tests."""

from __future__ import annotations

import copy
import json
import re
from typing import Any, Dict, List, Optional, Tuple

import httpx


_QUOTED = re.compile(r'"((?:[^"\\]|\\.)*)"')


def _as_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    return str(value)


def _parse_in(expr: str) -> List[str]:
    inner = expr[len("in.("):-1]
    values = [match.group(1) for match in _QUOTED.finditer(inner)]
    if not values and inner:
        values = inner.split(",")
    return [re.sub(r"\\(.)", r"\1", value) for value in values]


def _matches(row: Dict[str, Any], column: str, expr: str) -> bool:
    value = row.get(column)
    if expr.startswith("eq."):
        return _as_text(value) == expr[3:]
    if expr.startswith("neq."):
        return _as_text(value) != expr[4:]
    if expr.startswith("in.("):
        return _as_text(value) in _parse_in(expr)
    if expr == "is.null":
        return value is None
    if expr == "not.is.null":
        return value is not None
    raise AssertionError(f"Unsupported filter {column}={expr}")


class FakeSupabase:
    def __init__(self, tables: Optional[Dict[str, List[Dict[str, Any]]]] = None) -> None:
        self.tables: Dict[str, List[Dict[str, Any]]] = {
            name: [dict(row) for row in rows] for name, rows in (tables or {}).items()
        }
        self.tokens: Dict[str, str] = {}
        self.passwords: Dict[str, Tuple[str, str]] = {}
        self.rpc_calls: List[Tuple[str, Dict[str, Any]]] = []
        self.rpc_results: Dict[str, Any] = {}
        self.rpc_errors: Dict[str, str] = {}
        self.failing_tables: set[str] = set()
        self.auth_down = False
        self.requests: List[httpx.Request] = []
        self._next_id = 1000

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def add_user(self, user_id: str, token: str, username: str = "", is_admin: bool = False, email: str = "") -> None:
        self.tokens[token] = user_id
        self.tables.setdefault("users", []).append(
            {"id": user_id, "username": username or user_id, "email": email or None, "is_admin": is_admin}
        )

    def rows(self, table: str) -> List[Dict[str, Any]]:
        return self.tables.setdefault(table, [])

    # ---- request dispatch ---------------------------------------------------------

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/auth/v1/user":
            return self._auth_user(request)
        if path == "/auth/v1/token":
            return self._sign_in(request)
        if path.startswith("/rest/v1/rpc/"):
            return self._rpc(path.rsplit("/", 1)[-1], request)
        if not path.startswith("/rest/v1/"):
            return httpx.Response(404, json={"message": f"Unknown path {path}"})

        table = path[len("/rest/v1/"):]
        if table in self.failing_tables:
            return httpx.Response(500, json={"message": f"{table} exploded"})

        filters = [
            (key, value)
            for key, value in request.url.params.multi_items()
            if key not in ("select", "order", "limit")
        ]
        if request.method == "GET":
            return httpx.Response(200, json=self._select(table, filters, request.url.params))
        if request.method == "POST":
            return httpx.Response(201, json=self._insert(table, json.loads(request.content)))
        if request.method == "PATCH":
            return httpx.Response(200, json=self._update(table, filters, json.loads(request.content)))
        if request.method == "DELETE":
            self._delete(table, filters)
            return httpx.Response(204)
        return httpx.Response(405)

    def _filtered(self, table: str, filters: List[Tuple[str, str]]) -> List[Dict[str, Any]]:
        return [row for row in self.rows(table) if all(_matches(row, col, expr) for col, expr in filters)]

    def _select(self, table: str, filters: List[Tuple[str, str]], params: httpx.QueryParams) -> List[Dict[str, Any]]:
        rows = self._filtered(table, filters)
        order = params.get("order")
        if order:
            for clause in reversed(order.split(",")):
                column, _, direction = clause.partition(".")
                rows = sorted(
                    rows,
                    key=lambda row: (row.get(column) is None, row.get(column) if row.get(column) is not None else 0),
                    reverse=direction == "desc",
                )
        limit = params.get("limit")
        if limit:
            rows = rows[: int(limit)]
        columns = params.get("select", "*")
        if columns == "*":
            return copy.deepcopy(rows)
        fields = [field.strip() for field in columns.split(",")]
        return [{field: copy.deepcopy(row.get(field)) for field in fields} for row in rows]

    def _insert(self, table: str, body: Any) -> List[Dict[str, Any]]:
        records = body if isinstance(body, list) else [body]
        inserted = []
        for record in records:
            row = dict(record)
            if "id" not in row:
                self._next_id += 1
                row["id"] = self._next_id
            self.rows(table).append(row)
            inserted.append(copy.deepcopy(row))
        return inserted

    def _update(self, table: str, filters: List[Tuple[str, str]], values: Dict[str, Any]) -> List[Dict[str, Any]]:
        updated = []
        for row in self._filtered(table, filters):
            row.update(values)
            updated.append(copy.deepcopy(row))
        return updated

    def _delete(self, table: str, filters: List[Tuple[str, str]]) -> None:
        doomed = self._filtered(table, filters)
        self.tables[table] = [row for row in self.rows(table) if row not in doomed]

    def _rpc(self, name: str, request: httpx.Request) -> httpx.Response:
        args = json.loads(request.content) if request.content else {}
        self.rpc_calls.append((name, args))
        if name in self.rpc_errors:
            return httpx.Response(400, json={"message": self.rpc_errors[name]})
        return httpx.Response(200, json=self.rpc_results.get(name))

    def _auth_user(self, request: httpx.Request) -> httpx.Response:
        if self.auth_down:
            return httpx.Response(503, json={"msg": "unavailable"})
        header = request.headers.get("Authorization", "")
        token = header.split(" ", 1)[1] if " " in header else ""
        user_id = self.tokens.get(token)
        if not user_id:
            return httpx.Response(401, json={"msg": "invalid JWT"})
        return httpx.Response(200, json={"id": user_id, "aud": "authenticated"})

    def _sign_in(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        stored = self.passwords.get(body.get("email"))
        if not stored or stored[0] != body.get("password"):
            return httpx.Response(400, json={"error": "invalid_grant"})
        return httpx.Response(
            200,
            json={
                "access_token": f"access-{stored[1]}",
                "refresh_token": f"refresh-{stored[1]}",
                "expires_in": 3600,
                "expires_at": 1700003600,
                "user": {"id": stored[1]},
            },
        )


class FakeWom:
    """Duck-typed ``WomClient`` returning canned payloads."""

    def __init__(
        self,
        group: Optional[Dict[str, Any]] = None,
        players: Optional[Dict[str, Dict[str, Any]]] = None,
        competitions: Optional[List[Dict[str, Any]]] = None,
        details: Optional[Dict[str, Dict[str, Any]]] = None,
        achievements: Optional[List[Dict[str, Any]]] = None,
    ) -> None:
        self.group = group or {"memberships": []}
        self.players = players or {}
        self.competitions = competitions or []
        self.details = details or {}
        self.achievements = achievements or []
        self.failing_players: set[str] = set()
        self.calls: List[Tuple[str, Any]] = []

    def get_group(self, group_id: Any) -> Dict[str, Any]:
        self.calls.append(("group", group_id))
        return self.group

    def get_player_by_id(self, player_id: Any) -> Dict[str, Any]:
        self.calls.append(("player", player_id))
        if str(player_id) in self.failing_players:
            raise RuntimeError(f"WOM API error 500 for /players/id/{player_id}")
        return self.players.get(str(player_id), {})

    def get_group_competitions(self, group_id: Any) -> List[Dict[str, Any]]:
        self.calls.append(("competitions", group_id))
        return self.competitions

    def get_group_achievements(self, group_id: Any, limit: int = 10, offset: int = 0) -> List[Dict[str, Any]]:
        self.calls.append(("achievements", (group_id, limit, offset)))
        return self.achievements[offset : offset + limit]

    def get_competition(self, competition_id: Any) -> Dict[str, Any]:
        self.calls.append(("competition", competition_id))
        return self.details.get(str(competition_id), {"participations": []})


def membership(player_id: int, username: str, display_name: str | None = None, role: str = "mentor") -> Dict[str, Any]:
    return {
        "playerId": player_id,
        "role": role,
        "player": {"id": player_id, "username": username, "displayName": display_name or username},
    }


def player_details(xp: int, level: int, ehb: float = 0.0, registered: str = "2023-01-15T10:00:00.000Z") -> Dict[str, Any]:
    return {
        "ehb": ehb,
        "registeredAt": registered,
        "latestSnapshot": {"data": {"skills": {"overall": {"experience": xp, "level": level}}}},
    }
