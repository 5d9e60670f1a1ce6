from __future__ import annotations

import logging
import os
from typing import Any, Dict, Iterable, List, Optional

import httpx


logger = logging.getLogger(__name__)

MEMBER_PUBLIC_FIELDS = (
    "wom_id,name,wom_name,current_lvl,current_xp,siege_score,active,"
    "runewatch_reported,runewatch_whitelisted"
)
MEMBER_RANK_FIELDS = "wom_id,name,wom_name,womrole,current_xp,first_xp,ehb,hidden,active"
MEMBER_SYNC_FIELDS = (
    "wom_id,wom_name,name,first_xp,first_lvl,current_xp,current_lvl,ehb,"
    "womrole,join_date,name_history,active"
)
USER_FIELDS = "id,username,is_admin"
PARTICIPANT_PROGRESS_FIELDS = ("metric", "target_value", "current_value")


def eq(value: Any) -> str:
    if isinstance(value, bool):
        return f"eq.{'true' if value else 'false'}"
    return f"eq.{value}"


def in_list(values: Iterable[Any]) -> str:
    """Build a PostgREST ``in.(...)`` filter with every value quoted."""
    quoted = []
    for value in values:
        text = str(value).replace("\\", "\\\\").replace('"', '\\"')
        quoted.append(f'"{text}"')
    return f"in.({','.join(quoted)})"


class ClanStore:
    """Supabase REST access for the clan tables."""

    def __init__(self, transport: httpx.BaseTransport | None = None) -> None:
        self.supabase_url = os.getenv("SUPABASE_URL", "")
        self.supabase_key = os.getenv("SUPABASE_SERVICE_ROLE_KEY") or os.getenv("SUPABASE_SERVICE_KEY") or ""
        self.supabase_anon_key = os.getenv("SUPABASE_ANON_KEY") or self.supabase_key
        self.supabase_schema = os.getenv("SUPABASE_SCHEMA", "public")
        self.members_table = os.getenv("SUPABASE_MEMBERS_TABLE", "members")
        self.users_table = os.getenv("SUPABASE_USERS_TABLE", "users")
        self.events_table = os.getenv("SUPABASE_EVENTS_TABLE", "events")
        self.claim_requests_table = os.getenv("SUPABASE_CLAIM_REQUESTS_TABLE", "claim_requests")
        self.player_claims_table = os.getenv("SUPABASE_PLAYER_CLAIMS_TABLE", "player_claims")
        self.races_table = os.getenv("SUPABASE_RACES_TABLE", "races")
        self.race_participants_table = os.getenv("SUPABASE_RACE_PARTICIPANTS_TABLE", "race_participants")
        self.user_goals_table = os.getenv("SUPABASE_USER_GOALS_TABLE", "user_goals")
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)

    # ---- members -------------------------------------------------------------------

    def fetch_active_members(self) -> List[Dict[str, Any]]:
        return self._select(
            self.members_table,
            MEMBER_PUBLIC_FIELDS,
            filters={"active": eq(True)},
            order="name.asc",
        )

    def fetch_rank_candidates(self) -> List[Dict[str, Any]]:
        return self._select(
            self.members_table,
            MEMBER_RANK_FIELDS,
            filters={"active": eq(True)},
            order="name.asc",
        )

    def fetch_roster(self) -> List[Dict[str, Any]]:
        return self._select(self.members_table, MEMBER_SYNC_FIELDS)

    def fetch_leaderboard(self, limit: int | None = None) -> List[Dict[str, Any]]:
        return self._select(
            self.members_table,
            "wom_id,name,siege_score",
            filters={"active": eq(True)},
            order="siege_score.desc,name.asc",
            limit=limit,
        )

    def fetch_score_table(self) -> List[Dict[str, Any]]:
        return self._select(self.members_table, "wom_id,name,wom_name,siege_score")

    def fetch_anniversary_candidates(self) -> List[Dict[str, Any]]:
        return self._select(
            self.members_table,
            "wom_id,name,join_date",
            filters={"active": eq(True), "join_date": "not.is.null"},
            order="name.asc",
        )

    def insert_member(self, record: Dict[str, Any]) -> Dict[str, Any]:
        rows = self._insert(self.members_table, record, action="insert member")
        return rows[0] if rows else record

    def update_member(self, wom_id: Any, values: Dict[str, Any]) -> List[Dict[str, Any]]:
        if wom_id in (None, ""):
            raise ValueError("wom_id is required")
        return self._update(self.members_table, values, {"wom_id": eq(wom_id)}, action="update member")

    def admin_update_member(self, wom_id: Any, updates: Dict[str, Any]) -> Any:
        return self._rpc("admin_update_member", {"p_wom_id": wom_id, "p_updates": updates})

    def admin_delete_member(self, wom_id: Any) -> Any:
        return self._rpc("admin_delete_member", {"p_wom_id": wom_id})

    def admin_toggle_member_visibility(self, wom_id: Any, hidden: bool) -> Any:
        return self._rpc("admin_toggle_member_visibility", {"member_id": wom_id, "is_hidden": hidden})

    def admin_toggle_user_admin(self, user_id: str, is_admin: bool) -> Any:
        return self._rpc("admin_toggle_user_admin", {"p_user_id": user_id, "p_is_admin": is_admin})

    # ---- users & auth --------------------------------------------------------------

    def fetch_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        rows = self._select(self.users_table, USER_FIELDS, filters={"id": eq(user_id)}, limit=1)
        return rows[0] if rows else None

    def fetch_user_by_username(self, username: str) -> Optional[Dict[str, Any]]:
        rows = self._select(
            self.users_table,
            "id,username,email,is_admin",
            filters={"username": eq(username)},
            limit=1,
        )
        return rows[0] if rows else None

    def get_auth_user(self, token: str) -> Dict[str, Any]:
        """Resolve an access token through Supabase auth.

        Raises ``ValueError`` when Supabase rejects the token and
        ``RuntimeError`` for any other failure.
        """
        if not self.configured:
            raise RuntimeError("Supabase configuration is incomplete")

        endpoint = f"{self.supabase_url.rstrip('/')}/auth/v1/user"
        headers = {"Authorization": f"Bearer {token}", "apikey": self.supabase_anon_key}
        try:
            with self._client() as client:
                response = client.get(endpoint, headers=headers)
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code in (401, 403):
                raise ValueError("Invalid or expired token") from exc
            raise RuntimeError(f"Supabase auth lookup failed ({exc.response.status_code})") from exc
        except httpx.HTTPError as exc:
            raise RuntimeError(f"Supabase auth lookup failed: {exc}") from exc

        user_id = str(payload.get("id") or "").strip() if isinstance(payload, dict) else ""
        if not user_id:
            raise ValueError("Invalid or expired token")
        payload["id"] = user_id
        return payload

    def sign_in_with_password(self, email: str, password: str) -> Dict[str, Any]:
        if not self.configured:
            raise RuntimeError("Supabase configuration is incomplete")

        endpoint = f"{self.supabase_url.rstrip('/')}/auth/v1/token"
        headers = {"apikey": self.supabase_anon_key, "Content-Type": "application/json"}
        try:
            with self._client() as client:
                response = client.post(
                    endpoint,
                    params={"grant_type": "password"},
                    json={"email": email, "password": password},
                    headers=headers,
                )
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPStatusError as exc:
            if 400 <= exc.response.status_code < 500:
                raise ValueError("Invalid credentials") from exc
            raise RuntimeError(f"Supabase sign-in failed ({exc.response.status_code})") from exc
        except httpx.HTTPError as exc:
            raise RuntimeError(f"Supabase sign-in failed: {exc}") from exc

        if not isinstance(payload, dict) or not payload.get("access_token"):
            raise ValueError("Invalid credentials")
        return payload

    # ---- events --------------------------------------------------------------------

    def fetch_events(self) -> List[Dict[str, Any]]:
        return self._select(self.events_table, "*", order="start_date.asc")

    def fetch_events_by_wom_ids(self, wom_ids: Iterable[Any]) -> Dict[str, Dict[str, Any]]:
        ids = [str(item) for item in wom_ids if item not in (None, "")]
        if not ids:
            return {}
        rows = self._select(self.events_table, "*", filters={"wom_id": in_list(ids)})
        return {str(row.get("wom_id")): row for row in rows if row.get("wom_id") is not None}

    def fetch_event_by_wom_id(self, wom_id: Any) -> Optional[Dict[str, Any]]:
        rows = self._select(self.events_table, "*", filters={"wom_id": eq(wom_id)}, limit=1)
        return rows[0] if rows else None

    def insert_event(self, record: Dict[str, Any]) -> Dict[str, Any]:
        rows = self._insert(self.events_table, record, action="insert event")
        return rows[0] if rows else record

    def update_event(self, event_id: Any, values: Dict[str, Any]) -> List[Dict[str, Any]]:
        return self._update(self.events_table, values, {"id": eq(event_id)}, action="update event")

    def update_event_by_wom_id(self, wom_id: Any, values: Dict[str, Any]) -> List[Dict[str, Any]]:
        return self._update(self.events_table, values, {"wom_id": eq(wom_id)}, action="update event")

    def award_competition_points(
        self,
        competition_id: Any,
        points_data: List[Dict[str, Any]],
        member_updates: List[Dict[str, Any]],
    ) -> Any:
        return self._rpc(
            "award_competition_points",
            {
                "competition_id": competition_id,
                "points_data": points_data,
                "member_updates": member_updates,
            },
        )

    # ---- claims --------------------------------------------------------------------

    def fetch_claim_requests(self) -> List[Dict[str, Any]]:
        return self._select(self.claim_requests_table, "*", order="rsn.asc")

    def create_claim_request(self, record: Dict[str, Any]) -> Dict[str, Any]:
        rows = self._insert(self.claim_requests_table, record, action="create claim request")
        return rows[0] if rows else record

    def update_claim_request(self, request_id: Any, values: Dict[str, Any]) -> Dict[str, Any]:
        rows = self._update(
            self.claim_requests_table,
            values,
            {"id": eq(request_id)},
            action="update claim request",
        )
        if not rows:
            raise ValueError("Claim request not found")
        return rows[0]

    def create_player_claim(self, record: Dict[str, Any]) -> Dict[str, Any]:
        rows = self._insert(self.player_claims_table, record, action="create player claim")
        return rows[0] if rows else record

    def fetch_member_by_claim_code(self, code: str) -> Optional[Dict[str, Any]]:
        rows = self._select(
            self.members_table,
            "wom_id,name,claimed_by",
            filters={"claim_code": eq(code)},
            limit=1,
        )
        return rows[0] if rows else None

    def fetch_members_claimed_by(self, user_id: str) -> List[Dict[str, Any]]:
        return self._select(
            self.members_table,
            "wom_id,name,current_lvl,ehb,siege_score,claimed_by,updated_at",
            filters={"claimed_by": eq(user_id)},
            order="name.asc",
        )

    # ---- races ---------------------------------------------------------------------

    def fetch_races(self) -> List[Dict[str, Any]]:
        return self._select(self.races_table, "*", order="created_at.asc")

    def create_race(self, race: Dict[str, Any], participants: List[Dict[str, Any]]) -> Dict[str, Any]:
        rows = self._insert(self.races_table, race, action="create race")
        if not rows:
            raise RuntimeError("Unexpected response when creating race")
        record = rows[0]
        if participants:
            prepared = [self._participant_row(record["id"], item) for item in participants]
            record["participants"] = self._insert(
                self.race_participants_table,
                prepared,
                action="create race participants",
            )
        return record

    def update_race(
        self,
        race_id: Any,
        values: Dict[str, Any],
        participants: List[Dict[str, Any]] | None = None,
    ) -> Dict[str, Any]:
        rows = self._update(self.races_table, values, {"id": eq(race_id)}, action="update race")
        if not rows:
            raise ValueError("Race not found")
        record = rows[0]
        for participant in participants or []:
            participant_id = participant.get("id")
            if participant_id:
                changes = {key: participant[key] for key in PARTICIPANT_PROGRESS_FIELDS if key in participant}
                if not changes:
                    continue
                self._update(
                    self.race_participants_table,
                    changes,
                    {"id": eq(participant_id), "race_id": eq(race_id)},
                    action="update race participant",
                )
            else:
                self._insert(
                    self.race_participants_table,
                    self._participant_row(race_id, participant),
                    action="create race participant",
                )
        return record

    def delete_race(self, race_id: Any) -> None:
        self._delete(self.race_participants_table, {"race_id": eq(race_id)}, action="delete race participants")
        self._delete(self.races_table, {"id": eq(race_id)}, action="delete race")

    @staticmethod
    def _participant_row(race_id: Any, participant: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "race_id": race_id,
            "wom_id": participant.get("wom_id"),
            "player_name": participant.get("player_name"),
            "metric": participant.get("metric"),
            "target_value": participant.get("target_value"),
            "current_value": participant.get("current_value", 0),
        }

    # ---- user goals ----------------------------------------------------------------

    def fetch_user_goals(self, user_id: str | None = None) -> List[Dict[str, Any]]:
        filters = {"user_id": eq(user_id)} if user_id else None
        return self._select(self.user_goals_table, "*", filters=filters, order="id.asc")

    def create_user_goal(self, record: Dict[str, Any]) -> Dict[str, Any]:
        rows = self._insert(self.user_goals_table, record, action="create goal")
        return rows[0] if rows else record

    def update_user_goal(self, goal_id: Any, values: Dict[str, Any]) -> Dict[str, Any]:
        rows = self._update(self.user_goals_table, values, {"id": eq(goal_id)}, action="update goal")
        if not rows:
            raise ValueError("Goal not found")
        return rows[0]

    def delete_user_goal(self, goal_id: Any) -> None:
        self._delete(self.user_goals_table, {"id": eq(goal_id)}, action="delete goal")

    # ---- ownership -----------------------------------------------------------------

    def fetch_resource_owner(self, table: str, resource_id: Any, field: str = "creator_id") -> Optional[str]:
        rows = self._select(table, f"id,{field}", filters={"id": eq(resource_id)}, limit=1)
        if not rows:
            return None
        owner = rows[0].get(field)
        return str(owner) if owner is not None else None

    # ---- internal Supabase helpers -------------------------------------------------

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=10.0, transport=self._transport)

    def _supabase_endpoint(self, table: str) -> str:
        return f"{self.supabase_url.rstrip('/')}/rest/v1/{table}"

    def _supabase_headers(self, prefer: str | None = None) -> Dict[str, str]:
        headers = {
            "apikey": self.supabase_key,
            "Authorization": f"Bearer {self.supabase_key}",
            "Accept": "application/json",
        }
        if self.supabase_schema and self.supabase_schema != "public":
            headers["Content-Profile"] = self.supabase_schema
            headers["Accept-Profile"] = self.supabase_schema
        if prefer:
            headers["Prefer"] = prefer
        return headers

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Dict[str, Any] | None = None,
        body: Any = None,
        prefer: str | None = None,
        action: str,
    ) -> Any:
        if not self.configured:
            raise RuntimeError("Supabase configuration is incomplete")

        headers = self._supabase_headers(prefer)
        if body is not None:
            headers["Content-Type"] = "application/json"
        try:
            with self._client() as client:
                response = client.request(
                    method,
                    self._supabase_endpoint(path),
                    params=params,
                    json=body,
                    headers=headers,
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            detail = self._extract_supabase_detail(exc.response)
            logger.warning("Supabase %s failed (%s): %s", action, exc.response.status_code, detail)
            raise RuntimeError(f"Failed to {action}: {detail or exc}") from exc
        except httpx.HTTPError as exc:
            logger.warning("Supabase %s failed (%s)", action, exc)
            raise RuntimeError(f"Failed to {action}: {exc}") from exc

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise RuntimeError(f"Unexpected payload when trying to {action}") from exc

    def _select(
        self,
        table: str,
        columns: str = "*",
        filters: Dict[str, str] | None = None,
        order: str | None = None,
        limit: int | None = None,
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"select": columns}
        params.update(filters or {})
        if order:
            params["order"] = order
        if limit is not None:
            params["limit"] = str(limit)
        rows = self._request("GET", table, params=params, action=f"query {table}")
        if not isinstance(rows, list):
            raise RuntimeError(f"Unexpected payload from Supabase {table} endpoint")
        return [row for row in rows if isinstance(row, dict)]

    def _insert(self, table: str, record: Any, action: str) -> List[Dict[str, Any]]:
        rows = self._request(
            "POST",
            table,
            params={"select": "*"},
            body=record,
            prefer="return=representation",
            action=action,
        )
        return self._as_rows(rows)

    def _update(self, table: str, values: Dict[str, Any], filters: Dict[str, str], action: str) -> List[Dict[str, Any]]:
        if not filters:
            raise ValueError("Refusing to update without a filter")
        rows = self._request(
            "PATCH",
            table,
            params=dict(filters),
            body=values,
            prefer="return=representation",
            action=action,
        )
        return self._as_rows(rows)

    def _delete(self, table: str, filters: Dict[str, str], action: str) -> None:
        if not filters:
            raise ValueError("Refusing to delete without a filter")
        self._request("DELETE", table, params=dict(filters), action=action)

    def _rpc(self, function: str, args: Dict[str, Any]) -> Any:
        return self._request("POST", f"rpc/{function}", body=args, action=f"call {function}")

    @staticmethod
    def _as_rows(payload: Any) -> List[Dict[str, Any]]:
        if isinstance(payload, list):
            return [row for row in payload if isinstance(row, dict)]
        if isinstance(payload, dict):
            return [payload]
        return []

    def _extract_supabase_detail(self, response: httpx.Response | None) -> str | None:
        if response is None:
            return None
        try:
            payload = response.json()
        except ValueError:
            text = (response.text or "").strip()
            return text or None

        if isinstance(payload, list) and payload:
            payload = payload[0]
        if isinstance(payload, dict):
            for key in ("message", "detail", "error", "hint", "code"):
                value = payload.get(key)
                if isinstance(value, str) and value.strip():
                    return value.strip()
        return None
