from __future__ import annotations

import datetime as dt
import hashlib
import json
import logging
import os
from functools import lru_cache
from typing import Any, Dict, List, Optional

from fastapi import Body, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from siege_core import ClanStore, WomApiError, WomClient, sync_wom_events, sync_wom_members
from siege_core.auth import authenticate_user, can_manage_resource, validate_admin_request, validate_api_key
from siege_core.cors import cors_settings, is_allowed_origin
from siege_core.ranks import appropriate_rank, needs_rank_update, progress_to_next_rank
from siege_core.wom import is_valid_player_id

app = FastAPI(title="Siege Clan Tracker API", version="1.0.0")
app.add_middleware(CORSMiddleware, **cors_settings())

DEFAULT_WOM_GROUP_ID = "2928"
RACE_FIELDS = ("title", "description", "start_time", "end_time", "status", "is_public")
GOAL_CREATE_FIELDS = ("goal_type", "metric", "target_value", "current_value", "start_value", "target_date", "completed")
GOAL_UPDATE_FIELDS = ("target_value", "target_date", "current_value", "completed")

logger = logging.getLogger(__name__)


class AdminUpdateMemberRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    wom_id: Optional[Any] = Field(default=None, alias="womId")
    updates: Optional[Dict[str, Any]] = None


class AdminMemberRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    wom_id: Optional[Any] = Field(default=None, alias="womId")


class ToggleVisibilityRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    wom_id: Optional[Any] = Field(default=None, alias="womId")
    hidden: Optional[bool] = None


class ToggleUserAdminRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: Optional[str] = Field(default=None, alias="userId")
    is_admin: Optional[bool] = Field(default=None, alias="isAdmin")


class ProcessClaimRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    request_id: Optional[Any] = Field(default=None, alias="requestId")
    action: Optional[str] = None
    admin_notes: Optional[str] = Field(default=None, alias="adminNotes")
    user_id: Optional[str] = Field(default=None, alias="userId")
    wom_id: Optional[Any] = Field(default=None, alias="womId")


class ClaimRequestMutation(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    action: Optional[str] = None
    wom_id: Optional[Any] = Field(default=None, alias="womId")
    rsn: Optional[str] = None
    message: Optional[str] = None
    request_id: Optional[Any] = Field(default=None, alias="requestId")
    status: Optional[str] = None
    admin_notes: Optional[str] = Field(default=None, alias="adminNotes")


class RedeemClaimCodeRequest(BaseModel):
    code: Optional[str] = None


class RaceMutation(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    action: Optional[str] = None
    race_data: Dict[str, Any] = Field(default_factory=dict, alias="raceData")


class UserGoalMutation(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    action: Optional[str] = None
    user_id: Optional[str] = Field(default=None, alias="userId")
    goal_data: Dict[str, Any] = Field(default_factory=dict, alias="goalData")
    goal_id: Optional[Any] = Field(default=None, alias="goalId")


class LoginRequest(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None


@lru_cache(maxsize=1)
def store() -> ClanStore:
    return ClanStore()


@lru_cache(maxsize=1)
def wom() -> WomClient:
    return WomClient()


@app.exception_handler(StarletteHTTPException)
def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
def validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if any(error.get("type") == "json_invalid" for error in errors):
        return JSONResponse(status_code=400, content={"error": "Invalid JSON payload"})
    fields = []
    for error in errors:
        name = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        if name:
            fields.append(name)
    if not fields:
        return JSONResponse(status_code=400, content={"error": "Missing request body"})
    return JSONResponse(status_code=400, content={"error": f"Invalid request: {', '.join(fields)}"})


def require_api_key(x_api_key: str = Header(default="")) -> None:
    result = validate_api_key(x_api_key)
    if not result.valid:
        logger.info("Rejected public request (%s)", result.reason)
        raise HTTPException(status_code=401, detail="Unauthorized: Invalid or missing API key")


def require_user(authorization: str = Header(default="")) -> Dict[str, Any]:
    try:
        user = authenticate_user(store(), authorization)
    except RuntimeError as exc:
        logger.warning("User authentication failed (%s)", exc)
        raise HTTPException(status_code=502, detail="Failed to verify authentication token") from exc
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid authentication token")
    return user


def require_admin(authorization: str = Header(default="")) -> str:
    result = validate_admin_request(store(), authorization)
    if not result.valid:
        raise HTTPException(status_code=result.status_code, detail=result.error)
    return str(result.user_id)


def require_allowed_origin(origin: str = Header(default="")) -> None:
    if origin and not is_allowed_origin(origin):
        raise HTTPException(status_code=403, detail="Origin not allowed")


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _require_fields(payload: BaseModel, *names: str) -> None:
    data = payload.model_dump(by_alias=True)
    missing = [name for name in names if _is_blank(data.get(name))]
    if missing:
        raise HTTPException(status_code=400, detail=f"Missing required fields: {', '.join(missing)}")


def _cached_json(request: Request, resource: str, ttl: int, payload: Any) -> Response:
    content = jsonable_encoder(payload)
    digest = hashlib.sha256(json.dumps(content, sort_keys=True, default=str).encode("utf-8")).hexdigest()[:16]
    etag = f'W/"{resource}-{digest}"'
    headers = {
        "ETag": etag,
        "Cache-Control": f"public, max-age={ttl}",
        "CDN-Cache-Control": f"public, max-age={ttl}",
    }
    if request.headers.get("if-none-match") == etag:
        return Response(status_code=304, headers=headers)
    return JSONResponse(content=content, headers=headers)


def _utc_now_iso() -> str:
    return dt.datetime.now(dt.UTC).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _wom_group_id(value: Optional[str] = None) -> str:
    group_id = (value or os.getenv("WOM_GROUP_ID") or DEFAULT_WOM_GROUP_ID).strip()
    if not is_valid_player_id(group_id):
        raise HTTPException(status_code=400, detail="Invalid group ID")
    return group_id


def _store_call(func, *args, **kwargs):
    try:
        return func(*args, **kwargs)
    except ValueError as exc:
        status = 404 if "not found" in str(exc).lower() else 400
        raise HTTPException(status_code=status, detail=str(exc)) from exc
    except RuntimeError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc


def _admin_rpc(func, *args) -> Dict[str, Any]:
    try:
        data = func(*args)
    except RuntimeError as exc:
        logger.error("Admin RPC %s failed (%s)", getattr(func, "__name__", func), exc)
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return {"success": True, "data": data}


# ---- public reads --------------------------------------------------------------------


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/api/members", dependencies=[Depends(require_api_key)])
def members(request: Request):
    rows = _store_call(store().fetch_active_members)
    return _cached_json(request, "members", 300, rows)


@app.get("/api/members/rank-updates", dependencies=[Depends(require_api_key)])
def member_rank_updates(request: Request):
    rows = _store_call(store().fetch_rank_candidates)
    pending = [
        {
            **row,
            "appropriateRank": appropriate_rank(row),
            "progressToNext": progress_to_next_rank(row),
        }
        for row in rows
        if needs_rank_update(row)
    ]
    return _cached_json(request, "rank-updates", 300, pending)


@app.get("/api/siege/leaderboard", dependencies=[Depends(require_api_key)])
def siege_leaderboard(request: Request, limit: Optional[int] = Query(default=None, ge=1, le=500)):
    rows = _store_call(store().fetch_leaderboard, limit)
    return _cached_json(request, "leaderboard", 300, rows)


@app.get("/api/events", dependencies=[Depends(require_api_key)])
def events(request: Request):
    rows = _store_call(store().fetch_events)
    return _cached_json(request, "events", 300, rows)


@app.get("/api/claim-requests", dependencies=[Depends(require_api_key)])
def claim_requests(request: Request):
    rows = _store_call(store().fetch_claim_requests)
    return _cached_json(request, "claim-requests", 900, rows)


@app.get("/api/races", dependencies=[Depends(require_api_key)])
def races(request: Request):
    rows = _store_call(store().fetch_races)
    return _cached_json(request, "races", 300, rows)


@app.get("/api/user-goals", dependencies=[Depends(require_api_key)])
def user_goals(request: Request, userId: Optional[str] = Query(default=None, alias="userId")):
    rows = _store_call(store().fetch_user_goals, userId)
    return _cached_json(request, "user-goals", 300, rows)


@app.get("/api/wom/player", dependencies=[Depends(require_api_key)])
def wom_player(request: Request, player_id: str = Query(default="", alias="id")):
    if not is_valid_player_id(player_id):
        raise HTTPException(status_code=400, detail="Invalid player ID")
    try:
        player = wom().get_player_by_id(player_id)
    except WomApiError as exc:
        raise HTTPException(status_code=exc.status_code or 502, detail=str(exc)) from exc
    return _cached_json(request, f"wom-player-{player_id}", 600, player)


@app.get("/api/wom/group", dependencies=[Depends(require_api_key)])
def wom_group(request: Request, group_id: Optional[str] = Query(default=None, alias="groupId")):
    resolved = _wom_group_id(group_id)
    try:
        group = wom().get_group(resolved)
    except WomApiError as exc:
        raise HTTPException(status_code=exc.status_code or 502, detail=str(exc)) from exc
    return _cached_json(request, f"wom-group-{resolved}", 900, group)


@app.get("/api/wom/competitions", dependencies=[Depends(require_api_key)])
def wom_competitions(request: Request, group_id: Optional[str] = Query(default=None, alias="groupId")):
    resolved = _wom_group_id(group_id)
    try:
        competitions = wom().get_group_competitions(resolved)
    except WomApiError as exc:
        raise HTTPException(status_code=exc.status_code or 502, detail=str(exc)) from exc
    return _cached_json(request, f"wom-competitions-{resolved}", 900, competitions)


@app.get("/api/wom/group-achievements", dependencies=[Depends(require_api_key)])
def wom_group_achievements(
    request: Request,
    group_id: Optional[str] = Query(default=None, alias="groupId"),
    limit: int = Query(default=10, ge=1, le=50),
    offset: int = Query(default=0, ge=0),
):
    resolved = _wom_group_id(group_id)
    try:
        achievements = wom().get_group_achievements(resolved, limit=limit, offset=offset)
    except WomApiError as exc:
        raise HTTPException(status_code=exc.status_code or 502, detail=str(exc)) from exc
    return _cached_json(request, f"wom-achievements-{resolved}-{limit}-{offset}", 300, achievements)


# ---- authenticated users -------------------------------------------------------------


@app.post("/api/auth/login-with-username")
def login_with_username(payload: LoginRequest):
    username = (payload.username or "").strip().lower()
    if not username or not payload.password:
        raise HTTPException(status_code=400, detail="Username and password required")

    try:
        user = store().fetch_user_by_username(username)
        if not user or not user.get("email"):
            raise HTTPException(status_code=401, detail="Invalid credentials")
        session = store().sign_in_with_password(user["email"], payload.password)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail="Invalid credentials") from exc
    except RuntimeError as exc:
        logger.warning("Username login failed upstream (%s)", exc)
        raise HTTPException(status_code=502, detail="Authentication service unavailable") from exc

    return {
        "session": {
            "access_token": session.get("access_token"),
            "refresh_token": session.get("refresh_token"),
            "expires_in": session.get("expires_in"),
            "expires_at": session.get("expires_at"),
        },
        "user": {
            "id": user.get("id"),
            "username": user.get("username"),
            "email": user.get("email"),
            "is_admin": bool(user.get("is_admin")),
        },
    }


@app.post("/api/claim-request-mutation", dependencies=[Depends(require_allowed_origin)])
def claim_request_mutation(payload: ClaimRequestMutation, user: Dict[str, Any] = Depends(require_user)):
    if payload.action == "create":
        _require_fields(payload, "womId", "rsn")
        record = _store_call(
            store().create_claim_request,
            {
                "user_id": user["id"],
                "wom_id": payload.wom_id,
                "rsn": payload.rsn.strip(),
                "message": payload.message,
                "status": "pending",
            },
        )
        return {"success": True, "data": record}

    if payload.action == "process":
        if not user.get("is_admin"):
            raise HTTPException(status_code=403, detail="Admin access required")
        _require_fields(payload, "requestId", "status")
        if payload.status not in ("approved", "denied"):
            raise HTTPException(status_code=400, detail="Status must be 'approved' or 'denied'")
        record = _store_call(
            store().update_claim_request,
            payload.request_id,
            {
                "status": payload.status,
                "admin_notes": payload.admin_notes,
                "processed_at": _utc_now_iso(),
                "admin_user_id": user["id"],
            },
        )
        if payload.status == "approved" and record.get("wom_id") and record.get("user_id"):
            _store_call(store().update_member, record["wom_id"], {"claimed_by": record["user_id"]})
        return {"success": True, "data": record}

    raise HTTPException(status_code=400, detail="Invalid action")


@app.post("/api/redeem-claim-code", dependencies=[Depends(require_allowed_origin)])
def redeem_claim_code(payload: RedeemClaimCodeRequest, user: Dict[str, Any] = Depends(require_user)):
    code = (payload.code or "").strip()
    if not code:
        raise HTTPException(status_code=400, detail="Missing required fields: code")

    member = _store_call(store().fetch_member_by_claim_code, code)
    if member is None:
        raise HTTPException(status_code=404, detail="Invalid or already used claim code")
    if member.get("claimed_by"):
        raise HTTPException(status_code=400, detail="This player has already been claimed")

    _store_call(store().update_member, member["wom_id"], {"claimed_by": user["id"], "claim_code": None})
    return {"success": True, "playerName": member.get("name")}


@app.get("/api/user-claims")
def user_claims(userId: str = Query(default="", alias="userId"), user: Dict[str, Any] = Depends(require_user)):
    if not userId:
        raise HTTPException(status_code=400, detail="User ID is required")
    if userId != user["id"] and not user.get("is_admin"):
        raise HTTPException(status_code=403, detail="Access denied")

    rows = _store_call(store().fetch_members_claimed_by, userId)
    return [
        {
            "id": row.get("wom_id"),
            "user_id": userId,
            "wom_id": row.get("wom_id"),
            "claimed_at": row.get("updated_at"),
            "members": {
                "name": row.get("name"),
                "current_lvl": row.get("current_lvl"),
                "ehb": row.get("ehb"),
                "siege_score": row.get("siege_score"),
                "wom_id": row.get("wom_id"),
            },
        }
        for row in rows
    ]


@app.post("/api/races-mutation", dependencies=[Depends(require_allowed_origin)])
def races_mutation(payload: RaceMutation, user: Dict[str, Any] = Depends(require_user)):
    data = payload.race_data
    race_values = {key: data[key] for key in RACE_FIELDS if key in data}
    participants: List[Dict[str, Any]] = [item for item in data.get("participants") or [] if isinstance(item, dict)]

    if payload.action == "create":
        if not race_values.get("title"):
            raise HTTPException(status_code=400, detail="Missing required fields: title")
        race_values["creator_id"] = user["id"]
        record = _store_call(store().create_race, race_values, participants)
        return {"success": True, "data": record}

    if payload.action in ("update", "delete"):
        race_id = data.get("id")
        if not race_id:
            raise HTTPException(status_code=400, detail="Race ID is required")
        allowed = _store_call(can_manage_resource, store(), user, store().races_table, race_id)
        if not allowed:
            raise HTTPException(status_code=403, detail="Access denied")
        if payload.action == "delete":
            _store_call(store().delete_race, race_id)
            return {"success": True}
        race_values["updated_at"] = _utc_now_iso()
        record = _store_call(store().update_race, race_id, race_values, participants)
        return {"success": True, "data": record}

    raise HTTPException(status_code=400, detail="Invalid action")


@app.post("/api/user-goals-mutation", dependencies=[Depends(require_allowed_origin)])
def user_goals_mutation(payload: UserGoalMutation, user: Dict[str, Any] = Depends(require_user)):
    target_user = payload.user_id or user["id"]
    if target_user != user["id"] and not user.get("is_admin"):
        raise HTTPException(status_code=403, detail="Access denied")

    data = payload.goal_data
    if payload.action == "create":
        record = {key: data[key] for key in GOAL_CREATE_FIELDS if key in data}
        if not record.get("metric") or record.get("target_value") is None:
            raise HTTPException(status_code=400, detail="Missing required fields: metric, target_value")
        record["user_id"] = target_user
        return {"success": True, "data": _store_call(store().create_user_goal, record)}

    if payload.action in ("update", "delete"):
        goal_id = payload.goal_id or data.get("id")
        if not goal_id:
            raise HTTPException(status_code=400, detail="Goal ID is required")
        table = store().user_goals_table
        if not _store_call(can_manage_resource, store(), user, table, goal_id, "user_id"):
            raise HTTPException(status_code=403, detail="Access denied")
        if payload.action == "delete":
            _store_call(store().delete_user_goal, goal_id)
            return {"success": True}
        values = {key: data[key] for key in GOAL_UPDATE_FIELDS if key in data}
        values["updated_at"] = _utc_now_iso()
        return {"success": True, "data": _store_call(store().update_user_goal, goal_id, values)}

    raise HTTPException(status_code=400, detail="Invalid action")


# ---- admin ---------------------------------------------------------------------------


@app.post("/api/admin/update-member")
def admin_update_member(payload: AdminUpdateMemberRequest, admin_id: str = Depends(require_admin)):
    _require_fields(payload, "womId", "updates")
    logger.info("Admin %s updating member %s", admin_id, payload.wom_id)
    return _admin_rpc(store().admin_update_member, payload.wom_id, payload.updates)


@app.delete("/api/admin/delete-member")
def admin_delete_member(
    payload: Optional[AdminMemberRequest] = Body(default=None),
    wom_id: Optional[str] = Query(default=None, alias="womId"),
    admin_id: str = Depends(require_admin),
):
    target = payload.wom_id if payload and payload.wom_id is not None else wom_id
    if target in (None, ""):
        raise HTTPException(status_code=400, detail="Missing required fields: womId")
    logger.info("Admin %s deleting member %s", admin_id, target)
    return _admin_rpc(store().admin_delete_member, target)


@app.post("/api/admin/toggle-visibility")
def admin_toggle_visibility(payload: ToggleVisibilityRequest, admin_id: str = Depends(require_admin)):
    _require_fields(payload, "womId", "hidden")
    return _admin_rpc(store().admin_toggle_member_visibility, payload.wom_id, payload.hidden)


@app.post("/api/admin/toggle-user-admin")
def admin_toggle_user_admin(payload: ToggleUserAdminRequest, admin_id: str = Depends(require_admin)):
    _require_fields(payload, "userId", "isAdmin")
    logger.info("Admin %s setting is_admin=%s for %s", admin_id, payload.is_admin, payload.user_id)
    return _admin_rpc(store().admin_toggle_user_admin, payload.user_id, payload.is_admin)


@app.post("/api/process-claim-request")
def process_claim_request(payload: ProcessClaimRequest, admin_id: str = Depends(require_admin)):
    _require_fields(payload, "requestId", "action")
    if payload.action not in ("approved", "denied"):
        raise HTTPException(status_code=400, detail="Action must be 'approved' or 'denied'")

    now = _utc_now_iso()
    record = _store_call(
        store().update_claim_request,
        payload.request_id,
        {
            "status": payload.action,
            "admin_notes": payload.admin_notes,
            "processed_at": now,
            "admin_user_id": admin_id,
        },
    )
    claim = None
    if payload.action == "approved" and payload.user_id and payload.wom_id is not None:
        claim = _store_call(
            store().create_player_claim,
            {"user_id": payload.user_id, "wom_id": payload.wom_id, "claimed_at": now},
        )
    return {"success": True, "data": {"request": record, "claim": claim}}


@app.post("/api/admin/sync-wom")
def admin_sync_wom(admin_id: str = Depends(require_admin)):
    group_id = _wom_group_id()
    logger.info("Admin %s triggered WOM member sync", admin_id)
    try:
        summary = sync_wom_members(store(), wom(), group_id)
    except RuntimeError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return {"success": True, "data": summary.as_dict()}


@app.post("/api/admin/sync-events")
def admin_sync_events(admin_id: str = Depends(require_admin)):
    group_id = _wom_group_id()
    logger.info("Admin %s triggered WOM event sync", admin_id)
    try:
        summary = sync_wom_events(store(), wom(), group_id)
    except RuntimeError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return {"success": True, "data": summary.as_dict()}
