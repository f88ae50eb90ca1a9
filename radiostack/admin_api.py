"""Admin API router for RadioStack.

REST endpoints over the same operations the CLI exposes: deploy, remove,
update, backup, status, info, logs, media resize and restore, bulk runs
and inventory maintenance.

All endpoints except login require a valid operator JWT (see
:mod:`radiostack.auth`).
"""

from __future__ import annotations

import logging
from typing import Any, NoReturn

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from radiostack import auth
from radiostack.auth import authenticate, create_token, require_admin
from radiostack.errors import RadioStackError, error_kind
from radiostack.stack import RadioStack

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])

_HTTP_STATUS = {
    "validation": 400,
    "declined": 400,
    "not_found": 404,
    "conflict": 409,
    "range_exhausted": 409,
    "resource": 503,
    "external_tool": 502,
    "store_io": 500,
}

_stack: RadioStack | None = None


# ── Helpers ───────────────────────────────────────────────────────

def set_stack(stack: RadioStack | None) -> None:
    """Install the manager used by the routes (server startup, tests)."""
    global _stack
    _stack = stack
    if stack is not None:
        auth.configure(stack.config)


async def _get_stack() -> RadioStack:
    if _stack is None:
        set_stack(await RadioStack.open())
    return _stack


def _raise_http(exc: RadioStackError) -> NoReturn:
    kind = error_kind(exc)
    raise HTTPException(
        status_code=_HTTP_STATUS.get(kind, 500),
        detail={"error_kind": kind, "message": str(exc)},
    ) from exc


# ══════════════════════════════════════════════════════════════════
# AUTH
# ══════════════════════════════════════════════════════════════════

class LoginRequest(BaseModel):
    username: str
    password: str


@router.post("/auth/login")
async def login(req: LoginRequest):
    await _get_stack()
    user = authenticate(req.username, req.password)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return {"token": create_token(user["username"]), "user": user}


@router.get("/auth/me")
async def me(admin: dict = Depends(require_admin)):
    return {"username": admin["username"]}


# ══════════════════════════════════════════════════════════════════
# STATIONS
# ══════════════════════════════════════════════════════════════════

class DeployRequest(BaseModel):
    platform: str
    station_name: str
    station_id: int | None = None
    cores: int | None = Field(default=None, ge=1)
    memory_mb: int | None = Field(default=None, ge=256)
    quota: str | None = None
    address_suffix: int | None = Field(default=None, ge=0, le=255)
    version: str | None = None
    resume: bool = False


class BackupRequest(BaseModel):
    mode: str = "full"


class StatusUpdate(BaseModel):
    status: str


class ResizeRequest(BaseModel):
    quota: str


class RestoreRequest(BaseModel):
    snapshot: str


@router.get("/stations")
async def list_stations(
    platform: str | None = None,
    _: dict = Depends(require_admin),
):
    stack = await _get_stack()
    try:
        records = stack.store.list(platform)
    except RadioStackError as exc:
        _raise_http(exc)
    return {"stations": [r.to_dict() for r in records], "total": len(records)}


@router.post("/stations", status_code=201)
async def deploy_station(req: DeployRequest, _: dict = Depends(require_admin)):
    stack = await _get_stack()
    try:
        spec = await stack.orchestrator.plan(
            req.platform,
            req.station_name,
            station_id=req.station_id,
            cores=req.cores,
            memory_mb=req.memory_mb,
            quota=req.quota,
            address_suffix=req.address_suffix,
            version=req.version,
        )
    except RadioStackError as exc:
        _raise_http(exc)
    result = await stack.orchestrator.provision(spec, resume=req.resume)
    if not result.success:
        raise HTTPException(
            status_code=_HTTP_STATUS.get(result.error_kind, 500),
            detail={
                "error_kind": result.error_kind,
                "message": result.error,
                "steps": [s.__dict__ for s in result.steps],
            },
        )
    return {
        "station": result.record.to_dict() if result.record else None,
        "steps": [s.__dict__ for s in result.steps],
    }


@router.get("/stations/{station_id}")
async def get_station(station_id: int, _: dict = Depends(require_admin)):
    stack = await _get_stack()
    try:
        return await stack.orchestrator.info(station_id)
    except RadioStackError as exc:
        _raise_http(exc)


@router.get("/stations/{station_id}/status")
async def station_status(
    station_id: int,
    probe: bool = False,
    _: dict = Depends(require_admin),
):
    stack = await _get_stack()
    try:
        return await stack.orchestrator.status(station_id, probe=probe)
    except RadioStackError as exc:
        _raise_http(exc)


@router.patch("/stations/{station_id}/status")
async def set_station_status(
    station_id: int,
    req: StatusUpdate,
    _: dict = Depends(require_admin),
):
    stack = await _get_stack()
    try:
        record = await stack.orchestrator.set_status(station_id, req.status)
    except RadioStackError as exc:
        _raise_http(exc)
    return record.to_dict()


@router.delete("/stations/{station_id}")
async def remove_station(
    station_id: int,
    confirm: bool = False,
    remove_data: bool = False,
    _: dict = Depends(require_admin),
):
    """Remove a station. ``confirm=true`` is the API's confirmation step."""
    stack = await _get_stack()
    try:
        result = await stack.orchestrator.teardown(
            station_id, remove_data=remove_data, force=confirm
        )
    except RadioStackError as exc:
        _raise_http(exc)
    return result.to_outcome().to_dict()


@router.post("/stations/{station_id}/update")
async def update_station(station_id: int, _: dict = Depends(require_admin)):
    stack = await _get_stack()
    try:
        outcome = await stack.orchestrator.update(station_id)
    except RadioStackError as exc:
        _raise_http(exc)
    return outcome.to_dict()


@router.post("/stations/{station_id}/backup")
async def backup_station(
    station_id: int,
    req: BackupRequest,
    _: dict = Depends(require_admin),
):
    stack = await _get_stack()
    try:
        report = await stack.orchestrator.backup(station_id, mode=req.mode)
    except RadioStackError as exc:
        _raise_http(exc)
    return {
        "station_id": report.station_id,
        "mode": report.mode,
        "success": report.success,
        "results": [r.__dict__ for r in report.results],
    }


@router.post("/stations/{station_id}/restart")
async def restart_station(station_id: int, _: dict = Depends(require_admin)):
    stack = await _get_stack()
    try:
        health = await stack.orchestrator.restart(station_id)
    except RadioStackError as exc:
        _raise_http(exc)
    return {"station_id": station_id, "health": health.value}


@router.get("/stations/{station_id}/logs")
async def station_logs(
    station_id: int,
    lines: int = Query(100, ge=1, le=10000),
    service: str = "",
    _: dict = Depends(require_admin),
):
    stack = await _get_stack()
    try:
        text = await stack.orchestrator.logs(station_id, lines=lines, service=service)
    except RadioStackError as exc:
        _raise_http(exc)
    return {"station_id": station_id, "logs": text}


@router.post("/stations/{station_id}/resize")
async def resize_station(
    station_id: int,
    req: ResizeRequest,
    _: dict = Depends(require_admin),
):
    stack = await _get_stack()
    try:
        outcome = await stack.orchestrator.resize(station_id, req.quota)
    except RadioStackError as exc:
        _raise_http(exc)
    return outcome.to_dict()


@router.post("/stations/{station_id}/restore")
async def restore_station(
    station_id: int,
    req: RestoreRequest,
    confirm: bool = False,
    _: dict = Depends(require_admin),
):
    """Roll the media dataset back. ``confirm=true`` is required, as for removal."""
    stack = await _get_stack()
    try:
        outcome = await stack.orchestrator.restore(station_id, req.snapshot, force=confirm)
    except RadioStackError as exc:
        _raise_http(exc)
    return outcome.to_dict()


@router.get("/backups")
async def list_backups(station_id: int | None = None, _: dict = Depends(require_admin)):
    stack = await _get_stack()
    try:
        backups = await stack.orchestrator.list_backups(station_id)
    except RadioStackError as exc:
        _raise_http(exc)
    return {"station_id": station_id, "backups": backups}


@router.get("/next-id")
async def next_id(platform: str, _: dict = Depends(require_admin)):
    stack = await _get_stack()
    try:
        return {"platform": platform, "station_id": await stack.orchestrator.next_id(platform)}
    except RadioStackError as exc:
        _raise_http(exc)


# ══════════════════════════════════════════════════════════════════
# BULK
# ══════════════════════════════════════════════════════════════════

class BulkRequest(BaseModel):
    platform: str | None = None
    mode: str = "full"


@router.post("/bulk/{operation}")
async def bulk_operation(
    operation: str,
    req: BulkRequest,
    _: dict = Depends(require_admin),
):
    if operation not in ("update", "backup", "status", "restart"):
        raise HTTPException(status_code=400, detail=f"Unsupported bulk operation: {operation}")
    stack = await _get_stack()
    kwargs: dict[str, Any] = {"mode": req.mode} if operation == "backup" else {}
    try:
        report = await stack.bulk.run(operation, platform=req.platform, **kwargs)
    except RadioStackError as exc:
        _raise_http(exc)
    return report.to_dict()


# ══════════════════════════════════════════════════════════════════
# INVENTORY
# ══════════════════════════════════════════════════════════════════

@router.get("/inventory/validate")
async def validate_inventory(_: dict = Depends(require_admin)):
    stack = await _get_stack()
    try:
        return (await stack.validate_inventory()).to_dict()
    except RadioStackError as exc:
        _raise_http(exc)


@router.post("/inventory/cleanup")
async def cleanup_inventory(_: dict = Depends(require_admin)):
    stack = await _get_stack()
    try:
        removed = await stack.cleanup_inventory()
    except RadioStackError as exc:
        _raise_http(exc)
    return {"removed": removed}


@router.get("/inventory/backups")
async def inventory_backups(_: dict = Depends(require_admin)):
    stack = await _get_stack()
    return {"backups": [p.name for p in stack.store.list_backups()]}
