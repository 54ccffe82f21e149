"""Emergency defense mode endpoints."""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from shakeguard.core.models import DefenseResult

router = APIRouter(prefix="/api/v1")


def _result_response(result: DefenseResult, status_code: int | None = None) -> JSONResponse:
    from shakeguard.main import get_defense

    content = result.to_dict()
    content["status"] = get_defense().status().to_dict()
    if status_code is None:
        status_code = 200 if result.success else 409
    return JSONResponse(content=content, status_code=status_code)


@router.get("/defense")
async def get_defense_status() -> dict:
    """Current mode, measure flags and remaining false-alarm lock time."""
    from shakeguard.main import get_brightness, get_defense

    status = get_defense().status().to_dict()
    status["brightness"] = await get_brightness().get()
    return status


@router.post("/defense/activate")
async def activate() -> JSONResponse:
    """Manual activation. Rejected with 409 while the false-alarm lock holds."""
    from shakeguard.main import get_defense

    return _result_response(await get_defense().activate(trigger="manual"))


@router.post("/defense/deactivate")
async def deactivate() -> JSONResponse:
    from shakeguard.main import get_defense

    return _result_response(await get_defense().deactivate())


@router.post("/defense/restore-brightness")
async def restore_brightness() -> JSONResponse:
    from shakeguard.main import get_defense

    return _result_response(await get_defense().restore_brightness())


@router.post("/defense/emergency-restore")
async def emergency_restore() -> JSONResponse:
    """Restore a comfortable brightness in any mode."""
    from shakeguard.main import get_brightness, get_defense

    ok = await get_defense().emergency_brightness_restore()
    return JSONResponse(
        content={"success": ok, "brightness": await get_brightness().get()},
        status_code=200 if ok else 500,
    )


@router.post("/defense/false-alarm")
async def false_alarm() -> JSONResponse:
    """Deactivate and block activation for the false-alarm period."""
    from shakeguard.main import get_defense

    return _result_response(await get_defense().disable_for_false_alarm())


@router.delete("/defense/false-alarm")
async def clear_false_alarm() -> dict:
    from shakeguard.main import get_defense

    defense = get_defense()
    defense.clear_false_alarm()
    return defense.status().to_dict()
