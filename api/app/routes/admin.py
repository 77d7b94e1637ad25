from typing import Any

from fastapi import APIRouter, Header, HTTPException

from ..schemas import CacheInvalidateResponse, MaintenanceRunResponse

router = APIRouter()


@router.get("/admin/metrics")
def admin_metrics(x_admin_token: str | None = Header(default=None, alias="X-Admin-Token")) -> dict[str, Any]:
    from .. import main as m

    m._validate_admin_token(x_admin_token)
    svc = m.services
    return {
        "summary": svc.monitor.summary(),
        "metrics": svc.monitor.metrics(),
        "alerts": svc.monitor.recent_alerts(),
        "cache": svc.cache.stats(),
        "maintenance": svc.maintainer.status(),
    }


@router.post("/admin/maintenance/{task}", response_model=MaintenanceRunResponse)
def admin_run_maintenance(task: str, x_admin_token: str | None = Header(default=None, alias="X-Admin-Token")) -> MaintenanceRunResponse:
    from .. import main as m

    m._validate_admin_token(x_admin_token)
    maintainer = m.services.maintainer
    if task not in maintainer.tasks:
        raise HTTPException(status_code=404, detail=f"Unknown maintenance task: {task}")
    result = maintainer.run_once(task)
    return MaintenanceRunResponse(task=task, result=result, status=maintainer.tasks[task].status())


@router.post("/admin/cache/invalidate/{user_id}", response_model=CacheInvalidateResponse)
def admin_invalidate_cache(user_id: str, x_admin_token: str | None = Header(default=None, alias="X-Admin-Token")) -> CacheInvalidateResponse:
    from .. import main as m

    m._validate_admin_token(x_admin_token)
    removed = m.services.engine.invalidate_user(user_id)
    return CacheInvalidateResponse(user_id=user_id, compatibility_entries_removed=removed)
