from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Depends

from notification_engine.core.config import Settings, get_settings
from notification_engine.services import task_queue

router = APIRouter()


@router.get("/health", summary="Health check")
def health_check(settings: Settings = Depends(get_settings)) -> Dict[str, Any]:
    return {
        "status": "ok",
        "app": settings.app_name,
        "environment": settings.environment,
        "debug": settings.debug,
        "dispatch_backend": settings.dispatch_backend,
        "queued": task_queue.queue_size(),
        "workers_halted": task_queue.halted_reason(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
