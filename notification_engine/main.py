from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from notification_engine.api.routes import api_router
from notification_engine.core.config import get_settings
from notification_engine.core.database import init_db
from notification_engine.core.logging import setup_logging
from notification_engine.services import task_queue
from notification_engine.services.scheduler import start_scheduler, stop_scheduler


def create_app() -> FastAPI:
    settings = get_settings()
    setup_logging(settings.log_level, json_format=settings.log_json)

    app = FastAPI(
        title=settings.app_name,
        debug=settings.debug,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix=settings.api_prefix)

    @app.on_event("startup")
    def _startup() -> None:
        init_db()
        if settings.start_workers:
            task_queue.start_workers()
            start_scheduler()

    @app.on_event("shutdown")
    def _shutdown() -> None:
        stop_scheduler()
        task_queue.stop_workers()

    return app


app = create_app()
