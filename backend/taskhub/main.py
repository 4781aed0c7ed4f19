import asyncio
import logging

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from taskhub.core.config import Settings, settings as default_settings
from taskhub.core.database import Database
from taskhub.core.errors import install_error_handlers
from taskhub.core.logging_setup import setup_logging
from taskhub.core.repairs import RepairQueue
from taskhub.routers import tasks, users
from taskhub.services.coordinator import PendingTasksCoordinator

logger = logging.getLogger(__name__)


def create_app(settings: Settings = None, repairs: RepairQueue = None) -> FastAPI:
    settings = settings or default_settings

    app = FastAPI(title="Taskhub API")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_error_handlers(app)

    app.include_router(tasks.router)
    app.include_router(users.router)

    app.state.settings = settings
    app.state.db = Database(settings.DATABASE_URL, echo=settings.DATABASE_ECHO)
    app.state.repairs = repairs or RepairQueue(settings.REDIS_URL, channel=settings.REPAIR_CHANNEL)
    app.state.coordinator = PendingTasksCoordinator(app.state.repairs)
    app.state.repair_listener = None

    async def repair_user(user_id: str):
        async with app.state.db.session() as session:
            await app.state.coordinator.reconcile_user(session, user_id)

    @app.on_event("startup")
    async def startup():
        setup_logging(settings.LOG_LEVEL)
        await app.state.db.connect()
        if app.state.repairs.enabled:
            app.state.repair_listener = asyncio.create_task(app.state.repairs.listen(repair_user))

    @app.on_event("shutdown")
    async def shutdown():
        listener = app.state.repair_listener
        if listener is not None:
            listener.cancel()
            try:
                await listener
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.exception("Repair listener had stopped with an error")
        await app.state.repairs.close()
        await app.state.db.dispose()

    @app.get("/")
    async def root():
        return {"message": "Taskhub API is running", "data": {}}

    return app


app = create_app()


def run():
    setup_logging(default_settings.LOG_LEVEL)
    logger.info("Starting Taskhub on port %s", default_settings.API_PORT)
    uvicorn.run(app, host="0.0.0.0", port=default_settings.API_PORT, log_config=None)


if __name__ == "__main__":
    run()
