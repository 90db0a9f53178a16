# coursestream/main.py
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from .config import Settings, get_settings
from .errors import CourseStreamError
from .routes import analytics, heartbeat, history, jobs, stream, upload
from .services import Services, build_services

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    settings = settings or (services.settings if services else get_settings())
    logging.basicConfig(level=settings.log_level,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    services = services or build_services(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        services.scheduler.start()
        yield
        services.scheduler.stop()

    app = FastAPI(title="CourseStream video pipeline", lifespan=lifespan)
    app.state.services = services

    @app.exception_handler(CourseStreamError)
    async def coursestream_error_handler(request: Request, exc: CourseStreamError):
        if exc.status_code >= 500:
            logger.error("❌ %s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"error": jsonable_encoder(exc.to_dict())})

    @app.exception_handler(RequestValidationError)
    async def invalid_data_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"error": {
            "code": "invalid_data",
            "message": "Invalid request data",
            "details": jsonable_encoder(exc.errors()),
        }})

    app.include_router(upload.router, prefix="/videos", tags=["upload"])
    app.include_router(jobs.router, prefix="/videos", tags=["jobs"])
    app.include_router(stream.router, prefix="/videos", tags=["stream"])
    app.include_router(heartbeat.router, prefix="/videos", tags=["heartbeat"])
    app.include_router(analytics.router, prefix="/videos", tags=["analytics"])
    app.include_router(history.router, prefix="/videos", tags=["history"])

    if settings.storage_backend == "local":
        os.makedirs(settings.public_dir, exist_ok=True)
        app.mount("/media", StaticFiles(directory=settings.public_dir), name="media")

    @app.get("/health")
    def health():
        return {"status": "ok", "jobs": services.orchestrator.statistics()}

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(create_app(), host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "8000")))
