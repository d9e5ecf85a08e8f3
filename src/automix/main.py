import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .api import mixes
from .config import Config
from .errors import InvalidRequest
from .jobs import JobManager
from .worker import MixWorker

logging.basicConfig(
    level=os.getenv("AUTOMIX_LOG_LEVEL", "INFO").upper(),
    format="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(config: Optional[Config] = None, worker: Optional[MixWorker] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        config: Loaded config (``Config.load()`` when None)
        worker: Pre-built worker; one is created at startup when None
    """
    config = config or Config.load()
    jobs = worker.jobs if worker is not None else JobManager()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting automix API")
        owns_worker = app.state.worker is None
        if owns_worker:
            app.state.worker = MixWorker(config, jobs)
        yield
        logger.info("Shutting down automix API")
        if owns_worker:
            app.state.worker.shutdown(wait=False)

    app = FastAPI(title="automix", lifespan=lifespan)
    app.state.config = config
    app.state.jobs = jobs
    app.state.worker = worker

    @app.exception_handler(InvalidRequest)
    async def invalid_request_handler(request: Request, exc: InvalidRequest):
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"error": "Malformed request", "details": jsonable_encoder(exc.errors())})

    app.include_router(mixes.router)

    @app.get("/health")
    def health(request: Request):
        catalog = request.app.state.worker.catalog_loader()
        return {"ok": True, "tracks": len(catalog), "mixable": len(catalog.mixable())}

    return app


def run() -> None:
    """Console entry point: serve the API with uvicorn."""
    import uvicorn

    config = Config.load()
    server = config["server"]
    uvicorn.run(create_app(config), host=server["host"], port=int(server["port"]))


if __name__ == "__main__":
    run()
