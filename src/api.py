"""FastAPI application: ingestion endpoint, triage dashboard and run monitoring."""

import time
from contextlib import asynccontextmanager
from typing import Callable, Literal, Optional

from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from settings import DASHBOARD_LIMIT, WORKER_CONCURRENCY
from src.dashboard import build_view, render_html
from src.errors import InvalidInput, MissingField
from src.gateway import accept
from src.logger import log, log_session_start, log_session_end
from src.models import AnalysisRun, RunStatus
from src.pipeline import AnalysisPipeline
from src.store import FeedbackStore


async def timing_middleware(request: Request, call_next: Callable):
    """Log HTTP request duration."""
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start) * 1000
    log(f"{request.method} {request.url.path} {response.status_code} in {duration_ms:.2f} ms")
    return response


def create_app(
    pipeline: AnalysisPipeline,
    store: FeedbackStore,
    start_workers: bool = True,
    concurrency: int = WORKER_CONCURRENCY,
    dashboard_limit: int = DASHBOARD_LIMIT,
) -> FastAPI:
    """
    Build the HTTP app around an existing pipeline and store.

    With start_workers the pipeline's worker pool runs for the app's lifetime;
    without it submissions are only recorded as pending runs.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log_session_start("PulsePoint server")
        if start_workers:
            await pipeline.start(concurrency)
        try:
            yield
        finally:
            if start_workers:
                await pipeline.stop()
            log_session_end("PulsePoint server")

    app = FastAPI(title="PulsePoint", version="0.1.0", lifespan=lifespan)
    app.middleware("http")(timing_middleware)

    @app.exception_handler(InvalidInput)
    async def invalid_input(request: Request, exc: InvalidInput) -> JSONResponse:
        return JSONResponse({"error": exc.message}, status_code=400)

    @app.exception_handler(MissingField)
    async def missing_field(request: Request, exc: MissingField) -> JSONResponse:
        return JSONResponse({"error": exc.message}, status_code=400)

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        # Unknown paths and unsupported methods look the same to clients
        if exc.status_code in (404, 405):
            return JSONResponse({"error": "Not found"}, status_code=404)
        return JSONResponse({"error": str(exc.detail)}, status_code=exc.status_code)

    @app.post("/api/feedback", status_code=202)
    async def submit_feedback(request: Request) -> JSONResponse:
        run_id = await accept(pipeline, await request.body())
        # Acknowledges scheduling, not analysis
        return JSONResponse({"accepted": True, "run_id": run_id}, status_code=202)

    @app.get("/", response_class=HTMLResponse)
    def dashboard(order: Literal["recent", "priority"] = "recent") -> HTMLResponse:
        view = build_view(store.recent(dashboard_limit), order=order)
        return HTMLResponse(render_html(view))

    @app.get("/api/runs", response_model=list[AnalysisRun])
    def list_runs(status: Optional[RunStatus] = None, limit: int = 100) -> list[AnalysisRun]:
        return pipeline.runs.list_runs(status=status, limit=limit)

    @app.get("/api/runs/{run_id}", response_model=AnalysisRun)
    def get_run(run_id: str) -> AnalysisRun:
        run = pipeline.runs.get(run_id)
        if run is None:
            raise StarletteHTTPException(status_code=404)
        return run

    return app
