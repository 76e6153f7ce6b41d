"""
Control server for batch runs.

Starts runs on a background thread and exposes progress plus
stop/pause/resume controls, and read access to stored page records.
"""

import logging
import threading
import time
from pathlib import Path
from typing import Callable

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from .automation import AutomationController
from .errors import InputError
from .pipeline import PagePipeline, number_pages
from .preprocessor import discover_images
from .progress import AutomationProgress

logger = logging.getLogger(__name__)


class RunRequest(BaseModel):
    image_dir: str
    start_page: int | None = None
    end_page: int | None = None
    first_page: int = 1


class VisibilityRequest(BaseModel):
    active: bool


class RunConflictError(Exception):
    """A run is already in progress."""


class RunManager:
    """Owns the controller of the current run and the thread executing it."""

    def __init__(self, pipeline: PagePipeline, sleep: Callable[[float], None] = time.sleep) -> None:
        self.pipeline = pipeline
        self._sleep = sleep
        self._lock = threading.Lock()
        self.controller: AutomationController | None = None
        self.thread: threading.Thread | None = None

    @property
    def busy(self) -> bool:
        return self.thread is not None and self.thread.is_alive()

    def start(self, request: RunRequest) -> dict:
        """Start a run over the images in request.image_dir.

        Raises:
            RunConflictError: A run is still executing
            InputError: No images or an invalid page range
        """
        image_dir = Path(request.image_dir).expanduser().resolve()
        if not image_dir.is_dir():
            raise InputError(f"Not a directory: {image_dir}")

        images = number_pages(
            discover_images(image_dir, self.pipeline.config.supported_extensions),
            first_page=request.first_page,
        )
        if not images:
            raise InputError(f"No page images found in: {image_dir}")

        start = request.start_page if request.start_page is not None else min(images)
        end = request.end_page if request.end_page is not None else max(images)
        if start < 0 or end < start:
            raise InputError(f"Invalid page range: {start}-{end}")

        document_id = self.pipeline.config.document_id
        with self._lock:
            if self.busy:
                raise RunConflictError("A run is already in progress")

            self.controller = self.pipeline.create_controller(images, sleep=self._sleep)
            self.thread = threading.Thread(
                target=self.controller.run,
                args=(document_id, start, end),
                name="pagepipeline-run",
                daemon=True,
            )
            self.thread.start()

        logger.info(f"Started run for {document_id}: pages {start}-{end} from {image_dir}")
        return {"document_id": document_id, "start_page": start, "end_page": end, "pages": len(images)}

    def progress(self) -> AutomationProgress:
        if self.controller is None:
            return AutomationProgress()
        return self.controller.snapshot()

    def stalled(self) -> bool:
        return self.controller is not None and self.controller.is_stalled


def create_app(pipeline: PagePipeline, sleep: Callable[[float], None] = time.sleep) -> FastAPI:
    """Build the control API around a pipeline."""
    app = FastAPI(title="Page Pipeline Control Server")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    runs = RunManager(pipeline, sleep=sleep)
    app.state.runs = runs

    def require_controller() -> AutomationController:
        if runs.controller is None:
            raise HTTPException(status_code=409, detail="No run has been started")
        return runs.controller

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {
            "status": "ok",
            "store_dir": str(pipeline.config.store_dir),
            "document_id": pipeline.config.document_id,
            "llm_url": pipeline.config.services.llm_api_url,
        }

    @app.get("/progress")
    async def get_progress():
        data = runs.progress().as_dict()
        data["stalled"] = runs.stalled()
        return data

    @app.post("/runs", status_code=202)
    async def start_run(request: RunRequest):
        """Start processing a directory of page images."""
        try:
            return runs.start(request)
        except RunConflictError as e:
            raise HTTPException(status_code=409, detail=str(e))
        except InputError as e:
            raise HTTPException(status_code=400, detail=str(e))

    @app.post("/runs/stop")
    async def stop_run():
        if not require_controller().request_stop():
            raise HTTPException(status_code=409, detail="No run in progress")
        return {"stopping": True}

    @app.post("/runs/pause")
    async def pause_run():
        if not require_controller().pause():
            raise HTTPException(status_code=409, detail="No run in progress")
        return {"paused": True}

    @app.post("/runs/resume")
    async def resume_run():
        if not require_controller().resume():
            raise HTTPException(status_code=409, detail="Run is not paused")
        return {"paused": False}

    @app.post("/visibility")
    async def set_visibility(request: VisibilityRequest):
        """The control UI reports whether it is visible; hidden pauses the run."""
        if runs.controller is not None:
            runs.controller.set_host_active(request.active)
        return {"active": request.active}

    @app.get("/pages/{document_id}/{page_number}")
    async def get_page(document_id: str, page_number: int):
        try:
            record = pipeline.store.read_page_record(document_id, page_number)
        except InputError as e:
            raise HTTPException(status_code=400, detail=str(e))
        if record is None:
            raise HTTPException(status_code=404, detail=f"Page {page_number} not found")
        return {**record.model_dump(mode="json"), "is_complete": record.is_complete}

    return app


def serve(pipeline: PagePipeline, host: str = "127.0.0.1", port: int = 8787) -> None:
    """Run the control server until interrupted."""
    import uvicorn

    app = create_app(pipeline)
    logger.info(f"Starting control server on {host}:{port}")
    logger.info(f"LLM API URL: {pipeline.config.services.llm_api_url}")
    uvicorn.run(app, host=host, port=port)
