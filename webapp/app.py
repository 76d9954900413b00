"""Task API: FastAPI app over the task lifecycle manager."""

from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator

from models import AccountCandidate, ExportFormat, ProviderConfig, ProviderKind, SearchSpeed
from orchestrator import TaskLifecycleManager
from utils.exceptions import AuthError, InsightError, TaskNotFoundError
from utils.logger import configure_logging
from webapp.runtime import Runtime


logger = logging.getLogger(__name__)


class CreateTaskRequest(BaseModel):
    prompt: str = Field(..., description="Research intent")
    target_count: int = Field(default=30, ge=1, le=100000)
    keyword_provider: ProviderKind = ProviderKind.GEMINI
    reasoning_provider: ProviderKind = ProviderKind.GEMINI
    embedding_provider: ProviderKind = ProviderKind.GEMINI
    search_speed: SearchSpeed = SearchSpeed.MEDIUM
    gemini_api_key: Optional[str] = None
    deepseek_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    openai_base_url: Optional[str] = None
    openai_model: Optional[str] = None
    ollama_base_url: Optional[str] = None
    ollama_embedding_model: Optional[str] = None
    target_fakeid: Optional[str] = None
    target_name: Optional[str] = None

    @field_validator("prompt")
    @classmethod
    def _validate_prompt(cls, value: str) -> str:
        text = str(value or "").strip()
        if not text:
            raise ValueError("prompt is required")
        return text

    @field_validator("search_speed", mode="before")
    @classmethod
    def _parse_speed(cls, value: Any) -> SearchSpeed:
        return SearchSpeed.parse(value)

    def provider_config(self) -> ProviderConfig:
        return ProviderConfig(**self.model_dump(exclude={"prompt", "target_count", "target_fakeid", "target_name"}))

    def target_account(self) -> Optional[AccountCandidate]:
        if self.target_fakeid and self.target_name:
            return AccountCandidate(external_id=self.target_fakeid, display_name=self.target_name)
        return None


class ExportRequest(BaseModel):
    target_dir: str
    format: ExportFormat = ExportFormat.MARKDOWN
    gateways: Optional[List[str]] = None
    authorization: Optional[str] = None


class PrefetchRequest(BaseModel):
    gateways: Optional[List[str]] = None
    authorization: Optional[str] = None


class PdfRequest(BaseModel):
    html: str
    filename: Optional[str] = None


class SessionRequest(BaseModel):
    token: str
    cookie: str
    ttl: Optional[int] = Field(default=None, ge=1)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


def create_app(manager: Optional[TaskLifecycleManager] = None) -> FastAPI:
    """Build the API app. A prebuilt manager skips database/client construction."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging()
        runtime = Runtime.wrap(manager) if manager is not None else Runtime.from_settings()
        await runtime.start()
        app.state.runtime = runtime
        try:
            yield
        finally:
            await runtime.close()

    app = FastAPI(title="WeChat Insight Tasks", version="1.0.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    if manager is not None:
        app.state.runtime = Runtime.wrap(manager)

    def _manager(request: Request) -> TaskLifecycleManager:
        return request.app.state.runtime.manager

    @app.exception_handler(AuthError)
    async def _auth_error(request: Request, exc: AuthError) -> JSONResponse:
        return _error(400, exc.message)

    @app.exception_handler(TaskNotFoundError)
    async def _not_found(request: Request, exc: TaskNotFoundError) -> JSONResponse:
        return _error(404, exc.message)

    @app.exception_handler(InsightError)
    async def _insight_error(request: Request, exc: InsightError) -> JSONResponse:
        logger.error(f"[API] {request.method} {request.url.path} failed: {exc}")
        return _error(500, exc.message)

    @app.get("/health")
    async def health() -> Dict[str, str]:
        return {"status": "ok"}

    @app.post("/api/session")
    async def save_session(req: SessionRequest, request: Request) -> Dict[str, Any]:
        session = await _manager(request).save_session(req.token, req.cookie, req.ttl)
        return {"success": True, "expires_at": session.expires_at}

    @app.post("/api/tasks")
    async def create_task(req: CreateTaskRequest, request: Request) -> Dict[str, Any]:
        task_id = await _manager(request).create_task(
            req.prompt,
            req.target_count,
            req.provider_config(),
            req.target_account(),
        )
        return {"id": task_id}

    @app.get("/api/tasks")
    async def list_tasks(request: Request) -> List[Dict[str, Any]]:
        tasks = await _manager(request).list_tasks()
        return [task.model_dump(mode="json") for task in tasks]

    @app.get("/api/tasks/{task_id}")
    async def get_task(task_id: str, request: Request) -> Dict[str, Any]:
        detail = await _manager(request).get_task(task_id)
        return detail.model_dump(mode="json")

    @app.post("/api/tasks/{task_id}/cancel")
    async def cancel_task(task_id: str, request: Request) -> Dict[str, Any]:
        task = await _manager(request).cancel_task(task_id)
        return {"success": True, "task": task.model_dump(mode="json")}

    @app.delete("/api/tasks/{task_id}")
    async def delete_task(task_id: str, request: Request) -> Dict[str, Any]:
        await _manager(request).delete_task(task_id)
        return {"success": True}

    @app.post("/api/tasks/{task_id}/export")
    async def export_task(task_id: str, req: ExportRequest, request: Request) -> Dict[str, Any]:
        result = await _manager(request).export_task(
            task_id, req.target_dir, req.format, req.gateways, req.authorization
        )
        return result.model_dump(mode="json")

    @app.post("/api/tasks/{task_id}/prefetch")
    async def prefetch_task(task_id: str, req: PrefetchRequest, request: Request) -> Dict[str, Any]:
        result = await _manager(request).prefetch_task(task_id, req.gateways, req.authorization)
        return result.model_dump(mode="json")

    @app.post("/api/pdf")
    async def render_pdf(req: PdfRequest, request: Request) -> Response:
        if not req.html:
            return _error(400, "Missing html content")
        filename = req.filename or "article"
        pdf_bytes = await _manager(request).render_pdf(req.html, filename)
        return Response(
            content=pdf_bytes,
            media_type="application/pdf",
            headers={"Content-Disposition": f'attachment; filename="{quote(filename)}.pdf"'},
        )

    @app.post("/api/providers/{kind}/test")
    async def test_provider(
        kind: ProviderKind,
        request: Request,
        config: Optional[ProviderConfig] = None,
    ) -> Dict[str, Any]:
        return await _manager(request).test_provider(kind, config)

    return app


app = create_app()
