"""FastAPI entrypoint for the Word Pilot research assistant."""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from word_pilot_observability import log_context, setup_fastapi_metrics, setup_logging
from word_pilot_schemas import ResearchItem, ResearchPhase, Session

from .conversation import ConversationEvent, ConversationManager
from .errors import AssistantError, ConversationBusyError, NoPendingPreviewError, describe_error
from .models import (
    ApproveResponse,
    ClearHistoryResponse,
    ConversationSnapshot,
    DisplayMessageOut,
    PhaseSwitchRequest,
    PreviewOut,
    SubmitMessageRequest,
    TemplateCreatedResponse,
    TemplateListResponse,
    TemplatePayload,
    TemplateSelection,
    TokenUsageOut,
)
from .service import AssistantService
from .settings import AssistantSettings, load_settings
from .stores import RecordStoreError
from .templates import DEFAULT_TEMPLATE_ID

SERVICE_NAME = "assistant"
setup_logging(SERVICE_NAME)
logger = logging.getLogger(__name__)


def _snapshot(manager: ConversationManager) -> ConversationSnapshot:
    preview = manager.preview
    return ConversationSnapshot(
        project_id=manager.project_id,
        phase=manager.phase.value,
        state=manager.state.value,
        messages=[DisplayMessageOut(**message.to_dict()) for message in manager.messages],
        preview=PreviewOut(**preview.to_dict()) if preview is not None else None,
    )


def get_service(request: Request) -> AssistantService:
    return request.app.state.service


async def get_manager(
    project_id: str,
    service: AssistantService = Depends(get_service),
    x_user_id: Optional[str] = Header(None),
) -> ConversationManager:
    return await service.manager(project_id, x_user_id)


def create_app(
    service: Optional[AssistantService] = None,
    settings: Optional[AssistantSettings] = None,
) -> FastAPI:
    """Build the API; a prepared ``service`` skips environment-based wiring."""

    resolved_settings = settings or (service.settings if service is not None else load_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        app.state.service = service or await AssistantService.from_settings(resolved_settings)
        logger.info("Assistant service started")
        try:
            yield
        finally:
            await app.state.service.close()
            logger.info("Assistant service stopped")

    app = FastAPI(title="Word Pilot Research Assistant", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=resolved_settings.origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    setup_fastapi_metrics(app, service_name=SERVICE_NAME)

    @app.exception_handler(ConversationBusyError)
    async def _busy_handler(request: Request, exc: ConversationBusyError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)})

    @app.exception_handler(NoPendingPreviewError)
    async def _no_preview_handler(request: Request, exc: NoPendingPreviewError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})

    @app.exception_handler(RecordStoreError)
    async def _store_handler(request: Request, exc: RecordStoreError) -> JSONResponse:
        logger.error("Store unavailable", extra={"path": request.url.path, "error": str(exc)})
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "Storage is temporarily unavailable"},
        )

    @app.exception_handler(AssistantError)
    async def _assistant_handler(request: Request, exc: AssistantError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})

    @app.get("/health", tags=["health"])
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/projects/{project_id}/session", tags=["session"])
    async def read_session(project_id: str, service: AssistantService = Depends(get_service)) -> dict:
        session = await service.phases.load(project_id)
        return session.model_dump(mode="json", by_alias=True)

    @app.post("/projects/{project_id}/phase", response_model=ConversationSnapshot, tags=["session"])
    async def switch_phase(
        payload: PhaseSwitchRequest, manager: ConversationManager = Depends(get_manager)
    ) -> ConversationSnapshot:
        with log_context(project_id=manager.project_id, phase=payload.phase):
            await manager.switch_phase(payload.phase)
        return _snapshot(manager)

    @app.post("/projects/{project_id}/phases/{phase}/complete", tags=["session"])
    async def complete_phase(
        project_id: str, phase: int, service: AssistantService = Depends(get_service)
    ) -> dict:
        if phase not in {member.value for member in ResearchPhase}:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown phase")
        session: Session = await service.phases.mark_phase_complete(project_id, phase)
        manager = await service.manager(project_id)
        manager.session = session
        return session.model_dump(mode="json", by_alias=True)

    @app.get("/projects/{project_id}/messages", response_model=ConversationSnapshot, tags=["conversation"])
    async def read_messages(manager: ConversationManager = Depends(get_manager)) -> ConversationSnapshot:
        return _snapshot(manager)

    @app.delete("/projects/{project_id}/messages", response_model=ClearHistoryResponse, tags=["conversation"])
    async def clear_messages(manager: ConversationManager = Depends(get_manager)) -> ClearHistoryResponse:
        removed = await manager.clear_history()
        return ClearHistoryResponse(removed=removed)

    @app.post("/projects/{project_id}/messages", tags=["conversation"])
    async def submit_message(
        payload: SubmitMessageRequest, manager: ConversationManager = Depends(get_manager)
    ) -> StreamingResponse:
        if manager.busy:
            raise ConversationBusyError("A request or preview is already pending")

        queue: asyncio.Queue[Optional[ConversationEvent]] = asyncio.Queue()

        async def run() -> None:
            try:
                await manager.submit(payload.content)
            finally:
                queue.put_nowait(None)

        async def body() -> AsyncIterator[str]:
            unsubscribe = manager.subscribe(queue.put_nowait)
            task = asyncio.create_task(run())
            try:
                while True:
                    event = await queue.get()
                    if event is None:
                        break
                    yield json.dumps(event.to_dict()) + "\n"
                try:
                    await task
                except Exception as exc:  # noqa: BLE001 - the response has already started
                    logger.exception("Message submission failed", extra={"project_id": manager.project_id})
                    message = str(exc) if isinstance(exc, AssistantError) else describe_error(exc)
                    yield json.dumps({"event": "error", "message": message}) + "\n"
                yield json.dumps({"event": "done", "state": manager.state.value}) + "\n"
            finally:
                unsubscribe()
                if not task.done():
                    task.cancel()

        return StreamingResponse(body(), media_type="application/x-ndjson")

    @app.get("/projects/{project_id}/preview", response_model=PreviewOut, tags=["preview"])
    async def read_preview(manager: ConversationManager = Depends(get_manager)) -> PreviewOut:
        if manager.preview is None:
            raise NoPendingPreviewError("There is no research preview awaiting a decision")
        return PreviewOut(**manager.preview.to_dict())

    @app.post("/projects/{project_id}/preview/approve", response_model=ApproveResponse, tags=["preview"])
    async def approve_preview(manager: ConversationManager = Depends(get_manager)) -> ApproveResponse:
        item = await manager.approve_preview()
        return ApproveResponse(**_snapshot(manager).model_dump(), item=item)

    @app.post("/projects/{project_id}/preview/regenerate", response_model=ConversationSnapshot, tags=["preview"])
    async def regenerate_preview(manager: ConversationManager = Depends(get_manager)) -> ConversationSnapshot:
        await manager.regenerate_preview()
        return _snapshot(manager)

    @app.post("/projects/{project_id}/preview/cancel", response_model=ConversationSnapshot, tags=["preview"])
    async def cancel_preview(manager: ConversationManager = Depends(get_manager)) -> ConversationSnapshot:
        manager.cancel_preview()
        return _snapshot(manager)

    @app.get("/projects/{project_id}/research-items", response_model=list[ResearchItem], tags=["research"])
    async def list_research_items(
        project_id: str, service: AssistantService = Depends(get_service)
    ) -> list[ResearchItem]:
        return await service.items.list_items(project_id)

    @app.get("/templates", response_model=TemplateListResponse, tags=["templates"])
    async def list_templates(service: AssistantService = Depends(get_service)) -> TemplateListResponse:
        templates = await service.templates.load_templates()
        selected_id = await service.templates.get_selected_template_id()
        return TemplateListResponse(templates=templates, selected_id=selected_id)

    @app.post(
        "/templates",
        response_model=TemplateCreatedResponse,
        status_code=status.HTTP_201_CREATED,
        tags=["templates"],
    )
    async def create_template(
        payload: TemplatePayload, service: AssistantService = Depends(get_service)
    ) -> TemplateCreatedResponse:
        templates = await service.templates.load_templates()
        templates, template_id = await service.templates.add_custom_template(
            templates, payload.name, payload.phase1, payload.phase2, payload.phase3
        )
        selected_id = await service.templates.get_selected_template_id()
        return TemplateCreatedResponse(id=template_id, templates=templates, selected_id=selected_id)

    @app.put("/templates/selection", response_model=TemplateListResponse, tags=["templates"])
    async def select_template(
        payload: TemplateSelection, service: AssistantService = Depends(get_service)
    ) -> TemplateListResponse:
        templates = await service.templates.load_templates()
        if payload.template_id not in templates:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Template not found")
        await service.templates.set_selected_template_id(payload.template_id)
        return TemplateListResponse(templates=templates, selected_id=payload.template_id)

    @app.put("/templates/{template_id}", response_model=TemplateListResponse, tags=["templates"])
    async def update_template(
        template_id: str, payload: TemplatePayload, service: AssistantService = Depends(get_service)
    ) -> TemplateListResponse:
        templates = await service.templates.load_templates()
        if template_id not in templates:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Template not found")
        templates = await service.templates.update_custom_template(
            templates, template_id, payload.name, payload.phase1, payload.phase2, payload.phase3
        )
        selected_id = await service.templates.get_selected_template_id()
        return TemplateListResponse(templates=templates, selected_id=selected_id)

    @app.delete("/templates/{template_id}", response_model=TemplateListResponse, tags=["templates"])
    async def delete_template(
        template_id: str, service: AssistantService = Depends(get_service)
    ) -> TemplateListResponse:
        if template_id == DEFAULT_TEMPLATE_ID:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="The default template cannot be deleted")
        templates = await service.templates.load_templates()
        templates = await service.templates.delete_custom_template(templates, template_id)
        selected_id = await service.templates.get_selected_template_id()
        return TemplateListResponse(templates=templates, selected_id=selected_id)

    @app.get("/usage", response_model=TokenUsageOut, tags=["usage"])
    async def read_usage(
        service: AssistantService = Depends(get_service), x_user_id: Optional[str] = Header(None)
    ) -> TokenUsageOut:
        usage = await service.usage.usage(x_user_id)
        if usage is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No subscription found")
        return TokenUsageOut(
            used=usage.used, limit=usage.limit, remaining=usage.remaining, percentage=usage.percentage
        )

    return app


app = create_app()
