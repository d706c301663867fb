"""
FastAPI Application — REST API for the business guide.

Provides:
- Dialogue turns: chat message, button click, idea selection
- PDF upload for document-grounded answers (question mode only)
- One-shot business Q&A
- Location detect / nearby search / competition analysis
- Health endpoint with session store stats

Request fields all default to empty so that missing input is reported
as an explicit 400 with a readable error, not a schema error.
"""
from __future__ import annotations

import structlog
from datetime import datetime, timezone
from typing import Any, Optional
from contextlib import asynccontextmanager

# Load .env before any config is read
from dotenv import load_dotenv
load_dotenv()

from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from config.settings import get_settings
from core.orchestrator import DialogueOrchestrator, build_orchestrator
from database.sweeper import SessionSweeper
from models.errors import AdvisoryProviderError, DocumentExtractionError, InvalidTurnError

logger = structlog.get_logger()

# ──────────────────────────────────────────────────────────────
#  Bootstrap
# ──────────────────────────────────────────────────────────────

_settings_boot = get_settings()
orchestrator = build_orchestrator(_settings_boot)
session_sweeper = SessionSweeper(
    orchestrator.store,
    interval_seconds=_settings_boot.session.sweep_interval_seconds,
)


def get_orchestrator() -> DialogueOrchestrator:
    return orchestrator


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    await session_sweeper.start_background()
    logger.info("ventureguide_started",
                app_name=settings.app_name,
                llm_provider=settings.llm.provider,
                session_ttl=settings.session.ttl_seconds)
    yield

    await session_sweeper.stop()
    await orchestrator.geocoder.close()
    logger.info("ventureguide_stopped")


# ──────────────────────────────────────────────────────────────
#  App
# ──────────────────────────────────────────────────────────────

app = FastAPI(
    title="VentureGuide API",
    description="Conversational business guide for first-time entrepreneurs",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(InvalidTurnError)
async def invalid_turn_handler(request: Request, exc: InvalidTurnError):
    return JSONResponse(status_code=400, content={"error": str(exc), "field": exc.field})


@app.exception_handler(DocumentExtractionError)
async def document_error_handler(request: Request, exc: DocumentExtractionError):
    return JSONResponse(status_code=400, content={"error": "Failed to parse PDF", "message": str(exc)})


@app.exception_handler(AdvisoryProviderError)
async def advisory_error_handler(request: Request, exc: AdvisoryProviderError):
    logger.error("advisory_request_failed", path=request.url.path, operation=exc.operation, error=str(exc))
    language = getattr(request.state, "language", None)
    return JSONResponse(
        status_code=500,
        content={"error": "Failed to process request", "reply": orchestrator.error_text(language)},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("request_failed", path=request.url.path, error=str(exc))
    language = getattr(request.state, "language", None)
    return JSONResponse(
        status_code=500,
        content={"error": "Failed to process message", "reply": orchestrator.error_text(language)},
    )


# ──────────────────────────────────────────────────────────────
#  Request Models
# ──────────────────────────────────────────────────────────────

class ChatRequest(BaseModel):
    message: str = ""
    session_id: str = ""
    language: Optional[str] = None


class ButtonClickRequest(BaseModel):
    button_value: str = ""
    session_id: str = ""
    language: Optional[str] = None


class SelectIdeaRequest(BaseModel):
    idea_id: Any = None
    session_id: str = ""
    language: Optional[str] = None


class BusinessQuestionRequest(BaseModel):
    question: str = ""
    session_id: str = ""
    language: Optional[str] = None


class LocationRequest(BaseModel):
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    session_id: str = ""
    business_type: Optional[str] = None
    radius: Optional[int] = None


def _require_coordinates(req: LocationRequest) -> None:
    if req.latitude is None or req.longitude is None or not req.session_id:
        raise InvalidTurnError("latitude, longitude, and session_id are required", field="session_id")


# ══════════════════════════════════════════════════════════════
#  HEALTH
# ══════════════════════════════════════════════════════════════

@app.get("/health")
async def health(orch: DialogueOrchestrator = Depends(get_orchestrator)):
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "sessions": orch.store.stats(),
    }


# ══════════════════════════════════════════════════════════════
#  DIALOGUE TURNS
# ══════════════════════════════════════════════════════════════

@app.post("/api/chat")
async def chat(req: ChatRequest, request: Request, orch: DialogueOrchestrator = Depends(get_orchestrator)):
    request.state.language = req.language
    response = await orch.handle_message(req.session_id, req.message, req.language)
    return response.model_dump(mode="json")


@app.post("/api/button_click")
async def button_click(
    req: ButtonClickRequest, request: Request, orch: DialogueOrchestrator = Depends(get_orchestrator),
):
    request.state.language = req.language
    response = await orch.handle_button(req.session_id, req.button_value, req.language)
    return response.model_dump(mode="json")


@app.post("/api/select_idea")
async def select_idea(
    req: SelectIdeaRequest, request: Request, orch: DialogueOrchestrator = Depends(get_orchestrator),
):
    request.state.language = req.language
    response = await orch.select_idea(req.session_id, req.idea_id, req.language)
    return response.model_dump(mode="json")


# ══════════════════════════════════════════════════════════════
#  DOCUMENTS & Q&A
# ══════════════════════════════════════════════════════════════

@app.post("/api/upload-pdf")
async def upload_pdf(
    request: Request,
    session_id: str = Form(""),
    language: Optional[str] = Form(None),
    pdf: Optional[UploadFile] = File(None),
    orch: DialogueOrchestrator = Depends(get_orchestrator),
):
    request.state.language = language
    if not session_id:
        raise InvalidTurnError("session_id is required", field="session_id")
    if pdf is None:
        raise InvalidTurnError("No PDF file uploaded", field="pdf")
    data = await pdf.read()
    return await orch.upload_document(session_id, pdf.filename, pdf.content_type, data, language)


@app.post("/api/business/qa")
async def business_qa(
    req: BusinessQuestionRequest, request: Request, orch: DialogueOrchestrator = Depends(get_orchestrator),
):
    request.state.language = req.language
    return await orch.answer_question(req.session_id, req.question, req.language)


# ══════════════════════════════════════════════════════════════
#  LOCATION
# ══════════════════════════════════════════════════════════════

@app.post("/api/location/detect")
async def detect_location(req: LocationRequest, orch: DialogueOrchestrator = Depends(get_orchestrator)):
    _require_coordinates(req)
    result = await orch.detect_location(req.session_id, req.latitude, req.longitude)
    if result is None:
        raise HTTPException(404, "Could not detect location")
    return result


@app.post("/api/location/nearby")
async def nearby_places(req: LocationRequest, orch: DialogueOrchestrator = Depends(get_orchestrator)):
    _require_coordinates(req)
    return await orch.nearby_places(req.latitude, req.longitude, req.business_type, req.radius)


@app.post("/api/location/analyze")
async def analyze_location(req: LocationRequest, orch: DialogueOrchestrator = Depends(get_orchestrator)):
    _require_coordinates(req)
    if not req.business_type:
        raise InvalidTurnError("All parameters are required", field="business_type")
    return await orch.analyze_site(req.latitude, req.longitude, req.business_type)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("api.main:app", host="0.0.0.0", port=8000, reload=_settings_boot.debug)
