"""
Orchestrator — Entry point for every inbound turn.

Turn lifecycle (chat / button / idea selection):

    validate input                      → InvalidTurnError (nothing written)
    set session language                (atomic update)
    merge extracted entities            (atomic, free text only)
    append history entry                (atomic)
    state machine routes the turn       (atomic commits + advisory calls)

Idea selection is the exception: the index can only be judged against
the committed idea list, so the language is set inside the selection
commit and history is appended once that commit succeeds.

Each step is its own atomic store call, so turns racing on the same
session interleave at field level and never lose each other's writes.

The sibling flows (PDF upload, business Q&A, location detect / nearby /
analyze) share the same session store but bypass the step machine.
"""
from __future__ import annotations

import structlog
from typing import Any, Optional

from backend.documents import PDF_CONTENT_TYPE, extract_pdf_text
from backend.geocoding import GeocodingClient, analyze_competition
from config.settings import Settings, get_settings
from context.composer import ResponseComposer
from context.intent import detect_intent, extract_entities
from context.state_machine import DialogueStateMachine
from core.engine import AdvisoryEngine
from database.store_base import BaseSessionStore
from database.store_factory import create_store
from models.errors import AdvisoryProviderError, InvalidTurnError
from models.schemas import DialogueResponse, DialogueStep, HistoryEntry, Session
from templates.copy_catalog import CopyCatalog

logger = structlog.get_logger()

# Steps in which a document may be attached to the session
DOCUMENT_STEPS = {DialogueStep.QUESTION_MODE}


class DialogueOrchestrator:

    def __init__(
        self,
        store: BaseSessionStore,
        state_machine: DialogueStateMachine,
        engine: AdvisoryEngine,
        composer: ResponseComposer,
        geocoder: GeocodingClient = None,
        settings: Settings = None,
    ):
        self.store = store
        self.state_machine = state_machine
        self.engine = engine
        self.composer = composer
        self._settings = settings or get_settings()
        self.geocoder = geocoder or GeocodingClient(self._settings.geocoding)

    # ── Helpers ───────────────────────────────────────────────

    def _language(self, language: Optional[str]) -> str:
        if not language:
            return self._settings.default_language
        if language not in self._settings.supported_languages:
            logger.warning("unsupported_language", language=language,
                           fallback=self._settings.default_language)
            return self._settings.default_language
        return language

    @staticmethod
    def _require(value: Any, message: str, field: str) -> None:
        if value is None or (isinstance(value, str) and not value.strip()):
            raise InvalidTurnError(message, field=field)

    async def _begin_turn(self, session_id: str, language: str) -> Session:
        def _set_language(s: Session) -> None:
            s.language = language

        return await self.store.update(session_id, _set_language)

    def error_text(self, language: Optional[str] = None) -> str:
        return self.composer.text("errorMessage", self._language(language))

    # ══════════════════════════════════════════════════════════
    #  Dialogue turns
    # ══════════════════════════════════════════════════════════

    async def handle_message(
        self, session_id: str, message: str, language: Optional[str] = None,
    ) -> DialogueResponse:
        self._require(session_id, "message and session_id are required", "session_id")
        self._require(message, "message and session_id are required", "message")
        text = message.strip()
        language = self._language(language)

        await self._begin_turn(session_id, language)
        intent = detect_intent(text)
        entities = extract_entities(text)
        if entities:
            await self.store.merge_context(session_id, entities)
        await self.store.append_history(
            session_id, HistoryEntry(kind="message", message=text, intent=intent, entities=entities),
        )

        session = await self.store.get_or_create(session_id)
        logger.info("turn_received",
                    session_id=session_id,
                    kind="message",
                    step=session.step.value,
                    intent=intent,
                    entities=sorted(entities))
        return await self.state_machine.handle_message(session, text)

    async def handle_button(
        self, session_id: str, button_value: str, language: Optional[str] = None,
    ) -> DialogueResponse:
        self._require(session_id, "button_value and session_id are required", "session_id")
        self._require(button_value, "button_value and session_id are required", "button_value")
        language = self._language(language)

        await self._begin_turn(session_id, language)
        await self.store.append_history(
            session_id, HistoryEntry(kind="button", button_value=button_value),
        )

        session = await self.store.get_or_create(session_id)
        logger.info("turn_received",
                    session_id=session_id,
                    kind="button",
                    step=session.step.value,
                    button_value=button_value)
        return await self.state_machine.handle_button(session, button_value)

    async def select_idea(
        self, session_id: str, idea_index: Any, language: Optional[str] = None,
    ) -> DialogueResponse:
        self._require(session_id, "idea_id and session_id are required", "session_id")
        if isinstance(idea_index, bool) or not isinstance(idea_index, int):
            raise InvalidTurnError("idea_id and session_id are required", field="idea_id")

        current = await self.store.get_or_create(session_id)
        ideas = current.context.generated_ideas or []
        if not 0 <= idea_index < len(ideas):
            raise InvalidTurnError("Invalid idea index", field="idea_id")

        logger.info("turn_received",
                    session_id=session_id,
                    kind="selection",
                    step=current.step.value,
                    idea_index=idea_index)
        # Language and selection commit together; history only after that succeeds
        response = await self.state_machine.select_idea(current, idea_index, self._language(language))
        await self.store.append_history(
            session_id, HistoryEntry(kind="selection", selection_index=idea_index),
        )
        return response

    # ══════════════════════════════════════════════════════════
    #  Documents & business Q&A
    # ══════════════════════════════════════════════════════════

    async def upload_document(
        self,
        session_id: str,
        filename: str,
        content_type: str,
        data: bytes,
        language: Optional[str] = None,
    ) -> dict[str, Any]:
        """Attach a PDF's text to the session for document-grounded answers."""
        self._require(session_id, "session_id is required", "session_id")
        if data is None:
            raise InvalidTurnError("No PDF file uploaded", field="pdf")
        if content_type != PDF_CONTENT_TYPE:
            raise InvalidTurnError("Only PDF files are allowed", field="pdf")
        limit = self._settings.uploads.max_pdf_bytes
        if len(data) > limit:
            raise InvalidTurnError(f"PDF exceeds the {limit // (1024 * 1024)}MB limit", field="pdf")

        language = self._language(language)
        session = await self.store.get_or_create(session_id)
        if session.step not in DOCUMENT_STEPS:
            raise InvalidTurnError(self.composer.text("pdf_only_in_question_mode", language), field="pdf")

        document = extract_pdf_text(data)
        await self.store.merge_context(session_id, {
            "uploaded_pdf_content": document.text,
            "uploaded_pdf_name": filename,
            "uploaded_pdf_pages": document.pages,
        })
        await self.store.append_history(session_id, HistoryEntry(
            kind="upload",
            message=f"Uploaded PDF: {filename}",
            metadata={"filename": filename, "pages": document.pages},
        ))
        logger.info("document_uploaded", session_id=session_id, filename=filename, pages=document.pages)

        try:
            summary = await self.engine.summarize_document(document.text, language)
        except AdvisoryProviderError as e:
            logger.error("document_summary_failed", session_id=session_id, error=str(e))
            summary = self.error_text(language)

        current = await self.store.get_or_create(session_id)
        return {
            "success": True,
            "message": self.composer.text("pdf_uploaded_successfully", language, filename=filename),
            "filename": filename,
            "pages": document.pages,
            "summary": summary,
            "context": current.context.snapshot(),
        }

    async def answer_question(
        self, session_id: str, question: str, language: Optional[str] = None,
    ) -> dict[str, Any]:
        """One-shot business Q&A grounded on the session's known facts."""
        self._require(session_id, "question and session_id are required", "session_id")
        self._require(question, "question and session_id are required", "question")
        language = self._language(language)

        session = await self.store.get_or_create(session_id)
        answer = await self.engine.answer_business_question(
            question.strip(), session.context.snapshot(), language,
        )
        await self.store.append_history(session_id, HistoryEntry(
            kind="qa", message=question.strip(), metadata={"answer": answer},
        ))
        current = await self.store.get_or_create(session_id)
        return {"question": question, "answer": answer, "context": current.context.snapshot()}

    # ══════════════════════════════════════════════════════════
    #  Location flows
    # ══════════════════════════════════════════════════════════

    async def detect_location(
        self, session_id: str, latitude: float, longitude: float,
    ) -> Optional[dict[str, Any]]:
        """Reverse-geocode the user's position and remember it. None when not found."""
        self._require(session_id, "latitude, longitude, and session_id are required", "session_id")
        place = await self.geocoder.reverse_geocode(latitude, longitude)
        if not place:
            return None

        await self.store.merge_context(session_id, {
            "user_latitude": latitude,
            "user_longitude": longitude,
            "detected_location": place["display_name"],
        })
        return {
            "location": place["display_name"],
            "city": place["city"],
            "state": place["state"],
            "country": place["country"],
            "latitude": latitude,
            "longitude": longitude,
        }

    async def nearby_places(
        self,
        latitude: float,
        longitude: float,
        business_type: Optional[str] = None,
        radius: Optional[int] = None,
    ) -> dict[str, Any]:
        radius = radius or self._settings.geocoding.nearby_radius_m
        places = await self.geocoder.search_nearby(latitude, longitude, business_type, radius)
        return {
            "businesses": places,
            "count": len(places),
            "radius": radius,
            "center": {"latitude": latitude, "longitude": longitude},
        }

    async def analyze_site(self, latitude: float, longitude: float, business_type: str) -> dict[str, Any]:
        """Competitor density around a point for one business type."""
        self._require(business_type, "All parameters are required", "business_type")
        radius = self._settings.geocoding.analysis_radius_m
        place = await self.geocoder.reverse_geocode(latitude, longitude)
        places = await self.geocoder.search_nearby(latitude, longitude, business_type, radius)
        return analyze_competition(places, place["display_name"] if place else None, radius)


def build_orchestrator(settings: Settings = None, store: BaseSessionStore = None) -> DialogueOrchestrator:
    """Wire the default collaborators from settings."""
    settings = settings or get_settings()
    store = store or create_store(settings.session, settings.default_language)
    copy = CopyCatalog.from_yaml(settings.copy_path, settings.default_language)
    composer = ResponseComposer(copy)
    engine = AdvisoryEngine(settings)
    state_machine = DialogueStateMachine(store, engine, composer)
    return DialogueOrchestrator(
        store=store,
        state_machine=state_machine,
        engine=engine,
        composer=composer,
        geocoder=GeocodingClient(settings.geocoding),
        settings=settings,
    )
