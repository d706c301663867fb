"""
Core data models for the VentureGuide advisory chatbot.
These are the universal types shared across all modules.
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ──────────────────────────────────────────────────────────────
#  Enums
# ──────────────────────────────────────────────────────────────

class DialogueStep(str, Enum):
    INITIAL = "initial"
    MODE_SELECTION = "mode_selection"
    COLLECTING_NAME = "collecting_name"
    COLLECTING_LOCATION = "collecting_location"
    COLLECTING_INTERESTS = "collecting_interests"
    ASKING_BUDGET = "asking_budget"
    READY_TO_GENERATE = "ready_to_generate"
    QUESTION_MODE = "question_mode"
    LOCATION_ANALYSIS_MODE = "location_analysis_mode"


class SessionMode(str, Enum):
    GENERATE_BUSINESS = "generate_business"
    ASK_QUESTION = "ask_question"
    LOCATION_ANALYSIS = "location_analysis"


class ResponseType(str, Enum):
    TEXT = "text"
    BUTTON_CHOICE = "button_choice"
    IDEAS = "ideas"
    SCHEMES = "schemes"
    LOCATION_ANALYSIS = "location_analysis"
    DETAILED_SECTION = "detailed_section"
    DETAILED_RESOURCE = "detailed_resource"
    DETAILED_PLAN_MENU = "detailed_plan_menu"
    DETAILED_RESOURCE_MENU = "detailed_resource_menu"


# ──────────────────────────────────────────────────────────────
#  Business content produced by the advisory engine
# ──────────────────────────────────────────────────────────────

class BusinessIdea(BaseModel):
    """One generated business idea. Providers add fields freely; unknown ones are dropped."""
    model_config = ConfigDict(extra="ignore")

    title: str
    description: str = ""
    investment_min: Optional[float] = None
    investment_max: Optional[float] = None
    actual_realistic_cost: Optional[float] = None
    funding_suggestion: str = ""
    why_this_location: str = ""
    home_based: bool = False
    competition_level: str = ""               # Low | Medium | High
    skills: str = ""
    success_probability: str = ""
    profitability: str = ""
    icon: str = ""


class PlanSection(BaseModel):
    title: str
    content: str = ""


class BusinessPlan(BaseModel):
    title: str
    content: str
    sections: list[PlanSection] = []


# ──────────────────────────────────────────────────────────────
#  Session Context: the accumulated facts of one conversation
# ──────────────────────────────────────────────────────────────

class SessionContext(BaseModel):
    """
    Fixed schema of optional facts. Merges carrying a key that is not
    declared here are rejected by the store, so collaborator flows cannot
    smuggle arbitrary data into a session.
    """
    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    name: Optional[str] = None
    location: Optional[str] = None
    interests: Optional[str] = None
    categories: Optional[list[str]] = None
    budget: Optional[int] = None
    generated_ideas: Optional[list[BusinessIdea]] = None
    selected_idea: Optional[BusinessIdea] = None
    selected_idea_index: Optional[int] = None
    generated_plan: Optional[BusinessPlan] = None

    # Written by sibling flows (document upload, location detection)
    uploaded_pdf_content: Optional[str] = None
    uploaded_pdf_name: Optional[str] = None
    uploaded_pdf_pages: Optional[int] = None
    detected_location: Optional[str] = None
    user_latitude: Optional[float] = None
    user_longitude: Optional[float] = None

    @classmethod
    def known_keys(cls) -> set[str]:
        return set(cls.model_fields)

    def snapshot(self) -> dict[str, Any]:
        """JSON-ready view containing only the facts that are set."""
        return self.model_dump(mode="json", exclude_none=True)


# ──────────────────────────────────────────────────────────────
#  Session
# ──────────────────────────────────────────────────────────────

class ModalFlags(BaseModel):
    """Orthogonal overlays that intercept numeric input ahead of step routing."""
    detailed_plan_mode: bool = False
    detailed_resource_mode: bool = False


class HistoryEntry(BaseModel):
    """Audit record of one turn. Never read back by the state machine."""
    kind: str = "message"                     # message | button | selection | qa | upload
    message: str = ""
    button_value: str = ""
    selection_index: Optional[int] = None
    intent: str = ""
    entities: dict[str, Any] = {}
    metadata: dict[str, Any] = {}
    timestamp: datetime = Field(default_factory=_utcnow)


class Session(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    id: str
    step: DialogueStep = DialogueStep.INITIAL
    mode: Optional[SessionMode] = None
    modal_flags: ModalFlags = Field(default_factory=ModalFlags)
    context: SessionContext = Field(default_factory=SessionContext)
    history: list[HistoryEntry] = []
    language: str = "en-IN"
    created_at: datetime = Field(default_factory=_utcnow)
    last_activity: datetime = Field(default_factory=_utcnow)

    def restart(self) -> None:
        """The one destructive reset: same id, cleared content. History is kept for audit."""
        self.step = DialogueStep.INITIAL
        self.mode = None
        self.modal_flags = ModalFlags()
        self.context = SessionContext()


# ──────────────────────────────────────────────────────────────
#  Rule Condition: precondition on session context facts
# ──────────────────────────────────────────────────────────────

class RuleCondition(BaseModel):
    field: str              # dot notation into the context snapshot, e.g. "selected_idea.title"
    operator: str = "exists"  # exists | not_exists | eq | neq | in | gt | gte | lt | lte | regex
    value: Any = None
    message_key: str = ""   # copy key for the guidance reply when this condition fails


# ──────────────────────────────────────────────────────────────
#  Response envelope
# ──────────────────────────────────────────────────────────────

class Button(BaseModel):
    text: str
    value: str


class DialogueResponse(BaseModel):
    """What every turn returns. `context` is always the post-commit snapshot."""
    reply: str
    type: ResponseType = ResponseType.TEXT
    buttons: list[Button] = []
    payload: Optional[Any] = None             # ideas, plan, ... for structured renderers
    current_step: DialogueStep
    context: dict[str, Any] = {}
