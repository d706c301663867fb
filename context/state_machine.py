"""
Dialogue State Machine — Decides each turn's transition and reply.

A turn is routed in strict priority order, first match wins:

  1. Turn guards, evaluated top to bottom:
       end_of_conversation      "bye", "exit", ... → farewell, no transition
       detailed_plan_section    plan overlay on and input is 1..10
       detailed_resource_topic  resource overlay on and input is 1..10
  2. Step dispatch table (free text) or button dispatch table (button value)

New modal overlays are added as guards; step and button handlers never
look at modal flags.

Every state change is a mutator committed through the session store, so
it is applied to the latest committed state under that session's lock.
Advisory calls happen outside the lock and before the commit: a failed
call commits nothing. Branch preconditions (selected idea, location,
profile) are RuleConditions, checked when the turn starts and again
inside the commit; an unmet one yields a guidance reply and leaves the
session untouched.

Usage:
    sm = DialogueStateMachine(store, engine, composer)
    response = await sm.handle_message(session, "hi")
    response = await sm.handle_button(session, "generate_business")
    response = await sm.select_idea(session, 2)
"""
from __future__ import annotations

import re
import structlog
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from context.composer import (
    BUDGET_MENU, IDEA_ACTIONS_MENU, INTEREST_MENU, MODE_MENU, RESTART_MENU,
    ResponseComposer, Menu,
)
from context.intent import categorize_interest, tokenize
from core.engine import AdvisoryEngine
from database.store_base import BaseSessionStore, SessionMutator
from models.errors import AdvisoryProviderError, InvalidTurnError
from models.schemas import (
    DialogueResponse, DialogueStep, ResponseType, RuleCondition, Session, SessionMode,
)
from utils.conditions import first_failed

logger = structlog.get_logger()

END_PHRASES = frozenset({"end", "exit", "quit", "bye", "goodbye", "stop"})
GREETING_WORDS = frozenset({"hi", "hello", "hey", "start", "namaste"})
MENU_NUMBER = re.compile(r"^(?:[1-9]|10)$")
INTEREST_VALUES = frozenset(value for _, value in INTEREST_MENU)

Handler = Callable[[Session, str], Awaitable[DialogueResponse]]


# ──────────────────────────────────────────────────────────────
#  Preconditions
# ──────────────────────────────────────────────────────────────

NEEDS_IDEA = RuleCondition(field="selected_idea", message_key="need_business_idea")
NEEDS_LOCATION = RuleCondition(field="location", message_key="need_location_for_resources")

PRECONDITIONS: dict[str, list[RuleCondition]] = {
    "show_ideas": [
        RuleCondition(field="name", message_key="need_profile_for_ideas"),
        RuleCondition(field="location", message_key="need_profile_for_ideas"),
        RuleCondition(field="interests", message_key="need_profile_for_ideas"),
    ],
    "create_plan": [NEEDS_IDEA],
    "detailed_business_plan": [NEEDS_IDEA],
    "find_funding": [NEEDS_IDEA],
    "find_resources": [NEEDS_LOCATION, NEEDS_IDEA],
    "analyze_location": [NEEDS_IDEA, NEEDS_LOCATION],
    "detailed_plan_section": [NEEDS_IDEA],
    "detailed_resource_topic": [
        RuleCondition(field="selected_idea", message_key="need_idea_and_location"),
        RuleCondition(field="location", message_key="need_idea_and_location"),
    ],
}


class _PreconditionLost(Exception):
    """A precondition that held when the turn began no longer holds at commit."""

    def __init__(self, condition: RuleCondition):
        self.condition = condition
        super().__init__(condition.field)


@dataclass(frozen=True)
class TurnGuard:
    """A priority overlay that claims a turn before step routing."""
    name: str
    matches: Callable[[Session, str], bool]
    handle: Handler


# ──────────────────────────────────────────────────────────────
#  Dialogue State Machine
# ──────────────────────────────────────────────────────────────

class DialogueStateMachine:

    def __init__(
        self,
        store: BaseSessionStore,
        engine: AdvisoryEngine,
        composer: ResponseComposer,
    ):
        self.store = store
        self.engine = engine
        self.composer = composer

        self.guards: list[TurnGuard] = [
            TurnGuard(
                "end_of_conversation",
                lambda s, text: text.lower() in END_PHRASES,
                self._on_end_of_conversation,
            ),
            TurnGuard(
                "detailed_plan_section",
                lambda s, text: s.modal_flags.detailed_plan_mode and bool(MENU_NUMBER.match(text)),
                self._on_plan_section,
            ),
            TurnGuard(
                "detailed_resource_topic",
                lambda s, text: s.modal_flags.detailed_resource_mode and bool(MENU_NUMBER.match(text)),
                self._on_resource_topic,
            ),
        ]

        self.step_handlers: dict[DialogueStep, Handler] = {
            DialogueStep.INITIAL: self._on_initial,
            DialogueStep.COLLECTING_NAME: self._on_collecting_name,
            DialogueStep.COLLECTING_LOCATION: self._on_collecting_location,
            DialogueStep.QUESTION_MODE: self._on_question,
            DialogueStep.LOCATION_ANALYSIS_MODE: self._on_location_analysis,
        }

        self.button_handlers: dict[str, Handler] = {
            "generate_business": self._on_generate_business,
            "ask_question": self._on_ask_question,
            "location_analysis": self._on_location_analysis_mode,
            "back_to_menu": self._on_back_to_menu,
            "restart_session": self._on_restart,
            "show_ideas": self._on_show_ideas,
            "create_plan": self._on_create_plan,
            "detailed_business_plan": self._on_detailed_plan_menu,
            "find_resources": self._on_find_resources,
            "find_funding": self._on_find_funding,
            "analyze_location": self._on_analyze_location,
        }

    # ── Entry points ──────────────────────────────────────────

    async def handle_message(self, session: Session, message: str) -> DialogueResponse:
        text = message.strip()
        for guard in self.guards:
            if guard.matches(session, text):
                logger.info("turn_guard_matched",
                            session_id=session.id,
                            guard=guard.name,
                            step=session.step.value)
                return await guard.handle(session, text)

        handler = self.step_handlers.get(session.step, self._on_unhandled_step)
        return await handler(session, text)

    async def handle_button(self, session: Session, button_value: str) -> DialogueResponse:
        return await self._resolve_button(button_value)(session, button_value)

    async def select_idea(
        self, session: Session, index: int, language: Optional[str] = None,
    ) -> DialogueResponse:
        """Pick one of the generated ideas by position. A bad index commits nothing."""

        def _select(s: Session) -> None:
            ideas = s.context.generated_ideas or []
            if not 0 <= index < len(ideas):
                raise InvalidTurnError("Invalid idea index", field="idea_id")
            if language:
                s.language = language
            s.context.selected_idea = ideas[index]
            s.context.selected_idea_index = index

        committed = await self._commit(session.id, "select_idea", _select)
        idea = committed.context.selected_idea
        return self.composer.compose(
            committed,
            self.composer.text("idea_selected", committed.language, idea_title=idea.title),
            ResponseType.BUTTON_CHOICE,
            IDEA_ACTIONS_MENU,
        )

    def _resolve_button(self, value: str) -> Handler:
        handler = self.button_handlers.get(value)
        if handler:
            return handler
        if value in INTEREST_VALUES:
            return self._on_interest
        if value.startswith("budget_"):
            return self._on_budget
        return self._on_unknown_button

    # ── Plumbing ──────────────────────────────────────────────

    async def _commit(self, session_id: str, trigger: str, mutator: SessionMutator) -> Session:
        """Apply `mutator` atomically and log the resulting transition."""
        seen: dict[str, Any] = {}

        def _tracked(s: Session) -> Optional[Session]:
            seen["from"] = s.step
            return mutator(s)

        committed = await self.store.update(session_id, _tracked)
        logger.info("dialogue_transition",
                    session_id=session_id,
                    trigger=trigger,
                    from_step=seen["from"].value,
                    to_step=committed.step.value)
        return committed

    async def _reply(
        self,
        session_id: str,
        reply_key: str = "",
        type: ResponseType = ResponseType.TEXT,
        menu: Optional[Menu] = None,
        payload: Any = None,
        reply: str = "",
        **values: Any,
    ) -> DialogueResponse:
        """Reply without committing anything; context is re-read so it is current."""
        current = await self.store.get_or_create(session_id)
        text = reply or self.composer.text(reply_key, current.language, **values)
        return self.composer.compose(current, text, type, menu, payload)

    def _unmet(self, operation: str, session: Session) -> Optional[RuleCondition]:
        failed = first_failed(PRECONDITIONS[operation], session.context.snapshot())
        if failed:
            logger.info("precondition_not_met",
                        session_id=session.id,
                        operation=operation,
                        missing=failed.field)
        return failed

    async def _commit_checked(
        self, session: Session, operation: str, mutator: SessionMutator,
    ) -> Session | DialogueResponse:
        """
        Commit `mutator` only if the operation's preconditions still hold on
        the latest committed session. A turn that raced a restart (or any
        other write that removed a required fact) gets the guidance reply
        and commits nothing.
        """
        def _checked(s: Session) -> Optional[Session]:
            failed = first_failed(PRECONDITIONS[operation], s.context.snapshot())
            if failed:
                raise _PreconditionLost(failed)
            return mutator(s)

        try:
            return await self._commit(session.id, operation, _checked)
        except _PreconditionLost as e:
            logger.info("precondition_lost",
                        session_id=session.id,
                        operation=operation,
                        missing=e.condition.field)
            return await self._reply(session.id, e.condition.message_key)

    async def _provider_failed(self, session: Session, operation: str, error: Exception) -> DialogueResponse:
        logger.error("advisory_call_failed",
                     session_id=session.id,
                     operation=operation,
                     error=str(error))
        return await self._reply(session.id, "errorMessage")

    # ── Turn guards ───────────────────────────────────────────

    async def _on_end_of_conversation(self, session: Session, text: str) -> DialogueResponse:
        name = session.context.name or self.composer.text("default_user_name", session.language)
        return await self._reply(
            session.id, "goodbye_message", ResponseType.BUTTON_CHOICE, RESTART_MENU, name=name,
        )

    async def _on_plan_section(self, session: Session, text: str) -> DialogueResponse:
        failed = self._unmet("detailed_plan_section", session)
        if failed:
            return await self._reply(session.id, failed.message_key)

        ctx = session.context
        try:
            content = await self.engine.generate_detailed_plan_section(
                int(text), ctx.selected_idea.title, ctx.location, ctx.budget, ctx.name, session.language,
            )
        except AdvisoryProviderError as e:
            return await self._provider_failed(session, "detailed_plan_section", e)

        return await self._reply(
            session.id,
            type=ResponseType.DETAILED_SECTION,
            menu=[
                ("btn_back_to_plan_menu", "detailed_business_plan"),
                ("btn_find_resources", "find_resources"),
                ("btn_view_schemes", "find_funding"),
            ],
            reply=content,
        )

    async def _on_resource_topic(self, session: Session, text: str) -> DialogueResponse:
        failed = self._unmet("detailed_resource_topic", session)
        if failed:
            return await self._reply(session.id, failed.message_key)

        ctx = session.context
        try:
            content = await self.engine.generate_detailed_resource_topic(
                int(text), ctx.selected_idea.title, ctx.location, session.language,
            )
        except AdvisoryProviderError as e:
            return await self._provider_failed(session, "detailed_resource_topic", e)

        return await self._reply(
            session.id,
            type=ResponseType.DETAILED_RESOURCE,
            menu=[
                ("btn_back_to_resource_menu", "find_resources"),
                ("btn_view_business_plan", "detailed_business_plan"),
                ("btn_view_schemes", "find_funding"),
            ],
            reply=content,
        )

    # ── Step handlers (free text) ─────────────────────────────

    async def _on_initial(self, session: Session, text: str) -> DialogueResponse:
        if not GREETING_WORDS.intersection(tokenize(text)):
            return await self._reply(session.id, "type_hi")

        def _open_menu(s: Session) -> None:
            s.step = DialogueStep.MODE_SELECTION

        committed = await self._commit(session.id, "greeting", _open_menu)
        return self.composer.compose(
            committed,
            self.composer.text("greeting", committed.language),
            ResponseType.BUTTON_CHOICE,
            MODE_MENU,
        )

    async def _on_collecting_name(self, session: Session, text: str) -> DialogueResponse:
        def _store_name(s: Session) -> None:
            s.context.name = text
            s.step = DialogueStep.COLLECTING_LOCATION

        committed = await self._commit(session.id, "name_given", _store_name)
        return self.composer.compose(
            committed, self.composer.text("ask_for_city", committed.language, name=text),
        )

    async def _on_collecting_location(self, session: Session, text: str) -> DialogueResponse:
        def _store_location(s: Session) -> None:
            s.context.location = text
            s.step = DialogueStep.COLLECTING_INTERESTS

        committed = await self._commit(session.id, "location_given", _store_location)
        return self.composer.compose(
            committed,
            self.composer.text("ask_for_interests", committed.language, location=text),
            ResponseType.BUTTON_CHOICE,
            INTEREST_MENU,
        )

    async def _on_question(self, session: Session, text: str) -> DialogueResponse:
        try:
            answer = await self.engine.cofounder_response(
                text, session.context.snapshot(), session.language,
            )
        except AdvisoryProviderError as e:
            return await self._provider_failed(session, "cofounder_response", e)

        return await self._reply(
            session.id,
            menu=[("btn_continue_shaping", "ask_question"), ("btn_back_to_menu", "back_to_menu")],
            reply=answer,
        )

    async def _on_location_analysis(self, session: Session, text: str) -> DialogueResponse:
        try:
            analysis = await self.engine.analyze_location_for_business(text, session.language)
        except AdvisoryProviderError as e:
            return await self._provider_failed(session, "analyze_location_for_business", e)

        def _store_location(s: Session) -> None:
            # Left location analysis (restart, back to menu) while the provider ran
            if s.step != DialogueStep.LOCATION_ANALYSIS_MODE:
                return
            s.context.location = text

        committed = await self._commit(session.id, "location_analyzed", _store_location)
        return self.composer.compose(
            committed,
            analysis,
            menu=[
                ("btn_analyze_another_location", "location_analysis"),
                ("btn_back_to_menu", "back_to_menu"),
            ],
        )

    async def _on_unhandled_step(self, session: Session, text: str) -> DialogueResponse:
        return await self._reply(session.id, "default_reply")

    # ── Button handlers: navigation ───────────────────────────

    def _enter_mode(self, mode: Optional[SessionMode], step: DialogueStep) -> SessionMutator:
        def _mutate(s: Session) -> None:
            s.mode = mode
            s.step = step
        return _mutate

    async def _on_generate_business(self, session: Session, value: str) -> DialogueResponse:
        committed = await self._commit(
            session.id, value,
            self._enter_mode(SessionMode.GENERATE_BUSINESS, DialogueStep.COLLECTING_NAME),
        )
        return self.composer.compose(
            committed, self.composer.text("generate_business_intro", committed.language),
        )

    async def _on_ask_question(self, session: Session, value: str) -> DialogueResponse:
        committed = await self._commit(
            session.id, value,
            self._enter_mode(SessionMode.ASK_QUESTION, DialogueStep.QUESTION_MODE),
        )
        return self.composer.compose(
            committed, self.composer.text("ask_question_intro", committed.language),
        )

    async def _on_location_analysis_mode(self, session: Session, value: str) -> DialogueResponse:
        committed = await self._commit(
            session.id, value,
            self._enter_mode(SessionMode.LOCATION_ANALYSIS, DialogueStep.LOCATION_ANALYSIS_MODE),
        )
        return self.composer.compose(
            committed, self.composer.text("location_analysis_prompt", committed.language),
        )

    async def _on_back_to_menu(self, session: Session, value: str) -> DialogueResponse:
        committed = await self._commit(
            session.id, value, self._enter_mode(None, DialogueStep.MODE_SELECTION),
        )
        return self.composer.compose(
            committed,
            self.composer.text("greeting", committed.language),
            ResponseType.BUTTON_CHOICE,
            MODE_MENU,
        )

    async def _on_restart(self, session: Session, value: str) -> DialogueResponse:
        committed = await self.store.restart(session.id)
        logger.info("dialogue_transition",
                    session_id=session.id,
                    trigger=value,
                    from_step=session.step.value,
                    to_step=committed.step.value)
        return self.composer.compose(
            committed, self.composer.text("restart_welcome", committed.language),
        )

    # ── Button handlers: profile ──────────────────────────────

    async def _on_interest(self, session: Session, value: str) -> DialogueResponse:
        def _store_interest(s: Session) -> None:
            s.context.interests = value
            s.context.categories = [categorize_interest(value)]
            s.step = DialogueStep.ASKING_BUDGET

        committed = await self._commit(session.id, value, _store_interest)
        return self.composer.compose(
            committed,
            self.composer.text("ask_budget", committed.language),
            ResponseType.BUTTON_CHOICE,
            BUDGET_MENU,
        )

    async def _on_budget(self, session: Session, value: str) -> DialogueResponse:
        amount = value.removeprefix("budget_")
        if not amount.isdigit():
            return await self._on_unknown_button(session, value)

        def _store_budget(s: Session) -> None:
            s.context.budget = int(amount)
            s.step = DialogueStep.READY_TO_GENERATE

        committed = await self._commit(session.id, value, _store_budget)
        return self.composer.compose(
            committed,
            self.composer.text("have_all_info", committed.language),
            ResponseType.BUTTON_CHOICE,
            [("btn_show_ideas", "show_ideas")],
        )

    async def _on_unknown_button(self, session: Session, value: str) -> DialogueResponse:
        logger.warning("unknown_button", session_id=session.id, button_value=value)
        return await self._reply(session.id, "processing_request")

    # ── Button handlers: advisory ─────────────────────────────

    async def _on_show_ideas(self, session: Session, value: str) -> DialogueResponse:
        failed = self._unmet(value, session)
        if failed:
            return await self._reply(session.id, failed.message_key)

        ctx = session.context
        try:
            ideas = await self.engine.generate_business_ideas(
                ctx.name, ctx.location, ctx.interests, session.language, ctx.budget,
            )
        except AdvisoryProviderError as e:
            return await self._provider_failed(session, value, e)

        def _store_ideas(s: Session) -> None:
            s.context.generated_ideas = ideas

        committed = await self._commit_checked(session, value, _store_ideas)
        if isinstance(committed, DialogueResponse):
            return committed
        return self.composer.compose(
            committed,
            self.composer.text("ideas_intro", committed.language),
            ResponseType.IDEAS,
            payload=[idea.model_dump(mode="json") for idea in ideas],
        )

    async def _on_create_plan(self, session: Session, value: str) -> DialogueResponse:
        failed = self._unmet(value, session)
        if failed:
            return await self._reply(session.id, failed.message_key)

        title = session.context.selected_idea.title
        try:
            plan = await self.engine.generate_business_plan(
                title, session.context.location or "", session.language,
            )
        except AdvisoryProviderError as e:
            return await self._provider_failed(session, value, e)

        def _store_plan(s: Session) -> None:
            s.context.generated_plan = plan
            s.modal_flags.detailed_plan_mode = True

        committed = await self._commit_checked(session, value, _store_plan)
        if isinstance(committed, DialogueResponse):
            return committed
        lang = committed.language
        reply = (
            f"{self.composer.text('plan_created', lang, business_name=title)}\n\n"
            f"{plan.content}\n\n---\n\n{self.composer.text('next_steps', lang)}"
        )
        return self.composer.compose(
            committed,
            reply,
            menu=[
                ("btn_view_detailed_sections", "detailed_business_plan"),
                ("btn_find_resources", "find_resources"),
                ("btn_view_schemes", "find_funding"),
            ],
            payload=plan.model_dump(mode="json"),
        )

    async def _on_detailed_plan_menu(self, session: Session, value: str) -> DialogueResponse:
        failed = self._unmet(value, session)
        if failed:
            return await self._reply(session.id, failed.message_key)

        def _enable_plan_overlay(s: Session) -> None:
            s.modal_flags.detailed_plan_mode = True

        committed = await self._commit_checked(session, value, _enable_plan_overlay)
        if isinstance(committed, DialogueResponse):
            return committed
        menu_text = self.composer.numbered_menu(
            committed.language,
            "detailed_plan_title", "select_section_prompt", "section", "type_number_prompt",
            business_name=committed.context.selected_idea.title,
        )
        return self.composer.compose(
            committed,
            menu_text,
            ResponseType.DETAILED_PLAN_MENU,
            [("btn_find_resources", "find_resources"), ("btn_view_schemes", "find_funding")],
        )

    async def _on_find_resources(self, session: Session, value: str) -> DialogueResponse:
        failed = self._unmet(value, session)
        if failed:
            return await self._reply(session.id, failed.message_key)

        def _enable_resource_overlay(s: Session) -> None:
            s.modal_flags.detailed_resource_mode = True

        committed = await self._commit_checked(session, value, _enable_resource_overlay)
        if isinstance(committed, DialogueResponse):
            return committed
        menu_text = self.composer.numbered_menu(
            committed.language,
            "detailed_resource_title", "resource_topic_prompt", "resource_topic",
            "type_resource_number_prompt",
            business_name=committed.context.selected_idea.title,
        )
        return self.composer.compose(committed, menu_text, ResponseType.DETAILED_RESOURCE_MENU)

    async def _on_find_funding(self, session: Session, value: str) -> DialogueResponse:
        failed = self._unmet(value, session)
        if failed:
            return await self._reply(session.id, failed.message_key)

        ctx = session.context
        try:
            schemes = await self.engine.find_government_schemes(
                ctx.selected_idea.title, ctx.location, session.language,
            )
        except AdvisoryProviderError as e:
            return await self._provider_failed(session, value, e)

        location = ctx.location or self.composer.text("location_unknown", session.language)
        intro = self.composer.text(
            "funding_intro", session.language,
            business_name=f"**{ctx.selected_idea.title}**", location=location,
        )
        return await self._reply(session.id, type=ResponseType.SCHEMES, reply=f"{intro}\n\n{schemes}")

    async def _on_analyze_location(self, session: Session, value: str) -> DialogueResponse:
        failed = self._unmet(value, session)
        if failed:
            return await self._reply(session.id, failed.message_key)

        ctx = session.context
        try:
            analysis = await self.engine.analyze_location(
                ctx.location, ctx.selected_idea.title, session.language,
            )
        except AdvisoryProviderError as e:
            return await self._provider_failed(session, value, e)

        return await self._reply(
            session.id,
            type=ResponseType.LOCATION_ANALYSIS,
            menu=[
                ("btn_create_plan", "create_plan"),
                ("btn_find_funding", "find_funding"),
                ("btn_find_resources", "find_resources"),
            ],
            reply=analysis,
        )
