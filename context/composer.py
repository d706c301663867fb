"""
Response Composer — Builds the outward response envelope.

The state machine decides *what* to say (copy keys, menu, payload); the
composer renders copy for the session language and attaches the
post-commit context snapshot, so every response can be treated as the
authoritative current state.
"""
from __future__ import annotations

from typing import Any, Optional

from models.schemas import Button, DialogueResponse, ResponseType, Session
from templates.copy_catalog import CopyCatalog

# A menu is a list of (copy key for the label, button value)
Menu = list[tuple[str, str]]

MODE_MENU: Menu = [
    ("generate_business_btn", "generate_business"),
    ("ask_question_btn", "ask_question"),
    ("location_analysis_btn", "location_analysis"),
]

INTEREST_MENU: Menu = [
    (f"btn_{interest}", interest)
    for interest in ("cooking", "sewing", "dairy", "farming", "beauty", "handicrafts", "teaching", "retail")
]

BUDGET_MENU: Menu = [
    (f"btn_budget_{amount}", f"budget_{amount}")
    for amount in (10000, 50000, 100000, 200000)
]

IDEA_ACTIONS_MENU: Menu = [
    ("btn_create_plan", "create_plan"),
    ("btn_find_funding", "find_funding"),
    ("btn_find_resources", "find_resources"),
    ("btn_analyze_location", "analyze_location"),
]

RESTART_MENU: Menu = [("btn_restart_session", "restart_session")]

MENU_SIZE = 10


class ResponseComposer:

    def __init__(self, copy: CopyCatalog):
        self.copy = copy

    def text(self, key: str, language: str, **values: Any) -> str:
        return self.copy.render(key, language, **values)

    def buttons(self, menu: Menu, language: str) -> list[Button]:
        return [Button(text=self.copy.text(key, language), value=value) for key, value in menu]

    def numbered_menu(
        self,
        language: str,
        title_key: str,
        prompt_key: str,
        item_prefix: str,
        footer_key: str,
        business_name: str,
    ) -> str:
        """Render a 1..10 menu from `<item_prefix>_<n>_title` / `_desc` copy keys."""
        parts = [
            self.text(title_key, language, business_name=business_name),
            self.text(prompt_key, language),
        ]
        for n in range(1, MENU_SIZE + 1):
            parts.append(
                f"**{n}. {self.text(f'{item_prefix}_{n}_title', language)}**\n"
                f"{self.text(f'{item_prefix}_{n}_desc', language)}"
            )
        parts.append(f"**{self.text(footer_key, language)}**")
        return "\n\n".join(parts)

    def compose(
        self,
        session: Session,
        reply: str,
        type: ResponseType = ResponseType.TEXT,
        menu: Optional[Menu] = None,
        payload: Any = None,
    ) -> DialogueResponse:
        return DialogueResponse(
            reply=reply,
            type=type,
            buttons=self.buttons(menu, session.language) if menu else [],
            payload=payload,
            current_step=session.step,
            context=session.context.snapshot(),
        )
