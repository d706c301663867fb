"""
Advisory Engine — LLM-powered business advice.

The call boundary to the text-generation provider. Handles:
- Business idea generation (structured JSON)
- Business plans, detailed plan sections and location resource topics
- Government scheme lookup and location analysis
- Open-ended co-founder conversation, optionally grounded in an uploaded document

Every public method either returns usable content or raises
AdvisoryProviderError; callers decide what to tell the user.
"""
from __future__ import annotations

import asyncio
import json
import re
import structlog
from datetime import date
from typing import Any, Optional

from config.settings import Settings, get_settings
from models.errors import AdvisoryProviderError
from models.schemas import BusinessIdea, BusinessPlan, PlanSection

logger = structlog.get_logger()

LANGUAGE_NAMES = {"en-IN": "English", "hi-IN": "Hindi", "mr-IN": "Marathi"}

PLAN_SECTIONS = {
    1: "Executive Summary",
    2: "Business Description",
    3: "Market Analysis",
    4: "Products & Services",
    5: "Marketing Strategy",
    6: "Operations Plan",
    7: "Organization & Management",
    8: "Financial Plan",
    9: "Implementation Timeline",
    10: "Resources & Support",
}

RESOURCE_TOPICS = {
    1: "Basic Location Details",
    2: "Demographics & Market Profile",
    3: "Competitors & Market Density",
    4: "Transportation & Accessibility",
    5: "Infrastructure & Utilities",
    6: "Labor & Workforce Availability",
    7: "Legal & Regulatory Environment",
    8: "Digital & Technology Infrastructure",
    9: "Financial & Banking Services",
    10: "Community & Support Networks",
}

ADVISOR_PERSONA = (
    "You are a practical, encouraging business advisor for women entrepreneurs "
    "in rural and semi-urban India. Use simple language, concrete numbers in rupees, "
    "and step-by-step actions."
)

_SECTION_HEADING = re.compile(r"^\s*(?:\d+\.|#{2,})\s*")


def language_instruction(language: str) -> str:
    return f"Respond in {LANGUAGE_NAMES.get(language, 'English').upper()} only."


def strip_code_fences(text: str) -> str:
    text = text.strip()
    if "```" in text:
        text = text.split("```")[1].strip()
        if text.startswith("json"):
            text = text[4:].strip()
    return text


def parse_plan_sections(content: str) -> list[PlanSection]:
    """Split plan text on numbered ("1.") or markdown ("##") headings."""
    sections: list[PlanSection] = []
    current: Optional[PlanSection] = None
    for line in content.splitlines():
        if _SECTION_HEADING.match(line):
            if current:
                sections.append(current)
            current = PlanSection(title=_SECTION_HEADING.sub("", line).strip())
        elif current and line.strip():
            current.content += line + "\n"
    if current:
        sections.append(current)
    return sections


def describe_context(context: dict[str, Any]) -> str:
    """Render known user facts as grounding lines for a prompt."""
    lines = []
    if context.get("name"):
        lines.append(f"Name: {context['name']}")
    if context.get("location"):
        lines.append(f"Location: {context['location']}")
    if context.get("interests"):
        lines.append(f"Interests: {context['interests']}")
    if context.get("budget"):
        lines.append(f"Budget: ₹{context['budget']}")
    if context.get("selected_idea"):
        lines.append(f"Selected Business: {context['selected_idea'].get('title', '')}")
    return "\n".join(lines)


class AdvisoryEngine:
    """
    Generates advisory content using Claude or OpenAI.
    Supports both Anthropic and OpenAI LLM providers.
    """

    def __init__(self, settings: Settings = None):
        self._settings = settings or get_settings()
        self._client = None
        self._provider = self._settings.llm.provider

    @property
    def is_openai(self) -> bool:
        return self._provider == "openai"

    @property
    def api_key(self) -> str:
        key = self._settings.llm.api_key or ""
        # Unresolved ${VAR} placeholder means the key was never provided
        return "" if key.startswith("${") else key

    async def _get_client(self):
        if self._client is None and self.api_key:
            try:
                if self.is_openai:
                    from openai import AsyncOpenAI
                    self._client = AsyncOpenAI(api_key=self.api_key)
                else:
                    import anthropic
                    self._client = anthropic.AsyncAnthropic(api_key=self.api_key)
                logger.info("llm_client_initialized", provider=self._provider,
                            model=self._settings.llm.model)
            except Exception as e:
                logger.error("llm_client_init_failed", provider=self._provider, error=str(e))
                self._client = None
        return self._client

    async def _call_llm(
        self,
        system: str,
        prompt: str,
        max_tokens: int = None,
        temperature: float = None,
    ) -> str:
        """Unified LLM call that handles both Anthropic and OpenAI APIs."""
        client = await self._get_client()
        if not client:
            raise AdvisoryProviderError("LLM provider is not configured")

        max_tokens = max_tokens or self._settings.llm.max_tokens
        temperature = temperature if temperature is not None else self._settings.llm.temperature

        if self.is_openai:
            request = client.chat.completions.create(
                model=self._settings.llm.model,
                max_tokens=max_tokens,
                temperature=temperature,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt},
                ],
            )
        else:
            request = client.messages.create(
                model=self._settings.llm.model,
                max_tokens=max_tokens,
                temperature=temperature,
                system=system,
                messages=[{"role": "user", "content": prompt}],
            )

        response = await asyncio.wait_for(request, timeout=self._settings.llm.timeout_seconds)
        if self.is_openai:
            return response.choices[0].message.content or ""
        return response.content[0].text

    async def generate(
        self,
        operation: str,
        prompt: str,
        system: str = ADVISOR_PERSONA,
        max_tokens: int = None,
        temperature: float = None,
    ) -> str:
        """Single entry point for text generation. Empty output counts as failure."""
        try:
            result = await self._call_llm(system, prompt, max_tokens, temperature)
        except AdvisoryProviderError:
            raise
        except asyncio.TimeoutError as e:
            logger.error("llm_timeout", operation=operation)
            raise AdvisoryProviderError("LLM call timed out", operation, retryable=True) from e
        except Exception as e:
            logger.error("llm_generation_failed", operation=operation, error=str(e))
            raise AdvisoryProviderError(str(e), operation) from e

        if not result or not result.strip():
            raise AdvisoryProviderError("LLM returned an empty response", operation)
        return result.strip()

    # ── Business ideas & plans ───────────────────────────────

    async def generate_business_ideas(
        self,
        name: str,
        location: str,
        interests: str,
        language: str = "en-IN",
        budget: Optional[int] = None,
    ) -> list[BusinessIdea]:
        count = self._settings.llm.idea_count
        budget = budget or 10000
        prompt = f"""Suggest {count} business ideas for {name} in {location}, India.

Interest (every idea MUST match it): {interests}
Available budget: ₹{budget}. Below ₹15,000 suggest only home-based ideas; be honest when an idea
needs more money and mention loans or government schemes that could close the gap.

Return a JSON array ONLY (no markdown, no explanation). Each item has:
title, description, investment_min, investment_max, actual_realistic_cost, funding_suggestion,
why_this_location, home_based (true/false), competition_level ("Low" | "Medium" | "High"),
skills, success_probability (e.g. "75%"), profitability (monthly profit), icon (one emoji).

Keep the JSON keys in English. {language_instruction(language)}"""

        text = await self.generate("generate_business_ideas", prompt, temperature=0.8)
        try:
            raw = json.loads(strip_code_fences(text))
            if isinstance(raw, dict):
                raw = raw.get("ideas", [raw])
            ideas = [BusinessIdea.model_validate(item) for item in raw]
        except (ValueError, TypeError) as e:
            logger.error("ideas_parse_failed", error=str(e), raw=text[:200])
            raise AdvisoryProviderError("Could not parse business ideas", "generate_business_ideas") from e

        if not ideas:
            raise AdvisoryProviderError("No business ideas returned", "generate_business_ideas")
        logger.info("business_ideas_generated", count=len(ideas), location=location)
        return ideas[:count]

    async def generate_business_plan(
        self, business_idea: str, location: str, language: str = "en-IN",
    ) -> BusinessPlan:
        headings = "\n".join(f"{n}. {title}" for n, title in PLAN_SECTIONS.items())
        prompt = (
            f"Create a practical business plan for: {business_idea} in {location}.\n\n"
            f"Use exactly these numbered sections:\n{headings}\n\n"
            f"{language_instruction(language)}"
        )
        content = await self.generate("generate_business_plan", prompt)
        return BusinessPlan(title=business_idea, content=content, sections=parse_plan_sections(content))

    async def generate_detailed_plan_section(
        self,
        section_number: int,
        business_idea: str,
        location: Optional[str],
        budget: Optional[int] = None,
        name: Optional[str] = None,
        language: str = "en-IN",
    ) -> str:
        title = PLAN_SECTIONS.get(section_number)
        if title is None:
            raise ValueError(f"Plan section must be 1-10, got {section_number}")
        prompt = (
            f"Write the '{title}' section of a business plan for {business_idea} "
            f"in {location or 'India'} for {name or 'the entrepreneur'}, "
            f"with a budget of ₹{budget or 50000}.\n"
            f"Be detailed: specific numbers, local examples, and clear next actions.\n\n"
            f"{language_instruction(language)}"
        )
        return await self.generate("generate_detailed_plan_section", prompt)

    async def generate_detailed_resource_topic(
        self,
        topic_number: int,
        business_idea: str,
        location: str,
        language: str = "en-IN",
    ) -> str:
        title = RESOURCE_TOPICS.get(topic_number)
        if title is None:
            raise ValueError(f"Resource topic must be 1-10, got {topic_number}")
        prompt = (
            f"Give a detailed '{title}' briefing for someone starting {business_idea} "
            f"in {location}. Cover what exists locally, typical costs, and who to contact.\n\n"
            f"{language_instruction(language)}"
        )
        return await self.generate("generate_detailed_resource_topic", prompt)

    # ── Funding & location ───────────────────────────────────

    async def find_government_schemes(
        self, business_type: str, location: Optional[str], language: str = "en-IN",
    ) -> str:
        prompt = (
            f"List the government schemes and funding options for a woman starting "
            f"'{business_type}' in {location or 'India'}: central schemes (e.g. MUDRA, "
            f"Stand-Up India, PMEGP), state schemes, and bank or microfinance options. "
            f"For each give eligibility, amount, and how to apply.\n\n"
            f"{language_instruction(language)}"
        )
        return await self.generate("find_government_schemes", prompt)

    async def analyze_location(
        self, location: str, business_type: str, language: str = "en-IN",
    ) -> str:
        prompt = (
            f"Analyze {location} as a place to run '{business_type}': demand, customers, "
            f"competition, suppliers, risks, and a final recommendation.\n\n"
            f"{language_instruction(language)}"
        )
        return await self.generate("analyze_location", prompt)

    async def analyze_location_for_business(self, location: str, language: str = "en-IN") -> str:
        prompt = (
            f"Analyze {location} for small-business opportunities: local economy, "
            f"what people buy, market gaps, and the five best business ideas for a woman "
            f"entrepreneur there.\n\n{language_instruction(language)}"
        )
        return await self.generate("analyze_location_for_business", prompt)

    # ── Conversation & documents ─────────────────────────────

    async def cofounder_response(
        self, message: str, context: dict[str, Any], language: str = "en-IN",
    ) -> str:
        if context.get("uploaded_pdf_content"):
            return await self.answer_with_document(message, context["uploaded_pdf_content"], language)

        grounding = describe_context(context)
        system = (
            f"{ADVISOR_PERSONA} You act as the user's co-founder: help shape their idea, "
            f"answer questions on schemes, financing and marketing. "
            f"Today is {date.today():%B %d, %Y}."
        )
        prompt = (
            (f"What I know about the user:\n{grounding}\n\n" if grounding else "")
            + f"User: {message}\n\n{language_instruction(language)}"
        )
        return await self.generate("cofounder_response", prompt, system=system)

    async def answer_business_question(
        self, question: str, context: dict[str, Any], language: str = "en-IN",
    ) -> str:
        grounding = describe_context(context)
        prompt = (
            f"Question: {question}\n\n"
            + (f"User context:\n{grounding}\n\n" if grounding else "")
            + "Give a practical answer with Indian examples, action steps and any relevant "
              f"schemes.\n\n{language_instruction(language)}"
        )
        return await self.generate("answer_business_question", prompt)

    async def summarize_document(self, text: str, language: str = "en-IN") -> str:
        limit = self._settings.uploads.summary_chars
        prompt = (
            f"Summarize this document in 3-4 friendly sentences: what kind of document it is, "
            f"the main topics, and how it could help a small business owner.\n\n"
            f"DOCUMENT:\n{text[:limit]}\n\n{language_instruction(language)}"
        )
        return await self.generate("summarize_document", prompt, max_tokens=800)

    async def answer_with_document(self, question: str, content: str, language: str = "en-IN") -> str:
        limit = self._settings.uploads.answer_chars
        prompt = (
            f"Answer the question using ONLY the document below. Start with a short main answer, "
            f"then key details as bullets, then explain any difficult terms simply. If the "
            f"document does not cover it, say so and offer general advice.\n\n"
            f"DOCUMENT:\n{content[:limit]}\n\nQUESTION: {question}\n\n"
            f"{language_instruction(language)}"
        )
        return await self.generate("answer_with_document", prompt, max_tokens=2000)
