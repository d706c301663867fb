"""Shared test fixtures for VentureGuide."""
import pytest
from unittest.mock import AsyncMock, MagicMock

from backend.geocoding import GeocodingClient
from config.settings import Settings
from context.composer import ResponseComposer
from context.state_machine import DialogueStateMachine
from core.engine import AdvisoryEngine
from core.orchestrator import DialogueOrchestrator
from database.store_memory import InMemorySessionStore
from models.schemas import BusinessIdea, BusinessPlan, PlanSection
from templates.copy_catalog import CopyCatalog


class FakeClock:
    """Manually advanced monotonic clock for TTL tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def store(clock):
    return InMemorySessionStore(ttl_seconds=3600, clock=clock)


@pytest.fixture
def copy_catalog():
    return CopyCatalog.from_yaml()


@pytest.fixture
def composer(copy_catalog):
    return ResponseComposer(copy_catalog)


@pytest.fixture
def sample_ideas() -> list[BusinessIdea]:
    return [
        BusinessIdea(
            title="Home Tiffin Service",
            description="Cook and deliver lunch boxes to office workers nearby.",
            investment_min=5000,
            investment_max=15000,
            home_based=True,
            competition_level="Medium",
            icon="🍱",
        ),
        BusinessIdea(
            title="Pickle & Papad Making",
            description="Traditional pickles sold through local shops.",
            investment_min=3000,
            investment_max=10000,
            home_based=True,
            competition_level="Low",
            icon="🫙",
        ),
        BusinessIdea(
            title="Snack Stall",
            description="Evening snacks near the bus stand.",
            investment_min=15000,
            investment_max=40000,
            home_based=False,
            competition_level="High",
            icon="🥟",
        ),
    ]


@pytest.fixture
def sample_plan() -> BusinessPlan:
    return BusinessPlan(
        title="Home Tiffin Service",
        content="1. Executive Summary\nLunch boxes for offices.\n2. Market Analysis\nHigh demand.",
        sections=[
            PlanSection(title="Executive Summary", content="Lunch boxes for offices."),
            PlanSection(title="Market Analysis", content="High demand."),
        ],
    )


@pytest.fixture
def engine(sample_ideas, sample_plan):
    """AdvisoryEngine double: every advisory call succeeds with canned text."""
    engine = MagicMock(spec=AdvisoryEngine)
    engine.generate_business_ideas = AsyncMock(return_value=sample_ideas)
    engine.generate_business_plan = AsyncMock(return_value=sample_plan)
    engine.generate_detailed_plan_section = AsyncMock(return_value="Detailed section content")
    engine.generate_detailed_resource_topic = AsyncMock(return_value="Detailed resource content")
    engine.find_government_schemes = AsyncMock(return_value="MUDRA Shishu loan up to ₹50,000")
    engine.analyze_location = AsyncMock(return_value="Busy market area with steady demand")
    engine.analyze_location_for_business = AsyncMock(return_value="Pune has strong demand for food services")
    engine.cofounder_response = AsyncMock(return_value="Start small and test demand first.")
    engine.answer_business_question = AsyncMock(return_value="Register with Udyam first.")
    engine.summarize_document = AsyncMock(return_value="A guide to MSME loans.")
    return engine


@pytest.fixture
def state_machine(store, engine, composer):
    return DialogueStateMachine(store, engine, composer)


@pytest.fixture
def geocoder():
    geocoder = MagicMock(spec=GeocodingClient)
    geocoder.reverse_geocode = AsyncMock(return_value={
        "city": "Pune",
        "state": "Maharashtra",
        "country": "India",
        "display_name": "Shivajinagar, Pune, Maharashtra, India",
    })
    geocoder.search_nearby = AsyncMock(return_value=[])
    geocoder.close = AsyncMock()
    return geocoder


@pytest.fixture
def orchestrator(store, state_machine, engine, composer, geocoder, settings):
    return DialogueOrchestrator(
        store=store,
        state_machine=state_machine,
        engine=engine,
        composer=composer,
        geocoder=geocoder,
        settings=settings,
    )
