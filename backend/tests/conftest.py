"""
Pytest configuration and fixtures.

Tests run against a throwaway SQLite database (aiosqlite) and fake
provider adapters, so no MySQL server or API keys are needed.
"""

import sys
from pathlib import Path
from typing import AsyncGenerator

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from casechat.api.deps import get_model_router, get_resilient_chat, get_session_factory
from casechat.core.security import create_access_token
from casechat.db.base import Base, get_db
from casechat.db.catalog.models import Case, CaseScenario, Evaluation, LLMModel, SectionCase, SectionCaseScenario
from casechat.llm.providers.base import ChatProvider, ProviderResponse, UsageMetrics
from casechat.llm.resilience import ResilientChat
from casechat.llm.router import ModelRouter
from casechat.main import app


STUDENT_ID = "student-1"
OTHER_STUDENT_ID = "student-2"
CASE_ID = "malawis-pizza"


class FakeProvider(ChatProvider):
    """Scripted provider adapter.

    ``failures`` are raised, in order, before any reply is returned.
    """

    def __init__(self, provider_name="openai", replies=None, eval_replies=None, failures=None):
        self._name = provider_name
        self.replies = list(replies or ["I see your point. Tell me more."])
        self.eval_replies = list(eval_replies or ['{"score": 8}'])
        self.failures = list(failures or [])
        self.calls = []

    @property
    def name(self) -> str:
        return self._name

    def is_available(self) -> bool:
        return True

    def _next(self, replies):
        if self.failures:
            raise self.failures.pop(0)
        return replies.pop(0) if len(replies) > 1 else replies[0]

    async def chat(self, system_prompt, history, message, config):
        self.calls.append(("chat", config.model_id, message, config.temperature))
        text = self._next(self.replies)
        return ProviderResponse(
            text=text,
            usage=UsageMetrics(cache_hit=True, input_tokens=120, cached_tokens=100, output_tokens=20),
            applied={"provider": self._name, "temperature": config.temperature, "reasoning_effort": None},
        )

    async def evaluate(self, prompt, config):
        self.calls.append(("eval", config.model_id, prompt, config.temperature))
        text = self._next(self.eval_replies)
        return ProviderResponse(
            text=text,
            usage=UsageMetrics(input_tokens=300, output_tokens=40),
            applied={"provider": self._name, "temperature": config.temperature, "reasoning_effort": None},
        )


@pytest.fixture
async def engine(tmp_path: Path):
    """Create a fresh SQLite database per test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'casechat-test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def model_router(session_factory, fake_provider) -> ModelRouter:
    return ModelRouter(
        session_factory,
        providers={
            "openai": fake_provider,
            "anthropic": fake_provider,
            "google": fake_provider,
        },
    )


@pytest.fixture
async def seeded(db: AsyncSession) -> dict:
    """A case with two scenarios assigned to a section, plus registry models."""
    db.add(Case(
        case_id=CASE_ID,
        case_title="Malawi's Pizza Catering",
        protagonist="Kent Gourdin",
        chat_question="Should Malawi's expand into catering?",
        arguments_for="Catering uses idle kitchen capacity.",
        arguments_against="Catering distracts from the core restaurant.",
    ))
    await db.flush()

    timed = CaseScenario(
        case_id=CASE_ID,
        scenario_name="Timed",
        chat_question="Should the catering pilot continue?",
        chat_time_limit=20,
        sort_order=1,
        chat_options_override={
            "position_tracking_enabled": True,
            "position_capture_method": "ai_inferred",
            "position_options": ["for", "against"],
        },
    )
    untimed = CaseScenario(case_id=CASE_ID, scenario_name="Untimed", chat_time_limit=0, sort_order=2)
    db.add_all([timed, untimed])
    await db.flush()

    section_case = SectionCase(section_id="sec-1", case_id=CASE_ID, chat_options={"chat_repeats": 0})
    db.add(section_case)
    await db.flush()
    db.add_all([
        SectionCaseScenario(section_case_id=section_case.id, scenario_id=timed.id, sort_order=1),
        SectionCaseScenario(section_case_id=section_case.id, scenario_id=untimed.id, sort_order=2),
    ])

    db.add_all([
        LLMModel(model_id="gpt-4o", temperature=0.7),
        LLMModel(model_id="claude-3-5-sonnet", temperature=0.5),
        LLMModel(model_id="gemini-1.5-flash"),
        LLMModel(model_id="gpt-retired", enabled=False),
    ])
    await db.commit()

    return {"case_id": CASE_ID, "timed_id": timed.id, "untimed_id": untimed.id, "section_id": "sec-1"}


@pytest.fixture
def make_evaluation(db: AsyncSession):
    """Factory for evaluation rows."""

    async def _make(evaluation_id: str, student_id: str = STUDENT_ID,
                    case_chat_id: str | None = None, allow_rechat: bool = False) -> Evaluation:
        evaluation = Evaluation(
            id=evaluation_id,
            student_id=student_id,
            case_id=CASE_ID,
            case_chat_id=case_chat_id,
            score=8.0,
            allow_rechat=allow_rechat,
        )
        db.add(evaluation)
        await db.commit()
        return evaluation

    return _make


@pytest.fixture
async def async_client(session_factory, model_router) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client wired to the test database."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_model_router] = lambda: model_router
    app.dependency_overrides[get_resilient_chat] = lambda: ResilientChat(model_router, retry_delay=0)

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers_student() -> dict:
    """Return headers with a student auth token."""
    token = create_access_token({"sub": STUDENT_ID, "role": "student"})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers_other_student() -> dict:
    token = create_access_token({"sub": OTHER_STUDENT_ID, "role": "student"})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers_admin() -> dict:
    """Return headers with an admin auth token."""
    token = create_access_token({"sub": "admin-1", "role": "admin"})
    return {"Authorization": f"Bearer {token}"}
