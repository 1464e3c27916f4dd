import sys
from datetime import timedelta
from pathlib import Path

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

import pytest_asyncio

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from fieldops import models  # noqa: E402,F401
from fieldops.agents.backends import BackendSelector, ReplyBackend, SelectionRule  # noqa: E402
from fieldops.agents.classifier import IntentClassifier  # noqa: E402
from fieldops.agents.executor import ActionExecutor  # noqa: E402
from fieldops.agents.reference import ReferenceLibrary  # noqa: E402
from fieldops.agents.tools import ToolRegistry, register_builtin_tools  # noqa: E402
from fieldops.audit import AuditSink  # noqa: E402
from fieldops.broadcaster import ResponseBroadcaster  # noqa: E402
from fieldops.collaborators.location import Location  # noqa: E402
from fieldops.collaborators.routing import RouteSummary  # noqa: E402
from fieldops.errors import CollaboratorUnavailable  # noqa: E402
from fieldops.llm_client import LLMEndpoint  # noqa: E402
from fieldops.memory.scene_tracker import SceneContextTracker  # noqa: E402
from fieldops.memory.session_store import SessionStore  # noqa: E402
from fieldops.memory.workflow_store import WorkflowStore  # noqa: E402
from fieldops.orchestrator import Orchestrator  # noqa: E402
from fieldops.utils import utcnow  # noqa: E402


class FakeClassificationBackend:
    def __init__(self, intent=None, error=None, init_error=None):
        self.intent = intent
        self.error = error
        self.init_error = init_error
        self.calls = []

    async def initialize(self):
        if self.init_error:
            raise self.init_error

    async def classify(self, text, scene, history):
        self.calls.append((text, scene, list(history)))
        if self.error:
            raise self.error
        return self.intent


class FakeRouting:
    def __init__(self, route=None, error=None, available=True):
        self.route = route
        self.error = error
        self.available = available
        self.calls = []

    def is_available(self):
        return self.available

    async def get_route(self, destination, priority_hint="routine"):
        self.calls.append((destination, priority_hint))
        if self.error:
            raise self.error
        return self.route

    async def close(self):
        return None


class FakeLocation:
    def __init__(self, location=None):
        self.location = location

    async def get_current_location(self, user_id):
        return self.location

    async def close(self):
        return None


class FakeKnowledge:
    def __init__(self, snippets=None):
        self.snippets = snippets or []
        self.queries = []

    async def retrieve(self, query):
        self.queries.append(query)
        return list(self.snippets)

    async def close(self):
        return None


class FakeReplyBackend:
    def __init__(self, name, reply="Copy that.", configured=True, error=None):
        self.name = name
        self.reply = reply
        self.configured = configured
        self.error = error
        self.calls = []

    async def generate_reply(self, user_id, history, snippets, directive=""):
        self.calls.append({"user_id": user_id, "history": history, "snippets": snippets, "directive": directive})
        if self.error:
            raise self.error
        return self.reply


def unconfigured_selector() -> BackendSelector:
    def backend(name):
        return ReplyBackend(LLMEndpoint(name, "http://llm.invalid", "model", None))

    rules = [SelectionRule("general", lambda intent: True, backend("general"))]
    return BackendSelector(rules, backend("default"))


def sample_route() -> RouteSummary:
    return RouteSummary(
        distance_meters=4200,
        duration_seconds=540,
        eta=utcnow() + timedelta(seconds=540),
        traffic="moderate",
    )


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    return engine


@pytest.fixture()
def session_store():
    return SessionStore()


@pytest.fixture()
def build_executor(engine, session_store):
    def _build(**overrides):
        tools = ToolRegistry()
        register_builtin_tools(tools)
        options = {
            "session_store": session_store,
            "tools": tools,
            "references": ReferenceLibrary.from_file(),
            "selector": unconfigured_selector(),
            "routing": FakeRouting(route=sample_route()),
            "location": FakeLocation(),
            "knowledge": FakeKnowledge(),
            "audit": AuditSink(engine),
            "default_location": Location(lat=30.4515, lon=-91.1871),
            "timeout_seconds": 1.0,
        }
        options.update(overrides)
        return ActionExecutor(**options)

    return _build


@pytest_asyncio.fixture()
async def build_orchestrator(engine, session_store, build_executor):
    built = []

    async def _build(classifier_backend=None, **executor_overrides):
        executor = build_executor(**executor_overrides)
        orchestrator = Orchestrator(
            session_store=session_store,
            workflow_store=WorkflowStore(engine),
            scene_tracker=SceneContextTracker(),
            classifier=IntentClassifier(classifier_backend, timeout_seconds=1.0),
            executor=executor,
            broadcaster=ResponseBroadcaster(),
            audit=executor.audit,
        )
        await orchestrator.startup()
        built.append(orchestrator)
        return orchestrator

    yield _build
    for orchestrator in built:
        await orchestrator.shutdown()


@pytest.fixture()
def failing_backend():
    return FakeClassificationBackend(error=CollaboratorUnavailable("classifier down"))
