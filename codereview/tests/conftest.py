"""
PyTest configuration and fixtures.
"""

import os

# The rate limiter and settings are configured at import time
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("ENVIRONMENT", "test")

import re
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from codereview.database import Base
from codereview.models import Repository, Rubric, RubricItem, User
from codereview.schemas import RepositoryFile, RepositorySnapshot
from codereview.services.analysis_service import AnalysisService
from codereview.services.llm.retry import RetryConfig

TEST_USER_ID = "test_user_123"
OTHER_USER_ID = "other_user_456"

DEFAULT_ITEMS = [
    {
        "name": "Has tests",
        "description": "The repository contains automated tests",
        "evaluation_type": "yes_no",
        "config": {"requireJustification": True},
    },
    {
        "name": "Code quality",
        "description": "Overall readability and structure",
        "evaluation_type": "range",
        "config": {"minValue": 0, "maxValue": 10, "rangeGuidance": "0 is unreadable, 10 is exemplary"},
    },
    {
        "name": "General feedback",
        "description": "Free-form review comments",
        "evaluation_type": "comments",
        "config": {},
    },
    {
        "name": "Error handling examples",
        "description": "Show how errors are handled",
        "evaluation_type": "code_examples",
        "config": {"maxExamples": 2},
    },
    {
        "name": "Web framework",
        "description": "Which web framework does the project use",
        "evaluation_type": "options",
        "config": {"options": ["FastAPI", "Django", "Flask"], "allowMultiple": False},
    },
]


@pytest.fixture
def engine(tmp_path):
    """Per-test SQLite database file."""
    test_engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False},  # Needed for SQLite
    )
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    """Get database session for each test."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def analysis_service(session_factory):
    return AnalysisService(session_factory)


@pytest.fixture
def make_rubric(db_session) -> Callable[..., SimpleNamespace]:
    """Factory creating a rubric with items; returns ids by value."""

    def _make(
        items: Optional[List[Dict[str, Any]]] = None,
        user_id: Optional[str] = TEST_USER_ID,
        is_system_template: bool = False,
        name: str = "Backend review",
    ) -> SimpleNamespace:
        rubric = Rubric(user_id=user_id, name=name, is_system_template=is_system_template)
        db_session.add(rubric)
        db_session.flush()

        item_ids = []
        for order, definition in enumerate(DEFAULT_ITEMS if items is None else items):
            item = RubricItem(
                rubric_id=rubric.id,
                name=definition["name"],
                description=definition.get("description", ""),
                evaluation_type=definition["evaluation_type"],
                config=definition.get("config", {}),
                order=order,
            )
            db_session.add(item)
            db_session.flush()
            item_ids.append(item.id)

        db_session.commit()
        return SimpleNamespace(id=rubric.id, item_ids=item_ids)

    return _make


@pytest.fixture
def seed(db_session, make_rubric) -> SimpleNamespace:
    """A user with one connected repository and one rubric of five mixed items."""
    db_session.add(User(user_id=TEST_USER_ID, email="test@example.com"))
    db_session.add(User(user_id=OTHER_USER_ID, email="other@example.com"))
    repository = Repository(
        user_id=TEST_USER_ID,
        owner="acme",
        name="widgets",
        full_name="acme/widgets",
        default_branch="develop",
    )
    db_session.add(repository)
    db_session.commit()

    rubric = make_rubric()
    return SimpleNamespace(
        user_id=TEST_USER_ID,
        other_user_id=OTHER_USER_ID,
        repository_id=repository.id,
        rubric_id=rubric.id,
        item_ids=rubric.item_ids,
    )


@pytest.fixture
def snapshot() -> RepositorySnapshot:
    return RepositorySnapshot(
        files=[
            RepositoryFile(path="app/main.py", content="from fastapi import FastAPI\napp = FastAPI()\n", language="python"),
            RepositoryFile(path="README.md", content="# Widgets\n", language="markdown"),
        ],
        structure="app/\n  main.py\nREADME.md",
    )


class FakeEvaluator:
    """
    Stand-in for the structured-output evaluator.

    Responses are keyed by rubric item name; a value may be a response, an
    exception instance to raise, or a list consumed one entry per call.
    """

    def __init__(self, responses: Dict[str, Any]):
        self.responses = {name: list(value) if isinstance(value, list) else value for name, value in responses.items()}
        self.calls: List[str] = []

    async def evaluate(self, prompt: str, output_type):
        match = re.search(r"^Name: (.*)$", prompt, re.MULTILINE)
        name = match.group(1) if match else ""
        self.calls.append(name)

        response = self.responses[name]
        if isinstance(response, list):
            response = response.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class FakeFetcher:
    def __init__(self, snapshot: Optional[RepositorySnapshot] = None, error: Optional[Exception] = None):
        self.snapshot = snapshot or RepositorySnapshot()
        self.error = error
        self.calls: List[tuple] = []

    async def fetch(self, owner: str, name: str, branch: str) -> RepositorySnapshot:
        self.calls.append((owner, name, branch))
        if self.error is not None:
            raise self.error
        return self.snapshot


@pytest.fixture
def fake_evaluator_cls():
    return FakeEvaluator


@pytest.fixture
def fake_fetcher_cls():
    return FakeFetcher


@pytest.fixture
def no_delay_retry() -> RetryConfig:
    return RetryConfig(max_attempts=2, base_delay=0, max_delay=0, jitter=False)


@pytest.fixture
def good_responses() -> Dict[str, Any]:
    """One valid response per item of DEFAULT_ITEMS."""
    return {
        "Has tests": {"value": True, "justification": "pytest suite under tests/"},
        "Code quality": {"value": 7, "min": 0, "max": 10, "rationale": "Readable, some long functions"},
        "General feedback": {"feedback": "Consider adding type hints."},
        "Error handling examples": {
            "examples": [
                {
                    "filePath": "app/main.py",
                    "lineStart": 1,
                    "lineEnd": 2,
                    "code": "app = FastAPI()",
                    "explanation": "Application setup",
                }
            ]
        },
        "Web framework": {"selections": ["fastapi"]},
    }


@pytest.fixture
def auth_headers():
    """Get authentication headers."""
    return {"Authorization": f"Bearer dev_test_token_{TEST_USER_ID}"}


@pytest.fixture
def client(analysis_service):
    """Create test client with the analysis service bound to the test database."""
    from codereview.api.app import app
    from codereview.api.routes.analysis import get_analysis_service

    app.dependency_overrides[get_analysis_service] = lambda: analysis_service
    yield TestClient(app)
    app.dependency_overrides.clear()
