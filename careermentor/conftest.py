# careermentor/conftest.py
import os

import pytest

# Configure the environment before any careermentor module reads settings
os.environ.setdefault("SKIP_ENV_VALIDATION", "1")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-jwt-secret-with-at-least-32-bytes!")
os.environ.setdefault("STRIPE_WEBHOOK_SIGNING_SECRET", "whsec_test_secret")
os.environ.setdefault("ADMIN_KEY", "test-admin-key")
os.environ.pop("STRIPE_SECRET_KEY", None)
os.environ.pop("TEST_DATABASE_URL", None)
os.environ.pop("ADMIN_API_KEY", None)

from careermentor.core.config import settings  # noqa: E402
from careermentor.features.plans.catalog import load_plan_catalog  # noqa: E402
from careermentor.tests.helpers import FakeProvider  # noqa: E402


@pytest.fixture(scope="function", autouse=True)
def db():
    """
    Fresh in-memory SQLite database per test.

    StaticPool keeps one connection alive, so every session in the test sees
    the same database; disposing the engine throws it away.
    """
    from careermentor.core.database import init_engine, create_all_tables, dispose_engine

    engine = init_engine("sqlite://")
    create_all_tables()
    yield engine
    dispose_engine()


@pytest.fixture
def catalog():
    return load_plan_catalog(settings)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def webhook_secret():
    return settings.STRIPE_WEBHOOK_SIGNING_SECRET


@pytest.fixture
def app(catalog, provider):
    """The FastAPI app with a fresh catalog and the fake billing provider."""
    from careermentor.main import app as fastapi_app
    from careermentor.api.deps import get_billing_provider

    fastapi_app.state.plan_catalog = catalog
    fastapi_app.dependency_overrides[get_billing_provider] = lambda: provider
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()
    gate = getattr(fastapi_app.state, "credit_gate", None)
    if gate is not None:
        gate.close()
        fastapi_app.state.credit_gate = None


@pytest.fixture
def client(app):
    from fastapi.testclient import TestClient

    return TestClient(app)
