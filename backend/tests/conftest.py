"""
Root conftest.py — Shared fixtures for ALL tests (unit + integration)

Fixture hierarchy:
  function-scoped : test_settings, db_engine, session_factory, fake_storage,
                    embeddings_client, embedder, vector_store,
                    mock_completion, mock_publisher, services, manager,
                    make_token

Environment strategy:
  - Every test gets its own SQLite file under tmp_path (aiosqlite); tables
    are created with init_models().
  - Blob storage is a MagicMock(spec=BlobStorageService) backed by a dict.
  - The vector index is a real Chroma collection persisted under tmp_path.
  - Embeddings come from a keyword-count fake client, so cosine ranking is
    predictable; completions come from an AsyncMock.
  - JWTs are HS256-signed with a test secret — no live identity provider.
  - Nothing touches the network.

How to run:
  pytest                          # all tests
  pytest -m unit                  # service-level tests only
  pytest -m integration           # HTTP tests through the FastAPI app
"""

from __future__ import annotations

import os
import time
import uuid
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import AsyncClient

# ─────────────────────────────────────────────────────────────────────────────
# Patch settings BEFORE any app imports so modules read test config
# ─────────────────────────────────────────────────────────────────────────────

TEST_JWT_SECRET = "test-secret-for-hs256-signing-only"
TEST_AUDIENCE   = "authenticated"

os.environ.setdefault("DATABASE_URL",          "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("AWS_REGION",            "eu-west-1")
os.environ.setdefault("AWS_ACCESS_KEY_ID",     "test")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "test")
os.environ.setdefault("S3_BUCKET",             "test-bucket")
os.environ.setdefault("OPENAI_API_KEY",        "sk-test-key")
os.environ.setdefault("CELERY_BROKER_URL",     "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")
os.environ.setdefault("AUTH_JWT_SECRET",       TEST_JWT_SECRET)
os.environ.setdefault("AUTH_AUDIENCE",         TEST_AUDIENCE)
os.environ.setdefault("APP_ENV",               "development")

# Keyword axes for the fake embedding space
EMBED_KEYWORDS = ("pomp", "filter", "prijs")
EMBED_DIM      = len(EMBED_KEYWORDS) + 1


def keyword_vector(text: str) -> list[float]:
    """Count of each keyword plus a small bias so no vector is all zeros."""
    lowered = text.lower()
    return [float(lowered.count(k)) for k in EMBED_KEYWORDS] + [0.1]


# ─────────────────────────────────────────────────────────────────────────────
# Stable identities
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def user_id() -> str:
    return "bbbbbbbb-bbbb-bbbb-bbbb-bbbbbbbbbbbb"


@pytest.fixture
def admin_id() -> str:
    return "aaaaaaaa-aaaa-aaaa-aaaa-aaaaaaaaaaaa"


# ─────────────────────────────────────────────────────────────────────────────
# Settings + database
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def test_settings(tmp_path):
    from assistant.core.config import Settings
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        auth_jwt_secret=TEST_JWT_SECRET,
        auth_audience=TEST_AUDIENCE,
        openai_api_key="sk-test-key",
        s3_bucket="test-bucket",
        embedding_dimensions=EMBED_DIM,
        chroma_persist_dir=str(tmp_path / "chroma"),
        processing_backend="inprocess",
        app_env="development",
    )


@pytest_asyncio.fixture
async def db_engine(test_settings):
    from assistant.db.session import build_engine, init_models
    engine = build_engine(test_settings)
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    from assistant.db.session import build_session_factory
    return build_session_factory(db_engine)


# ─────────────────────────────────────────────────────────────────────────────
# Mock blob storage — dict-backed
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def fake_storage():
    """
    MagicMock(spec=BlobStorageService) whose upload/download/delete act on
    `storage.objects`. Override side effects per test to simulate failures.
    """
    from assistant.storage.blob import BlobStorageService

    storage = MagicMock(spec=BlobStorageService)
    storage.objects = {}

    async def _upload(key, body, content_type):
        storage.objects[key] = body
        return f"https://test-bucket.s3.eu-west-1.amazonaws.com/{key}"

    async def _download(key):
        if key not in storage.objects:
            raise FileNotFoundError(f"Object not found: {key}")
        return storage.objects[key]

    async def _delete(key):
        storage.objects.pop(key, None)

    storage.upload   = AsyncMock(side_effect=_upload)
    storage.download = AsyncMock(side_effect=_download)
    storage.delete   = AsyncMock(side_effect=_delete)
    return storage


# ─────────────────────────────────────────────────────────────────────────────
# Embeddings + completion
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def embeddings_client():
    """Stands in for OpenAIEmbeddings: aembed_query → keyword_vector."""
    client = MagicMock()
    client.aembed_query = AsyncMock(side_effect=keyword_vector)
    return client


@pytest.fixture
def embedder(embeddings_client):
    from assistant.processing.embeddings import EmbeddingGenerator
    return EmbeddingGenerator(embeddings_client, EMBED_DIM)


@pytest.fixture
def vector_store(test_settings):
    from assistant.vectorstore import build_vector_store
    return build_vector_store(test_settings)


@pytest.fixture
def mock_completion(test_settings):
    """
    CompletionService mock. Title requests (title_model) get a fixed title,
    everything else a fixed answer.
    """
    from assistant.llm.client import CompletionResult, CompletionService

    completion = MagicMock(spec=CompletionService)

    async def _complete(messages, model, max_tokens, temperature):
        if model == test_settings.title_model:
            return CompletionResult(text="  Hydraulische pomp onderhoud  ", token_count=12, model_name=model)
        return CompletionResult(text="Controleer eerst het filter.", token_count=42, model_name="gpt-test")

    completion.complete = AsyncMock(side_effect=_complete)
    return completion


# ─────────────────────────────────────────────────────────────────────────────
# Mock task publisher
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def mock_publisher():
    """Mocked TaskPublisher — records calls without scheduling anything."""
    from assistant.workers.publisher import TaskPublisher
    publisher = MagicMock(spec=TaskPublisher)
    publisher.publish_processing = AsyncMock(return_value=None)
    publisher.drain = AsyncMock(return_value=None)
    return publisher


# ─────────────────────────────────────────────────────────────────────────────
# Service graph
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def services(
    test_settings, session_factory, fake_storage, embedder, vector_store, mock_completion, mock_publisher,
):
    from assistant.services.factory import build_services
    return build_services(
        test_settings,
        session_factory,
        storage=fake_storage,
        embedder=embedder,
        completion=mock_completion,
        vector_store=vector_store,
        publisher=mock_publisher,
    )


@pytest.fixture
def manager(services):
    return services.documents


@pytest.fixture
def make_processed_document(manager, admin_id, user_id):
    """
    Factory: upload → approve → process a text document and return its id.

        doc_id = await make_processed_document("pomp.txt", "De pomp lekt. ...")
    """
    async def _build(name: str, text: str) -> uuid.UUID:
        document = await manager.upload(text.encode("utf-8"), name, user_id)
        await manager.approve(document.id, admin_id)
        await manager.process(document.id, admin_id)
        return document.id

    return _build


# ─────────────────────────────────────────────────────────────────────────────
# JWT token factory
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def make_token(user_id):
    """
    Factory fixture: returns a function that builds signed test JWTs.

    Usage:
        token = make_token()
        token = make_token(role="ADMIN")
        token = make_token(expired=True)
    """
    from jose import jwt as jose_jwt

    def _build(
        role:     str | None = "USER",
        sub:      str | None = None,
        expired:  bool = False,
        audience: str = TEST_AUDIENCE,
        secret:   str = TEST_JWT_SECRET,
        no_sub:   bool = False,
    ) -> str:
        now = int(time.time())
        claims: dict = {
            "email": "test@csrental.example.com",
            "aud":   audience,
            "exp":   now - 60 if expired else now + 3600,
            "iat":   now,
            "role":  "authenticated",
        }
        if not no_sub:
            claims["sub"] = sub or user_id
        if role is not None:
            claims["app_metadata"] = {"role": role}
        return jose_jwt.encode(claims, secret, algorithm="HS256")

    return _build


@pytest.fixture
def user_headers(make_token) -> dict:
    return {"Authorization": f"Bearer {make_token()}"}


@pytest.fixture
def admin_headers(make_token, admin_id) -> dict:
    return {"Authorization": f"Bearer {make_token(role='ADMIN', sub=admin_id)}"}


# ─────────────────────────────────────────────────────────────────────────────
# FastAPI test client with the service graph overridden
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def app(test_settings, services):
    """
    App built with test settings. get_services → the fixture graph
    (SQLite file DB, fake storage, fake embeddings, mocked completion).
    The lifespan does not run under ASGITransport.
    """
    from assistant.api.deps import get_services
    from assistant.main import create_app

    application = create_app(test_settings)
    application.dependency_overrides[get_services] = lambda: services
    yield application
    application.dependency_overrides.clear()


@pytest_asyncio.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP test client; httpx >= 0.28 needs an explicit ASGITransport."""
    from httpx import ASGITransport
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
