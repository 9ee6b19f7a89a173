"""
Test configuration and fixtures.
Uses SQLite in-memory for fast tests. Mocks all external services.
"""
import uuid
from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from portal.config import Settings
from portal.database import Base, get_db
from portal.dependencies import get_current_user, get_n8n
from portal.models import (
    Asset,
    Audience,
    Campaign,
    CampaignAsset,
    CampaignAudience,
    CampaignStatusUpdate,
)
from portal.schemas.auth import CurrentUser
from portal.services.n8n_service import N8NService
from portal.services.status_store import StatusStore


# Register JSONB as JSON for SQLite compatibility in tests
@compiles(JSONB, "sqlite")
def _compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"


BASE_TIME = datetime(2025, 1, 1, 9, 0, 0)


@pytest.fixture
def engine():
    """In-memory SQLite engine shared by every session of one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def store(db):
    return StatusStore(db)


@pytest.fixture
def settings():
    """Settings with every webhook configured."""
    return Settings(
        database_url="sqlite://",
        n8n_campaign_webhook_url="https://n8n.test/webhook/campaign",
        n8n_campaign_webhook_user="campaign-user",
        n8n_campaign_webhook_pass="campaign-pass",
        n8n_sync_webhook_url="https://n8n.test/webhook/sync",
        n8n_webhook_username="sync-user",
        n8n_webhook_password="sync-pass",
        n8n_broadcast_webhook_url="https://n8n.test/webhook/broadcast",
        n8n_notes_webhook_url="https://n8n.test/webhook/notes",
        n8n_notes_webhook_user="notes-user",
        n8n_notes_webhook_pass="notes-pass",
        supabase_jwt_secret="test-jwt-secret",
        summary_rate_limit_hours=24,
    )


@pytest.fixture
def n8n(settings):
    return N8NService(settings)


@pytest.fixture
def user():
    return CurrentUser(id=str(uuid.uuid4()), email="operator@example.com", role="authenticated")


@pytest.fixture
def client(session_factory, n8n, user):
    """TestClient on the real app with the test database and a signed-in caller."""
    from portal.main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_n8n] = lambda: n8n
    app.dependency_overrides[get_current_user] = lambda: user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


# ===== FACTORIES =====


@pytest.fixture
def make_campaign(db):
    def _make(status="content_drafted", updated_at=BASE_TIME, **fields):
        campaign = Campaign(
            id=fields.pop("id", str(uuid.uuid4())),
            status=status,
            created_at=fields.pop("created_at", updated_at),
            updated_at=updated_at,
            **fields,
        )
        db.add(campaign)
        db.commit()
        return campaign.id
    return _make


@pytest.fixture
def make_audience(db):
    def _make(**fields):
        audience = Audience(id=fields.pop("id", str(uuid.uuid4())), **fields)
        db.add(audience)
        db.commit()
        return audience.id
    return _make


@pytest.fixture
def make_row(db):
    """campaign_audience row with generated content."""
    def _make(campaign_id, audience_id, content="Hello!", updated_at=BASE_TIME, **fields):
        row = CampaignAudience(
            campaign_id=campaign_id,
            audience_id=audience_id,
            broadcast_content=content,
            target_status=fields.pop("target_status", "pending"),
            created_at=fields.pop("created_at", updated_at),
            updated_at=updated_at,
            **fields,
        )
        db.add(row)
        db.commit()
        return row.id
    return _make


@pytest.fixture
def make_update(db):
    """campaign_status_updates record."""
    def _make(campaign_id, agent_name="guardrails", status="completed", message=None,
              updated_at=BASE_TIME, **fields):
        update = CampaignStatusUpdate(
            campaign_id=campaign_id,
            agent_name=agent_name,
            status=status,
            message=message,
            created_at=fields.pop("created_at", updated_at),
            updated_at=updated_at,
            **fields,
        )
        db.add(update)
        db.commit()
        return update.id
    return _make


@pytest.fixture
def make_image(db):
    def _make(campaign_id, media_url, usage_type="primary_visual", type="image"):
        asset = Asset(id=str(uuid.uuid4()), type=type, media_url=media_url, usage_type=usage_type)
        db.add(asset)
        db.add(CampaignAsset(campaign_id=campaign_id, asset_id=asset.id))
        db.commit()
        return asset.id
    return _make


@pytest.fixture
def drafted_campaign(make_campaign, make_audience, make_row):
    """A drafted campaign with three recipients A, B, C."""
    campaign_id = make_campaign(
        name="Ramadan Promo",
        objective="Drive visits",
        matchmaker_strategy={"tags": ["promo", "ramadan"]},
        meta={"origin_raw_admin_notes": "promo notes", "matchmaker_result": {"total_matched": 3}},
    )
    a = make_audience(full_name="Ani", wa_opt_in=True, phone_e164="+6281111111")
    b = make_audience(full_name="Budi", telegram_username="budi", source_contact_id="tg-2")
    c = make_audience(full_name="Citra", wa_opt_in=True, phone_e164="+6283333333")
    for audience_id in (a, b, c):
        make_row(campaign_id, audience_id, content=f"Hi {audience_id}", meta={"guardrails": {"tag": "passed"}})
    return {"campaign_id": campaign_id, "a": a, "b": b, "c": c}


