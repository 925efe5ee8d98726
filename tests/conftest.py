import pytest
from unittest.mock import Mock, AsyncMock

from gallerypro.api.db.database import init_db, close_db, get_db
from gallerypro.api.services.config_service import ConfigService
from gallerypro.api.services.context_builder import sample_media
from gallerypro.rules.models import EvaluationContext, GlobalSettings, ProcessedMediaItem, MediaItem


FIXED_NOW = "2024-06-15T12:00:00+00:00"  # a Saturday


@pytest.fixture
async def test_db(tmp_path, monkeypatch):
    """Create a test database."""
    monkeypatch.setenv("DB_PATH", str(tmp_path / "db" / "test.db"))

    await init_db()
    db = await get_db()

    yield db

    await close_db()


@pytest.fixture
def client(tmp_path, monkeypatch):
    """Create test client backed by a temporary database and config file."""
    from fastapi.testclient import TestClient
    from gallerypro.api.main import app

    monkeypatch.setenv("DB_PATH", str(tmp_path / "db" / "api.db"))
    monkeypatch.setenv("CONFIG_PATH", str(tmp_path / "config" / "config.json"))

    with TestClient(app) as c:
        yield c


@pytest.fixture
def mock_config():
    """Create a mock configuration service."""
    config = Mock(spec=ConfigService)
    config.load_config = AsyncMock()
    config.save_config = AsyncMock()
    config.update_config = AsyncMock()
    config.get = Mock(return_value=None)
    config.get_all = Mock(return_value={})

    return config


@pytest.fixture
def media_dicts():
    """The five sample gallery items as raw dicts."""
    return sample_media()


@pytest.fixture
def make_context(media_dicts):
    """Build an EvaluationContext from camelCase overrides."""
    def _make(**overrides):
        data = {"media": media_dicts, "time": {"now": FIXED_NOW}}
        data.update(overrides)
        return EvaluationContext.from_dict(data)
    return _make


@pytest.fixture
def processed_media(media_dicts):
    """Sample media lifted into engine state."""
    return [ProcessedMediaItem.lift(MediaItem.from_dict(m, i)) for i, m in enumerate(media_dicts)]


@pytest.fixture
def settings():
    return GlobalSettings()


@pytest.fixture
def mobile_video_rule():
    """Hide videos for mobile visitors."""
    return {
        "id": "rule_mobile",
        "name": "Hide videos on mobile",
        "priority": 1,
        "status": "active",
        "conditions": {
            "operator": "AND",
            "conditions": [
                {"type": "device", "field": "type", "operator": "equals", "value": "mobile"},
            ],
        },
        "actions": [
            {"type": "filter", "mode": "exclude", "matchType": "media_tag", "matchValues": ["video"]},
        ],
    }
