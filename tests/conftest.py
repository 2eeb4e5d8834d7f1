import copy
import pytest
import yaml
from unittest.mock import Mock
from fastapi.testclient import TestClient

from grant_pipeline.api.main import create_app
from grant_pipeline.models.manager import DEFAULT_CONFIG_PATH, ModelManager
from grant_pipeline.models.providers.base import ModelProvider, ModelResponse


@pytest.fixture
def packaged_config():
    with open(DEFAULT_CONFIG_PATH) as f:
        return yaml.safe_load(f)


@pytest.fixture
def write_config(tmp_path, packaged_config):
    """Write a copy of the packaged config with ``edit`` applied and return its path."""
    def _write(edit=None, name="config.yaml"):
        config = copy.deepcopy(packaged_config)
        if edit:
            edit(config)
        path = tmp_path / name
        path.write_text(yaml.safe_dump(config))
        return path
    return _write


@pytest.fixture
def provider():
    """Stand-in completion client; every configured provider name resolves to it."""
    mock = Mock(spec=ModelProvider)
    mock.chat.return_value = ModelResponse(content="Generated text", raw=None, meta={"provider": "mock"})
    mock.health_check.return_value = True
    return mock


@pytest.fixture
def manager_factory(provider):
    def _build(config_path=None):
        manager = ModelManager(config_path or DEFAULT_CONFIG_PATH)
        for name in manager.config["providers"]:
            manager._providers[name] = provider
        return manager
    return _build


@pytest.fixture
def manager(manager_factory):
    return manager_factory()


@pytest.fixture
def client(manager):
    with TestClient(create_app(manager)) as test_client:
        yield test_client
