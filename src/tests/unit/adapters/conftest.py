"""Fixtures for Docker driver tests."""

from unittest.mock import AsyncMock

import pytest

from holohost.adapters.driver import DockerContainerDriver
from holohost.config import DockerConfig
from holohost.infra import ContainerAPI, ImageAPI, NetworkAPI, SystemAPI


@pytest.fixture
def mock_container_api() -> AsyncMock:
    """Mock ContainerAPI for testing."""
    api = AsyncMock(spec=ContainerAPI)
    api.list = AsyncMock(return_value=[])
    api.inspect = AsyncMock(return_value=None)
    api.create = AsyncMock(return_value="c0ffee")
    api.start = AsyncMock()
    api.stop = AsyncMock()
    api.restart = AsyncMock()
    api.remove = AsyncMock()
    api.stats = AsyncMock(return_value={})
    api.logs = AsyncMock()
    return api


@pytest.fixture
def mock_network_api() -> AsyncMock:
    api = AsyncMock(spec=NetworkAPI)
    api.exists = AsyncMock(return_value=True)
    api.create = AsyncMock()
    return api


@pytest.fixture
def mock_image_api() -> AsyncMock:
    api = AsyncMock(spec=ImageAPI)
    api.ensure = AsyncMock()
    return api


@pytest.fixture
def mock_system_api() -> AsyncMock:
    api = AsyncMock(spec=SystemAPI)
    api.ping = AsyncMock()
    return api


@pytest.fixture
def docker_config() -> DockerConfig:
    return DockerConfig(
        host="unix:///var/run/docker.sock",
        port_range_start=3001,
        port_range_end=3010,
        api_timeout=1.0,
    )


@pytest.fixture
def docker_driver(
    docker_config: DockerConfig,
    mock_container_api: AsyncMock,
    mock_network_api: AsyncMock,
    mock_image_api: AsyncMock,
    mock_system_api: AsyncMock,
) -> DockerContainerDriver:
    """DockerContainerDriver with mock API wrappers."""
    return DockerContainerDriver(
        docker_config,
        containers=mock_container_api,
        networks=mock_network_api,
        images=mock_image_api,
        system=mock_system_api,
    )
