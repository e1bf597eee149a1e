"""Shared test fixtures."""

from collections.abc import Callable

import httpx
import pytest
from pydantic import SecretStr

from flipmap_gateway.config import Settings
from flipmap_gateway.navigation.requester import ExternalRequester

ORS_BASE_URL = "https://ors.example.test"
PHOTON_BASE_URL = "https://photon.example.test"

Handler = Callable[[httpx.Request], httpx.Response]


@pytest.fixture
def settings() -> Settings:
    """Create test settings pointing at fake upstream hosts."""
    return Settings(
        ors_api_key=SecretStr("test-ors-key"),
        ors_base_url=ORS_BASE_URL,
        ors_profile="driving-car",
        photon_base_url=PHOTON_BASE_URL,
        upstream_timeout_seconds=2.0,
    )


@pytest.fixture
def make_requester(settings: Settings) -> Callable[[Handler], ExternalRequester]:
    """Build an ExternalRequester whose HTTP calls are answered by ``handler``."""

    def factory(handler: Handler) -> ExternalRequester:
        return ExternalRequester(settings, transport=httpx.MockTransport(handler))

    return factory
