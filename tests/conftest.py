from __future__ import annotations

from datetime import datetime, timezone

import httpx
import pytest

from ossclient.common.config import Credentials, Settings, get_settings
from ossclient.infra.http.transport import HttpxTransport
from ossclient.infra.storage.oss_client import OSSStorageClient
from tests.services.fake_oss import FakeOSSService

FIXED_NOW = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

ACCESS_KEY_ID = "LTAI5tExampleKey"
ACCESS_KEY_SECRET = "ExampleSecret"
REGION = "cn-hangzhou"
BUCKET = "examplebucket"
ENDPOINT = "https://oss-cn-hangzhou.aliyuncs.com"


def make_settings(**overrides) -> Settings:
    values = {
        "OSS_ENDPOINT": ENDPOINT,
        "OSS_REGION": REGION,
        "OSS_BUCKET": BUCKET,
        "OSS_ACCESS_KEY_ID": ACCESS_KEY_ID,
        "OSS_ACCESS_KEY_SECRET": ACCESS_KEY_SECRET,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture(autouse=True)
def clear_settings_cache():
    get_settings.cache_clear()  # type: ignore[attr-defined]
    yield
    get_settings.cache_clear()  # type: ignore[attr-defined]


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(
        access_key_id=ACCESS_KEY_ID,
        access_key_secret=ACCESS_KEY_SECRET,
        region=REGION,
        endpoint=ENDPOINT,
    )


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def fake_oss() -> FakeOSSService:
    return FakeOSSService()


@pytest.fixture
def storage(settings, fake_oss, clock) -> OSSStorageClient:
    client = httpx.AsyncClient(transport=httpx.MockTransport(fake_oss.handle))
    return OSSStorageClient(
        settings=settings,
        transport=HttpxTransport(client=client, chunk_size=1024 * 1024),
        clock=clock,
    )
