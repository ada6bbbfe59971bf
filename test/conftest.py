from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from furniview import webapi

from support import FakeConverter, make_services


@pytest.fixture
def converter() -> FakeConverter:
    return FakeConverter(companions=("{stem}.bin",))


@pytest.fixture
def services(tmp_path: Path, converter: FakeConverter) -> webapi.Services:
    return make_services(tmp_path, converter)


@pytest_asyncio.fixture
async def client(services: webapi.Services):
    webapi.configure(services)
    await services.conversion.start()
    async with AsyncClient(transport=ASGITransport(app=webapi.app), base_url="http://test") as c:
        yield c
    await services.conversion.stop()
    webapi.configure(None)
