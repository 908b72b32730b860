from __future__ import annotations

import pytest
import pytest_asyncio

from services.catalog import models as catalog_models
from services.fulfillment import models as fulfillment_models
from services.inventory import models as inventory_models
from services.orders import models as orders_models
from services.payments import models as payments_models
from tests.helpers import FakePublisher, make_database


@pytest_asyncio.fixture
async def orders_db(tmp_path):
    database = await make_database(tmp_path, "orders", orders_models.Base.metadata)
    yield database
    await database.dispose()


@pytest_asyncio.fixture
async def inventory_db(tmp_path):
    database = await make_database(tmp_path, "inventory", inventory_models.Base.metadata)
    yield database
    await database.dispose()


@pytest_asyncio.fixture
async def payments_db(tmp_path):
    database = await make_database(tmp_path, "payments", payments_models.Base.metadata)
    yield database
    await database.dispose()


@pytest_asyncio.fixture
async def catalog_db(tmp_path):
    database = await make_database(tmp_path, "catalog", catalog_models.Base.metadata)
    yield database
    await database.dispose()


@pytest_asyncio.fixture
async def fulfillment_db(tmp_path):
    database = await make_database(tmp_path, "fulfillment", fulfillment_models.Base.metadata)
    yield database
    await database.dispose()


@pytest.fixture
def publisher() -> FakePublisher:
    return FakePublisher()
