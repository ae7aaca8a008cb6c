from collections.abc import Generator
from unittest.mock import MagicMock, patch

import pytest

from dbstage.core.pool import PoolRegistry
from tests.utils.fake_driver import FakeConnection

CFG = {"host": "localhost", "user": "u", "password": "p", "database": "db"}


@pytest.fixture
def fake_conn() -> FakeConnection:
    return FakeConnection()


@pytest.fixture
def mock_connect(fake_conn: FakeConnection) -> Generator[MagicMock, None, None]:
    with patch("dbstage.core.pool.manager.connect", return_value=fake_conn) as m:
        yield m


@pytest.fixture
def registry(mock_connect: MagicMock) -> Generator[PoolRegistry, None, None]:
    reg = PoolRegistry(max_workers=2)
    yield reg
    reg.curtains()
