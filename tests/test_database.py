from unittest.mock import AsyncMock, MagicMock

import pytest

from shared.database import check_db_connection


def engine_with(connection):
    engine = MagicMock()
    engine.connect.return_value.__aenter__ = AsyncMock(return_value=connection)
    engine.connect.return_value.__aexit__ = AsyncMock(return_value=False)
    return engine


@pytest.mark.asyncio
async def test_check_db_connection_ok():
    conn = MagicMock()
    conn.execute = AsyncMock()
    assert await check_db_connection(engine_with(conn)) is True
    conn.execute.assert_awaited_once()


@pytest.mark.asyncio
async def test_check_db_connection_unreachable():
    engine = MagicMock()
    engine.connect.return_value.__aenter__ = AsyncMock(side_effect=OSError("connection refused"))
    engine.connect.return_value.__aexit__ = AsyncMock(return_value=False)
    assert await check_db_connection(engine) is False
