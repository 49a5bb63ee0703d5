"""Tests for the database and Redis readiness checks."""

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from billing_sync.db.base import check_database
from billing_sync.db.redis import check_redis

pytestmark = pytest.mark.unit


@pytest.mark.asyncio
async def test_check_database(session_factory):
    assert await check_database(session_factory) is True


@pytest.mark.asyncio
async def test_check_database_uninitialized():
    assert await check_database() is False


@pytest.mark.asyncio
async def test_check_redis(redis_client):
    assert await check_redis(redis_client) is True


@pytest.mark.asyncio
async def test_check_redis_unreachable():
    class DownRedis:
        async def ping(self):
            raise RedisConnectionError("connection refused")

    assert await check_redis(DownRedis()) is False
