"""
Redis客户端模块

提供异步Redis连接的创建、关闭与健康检查。
客户端由应用生命周期显式创建并注入，不使用模块级全局实例。
"""
from __future__ import annotations

import logging
import time
from typing import Any

import redis.asyncio as redis
from redis.asyncio import Redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


def create_redis_client(redis_url: str) -> Redis:
    """
    创建异步Redis客户端

    使用连接池管理连接，首次命令时才真正建立连接

    Args:
        redis_url: Redis连接串

    Returns:
        Redis异步客户端实例
    """
    logger.info(f"初始化Redis连接: {redis_url}")
    return redis.from_url(
        redis_url,
        encoding="utf-8",
        decode_responses=True,
        socket_connect_timeout=5.0,
        socket_timeout=5.0,
    )


async def close_redis_client(client: Redis) -> None:
    """关闭Redis连接"""
    await client.close()
    logger.info("Redis连接已关闭")


async def check_redis_health(client: Redis) -> dict[str, Any]:
    """
    检查Redis健康状态

    Returns:
        健康状态字典，包含connected和latency_ms
    """
    try:
        start = time.time()
        await client.ping()
        latency_ms = (time.time() - start) * 1000

        return {
            "connected": True,
            "latency_ms": round(latency_ms, 2),
        }
    except RedisError as e:
        logger.warning(f"Redis健康检查失败: {e}")
        return {
            "connected": False,
            "error": str(e),
        }


__all__ = [
    "create_redis_client",
    "close_redis_client",
    "check_redis_health",
    "RedisError",
]
