import redis.asyncio as redis

from ..config.settings import RedisConfig, get_config


def get_redis_client(config: RedisConfig = None) -> redis.Redis:
    config = config or get_config().redis
    return redis.Redis(
        **config.get_connection_params(),
        decode_responses=True
    )
