# app/db/redis.py
import redis


def get_redis_client(redis_url: str) -> redis.Redis:
    """
    Creates and returns a new Redis client instance.

    Connections are opened lazily, so building the client never blocks startup
    when Redis is down; publishing will fail and be logged instead.
    """
    return redis.from_url(redis_url, decode_responses=True, socket_timeout=2)
