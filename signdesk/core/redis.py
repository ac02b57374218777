## signdesk/core/redis.py

# Third party imports
import redis

# Local imports
from signdesk.core.config import settings


def create_redis_client() -> redis.Redis:
    """
    Build a redis client for the rate limit store
    """
    return redis.Redis.from_url(settings.rate_limit_store, decode_responses=True)


# Synchronous redis connection
def get_redis_db():
    """
    Method for obtaining redis session object
    """
    redis_session = create_redis_client()
    try:
        yield redis_session
    finally:
        redis_session.close()
