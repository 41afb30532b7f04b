import redis

from Loot_Ledger.loot_shared import errors, config


def create_ledger_client(host: str = config.REDIS_HOST, port: int = config.REDIS_PORT,
                         db: int = config.REDIS_LEDGER_DB) -> redis.Redis:
    r = redis.Redis(
        host=host,
        port=port,
        db=db,
        decode_responses=False,
        socket_connect_timeout=config.REDIS_SOCKET_TIMEOUT,
        socket_timeout=config.REDIS_SOCKET_TIMEOUT,
    )
    try:
        r.ping()
    except redis.exceptions.ConnectionError:
        raise errors.LedgerUnavailableError(f"Cannot connect to Redis at {host}:{port}")
    return r


def create_ledger_client_from_url(url: str) -> redis.Redis:
    r = redis.Redis.from_url(
        url,
        decode_responses=False,
        socket_connect_timeout=config.REDIS_SOCKET_TIMEOUT,
        socket_timeout=config.REDIS_SOCKET_TIMEOUT,
    )
    try:
        r.ping()
    except redis.exceptions.ConnectionError:
        raise errors.LedgerUnavailableError(f"Cannot connect to Redis at {url}")
    return r


def health_check(client: redis.Redis) -> bool:
    try:
        return bool(client.ping())
    except redis.exceptions.ConnectionError:
        return False


def close(client: redis.Redis) -> None:
    client.close()
