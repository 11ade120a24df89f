from .config import PROCESSED_CALLBACK_TTL
from .redis_client import redis_client


def _key(gateway: str, external_id: str) -> str:
    return f"payment-callback:{gateway}:{external_id}"


async def is_processed(gateway: str, external_id: str) -> bool:
    return bool(await redis_client.exists(_key(gateway, external_id)))


async def mark_processed(gateway: str, external_id: str):
    await redis_client.set(_key(gateway, external_id), "1", ex=PROCESSED_CALLBACK_TTL)
