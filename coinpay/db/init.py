import certifi
from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from coinpay.core.config import get_settings
from coinpay.core.logging import get_logger
from coinpay.models import AuditLog, CreditTransaction, FailedJob, RechargeOrder, User

log = get_logger(__name__)

DOCUMENT_MODELS = [User, RechargeOrder, CreditTransaction, AuditLog, FailedJob]

_client: AsyncIOMotorClient | None = None


def _use_tls(uri: str) -> bool:
    """Atlas (mongodb+srv) or explicit tls=true; plain mongodb:// stays plaintext for local and CI."""
    return uri.startswith("mongodb+srv://") or "tls=true" in uri.lower()


async def init_db(database: AsyncIOMotorDatabase | None = None) -> None:
    """Register the documents (and build their indexes) on `database`, or on the configured one."""
    global _client
    if database is None:
        settings = get_settings()
        options = {"tlsCAFile": certifi.where()} if _use_tls(settings.mongodb_uri) else {}
        _client = AsyncIOMotorClient(settings.mongodb_uri, tz_aware=False, **options)
        database = _client[settings.mongodb_db_name]
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)
    log.info("db_initialised", database=database.name)


def close_db() -> None:
    global _client
    if _client is not None:
        _client.close()
        _client = None
