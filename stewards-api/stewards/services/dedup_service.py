"""Claim provider message ids so redelivered webhooks are handled once."""

from typing import Optional

import redis
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from stewards.config import settings
from stewards.logging_config import get_logger
from stewards.models import ProcessedMessage

logger = get_logger("dedup_service")

_dedup_redis_client = None
_dedup_redis_url = None


def _dedup_key(message_id: str) -> str:
    return f"stewards:dedup:{message_id}"


def get_dedup_redis():
    global _dedup_redis_client, _dedup_redis_url

    if settings.session_backend != "redis":
        return None

    if _dedup_redis_client is None or _dedup_redis_url != settings.redis_url:
        _dedup_redis_url = settings.redis_url
        _dedup_redis_client = redis.Redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_connect_timeout=settings.redis_socket_timeout_seconds,
            socket_timeout=settings.redis_socket_timeout_seconds,
        )
    return _dedup_redis_client


def is_duplicate_message(db: Session, message_id: Optional[str], redis_client=None) -> bool:
    """Claim message_id; True when it was already claimed. Messages without an id are never duplicates."""
    if not message_id:
        return False

    redis_client = redis_client or get_dedup_redis()
    if redis_client is not None:
        try:
            was_set = redis_client.set(_dedup_key(message_id), "1", ex=settings.dedup_ttl_seconds, nx=True)
            if not was_set:
                logger.info("Duplicate message_id (redis)", extra={"context": {"message_id": message_id}})
                return True
        except redis.RedisError as e:
            logger.warning(f"Dedup redis unavailable, falling back to DB: {e}")

    # Durable claim survives restarts and redis flushes.
    try:
        db.add(ProcessedMessage(message_id=message_id))
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info("Duplicate message_id (DB)", extra={"context": {"message_id": message_id}})
        return True
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning(
            "DB dedup claim failed, processing without durable claim",
            extra={"context": {"message_id": message_id, "error": str(e)}},
        )
    return False


def release_message_claim(db: Session, message_id: Optional[str], redis_client=None) -> None:
    """Drop a claim after a failed handling so the provider's retry is processed."""
    if not message_id:
        return

    redis_client = redis_client or get_dedup_redis()
    if redis_client is not None:
        try:
            redis_client.delete(_dedup_key(message_id))
        except redis.RedisError as e:
            logger.warning(f"Dedup redis release failed: {e}")

    try:
        db.rollback()
        db.query(ProcessedMessage).filter(ProcessedMessage.message_id == message_id).delete()
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning(
            "DB dedup release failed",
            extra={"context": {"message_id": message_id, "error": str(e)}},
        )
