"""
Server-side deduplication of client mutations.

Clients attach an ``Idempotency-Key`` header (the queued operation's UUID) to
every mutating request. The first request with a key runs and its response is
stored; later requests with the same key get the stored response back without
touching the data again. A key that comes back on a different request
(another entity, operation, target or user) is rejected with 422.
"""
from typing import Any, Callable, Optional, Tuple

import structlog
from fastapi import Header, HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models.models import SyncOperation, User


logger = structlog.get_logger(__name__)

MAX_KEY_LENGTH = 64


def idempotency_key(idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key")) -> Optional[str]:
    if idempotency_key is None:
        return None
    key = idempotency_key.strip()
    if not key or len(key) > MAX_KEY_LENGTH:
        raise HTTPException(status_code=400, detail="Invalid Idempotency-Key")
    return key


def find_processed(db: Session, key: Optional[str]) -> Optional[SyncOperation]:
    if not key:
        return None
    return db.query(SyncOperation).filter(SyncOperation.operation_id == key).first()


def _same_request(
    previous: SyncOperation,
    entity: str,
    operation_type: str,
    actor: Optional[User],
    entity_id: Optional[str],
) -> bool:
    if previous.entity != entity or previous.operation_type != operation_type:
        return False
    if previous.actor_id != (actor.id if actor else None):
        return False
    # Creates learn their entity id from the response
    return entity_id is None or str(previous.entity_id) == str(entity_id)


def _replay(
    previous: SyncOperation,
    key: str,
    entity: str,
    operation_type: str,
    actor: Optional[User],
    entity_id: Optional[str],
) -> Tuple[int, Any]:
    if not _same_request(previous, entity, operation_type, actor, entity_id):
        logger.warning(
            "idempotency_key_reused",
            operation_id=key,
            entity=entity,
            operation_type=operation_type,
            stored_entity=previous.entity,
            stored_operation_type=previous.operation_type,
        )
        raise HTTPException(status_code=422, detail="Idempotency-Key reused for a different request")
    logger.info("idempotent_replay", operation_id=key, entity=entity, operation_type=operation_type)
    return previous.status_code, previous.result


def run_idempotent(
    db: Session,
    key: Optional[str],
    *,
    entity: str,
    operation_type: str,
    actor: Optional[User],
    action: Callable[[], Tuple[int, Any]],
    entity_id: Optional[str] = None,
) -> Tuple[int, Any]:
    """
    Execute ``action`` at most once per key.

    ``action`` performs the mutation (without committing) and returns
    ``(status_code, body)``. The mutation and the ledger row are committed in
    the same transaction, so a crash cannot leave one without the other.
    """
    previous = find_processed(db, key)
    if previous is not None:
        return _replay(previous, key, entity, operation_type, actor, entity_id)

    status_code, body = action()
    if key:
        recorded_id = entity_id
        if recorded_id is None and isinstance(body, dict) and body.get("id"):
            recorded_id = str(body["id"])
        db.add(SyncOperation(
            operation_id=key,
            entity=entity,
            operation_type=operation_type,
            entity_id=recorded_id,
            actor_id=actor.id if actor else None,
            status_code=status_code,
            result=body,
        ))
    try:
        db.commit()
    except IntegrityError:
        # Two requests with the same key raced; the loser returns the winner's result
        db.rollback()
        previous = find_processed(db, key)
        if previous is None:
            raise
        return _replay(previous, key, entity, operation_type, actor, entity_id)
    return status_code, body
