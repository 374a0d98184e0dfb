"""
Chain Repository - chains and their append-only event log
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.orm import selectinload, sessionmaker

from database import session_scope
from models import Chain, ChainEvent, ChainStatus

logger = logging.getLogger(__name__)


class ChainRepository:
    """
    Repository for Chain rows.

    Reads return detached snapshots with events loaded.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    # =========================================================================
    # READ OPERATIONS
    # =========================================================================

    def get(self, chain_id: str) -> Optional[Chain]:
        with session_scope(self.session_factory) as db:
            return db.query(Chain).options(selectinload(Chain.events)).filter(Chain.id == chain_id).first()

    def events(self, chain_id: str, event_type: Optional[str] = None) -> List[ChainEvent]:
        """Events in append order, optionally of one type"""
        with session_scope(self.session_factory) as db:
            query = db.query(ChainEvent).filter(ChainEvent.chain_id == chain_id)
            if event_type:
                query = query.filter(ChainEvent.type == event_type)
            return query.order_by(ChainEvent.id).all()

    def in_status(self, *statuses: ChainStatus) -> List[Chain]:
        with session_scope(self.session_factory) as db:
            return db.query(Chain).filter(
                Chain.status.in_([s.value for s in statuses]),
            ).order_by(Chain.created_at).all()

    # =========================================================================
    # WRITE OPERATIONS
    # =========================================================================

    def create(
        self,
        chain_id: str,
        question: str,
        participants: Sequence[str],
        created_at: datetime,
        scheduled_at: datetime,
    ) -> Chain:
        with session_scope(self.session_factory) as db:
            chain = Chain(
                id=chain_id,
                question=question,
                participants=list(participants),
                status=ChainStatus.SCHEDULED.value,
                recipients=[],
                created_at=created_at,
                scheduled_at=scheduled_at,
            )
            db.add(chain)
            db.add(ChainEvent(
                chain_id=chain_id,
                type="scheduled",
                at=created_at,
                payload={"scheduled_at": scheduled_at.isoformat()},
            ))
        return chain

    def append_event(
        self,
        chain_id: str,
        event_type: str,
        at: datetime,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        with session_scope(self.session_factory) as db:
            db.add(ChainEvent(chain_id=chain_id, type=event_type, at=at, payload=payload or {}))

    def transition(
        self,
        chain_id: str,
        from_status: ChainStatus,
        to_status: ChainStatus,
        values: Optional[Dict[str, Any]] = None,
        event: Optional[ChainEvent] = None,
    ) -> bool:
        """
        Move status forward if it is still from_status.

        Returns:
            True if this call made the transition
        """
        updates = {"status": to_status.value}
        updates.update(values or {})
        with session_scope(self.session_factory) as db:
            moved = db.query(Chain).filter(
                Chain.id == chain_id,
                Chain.status == from_status.value,
            ).update(updates, synchronize_session=False)
            if moved and event is not None:
                event.chain_id = chain_id
                db.add(event)
        if moved:
            logger.debug(f"[CHAIN] {chain_id} {from_status.value} -> {to_status.value}")
        return bool(moved)

    def set_recipients(self, chain_id: str, mode: str, recipients: Sequence[str]) -> None:
        with session_scope(self.session_factory) as db:
            db.query(Chain).filter(Chain.id == chain_id).update(
                {"mode": mode, "recipients": list(recipients)},
                synchronize_session=False,
            )
