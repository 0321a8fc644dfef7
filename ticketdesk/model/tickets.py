"""
Ticket issuance.

A ticket is created exactly once per payment session. The payment provider
may deliver the same confirmation more than once, and two deliveries may race
each other; the unique constraint on `tickets.session_id` decides the winner
and the loser returns the winner's row instead of failing.
"""
from __future__ import annotations
import secrets
import uuid
from typing import TYPE_CHECKING, Optional, Tuple

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import IssuanceFailed, NotFound, NotPaid
from ..helpers import now_ts
from ..infra.sql import Gated
from ..qr import qr_data_url
from .db import Ticket

if TYPE_CHECKING:
    from ..payments import PaymentAdapter

log = structlog.get_logger(__name__)


def new_ticket_code() -> str:
    # 128 random bits
    return f"TCK-{secrets.token_hex(16).upper()}"


async def _by_session(db: AsyncSession, session_id: str) -> Optional[Ticket]:
    result = await db.execute(
        select(Ticket).where(Ticket.session_id == session_id)
    )
    return result.scalars().first()


async def get_ticket(
    db: AsyncSession, gated: Gated, session_id: str
) -> Optional[Ticket]:
    async with gated():
        async with db.begin():
            return await _by_session(db, session_id)


async def count_tickets(db: AsyncSession) -> int:
    """Must be called inside an open transaction."""
    return int((await db.execute(
        select(func.count()).select_from(Ticket)
    )).scalar_one())


async def issue_ticket(
    db: AsyncSession, gated: Gated, session_id: str, email: str
) -> Tuple[Ticket, bool]:
    """
    Returns (ticket, created). `created` is False when the ticket already
    existed for this payment session, either from an earlier delivery or from
    a concurrent one that committed first.
    """
    try:
        async with gated():
            async with db.begin():
                existing = await _by_session(db, session_id)
                if existing is not None:
                    log.info("webhook_replay", session_id=session_id,
                             ticket_code=existing.ticket_code)
                    return existing, False

                code = new_ticket_code()
                ticket = Ticket(
                    id=uuid.uuid4().hex,
                    email=email,
                    ticket_code=code,
                    qr=qr_data_url(code),
                    paid=True,
                    session_id=session_id,
                    created_at=now_ts(),
                )
                db.add(ticket)
    except IntegrityError:
        # lost the race against a concurrent delivery; begin() rolled back
        log.info("ticket_insert_conflict", session_id=session_id)
        try:
            await db.rollback()
            winner = await get_ticket(db, gated, session_id)
        except SQLAlchemyError as e:
            raise IssuanceFailed(str(e)) from e
        if winner is None:
            raise IssuanceFailed(
                f"conflict on insert but no ticket for {session_id}"
            )
        return winner, False
    except SQLAlchemyError as e:
        raise IssuanceFailed(str(e)) from e

    log.info("ticket_issued", session_id=session_id, email=email,
             ticket_code=ticket.ticket_code)
    return ticket, True


async def lookup_ticket(
    db: AsyncSession, gated: Gated, gateway: "PaymentAdapter",
    session_id: str,
) -> Ticket:
    """
    Ticket for the success page. The payment state is asked from the gateway
    on every call; a session the provider does not report as paid gets no
    ticket even if one was stored.
    """
    session = await gateway.retrieve_session(session_id)
    if not session.paid:
        raise NotPaid("payment not completed")
    ticket = await get_ticket(db, gated, session_id)
    if ticket is None:
        # paid, but the webhook has not been processed yet
        raise NotFound("ticket not issued yet")
    return ticket
