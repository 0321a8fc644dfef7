from __future__ import annotations
from typing import NamedTuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import CapacityExceeded
from ..infra.sql import Gated
from .db import Signup
from .tickets import count_tickets


class Capacity(NamedTuple):
    count: int
    limit: int
    sold_out: bool


async def count_signups(db: AsyncSession) -> int:
    """Must be called inside an open transaction."""
    return int((await db.execute(
        select(func.count()).select_from(Signup)
    )).scalar_one())


async def count_used(db: AsyncSession) -> int:
    # signups and paid tickets draw from the same venue
    return await count_signups(db) + await count_tickets(db)


async def check_remaining_capacity(
    db: AsyncSession, gated: Gated, limit: int
) -> Capacity:
    async with gated():
        async with db.begin():
            count = await count_used(db)
    return Capacity(count=count, limit=limit, sold_out=count >= limit)


async def ensure_capacity(
    db: AsyncSession, gated: Gated, limit: int
) -> Capacity:
    """
    Re-read the count and refuse when the ceiling is reached.

    Not atomic with ticket issuance: two buyers racing for the last slot can
    both get a checkout session, and both are issued a ticket once they have
    paid.
    """
    cap = await check_remaining_capacity(db, gated, limit)
    if cap.sold_out:
        raise CapacityExceeded(
            f"sold out ({cap.count}/{cap.limit})",
            code="SOLD_OUT", status_code=409,
        )
    return cap
