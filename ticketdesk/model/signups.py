from __future__ import annotations
from typing import Optional

import structlog
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import (
    CapacityExceeded, Duplicate, TicketingError, ValidationFailed
)
from ..helpers import (
    is_valid_email, is_valid_name, normalize_email, normalize_phone, now_ts
)
from ..infra.sql import Gated
from .capacity import count_used
from .db import Signup

log = structlog.get_logger(__name__)

# concurrent submissions may compute the same max(number) + 1
MAX_NUMBER_ATTEMPTS = 5


def validate_signup(
    name: Optional[str], email: Optional[str], phone: Optional[str]
) -> tuple[str, str, str]:
    """Returns the cleaned (name, email, phone) or raises ValidationFailed."""
    if not is_valid_name(name):
        raise ValidationFailed(
            "name must be 2-30 characters, letters and spaces only"
        )
    if not is_valid_email(email):
        raise ValidationFailed("email is required and must be valid")
    digits = normalize_phone(phone)
    if digits is None:
        raise ValidationFailed("phone must contain 9-15 digits")
    return " ".join(name.split()), normalize_email(email), digits


async def _find_duplicate(
    db: AsyncSession, email: str, phone: str
) -> Optional[Signup]:
    result = await db.execute(
        select(Signup).where(or_(Signup.email == email, Signup.phone == phone))
    )
    return result.scalars().first()


async def register_signup(
    db: AsyncSession, gated: Gated,
    name: Optional[str], email: Optional[str], phone: Optional[str],
    limit: int,
) -> Signup:
    name, email, phone = validate_signup(name, email, phone)

    for attempt in range(MAX_NUMBER_ATTEMPTS):
        try:
            async with gated():
                async with db.begin():
                    if await _find_duplicate(db, email, phone) is not None:
                        raise Duplicate("email or phone already registered")
                    if await count_used(db) >= limit:
                        raise CapacityExceeded("limit reached")

                    top = (await db.execute(
                        select(func.max(Signup.number))
                    )).scalar_one()
                    signup = Signup(
                        number=(top or 0) + 1,
                        name=name,
                        email=email,
                        phone=phone,
                        created_at=now_ts(),
                    )
                    db.add(signup)
        except IntegrityError:
            # either a concurrent signup with the same email/phone, or one
            # that took our number
            await db.rollback()
            async with gated():
                async with db.begin():
                    dup = await _find_duplicate(db, email, phone)
            if dup is not None:
                raise Duplicate("email or phone already registered")
            log.info("signup_number_conflict", attempt=attempt + 1)
            continue

        log.info("signup_registered", number=signup.number, email=email)
        return signup

    raise TicketingError("could not assign a signup number")
