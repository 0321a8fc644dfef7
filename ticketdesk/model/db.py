from sqlalchemy.orm import declarative_base
from sqlalchemy import (
    Column,
    Integer,
    String,
    Float,
    Boolean,
    Text,
)
from sqlalchemy.ext.asyncio import AsyncConnection


Base = declarative_base()


# ----------------------------
# ORM models
# ----------------------------
class Signup(Base):
    __tablename__ = "signups"
    number = Column(Integer, primary_key=True, autoincrement=False)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False, unique=True)  # lower-cased
    phone = Column(String, nullable=False, unique=True)  # digits only
    created_at = Column(Float, nullable=False)


class Ticket(Base):
    __tablename__ = "tickets"
    id = Column(String, primary_key=True)
    email = Column(String, nullable=False)
    ticket_code = Column(String, nullable=False, unique=True)
    qr = Column(Text, nullable=False)  # data:image/png;base64,...
    paid = Column(Boolean, nullable=False, default=True)

    # idempotency key for webhook replays
    session_id = Column(String, nullable=False, unique=True)
    created_at = Column(Float, nullable=False)


async def create_schema(conn: AsyncConnection) -> None:
    await conn.run_sync(Base.metadata.create_all)
