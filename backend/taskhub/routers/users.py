import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub.core.database import get_db
from taskhub.core.errors import NotFound, UniquenessViolation, envelope
from taskhub.models.user import User
from taskhub.schemas.user import UserWrite
from taskhub.services.query import fetch_document, parse_list_params, run_query

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/users",
    tags=["users"],
    responses={404: {"description": "Not found"}},
)


async def _commit_unique(db: AsyncSession, email: str):
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        logger.info("Rejected duplicate email %s", email)
        raise UniquenessViolation() from None


@router.get("")
async def list_users(
    where: Optional[str] = None,
    sort: Optional[str] = None,
    select: Optional[str] = None,
    skip: Optional[str] = None,
    limit: Optional[str] = None,
    count: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
):
    plan = parse_list_params(User, where, sort, select, skip, limit, count)
    return envelope(200, "OK", await run_query(db, plan))


@router.post("")
async def create_user(user_in: UserWrite, db: AsyncSession = Depends(get_db)):
    user = User(**user_in.column_values())
    db.add(user)
    await _commit_unique(db, user_in.email)
    return envelope(201, "User created", user.to_document())


@router.get("/{user_id}")
async def get_user(
    user_id: str,
    select: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    return envelope(200, "OK", await fetch_document(db, User, user_id, select))


@router.put("/{user_id}")
async def update_user(user_id: str, user_in: UserWrite, db: AsyncSession = Depends(get_db)):
    """Full replacement. pendingTasks is stored exactly as sent."""
    values = user_in.column_values()
    user = await db.get(User, user_id)
    if user is None:
        raise NotFound("User not found")
    for attr, value in values.items():
        setattr(user, attr, value)
    await _commit_unique(db, user_in.email)
    return envelope(200, "User updated", user.to_document())


@router.delete("/{user_id}")
async def delete_user(user_id: str, db: AsyncSession = Depends(get_db)):
    user = await db.get(User, user_id)
    if user is None:
        raise NotFound("User not found")
    document = user.to_document()
    await db.delete(user)
    await db.commit()
    return envelope(200, "User deleted", document)
