from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from pulse.api.deps import get_current_user
from pulse.core.errors import success_response
from pulse.db.session import get_db
from pulse.models import User
from pulse.schemas.users import UserPublic, UserSearchResult

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/me")
def me(current_user: User = Depends(get_current_user)):
    return success_response(UserPublic.model_validate(current_user).to_json())


@router.get("/search")
def search_users(
    query: str = Query(min_length=1, max_length=64),
    limit: int = Query(default=20, ge=1, le=50),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    pattern = f"%{query.lower()}%"
    rows = db.scalars(
        select(User)
        .where(
            User.id != current_user.id,
            or_(func.lower(User.username).like(pattern), func.lower(User.display_name).like(pattern)),
        )
        .order_by(User.username.asc())
        .limit(limit)
    ).all()
    body = UserSearchResult(users=[UserPublic.model_validate(row) for row in rows])
    return success_response(body.to_json())
