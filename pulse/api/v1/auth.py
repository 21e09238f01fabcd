from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from pulse.core.errors import success_response
from pulse.core.rate_limit import enforce_auth_rate_limit
from pulse.db.session import get_db
from pulse.schemas.auth import AuthResponse, LoginRequest, RegisterRequest
from pulse.schemas.users import UserPublic
from pulse.services import auth_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"], dependencies=[Depends(enforce_auth_rate_limit)])


@router.post("/register")
def register(payload: RegisterRequest, db: Session = Depends(get_db)):
    logger.info("Register endpoint hit username=%s", payload.username)
    user, token = auth_service.register_user(db, payload)
    body = AuthResponse(user=UserPublic.model_validate(user), token=token)
    return success_response(body.to_json(), status_code=status.HTTP_201_CREATED)


@router.post("/login")
def login(payload: LoginRequest, db: Session = Depends(get_db)):
    logger.info("Login endpoint hit username=%s", payload.username)
    user, token = auth_service.authenticate_user(db, payload)
    body = AuthResponse(user=UserPublic.model_validate(user), token=token)
    return success_response(body.to_json())
