"""FastAPI dependencies shared by the API routers."""

from typing import Annotated

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import user_id_var
from app.database import get_db
from app.services.auth import AuthenticatedUser, AuthVerifier, parse_bearer
from app.services.coach import CoachService
from app.services.coach_repository import CoachRepository, SqlCoachRepository

DbSession = Annotated[AsyncSession, Depends(get_db)]


def get_auth_verifier(request: Request) -> AuthVerifier:
    return request.app.state.auth_verifier


def get_coach_service(request: Request) -> CoachService:
    return request.app.state.coach_service


async def get_repository(db: DbSession) -> CoachRepository:
    return SqlCoachRepository(db)


async def get_current_user(
    verifier: Annotated[AuthVerifier, Depends(get_auth_verifier)],
    authorization: Annotated[str | None, Header()] = None,
) -> AuthenticatedUser:
    """Resolve the caller from the bearer token. Raises 401 when it cannot."""
    token = parse_bearer(authorization)
    user = await verifier.verify(token)
    user_id_var.set(str(user.id))
    return user


CurrentUser = Annotated[AuthenticatedUser, Depends(get_current_user)]
Repository = Annotated[CoachRepository, Depends(get_repository)]
Coach = Annotated[CoachService, Depends(get_coach_service)]
