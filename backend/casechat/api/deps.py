"""Shared FastAPI dependencies: caller identity, DB session factory, model router."""

import logging
from dataclasses import dataclass
from functools import lru_cache

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..core.security import verify_access_token
from ..db.base import get_session_maker
from ..llm.resilience import ResilientChat
from ..llm.router import ModelRouter

logger = logging.getLogger(__name__)

# Tokens are issued by the login service; tokenUrl is only used by the docs UI.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="api/v1/auth/token")

ADMIN_ROLE = "admin"
STUDENT_ROLE = "student"


@dataclass(frozen=True)
class Principal:
    """The authenticated caller."""
    subject: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


async def get_current_principal(token: str = Depends(oauth2_scheme)) -> Principal:
    """Decode the bearer token into a Principal."""
    payload = verify_access_token(token)
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    subject = payload.get("sub")
    if not subject:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return Principal(subject=str(subject), role=str(payload.get("role") or STUDENT_ROLE))


async def require_admin(principal: Principal = Depends(get_current_principal)) -> Principal:
    if not principal.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Administrator role required",
        )
    return principal


def ensure_self_or_admin(principal: Principal, student_id: str) -> None:
    """Students may only act on their own records."""
    if principal.is_admin or principal.subject == str(student_id):
        return
    logger.warning("Principal %s denied access to student %s", principal.subject, student_id)
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="Not allowed to access another student's chats",
    )


def get_session_factory() -> async_sessionmaker:
    """Session factory for work that outlives the request (background tasks)."""
    return get_session_maker()


@lru_cache
def get_model_router() -> ModelRouter:
    return ModelRouter(get_session_maker())


def get_resilient_chat(router: ModelRouter = Depends(get_model_router)) -> ResilientChat:
    return ResilientChat(router)
