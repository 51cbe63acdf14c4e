from typing import Generator, Optional

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session

from sentinel.core.cache import TTLCache
from sentinel.core.workflow import Actor
from sentinel.db.session import SessionLocal


def get_db() -> Generator:
    """Database session dependency."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_current_actor(
    user_id: Optional[str] = Header(None, alias="X-User-Id"),
    user_name: Optional[str] = Header(None, alias="X-User-Name"),
    is_client: bool = Header(False, alias="X-User-Client"),
) -> Actor:
    """Build the acting user from headers set by the upstream auth provider."""
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    return Actor(id=user_id, name=user_name or user_id, is_client=is_client)


def get_milestone_cache(request: Request) -> TTLCache:
    """The milestone cache owned by the running app."""
    return request.app.state.milestone_cache
