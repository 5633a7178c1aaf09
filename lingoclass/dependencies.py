from typing import Any

from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from .extensions import db
from .models import RoleName, User
from .security import read_token, token_from_request


def get_db() -> Any:
    """Dependency to provide a database session."""
    try:
        yield db.session
    finally:
        db.remove_session()


def get_current_user(request: Request, session: Session = Depends(get_db)) -> User:
    """Resolves the user from a Bearer token or the auth cookie; 401 otherwise."""
    token = token_from_request(request)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    claims = read_token(token)
    if claims is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    user = session.get(User, claims.user_id)
    if user is None or not user.is_active:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user


def require_role(*roles: RoleName):
    """Dependency factory that ensures a user has one of the required roles."""
    def role_checker(user: User = Depends(get_current_user)) -> User:
        if not user.has_role(*roles):
            raise HTTPException(status_code=403, detail="Permission denied")
        return user
    return role_checker


require_staff = require_role(RoleName.ADMIN, RoleName.TEACHER)
require_admin = require_role(RoleName.ADMIN)
