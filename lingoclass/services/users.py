from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from lingoclass.errors import InvalidState
from lingoclass.models import Role, RoleName, User

log = logging.getLogger(__name__)


def get_or_create_role(session: Session, name: RoleName) -> Role:
    role = session.query(Role).filter_by(name=RoleName(name).value).first()
    if role is None:
        role = Role(name=RoleName(name).value)
        session.add(role)
        session.flush()
    return role


def register_user(
    session: Session,
    *,
    email: str,
    first_name: str,
    last_name: str,
    password: str,
    roles: Iterable[RoleName] = (RoleName.STUDENT,),
) -> User:
    email = email.lower().strip()
    if session.query(User).filter(User.email == email).first():
        raise InvalidState("Email already registered")

    user = User(email=email, first_name=first_name.strip(), last_name=last_name.strip())
    user.set_password(password)
    for name in roles:
        user.roles.append(get_or_create_role(session, name))
    session.add(user)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise InvalidState("Email already registered") from None
    log.info("User %s registered with roles %s", user.id, sorted(user.role_names))
    return user


def authenticate(session: Session, email: str, password: str) -> User | None:
    """Returns the active user for these credentials, upgrading an outdated hash in place."""
    user = session.query(User).filter(User.email == email.lower().strip()).first()
    if user is None or not user.is_active:
        return None
    old_hash = user.password_hash
    if not user.check_password(password):
        return None
    if user.password_hash != old_hash:
        session.commit()
    return user
