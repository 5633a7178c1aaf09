from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from lingoclass.dependencies import get_current_user, get_db, require_admin
from lingoclass.models import User
from lingoclass.schemas.auth import LoginForm, RegisterForm
from lingoclass.security import clear_auth_cookie, issue_token, set_auth_cookie
from lingoclass.services import users

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", name="auth.login")
def login(form: LoginForm, session: Session = Depends(get_db)):
    """Issues a JWT, returned in the body and set as an HTTP-only cookie."""
    user = users.authenticate(session, form.email, form.password)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid credentials")

    token = issue_token(user)
    response = JSONResponse({"access_token": token, "token_type": "bearer", "user": user.to_dict()})
    set_auth_cookie(response, token)
    return response


@router.post("/logout", name="auth.logout")
def logout():
    response = JSONResponse({"ok": True})
    clear_auth_cookie(response)
    return response


@router.post("/register", status_code=201, name="auth.register")
def register(
    form: RegisterForm,
    current_user: User = Depends(require_admin),
    session: Session = Depends(get_db),
):
    """Creates a user account (admin only)."""
    user = users.register_user(
        session,
        email=form.email,
        first_name=form.first_name,
        last_name=form.last_name,
        password=form.password,
        roles=form.roles,
    )
    return user.to_dict()


@router.get("/me", name="auth.me")
def me(current_user: User = Depends(get_current_user)):
    return current_user.to_dict()
