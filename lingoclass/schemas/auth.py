from pydantic import BaseModel, Field

from lingoclass.models import RoleName


class LoginForm(BaseModel):
    email: str
    password: str


class RegisterForm(BaseModel):
    email: str
    first_name: str
    last_name: str
    password: str = Field(min_length=8)
    roles: list[RoleName] = [RoleName.STUDENT]
