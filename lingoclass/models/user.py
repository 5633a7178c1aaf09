from enum import Enum

from lingoclass.extensions import db
from lingoclass.utils import utcnow
from lingoclass.security import hash_password, verify_and_update_password


class RoleName(str, Enum):
    ADMIN = "ADMIN"
    TEACHER = "TEACHER"
    STUDENT = "STUDENT"
    GUEST = "GUEST"
    EDITOR = "EDITOR"


user_roles = db.Table(
    "user_roles",
    db.Column("user_id", db.Integer, db.ForeignKey("users.id"), primary_key=True),
    db.Column("role_id", db.Integer, db.ForeignKey("roles.id"), primary_key=True),
)


class Role(db.Model):
    __tablename__ = "roles"
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(20), unique=True, nullable=False)

    def __repr__(self):
        return f"<Role {self.name}>"


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    roles = db.relationship("Role", secondary=user_roles, lazy="selectin")

    is_authenticated = True

    def set_password(self, password: str):
        self.password_hash = hash_password(password)

    def check_password(self, password: str) -> bool:
        verified, new_hash = verify_and_update_password(password, self.password_hash)
        if verified and new_hash:
            self.password_hash = new_hash
        return verified

    @property
    def role_names(self) -> set[str]:
        return {r.name for r in self.roles}

    def has_role(self, *names: str) -> bool:
        wanted = {n.value if isinstance(n, RoleName) else n for n in names}
        return bool(self.role_names & wanted)

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "roles": sorted(self.role_names),
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<User id={self.id} {self.full_name} roles={sorted(self.role_names)}>"
