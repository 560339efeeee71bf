from __future__ import annotations

USER_ROLE = "user"
ADMIN_ROLE = "admin"


class Member:
    """A registered library member. The password hash never leaves this object."""

    def __init__(self, username: str, full_name: str, role: str = USER_ROLE, member_id: int | None = None,
                 created_at: str | None = None, password_hash: str | None = None) -> None:
        self.member_id = member_id
        self.username = username
        self.full_name = full_name
        self.role = role
        self.created_at = created_at
        self.password_hash = password_hash

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.full_name} ({self.username}, {self.role})"

    def to_dict(self) -> dict:
        return {
            "member_id": self.member_id,
            "username": self.username,
            "full_name": self.full_name,
            "role": self.role,
            "created_at": self.created_at,
        }

    def to_login_dict(self) -> dict:
        return {"id": self.member_id, "name": self.full_name, "role": self.role}

    @staticmethod
    def from_dict(data: dict) -> "Member":
        return Member(
            username=data["username"],
            full_name=data["full_name"],
            role=data.get("role") or USER_ROLE,
            member_id=data.get("member_id"),
            created_at=data.get("created_at"),
            password_hash=data.get("password_hash"),
        )
