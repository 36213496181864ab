"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Stores and the
credential service do the work; these only own the domain shape.

Layer rule: no imports from api/, cache/, or notify/.
"""

from __future__ import annotations

from dataclasses import dataclass


def normalize_email(email: str) -> str:
    """Canonical form used as the store key and the OTP cache key."""
    return email.strip().lower()


@dataclass
class Account:
    """A registered identity.

    hashed_password is a bcrypt hash; the plaintext is never stored.
    is_verified starts False and is flipped exactly once, by a successful
    OTP verification. Accounts are never deleted by the credential service.
    """

    name: str
    email: str
    hashed_password: str
    id: int | None = None
    is_verified: bool = False
    created_at: str | None = None
    updated_at: str | None = None

    def projection(self) -> dict:
        """Minimal public view returned to callers: id, name, email."""
        return {"id": self.id, "name": self.name, "email": self.email}
