"""Acting-citizen resolution.

Authentication happens upstream; the identity gateway forwards the
authenticated citizen in request headers.
"""

from __future__ import annotations

from typing import Mapping, Optional, Protocol

from pydantic import BaseModel

from .exceptions import UnauthenticatedError

CITIZEN_ID_HEADER = "x-citizen-id"
CITIZEN_EMAIL_HEADER = "x-citizen-email"


class Citizen(BaseModel):
    id: str
    email: Optional[str] = None

    @property
    def ledger_id(self) -> str:
        """Identifier the treasury keys accounts by: email when known."""
        return self.email or self.id


class IdentityProvider(Protocol):
    def current_citizen(self) -> Citizen:
        ...


class HeaderIdentityProvider:
    def __init__(self, headers: Mapping[str, str]):
        self.headers = headers

    def current_citizen(self) -> Citizen:
        citizen_id = self.headers.get(CITIZEN_ID_HEADER)
        email = self.headers.get(CITIZEN_EMAIL_HEADER)
        if not citizen_id and not email:
            raise UnauthenticatedError("Not authenticated")
        return Citizen(id=citizen_id or email, email=email)
