"""Authentication models."""

from typing import Optional

from pydantic import BaseModel


class CallerProfile(BaseModel):
    """Authenticated caller with the organizational units stamped on new records."""

    id: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    role: Optional[str] = None
    crpm: Optional[str] = None
    batalhao: Optional[str] = None
    cia: Optional[str] = None
