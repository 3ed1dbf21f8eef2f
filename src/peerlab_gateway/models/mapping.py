"""Downstream-facing view of a user's resources."""

from typing import Optional

from pydantic import BaseModel, Field


class UserMapping(BaseModel):
    """ASN assignment joined with the handle's active prefixes."""

    user_hash: str
    user_id: Optional[str] = None
    asn: int
    prefixes: list[str] = Field(default_factory=list)
    email: Optional[str] = None
