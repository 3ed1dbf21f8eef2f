"""ASN assignment model."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class AsnAssignment(BaseModel):
    """Permanent mapping of a user handle to its ASN."""

    user_hash: str
    user_id: Optional[str] = None
    asn: int
    created_at: datetime
    updated_at: datetime
