"""Principal model - authenticated callers."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from peerlab_gateway.models.enums import PrincipalKind


class Principal(BaseModel):
    """An authenticated caller.

    End users carry the claims of their verified token. The downstream agent
    is a fixed identity with no subject.
    """

    kind: PrincipalKind
    subject: Optional[str] = None
    audience: Optional[str] = None
    issuer: Optional[str] = None
    expires_at: Optional[datetime] = None

    @property
    def is_agent(self) -> bool:
        return self.kind == PrincipalKind.AGENT

    @classmethod
    def agent(cls) -> "Principal":
        return cls(kind=PrincipalKind.AGENT)
