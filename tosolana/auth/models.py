"""
Session authorization models.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

SchemeName = Literal["evm", "solana"]


class SessionAuthChallenge(BaseModel):
    """Returned on session creation; the wallet signs ``message``."""

    model_config = ConfigDict(populate_by_name=True)

    scheme: SchemeName
    challenge: str = Field(..., description="Server-signed token binding the session fields")
    message: str = Field(..., description="Exact text the wallet must sign")
    expires_at: str = Field(..., alias="expiresAt")


class SessionAuthProof(BaseModel):
    """Sent back with every mutating call."""

    model_config = ConfigDict(populate_by_name=True)

    scheme: str = Field(..., min_length=1)
    challenge: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)
    signature: str = Field(..., min_length=1)
