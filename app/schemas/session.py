from pydantic import BaseModel, ConfigDict
from typing import Optional

class UserSession(BaseModel):
    """Acting user as resolved by the auth dependency. Read-only."""
    model_config = ConfigDict(frozen=True)

    id: str
    token: Optional[str] = None
    email: Optional[str] = None
