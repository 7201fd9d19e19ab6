from typing import Optional

from pydantic import BaseModel


class Session(BaseModel):
    """
    Caller identity passed explicitly into every engine and gateway call.

    token is forwarded as a Bearer credential by the HTTP gateway; username is
    recorded as the actor in the local store's audit log.
    """
    token: Optional[str] = None
    user_id: Optional[str] = None
    username: str = "anonymous"

    @property
    def actor(self) -> str:
        return self.username or self.user_id or "anonymous"


SYSTEM_SESSION = Session(username="system")
