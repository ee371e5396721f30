from pydantic import BaseModel, ConfigDict
from typing import Optional


class WebhookRepository(BaseModel):
    model_config = ConfigDict(extra="ignore")

    full_name: str


class Pusher(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = None


class PushEvent(BaseModel):
    """The parts of a GitHub push payload that are logged. Everything else is ignored."""
    model_config = ConfigDict(extra="ignore")

    ref: Optional[str] = None
    after: Optional[str] = None
    repository: Optional[WebhookRepository] = None
    pusher: Optional[Pusher] = None
