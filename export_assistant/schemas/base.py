from datetime import datetime, timezone
from pydantic import BaseModel, ConfigDict


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class FrozenSchema(BaseModel):
    """Value objects that must not change once produced."""
    model_config = ConfigDict(frozen=True)
