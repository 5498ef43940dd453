from enum import Enum
from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import Field, model_validator
from .base import FrozenSchema, utc_now


class IntentType(str, Enum):
    FIND_BUYERS = "FIND_BUYERS"
    MARKET_RESEARCH = "MARKET_RESEARCH"
    COMPLIANCE_HELP = "COMPLIANCE_HELP"
    QUOTATION_HELP = "QUOTATION_HELP"
    PLATFORM_NAVIGATION = "PLATFORM_NAVIGATION"
    ONBOARDING_HELP = "ONBOARDING_HELP"
    GENERAL_EXPORT_ADVICE = "GENERAL_EXPORT_ADVICE"
    UNKNOWN = "UNKNOWN"


class EntityType(str, Enum):
    COUNTRY = "COUNTRY"
    PRODUCT = "PRODUCT"
    INDUSTRY = "INDUSTRY"
    CURRENCY = "CURRENCY"
    AMOUNT = "AMOUNT"
    DATE = "DATE"
    TARIFF_CODE = "TARIFF_CODE"


class MessageAuthor(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class Entity(FrozenSchema):
    type: EntityType
    value: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    start: int = Field(..., ge=0)
    end: int = Field(..., ge=0)

    @model_validator(mode="after")
    def _check_span(self):
        if self.end < self.start:
            raise ValueError("entity span end must not precede start")
        return self

    def overlaps(self, other: "Entity") -> bool:
        return self.start < other.end and other.start < self.end


class Intent(FrozenSchema):
    name: IntentType
    confidence: float = Field(..., ge=0.0, le=1.0)
    entities: List[Entity] = Field(default_factory=list)
    parameters: Dict[str, Any] = Field(default_factory=dict)

    def entities_of(self, entity_type: EntityType) -> List[Entity]:
        return [e for e in self.entities if e.type == entity_type]


class Message(FrozenSchema):
    id: str
    user_id: str
    conversation_id: str
    author: MessageAuthor
    timestamp: datetime = Field(default_factory=utc_now)
    text: str
    intent: Optional[Intent] = None
