from datetime import datetime
from typing import List, Literal, Optional
from pydantic import BaseModel, Field
from .base import utc_now
from .conversation import Message

ExperienceLevel = Literal["beginner", "intermediate", "advanced"]
CompanySize = Literal["small", "medium", "large"]


class BusinessProfile(BaseModel):
    industry: str = ""
    products: List[str] = Field(default_factory=list)
    target_markets: List[str] = Field(default_factory=list)
    experience_level: ExperienceLevel = "beginner"
    company_size: CompanySize = "small"
    preferred_language: str = "en"
    company_name: Optional[str] = None


class SessionState(BaseModel):
    current_page: str = "dashboard"
    session_start: datetime = Field(default_factory=utc_now)
    last_activity: datetime = Field(default_factory=utc_now)
    pages_visited: List[str] = Field(default_factory=lambda: ["dashboard"])
    actions_performed: List[str] = Field(default_factory=list)
    search_queries: List[str] = Field(default_factory=list)

    def visit(self, page: str) -> None:
        self.current_page = page
        self.pages_visited.append(page)
        self.last_activity = utc_now()


class DataPrivacy(BaseModel):
    allow_analytics: bool = True
    allow_personalization: bool = True
    retention_days: int = 30


class UserPreferences(BaseModel):
    chat_position: Literal["bottom-right", "bottom-left", "top-right", "top-left"] = "bottom-right"
    auto_expand: bool = False
    sound_enabled: bool = True
    theme: Literal["light", "dark", "auto"] = "auto"
    language: str = "en"
    data_privacy: DataPrivacy = Field(default_factory=DataPrivacy)


class UserContext(BaseModel):
    """Per-user working state, mutated in place during a session."""

    user_id: str
    conversation_id: str
    business_profile: BusinessProfile = Field(default_factory=BusinessProfile)
    current_session: SessionState = Field(default_factory=SessionState)
    preferences: UserPreferences = Field(default_factory=UserPreferences)
    history: List[Message] = Field(default_factory=list)

    def append_message(self, message: Message, limit: int = 50) -> None:
        self.history.append(message)
        if len(self.history) > limit:
            del self.history[:-limit]

    def recent_messages(self, count: int) -> List[Message]:
        return self.history[-count:] if count > 0 else []

    @property
    def session_id(self) -> str:
        return f"{self.user_id}_{int(self.current_session.session_start.timestamp() * 1000)}"
