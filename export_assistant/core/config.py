from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

load_dotenv()

class Settings(BaseSettings):
    app_name: str = "Export Assistant Engine"
    debug: bool = False
    port: int = 8001
    api_prefix: str = "/api/v1"

    # Storage: "memory" keeps everything in-process, "mongo" uses motor
    storage_backend: str = "memory"
    mongo_url: str = "mongodb://localhost:27017"
    mongo_db: str = "export_assistant"

    # Conversation
    max_message_length: int = 5000
    chat_history_limit: int = 50
    context_cache_capacity: int = 1000
    context_idle_ttl_seconds: int = 1800
    interaction_cache_capacity: int = 5000

    # Personalization / learning
    pattern_cache_capacity: int = 10000
    enable_behavior_learning: bool = True
    enable_preference_learning: bool = True
    enable_content_adaptation: bool = True
    learning_rate: float = 0.1
    decay_factor: float = 0.95
    confidence_threshold: float = 0.7

    # Analytics
    analytics_retention_days: int = 30
    analytics_max_events_per_user: int = 1000
    analytics_cleanup_interval_seconds: int = 3600
    feedback_collect_after_messages: int = 3

    # Trade data provider; disabled means replies carry no visualizations
    enable_trade_data: bool = True
    trade_api_base_url: str = "https://api.worldbank.org/v2"
    trade_api_timeout_seconds: float = 10.0
    trade_cache_ttl_ms: int = 60 * 60 * 1000

    # Seed for template selection and learning-rate draws; unset means random
    random_seed: Optional[int] = None

    model_config = SettingsConfigDict(env_file=".env", extra="allow")

settings = Settings()
