"""
Configuration Management

All settings load from environment variables (or a local .env file) through
pydantic-settings, so "8000" becomes 8000 and a bad value fails at import time
instead of halfway through a tip.

The core classes (KnowledgeIndex, PriceOracle, PendingQuestionStore,
AnswerOrchestrator) never read this module; they take their limits as
constructor arguments. Only tipqa.main wires settings into them.
"""

from typing import List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application Settings

    Variable names match field names (case-insensitive), e.g. TIP_MINIMUM_USD.
    """

    log_level: str = "INFO"
    log_categories: Optional[str] = None  # Comma-separated (knowledge,payments,chat,system). If None, show all logs.
    port: int = 5124
    host: str = "0.0.0.0"

    # OpenAI
    openai_api_key: Optional[str] = None
    embedding_model: str = "text-embedding-3-small"
    embedding_dim: int = 1536
    embedding_batch_size: int = 100
    completion_model: str = "gpt-4o-mini"
    completion_temperature: float = 0.2
    completion_max_tokens: int = 2000
    system_prompt_file: str = "tipqa/reason/prompts/system_prompt.txt"

    # Knowledge corpus
    knowledge_dir: str = "."
    knowledge_files: str = "AGENTS.md,DOCS_GETTING_STARTED.md"
    chunk_max_chars: int = 1500
    embedding_cache_path: str = ".cache/embeddings.json"
    rag_top_k: int = 5

    # Price feed
    price_feed_url: str = "https://api.coingecko.com/api/v3/simple/price"
    price_asset_id: str = "ethereum"
    price_quote_currency: str = "usd"
    price_cache_ttl_minutes: int = 5
    price_fallback: float = 3000.0
    price_request_timeout_seconds: float = 10.0

    # Tip gating
    tip_minimum_usd: float = 0.50
    tip_margin: float = 0.05  # Accept tips up to 5% under the minimum
    tip_asset_decimals: int = 18
    tip_asset_symbol: str = "ETH"
    tip_display_precision: int = 6
    answer_max_attempts: int = 2
    pending_question_ttl_minutes: Optional[int] = None  # None disables expiry

    # Bot identity (both addresses can receive tips)
    bot_id: Optional[str] = None
    bot_app_address: Optional[str] = None
    bot_display_name: str = "DocsBot"

    # Thread log
    database_url: str = "sqlite+aiosqlite:///./tipqa.db"

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"  # Allow extra env vars without validation errors

    @property
    def knowledge_file_list(self) -> List[str]:
        return [name.strip() for name in self.knowledge_files.split(",") if name.strip()]


# Loaded once when the module is imported
settings = Settings()
