"""Configuration management for the WAFR engine."""

from functools import lru_cache

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file (only if accessible)
try:
    load_dotenv()
except (PermissionError, OSError):
    # In sandboxed environments, .env might not be accessible
    # Environment variables should be set directly
    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Supabase configuration (required)
    SUPABASE_URL: str = Field(..., description="Supabase project URL")
    SUPABASE_SERVICE_ROLE_KEY: str = Field(..., description="Supabase service role key")

    # Provider credentials (required)
    ANTHROPIC_API_KEY: str = Field(..., description="Anthropic API key for inference")
    OPENAI_API_KEY: str = Field(..., description="OpenAI API key for query embeddings")

    # Environment
    WAFR_ENGINE_ENV: str = Field(default="dev", description="Environment: dev, staging, prod")

    # Inference
    INFERENCE_MODEL: str = Field(
        default="claude-sonnet-4-5-20250929", description="Model used for every inference call"
    )
    INFERENCE_MAX_TOKENS: int = Field(default=4096, description="Max output tokens per call")

    # Knowledge retrieval
    EMBEDDING_MODEL: str = Field(
        default="text-embedding-3-small", description="OpenAI embedding model"
    )
    EMBEDDING_DIM: int = Field(default=1536, description="Embedding vector dimension")
    KNOWLEDGE_BASE_TOP_K: int = Field(default=20, description="Passages retrieved per question")
    KNOWLEDGE_BASE_MATCH_FUNCTION: str = Field(
        default="match_wafr_passages", description="Supabase RPC used for vector search"
    )

    # Taxonomy source
    WA_DOCS_BUCKET: str = Field(default="wafr-docs", description="Bucket holding the taxonomy")
    WA_BEST_PRACTICES_KEY: str = Field(
        default="well_architected_best_practices.json",
        description="Object key of the best-practice taxonomy",
    )

    # Document store
    DOCUMENTS_BUCKET: str = Field(
        default="wafr-documents", description="Bucket for originals and generated output"
    )
    WORK_ITEMS_TABLE: str = Field(default="work_items", description="Work item table name")
    STORAGE_ENABLED: bool = Field(
        default=True, description="Persist IaC generation checkpoints and output"
    )

    # Workload answer-tracking service
    WORKLOAD_ANSWERS_URL: str = Field(
        default="", description="Base URL of the workload answer service (empty disables)"
    )
    WORKLOAD_ANSWERS_TOKEN: str = Field(default="", description="Bearer token for answer service")
    WORKLOAD_LENS_ALIAS: str = Field(
        default="wellarchitected", description="Lens whose answers are listed"
    )

    # Multi-turn loops
    GENERATION_PACING_SECONDS: float = Field(
        default=1.0, description="Delay between generation turns (provider rate limits)"
    )
    IAC_MAX_ITERATIONS: int = Field(default=40, description="Max IaC generation iterations")
    DETAILS_MAX_TURNS: int = Field(default=10, description="Max turns per best-practice detail")

    # Progress channel
    PROGRESS_QUEUE_SIZE: int = Field(
        default=100, description="Buffered progress events per subscriber"
    )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings instance

    Raises:
        ValidationError: If required environment variables are missing
    """
    return Settings()
