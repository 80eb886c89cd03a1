"""
Configuration for the Agent Flow Service.

All secrets are read from environment variables.
"""

from enum import Enum
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class NodeKind(str, Enum):
    """Node kinds a flow can contain."""

    BEGIN = "begin"
    INTERFACE = "interface"
    GENERATE = "generate"
    CATEGORIZE = "categorize"
    RETRIEVAL = "retrieval"


class ExecutionStatus(str, Enum):
    """Status of a single node execution."""

    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ERROR = "error"


class MessageRole(str, Enum):
    """Chat roles used for node input and output."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    DEVELOPER = "developer"


class OutputFormat(str, Enum):
    """Retrieval output formats."""

    PLAIN = "plain"
    CITATIONS = "citations"
    JSON = "json"


# History entries recorded for raw user input use this node type.
USER_INPUT_NODE_TYPE = "user-input"


class ExecutionConfig(BaseSettings):
    """Execution configuration."""

    model_config = SettingsConfigDict(env_prefix="EXECUTION_")

    node_timeout_ms: int = Field(default=60000, description="Node execution timeout")
    max_visits_per_node: int = Field(
        default=2,
        ge=1,
        description="Node visits allowed per turn, multiplied by the flow's node count",
    )


class LLMConfig(BaseSettings):
    """Model provider configuration."""

    model_config = SettingsConfigDict(env_prefix="LLM_")

    models_file: str | None = Field(default=None, description="JSON catalog of providers and models")
    request_timeout_s: float = Field(default=60.0, description="HTTP timeout for provider calls")
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, description="Completion token limit")
    categorize_temperature: float = Field(default=0.3, ge=0.0, le=2.0)


class RetrievalConfig(BaseSettings):
    """Knowledge retrieval configuration."""

    model_config = SettingsConfigDict(env_prefix="RETRIEVAL_")

    provider: Literal["local"] = "local"
    db_path: str = Field(default="./data/knowledge.db", description="Local chunk store path")


class StorageConfig(BaseSettings):
    """Conversation and flow storage configuration."""

    model_config = SettingsConfigDict(env_prefix="STORAGE_")

    conversation_store: Literal["memory", "sqlite"] = "memory"
    database_path: str = Field(default="./data/conversations.db")
    flows_dir: str = Field(default="./flows", description="Directory of <flow_id>.json configs")


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Service configuration
    service_name: str = Field(default="agent-flow", description="Service name")
    host: str = Field(default="0.0.0.0", description="Host to bind")
    port: int = Field(default=8095, ge=1024, le=65535, description="Port")
    environment: Literal["development", "production", "test"] = "development"
    debug: bool = Field(default=False, description="Debug mode")
    log_level: str = Field(default="info", description="Log level")
    log_format: Literal["json", "console"] = "json"

    # API settings
    api_prefix: str = Field(default="/api", description="API prefix")
    default_model_name: str = Field(default="flow-default", description="Model name reported to clients")

    # Rate limiting
    rate_limit_requests: int = 100
    rate_limit_window_seconds: int = 60

    # CORS
    cors_origins: str = "*"

    # Sub-configurations
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings."""
    return Settings()
