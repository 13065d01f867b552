"""
Configuration service for managing environment variables and application settings.
"""

import os
import json
import logging
from typing import Any, Dict, Optional
from dataclasses import dataclass, field, asdict
from pathlib import Path

logger = logging.getLogger(__name__)


def _as_bool(value: str) -> bool:
    return value.lower() in ('true', '1', 'yes')


@dataclass
class EmbeddingConfig:
    """Configuration for embedding generation."""
    openai_model: str = "text-embedding-3-small"
    openai_dimensions: int = 1536
    batch_size: int = 50
    max_retries: int = 3
    retry_delay: float = 1.0


@dataclass
class RetrievalConfig:
    """Configuration for schema retrieval."""
    table_top_k: int = 5
    column_top_k: int = 10
    use_native_vector_search: bool = False
    embed_on_direct_sql: bool = True
    parallel_ranking: bool = True


@dataclass
class GenerationConfig:
    """Configuration for SQL synthesis."""
    model: str = "gpt-4o-mini"
    temperature: float = 0.0
    max_tokens: int = 500
    max_context_tokens: int = 6000
    default_row_limit: int = 100


@dataclass
class ExecutionConfig:
    """Configuration for statement execution."""
    statement_timeout_ms: int = 30000
    read_only: bool = True


@dataclass
class DatabaseConfig:
    """Configuration for database connections."""
    connection_string: Optional[str] = None
    min_connections: int = 1
    max_connections: int = 10
    enable_pgvector: bool = True


@dataclass
class MetadataConfig:
    """Names of the metadata catalog tables."""
    table_metadata_table: str = "table_metadata"
    column_metadata_table: str = "column_metadata"


@dataclass
class ApplicationConfig:
    """Main application configuration."""
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    metadata: MetadataConfig = field(default_factory=MetadataConfig)

    # API settings
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Logging
    log_level: str = "INFO"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class ConfigService:
    """
    Service for managing application configuration.

    Values are resolved in order: dataclass defaults, environment variables,
    then an optional JSON configuration file.
    """

    def __init__(self, config_file: Optional[str] = None, setup_logging: bool = True):
        """
        Initialize configuration service.

        Args:
            config_file: Optional path to JSON configuration file
            setup_logging: Whether to configure the root logger
        """
        self.config = ApplicationConfig()
        self._config_file = config_file
        self._load_environment()
        if config_file:
            self._load_file(config_file)
        self._validate()
        if setup_logging:
            self._setup_logging()

    def _load_environment(self):
        """Load configuration from environment variables."""
        # Database configuration
        if db_url := os.getenv('DATABASE_URL'):
            self.config.database.connection_string = db_url
        if conns := os.getenv('DB_MAX_CONNECTIONS'):
            self.config.database.max_connections = int(conns)

        # Embeddings
        if model := os.getenv('OPENAI_EMBEDDING_MODEL'):
            self.config.embedding.openai_model = model
        if dims := os.getenv('EMBEDDING_DIMENSIONS'):
            self.config.embedding.openai_dimensions = int(dims)
        if batch := os.getenv('EMBEDDING_BATCH_SIZE'):
            self.config.embedding.batch_size = int(batch)

        # Retrieval
        if top_k := os.getenv('TABLE_TOP_K'):
            self.config.retrieval.table_top_k = int(top_k)
        if top_k := os.getenv('COLUMN_TOP_K'):
            self.config.retrieval.column_top_k = int(top_k)
        if native := os.getenv('USE_NATIVE_VECTOR_SEARCH'):
            self.config.retrieval.use_native_vector_search = _as_bool(native)
        if embed := os.getenv('EMBED_ON_DIRECT_SQL'):
            self.config.retrieval.embed_on_direct_sql = _as_bool(embed)

        # Generation
        if model := os.getenv('GENERATION_MODEL'):
            self.config.generation.model = model
        if temp := os.getenv('GENERATION_TEMPERATURE'):
            self.config.generation.temperature = float(temp)
        if tokens := os.getenv('GENERATION_MAX_TOKENS'):
            self.config.generation.max_tokens = int(tokens)
        if tokens := os.getenv('MAX_CONTEXT_TOKENS'):
            self.config.generation.max_context_tokens = int(tokens)

        # Execution
        if timeout := os.getenv('STATEMENT_TIMEOUT_MS'):
            self.config.execution.statement_timeout_ms = int(timeout)

        # API configuration
        if host := os.getenv('API_HOST'):
            self.config.api_host = host
        if port := os.getenv('API_PORT'):
            self.config.api_port = int(port)

        # Logging
        if level := os.getenv('LOG_LEVEL'):
            self.config.log_level = level.upper()

    def _load_file(self, config_file: str):
        """
        Load configuration from JSON file.

        Args:
            config_file: Path to configuration file
        """
        path = Path(config_file)
        if not path.exists():
            logger.warning(f"Configuration file not found: {config_file}")
            return
        try:
            with open(path, 'r') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid configuration file {config_file}: {e}") from e
        self._update_config(data)
        logger.info(f"Loaded configuration from {config_file}")

    def _update_config(self, data: Dict[str, Any]):
        """
        Update configuration from a (possibly nested) dictionary.

        Args:
            data: Configuration data
        """
        for key, value in data.items():
            if not hasattr(self.config, key):
                logger.warning(f"Ignoring unknown configuration key: {key}")
                continue
            current = getattr(self.config, key)
            if isinstance(value, dict) and hasattr(current, '__dataclass_fields__'):
                for sub_key, sub_value in value.items():
                    if hasattr(current, sub_key):
                        setattr(current, sub_key, sub_value)
                    else:
                        logger.warning(f"Ignoring unknown configuration key: {key}.{sub_key}")
            else:
                setattr(self.config, key, value)

    def _validate(self):
        """Validate configuration values."""
        if not os.getenv('OPENAI_API_KEY'):
            logger.warning("OPENAI_API_KEY not set - embedding and generation will not work")

        if not self.config.database.connection_string:
            logger.warning("DATABASE_URL not set - database features will not work")

        if self.config.embedding.openai_dimensions <= 0:
            raise ValueError("Embedding dimensions must be positive")
        if self.config.embedding.batch_size <= 0:
            raise ValueError("Embedding batch size must be positive")

        if self.config.retrieval.table_top_k < 0 or self.config.retrieval.column_top_k < 0:
            raise ValueError("Top-k values must not be negative")

        if not 0.0 <= self.config.generation.temperature <= 2.0:
            raise ValueError("Generation temperature must be between 0 and 2")
        if self.config.generation.max_context_tokens <= 0:
            raise ValueError("Context token budget must be positive")

        if self.config.execution.statement_timeout_ms < 0:
            raise ValueError("Statement timeout must not be negative")

        if self.config.api_port < 1 or self.config.api_port > 65535:
            raise ValueError("API port must be between 1 and 65535")

        if not isinstance(getattr(logging, self.config.log_level, None), int):
            raise ValueError(f"Unknown log level: {self.config.log_level}")

    def _setup_logging(self):
        """Setup logging configuration."""
        logging.basicConfig(
            level=getattr(logging, self.config.log_level),
            format=self.config.log_format
        )

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value by dot-notation key.

        Args:
            key: Configuration key (e.g., 'retrieval.table_top_k')
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        obj = self.config
        for part in key.split('.'):
            if hasattr(obj, part):
                obj = getattr(obj, part)
            else:
                return default
        return obj

    def set(self, key: str, value: Any):
        """
        Set configuration value by dot-notation key.

        Args:
            key: Configuration key (e.g., 'generation.model')
            value: Value to set
        """
        parts = key.split('.')
        obj = self.config

        for part in parts[:-1]:
            if hasattr(obj, part):
                obj = getattr(obj, part)
            else:
                raise KeyError(f"Configuration key not found: {key}")

        if hasattr(obj, parts[-1]):
            setattr(obj, parts[-1], value)
        else:
            raise KeyError(f"Configuration key not found: {key}")

    def to_dict(self) -> Dict[str, Any]:
        """Export configuration as dictionary."""
        return asdict(self.config)

    def to_json(self, indent: int = 2) -> str:
        """Export configuration as JSON string."""
        return json.dumps(self.to_dict(), indent=indent)

    @property
    def database(self) -> DatabaseConfig:
        return self.config.database

    @property
    def embedding(self) -> EmbeddingConfig:
        return self.config.embedding

    @property
    def retrieval(self) -> RetrievalConfig:
        return self.config.retrieval

    @property
    def generation(self) -> GenerationConfig:
        return self.config.generation

    @property
    def execution(self) -> ExecutionConfig:
        return self.config.execution

    @property
    def metadata(self) -> MetadataConfig:
        return self.config.metadata


# Global configuration instance
_config_instance: Optional[ConfigService] = None


def get_config() -> ConfigService:
    """
    Get global configuration instance.

    Returns:
        ConfigService instance
    """
    global _config_instance
    if _config_instance is None:
        _config_instance = ConfigService()
    return _config_instance


def load_config(config_file: Optional[str] = None) -> ConfigService:
    """
    Load and return configuration.

    Args:
        config_file: Optional configuration file path

    Returns:
        ConfigService instance
    """
    global _config_instance
    _config_instance = ConfigService(config_file)
    return _config_instance
