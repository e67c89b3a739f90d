"""Pipeline configuration."""

from dataclasses import dataclass, field, fields
import os
import re
import importlib

from archrag.errors import ConfigurationError


def _expand_env_var(value: str) -> str:
    """Expand environment variables in the form ${VAR:-default}.

    Args:
        value: String possibly containing ${VAR:-default}

    Returns:
        Expanded string with environment variable or default value
    """
    if not isinstance(value, str):
        return value

    # Match ${VAR:-default} or ${VAR-default}
    pattern = r"\$\{([^:}]+):-?([^}]*)\}"

    def replace_env(match):
        var_name = match.group(1)
        default_value = match.group(2)
        return os.environ.get(var_name, default_value)

    return re.sub(pattern, replace_env, value)


def _expand_env(value):
    """Recursively expand env vars in strings inside dicts/lists."""
    if isinstance(value, str):
        return _expand_env_var(value)
    if isinstance(value, dict):
        return {k: _expand_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_expand_env(v) for v in value]
    return value


def _coerce(value, default):
    """Coerce an expanded string back to the type of the field default."""
    if not isinstance(value, str) or isinstance(default, str) or default is None:
        return value
    if isinstance(default, bool):
        return value.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(default, int):
        return int(value)
    if isinstance(default, float):
        return float(value)
    return value


def _section(cls, data: dict | None):
    """Build a config section dataclass from a (possibly partial) dict."""
    data = data or {}
    defaults = cls()
    kwargs = {}
    for f in fields(cls):
        if f.name in data and data[f.name] is not None:
            kwargs[f.name] = _coerce(data[f.name], getattr(defaults, f.name))
    return cls(**kwargs)


@dataclass
class TokenizerConfig:
    """Tokenizer selection."""

    kind: str = "tiktoken"
    encoding: str = "cl100k_base"


@dataclass
class ChunkingConfig:
    """Chunking configuration (sizes are in tokens)."""

    max_chunk_tokens: int = 1600
    min_chunk_tokens: int = 50
    overlap_tokens: int = 200
    store_chunk_text: bool = True
    use_semantic_splitting: bool = True
    max_chunks_per_file: int = 0


@dataclass
class EmbeddingConfig:
    """Embedding provider and resilience settings."""

    provider: str = "hashing"
    model: str = "models/text-embedding-004"
    api_key: str = ""
    dimension: int = 768
    batch_size: int = 32

    # Concurrency and token budget
    concurrency: int = 4
    tokens_per_minute: int = 150_000
    max_rate_limit_wait_seconds: float = 30.0
    rate_limit_poll_seconds: float = 1.0
    rate_limit_period_seconds: float = 60.0
    semaphore_wait_seconds: float = 30.0

    # Timeout / retry / circuit breaker
    timeout_seconds: float = 60.0
    max_retry_attempts: int = 3
    retry_base_delay_ms: int = 1000
    failure_ratio: float = 0.5
    sampling_duration_seconds: float = 30.0
    minimum_throughput: int = 10
    break_duration_seconds: float = 30.0


@dataclass
class LLMConfig:
    """Summarization LLM settings."""

    provider: str = ""
    model: str = "gemini-2.5-flash"
    api_key: str = ""
    temperature: float = 0.2
    max_tokens: int = 2048
    timeout_seconds: float = 120.0
    max_retry_attempts: int = 3
    retry_base_delay_ms: int = 2000
    failure_ratio: float = 0.5
    sampling_duration_seconds: float = 60.0
    minimum_throughput: int = 10
    break_duration_seconds: float = 60.0


@dataclass
class RetrievalConfig:
    """Indexing batch sizes and retrieval budgets."""

    top_k: int = 20
    summarization_threshold: int = 6000
    chunks_per_bucket: int = 10
    default_max_tokens: int = 8000
    file_batch_size: int = 25
    chunk_batch_size: int = 50
    max_job_cost: float = 1.00


@dataclass
class WatchdogConfig:
    """Stuck-job detection settings."""

    enabled: bool = True
    check_interval_seconds: float = 30.0
    max_project_duration_seconds: float = 600.0
    max_heartbeat_interval_seconds: float = 120.0
    auto_cancel_stuck: bool = True
    stuck_detection_threshold: int = 2


@dataclass
class StorageConfig:
    """Vector index and chunk store backend."""

    backend: str = "memory"
    database_url: str = ""
    vector_table_name: str = "archrag_vectors"
    chunk_table_name: str = "archrag_chunks"


DEFAULT_EXCLUDED_DIRS = [
    ".git", ".svn", ".hg", ".vs", ".idea", ".vscode",
    "node_modules", "bin", "obj", "packages", "__pycache__",
    ".venv", "venv", "dist", "build", "target", "coverage",
]

DEFAULT_SOURCE_EXTENSIONS = [
    ".cs", ".ts", ".tsx", ".js", ".jsx", ".py", ".java", ".go", ".rs",
    ".cpp", ".cc", ".cxx", ".c", ".h", ".hpp",
    ".md", ".json", ".xml", ".yaml", ".yml",
]


@dataclass
class SourceConfig:
    """Which files are picked up when indexing a directory."""

    max_file_bytes: int = 1_000_000
    excluded_dirs: list[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDED_DIRS))
    extensions: list[str] = field(default_factory=lambda: list(DEFAULT_SOURCE_EXTENSIONS))


@dataclass
class ApprovalConfig:
    """Cost thresholds for the job approval gate."""

    warn_threshold_tokens: int = 500_000
    warn_threshold_cost: float = 10.0
    approval_threshold_tokens: int = 2_000_000
    approval_threshold_cost: float = 50.0


@dataclass
class LoggingConfig:
    """Logging destination and level."""

    level: str = "INFO"
    log_file: str = ""


@dataclass
class Config:
    """Main configuration class."""

    tokenizer: TokenizerConfig = field(default_factory=TokenizerConfig)
    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    watchdog: WatchdogConfig = field(default_factory=WatchdogConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    sources: SourceConfig = field(default_factory=SourceConfig)
    approval: ApprovalConfig = field(default_factory=ApprovalConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def validate(self) -> "Config":
        """Check cross-field constraints.

        Returns:
            self, for chaining

        Raises:
            ConfigurationError: If any value is out of range
        """
        chunking = self.chunking
        if chunking.max_chunk_tokens <= 0:
            raise ConfigurationError("chunking.max_chunk_tokens must be positive")
        if chunking.min_chunk_tokens < 0:
            raise ConfigurationError("chunking.min_chunk_tokens must not be negative")
        if not 0 <= chunking.overlap_tokens < chunking.max_chunk_tokens:
            raise ConfigurationError(
                "chunking.overlap_tokens must be >= 0 and smaller than max_chunk_tokens"
            )

        embedding = self.embedding
        for name in ("batch_size", "concurrency", "tokens_per_minute"):
            if getattr(embedding, name) <= 0:
                raise ConfigurationError(f"embedding.{name} must be positive")
        if not 0 < embedding.failure_ratio <= 1:
            raise ConfigurationError("embedding.failure_ratio must be in (0, 1]")

        retrieval = self.retrieval
        for name in ("top_k", "chunks_per_bucket", "file_batch_size", "chunk_batch_size"):
            if getattr(retrieval, name) <= 0:
                raise ConfigurationError(f"retrieval.{name} must be positive")

        if self.watchdog.stuck_detection_threshold < 1:
            raise ConfigurationError("watchdog.stuck_detection_threshold must be >= 1")

        if self.storage.backend not in ("memory", "postgres"):
            raise ConfigurationError(
                f"Unsupported storage backend: {self.storage.backend}. Supported: memory, postgres"
            )
        if self.storage.backend == "postgres" and not self.storage.database_url:
            raise ConfigurationError("storage.database_url is required for the postgres backend")

        return self

    @classmethod
    def from_yaml(cls, path: str) -> "Config":
        """Load configuration from YAML file."""
        yaml = importlib.import_module("yaml")
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict) -> "Config":
        """Create config from dictionary."""
        data = _expand_env(data)

        storage = _section(StorageConfig, data.get("storage"))
        if not storage.database_url or "${" in str(storage.database_url):
            storage.database_url = os.environ.get("DATABASE_URL", "")

        embedding = _section(EmbeddingConfig, data.get("embedding"))
        llm = _section(LLMConfig, data.get("llm"))

        # Shared Gemini credentials, as in a single `gemini:` block
        gemini_api_key = (data.get("gemini") or {}).get("api_key", "")
        if not gemini_api_key or "${" in str(gemini_api_key):
            gemini_api_key = os.environ.get("GEMINI_API_KEY", "")
        if not embedding.api_key:
            embedding.api_key = gemini_api_key
        if not llm.api_key:
            llm.api_key = gemini_api_key

        return cls(
            tokenizer=_section(TokenizerConfig, data.get("tokenizer")),
            chunking=_section(ChunkingConfig, data.get("chunking")),
            embedding=embedding,
            llm=llm,
            retrieval=_section(RetrievalConfig, data.get("retrieval")),
            watchdog=_section(WatchdogConfig, data.get("watchdog")),
            storage=storage,
            sources=_section(SourceConfig, data.get("sources")),
            approval=_section(ApprovalConfig, data.get("approval")),
            logging=_section(LoggingConfig, data.get("logging")),
        ).validate()

    @classmethod
    def from_env(cls) -> "Config":
        """Load config from environment variables."""
        gemini_api_key = os.environ.get("GEMINI_API_KEY", "")
        database_url = os.environ.get("DATABASE_URL", "")

        return cls(
            tokenizer=TokenizerConfig(
                kind=os.environ.get("TOKENIZER", "tiktoken"),
            ),
            embedding=EmbeddingConfig(
                provider=os.environ.get("EMBEDDING_PROVIDER", "gemini" if gemini_api_key else "hashing"),
                model=os.environ.get("EMBEDDING_MODEL", "models/text-embedding-004"),
                api_key=gemini_api_key,
                tokens_per_minute=int(os.environ.get("EMBEDDING_TOKENS_PER_MINUTE", "150000")),
                concurrency=int(os.environ.get("EMBEDDING_CONCURRENCY", "4")),
            ),
            llm=LLMConfig(
                provider=os.environ.get("LLM_PROVIDER", "gemini" if gemini_api_key else ""),
                model=os.environ.get("LLM_MODEL", "gemini-2.5-flash"),
                api_key=gemini_api_key,
            ),
            storage=StorageConfig(
                backend="postgres" if database_url else "memory",
                database_url=database_url,
                vector_table_name=os.environ.get("VECTOR_TABLE_NAME", "archrag_vectors"),
                chunk_table_name=os.environ.get("CHUNK_TABLE_NAME", "archrag_chunks"),
            ),
            logging=LoggingConfig(
                level=os.environ.get("LOG_LEVEL", "INFO"),
                log_file=os.environ.get("LOG_FILE", ""),
            ),
        ).validate()
