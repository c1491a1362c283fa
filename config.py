import os
from dotenv import load_dotenv

# Load .env file only in development environment
if os.getenv("ENVIRONMENT", "development") == "development":
    load_dotenv()  # Load environment variables from .env file


class ConfigurationError(Exception):
    """Raised when a required setting is missing or invalid."""
    pass


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")


# Database Configuration
DATABASE_URL = os.getenv("DATABASE_URL")

# Ingestion
INGESTION_INTERVAL_SECONDS = _int_env("INGESTION_INTERVAL_SECONDS", 300)
INGESTION_MAX_WORKERS = _int_env("INGESTION_MAX_WORKERS", 4)
TARGET_CHAIN = os.getenv("TARGET_CHAIN", "Sonic")
DEFILLAMA_POOLS_URL = os.getenv("DEFILLAMA_POOLS_URL", "https://yields.llama.fi/pools")
FEED_TIMEOUT_SECONDS = _int_env("FEED_TIMEOUT_SECONDS", 30)

# Embeddings
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")
EMBEDDING_DIMENSION = _int_env("EMBEDDING_DIMENSION", 1536)
EMBEDDING_TIMEOUT_SECONDS = _int_env("EMBEDDING_TIMEOUT_SECONDS", 20)

# Vector search (HNSW scan settings, applied per search transaction)
VECTOR_SEARCH_EF_SEARCH = _int_env("VECTOR_SEARCH_EF_SEARCH", 100)
# "strict_order" needs pgvector >= 0.8; set to "off" on older servers
VECTOR_SEARCH_ITERATIVE_SCAN = os.getenv("VECTOR_SEARCH_ITERATIVE_SCAN", "strict_order")

# Logging
LOG_FORMAT = os.getenv("LOG_FORMAT", "json")


def require_database_url() -> str:
    """
    Returns the store connection string, normalized to the psycopg2 driver.
    A missing DATABASE_URL is fatal at startup.
    """
    url = DATABASE_URL
    if not url:
        raise ConfigurationError("DATABASE_URL is not set")
    if url.startswith("postgres://"):
        url = "postgresql+psycopg2://" + url[len("postgres://"):]
    elif url.startswith("postgresql://"):
        url = "postgresql+psycopg2://" + url[len("postgresql://"):]
    return url
