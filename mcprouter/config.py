from pydantic import BaseModel
import os
import logging
from pathlib import Path

logger = logging.getLogger(__name__)

# Load .env file if it exists (before reading os.getenv)
_env_path = Path(__file__).resolve().parent.parent / ".env"
if _env_path.exists():
    with open(_env_path) as f:
        for line in f:
            line = line.strip()
            if line and not line.startswith("#") and "=" in line:
                key, _, value = line.partition("=")
                key = key.strip()
                value = value.strip()
                # Only set if not already in environment (env vars take precedence)
                if key not in os.environ:
                    os.environ[key] = value


def _sanitize_ascii(val: str) -> str:
    """Strip non-ASCII characters from config values (prevents encoding errors)"""
    return val.encode('ascii', errors='ignore').decode('ascii').strip()


class Settings(BaseModel):
    # Oracle backend: "openai" or "anthropic"
    default_llm_provider: str = _sanitize_ascii(os.getenv("DEFAULT_LLM_PROVIDER", "openai")).lower()

    # OpenAI-compatible chat completions
    openai_api_key: str = _sanitize_ascii(os.getenv("OPENAI_API_KEY", ""))
    openai_base_url: str = _sanitize_ascii(os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1"))
    openai_model: str = _sanitize_ascii(os.getenv("DEFAULT_OPENAI_MODEL", "gpt-4o-mini"))

    # Anthropic Messages API
    anthropic_api_key: str = _sanitize_ascii(os.getenv("ANTHROPIC_API_KEY", ""))
    anthropic_base_url: str = _sanitize_ascii(os.getenv("ANTHROPIC_BASE_URL", "https://api.anthropic.com"))
    anthropic_model: str = _sanitize_ascii(os.getenv("DEFAULT_ANTHROPIC_MODEL", "claude-3-5-sonnet-latest"))
    anthropic_max_tokens: int = int(os.getenv("ANTHROPIC_MAX_TOKENS", "2048"))

    # Latency bounds (seconds)
    oracle_timeout_s: float = float(os.getenv("ORACLE_TIMEOUT", "60"))
    tool_timeout_s: float = float(os.getenv("TOOL_TIMEOUT", "30"))
    install_timeout_s: float = float(os.getenv("INSTALL_TIMEOUT", "300"))

    # Conversation memory
    memory_capacity: int = int(os.getenv("MEMORY_CAPACITY", "10"))
    history_turns: int = int(os.getenv("HISTORY_TURNS", "10"))

    # Provider catalog persistence: "json", "sqlite" or "none"
    registry_backend: str = os.getenv("REGISTRY_BACKEND", "json").lower()
    registry_path: str = os.getenv("REGISTRY_PATH", "config/servers.json")
    registry_db_path: str = os.getenv("REGISTRY_DB_PATH", "data/registry.db")

    # Guided provider creation
    providers_dir: str = os.getenv("PROVIDERS_DIR", "mcp-servers")
    filesystem_provider_id: str = os.getenv("FILESYSTEM_PROVIDER_ID", "filesystem")

    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()


settings = Settings()


def _mask(secret: str) -> str:
    return '***' + secret[-4:] if len(secret) > 4 else 'EMPTY'


# Log config for debugging
logger.info(f"Config: oracle → {settings.default_llm_provider} "
            f"(openai key={_mask(settings.openai_api_key)}, anthropic key={_mask(settings.anthropic_api_key)})")
logger.info(f"Config: registry → {settings.registry_backend}, memory capacity={settings.memory_capacity}")
