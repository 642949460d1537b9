"""
Application configuration (env, settings, constants).

Responsibility: Centralize config loading, environment variables, and app-wide
constants. Keeps the rest of the app decoupled from how config is sourced.
"""

import os

from dotenv import load_dotenv

load_dotenv()


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    try:
        return float(raw) if raw else default
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"

# Chat model (any OpenAI-compatible endpoint, e.g. Zhipu GLM or OpenAI itself)
OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "").strip()
OPENAI_BASE_URL: str = os.getenv("OPENAI_BASE_URL", "").strip()
OPENAI_LLM_MODEL: str = (
    os.getenv("OPENAI_LLM_MODEL", "gpt-4o-mini").strip() or "gpt-4o-mini"
)
LLM_TEMPERATURE: float = _env_float("LLM_TEMPERATURE", 0.7)
LLM_API_TIMEOUT: float = 60.0

# Agent loop
MAX_AGENTIC_ROUNDS: int = _env_int("MAX_AGENTIC_ROUNDS", 12)
AGENT_MAX_TOKENS: int = _env_int("AGENT_MAX_TOKENS", 2048)

# Embeddings (OpenAI-compatible /embeddings; DashScope text-embedding-v3 by default)
EMBEDDING_API_KEY: str = (
    os.getenv("EMBEDDING_API_KEY", "").strip() or os.getenv("DASHSCOPE_API_KEY", "").strip()
)
EMBEDDING_BASE_URL: str = (
    os.getenv("EMBEDDING_BASE_URL", "https://dashscope.aliyuncs.com/compatible-mode/v1").strip()
    or "https://dashscope.aliyuncs.com/compatible-mode/v1"
)
EMBEDDING_MODEL: str = os.getenv("EMBEDDING_MODEL", "text-embedding-v3").strip() or "text-embedding-v3"
VECTOR_DIM: int = _env_int("VECTOR_DIM", 1024)
# DashScope rejects more than 10 inputs per embeddings call
EMBED_BATCH_SIZE: int = 10
EMBED_API_TIMEOUT: float = 30.0

# Milvus (from env)
MILVUS_URI: str = os.getenv("MILVUS_URI", "").strip()
MILVUS_TOKEN: str = os.getenv("MILVUS_TOKEN", "").strip()
COLLECTION_NAME: str = os.getenv("COLLECTION_NAME", "knowledge_documents").strip() or "knowledge_documents"

# Chunking defaults (tuning these affects retrieval quality)
CHUNK_SIZE: int = 1000
CHUNK_OVERLAP: int = 200

# Retrieval
RETRIEVAL_TOP_K: int = 3
RETRIEVAL_THRESHOLD: float = 0.65
MAX_CONTEXT_CHARS: int = 2000
MIN_QUERY_LENGTH: int = 4

# Ingestion
KNOWLEDGE_FILE: str = os.getenv("KNOWLEDGE_FILE", "data/knowledge/knowledge.jsonl").strip()
INGEST_MAX_RETRIES: int = 3
INGEST_RETRY_DELAY: float = 2.0
INGEST_BATCH_PAUSE: float = 0.5

# Remote tool servers: "amap=http://localhost:9100,train=http://localhost:9200"
TOOL_SERVERS: str = os.getenv("TOOL_SERVERS", "").strip()
TOOLS_HTTP_TIMEOUT: float = 15.0

# Stdio MCP tool servers, each launched as a subprocess through npx
AMAP_API_KEY: str = os.getenv("AMAP_API_KEY", "").strip()
VARIFLIGHT_API_KEY: str = os.getenv("VARIFLIGHT_API_KEY", "").strip()
TRAIN_MCP_ENABLED: bool = os.getenv("TRAIN_MCP_ENABLED", "").strip().lower() in ("1", "true", "yes")
MCP_LOAD_TIMEOUT: float = 60.0

# Open-Meteo weather API (no key required)
OPEN_METEO_GEOCODE: str = "https://geocoding-api.open-meteo.com/v1/search"
OPEN_METEO_FORECAST: str = "https://api.open-meteo.com/v1/forecast"

LOCAL_TIMEZONE: str = os.getenv("LOCAL_TIMEZONE", "Asia/Shanghai").strip() or "Asia/Shanghai"

# Client side
API_BASE: str = os.getenv("API_BASE", "http://localhost:8000").strip() or "http://localhost:8000"
CHAT_TIMEOUT: float = 120.0


def parse_tool_servers(raw: str) -> dict[str, str]:
    """Parse "name=url,name=url" into an ordered mapping; malformed entries are skipped."""
    servers: dict[str, str] = {}
    for entry in (raw or "").split(","):
        name, sep, url = entry.partition("=")
        name, url = name.strip(), url.strip()
        if sep and name and url:
            servers[name] = url.rstrip("/")
    return servers


def build_mcp_servers(
    amap_key: str = AMAP_API_KEY,
    variflight_key: str = VARIFLIGHT_API_KEY,
    train: bool = TRAIN_MCP_ENABLED,
) -> dict[str, dict]:
    """Stdio connection settings per MCP server; a server without its key is left out."""
    servers: dict[str, dict] = {}
    if amap_key:
        servers["amap"] = {
            "transport": "stdio",
            "command": "npx",
            "args": ["-y", "@amap/amap-maps-mcp-server"],
            "env": {"AMAP_MAPS_API_KEY": amap_key},
        }
    if variflight_key:
        servers["variflight"] = {
            "transport": "stdio",
            "command": "npx",
            "args": ["-y", "@variflight-ai/variflight-mcp"],
            "env": {"VARIFLIGHT_API_KEY": variflight_key},
        }
    if train:
        servers["train"] = {"transport": "stdio", "command": "npx", "args": ["-y", "12306-mcp"]}
    return servers
