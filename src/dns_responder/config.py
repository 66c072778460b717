"""Configuration from environment."""

import os


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# UDP listener
DEFAULT_LISTEN_HOST = os.getenv("DNS_LISTEN_HOST", "0.0.0.0")
DEFAULT_LISTEN_PORT = int(os.getenv("DNS_LISTEN_PORT", "53"))

# Answers
DEFAULT_ANSWER_ADDRESS = os.getenv("DNS_ANSWER_ADDRESS", "151.101.2.217")
DEFAULT_PTR_TARGET = os.getenv("DNS_PTR_TARGET", "localhost")
DEFAULT_ANSWER_TTL = int(os.getenv("DNS_ANSWER_TTL", "0"))
DEFAULT_FALLBACK_RCODE = os.getenv("DNS_FALLBACK_RCODE", "NOTZONE")
DEFAULT_AUTHORITATIVE = _env_flag("DNS_AUTHORITATIVE", "false")
DEFAULT_RECURSION_AVAILABLE = _env_flag("DNS_RECURSION_AVAILABLE", "true")

# HTTP host
DEFAULT_HTTP_HOST = os.getenv("MCP_HOST", "0.0.0.0")
DEFAULT_HTTP_PORT = int(os.getenv("MCP_PORT", "8000"))
