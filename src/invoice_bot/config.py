"""Configuration loader with YAML parsing, env-var interpolation, and Pydantic validation."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Literal, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

DEFAULT_SYSTEM_PROMPT = """You are an AI assistant specialized in invoice management.
When asked about invoices, ALWAYS use the appropriate tool instead of making up information.
Available tools:
- getTotalInvoices: Use this to get the total number and value of invoices filtered by status (all, paid, pending, overdue)
- getInvoiceDetails: Use this to get detailed information about a specific invoice by its ID
- createInvoice: Use this to create a new invoice
- updateInvoice: Use this to update an existing invoice

IMPORTANT: If the user asks about invoice counts, totals, or status, you MUST use the getTotalInvoices tool."""


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 3001
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])


class AnthropicConfig(BaseModel):
    api_key: str
    base_url: Optional[str] = None
    max_retries: int = 3
    timeout: int = 120


class ChatConfig(BaseModel):
    model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 4096
    temperature: float = 0.0
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    tool_timeout_seconds: float = 5.0
    interaction_retention_seconds: float = 300.0


class QuickBooksConfig(BaseModel):
    client_id: str = ""
    client_secret: str = ""
    redirect_uri: str = "http://localhost:3001/callback"
    environment: Literal["sandbox", "production"] = "sandbox"
    frontend_url: str = "http://localhost:3000"
    minor_version: str = "73"
    default_item_id: str = "1"  # ItemRef used for invoice lines created through the API
    request_timeout: float = 30.0

    @field_validator("client_id", "client_secret", mode="before")
    @classmethod
    def _drop_unresolved(cls, value: object) -> object:
        # "${QUICKBOOKS_CLIENT_ID}" left behind when the variable is unset, None when it is empty
        if value is None:
            return ""
        if isinstance(value, str) and _ENV_VAR_PATTERN.fullmatch(value.strip()):
            return ""
        return value

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)


class AppConfig(BaseModel):
    log_level: str = "INFO"
    json_logs: bool = False
    server: ServerConfig = Field(default_factory=ServerConfig)
    anthropic: Optional[AnthropicConfig] = None
    chat: ChatConfig = Field(default_factory=ChatConfig)
    quickbooks: QuickBooksConfig = Field(default_factory=QuickBooksConfig)


_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


def _interpolate_env_vars(text: str) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""

    def _replace(match: re.Match) -> str:
        value = os.environ.get(match.group(1))
        if value is None:
            return match.group(0)
        return value

    return _ENV_VAR_PATTERN.sub(_replace, text)


def load_config(config_path: str | Path = "config.yaml", env_path: str | Path = ".env") -> AppConfig:
    """Load and validate configuration from YAML file with env-var interpolation."""
    env_file = Path(env_path)
    if env_file.exists():
        load_dotenv(env_file)

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    raw_text = config_file.read_text(encoding="utf-8")
    data = yaml.safe_load(_interpolate_env_vars(raw_text)) or {}

    return AppConfig(**data)
