"""
Configuration loader for the conversational agent engine.
Reads settings from YAML file with environment variable substitution.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


@dataclass
class LLMConfig:
    provider: str = "anthropic"
    model: str = "claude-sonnet-4-20250514"
    temperature: float = 0.3
    max_tokens: int = 300
    api_key: str = ""


@dataclass
class DatabaseConfig:
    store_backend: str = "memory"                      # "memory" | "file"
    store_file_dir: str = "./data"                     # directory for file backend


@dataclass
class ExecutorConfig:
    type: str = "mock"                                 # "rest" | "mock"
    base_url: str = ""
    auth_type: str = "bearer"
    auth_credentials: dict[str, Any] = field(default_factory=dict)
    endpoints: dict[str, str] = field(default_factory=dict)   # action_type → path
    timeout_s: float = 30.0


@dataclass
class EngineConfig:
    conversation_ttl_hours: int = 24
    stuck_threshold: int = 5
    escalate_when_stuck: bool = True
    enforce_max_turns: bool = True
    mark_escalated_on_keyword: bool = False
    sweep_interval_s: int = 300
    default_language: str = "pt"


@dataclass
class Settings:
    app_name: str = "ConversationalAgentEngine"
    debug: bool = False
    intent_analyzer: str = "keyword"                   # "keyword" | "llm"
    llm: LLMConfig = field(default_factory=LLMConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    executor: ExecutorConfig = field(default_factory=ExecutorConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    agents: list[dict[str, Any]] = field(default_factory=list)


_settings: Optional[Settings] = None


def _substitute_env_vars(value: str) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""
    pattern = re.compile(r'\$\{(\w+)\}')
    def replacer(match):
        var_name = match.group(1)
        return os.environ.get(var_name, match.group(0))
    return pattern.sub(replacer, value)


def _process_values(obj: Any) -> Any:
    """Recursively substitute env vars in all string values."""
    if isinstance(obj, str):
        return _substitute_env_vars(obj)
    elif isinstance(obj, dict):
        return {k: _process_values(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_process_values(v) for v in obj]
    return obj


def load_settings(config_path: str = None) -> Settings:
    """Load settings from YAML file."""
    global _settings

    if config_path is None:
        config_path = os.environ.get(
            "CONVERSE_CONFIG",
            str(Path(__file__).parent / "settings.yaml"),
        )

    settings = Settings()

    if Path(config_path).exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        raw = _process_values(raw)

        settings.app_name = raw.get("app_name", settings.app_name)
        settings.debug = raw.get("debug", settings.debug)
        settings.intent_analyzer = raw.get("intent_analyzer", settings.intent_analyzer)

        if "llm" in raw:
            llm = raw["llm"]
            settings.llm = LLMConfig(
                provider=llm.get("provider", "anthropic"),
                model=llm.get("model", settings.llm.model),
                temperature=llm.get("temperature", 0.3),
                max_tokens=llm.get("max_tokens", 300),
                api_key=llm.get("api_key", ""),
            )

        if "database" in raw:
            db = raw["database"]
            settings.database = DatabaseConfig(
                store_backend=db.get("store_backend", settings.database.store_backend),
                store_file_dir=db.get("store_file_dir", settings.database.store_file_dir),
            )

        if "executor" in raw:
            ex = raw["executor"]
            settings.executor = ExecutorConfig(
                type=ex.get("type", "mock"),
                base_url=ex.get("base_url", ""),
                auth_type=ex.get("auth_type", "bearer"),
                auth_credentials=ex.get("auth_credentials", {}),
                endpoints=ex.get("endpoints", {}),
                timeout_s=ex.get("timeout_s", 30.0),
            )

        if "engine" in raw:
            en = raw["engine"]
            defaults = EngineConfig()
            settings.engine = EngineConfig(
                conversation_ttl_hours=en.get("conversation_ttl_hours", defaults.conversation_ttl_hours),
                stuck_threshold=en.get("stuck_threshold", defaults.stuck_threshold),
                escalate_when_stuck=en.get("escalate_when_stuck", defaults.escalate_when_stuck),
                enforce_max_turns=en.get("enforce_max_turns", defaults.enforce_max_turns),
                mark_escalated_on_keyword=en.get("mark_escalated_on_keyword", defaults.mark_escalated_on_keyword),
                sweep_interval_s=en.get("sweep_interval_s", defaults.sweep_interval_s),
                default_language=en.get("default_language", defaults.default_language),
            )

        settings.agents = raw.get("agents", [])

    _settings = settings
    return settings


def get_settings() -> Settings:
    """Return cached settings or load from default path."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Drop cached settings (for testing)."""
    global _settings
    _settings = None
