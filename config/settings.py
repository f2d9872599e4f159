"""
Configuration loader for the maintenance intake bot.
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
class FlowConfig:
    mode: str = "guided"                         # "guided" | "bulk"
    attachments_dir: str = "./tmp/attachments"
    max_remediation_rounds: int = 5              # 0 disables the bound
    download_timeout: float = 30.0


@dataclass
class AutomationConfig:
    provider: str = "tinyfish"
    base_url: str = "https://agent.tinyfish.ai"
    api_key: str = ""
    timeout: float = 600.0                       # read timeout for the SSE stream
    intake_portal_url: str = "https://example.invalid"


@dataclass
class ChannelConfig:
    enabled: bool = False
    credentials: dict[str, Any] = field(default_factory=dict)


@dataclass
class CredentialsConfig:
    path: str = "./data/credentials.json"
    vault_path: str = "./data/credentials.enc"
    master_key: str = ""


@dataclass
class StatusConfig:
    live_lookup: bool = False                    # ask the agent instead of local history


@dataclass
class Settings:
    app_name: str = "MaintenanceIntake"
    debug: bool = False
    commands_file: str = "./data/commands.json"
    allowed_channel_id: str = ""                 # restrict guild traffic to one channel
    flow: FlowConfig = field(default_factory=FlowConfig)
    automation: AutomationConfig = field(default_factory=AutomationConfig)
    credentials: CredentialsConfig = field(default_factory=CredentialsConfig)
    status: StatusConfig = field(default_factory=StatusConfig)
    channels: dict[str, ChannelConfig] = field(default_factory=dict)


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


def _unset_to_empty(value: Any) -> str:
    """Treat an unresolved ${VAR} placeholder as an empty setting."""
    value = str(value or "")
    return "" if value.startswith("${") else value


def load_settings(config_path: str = None) -> Settings:
    """Load settings from YAML file."""
    global _settings

    if config_path is None:
        config_path = os.environ.get(
            "INTAKE_CONFIG",
            str(Path(__file__).parent / "settings.yaml"),
        )

    settings = Settings()

    if Path(config_path).exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        raw = _process_values(raw)

        settings.app_name = raw.get("app_name", settings.app_name)
        settings.debug = raw.get("debug", settings.debug)
        settings.commands_file = raw.get("commands_file", settings.commands_file)
        settings.allowed_channel_id = _unset_to_empty(raw.get("allowed_channel_id"))

        if "flow" in raw:
            fl = raw["flow"]
            settings.flow = FlowConfig(
                mode=fl.get("mode", "guided"),
                attachments_dir=fl.get("attachments_dir", settings.flow.attachments_dir),
                max_remediation_rounds=int(fl.get("max_remediation_rounds", 5)),
                download_timeout=float(fl.get("download_timeout", 30.0)),
            )

        if "automation" in raw:
            au = raw["automation"]
            settings.automation = AutomationConfig(
                provider=au.get("provider", "tinyfish"),
                base_url=au.get("base_url", settings.automation.base_url),
                api_key=_unset_to_empty(au.get("api_key")),
                timeout=float(au.get("timeout", 600.0)),
                intake_portal_url=au.get("intake_portal_url", settings.automation.intake_portal_url),
            )

        if "credentials" in raw:
            cr = raw["credentials"]
            settings.credentials = CredentialsConfig(
                path=cr.get("path", settings.credentials.path),
                vault_path=cr.get("vault_path", settings.credentials.vault_path),
                master_key=_unset_to_empty(cr.get("master_key")),
            )

        if "status" in raw:
            settings.status = StatusConfig(
                live_lookup=bool(raw["status"].get("live_lookup", False)),
            )

        if "channels" in raw:
            for ch_name, ch_data in raw["channels"].items():
                settings.channels[ch_name] = ChannelConfig(
                    enabled=ch_data.get("enabled", False),
                    credentials=ch_data.get("credentials", {}),
                )

    _settings = settings
    return settings


def get_settings() -> Settings:
    """Return cached settings or load from default path."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings
