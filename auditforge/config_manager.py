#!/usr/bin/env python3
"""
Configuration Manager for AuditForge

Loads settings from ~/.auditforge/config.yaml, then lets environment
variables override them.
"""

import os
import yaml
from pathlib import Path
from typing import Any, Dict, Optional
from dataclasses import dataclass, asdict, fields

from rich.console import Console


@dataclass
class AuditForgeConfig:
    """Main configuration for AuditForge."""

    # LLM settings (any OpenAI-compatible endpoint, e.g. the AIML API)
    llm_api_key: str = ""
    llm_base_url: str = ""
    llm_model: str = "gpt-4o"
    analysis_temperature: float = 0.3
    analysis_max_tokens: int = 2000
    correction_temperature: float = 0.2
    correction_max_tokens: int = 3000
    llm_timeout: float = 60
    audit_timeout: float = 120

    # Block explorer settings
    etherscan_api_key: str = ""
    etherscan_base_url: str = "https://api.etherscan.io/api"
    default_chain: str = "ethereum"
    request_timeout: float = 30

    # Session settings
    history_limit: int = 50
    log_level: str = "INFO"
    output_dir: str = "./reports"


# (environment variable, config field), first match wins per field
ENV_OVERRIDES = [
    ("AIML_API_KEY", "llm_api_key"),
    ("OPENAI_API_KEY", "llm_api_key"),
    ("AIML_BASE_URL", "llm_base_url"),
    ("LLM_BASE_URL", "llm_base_url"),
    ("AUDITFORGE_LLM_MODEL", "llm_model"),
    ("ETHERSCAN_API_KEY", "etherscan_api_key"),
    ("ETHERSCAN_BASE_URL", "etherscan_base_url"),
    ("AUDITFORGE_LOG_LEVEL", "log_level"),
]

SECRET_FIELDS = ("llm_api_key", "etherscan_api_key")


def mask_secret(value: str) -> str:
    if not value:
        return "(not set)"
    if len(value) <= 8:
        return "****"
    return f"{value[:4]}...{value[-4:]}"


class ConfigManager:
    """Manages AuditForge configuration."""

    def __init__(self, config_file: str = "~/.auditforge/config.yaml", console: Optional[Console] = None):
        self.config_file = Path(config_file).expanduser()
        self.console = console or Console()
        self.config = AuditForgeConfig()

        self.load_config()
        self.apply_env_overrides()

    def load_config(self) -> None:
        """Load configuration from file. Unknown keys are ignored."""
        if not self.config_file.exists():
            return
        try:
            with open(self.config_file, 'r') as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            self.console.print(f"[yellow]Warning: Could not load config file: {e}[/yellow]")
            return

        if not isinstance(data, dict):
            return
        for key, value in data.items():
            if hasattr(self.config, key) and value is not None:
                setattr(self.config, key, value)

    def apply_env_overrides(self) -> None:
        applied = set()
        for env_name, field_name in ENV_OVERRIDES:
            if field_name in applied:
                continue
            value = os.getenv(env_name)
            if value:
                setattr(self.config, field_name, value)
                applied.add(field_name)

    def save_config(self) -> bool:
        """Save current configuration to file."""
        try:
            self.config_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_file, 'w') as f:
                yaml.dump(asdict(self.config), f, default_flow_style=False, indent=2)
            self.console.print(f"[green]✓ Configuration saved to {self.config_file}[/green]")
            return True
        except OSError as e:
            self.console.print(f"[red]✗ Failed to save config: {e}[/red]")
            return False

    def set_value(self, key: str, value: str) -> Any:
        """Set a config field from its string form, converted to the field's type.

        Raises:
            KeyError: unknown setting.
            ValueError: value cannot be converted.
        """
        field_types: Dict[str, Any] = {f.name: f.type for f in fields(AuditForgeConfig)}
        if key not in field_types:
            raise KeyError(f"Unknown setting: {key}")

        field_type = field_types[key]
        if field_type in (int, 'int'):
            converted = int(value)
        elif field_type in (float, 'float'):
            converted = float(value)
        else:
            converted = value
        setattr(self.config, key, converted)
        return converted

    def show_config(self) -> None:
        """Display current configuration."""
        from rich.table import Table

        table = Table(title="⚙️ AuditForge Configuration")
        table.add_column("Setting", style="cyan")
        table.add_column("Value", style="green")

        for key, value in asdict(self.config).items():
            display = mask_secret(value) if key in SECRET_FIELDS else str(value)
            table.add_row(key, display)

        self.console.print(table)
        self.console.print(f"\n[bold cyan]Config File:[/bold cyan] {self.config_file}")
