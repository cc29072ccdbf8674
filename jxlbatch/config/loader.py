import yaml
from pathlib import Path
from .models import AppConfig

def load_config(config_path: Path) -> AppConfig:
    """Loads YAML config and parses it into AppConfig Pydantic model."""
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, 'r') as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Config file must contain a mapping: {config_path}")

    # Options may also be given as a list of KEY=VALUE strings
    options = data.get("options")
    if isinstance(options, list):
        data["options"] = dict(
            str(item).split("=", 1) if "=" in str(item) else (str(item), "")
            for item in options
        )

    return AppConfig(**data)
