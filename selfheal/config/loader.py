from __future__ import annotations

import json
from pathlib import Path

from selfheal.config.schema import HealerConfig


class ConfigLoader:
    """Loads and validates the JSON healer configuration."""

    @staticmethod
    def load(path: str | Path) -> HealerConfig:
        config_path = Path(path)
        with config_path.open("r", encoding="utf-8") as handle:
            payload = json.load(handle)
        return HealerConfig.model_validate(payload)

    @staticmethod
    def load_or_default(path: str | Path | None) -> HealerConfig:
        if path is None or not Path(path).exists():
            return HealerConfig()
        return ConfigLoader.load(path)
