from dataclasses import dataclass, field
from pathlib import Path
import json
from typing import Any, Dict, List

# Package defaults (bundled with code)
PACKAGE_CONFIG_DIR = Path(__file__).parent / "defaults"

# User configs (in project root, gitignored)
PROJECT_ROOT = Path(__file__).resolve().parents[3]
USER_CONFIG_DIR = PROJECT_ROOT / "config"

# Storage keys are part of the persisted format and not configurable
CATEGORIES_KEY = "categories"
RULES_KEY = "category_rules"
HISTORY_KEY = "purchase_history"


class ConfigLoader:
    """Load configuration with user overrides"""

    @staticmethod
    def load_config(config_name: str) -> Dict[str, Any]:
        """
        Load config with fallback: user config -> default config

        Args:
            config_name: Name of the config file (e.g., 'settings.json')

        Raises:
            FileNotFoundError: If no config file was found

        Returns:
            Parsed JSON configuration
        """
        user_config_path = USER_CONFIG_DIR / config_name
        if user_config_path.exists():
            with open(user_config_path, encoding="utf-8") as f:
                return json.load(f)

        default_config_path = PACKAGE_CONFIG_DIR / config_name
        if default_config_path.exists():
            with open(default_config_path, encoding="utf-8") as f:
                return json.load(f)

        raise FileNotFoundError(
            f"Config file '{config_name}' not found in:\n"
            f" - {user_config_path}\n"
            f" - {default_config_path}"
        )

    @staticmethod
    def load_default_categories() -> List[Dict[str, Any]]:
        """Load the seed categories created on first start"""
        return ConfigLoader.load_config("default_categories.json").get("categories", [])


@dataclass
class Settings:
    """
    Runtime settings.

    Usage:
        # Production - reads settings.json (user override or bundled default)
        settings = Settings.load()

        # Testing - construct directly
        settings = Settings(default_language="en")
    """
    database_path: str = "data/taxonomy.db"
    default_language: str = "de"
    fallback_language: str = "en"
    log_level: str = "WARNING"
    json_logs: bool = False
    strings: Dict[str, Dict[str, str]] = field(default_factory=dict)

    @classmethod
    def load(cls) -> "Settings":
        try:
            config = ConfigLoader.load_config("settings.json")
        except FileNotFoundError:
            return cls()

        known = {name for name in cls.__dataclass_fields__}
        return cls(**{key: value for key, value in config.items() if key in known})

    def text(self, key: str, language: str | None = None) -> str:
        """
        Look up a localized string.

        Tries the requested language, then the default and fallback
        languages, and finally returns the key itself.
        """
        for lang in (language, self.default_language, self.fallback_language):
            if lang and key in self.strings.get(lang, {}):
                return self.strings[lang][key]
        return key
