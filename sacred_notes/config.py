"""
Configuration module for Sacred Notes.

Uses pydantic-settings for configuration management with environment variable support.
Environment variables use SACRED_ prefix (e.g., SACRED_DB_PATH).
"""

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _get_default_data_dir() -> Path:
    """Get default data directory based on platform."""
    if os.name == "nt":  # Windows
        return Path(os.environ.get("APPDATA", Path.home())) / "SacredNotes"
    else:  # Linux/macOS
        return Path.home() / ".sacred-notes"


class Settings(BaseSettings):
    """Application settings with environment variable support.

    Environment variables:
    - SACRED_DB_PATH: Path to the SQLite database file
    - SACRED_THEOLOGY_DATA_PATH: JSON file with the systematic theology corpus
    - SACRED_AUTH_PASSWORD: Password for the web API (auth disabled when unset)
    - SACRED_ESV_API_KEY: API key for the ESV translation
    - SACRED_SESSION_DAYS: Lifetime of an auth session in days
    - SACRED_LOG_LEVEL / SACRED_LOG_FORMAT: Logging level and renderer (console or json)
    """

    db_path: Path = Field(default_factory=lambda: _get_default_data_dir() / "sacred.db")
    theology_data_path: Path = Field(default_factory=lambda: _get_default_data_dir() / "systematic-theology.json")
    auth_password: str | None = None
    esv_api_key: str | None = None
    session_days: int = 30
    bible_api_timeout: float = 10.0
    max_search_results: int = 20
    max_content_size: int = 5 * 1024 * 1024  # 5MB in bytes
    max_title_length: int = 500
    log_level: str = "INFO"
    log_format: str = "console"
    host: str = "127.0.0.1"
    port: int = 3001

    model_config = SettingsConfigDict(env_prefix="SACRED_")


# Global settings instance
settings = Settings()

NOTE_TYPES = ("note", "commentary", "sermon")
SESSION_TYPES = ("bible", "doctrine", "note")
ANNOTATION_TYPES = ("highlight", "note")
ENTRY_TYPES = ("part", "chapter", "section", "subsection")

AUTH_COOKIE_NAME = "sacred_session"
EXPORT_VERSION = 1
FULL_EXPORT_VERSION = 2

# (id, name, color, icon, sort_order)
DEFAULT_INLINE_TAG_TYPES = [
    ("illustration", "Illustration", "#60a5fa", "💡", 0),
    ("application", "Application", "#34d399", "✅", 1),
    ("keypoint", "Key Point", "#fbbf24", "⭐", 2),
    ("quote", "Quote", "#a78bfa", "💬", 3),
    ("crossref", "Cross-Ref", "#f472b6", "🔗", 4),
]

# (id, name, color, sort_order)
DEFAULT_SYSTEMATIC_TAGS = [
    ("doctrine-word", "Doctrine of the Word of God", "#3b82f6", 1),
    ("doctrine-god", "Doctrine of God", "#8b5cf6", 2),
    ("doctrine-man", "Doctrine of Man", "#10b981", 3),
    ("doctrine-christ-spirit", "Doctrines of Christ and the Holy Spirit", "#f59e0b", 4),
    ("doctrine-salvation", "Doctrine of the Application of Redemption", "#ef4444", 5),
    ("doctrine-church", "Doctrine of the Church", "#ec4899", 6),
    ("doctrine-future", "Doctrine of the Future", "#06b6d4", 7),
]

# Starter topic hierarchy created by seed_topics()
DEFAULT_TOPICS = {
    "Systematic Theology": [
        "Bibliology (Doctrine of Scripture)",
        "Theology Proper (Doctrine of God)",
        "Christology (Doctrine of Christ)",
        "Pneumatology (Doctrine of the Holy Spirit)",
        "Anthropology (Doctrine of Man)",
        "Hamartiology (Doctrine of Sin)",
        "Soteriology (Doctrine of Salvation)",
        "Ecclesiology (Doctrine of the Church)",
        "Eschatology (Doctrine of Last Things)",
    ],
    "Practical": ["Discipleship", "Marriage & Family", "Leadership", "Prayer", "Evangelism"],
    "Resources": ["Illustrations", "Applications", "Quotes", "Word Studies"],
}
