"""Configuration for the media scheduler service."""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
load_dotenv()


def _env_flag(name: str, default: str = "") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


@dataclass
class Settings:
    """Service settings."""

    # Server
    host: str = "0.0.0.0"
    port: int = 8790
    debug: bool = False

    # Storage
    data_dir: Path = field(default_factory=lambda: Path.home() / ".media-scheduler")
    db_path: Optional[Path] = None
    playlist_dir: Optional[Path] = None

    # Scheduling
    default_timezone: str = "UTC"
    default_max_retries: int = 3
    execution_timeout: Optional[float] = None

    # VLC
    vlc_path: str = "vlc"
    vlc_http_host: str = "localhost"
    vlc_http_port: int = 8083
    vlc_http_password: str = "vlc"
    vlc_autostart: bool = True

    def __post_init__(self):
        if self.db_path is None:
            self.db_path = self.data_dir / "db.sqlite"
        if self.playlist_dir is None:
            self.playlist_dir = self.data_dir / "playlists"

    @classmethod
    def from_env(cls) -> "Settings":
        """Load settings from environment variables."""
        data_dir = Path(os.getenv(
            "MEDIA_SCHEDULER_DATA_DIR", str(Path.home() / ".media-scheduler")
        )).expanduser()
        db_path = os.getenv("MEDIA_SCHEDULER_DB_PATH")
        playlist_dir = os.getenv("MEDIA_SCHEDULER_PLAYLIST_DIR")
        timeout = os.getenv("MEDIA_SCHEDULER_EXECUTION_TIMEOUT")

        return cls(
            # Server
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "8790")),
            debug=_env_flag("DEBUG"),

            # Storage
            data_dir=data_dir,
            db_path=Path(db_path).expanduser() if db_path else None,
            playlist_dir=Path(playlist_dir).expanduser() if playlist_dir else None,

            # Scheduling
            default_timezone=os.getenv("MEDIA_SCHEDULER_TIMEZONE", "UTC"),
            default_max_retries=int(os.getenv("MEDIA_SCHEDULER_MAX_RETRIES", "3")),
            execution_timeout=float(timeout) if timeout else None,

            # VLC
            vlc_path=os.getenv("VLC_PATH", "vlc"),
            vlc_http_host=os.getenv("VLC_HTTP_HOST", "localhost"),
            vlc_http_port=int(os.getenv("VLC_HTTP_PORT", "8083")),
            vlc_http_password=os.getenv("VLC_HTTP_PASSWORD", "vlc"),
            vlc_autostart=_env_flag("VLC_AUTOSTART", "true"),
        )


# Global settings instance
settings = Settings.from_env()
