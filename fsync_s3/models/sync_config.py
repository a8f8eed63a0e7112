"""YAML/JSON configuration for fsync-s3."""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from fsync_s3.core.errors import ConfigurationError

# Spellings accepted in addition to the hyphenated keys
KEY_ALIASES = {
    "inboundDir": "local_directory",
    "accessKey": "access_key",
}

REQUIRED_FIELDS = ("region", "bucket", "local_directory", "access_key", "secret")

FAILURE_ACTIONS = ("fail", "skip")

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# S3 rejects multipart parts smaller than 5 MiB (except the last one)
MIN_PART_SIZE_MB = 5


class SyncConfig:
    """Configuration for a single watched directory and its destination bucket."""

    def __init__(self, **kwargs):
        """Initialize configuration, applying defaults for optional settings."""
        # AWS
        self.region: str = kwargs.get("region", "")
        self.bucket: str = kwargs.get("bucket", "")
        self.access_key: str = kwargs.get("access_key", "")
        self.secret: str = kwargs.get("secret", "")
        self.verify_bucket: bool = kwargs.get("verify_bucket", True)

        # Kept verbatim: the string is both the watch target and the key prefix
        self.local_directory: str = kwargs.get("local_directory", "")

        # Failure policy
        self.on_file_error: str = kwargs.get("on_file_error", "fail")
        self.on_upload_error: str = kwargs.get("on_upload_error", "fail")
        self.upload_retries: int = kwargs.get("upload_retries", 0)
        self.retry_delay_seconds: float = kwargs.get("retry_delay_seconds", 1.0)

        # Upload settings
        self.part_size_mb: int = kwargs.get("part_size_mb", 8)

        self.log_level: str = kwargs.get("log_level", "INFO")

    @property
    def part_size(self) -> int:
        """Multipart chunk size in bytes."""
        return self.part_size_mb * 1024 * 1024

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SyncConfig":
        """Build a validated configuration from a parsed mapping.

        Args:
            data: Mapping read from the configuration file

        Returns:
            Validated SyncConfig

        Raises:
            ConfigurationError: If the mapping is incomplete or holds invalid values
        """
        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration must be a mapping, got {type(data).__name__}")

        kwargs = {}
        for key, value in data.items():
            name = KEY_ALIASES.get(str(key), str(key).replace("-", "_"))
            kwargs[name] = value

        config = cls(**kwargs)
        config.validate()
        return config

    @classmethod
    def load(cls, config_path: Path) -> "SyncConfig":
        """Load configuration from a YAML or JSON file."""
        if not config_path.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        try:
            with open(config_path, encoding="utf-8") as f:
                if config_path.suffix.lower() == ".json":
                    data = json.load(f)
                else:
                    data = yaml.safe_load(f) or {}
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Unable to read configuration file {config_path}: {e}") from e

        return cls.from_dict(data)

    def validate(self) -> None:
        """Check required values and option ranges.

        Raises:
            ConfigurationError: Listing every problem found
        """
        problems: List[str] = []

        missing = [name for name in REQUIRED_FIELDS if not isinstance(getattr(self, name), str) or not getattr(self, name)]
        if missing:
            problems.append("missing " + ", ".join(name.replace("_", "-") for name in missing))

        if self.on_file_error not in FAILURE_ACTIONS:
            problems.append(f"on-file-error must be one of {FAILURE_ACTIONS}, got {self.on_file_error!r}")
        if self.on_upload_error not in FAILURE_ACTIONS:
            problems.append(f"on-upload-error must be one of {FAILURE_ACTIONS}, got {self.on_upload_error!r}")
        if not isinstance(self.upload_retries, int) or isinstance(self.upload_retries, bool) or self.upload_retries < 0:
            problems.append(f"upload-retries must be a non-negative integer, got {self.upload_retries!r}")
        if (
            not isinstance(self.retry_delay_seconds, (int, float))
            or isinstance(self.retry_delay_seconds, bool)
            or self.retry_delay_seconds < 0
        ):
            problems.append(f"retry-delay-seconds must be a non-negative number, got {self.retry_delay_seconds!r}")
        if not isinstance(self.part_size_mb, int) or isinstance(self.part_size_mb, bool) or self.part_size_mb < MIN_PART_SIZE_MB:
            problems.append(f"part-size-mb must be an integer >= {MIN_PART_SIZE_MB}, got {self.part_size_mb!r}")
        if not isinstance(self.verify_bucket, bool):
            problems.append(f"verify-bucket must be true or false, got {self.verify_bucket!r}")
        if not isinstance(self.log_level, str) or self.log_level.upper() not in LOG_LEVELS:
            problems.append(f"log-level must be one of {LOG_LEVELS}, got {self.log_level!r}")

        if problems:
            raise ConfigurationError("Invalid configuration: " + "; ".join(problems))

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to a dictionary using the file's key spelling."""
        return {
            "region": self.region,
            "bucket": self.bucket,
            "local-directory": self.local_directory,
            "access-key": self.access_key,
            "secret": self.secret,
            "verify-bucket": self.verify_bucket,
            "on-file-error": self.on_file_error,
            "on-upload-error": self.on_upload_error,
            "upload-retries": self.upload_retries,
            "retry-delay-seconds": self.retry_delay_seconds,
            "part-size-mb": self.part_size_mb,
            "log-level": self.log_level,
        }

    def save(self, config_path: Path) -> None:
        """Save configuration as JSON or YAML depending on the file suffix."""
        config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(config_path, "w", encoding="utf-8") as f:
            if config_path.suffix.lower() == ".json":
                json.dump(self.to_dict(), f, indent=2)
            else:
                yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)


# Searched in order when FSYNC_S3_CONFIG is not set
DEFAULT_CONFIG_PATHS = [
    Path.home() / "config.json",
    Path.home() / "config.yaml",
    Path.home() / "config.yml",
]


def find_config_path(override: Optional[str] = None) -> Optional[Path]:
    """Return the configuration file to load, or None when nothing exists.

    Args:
        override: Explicit path (from FSYNC_S3_CONFIG); returned even if missing
    """
    if override:
        return Path(override).expanduser()
    for candidate in DEFAULT_CONFIG_PATHS:
        if candidate.exists():
            return candidate
    return None
