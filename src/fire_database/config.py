from typing import Any, Dict

from pydantic import BaseModel, ConfigDict


class DatabaseConfig(BaseModel):
    """
    Settings accepted by `database_factory`.

    `url` selects the backend: `sqlite://` for an in-memory database, or
    `sqlite:///path/to/file.db` for a file.
    """

    model_config = ConfigDict(extra="forbid")

    url: str = "sqlite://"
    cache_size_kib: int = -16384
    busy_timeout_ms: int = 5000

    @classmethod
    def from_dict(cls, config: Dict[str, Any] | None) -> "DatabaseConfig":
        config = dict(config or {})
        if not config.get("url"):
            config.pop("url", None)
        return cls.model_validate(config)
