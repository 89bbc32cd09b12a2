"""Engine configuration: immutable containers built from plain dicts (parsed TOML/JSON)."""

from __future__ import annotations

import dataclasses
from typing import Any

from mediaops._locator import normalize_provider
from mediaops._throttle import DEFAULT_CHUNK_SIZE, DEFAULT_CONCURRENCY, MAX_CHUNK_SIZE, MIN_CHUNK_SIZE


@dataclasses.dataclass(frozen=True)
class CloudProviderConfig:
    """Storage endpoint and OAuth client registration of one cloud provider.

    :param base_url: Storage endpoint used by :class:`~mediaops.adapters.HttpCloudClient`.
    :param token_url: OAuth token endpoint for the ``refresh_token`` grant.
    :param client_id: OAuth client id.
    :param client_secret: OAuth client secret, for confidential clients.
    :param scope: Scope requested on refresh.
    """

    base_url: str
    token_url: str
    client_id: str
    client_secret: str | None = dataclasses.field(default=None, repr=False)
    scope: str | None = None


@dataclasses.dataclass(frozen=True)
class EngineConfig:
    """Settings of one :class:`~mediaops.OperationOrchestrator`.

    :param trash_ttl_seconds: Undo window of a soft delete.
    :param trash_enabled: ``False`` makes every delete permanent.
    :param buffer_dir: Directory for bridged-transfer buffers; system temp dir when ``None``.
    :param chunk_size: Buffer size used before throughput history exists.
    :param min_chunk_size: Lower bound for recommended buffer sizes.
    :param max_chunk_size: Upper bound for recommended buffer sizes.
    :param concurrency: Backend family → max workers per batch.
    :param connect_retry_wait: Seconds before the single retry of a connection error.
    :param progress_interval: Minimum seconds between two progress events of one transfer.
    :param credentials: Credential dicts for an in-memory credential store.
    :param cloud: Provider id → endpoint and OAuth client settings.
    :raises ValueError: On out-of-range values.
    """

    trash_ttl_seconds: int = 300
    trash_enabled: bool = True
    buffer_dir: str | None = None
    chunk_size: int = DEFAULT_CHUNK_SIZE
    min_chunk_size: int = MIN_CHUNK_SIZE
    max_chunk_size: int = MAX_CHUNK_SIZE
    concurrency: dict[str, int] = dataclasses.field(default_factory=lambda: dict(DEFAULT_CONCURRENCY))
    connect_retry_wait: float = 0.5
    progress_interval: float = 0.1
    credentials: tuple[dict[str, Any], ...] = ()
    cloud: dict[str, CloudProviderConfig] = dataclasses.field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.trash_ttl_seconds <= 0:
            raise ValueError(f"trash_ttl_seconds must be positive, got {self.trash_ttl_seconds}")
        if not 0 < self.min_chunk_size <= self.chunk_size <= self.max_chunk_size:
            raise ValueError(
                f"chunk_size must lie within [{self.min_chunk_size}, {self.max_chunk_size}], got {self.chunk_size}"
            )
        for family, limit in self.concurrency.items():
            if family not in DEFAULT_CONCURRENCY:
                raise ValueError(f"Unknown backend family in concurrency: {family!r}")
            if limit < 1:
                raise ValueError(f"Concurrency for {family!r} must be at least 1, got {limit}")
        if self.connect_retry_wait < 0 or self.progress_interval < 0:
            raise ValueError("connect_retry_wait and progress_interval must not be negative")

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> EngineConfig:
        """Construct from a plain dict (e.g. parsed TOML/JSON).

        Unknown keys are rejected so typos do not silently fall back to defaults.

        :raises TypeError: If a section has the wrong type or an unknown key is present.
        """
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise TypeError(f"Unknown configuration keys: {sorted(unknown)}")
        kwargs: dict[str, Any] = {k: v for k, v in data.items() if k not in ("concurrency", "credentials", "cloud")}

        raw_concurrency = data.get("concurrency", {})
        if not isinstance(raw_concurrency, dict):
            raise TypeError("Expected 'concurrency' to be a dict")
        kwargs["concurrency"] = {**DEFAULT_CONCURRENCY, **{str(k): int(v) for k, v in raw_concurrency.items()}}

        raw_credentials = data.get("credentials", [])
        if not isinstance(raw_credentials, (list, tuple)):
            raise TypeError("Expected 'credentials' to be a list")
        for item in raw_credentials:
            if not isinstance(item, dict):
                raise TypeError("Each credentials entry must be a dict")
        kwargs["credentials"] = tuple(dict(item) for item in raw_credentials)

        raw_cloud = data.get("cloud", {})
        if not isinstance(raw_cloud, dict):
            raise TypeError("Expected 'cloud' to be a dict")
        cloud: dict[str, CloudProviderConfig] = {}
        for provider, cfg in raw_cloud.items():
            if not isinstance(cfg, dict):
                raise TypeError(f"Cloud config for '{provider}' must be a dict")
            cloud[normalize_provider(str(provider))] = CloudProviderConfig(
                base_url=str(cfg["base_url"]),
                token_url=str(cfg["token_url"]),
                client_id=str(cfg["client_id"]),
                client_secret=None if cfg.get("client_secret") is None else str(cfg["client_secret"]),
                scope=None if cfg.get("scope") is None else str(cfg["scope"]),
            )
        kwargs["cloud"] = cloud
        return cls(**kwargs)
