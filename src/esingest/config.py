"""
esingest Config — Ingester Settings
===================================

A single immutable settings record, validated at construction time.

Defaults follow the bulk processor of the Elasticsearch clients:

    max_operations          1000      flush after N buffered operations
    max_bytes               5 MiB     flush after N buffered bytes
    flush_interval_ms       0         time trigger (0 = disabled)
    max_concurrent_requests 1         bulk requests in flight at once
    max_retries             8         retries for transient failures
    backoff_base_ms         50        first retry delay
    backoff_cap_ms          5000      longest retry delay
    max_pending_bytes       50 MiB    hard ceiling for unfinished operations

Environment variables (see IngesterConfig.from_env):
    ESINGEST_MAX_OPERATIONS=5000 ESINGEST_FLUSH_INTERVAL_MS=5000 ...
"""

import os
from dataclasses import asdict, dataclass, fields, replace
from typing import Any, Dict, Mapping, Optional

from .exceptions import ConfigError
from .retry import RetryPolicy


MIB = 1024 * 1024


@dataclass(frozen=True)
class IngesterConfig:
    """
    Bulk ingester settings.

    Example:
        config = IngesterConfig(max_operations=200, flush_interval_ms=5000)
        config = IngesterConfig.from_env()
    """

    max_operations: int = 1000
    max_bytes: int = 5 * MIB
    flush_interval_ms: int = 0
    max_concurrent_requests: int = 1
    max_retries: int = 8
    backoff_base_ms: int = 50
    backoff_cap_ms: int = 5000
    max_pending_bytes: int = 50 * MIB

    def __post_init__(self):
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ConfigError(f"{f.name} must be an integer, got {value!r}")

        if self.max_operations <= 0:
            raise ConfigError("max_operations must be > 0")
        if self.max_bytes <= 0:
            raise ConfigError("max_bytes must be > 0")
        if self.flush_interval_ms < 0:
            raise ConfigError("flush_interval_ms must be >= 0 (0 disables it)")
        if self.max_concurrent_requests <= 0:
            raise ConfigError("max_concurrent_requests must be > 0")
        if self.max_pending_bytes < self.max_bytes:
            raise ConfigError("max_pending_bytes must be >= max_bytes")

        # Backoff values are checked by RetryPolicy
        self.retry_policy()

    @property
    def flush_interval(self) -> Optional[float]:
        """Flush interval in seconds, None when disabled."""
        if self.flush_interval_ms == 0:
            return None
        return self.flush_interval_ms / 1000.0

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.max_retries,
            backoff_base_ms=self.backoff_base_ms,
            backoff_cap_ms=self.backoff_cap_ms,
        )

    def replace(self, **changes: Any) -> "IngesterConfig":
        """Copy with some fields changed (validated again)."""
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "IngesterConfig":
        """
        Build from a mapping, ignoring None values.

        Raises:
            ConfigError: on unknown keys or invalid values
        """
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigError(f"Unknown settings: {', '.join(sorted(unknown))}")
        return cls(**{k: v for k, v in data.items() if v is not None})

    @classmethod
    def from_env(
        cls,
        prefix: str = "ESINGEST_",
        environ: Optional[Mapping[str, str]] = None
    ) -> "IngesterConfig":
        """
        Build from environment variables named PREFIX + FIELD_NAME.upper().

        Args:
            prefix: Variable name prefix
            environ: Mapping to read instead of os.environ
        """
        env = os.environ if environ is None else environ
        values: Dict[str, int] = {}
        for f in fields(cls):
            raw = env.get(prefix + f.name.upper())
            if raw is None or raw.strip() == "":
                continue
            try:
                values[f.name] = int(raw)
            except ValueError:
                raise ConfigError(f"{prefix}{f.name.upper()} must be an integer, got {raw!r}")
        return cls(**values)
