"""
Copy Settings

Per-run values come from DAG params; deployment tuning comes from
environment variables:

- COPY_WORKERS: Default number of concurrent chunk workers (4)
- FETCH_SIZE: Oracle arraysize/prefetchrows per chunk cursor (100000)
- BRIDGE_CAPACITY: Blocks buffered between fetch and COPY (16)
- BRIDGE_BLOCK_SIZE: Bytes per buffered block (65536)
- LOB_MAX_BYTES: Largest LOB inlined into a record, 0 for no limit (0)
- STRICT_KEY_RANGES: Only use key BETWEEN ranges on verified dense keys (true)
- TARGET_SCHEMA: PostgreSQL schema holding the target tables (public)
- MAX_ORACLE_CONNECTIONS: Oracle pool size (2 x workers)
- MAX_PG_CONNECTIONS: PostgreSQL pool size (workers + 1)
- POOL_ACQUIRE_TIMEOUT: Seconds to wait for a pooled connection (120)
- RUN_TIMEOUT: Seconds before unfinished chunks are cancelled, 0 for no limit (0)
"""

from dataclasses import dataclass, replace
from typing import Any, Mapping, Optional
import logging
import os

logger = logging.getLogger(__name__)

_TRUE_VALUES = ('true', '1', 'yes', 'on')
_FALSE_VALUES = ('false', '0', 'no', 'off')


def _env_int(env: Mapping[str, str], name: str, default: int, minimum: int = 1) -> int:
    raw = env.get(name)
    if raw is None or str(raw).strip() == '':
        return default
    try:
        value = int(str(raw).strip())
    except ValueError:
        raise ValueError(f"{name} must be an integer (got {raw!r})")
    if value < minimum:
        raise ValueError(f"{name} must be at least {minimum} (got {value})")
    return value


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or str(raw).strip() == '':
        return default
    val = str(raw).strip().lower()
    if val in _TRUE_VALUES:
        return True
    if val in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean (got {raw!r})")


@dataclass(frozen=True)
class CopySettings:
    """Validated settings shared read-only by the coordinator and all workers."""

    workers: int = 4
    fetch_size: int = 100_000
    bridge_capacity: int = 16
    bridge_block_size: int = 64 * 1024
    lob_max_bytes: int = 0
    strict_key_ranges: bool = True
    target_schema: str = 'public'
    truncate_target: bool = False
    max_oracle_connections: Optional[int] = None
    max_pg_connections: Optional[int] = None
    acquire_timeout: float = 120.0
    run_timeout: Optional[float] = None

    def __post_init__(self):
        for name in ('workers', 'fetch_size', 'bridge_capacity', 'bridge_block_size'):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise ValueError(f"{name} must be a positive integer (got {value!r})")
        if self.lob_max_bytes < 0:
            raise ValueError(f"lob_max_bytes cannot be negative (got {self.lob_max_bytes})")
        if not self.target_schema:
            raise ValueError("target_schema cannot be empty")
        if self.run_timeout is not None and self.run_timeout <= 0:
            raise ValueError(f"run_timeout must be positive or None (got {self.run_timeout})")

    @property
    def oracle_pool_size(self) -> int:
        # Workers plus headroom for metadata and validation queries
        return self.max_oracle_connections or self.workers * 2

    @property
    def pg_pool_size(self) -> int:
        return self.max_pg_connections or self.workers + 1

    def with_overrides(self, **overrides: Any) -> 'CopySettings':
        """Return a copy with the given non-None values replaced."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None, **overrides: Any) -> 'CopySettings':
        """
        Build settings from environment variables, then apply explicit overrides.

        Args:
            env: Mapping to read instead of os.environ (for tests)
            **overrides: Values from DAG params; None means "not given"

        Raises:
            ValueError: If any value is invalid
        """
        env = os.environ if env is None else env

        max_oracle = _env_int(env, 'MAX_ORACLE_CONNECTIONS', 0, minimum=0) or None
        max_pg = _env_int(env, 'MAX_PG_CONNECTIONS', 0, minimum=0) or None

        settings = cls(
            workers=_env_int(env, 'COPY_WORKERS', 4),
            fetch_size=_env_int(env, 'FETCH_SIZE', 100_000),
            bridge_capacity=_env_int(env, 'BRIDGE_CAPACITY', 16),
            bridge_block_size=_env_int(env, 'BRIDGE_BLOCK_SIZE', 64 * 1024),
            lob_max_bytes=_env_int(env, 'LOB_MAX_BYTES', 0, minimum=0),
            strict_key_ranges=_env_bool(env, 'STRICT_KEY_RANGES', True),
            target_schema=env.get('TARGET_SCHEMA') or 'public',
            max_oracle_connections=max_oracle,
            max_pg_connections=max_pg,
            acquire_timeout=float(_env_int(env, 'POOL_ACQUIRE_TIMEOUT', 120)),
            run_timeout=float(_env_int(env, 'RUN_TIMEOUT', 0, minimum=0)) or None,
        )
        settings = settings.with_overrides(**overrides)

        logger.info(
            f"Copy settings: workers={settings.workers}, fetch_size={settings.fetch_size:,}, "
            f"bridge={settings.bridge_capacity}x{settings.bridge_block_size:,}B, "
            f"lob_max_bytes={settings.lob_max_bytes or 'unlimited'}, "
            f"strict_key_ranges={settings.strict_key_ranges}, "
            f"run_timeout={settings.run_timeout or 'none'}, "
            f"target_schema={settings.target_schema}"
        )
        return settings
