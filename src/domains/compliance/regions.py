"""Jurisdiction resolution: built-in regional defaults merged with tenant overrides.

Resolution is a pure function over (REGIONAL_DEFAULTS, region code, overrides).
Mappings merge recursively; every other value (lists included) in the override
replaces the default outright. The shared default table is never written to.
"""

import json
import re
from collections import OrderedDict
from typing import Any, Mapping

import structlog
from pydantic import ValidationError

from .config import (
    DEFAULT_REGION,
    REGION_ALIASES,
    REGION_NAMES,
    REGIONAL_DEFAULTS,
    TenantConfig,
)
from .errors import ConfigurationError

logger = structlog.get_logger()

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def _to_snake(key: str) -> str:
    # ttrRequired -> ttr_required; already-snake keys pass through unchanged
    return _CAMEL_BOUNDARY.sub("_", key).lower() if key != key.upper() else key.lower()


def normalize_keys(value: Any) -> Any:
    """Recursively convert camelCase mapping keys to snake_case."""
    if isinstance(value, Mapping):
        return {_to_snake(str(k)): normalize_keys(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [normalize_keys(v) for v in value]
    return value


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Return a new dict with ``override`` merged onto ``base``.

    Neither input is modified. Nested mappings present on both sides merge
    recursively; otherwise the override value wins.
    """
    merged: dict[str, Any] = {}
    for key, value in base.items():
        merged[key] = _thaw(value)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = _thaw(value)
    return merged


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_thaw(v) for v in value]
    return value


def canonical_region(region_code: str | None) -> str:
    """Upper-cased region code with aliases applied; unknown codes fall back."""
    code = (region_code or "").strip().upper()
    code = REGION_ALIASES.get(code, code)
    if code in REGIONAL_DEFAULTS:
        return code
    if code:
        logger.warning("unknown_region_fallback", region=code, fallback=DEFAULT_REGION)
    return DEFAULT_REGION


def available_regions() -> list[dict[str, str]]:
    """Built-in regions for selection lists. Aliases are not listed."""
    return [
        {
            "code": code,
            "name": REGION_NAMES.get(code, code),
            "regulator": defaults["regulator"],
            "currency": defaults["currency"],
        }
        for code, defaults in REGIONAL_DEFAULTS.items()
    ]


def resolve_tenant_config(
    region_code: str | None,
    tenant_overrides: Mapping[str, Any] | None = None,
) -> TenantConfig:
    """Effective configuration for a tenant.

    Args:
        region_code: Jurisdiction code (``AU``, ``UK``, ...). Unknown or empty
            codes resolve to the default region.
        tenant_overrides: Partial config; camelCase or snake_case keys.

    Raises:
        ConfigurationError: The merged config fails validation.
    """
    region = canonical_region(region_code)
    overrides = normalize_keys(dict(tenant_overrides or {}))
    # Region is decided by the lookup, not by the override payload
    overrides.pop("region", None)

    merged = deep_merge(REGIONAL_DEFAULTS[region], overrides)
    try:
        return TenantConfig.model_validate(merged)
    except ValidationError as e:
        raise ConfigurationError(f"invalid configuration for region {region}: {e}") from e


def _fingerprint(region_code: str | None, tenant_overrides: Mapping[str, Any] | None) -> str:
    return json.dumps(
        [(region_code or "").strip().upper(), dict(tenant_overrides or {})],
        sort_keys=True,
        default=str,
    )


class RegionalConfigResolver:
    """Resolves and caches effective configs keyed by tenant.

    An entry is reused only while the tenant's region and stored settings are
    unchanged; anything else re-resolves. The cache holds at most
    ``max_entries`` tenants and drops the least recently used one beyond that.
    """

    def __init__(self, max_entries: int = 1024) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._max_entries = max_entries
        self._cache: OrderedDict[str, tuple[str, TenantConfig]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._cache)

    def resolve(
        self,
        region_code: str | None,
        tenant_overrides: Mapping[str, Any] | None = None,
    ) -> TenantConfig:
        return resolve_tenant_config(region_code, tenant_overrides)

    def for_tenant(
        self,
        tenant_id: str,
        region_code: str | None,
        tenant_overrides: Mapping[str, Any] | None = None,
    ) -> TenantConfig:
        fingerprint = _fingerprint(region_code, tenant_overrides)
        cached = self._cache.get(tenant_id)
        if cached is not None and cached[0] == fingerprint:
            self._cache.move_to_end(tenant_id)
            return cached[1]

        config = resolve_tenant_config(region_code, tenant_overrides)
        self._cache[tenant_id] = (fingerprint, config)
        self._cache.move_to_end(tenant_id)
        while len(self._cache) > self._max_entries:
            evicted, _ = self._cache.popitem(last=False)
            logger.debug("tenant_config_evicted", tenant_id=evicted)
        return config

    def invalidate(self, tenant_id: str | None = None) -> None:
        if tenant_id is None:
            self._cache.clear()
        else:
            self._cache.pop(tenant_id, None)
