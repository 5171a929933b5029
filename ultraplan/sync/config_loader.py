"""Load, validate, and hot-reload the sync configuration.

The config lives in ``sync_config.yaml`` alongside this module.  It is loaded
once and cached; call ``reload_sync_config()`` to re-read it.

Usage::

    from ultraplan.sync.config_loader import get_sync_config

    config = get_sync_config()
    config.reconciliation_for("race").strategy   # 'by_name'
    config.backup_delay_seconds                  # 0.3
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger("ultraplan.sync.config")

_CONFIG_PATH = Path(__file__).parent / "sync_config.yaml"

STRATEGIES = ("by_name", "always_mint")
DEFAULT_TEMPLATE_ACCOUNT = "00000000-0000-0000-0000-000000000000"


@dataclass
class ReconciliationRule:
    """How one mapping kind binds an unmapped local id to a remote id."""

    kind: str
    strategy: str = "always_mint"
    match_field: str | None = None


@dataclass
class SyncConfig:
    """Validated in-memory form of sync_config.yaml.

    Attributes:
        version:               Config schema version string.
        backup_delay_seconds:  Delay before a mutation-triggered backup runs.
        template_account_id:   Account owning the shared plan templates.
        reconciliation:        Rules keyed by mapping kind.
    """

    version: str
    backup_delay_seconds: float
    template_account_id: str
    reconciliation: dict[str, ReconciliationRule] = field(default_factory=dict)

    def reconciliation_for(self, kind: str) -> ReconciliationRule:
        """Return the rule for ``kind``; unlisted kinds always mint."""
        return self.reconciliation.get(kind) or ReconciliationRule(kind=kind)


class ConfigValidationError(ValueError):
    """Raised when sync_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    if not path.exists():
        raise FileNotFoundError(f"Sync config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _validate_and_build(raw: dict) -> SyncConfig:
    """Validate the raw YAML dict and construct a SyncConfig.

    Raises:
        ConfigValidationError: If any value is missing or invalid.
    """
    errors: list[str] = []

    version = str(raw.get("version", "1.0"))

    # ── Backup ──
    backup_raw = raw.get("backup") or {}
    delay: float = 0.0
    try:
        delay = float(backup_raw.get("delay_seconds", 0.3))
    except (TypeError, ValueError):
        errors.append(
            f"backup.delay_seconds must be a number, got {backup_raw.get('delay_seconds')!r}"
        )
    if delay < 0:
        errors.append(f"backup.delay_seconds must be >= 0, got {delay}")

    # ── Templates ──
    templates_raw = raw.get("templates") or {}
    template_account_id = str(templates_raw.get("account_id", DEFAULT_TEMPLATE_ACCOUNT))

    # ── Reconciliation ──
    rules: dict[str, ReconciliationRule] = {}
    for kind, cfg in (raw.get("reconciliation") or {}).items():
        if not isinstance(cfg, dict):
            errors.append(f"reconciliation.{kind} must be a mapping")
            continue
        strategy = cfg.get("strategy", "always_mint")
        if strategy not in STRATEGIES:
            errors.append(
                f"reconciliation.{kind}.strategy must be one of {STRATEGIES}, got {strategy!r}"
            )
            continue
        match_field = cfg.get("match_field")
        if strategy == "by_name" and not match_field:
            errors.append(f"reconciliation.{kind}.match_field is required for by_name")
            continue
        rules[kind] = ReconciliationRule(
            kind=kind, strategy=strategy, match_field=match_field
        )

    if errors:
        raise ConfigValidationError(
            f"sync_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  - {e}" for e in errors)
        )

    return SyncConfig(
        version=version,
        backup_delay_seconds=delay,
        template_account_id=template_account_id,
        reconciliation=rules,
    )


def load_sync_config(path: Path | None = None) -> SyncConfig:
    """Load and validate the sync config from disk.

    Args:
        path: Override path to YAML. Uses the bundled sync_config.yaml by default.
    """
    target = path or _CONFIG_PATH
    raw: Any = _load_yaml(target)
    if not isinstance(raw, dict):
        raise ConfigValidationError(f"{target} must contain a mapping at the top level")
    config = _validate_and_build(raw)
    logger.info("Loaded sync config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Global singleton with reload support
# ---------------------------------------------------------------------------

_config: SyncConfig | None = None
_config_lock = threading.Lock()


def get_sync_config() -> SyncConfig:
    """Return the global SyncConfig, loading it on first call."""
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:
                _config = load_sync_config()
    return _config


def reload_sync_config(path: Path | None = None) -> SyncConfig:
    """Reload from disk and replace the global config.

    If validation fails the old config is retained and the error re-raised.
    """
    global _config
    new_config = load_sync_config(path)
    with _config_lock:
        old_version = _config.version if _config else "none"
        _config = new_config
    logger.info("Reloaded sync config: %s → %s", old_version, new_config.version)
    return new_config
