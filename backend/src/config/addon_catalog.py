"""
Add-on catalog configuration loader.

Loads config/addon_catalog.yml: the add-on dependency graph, the list of
known country variants and the marketplace upgrade URL.

Consumers:
  - DependencyChecker: prerequisite lists per add-on code
  - AddonKey parsing: known country variants
  - Access gate deny payloads: upgradeUrl

Usage:
    from src.config.addon_catalog import get_addon_catalog_loader

    loader = get_addon_catalog_loader()
    deps = loader.dependency_map().get("payroll-india", [])
"""

import copy
import logging
import os
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Optional

import yaml

from src.config import addon_settings
from src.entitlements.errors import EntitlementConfigError

logger = logging.getLogger(__name__)

DEFAULT_CATALOG: Dict[str, Any] = {
    "version": 1,
    "upgrade_url": "/marketplace",
    "variants": ["india", "malaysia", "uk", "uae"],
    "addons": {
        "hrms": {"name": "HRMS", "dependencies": []},
        "payroll": {"name": "Payroll", "dependencies": ["hrms"]},
        "payroll-india": {"name": "Payroll (India)", "dependencies": ["hrms", "hrms-india"]},
        "payroll-malaysia": {"name": "Payroll (Malaysia)", "dependencies": ["hrms", "hrms-malaysia"]},
        "payroll-uk": {"name": "Payroll (UK)", "dependencies": ["hrms", "hrms-uk"]},
    },
}


class AddonCatalogLoader:
    """
    Thread-safe singleton loader for config/addon_catalog.yml.

    A missing file falls back to DEFAULT_CATALOG with a warning; a file that
    exists but cannot be parsed raises EntitlementConfigError.
    """

    _instance: Optional["AddonCatalogLoader"] = None
    _lock = Lock()

    def __new__(cls, config_path: Optional[str] = None):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self, config_path: Optional[str] = None):
        if self._initialized:
            return

        self._config_path = config_path
        self._raw: Dict[str, Any] = {}
        self._addons: Dict[str, Dict[str, Any]] = {}
        self._variants: List[str] = []
        self._load_lock = Lock()

        self._load()
        self._initialized = True

    # ------------------------------------------------------------------
    # Config resolution
    # ------------------------------------------------------------------

    def _resolve_path(self) -> Optional[Path]:
        if self._config_path:
            return Path(self._config_path)

        candidates = [
            # backend/src/config -> repository root
            Path(__file__).parent.parent.parent.parent / "config" / "addon_catalog.yml",
            Path(os.getcwd()) / "config" / "addon_catalog.yml",
            Path(os.getcwd()) / ".." / "config" / "addon_catalog.yml",
        ]

        for p in candidates:
            resolved = p.resolve()
            if resolved.exists():
                return resolved
        return None

    def _load(self) -> None:
        with self._load_lock:
            path = self._resolve_path()

            if path is None or not path.exists():
                logger.warning(
                    "addon_catalog.yml not found, using built-in catalog",
                    extra={"config_path": str(path) if path else None},
                )
                raw = copy.deepcopy(DEFAULT_CATALOG)
            else:
                logger.info("Loading add-on catalog from %s", path)
                try:
                    with open(path, "r") as f:
                        raw = yaml.safe_load(f) or {}
                except yaml.YAMLError as e:
                    raise EntitlementConfigError(f"Invalid add-on catalog {path}: {e}") from e

            self._raw = raw
            self._variants = self._parse_variants(raw.get("variants", []))
            self._addons = self._parse_addons(raw.get("addons", {}))

            logger.info(
                "Loaded add-on catalog: %d add-ons, variants=%s",
                len(self._addons),
                self._variants,
            )

    @staticmethod
    def _parse_variants(raw_variants: Any) -> List[str]:
        if not isinstance(raw_variants, list):
            raise EntitlementConfigError("catalog 'variants' must be a list")
        return [str(v).strip().lower() for v in raw_variants if str(v).strip()]

    @staticmethod
    def _parse_addons(raw_addons: Any) -> Dict[str, Dict[str, Any]]:
        if not isinstance(raw_addons, dict):
            raise EntitlementConfigError("catalog 'addons' must be a mapping")

        addons: Dict[str, Dict[str, Any]] = {}
        for code, cfg in raw_addons.items():
            cfg = cfg or {}
            deps = cfg.get("dependencies") or []
            if not isinstance(deps, list):
                raise EntitlementConfigError(
                    f"dependencies for add-on '{code}' must be a list"
                )
            addons[str(code).lower()] = {
                "name": cfg.get("name", code),
                "dependencies": [str(d).lower() for d in deps],
            }
        return addons

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def reload(self) -> None:
        """Re-read the YAML from disk."""
        self._load()

    @property
    def variants(self) -> List[str]:
        return list(self._variants)

    @property
    def upgrade_url(self) -> str:
        return addon_settings.ADDON_UPGRADE_URL or self._raw.get("upgrade_url", "/marketplace")

    @property
    def addon_codes(self) -> List[str]:
        return list(self._addons.keys())

    def dependency_map(self) -> Dict[str, List[str]]:
        """Add-on code -> ordered prerequisite codes."""
        return {code: list(cfg["dependencies"]) for code, cfg in self._addons.items()}

    def get_display_name(self, addon_code: str) -> str:
        cfg = self._addons.get(addon_code.lower())
        return cfg["name"] if cfg else addon_code


# ------------------------------------------------------------------
# Module-level accessors
# ------------------------------------------------------------------

def get_addon_catalog_loader(config_path: Optional[str] = None) -> AddonCatalogLoader:
    """Return the singleton AddonCatalogLoader."""
    return AddonCatalogLoader(config_path)


def reset_addon_catalog_loader() -> None:
    """Reset singleton (for tests only)."""
    AddonCatalogLoader._instance = None
