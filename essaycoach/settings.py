from __future__ import annotations

from dataclasses import dataclass, field
import os
from pathlib import Path

from essaycoach.domain.prompts import DEFAULT_CATALOG_PATH

VENDOR_KEY_PREFIX = "ESSAYCOACH_"
VENDOR_KEY_SUFFIX = "_API_KEY"


@dataclass(frozen=True)
class VendorSettings:
    vendor: str = "doubao"
    api_key: str | None = None
    model: str | None = None
    base_url: str | None = None
    timeout_seconds: int = 120
    temperature: float = 0.3


@dataclass(frozen=True)
class AppSettings:
    database_url: str | None = None
    vendor: VendorSettings = field(default_factory=VendorSettings)
    prompt_catalog_path: Path = DEFAULT_CATALOG_PATH
    default_max_concurrent_tasks: int = 1
    vendor_api_keys: dict[str, str] = field(default_factory=dict)

    def api_key_for(self, vendor: str) -> str | None:
        if vendor == self.vendor.vendor.strip().lower() and self.vendor.api_key:
            return self.vendor.api_key
        return self.vendor_api_keys.get(vendor)


def settings_from_env() -> AppSettings:
    return AppSettings(
        database_url=os.getenv("DATABASE_URL") or None,
        vendor=VendorSettings(
            vendor=(os.getenv("ESSAYCOACH_VENDOR") or "doubao").strip().lower(),
            api_key=os.getenv("ESSAYCOACH_VENDOR_API_KEY") or None,
            model=os.getenv("ESSAYCOACH_VENDOR_MODEL") or None,
            base_url=os.getenv("ESSAYCOACH_VENDOR_BASE_URL") or None,
            timeout_seconds=_env_int("ESSAYCOACH_VENDOR_TIMEOUT_SECONDS", 120),
            temperature=_env_float("ESSAYCOACH_VENDOR_TEMPERATURE", 0.3),
        ),
        prompt_catalog_path=Path(os.getenv("ESSAYCOACH_PROMPT_CATALOG") or DEFAULT_CATALOG_PATH),
        default_max_concurrent_tasks=_env_int("ESSAYCOACH_DEFAULT_MAX_CONCURRENT_TASKS", 1),
        vendor_api_keys=_vendor_api_keys(),
    )


def _vendor_api_keys() -> dict[str, str]:
    """Per-vendor credentials from ESSAYCOACH_<VENDOR>_API_KEY, e.g. ESSAYCOACH_KIMI_API_KEY."""
    keys: dict[str, str] = {}
    for name, value in os.environ.items():
        if not value or not name.startswith(VENDOR_KEY_PREFIX) or not name.endswith(VENDOR_KEY_SUFFIX):
            continue
        vendor = name[len(VENDOR_KEY_PREFIX) : -len(VENDOR_KEY_SUFFIX)].lower()
        if vendor and vendor != "vendor":
            keys[vendor] = value
    return keys


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default

    try:
        parsed = int(value)
    except ValueError:
        return default

    return parsed if parsed > 0 else default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default

    try:
        parsed = float(value)
    except ValueError:
        return default

    return parsed if parsed >= 0 else default
