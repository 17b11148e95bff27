"""Shared versioned contracts for merchant-match JSON outputs and the config document."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

CONFIG_EXPORT_VERSION = 1

CONTRACT_VERSIONS = {
    "merchant_match.search": "1.0.0",
    "merchant_match.show": "1.0.0",
    "merchant_match.update": "1.0.0",
    "merchant_match.append": "1.0.0",
    "merchant_match.flagged": "1.0.0",
}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def build_contract(name: str) -> dict[str, str]:
    version = CONTRACT_VERSIONS[name]
    return {"name": name, "version": version}


def build_config_document(active_profile_id: Optional[str], profiles: list[dict[str, Any]]) -> dict[str, Any]:
    return {
        "version": CONFIG_EXPORT_VERSION,
        "exportedAt": utc_now_iso(),
        "activeProfileId": active_profile_id,
        "profiles": profiles,
    }
