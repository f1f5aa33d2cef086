# backend/erpsync/config.py
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Mapping


def _csv_env(name: str, default: str = "") -> list[str]:
    raw = os.environ.get(name, default)
    return [part.strip() for part in raw.split(",") if part.strip()]


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/erpsync.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///erpsync.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

    # Remote inventory/CRM backend
    ERPSYNC_REMOTE_URL = os.environ.get("ERPSYNC_REMOTE_URL", "")
    ERPSYNC_REMOTE_USER = os.environ.get("ERPSYNC_REMOTE_USER", "")
    ERPSYNC_REMOTE_PASSWORD = os.environ.get("ERPSYNC_REMOTE_PASSWORD", "")
    ERPSYNC_REMOTE_TIMEOUT = int(os.environ.get("ERPSYNC_REMOTE_TIMEOUT", "60"))

    # Shared secret for /api/sync routes and the webhook trigger. Empty = open.
    ERPSYNC_API_SECRET = os.environ.get("ERPSYNC_API_SECRET", "")

    ERPSYNC_BATCH_SIZE = int(os.environ.get("ERPSYNC_BATCH_SIZE", "50"))
    ERPSYNC_DATASET_TTL = 60 * 60
    ERPSYNC_PROGRESS_TTL = 5 * 60
    ERPSYNC_RESULT_TTL = 24 * 60 * 60
    ERPSYNC_LOCK_TTLS = {
        "code": 10 * 60,
        "catalog": 30 * 60,
        "stock": 10 * 60,
    }

    ERPSYNC_SWEEP_CHUNK_SIZE = 200
    ERPSYNC_GC_EVERY = 1000
    ERPSYNC_NOT_FOUND_SAMPLE = 20

    # Warehouses never counted towards sellable stock
    ERPSYNC_EXCLUDED_WAREHOUSES = _csv_env("ERPSYNC_EXCLUDED_WAREHOUSES", "Defect,Reserve,Transit")

    # Per-location display settings: {"Raw Location": {"alias": "Shop", "hidden": False}}
    ERPSYNC_BRANCH_SETTINGS: dict[str, dict[str, Any]] = {}

    # Remote catalog field -> (attribute taxonomy, label); order is kept on the item
    ERPSYNC_ATTRIBUTE_MAPPING = {
        "Brand": ("brand", "Brand"),
        "Color": ("color", "Color"),
        "Size": ("size", "Size"),
        "Mechanism": ("mechanism", "Mechanism"),
        "Bracelet": ("bracelet", "Bracelet"),
        "gender": ("gender", "Gender"),
        "Bijouterie": ("bijouterie", "Bijouterie"),
    }

    ERPSYNC_BIRTHDAY_DISCOUNT = 20
    ERPSYNC_AUDIT_RETENTION_DAYS = 90


@dataclass(frozen=True)
class BranchSetting:
    alias: str = ""
    hidden: bool = False


@dataclass(frozen=True)
class SyncSettings:
    """
    Runtime knobs for one orchestrator instance.

    Built from Flask config in the app, constructed directly in tests.
    """
    batch_size: int = 50
    lock_ttls: Mapping[str, int] = field(default_factory=lambda: dict(Config.ERPSYNC_LOCK_TTLS))
    dataset_ttl: int = Config.ERPSYNC_DATASET_TTL
    progress_ttl: int = Config.ERPSYNC_PROGRESS_TTL
    result_ttl: int = Config.ERPSYNC_RESULT_TTL
    excluded_warehouses: frozenset[str] = frozenset()
    branch_settings: Mapping[str, BranchSetting] = field(default_factory=dict)
    attribute_mapping: Mapping[str, tuple[str, str]] = field(
        default_factory=lambda: dict(Config.ERPSYNC_ATTRIBUTE_MAPPING)
    )
    sweep_chunk_size: int = Config.ERPSYNC_SWEEP_CHUNK_SIZE
    gc_every: int = Config.ERPSYNC_GC_EVERY
    not_found_sample: int = Config.ERPSYNC_NOT_FOUND_SAMPLE
    birthday_discount: int = Config.ERPSYNC_BIRTHDAY_DISCOUNT

    def lock_ttl(self, sync_type: str) -> int:
        return int(self.lock_ttls.get(sync_type, 10 * 60))

    def branch(self, location: str) -> BranchSetting:
        return self.branch_settings.get(location) or BranchSetting()

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "SyncSettings":
        branches = {
            str(location): BranchSetting(
                alias=str((raw or {}).get("alias") or "").strip(),
                hidden=bool((raw or {}).get("hidden")),
            )
            for location, raw in (config.get("ERPSYNC_BRANCH_SETTINGS") or {}).items()
        }
        return cls(
            batch_size=max(1, int(config.get("ERPSYNC_BATCH_SIZE", 50))),
            lock_ttls=dict(config.get("ERPSYNC_LOCK_TTLS") or Config.ERPSYNC_LOCK_TTLS),
            dataset_ttl=int(config.get("ERPSYNC_DATASET_TTL", Config.ERPSYNC_DATASET_TTL)),
            progress_ttl=int(config.get("ERPSYNC_PROGRESS_TTL", Config.ERPSYNC_PROGRESS_TTL)),
            result_ttl=int(config.get("ERPSYNC_RESULT_TTL", Config.ERPSYNC_RESULT_TTL)),
            excluded_warehouses=frozenset(config.get("ERPSYNC_EXCLUDED_WAREHOUSES") or ()),
            branch_settings=branches,
            attribute_mapping=dict(config.get("ERPSYNC_ATTRIBUTE_MAPPING") or Config.ERPSYNC_ATTRIBUTE_MAPPING),
            sweep_chunk_size=max(1, int(config.get("ERPSYNC_SWEEP_CHUNK_SIZE", Config.ERPSYNC_SWEEP_CHUNK_SIZE))),
            gc_every=max(1, int(config.get("ERPSYNC_GC_EVERY", Config.ERPSYNC_GC_EVERY))),
            not_found_sample=int(config.get("ERPSYNC_NOT_FOUND_SAMPLE", Config.ERPSYNC_NOT_FOUND_SAMPLE)),
            birthday_discount=int(config.get("ERPSYNC_BIRTHDAY_DISCOUNT", Config.ERPSYNC_BIRTHDAY_DISCOUNT)),
        )
