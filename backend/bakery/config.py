# backend/bakery/config.py
from __future__ import annotations
import os
from dataclasses import dataclass
from typing import Mapping


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/bakery.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///bakery.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Stock policy flags (see StockPolicy)
    ALLOW_NEGATIVE_STOCK_OVERRIDE = _env_flag("ALLOW_NEGATIVE_STOCK_OVERRIDE", False)
    INVENTORY_MODULE_ENABLED = _env_flag("INVENTORY_MODULE_ENABLED", True)

    # Inventory defaults
    DEFAULT_REORDER_POINT = int(os.environ.get("DEFAULT_REORDER_POINT", "30"))
    DEFAULT_SHELF_LIFE_DAYS = int(os.environ.get("DEFAULT_SHELF_LIFE_DAYS", "3"))
    EXPIRY_WARNING_DAYS = int(os.environ.get("EXPIRY_WARNING_DAYS", "3"))
    MAX_STOCK_QUANTITY = 999_999

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    API_VERSION = "1.0.0"


@dataclass(frozen=True)
class StockPolicy:
    """
    Explicit stock policy handed to the validator and mutator.

    allow_negative_stock_override: a supervisor reason may push stock below zero.
    inventory_module_enabled: when off, availability checks always pass.
    """
    allow_negative_stock_override: bool = False
    inventory_module_enabled: bool = True

    @classmethod
    def from_mapping(cls, config: Mapping) -> "StockPolicy":
        return cls(
            allow_negative_stock_override=bool(config.get("ALLOW_NEGATIVE_STOCK_OVERRIDE", False)),
            inventory_module_enabled=bool(config.get("INVENTORY_MODULE_ENABLED", True)),
        )
