"""
Central configuration for the fulfillment reconciliation service.

Gateway endpoint, local store location, and ledger account names are
defined here.  Override via environment variables or by passing a Config
instance directly.

Settings priority (highest wins):
  1. Environment variables
  2. config/settings.json  (admin-editable, persisted)
  3. Hardcoded defaults in this file
"""
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from reconciliation.journal import AccountNames

logger = logging.getLogger(__name__)

# Project root (directory containing this file)
PROJECT_ROOT = Path(__file__).parent

DEFAULT_OUTPUT_DIR = PROJECT_ROOT / "output"
DEFAULT_DB_PATH    = DEFAULT_OUTPUT_DIR / "reconciliation.db"
DEFAULT_BASE_URL   = "http://localhost:5001/api"


@dataclass
class Config:
    # --- Remote gateway (JSON over HTTP) ---
    gateway_base_url: str = field(
        default_factory=lambda: os.getenv("GATEWAY_BASE_URL", DEFAULT_BASE_URL)
    )
    gateway_token: Optional[str] = field(
        default_factory=lambda: os.getenv("GATEWAY_TOKEN")
    )
    gateway_timeout: float = field(
        default_factory=lambda: float(os.getenv("GATEWAY_TIMEOUT", "30"))
    )

    # --- Local store ---
    output_dir: Path = field(default_factory=lambda: DEFAULT_OUTPUT_DIR)
    db_path:    Path = field(
        default_factory=lambda: Path(os.getenv("DB_PATH", str(DEFAULT_DB_PATH)))
    )

    # --- Ledger accounts used for journal entries ---
    inventory_account:           str = "Inventory"
    accounts_payable_account:    str = "Accounts Payable"
    cash_account:                str = "Cash"
    accounts_receivable_account: str = "Accounts Receivable"

    def __post_init__(self) -> None:
        """Overlay runtime-tunable settings from settings.json if present."""
        config_dir = Path(os.getenv("CONFIG_DIR", str(PROJECT_ROOT / "config")))
        settings_file = config_dir / "settings.json"
        if not settings_file.exists():
            return
        _type_map: dict[str, type] = {
            "gateway_base_url":            str,
            "gateway_timeout":             float,
            "db_path":                     Path,
            "inventory_account":           str,
            "accounts_payable_account":    str,
            "cash_account":                str,
            "accounts_receivable_account": str,
        }
        try:
            with open(settings_file, encoding="utf-8") as f:
                overrides = {k: v for k, v in json.load(f).items() if not k.startswith("_")}
            for key, val in overrides.items():
                if key in _type_map and hasattr(self, key):
                    setattr(self, key, _type_map[key](val))
        except (OSError, ValueError, TypeError) as exc:
            logger.warning("Failed to load settings.json: %s", exc)

    @property
    def accounts(self) -> AccountNames:
        return AccountNames(
            inventory=self.inventory_account,
            accounts_payable=self.accounts_payable_account,
            cash=self.cash_account,
            accounts_receivable=self.accounts_receivable_account,
        )

    def ensure_output_dir(self) -> None:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
