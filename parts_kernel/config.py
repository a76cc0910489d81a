"""
Inventory Configuration Schema.

Defines the structure and defaults for the parts kernel's tunable rules
(approval threshold, sensitive movement types, lock retry limit).  Values
can come from code, a dict, or a YAML file; PARTS_DATABASE_URL overrides
the database URL from the environment.
"""

import os
from dataclasses import dataclass, field, fields
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Self

import yaml

from parts_kernel.logging_config import get_logger
from parts_kernel.models.part import LEAD_TIME_DIVISOR_DAYS
from parts_kernel.models.part_transaction import TransactionType

logger = get_logger("config")

DATABASE_URL_ENV = "PARTS_DATABASE_URL"


@dataclass
class InventoryConfig:
    """
    Configuration schema for the parts kernel.

    Override at instantiation with team-specific values:

        config = InventoryConfig(
            approval_cost_threshold=Decimal("250.00"),
            sensitive_transaction_types=frozenset({TransactionType.DISPOSED}),
        )
    """

    # Approval: movements costing more than this need a mentor sign-off
    approval_cost_threshold: Decimal = Decimal("500.00")
    # Movement types that always need sign-off regardless of cost
    sensitive_transaction_types: frozenset[TransactionType] = field(
        default_factory=frozenset
    )

    # Concurrency
    max_lock_retries: int = 3

    # Reorder rule: one buffer unit per this many days of lead time
    low_stock_lead_time_divisor: int = LEAD_TIME_DIVISOR_DAYS

    database_url: str | None = None

    def __post_init__(self):
        if not isinstance(self.approval_cost_threshold, Decimal):
            self.approval_cost_threshold = _to_decimal(
                self.approval_cost_threshold, "approval_cost_threshold"
            )
        if self.approval_cost_threshold < 0:
            raise ValueError("approval_cost_threshold cannot be negative")

        try:
            self.sensitive_transaction_types = frozenset(
                TransactionType(t) for t in self.sensitive_transaction_types
            )
        except ValueError as exc:
            raise ValueError(
                f"sensitive_transaction_types contains an unknown type: {exc}"
            ) from exc

        if self.max_lock_retries < 1:
            raise ValueError("max_lock_retries must be at least 1")
        if self.low_stock_lead_time_divisor <= 0:
            raise ValueError("low_stock_lead_time_divisor must be positive")

        logger.info(
            "inventory_config_initialized",
            extra={
                "approval_cost_threshold": self.approval_cost_threshold,
                "sensitive_transaction_types": sorted(
                    t.value for t in self.sensitive_transaction_types
                ),
                "max_lock_retries": self.max_lock_retries,
                "low_stock_lead_time_divisor": self.low_stock_lead_time_divisor,
                "database_configured": self.database_url is not None,
            },
        )

    @classmethod
    def with_defaults(cls) -> Self:
        """Create config with the default approval and retry rules."""
        logger.info("inventory_config_created_with_defaults")
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """Create config from a dictionary (e.g. parsed from a file)."""
        logger.info(
            "inventory_config_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown inventory config keys: {sorted(unknown)}")
        return cls(**data)

    @classmethod
    def from_yaml(cls, path: str | Path) -> Self:
        """
        Load config from a YAML file.

        The file may hold the settings at top level or under an
        ``inventory:`` key.  An empty file yields the defaults.
        """
        path = Path(path)
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{path}: expected a mapping, got {type(data).__name__}")
        data = data.get("inventory", data)
        logger.info("inventory_config_loading_from_yaml", extra={"path": str(path)})
        return cls.from_dict(data)


def load_config(path: str | Path | None = None) -> InventoryConfig:
    """
    Build the effective configuration.

    Reads ``path`` when given, otherwise starts from defaults, then applies
    the PARTS_DATABASE_URL environment override.
    """
    config = InventoryConfig.from_yaml(path) if path is not None else InventoryConfig.with_defaults()
    env_url = os.environ.get(DATABASE_URL_ENV)
    if env_url:
        config.database_url = env_url
        logger.info("inventory_config_database_url_from_env", extra={"env": DATABASE_URL_ENV})
    return config


def _to_decimal(value: Any, name: str) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"{name} must be a decimal number, got {value!r}") from exc
