"""Per-type task configuration models.

Each :class:`TaskType` carries its own pydantic model.  Keys are accepted in
either snake_case or camelCase and are always dumped as camelCase, matching
what the dashboard sends.  Unknown keys are kept so UI-only settings survive
a round trip through the store.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from vigil.scheduler.errors import InvalidTaskError


class TaskType(str, Enum):
    SECURITY_SCAN = "security-scan"
    WALLET_MONITOR = "wallet-monitor"
    PRICE_ALERT = "price-alert"
    AUTO_TRADE = "auto-trade"
    THREAT_HUNTER = "threat-hunter"
    PORTFOLIO_TRACKER = "portfolio-tracker"
    SMART_CONTRACT_AUDIT = "smart-contract-audit"
    DEFI_MONITOR = "defi-monitor"
    NFT_TRACKER = "nft-tracker"
    GOVERNANCE_MONITOR = "governance-monitor"


class _ConfigModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )


class NotificationTargets(_ConfigModel):
    email: str | None = None
    discord: str | None = None
    telegram: str | None = None


class TaskConfig(_ConfigModel):
    """Fields shared by every task type."""

    notifications: NotificationTargets | None = None


class SecurityScanConfig(TaskConfig):
    urls: list[str] = Field(default_factory=list)
    wallets: list[str] = Field(default_factory=list)
    contracts: list[str] = Field(default_factory=list)
    scan_interval: int | None = None


class WalletMonitorConfig(TaskConfig):
    wallet_address: str | None = None
    track_tokens: list[str] = Field(default_factory=list)
    alert_on_transaction: bool = False
    min_transaction_amount: float | None = None


class PriceThreshold(_ConfigModel):
    above: float | None = None
    below: float | None = None
    percent_change: float | None = None


class PriceAlertConfig(TaskConfig):
    token_mint: str | None = None
    token_symbol: str | None = None
    price_threshold: PriceThreshold = Field(default_factory=PriceThreshold)


class AutoTradeConfig(TaskConfig):
    """Simulated strategies only; no order is ever placed."""

    strategy: Literal["dca", "grid", "arbitrage"] = "dca"
    amount: float | None = None
    interval: str | None = None
    simulated: Literal[True] = True


class ThreatHunterConfig(TaskConfig):
    threat_sources: list[str] = Field(
        default_factory=lambda: ["virustotal", "urlvoid", "phishtank"]
    )
    threat_types: list[str] = Field(default_factory=list)
    confidence_threshold: float | None = None


class PortfolioTrackerConfig(TaskConfig):
    portfolio_address: str | None = None
    tracking_tokens: list[str] = Field(default_factory=list)
    rebalance_threshold: float = 20


class SmartContractAuditConfig(TaskConfig):
    contract_addresses: list[str] = Field(default_factory=list)
    audit_depth: str | None = None


class DefiMonitorConfig(TaskConfig):
    protocols: list[str] = Field(default_factory=list)
    yield_threshold: float = 50
    risk_threshold: str | None = None


class NftTrackerConfig(TaskConfig):
    nft_collections: list[str] = Field(default_factory=list)
    floor_price_alerts: bool = False
    volume_alerts: bool = False
    change_threshold: float | None = None


class GovernanceMonitorConfig(TaskConfig):
    dao_addresses: list[str] = Field(default_factory=list)
    voting_reminders: bool = False
    reminder_threshold: float | None = None


CONFIG_MODELS: dict[TaskType, type[TaskConfig]] = {
    TaskType.SECURITY_SCAN: SecurityScanConfig,
    TaskType.WALLET_MONITOR: WalletMonitorConfig,
    TaskType.PRICE_ALERT: PriceAlertConfig,
    TaskType.AUTO_TRADE: AutoTradeConfig,
    TaskType.THREAT_HUNTER: ThreatHunterConfig,
    TaskType.PORTFOLIO_TRACKER: PortfolioTrackerConfig,
    TaskType.SMART_CONTRACT_AUDIT: SmartContractAuditConfig,
    TaskType.DEFI_MONITOR: DefiMonitorConfig,
    TaskType.NFT_TRACKER: NftTrackerConfig,
    TaskType.GOVERNANCE_MONITOR: GovernanceMonitorConfig,
}


def parse_task_type(value: str | TaskType) -> TaskType:
    """Return the TaskType for *value*. Raises InvalidTaskError if unknown."""
    try:
        return TaskType(value)
    except ValueError:
        msg = f"Unknown task type: {value}"
        raise InvalidTaskError(msg) from None


def build_config(
    task_type: TaskType, raw: dict[str, Any] | TaskConfig | None
) -> TaskConfig:
    """Validate *raw* against the model for *task_type*."""
    model = CONFIG_MODELS[task_type]
    if isinstance(raw, model):
        return raw
    if isinstance(raw, TaskConfig):
        raw = raw.model_dump(by_alias=True, exclude_none=True)
    try:
        return model.model_validate(raw or {})
    except ValidationError as exc:
        msg = f"Invalid {task_type.value} config: {exc.errors(include_url=False)}"
        raise InvalidTaskError(msg) from exc


def dump_config(config: TaskConfig) -> dict[str, Any]:
    return config.model_dump(mode="json", by_alias=True, exclude_none=True)
