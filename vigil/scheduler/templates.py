"""Built-in task templates for common monitoring scenarios."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from vigil.scheduler.configs import TaskType

if TYPE_CHECKING:
    from vigil.scheduler.models import Task


@dataclass(frozen=True)
class TaskTemplate:
    """A preset task: type, default config, and the fields a user must fill in."""

    name: str
    description: str
    type: TaskType
    default_frequency: str
    category: str
    default_config: dict[str, Any] = field(default_factory=dict)
    required_fields: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()


@dataclass
class TemplateResult:
    """Outcome of creating a task from a template.

    ``task`` is None when required fields are missing.
    """

    task: Task | None
    missing_required_fields: list[str]
    recommendations: list[str]


_NOTIFY_IN_APP: dict[str, Any] = {"channels": ["email", "in-app"]}

DEFAULT_TEMPLATES: tuple[TaskTemplate, ...] = (
    TaskTemplate(
        name="Basic Website Security Scan",
        description="Comprehensive security scan for websites and web applications",
        type=TaskType.SECURITY_SCAN,
        default_frequency="Every 6 hours",
        category="Security",
        default_config={"urls": [], "scanInterval": 3600000, "notifications": _NOTIFY_IN_APP},
        required_fields=("urls",),
        tags=("security", "website", "vulnerability"),
    ),
    TaskTemplate(
        name="Smart Contract Security Audit",
        description="Automated security audit for smart contracts",
        type=TaskType.SMART_CONTRACT_AUDIT,
        default_frequency="Daily",
        category="Security",
        default_config={
            "contractAddresses": [],
            "auditDepth": "standard",
            "notifications": _NOTIFY_IN_APP,
        },
        required_fields=("contractAddresses",),
        tags=("security", "smart-contract", "audit"),
    ),
    TaskTemplate(
        name="Wallet Security Monitor",
        description="Monitor wallet addresses for suspicious activities",
        type=TaskType.WALLET_MONITOR,
        default_frequency="Every 5 minutes",
        category="Security",
        default_config={
            "walletAddress": "",
            "alertOnTransaction": True,
            "minTransactionAmount": 0.1,
            "trackTokens": ["SOL"],
            "notifications": _NOTIFY_IN_APP,
        },
        required_fields=("walletAddress",),
        tags=("security", "wallet", "monitoring"),
    ),
    TaskTemplate(
        name="Custom Token Price Alert",
        description="Monitor any Solana token price with customizable thresholds",
        type=TaskType.PRICE_ALERT,
        default_frequency="Every 30 minutes",
        category="Price Monitoring",
        default_config={
            "tokenSymbol": "",
            "tokenMint": "",
            "priceThreshold": {"percentChange": 15},
            "notifications": _NOTIFY_IN_APP,
        },
        required_fields=("tokenMint", "priceThreshold"),
        tags=("price", "token", "alert", "custom"),
    ),
    TaskTemplate(
        name="Solana Portfolio Tracker",
        description="Track your Solana wallet portfolio value and performance",
        type=TaskType.PORTFOLIO_TRACKER,
        default_frequency="Every hour",
        category="Portfolio",
        default_config={
            "portfolioAddress": "",
            "trackingTokens": [],
            "rebalanceThreshold": 20,
            "notifications": _NOTIFY_IN_APP,
        },
        required_fields=("portfolioAddress",),
        tags=("portfolio", "tracking", "solana", "wallet"),
    ),
    TaskTemplate(
        name="Comprehensive Threat Hunter",
        description="Actively hunt for new threats across multiple intelligence sources",
        type=TaskType.THREAT_HUNTER,
        default_frequency="Every 2 hours",
        category="Security",
        default_config={
            "threatSources": ["virustotal", "urlvoid", "phishtank", "malwaredomainlist"],
            "threatTypes": ["malicious_url", "phishing", "malware", "suspicious_domain"],
            "confidenceThreshold": 70,
            "notifications": _NOTIFY_IN_APP,
        },
        tags=("threat", "hunting", "intelligence", "security"),
    ),
    TaskTemplate(
        name="DeFi Protocol Monitor",
        description="Monitor DeFi protocols for yield opportunities and risks",
        type=TaskType.DEFI_MONITOR,
        default_frequency="Every 30 minutes",
        category="DeFi",
        default_config={
            "protocols": ["raydium", "orca", "serum"],
            "yieldThreshold": 20,
            "riskThreshold": "medium",
            "notifications": _NOTIFY_IN_APP,
        },
        required_fields=("protocols",),
        tags=("defi", "yield", "protocol", "monitoring"),
    ),
    TaskTemplate(
        name="Solana NFT Collection Tracker",
        description="Track floor prices and volume for Solana NFT collections",
        type=TaskType.NFT_TRACKER,
        default_frequency="Every hour",
        category="NFT",
        default_config={
            "nftCollections": [],
            "floorPriceAlerts": True,
            "volumeAlerts": True,
            "changeThreshold": 15,
            "notifications": _NOTIFY_IN_APP,
        },
        required_fields=("nftCollections",),
        tags=("nft", "collection", "floor-price", "tracking"),
    ),
    TaskTemplate(
        name="DAO Governance Monitor",
        description="Monitor DAO proposals and voting deadlines",
        type=TaskType.GOVERNANCE_MONITOR,
        default_frequency="Every 2 hours",
        category="Governance",
        default_config={
            "daoAddresses": [],
            "votingReminders": True,
            "reminderThreshold": 24,
            "notifications": _NOTIFY_IN_APP,
        },
        required_fields=("daoAddresses",),
        tags=("dao", "governance", "voting", "proposals"),
    ),
)


def get_template(name: str) -> TaskTemplate | None:
    """Look up a template by its (case-insensitive) name."""
    wanted = name.strip().lower()
    return next((t for t in DEFAULT_TEMPLATES if t.name.lower() == wanted), None)


def templates_by_category(category: str) -> list[TaskTemplate]:
    return [t for t in DEFAULT_TEMPLATES if t.category.lower() == category.lower()]


def merge_config(template: TaskTemplate, overrides: dict[str, Any] | None) -> dict[str, Any]:
    return {**template.default_config, **(overrides or {})}


def missing_fields(template: TaskTemplate, config: dict[str, Any]) -> list[str]:
    """Required fields that are absent or empty after merging."""
    return [name for name in template.required_fields if not config.get(name)]


def recommendations(
    template: TaskTemplate, config: dict[str, Any], frequency: str | None
) -> list[str]:
    tips: list[str] = []
    if template.type is TaskType.PRICE_ALERT and not frequency:
        tips.append(
            'Consider using "Every 5 minutes" for price alerts to catch rapid price movements'
        )
    if template.type is TaskType.WALLET_MONITOR and not config.get("alertOnTransaction"):
        tips.append("Enable transaction alerts to monitor wallet activity in real time")
    return tips
