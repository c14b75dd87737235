"""Tests for built-in task templates."""

import pytest

from vigil.scheduler.configs import TaskType, build_config
from vigil.scheduler.frequency import Interval, parse_frequency
from vigil.scheduler.templates import (
    DEFAULT_TEMPLATES,
    get_template,
    merge_config,
    missing_fields,
    recommendations,
    templates_by_category,
)


@pytest.mark.parametrize("template", DEFAULT_TEMPLATES, ids=lambda t: t.name)
def test_template_config_validates(template) -> None:
    config = build_config(template.type, template.default_config)
    assert config is not None


@pytest.mark.parametrize("template", DEFAULT_TEMPLATES, ids=lambda t: t.name)
def test_template_frequency_is_recognized(template, caplog: pytest.LogCaptureFixture) -> None:
    assert isinstance(parse_frequency(template.default_frequency), Interval)
    assert "Unrecognized frequency" not in caplog.text


def test_get_template_case_insensitive() -> None:
    template = get_template("  dao governance monitor ")
    assert template is not None
    assert template.type is TaskType.GOVERNANCE_MONITOR


def test_get_template_unknown() -> None:
    assert get_template("nope") is None


def test_templates_by_category() -> None:
    security = templates_by_category("security")
    assert {t.type for t in security} >= {
        TaskType.SECURITY_SCAN,
        TaskType.WALLET_MONITOR,
        TaskType.THREAT_HUNTER,
    }
    assert templates_by_category("Cooking") == []


def test_merge_config_overrides_defaults() -> None:
    template = get_template("Wallet Security Monitor")
    merged = merge_config(template, {"walletAddress": "So1abc", "trackTokens": ["USDC"]})
    assert merged["walletAddress"] == "So1abc"
    assert merged["trackTokens"] == ["USDC"]
    assert merged["alertOnTransaction"] is True
    assert template.default_config["walletAddress"] == ""


def test_missing_fields_treats_empty_as_missing() -> None:
    template = get_template("Basic Website Security Scan")
    assert missing_fields(template, merge_config(template, None)) == ["urls"]
    assert missing_fields(template, {"urls": ["https://x.io"]}) == []


def test_recommendations() -> None:
    price = get_template("Custom Token Price Alert")
    wallet = get_template("Wallet Security Monitor")

    assert recommendations(price, {}, None)
    assert recommendations(price, {}, "Every 5 minutes") == []
    assert recommendations(wallet, {"alertOnTransaction": False}, None)
    assert recommendations(wallet, {"alertOnTransaction": True}, None) == []
