"""Tests for function configuration."""

import pytest

from krm_functions.config import UpgraderConfig
from krm_functions.exceptions import InputException


def test_upgrader_defaults() -> None:
    config = UpgraderConfig.from_data({})
    assert config.annotate_on_upgrade_available
    assert not config.upgrade_on_upgrade_available
    assert not config.annotate_sum_on_upgrade_available
    assert not config.annotate_current_sum


def test_upgrader_from_data() -> None:
    config = UpgraderConfig.from_data(
        {
            "annotateOnUpgradeAvailable": "false",
            "upgradeOnUpgradeAvailable": "true",
            "annotateSumOnUpgradeAvailable": True,
            "unrelated": "value",
        }
    )
    assert config == UpgraderConfig(
        annotate_on_upgrade_available=False,
        upgrade_on_upgrade_available=True,
        annotate_sum_on_upgrade_available=True,
        annotate_current_sum=False,
    )


def test_upgrader_invalid_bool() -> None:
    with pytest.raises(InputException, match="upgradeOnUpgradeAvailable"):
        UpgraderConfig.from_data({"upgradeOnUpgradeAvailable": "maybe"})
