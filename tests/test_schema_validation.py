#!/usr/bin/env python3
"""
Validation Test Suite for Settings and Pydantic Schemas
=======================================================
Invalid configuration and malformed request bodies must be rejected.

Run with: pytest tests/test_schema_validation.py -v
"""

import pytest
from pydantic import ValidationError

from config import NotificationSettings, ProductionSettings, RedisSettings, Settings
from schemas.production import (
    AcknowledgeRequest,
    IncrementRequest,
    MachineInfo,
    MachineStatus,
    ProductionCorrection,
)


# =============================================================================
# SETTINGS
# =============================================================================

class TestSettings:
    def test_production_defaults(self):
        prod = ProductionSettings(_env_file=None)
        assert (prod.morning_shift_hour, prod.night_shift_hour, prod.shift_minutes) == (7, 19, 720)
        assert prod.reconcile_interval_seconds == 30

    def test_morning_must_precede_night(self):
        with pytest.raises(ValidationError):
            ProductionSettings(_env_file=None, morning_shift_hour=20, night_shift_hour=8)

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("PRODUCTION_SHIFT_MINUTES", "480")
        assert ProductionSettings(_env_file=None).shift_minutes == 480

    def test_blank_webhook_is_unset(self):
        assert NotificationSettings(_env_file=None, sms_webhook_url="").sms_webhook_url is None

    def test_redis_url_masks_password(self):
        redis = RedisSettings(_env_file=None, password="hunter2")
        assert "hunter2" in redis.url
        assert "hunter2" not in redis.url_safe

    def test_debug_rejected_in_production(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, environment="production", debug=True)


# =============================================================================
# REQUEST BODIES
# =============================================================================

class TestRequestBodies:
    @pytest.mark.parametrize("quantity", [0, -5])
    def test_increment_must_be_positive(self, quantity):
        with pytest.raises(ValidationError):
            IncrementRequest(quantity=quantity)

    def test_acknowledge_requires_author(self):
        with pytest.raises(ValidationError):
            AcknowledgeRequest(acknowledged_by="")

    def test_correction_rejects_negative_value(self):
        with pytest.raises(ValidationError):
            ProductionCorrection(machine_id=1, value=-1, corrected_by="lead")

    def test_status_parse_is_case_insensitive(self):
        assert MachineStatus.parse("running") == MachineStatus.RUNNING

    def test_thresholds_from_production_config(self):
        cfg = MachineInfo(id=1, name="Press", production_config={"popup_threshold": 200}).thresholds
        assert cfg.popups_enabled
        assert not cfg.alerts_enabled
