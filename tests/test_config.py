"""Tests for settings and logging configuration."""

import json
import logging

import pytest
from pydantic import ValidationError

from config.logging_config import (
    JsonFormatter,
    ReadableFormatter,
    bind_log_context,
    configure_logging,
    get_logger,
    request_id_var,
)
from config.settings import (
    HierarchySettings,
    get_hierarchy_settings,
    reload_hierarchy_settings,
)


class TestHierarchySettings:
    """Tests for RBAC_ prefixed settings."""

    def test_defaults(self, monkeypatch):
        for key in ("RBAC_VIEW_CACHE_TTL_SECONDS", "RBAC_DEFAULT_CUSTOM_ROLE_LEVEL"):
            monkeypatch.delenv(key, raising=False)
        settings = HierarchySettings(_env_file=None)
        assert settings.view_cache_enabled is True
        assert settings.view_cache_ttl_seconds == 60
        assert settings.default_custom_role_level == 3
        assert settings.unranked_level == 999

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("RBAC_VIEW_CACHE_TTL_SECONDS", "5")
        monkeypatch.setenv("RBAC_VIEW_CACHE_ENABLED", "false")
        settings = reload_hierarchy_settings()
        try:
            assert settings.view_cache_ttl_seconds == 5
            assert settings.view_cache_enabled is False
            assert get_hierarchy_settings() is settings
        finally:
            get_hierarchy_settings.cache_clear()

    def test_default_level_must_rank_above_unranked(self):
        with pytest.raises(ValidationError):
            HierarchySettings(default_custom_role_level=10, unranked_level=10)

    def test_negative_ttl_rejected(self):
        with pytest.raises(ValidationError):
            HierarchySettings(view_cache_ttl_seconds=-1)


class TestLogging:
    """Tests for structured log formatting."""

    def _record(self, **extra_data):
        record = logging.LogRecord(
            name="hierarchy.services",
            level=logging.WARNING,
            pathname=__file__,
            lineno=1,
            msg="assign_role rejected",
            args=(),
            exc_info=None,
        )
        record.extra_data = extra_data
        return record

    def test_json_formatter_includes_context(self):
        with bind_log_context(request_id="req-1", tenant_id="tenant-t"):
            output = json.loads(JsonFormatter().format(self._record(code="AUTH_DENIED")))

        assert output["message"] == "assign_role rejected"
        assert output["level"] == "WARNING"
        assert output["request_id"] == "req-1"
        assert output["tenant_id"] == "tenant-t"
        assert output["code"] == "AUTH_DENIED"

    def test_readable_formatter(self):
        line = ReadableFormatter().format(self._record(role_type="LEAF"))
        assert "assign_role rejected" in line
        assert "role_type=LEAF" in line

    def test_context_logger_merges_extra(self, caplog):
        logger = get_logger("hierarchy.test", component="engine")
        with caplog.at_level(logging.INFO, logger="hierarchy.test"):
            logger.info("resolved", extra={"tenant_id": "t"})

        record = caplog.records[-1]
        assert record.extra_data == {"component": "engine", "tenant_id": "t"}

    def test_context_cleared_after_block(self):
        with bind_log_context(request_id="req-2"):
            pass
        assert request_id_var.get() is None

    def test_configure_logging_writes_json_file(self, tmp_path):
        root = logging.getLogger()
        saved_handlers, saved_level = list(root.handlers), root.level
        log_file = tmp_path / "logs" / "hierarchy.log"
        try:
            configure_logging(level="INFO", log_file=log_file)
            get_logger("hierarchy.file").info("written", extra={"role_type": "LEAF"})
            for handler in root.handlers:
                handler.flush()
        finally:
            for handler in root.handlers:
                handler.close()
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)

        entry = json.loads(log_file.read_text().strip().splitlines()[-1])
        assert entry["message"] == "written"
        assert entry["role_type"] == "LEAF"
