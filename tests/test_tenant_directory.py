"""Tests for the JSON tenant directory."""

import json

import pytest

from src.infra.tenant_directory import JsonTenantDirectory, TenantDirectoryError


def _write(path, data):
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


class TestJsonTenantDirectory:

    def test_loads_wrapped_list(self, tmp_path):
        path = _write(tmp_path / "tenants.json", {
            "tenants": [
                {"tenant_id": "t1", "timezone": "America/Chicago", "priority_tier": "premium"},
            ],
        })

        [record] = JsonTenantDirectory(path).load()

        assert record.tenant_id == "t1"
        assert record.timezone == "America/Chicago"
        assert record.priority_tier == "premium"
        assert record.frequency == "daily"
        assert record.active is True

    def test_loads_bare_list_with_legacy_keys(self, tmp_path):
        path = _write(tmp_path / "tenants.json", [
            {
                "dealer_id": "d1",
                "dealer_name": "Main Street Motors",
                "preferred_time": "02:00",
                "priority": "economy",
                "address": "1 Main St, Austin, TX 78701",
            },
        ])

        [record] = JsonTenantDirectory(path).load()

        assert record.tenant_id == "d1"
        assert record.tenant_name == "Main Street Motors"
        assert record.preferred_local_time == "02:00"
        assert record.priority_tier == "economy"

    def test_list_active_skips_inactive(self, tmp_path):
        path = _write(tmp_path / "tenants.json", [
            {"tenant_id": "t1"},
            {"tenant_id": "t2", "active": False},
            {"tenant_id": "t3"},
        ])

        active = JsonTenantDirectory(path).list_active_tenants()

        assert [record.tenant_id for record in active] == ["t1", "t3"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(TenantDirectoryError, match="not found"):
            JsonTenantDirectory(tmp_path / "missing.json").load()

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "tenants.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(TenantDirectoryError, match="not valid JSON"):
            JsonTenantDirectory(path).load()

    def test_record_without_id(self, tmp_path):
        path = _write(tmp_path / "tenants.json", [{"timezone": "America/Denver"}])

        with pytest.raises(TenantDirectoryError, match="Invalid tenant directory"):
            JsonTenantDirectory(path).load()
