"""
Tests for dealnet/services/partners.py - registry loading and partner auth.
"""
import json
import pytest
from unittest.mock import AsyncMock, patch

from dealnet.services.partners import (
    PartnerRegistryError,
    get_partner_by_key,
    get_partners_config,
    load_partners_config,
    reload_partners_config,
    require_partner,
    require_scope,
)


def write_registry(tmp_path, partners, version=1):
    path = tmp_path / "partners.json"
    path.write_text(json.dumps({"version": version, "partners": partners}))
    return str(path)


class TestLoadPartnersConfig:
    def test_defaults_applied(self, tmp_path):
        path = write_registry(tmp_path, [{"key": "p1", "site_key": "s", "token_env_var": "T"}])
        partner = load_partners_config(path).partners[0]
        assert partner.enabled is False
        assert partner.scopes == ["feed"]
        assert partner.rate_limit_per_minute == 120
        assert partner.max_limit == 50
        assert partner.tier == "basic"

    @pytest.mark.parametrize("override", [
        {"scopes": ["feed", "raw_logs"]},
        {"rate_limit_per_minute": 601},
        {"max_limit": 0},
        {"tier": "gold"},
        {"key": "Bad Key"},
    ])
    def test_invalid_entries_rejected(self, tmp_path, override):
        entry = {"key": "p1", "site_key": "s", "token_env_var": "T"}
        entry.update(override)
        with pytest.raises(PartnerRegistryError):
            load_partners_config(write_registry(tmp_path, [entry]))

    def test_wrong_version_rejected(self, tmp_path):
        with pytest.raises(PartnerRegistryError):
            load_partners_config(write_registry(tmp_path, [], version=2))

    def test_duplicate_keys_rejected(self, tmp_path):
        entry = {"key": "p1", "site_key": "s", "token_env_var": "T"}
        with pytest.raises(PartnerRegistryError):
            load_partners_config(write_registry(tmp_path, [entry, entry]))

    def test_missing_file(self, tmp_path):
        with pytest.raises(PartnerRegistryError):
            load_partners_config(str(tmp_path / "nope.json"))


class TestRegistryCache:
    def test_loads_configured_file_once(self):
        first = get_partners_config()
        assert get_partners_config() is first
        assert {p.key for p in first.partners} >= {"acme", "basicco", "dormant"}

    def test_reload_rereads(self):
        first = get_partners_config()
        assert reload_partners_config() is not first

    def test_get_partner_by_key(self):
        assert get_partner_by_key("acme").tier == "pro"
        assert get_partner_by_key("nobody") is None


class TestRequirePartner:
    async def test_valid_token(self, db):
        result = await require_partner(db, "acme", "acme-secret")
        assert result.ok is True
        assert result.partner.key == "acme"

    async def test_unknown_partner_is_404(self, db):
        assert (await require_partner(db, "nobody", "x")).status == 404

    async def test_disabled_partner_is_404(self, db):
        assert (await require_partner(db, "dormant", "dormant-secret")).status == 404

    async def test_missing_secret_is_503(self, db):
        assert (await require_partner(db, "no_secret", "anything")).status == 503

    async def test_wrong_token_is_401_and_counted(self, db):
        with patch("dealnet.services.governance.record_invalid_token_attempt",
                   new_callable=AsyncMock) as recorder:
            result = await require_partner(db, "acme", "wrong")
        assert result.status == 401
        recorder.assert_awaited_once_with(db, "acme")

    async def test_missing_token_is_401(self, db):
        with patch("dealnet.services.governance.record_invalid_token_attempt", new_callable=AsyncMock):
            assert (await require_partner(db, "acme", None)).status == 401


class TestRequireScope:
    def test_scope_present(self):
        assert require_scope(get_partner_by_key("acme"), "trends") is None

    def test_scope_missing_is_404(self):
        assert require_scope(get_partner_by_key("basicco"), "trends") == 404
