import logging

import pytest

from nodrake_vault.enums import Provider, ProviderErrorKind, ProviderHealthStatus
from nodrake_vault.exceptions import ProviderUnavailableError, StoreConflictError
from nodrake_vault.schemas.flow_schemas import FlowPurpose
from tests.fixtures.factories import ExternalIdentityFactory, LongLivedTokenSetFactory, TokenSetFactory
from tests.fixtures.stubs import REDIRECT_URI, run_flow


def _login(lifecycle, adapter, tokens=None, code=None):
    code = code or f"code-{len(adapter.exchange_calls)}"
    adapter.grant(code, tokens or TokenSetFactory(), ExternalIdentityFactory())
    return run_flow(lifecycle, adapter.provider, FlowPurpose.login(), code).user_id


class TestRefreshSweep:
    def test_sweep_refreshes_what_it_can(self, lifecycle, maintenance, spotify, google):
        refreshable = _login(lifecycle, spotify)
        _login(lifecycle, google, TokenSetFactory(refresh_token=None), code="no-refresh")
        revoked = _login(lifecycle, google, code="revoked")
        _login(lifecycle, spotify, LongLivedTokenSetFactory(), code="long-lived")
        google.refresh_outcomes = [ProviderErrorKind.INVALID_GRANT]
        # Ten minutes left: inside the sweep window, outside the on-demand margin
        lifecycle.clock.advance(3000)

        result = maintenance.refresh_expiring_tokens()

        assert result.examined == 3
        assert result.refreshed == 1
        assert result.skipped == 1
        assert result.reauth_required == 1
        assert result.failed == 0
        assert lifecycle.get_valid_access_token(refreshable, Provider.SPOTIFY) == (
            "refreshed-access-1"
        )
        assert lifecycle.credentials.find(revoked, Provider.GOOGLE) is None

    def test_outage_counts_as_failure(self, lifecycle, maintenance, spotify):
        user_id = _login(lifecycle, spotify)
        spotify.refresh_outcomes = [ProviderErrorKind.UNAVAILABLE]
        lifecycle.clock.advance(3000)

        result = maintenance.refresh_expiring_tokens()

        assert result.failed == 1
        assert lifecycle.credentials.find(user_id, Provider.SPOTIFY) is not None

    def test_store_conflict_counts_as_failure_and_sweep_continues(
        self, lifecycle, maintenance, spotify, monkeypatch
    ):
        contended = _login(lifecycle, spotify)
        other = _login(lifecycle, spotify, code="second")
        refresh_credential = lifecycle.refresh_credential

        def conflicting_refresh(user_id, provider, within_seconds, timeout=None):
            if user_id == contended:
                raise StoreConflictError(operation="refresh_credential")
            return refresh_credential(user_id, provider, within_seconds, timeout)

        monkeypatch.setattr(lifecycle, "refresh_credential", conflicting_refresh)
        lifecycle.clock.advance(3000)

        result = maintenance.refresh_expiring_tokens()

        assert result.examined == 2
        assert result.failed == 1
        assert result.refreshed == 1
        assert lifecycle.credentials.find(contended, Provider.SPOTIFY) is not None
        assert lifecycle.get_valid_access_token(other, Provider.SPOTIFY).startswith("refreshed-")

    def test_nothing_due(self, lifecycle, maintenance, spotify):
        _login(lifecycle, spotify)

        result = maintenance.refresh_expiring_tokens(within=60)

        assert result.examined == 0
        assert spotify.refresh_calls == []


class TestKeyRotation:
    def test_reencrypt_then_retire(self, lifecycle, maintenance, spotify, google, key_set):
        spotify_user = _login(lifecycle, spotify)
        tokens = TokenSetFactory()
        google_user = _login(lifecycle, google, tokens)
        key_set.add_key()

        assert maintenance.retire_unused_keys() == []
        assert maintenance.reencrypt_stale_records(batch_size=1) == 2

        assert lifecycle.credentials.count_by_key_version() == {2: 2}
        assert maintenance.retire_unused_keys() == [1]
        assert key_set.versions() == [2]
        assert lifecycle.get_valid_access_token(google_user, Provider.GOOGLE) == tokens.access_token
        assert lifecycle.get_valid_access_token(spotify_user, Provider.SPOTIFY)

    def test_undecryptable_records_are_left_behind(
        self, lifecycle, maintenance, spotify, key_set, credential_repository
    ):
        user_id = _login(lifecycle, spotify)
        record = credential_repository.find(user_id, Provider.SPOTIFY)
        credential_repository.upsert(
            record.model_copy(update={"access_token_ciphertext": b"\x01" * 48})
        )
        key_set.add_key()

        assert maintenance.reencrypt_stale_records() == 0
        assert maintenance.retire_unused_keys() == []


class TestHealth:
    def test_health_check_all_reports_every_credential(
        self, lifecycle, maintenance, spotify, google, credential_repository
    ):
        healthy = _login(lifecycle, spotify)
        corrupt = _login(lifecycle, google)
        long_lived = _login(lifecycle, spotify, LongLivedTokenSetFactory(), code="long-lived")
        record = credential_repository.find(corrupt, Provider.GOOGLE)
        credential_repository.upsert(
            record.model_copy(update={"access_token_ciphertext": b"\x02" * 48})
        )

        report = {(h.user_id, h.provider): h for h in maintenance.health_check_all()}

        assert len(report) == 3
        assert report[(healthy, Provider.SPOTIFY)].is_valid is True
        assert report[(corrupt, Provider.GOOGLE)].is_valid is False
        assert report[(corrupt, Provider.GOOGLE)].error is not None
        assert report[(long_lived, Provider.SPOTIFY)].can_refresh is False
        assert spotify.refresh_calls == []
        assert google.refresh_calls == []

    def test_health_check_all_pages_and_limits(self, lifecycle, maintenance, spotify, app_config):
        for n in range(5):
            _login(lifecycle, spotify, code=f"code-{n}")
        app_config.vault.maintenance_batch_size = 2

        assert len(maintenance.health_check_all()) == 5
        assert len(maintenance.health_check_all(limit=3)) == 3
        assert maintenance.health_check_all(limit=0) == []

    def test_expired_tokens_show_as_invalid(self, lifecycle, maintenance, spotify):
        _login(lifecycle, spotify)
        lifecycle.clock.advance(4000)

        [health] = maintenance.health_check_all()

        assert health.is_valid is False
        assert health.needs_refresh is True

    def test_provider_health_report(self, lifecycle, maintenance, spotify):
        spotify.exchange_error = ProviderErrorKind.UNAVAILABLE
        with pytest.raises(ProviderUnavailableError):
            _login(lifecycle, spotify)

        report = {h.provider: h.status for h in maintenance.provider_health_report()}

        assert report == {
            Provider.GOOGLE: ProviderHealthStatus.HEALTHY,
            Provider.SPOTIFY: ProviderHealthStatus.DEGRADED,
        }


def test_purge_expired_flow_states(lifecycle, maintenance):
    lifecycle.begin_flow(Provider.SPOTIFY, REDIRECT_URI, FlowPurpose.login())
    lifecycle.begin_flow(Provider.GOOGLE, REDIRECT_URI, FlowPurpose.login())

    assert maintenance.purge_expired_flow_states() == 0
    lifecycle.clock.advance(601)
    assert maintenance.purge_expired_flow_states() == 2


def test_statistics(lifecycle, maintenance, spotify, google):
    _login(lifecycle, spotify)
    _login(lifecycle, google)
    _login(lifecycle, spotify, LongLivedTokenSetFactory(), code="long-lived")

    stats = maintenance.get_statistics()

    assert stats.total_credentials == 3
    assert stats.by_provider == {"spotify": 2, "google": 1}
    assert stats.by_key_version == {1: 3}
    assert stats.current_key_version == 1
    assert stats.expiring_soon == 0
    assert stats.generated_at == lifecycle.clock()

    lifecycle.clock.advance(3000)
    assert maintenance.get_statistics().expiring_soon == 2


@pytest.mark.parametrize("within", [None, 7200])
def test_sweep_logs_summary(lifecycle, maintenance, spotify, within, caplog):
    _login(lifecycle, spotify)
    lifecycle.clock.advance(3000)

    with caplog.at_level(logging.INFO, logger="nodrake_vault"):
        maintenance.refresh_expiring_tokens(within=within)

    assert any("Refresh sweep finished" in r.getMessage() for r in caplog.records)
