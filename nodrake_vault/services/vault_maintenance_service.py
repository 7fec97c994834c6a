"""
Background maintenance for the token vault.

Meant to be run periodically by a scheduler: refresh tokens before callers
need them, move records onto the current encryption key, retire keys nothing
references any more, and purge abandoned OAuth flows.
"""

from datetime import timedelta
from typing import List, Optional

from ..exceptions import (
    DecryptionError,
    NoRefreshTokenError,
    NotLinkedError,
    ReauthRequiredError,
    RepositoryError,
    VaultError,
)
from ..schemas.credential_schemas import (
    ProviderHealth,
    RefreshSweepResult,
    TokenHealth,
    VaultStatistics,
)
from ..utils.encryption_utils import EncryptionKeySet
from .base_service import BaseService
from .token_lifecycle_service import TokenLifecycleService


class VaultMaintenanceService(BaseService):
    def __init__(
        self, lifecycle: TokenLifecycleService, key_set: Optional[EncryptionKeySet] = None
    ):
        super().__init__(config=lifecycle.config, clock=lifecycle.clock)
        self.lifecycle = lifecycle
        self.credentials = lifecycle.credentials
        self.cipher = lifecycle.cipher
        self.key_set = key_set or lifecycle.cipher.key_set

    def refresh_expiring_tokens(
        self, within: Optional[int] = None, limit: Optional[int] = None
    ) -> RefreshSweepResult:
        """
        Refresh every credential whose access token expires within ``within`` seconds.

        Credentials without a refresh token are skipped. A dead grant removes the
        credential exactly as an on-demand refresh would.
        """
        within = within if within is not None else self.config.vault.refresh_sweep_window_seconds
        limit = limit or self.config.vault.maintenance_batch_size
        result = RefreshSweepResult()

        with self.operations.operation("refresh_expiring_tokens", within_seconds=within) as op:
            cutoff = self.clock() + timedelta(seconds=within)
            for record in self.credentials.list_expiring(cutoff, limit=limit):
                result.examined += 1
                if not record.has_refresh_token:
                    result.skipped += 1
                    continue
                try:
                    if self.lifecycle.refresh_credential(record.user_id, record.provider, within):
                        result.refreshed += 1
                    else:
                        result.skipped += 1
                except (ReauthRequiredError, NoRefreshTokenError):
                    result.reauth_required += 1
                except NotLinkedError:
                    # Unlinked since the listing
                    result.skipped += 1
                except (VaultError, RepositoryError) as e:
                    result.failed += 1
                    self.logger.warning(
                        "Proactive refresh failed",
                        extra={
                            "user_id": record.user_id,
                            "provider": record.provider.value,
                            "error_code": e.error_code.value,
                        },
                    )

            op.add_metric("refreshed", result.refreshed)
            op.add_metric("failed", result.failed)

        self.logger.info("Refresh sweep finished", extra=result.model_dump())
        return result

    def reencrypt_stale_records(self, batch_size: Optional[int] = None) -> int:
        """
        Re-encrypt credentials still under an older key version.

        Returns:
            Number of credentials rewritten
        """
        batch_size = batch_size or self.config.vault.maintenance_batch_size
        current = self.cipher.current_key_version()
        rewritten = 0

        with self.operations.operation("reencrypt_stale_records", key_version=current):
            while True:
                batch = self.credentials.list_stale_key_versions(current, limit=batch_size)
                if not batch:
                    break
                progressed = 0
                for record in batch:
                    try:
                        if self.lifecycle.reencrypt_credential(record.user_id, record.provider):
                            progressed += 1
                    except DecryptionError:
                        # Left on its old key; already reported as a security event
                        continue
                rewritten += progressed
                if progressed == 0 or len(batch) < batch_size:
                    break

        self.logger.info(
            "Re-encryption sweep finished", extra={"rewritten": rewritten, "key_version": current}
        )
        return rewritten

    def retire_unused_keys(self) -> List[int]:
        """
        Retire every non-current key version that no credential references.

        Returns:
            The retired versions
        """
        current = self.key_set.current_version
        in_use = self.credentials.count_by_key_version()
        retired = []
        for version in self.key_set.versions():
            if version == current or in_use.get(version, 0) > 0:
                continue
            self.key_set.retire(version)
            retired.append(version)

        if retired:
            self.logger.info(
                "Retired unused encryption keys",
                extra={"retired_versions": retired, "key_version": current},
            )
        return retired

    def health_check_all(self, limit: Optional[int] = None) -> List[TokenHealth]:
        """
        Local health of every stored credential, no provider calls.

        Args:
            limit: Stop after this many credentials (default: all of them)
        """
        batch_size = self.config.vault.maintenance_batch_size
        results: List[TokenHealth] = []

        with self.operations.operation("health_check_all") as op:
            offset = 0
            while limit is None or len(results) < limit:
                page_size = batch_size if limit is None else min(batch_size, limit - len(results))
                page = self.credentials.list_page(offset=offset, limit=page_size)
                results.extend(self.lifecycle.token_health(record) for record in page)
                if len(page) < page_size:
                    break
                offset += len(page)

            unhealthy = sum(1 for health in results if not health.is_valid)
            op.add_metric("checked", len(results))
            op.add_metric("unhealthy", unhealthy)

        self.logger.info(
            "Token health check finished", extra={"checked": len(results), "unhealthy": unhealthy}
        )
        return results

    def provider_health_report(self) -> List[ProviderHealth]:
        return [
            self.lifecycle.provider_health(provider)
            for provider in self.lifecycle.registry.configured_providers()
        ]

    def purge_expired_flow_states(self) -> int:
        return self.lifecycle.state_manager.purge_expired()

    def get_statistics(self) -> VaultStatistics:
        now = self.clock()
        by_provider = self.credentials.count_by_provider()
        soon = now + timedelta(seconds=self.config.vault.refresh_sweep_window_seconds)
        return VaultStatistics(
            total_credentials=sum(by_provider.values()),
            by_provider=by_provider,
            by_key_version=self.credentials.count_by_key_version(),
            expiring_soon=self.credentials.count_expiring(soon),
            current_key_version=self.cipher.current_key_version(),
            generated_at=now,
        )
