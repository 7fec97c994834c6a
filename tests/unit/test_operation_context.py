"""
Unit tests for operation tracking: correlation ids and ENTER/EXIT/ERROR logging.
"""

import logging

import pytest

from nodrake_vault.context import OperationHandler
from nodrake_vault.exceptions import NotLinkedError, get_correlation_id, set_correlation_id


@pytest.fixture
def handler():
    return OperationHandler()


class TestOperationHandler:
    def test_correlation_id_lives_for_the_operation(self, handler):
        with handler.operation("refresh_credential", provider="spotify") as op:
            assert get_correlation_id() == op.correlation_id
            assert op.context["provider"] == "spotify"

        assert get_correlation_id() is None

    def test_nested_operations_share_the_outer_correlation_id(self, handler):
        with handler.operation("complete_flow") as outer:
            with handler.operation("link_credential") as inner:
                assert inner.correlation_id == outer.correlation_id
            assert get_correlation_id() == outer.correlation_id

    def test_caller_supplied_correlation_id_is_kept(self, handler):
        set_correlation_id("req-42")

        with handler.operation("unlink") as op:
            assert op.correlation_id == "req-42"

        assert get_correlation_id() == "req-42"

    def test_exit_carries_metrics(self, handler, caplog):
        with caplog.at_level(logging.DEBUG, logger="nodrake_vault"):
            with handler.operation("refresh_sweep") as op:
                op.add_metric("refreshed", 3)

        exit_record = caplog.records[-1]
        assert exit_record.getMessage().startswith("EXIT: refresh_sweep")
        assert exit_record.refreshed == 3
        assert exit_record.status == "success"

    def test_vault_errors_are_enriched_and_reraised(self, handler, caplog):
        with caplog.at_level(logging.DEBUG, logger="nodrake_vault"):
            with pytest.raises(NotLinkedError) as exc_info:
                with handler.operation("get_valid_access_token"):
                    raise NotLinkedError(provider="tidal")

        assert exc_info.value.context["operation_name"] == "get_valid_access_token"
        assert caplog.records[-1].status == "error"

    def test_unexpected_errors_propagate(self, handler):
        with pytest.raises(KeyError):
            with handler.operation("purge"):
                raise KeyError("boom")

        assert get_correlation_id() is None
