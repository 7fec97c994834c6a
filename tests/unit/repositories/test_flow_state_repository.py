"""
Both flow state stores must honor the same contract.
"""

import threading
from datetime import timedelta

import pytest

from nodrake_vault.db import utc_now
from nodrake_vault.enums import Provider
from nodrake_vault.repositories import FlowStateRepository, InMemoryFlowStateStore
from nodrake_vault.schemas.flow_schemas import FlowPurpose, StoredFlowState
from nodrake_vault.utils.security_utils import hash_state_token


def _state(token="state-token", ttl=600, purpose=None, provider=Provider.GOOGLE):
    now = utc_now()
    return StoredFlowState(
        state_hash=hash_state_token(token),
        provider=provider,
        redirect_uri="https://app.test/cb",
        purpose=purpose or FlowPurpose.login(),
        code_verifier="v" * 64,
        issued_at=now,
        expires_at=now + timedelta(seconds=ttl),
    )


@pytest.fixture(params=["memory", "sql"])
def store(request, db_manager):
    if request.param == "memory":
        return InMemoryFlowStateStore()
    return FlowStateRepository(db_manager)


def test_save_then_consume_returns_state_once(store):
    state = _state(purpose=FlowPurpose.link("user-7"))
    store.save(state)

    consumed = store.consume(state.state_hash)

    assert consumed.provider == Provider.GOOGLE
    assert consumed.purpose == FlowPurpose.link("user-7")
    assert consumed.code_verifier == state.code_verifier
    assert consumed.expires_at == state.expires_at
    assert store.consume(state.state_hash) is None


def test_consume_unknown_hash(store):
    assert store.consume(hash_state_token("never-issued")) is None


def test_purge_expired_only_removes_expired(store):
    store.save(_state("fresh", ttl=600))
    store.save(_state("stale", ttl=-1))

    assert store.purge_expired() == 1
    assert store.count() == 1
    assert store.consume(hash_state_token("fresh")) is not None


def test_concurrent_consumers_get_the_state_exactly_once(store):
    state = _state()
    store.save(state)
    winners = []
    barrier = threading.Barrier(6)

    def consume():
        barrier.wait()
        if store.consume(state.state_hash) is not None:
            winners.append(True)

    threads = [threading.Thread(target=consume) for _ in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert winners == [True]


def test_sql_store_never_holds_the_raw_token(flow_state_repository, db_manager):
    from nodrake_vault.db import OAuthFlowState

    flow_state_repository.save(_state("raw-token-value"))

    session = db_manager.new_session()
    try:
        row = session.query(OAuthFlowState).one()
        assert row.state_hash == hash_state_token("raw-token-value")
        assert "raw-token-value" not in row.state_hash
    finally:
        session.close()
