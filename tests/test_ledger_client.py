# tests/test_ledger_client.py
import threading
import time

import pytest

from chatbot_verifier.config import LedgerConfig
from chatbot_verifier.errors import LedgerTransactionFailure, LedgerUnavailable, NotConnected
from chatbot_verifier.hashing import LOCAL_ID_SPACE, prompt_hash
from chatbot_verifier.ledger.base import ConnectionState, LedgerReceipt
from chatbot_verifier.ledger.client import LedgerClient, LiveLedger, LocalIdIssuer, MockLedger

from fakes import FakeBackend

PH = prompt_hash("How does voting work?")


def _client(backend, **cfg):
    sleeps = []
    client = LedgerClient(LedgerConfig(backend="fake", **cfg), backend_factory=lambda c: backend,
                          sleep=sleeps.append)
    return client, sleeps


# ---------------------------------------------------------------------------
# state machine
# ---------------------------------------------------------------------------
def test_starts_uninitialized_and_connects(fake_backend):
    client, _ = _client(fake_backend)
    assert client.state is ConnectionState.UNINITIALIZED
    assert client.init() is ConnectionState.CONNECTED
    assert client.is_connected
    assert client.identity == fake_backend.identity


def test_mock_backend_selected():
    client = LedgerClient(LedgerConfig(backend="mock"))
    assert client.init() is ConnectionState.MOCK
    assert client.identity is None


def test_evm_without_private_key_runs_in_mock_mode():
    client = LedgerClient(LedgerConfig(backend="evm", private_key=None))
    assert client.init() is ConnectionState.MOCK
    assert "private key" in client.mock_reason.lower()


def test_unknown_backend_runs_in_mock_mode():
    client = LedgerClient(LedgerConfig(backend="carrier-pigeon"))
    assert client.init() is ConnectionState.MOCK


def test_init_error_runs_in_mock_mode():
    def boom(cfg):
        raise RuntimeError("rpc exploded")

    client = LedgerClient(LedgerConfig(backend="fake"), backend_factory=boom)
    assert client.init() is ConnectionState.MOCK
    assert "rpc exploded" in client.mock_reason


def test_failed_connectivity_check_runs_in_mock_mode(fake_backend):
    fake_backend.fail_reads = LedgerTransactionFailure("bad contract")
    client, _ = _client(fake_backend)
    assert client.init() is ConnectionState.MOCK
    assert fake_backend.closed


def test_init_is_decided_once(fake_backend):
    client, _ = _client(fake_backend)
    client.init()
    fake_backend.fail_reads = LedgerUnavailable("gone")
    assert client.init() is ConnectionState.CONNECTED


def test_first_call_initializes(fake_backend):
    client, _ = _client(fake_backend)
    receipt = client.create_request(PH)
    assert client.state is ConnectionState.CONNECTED
    assert receipt.request_id == 1


# ---------------------------------------------------------------------------
# mock mode
# ---------------------------------------------------------------------------
def test_mock_create_request_synthesizes_unconfirmed_ids(mock_client):
    r1 = mock_client.create_request(PH)
    r2 = mock_client.create_request(PH)
    assert isinstance(r1.request_id, int)
    assert r1.confirmed is False
    assert r1.request_id != r2.request_id


def test_mock_reads_and_writes_refused(mock_client):
    with pytest.raises(NotConnected):
        mock_client.get_request(1)
    with pytest.raises(NotConnected):
        mock_client.get_answer(1)
    with pytest.raises(NotConnected):
        mock_client.verify_signature(1, b"sig")
    with pytest.raises(NotConnected):
        mock_client.submit_answer(1, "text", b"proof")
    with pytest.raises(NotConnected):
        mock_client.ensure_connected()


def test_local_id_issuer_never_reuses():
    issuer = LocalIdIssuer(start=5)
    assert [issuer.issue(), issuer.issue(), issuer.issue()] == [5, 6, 7]


def test_local_id_issuer_keeps_issuing_past_the_local_space():
    issuer = LocalIdIssuer(start=LOCAL_ID_SPACE - 2)
    ids = [issuer.issue() for _ in range(5)]
    assert len(set(ids)) == 5
    assert ids[-1] == LOCAL_ID_SPACE + 2


def test_local_id_issuer_does_not_block_concurrent_callers():
    issuer = LocalIdIssuer(start=0)
    issued = []

    def worker():
        for _ in range(500):
            issued.append(issuer.issue())

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=5)
    assert not any(t.is_alive() for t in threads)
    assert sorted(issued) == list(range(2000))


def test_local_id_issuer_starts_inside_the_local_space():
    for _ in range(20):
        assert 0 <= LocalIdIssuer().issue() < LOCAL_ID_SPACE


def test_fallback_ids_share_the_mock_id_space(mock_client):
    ids = {mock_client.create_request(PH).request_id for _ in range(20)}
    ids |= {mock_client.fallback_request_id() for _ in range(20)}
    assert len(ids) == 40


# ---------------------------------------------------------------------------
# connected mode
# ---------------------------------------------------------------------------
def test_connected_round_trip(live_client, fake_backend):
    receipt = live_client.create_request(PH)
    assert receipt.confirmed
    live_client.submit_answer(receipt.request_id, "answer", b"proof")
    req = live_client.get_request(receipt.request_id)
    ans = live_client.get_answer(receipt.request_id)
    assert req.prompt_hash == PH and req.answered
    assert ans.text == "answer" and ans.proof == b"proof"
    assert live_client.verify_signature(receipt.request_id, b"proof") is True
    assert live_client.verify_signature(receipt.request_id, b"other") is False
    assert live_client.get_total_requests() == 1


def test_transaction_failure_is_not_retried_and_does_not_demote(fake_backend):
    fake_backend.fail_create = LedgerTransactionFailure("reverted")
    client, sleeps = _client(fake_backend, max_retries=3)
    client.init()
    with pytest.raises(LedgerTransactionFailure) as exc:
        client.create_request(PH)
    assert exc.value.operation == "createRequest"
    assert fake_backend.calls.count("createRequest") == 1
    assert sleeps == []
    assert client.is_connected


def test_unexpected_backend_error_becomes_transaction_failure(fake_backend):
    fake_backend.fail_submit = KeyError("boom")
    client, _ = _client(fake_backend)
    rid = client.create_request(PH).request_id
    with pytest.raises(LedgerTransactionFailure):
        client.submit_answer(rid, "a", b"p")
    assert client.is_connected


def test_malformed_receipt_rejected(fake_backend, monkeypatch):
    monkeypatch.setattr(fake_backend, "create_request",
                        lambda ph: LedgerReceipt(operation="createRequest", request_id=None))
    client, _ = _client(fake_backend)
    client.init()
    with pytest.raises(LedgerTransactionFailure, match="malformed"):
        client.create_request(PH)


def test_transport_errors_retried_with_backoff(fake_backend, monkeypatch):
    real_create = fake_backend.create_request
    failures = {"left": 2}

    def flaky(ph):
        if failures["left"]:
            failures["left"] -= 1
            raise LedgerUnavailable("connection refused")
        return real_create(ph)

    monkeypatch.setattr(fake_backend, "create_request", flaky)
    client, sleeps = _client(fake_backend, max_retries=2, retry_backoff=0.5)
    client.init()
    assert client.create_request(PH).request_id == 1
    assert sleeps == [0.5, 1.0]
    assert client.is_connected


def test_exhausted_transport_retries_demote_permanently(fake_backend):
    client, sleeps = _client(fake_backend, max_retries=1)
    client.init()
    fake_backend.fail_create = LedgerUnavailable("connection refused")
    with pytest.raises(LedgerUnavailable):
        client.create_request(PH)
    assert len(sleeps) == 1
    assert client.state is ConnectionState.MOCK
    assert fake_backend.closed

    # no way back, even once the backend recovers
    fake_backend.fail_create = None
    assert client.init() is ConnectionState.MOCK
    assert client.create_request(PH).confirmed is False
    with pytest.raises(NotConnected):
        client.get_request(1)


def test_closed_client_refuses_calls(fake_backend):
    client, _ = _client(fake_backend)
    client.init()
    client.close()
    assert fake_backend.closed
    with pytest.raises(NotConnected):
        client.create_request(PH)


# ---------------------------------------------------------------------------
# concurrency
# ---------------------------------------------------------------------------
class SlowBackend(FakeBackend):
    def __init__(self):
        super().__init__()
        self.in_flight = 0
        self.max_in_flight = 0
        self._count_lock = threading.Lock()

    def create_request(self, prompt_hash):
        with self._count_lock:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        time.sleep(0.02)
        try:
            return super().create_request(prompt_hash)
        finally:
            with self._count_lock:
                self.in_flight -= 1


def test_mutations_are_serialized():
    backend = SlowBackend()
    ledger = LiveLedger(backend)
    ids = []
    threads = [threading.Thread(target=lambda: ids.append(ledger.create_request(PH).request_id))
               for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert backend.max_in_flight == 1
    assert sorted(ids) == list(range(1, 9))


def test_reads_do_not_wait_for_mutations():
    backend = FakeBackend()
    entered = threading.Event()
    release = threading.Event()
    real_create = backend.create_request

    def blocking_create(ph):
        entered.set()
        release.wait(5)
        return real_create(ph)

    backend.create_request = blocking_create
    ledger = LiveLedger(backend)
    writer = threading.Thread(target=lambda: ledger.create_request(PH))
    writer.start()
    try:
        assert entered.wait(5)
        # the tx lock is held by the writer; reads still go through
        assert ledger.get_total_requests() == 0
        assert ledger.verify_signature(1, b"x") is False
    finally:
        release.set()
        writer.join()
    assert ledger.get_total_requests() == 1


def test_mock_ledger_state():
    assert MockLedger().state is ConnectionState.MOCK
    assert LiveLedger(FakeBackend()).state is ConnectionState.CONNECTED
