# tests/test_coordinator.py
import pytest

from chatbot_verifier import governance
from chatbot_verifier.coordinator import QueryCoordinator
from chatbot_verifier.errors import (
    GenerationFailure, InvalidInput, LedgerTransactionFailure, LedgerUnavailable, NotConnected,
)
from chatbot_verifier.generation import Generation, TemplateGenerator
from chatbot_verifier.hashing import prompt_hash
from chatbot_verifier.proof import PROOF_LENGTH, PROOF_PREFIX, proof_bytes, verify_proof


class ExplodingGenerator:
    def generate(self, prompt):
        raise RuntimeError("model offline")


def test_connected_query_is_verifiable(live_coordinator, fake_backend):
    result = live_coordinator.submit_query("How does voting work?")
    assert result.verifiable is True
    assert result.text == governance.VOTING
    assert result.proof.startswith(PROOF_PREFIX) and len(result.proof) == PROOF_LENGTH
    assert verify_proof(result.proof, "How does voting work?", result.text)

    # both commitments reached the ledger
    assert fake_backend.calls == ["createRequest", "submitAnswer"]
    req = fake_backend.requests[result.request_id]
    assert req.prompt_hash == prompt_hash("How does voting work?")
    assert fake_backend.answers[result.request_id].proof == proof_bytes(result.proof)
    assert result.commitment.request_tx and result.commitment.answer_tx


def test_response_body_shape(live_coordinator):
    body = live_coordinator.submit_query("Explain tokenomics").to_response()
    assert set(body) == {"requestId", "text", "proof", "model", "usage", "timestamp", "verifiable"}
    assert body["model"] == "0g-governance-assistant-v1"
    assert body["timestamp"].endswith("Z")
    p = len("Explain tokenomics".encode("utf-8"))
    c = len(governance.TOKENOMICS.encode("utf-8"))
    assert body["usage"] == {"promptTokens": p // 4, "completionTokens": c // 4,
                             "totalTokens": (p + c) // 4}


def test_identical_prompts_are_not_deduplicated(live_coordinator, fake_backend):
    r1 = live_coordinator.submit_query("Summarize proposals")
    r2 = live_coordinator.submit_query("Summarize proposals")
    assert r1.request_id != r2.request_id
    assert r1.prompt_hash == r2.prompt_hash
    assert len(fake_backend.requests) == 2


@pytest.mark.parametrize("prompt", ["", None, 42, ["list"], {"prompt": "x"}])
def test_invalid_prompt(live_coordinator, fake_backend, prompt):
    with pytest.raises(InvalidInput):
        live_coordinator.submit_query(prompt)
    assert fake_backend.calls == []


def test_mock_mode_is_never_verifiable(mock_coordinator):
    result = mock_coordinator.submit_query("Treasury status")
    assert result.verifiable is False
    assert isinstance(result.request_id, int)
    assert result.text == governance.TREASURY
    assert result.commitment.request_registered is False


def test_create_failure_falls_back_to_local_id(live_coordinator, fake_backend):
    fake_backend.fail_create = LedgerTransactionFailure("nonce too low")
    result = live_coordinator.submit_query("How does voting work?")
    assert isinstance(result.request_id, int)
    assert result.verifiable is False
    assert result.text
    # the fallback id was never registered, so nothing is answered against it
    assert "submitAnswer" not in fake_backend.calls
    assert result.commitment.errors and "createRequest" in result.commitment.errors[0]


def test_submit_failure_is_swallowed(live_coordinator, fake_backend):
    fake_backend.fail_submit = LedgerTransactionFailure("reverted")
    result = live_coordinator.submit_query("Treasury status")
    assert result.verifiable is False
    assert result.commitment.request_registered is True
    assert result.commitment.answer_persisted is False
    assert result.text == governance.TREASURY
    assert result.request_id in fake_backend.requests


def test_transport_failure_demotes_and_later_queries_are_local(live_coordinator, live_client, fake_backend):
    fake_backend.fail_create = LedgerUnavailable("connection refused")
    first = live_coordinator.submit_query("vote")
    assert first.verifiable is False
    assert not live_client.is_connected

    fake_backend.fail_create = None
    second = live_coordinator.submit_query("vote")
    assert second.verifiable is False
    assert fake_backend.calls.count("createRequest") == 1


def test_generation_failure_is_fatal(live_client, fake_backend):
    coordinator = QueryCoordinator(ledger=live_client, generator=ExplodingGenerator())
    with pytest.raises(GenerationFailure, match="model offline"):
        coordinator.submit_query("How does voting work?")
    # the request had already been registered; no answer follows it
    assert fake_backend.calls == ["createRequest"]


def test_lookup_and_verify_connected(live_coordinator):
    result = live_coordinator.submit_query("How does voting work?")
    detail = live_coordinator.lookup(result.request_id)
    assert detail["requestId"] == result.request_id
    assert detail["request"]["promptHash"] == "0x" + result.prompt_hash.hex()
    assert detail["request"]["answered"] is True
    assert detail["answer"]["text"] == result.text
    assert detail["answer"]["proof"] == "0x" + proof_bytes(result.proof).hex()

    sig = "0x" + proof_bytes(result.proof).hex()
    assert live_coordinator.verify(result.request_id, sig)["verified"] is True
    assert live_coordinator.verify(str(result.request_id), "0xdead")["verified"] is False


def test_lookup_and_verify_bad_input(live_coordinator):
    with pytest.raises(InvalidInput):
        live_coordinator.lookup(-1)
    with pytest.raises(InvalidInput):
        live_coordinator.verify(True, "0x00")
    with pytest.raises(InvalidInput):
        live_coordinator.verify(1, "not-hex")
    with pytest.raises(InvalidInput):
        live_coordinator.verify(1, None)


def test_lookup_and_verify_need_connection(mock_coordinator):
    with pytest.raises(NotConnected):
        mock_coordinator.lookup(1)
    with pytest.raises(NotConnected):
        mock_coordinator.verify(1, "0x00")


def test_local_ledger_end_to_end(local_client):
    coordinator = QueryCoordinator(ledger=local_client, generator=TemplateGenerator())
    result = coordinator.submit_query("How does voting work?")
    assert result.verifiable is True
    assert result.request_id == 1
    detail = coordinator.lookup(1)
    assert detail["answer"]["submitter"] == "test-operator"
    assert detail["answer"]["verified"] is True


class EmptyGenerator:
    def generate(self, prompt):
        return Generation(text="", model="m")


def test_empty_answer_is_a_generation_failure(mock_client):
    coordinator = QueryCoordinator(ledger=mock_client, generator=EmptyGenerator())
    with pytest.raises(GenerationFailure, match="no text"):
        coordinator.submit_query("hi")


def test_empty_answer_is_never_submitted(live_client, fake_backend):
    coordinator = QueryCoordinator(ledger=live_client, generator=EmptyGenerator())
    with pytest.raises(GenerationFailure):
        coordinator.submit_query("How does voting work?")
    assert fake_backend.calls == ["createRequest"]
