# chatbot_verifier/coordinator.py
import datetime
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from chatbot_verifier import monitoring
from chatbot_verifier.errors import GenerationFailure, InvalidInput, LedgerError
from chatbot_verifier.hashing import estimate_usage, from_hex, prompt_hash, to_hex
from chatbot_verifier.ledger.client import LedgerClient
from chatbot_verifier.proof import generate_proof, proof_bytes

logger = monitoring.logger


def _now_iso() -> str:
    now = datetime.datetime.now(datetime.timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _parse_request_id(value: Any) -> int:
    # JSON clients may send ids as numeric strings
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        raise InvalidInput("requestId must be a non-negative integer")
    return value


@dataclass
class Commitment:
    """What actually reached the ledger for one query."""
    request_registered: bool = False
    answer_persisted: bool = False
    request_tx: Optional[str] = None
    answer_tx: Optional[str] = None
    errors: List[str] = field(default_factory=list)

    @property
    def verifiable(self) -> bool:
        return self.request_registered and self.answer_persisted


@dataclass
class QueryResult:
    request_id: int
    prompt_hash: bytes
    text: str
    proof: str
    model: str
    usage: Dict[str, int]
    timestamp: str
    commitment: Commitment

    @property
    def verifiable(self) -> bool:
        return self.commitment.verifiable

    def to_response(self) -> Dict[str, Any]:
        return {
            "requestId": self.request_id,
            "text": self.text,
            "proof": self.proof,
            "model": self.model,
            "usage": dict(self.usage),
            "timestamp": self.timestamp,
            "verifiable": self.verifiable,
        }


class QueryCoordinator:
    def __init__(self, ledger: LedgerClient, generator):
        self.ledger = ledger
        self.generator = generator

    def _register(self, phash: bytes, commitment: Commitment) -> int:
        try:
            receipt = self.ledger.create_request(phash)
        except LedgerError as e:
            rid = self.ledger.fallback_request_id()
            commitment.errors.append(f"createRequest: {e}")
            logger.error("Failed to create ledger request, using local request id",
                         extra={"request_id": rid, "error": str(e)})
            return rid

        if receipt.confirmed:
            commitment.request_registered = True
            commitment.request_tx = receipt.tx_hash
            logger.info("Request created on ledger",
                        extra={"request_id": receipt.request_id, "tx_hash": receipt.tx_hash})
        else:
            logger.info("Mock request id", extra={"request_id": receipt.request_id})
        return receipt.request_id

    def _submit(self, request_id: int, text: str, proof: str, commitment: Commitment) -> None:
        try:
            receipt = self.ledger.submit_answer(request_id, text, proof_bytes(proof))
        except Exception as e:
            # the caller still gets the answer; verifiable stays false
            commitment.errors.append(f"submitAnswer: {e}")
            logger.error("Failed to submit answer to ledger",
                         extra={"request_id": request_id, "error": str(e)})
            return
        commitment.answer_persisted = True
        commitment.answer_tx = receipt.tx_hash
        logger.info("Answer submitted to ledger",
                    extra={"request_id": request_id, "tx_hash": receipt.tx_hash})

    def submit_query(self, prompt: Any) -> QueryResult:
        """
        Full synchronous flow:
        1. Validate and hash the prompt
        2. Register the request (ledger, or a local id)
        3. Generate the answer
        4. Build the proof token
        5. Submit the answer (connected and registered only, best-effort)
        6. Assemble the result
        """
        if not isinstance(prompt, str) or not prompt:
            monitoring.inc_chat("invalid")
            raise InvalidInput("Prompt is required and must be a string")

        logger.info("Processing governance query", extra={"prompt_preview": prompt[:200]})
        phash = prompt_hash(prompt)
        commitment = Commitment()

        request_id = self._register(phash, commitment)

        start_gen = time.time()
        try:
            generation = self.generator.generate(prompt)
        except Exception as e:
            monitoring.inc_chat("generation_failed")
            logger.exception("Answer generation failed", extra={"request_id": request_id})
            raise GenerationFailure(f"Answer generation failed: {e}") from e
        finally:
            monitoring.observe_generation(start_gen)

        text = generation.text
        if not isinstance(text, str) or not text:
            monitoring.inc_chat("generation_failed")
            raise GenerationFailure("Answer generation returned no text")

        usage = estimate_usage(prompt, text)
        proof = generate_proof(prompt, text)
        logger.info("Answer generated",
                    extra={"request_id": request_id, "total_tokens": usage["totalTokens"]})

        # a fallback id was never registered, so there is nothing to answer on the ledger
        if commitment.request_registered and self.ledger.is_connected:
            self._submit(request_id, text, proof, commitment)

        result = QueryResult(
            request_id=request_id,
            prompt_hash=phash,
            text=text,
            proof=proof,
            model=generation.model,
            usage=usage,
            timestamp=_now_iso(),
            commitment=commitment,
        )
        monitoring.inc_chat("verifiable" if result.verifiable else "unverifiable")
        return result

    def lookup(self, request_id: Any) -> Dict[str, Any]:
        """Request and answer as recorded on the ledger. NotConnected in mock mode."""
        self.ledger.ensure_connected()
        request_id = _parse_request_id(request_id)
        req = self.ledger.get_request(request_id)
        ans = self.ledger.get_answer(request_id)
        return {
            "requestId": request_id,
            "request": {
                "promptHash": to_hex(req.prompt_hash),
                "requester": req.requester,
                "timestamp": req.timestamp,
                "answered": req.answered,
            },
            "answer": {
                "text": ans.text,
                "proof": to_hex(ans.proof),
                "submitter": ans.submitter,
                "timestamp": ans.timestamp,
                "verified": ans.verified,
            },
        }

    def verify(self, request_id: Any, signature: Any) -> Dict[str, Any]:
        """Delegate signature verification to the ledger. NotConnected in mock mode."""
        self.ledger.ensure_connected()
        request_id = _parse_request_id(request_id)
        try:
            sig = from_hex(signature)
        except ValueError as e:
            raise InvalidInput(f"signature must be a hex string: {e}") from e
        verified = self.ledger.verify_signature(request_id, sig)
        return {"requestId": request_id, "verified": bool(verified), "timestamp": _now_iso()}
