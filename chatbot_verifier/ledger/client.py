# chatbot_verifier/ledger/client.py
"""
Ledger client: the single point of contact with the ledger.

LedgerClient owns the connection lifecycle. init() picks one of two variants
and never re-evaluates the choice:

  LiveLedger  - wraps a LedgerBackend; serializes mutating calls behind one lock
  MockLedger  - no durability; synthesizes request ids, refuses reads

Uninitialized -> Connected | Mock. A transport failure while connected
(LedgerUnavailable after the retry budget) demotes the client to Mock for the
rest of the process. Transaction failures (reverts, timeouts, bad receipts)
never demote.
"""

import threading
import time
from typing import Callable, Optional

from chatbot_verifier import monitoring
from chatbot_verifier.config import LedgerConfig, BACKEND_EVM, BACKEND_LOCAL, BACKEND_MOCK
from chatbot_verifier.errors import (
    LedgerError, LedgerTransactionFailure, LedgerUnavailable, NotConnected,
)
from chatbot_verifier.hashing import local_request_id, to_hex
from chatbot_verifier.ledger.base import (
    AnswerRecord, ConnectionState, Ledger, LedgerBackend, LedgerReceipt, RequestRecord,
)

logger = monitoring.logger

OP_CREATE_REQUEST = "createRequest"
OP_SUBMIT_ANSWER = "submitAnswer"


class LocalIdIssuer:
    """
    Request ids for requests the ledger did not register. The first id is
    drawn at random from the local space; later ids count up from it, so no
    id is reissued within one client session.
    """

    def __init__(self, start: Optional[int] = None):
        self._next = local_request_id() if start is None else int(start)
        self._lock = threading.Lock()

    def issue(self) -> int:
        with self._lock:
            rid = self._next
            self._next += 1
            return rid


class LiveLedger(Ledger):
    state = ConnectionState.CONNECTED

    def __init__(self, backend: LedgerBackend, max_retries: int = 0,
                 retry_backoff: float = 0.5, sleep: Callable[[float], None] = time.sleep):
        self.backend = backend
        self.max_retries = max(0, int(max_retries))
        self.retry_backoff = retry_backoff
        self._sleep = sleep
        # one in-flight transaction per signing identity
        self._tx_lock = threading.Lock()

    @property
    def identity(self) -> str:
        return self.backend.identity

    def _with_retries(self, operation: str, call: Callable):
        attempt = 0
        while True:
            try:
                return call()
            except LedgerUnavailable as e:
                if attempt >= self.max_retries:
                    raise
                delay = self.retry_backoff * (2 ** attempt)
                logger.warning(
                    "Ledger unreachable, retrying",
                    extra={"operation": operation, "attempt": attempt + 1, "delay": delay, "error": str(e)},
                )
                self._sleep(delay)
                attempt += 1

    def _transact(self, operation: str, call: Callable[[], LedgerReceipt]) -> LedgerReceipt:
        with self._tx_lock:
            start = time.time()
            try:
                receipt = self._with_retries(operation, call)
            except LedgerTransactionFailure as e:
                monitoring.observe_ledger_tx(start, operation, "failed")
                if e.operation is None:
                    e.operation = operation
                raise
            except LedgerUnavailable:
                monitoring.observe_ledger_tx(start, operation, "unavailable")
                raise
            except LedgerError:
                monitoring.observe_ledger_tx(start, operation, "failed")
                raise
            except Exception as e:
                monitoring.observe_ledger_tx(start, operation, "failed")
                raise LedgerTransactionFailure(f"{operation} failed: {e}", operation=operation) from e

            if not isinstance(receipt, LedgerReceipt) or not isinstance(receipt.request_id, int) \
                    or isinstance(receipt.request_id, bool) or receipt.request_id < 0:
                monitoring.observe_ledger_tx(start, operation, "malformed")
                raise LedgerTransactionFailure(
                    f"{operation}: malformed receipt", operation=operation,
                    tx_hash=getattr(receipt, "tx_hash", None),
                )
            monitoring.observe_ledger_tx(start, operation, "confirmed")
            return receipt

    def create_request(self, prompt_hash: bytes) -> LedgerReceipt:
        return self._transact(OP_CREATE_REQUEST, lambda: self.backend.create_request(prompt_hash))

    def submit_answer(self, request_id: int, answer: str, proof: bytes) -> LedgerReceipt:
        return self._transact(
            OP_SUBMIT_ANSWER, lambda: self.backend.submit_answer(request_id, answer, proof)
        )

    # reads are not serialized
    def verify_signature(self, request_id: int, signature: bytes) -> bool:
        return bool(self._with_retries(
            "verifySignature", lambda: self.backend.verify_signature(request_id, signature)
        ))

    def get_request(self, request_id: int) -> RequestRecord:
        return self._with_retries("getRequest", lambda: self.backend.get_request(request_id))

    def get_answer(self, request_id: int) -> AnswerRecord:
        return self._with_retries("getAnswer", lambda: self.backend.get_answer(request_id))

    def get_total_requests(self) -> int:
        return int(self._with_retries("getTotalRequests", self.backend.get_total_requests))

    def close(self) -> None:
        self.backend.close()


class MockLedger(Ledger):
    state = ConnectionState.MOCK

    def __init__(self, ids: Optional[LocalIdIssuer] = None, reason: str = ""):
        self.ids = ids or LocalIdIssuer()
        self.reason = reason

    def create_request(self, prompt_hash: bytes) -> LedgerReceipt:
        rid = self.ids.issue()
        return LedgerReceipt(
            operation=OP_CREATE_REQUEST,
            request_id=rid,
            confirmed=False,
            event={"requestId": rid, "promptHash": to_hex(prompt_hash), "requester": None},
        )

    def submit_answer(self, request_id: int, answer: str, proof: bytes) -> LedgerReceipt:
        raise NotConnected(f"Ledger not connected; answer for request {request_id} was not persisted")

    def verify_signature(self, request_id: int, signature: bytes) -> bool:
        raise NotConnected("Ledger not connected")

    def get_request(self, request_id: int) -> RequestRecord:
        raise NotConnected("Ledger not connected")

    def get_answer(self, request_id: int) -> AnswerRecord:
        raise NotConnected("Ledger not connected")

    def get_total_requests(self) -> int:
        raise NotConnected("Ledger not connected")


def build_backend(config: LedgerConfig) -> LedgerBackend:
    """
    Construct the backend named by config.backend.
    Raises LedgerUnavailable when no ledger is configured.
    """
    backend = (config.backend or BACKEND_MOCK).lower()
    if backend == BACKEND_MOCK:
        raise LedgerUnavailable("Ledger disabled (LEDGER_BACKEND=mock or no PRIVATE_KEY)")
    if backend == BACKEND_EVM:
        if not config.private_key:
            raise LedgerUnavailable("No private key configured")
        if not config.contract_address:
            raise LedgerUnavailable("No contract address configured")
        # web3 is heavy; import only when the evm backend is selected
        from chatbot_verifier.ledger.evm import EvmContractBackend
        return EvmContractBackend(
            rpc_url=config.rpc_url,
            private_key=config.private_key,
            contract_address=config.contract_address,
            tx_timeout=config.tx_timeout,
        )
    if backend == BACKEND_LOCAL:
        from chatbot_verifier.ledger.local import LocalLedgerBackend
        return LocalLedgerBackend(config.database_url, identity=config.identity)
    raise LedgerUnavailable(f"Unknown ledger backend: {config.backend}")


class LedgerClient:
    """Process-scoped ledger handle injected into the coordinator."""

    def __init__(self, config: Optional[LedgerConfig] = None,
                 backend_factory: Callable[[LedgerConfig], LedgerBackend] = build_backend,
                 sleep: Callable[[float], None] = time.sleep):
        self.config = config or LedgerConfig.from_env()
        self._backend_factory = backend_factory
        self._sleep = sleep
        self._ids = LocalIdIssuer()
        self._impl: Optional[Ledger] = None
        self._state = ConnectionState.UNINITIALIZED
        self._state_lock = threading.Lock()
        self._closed = False
        self.mock_reason: Optional[str] = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def identity(self) -> Optional[str]:
        if isinstance(self._impl, LiveLedger):
            return self._impl.identity
        return None

    def init(self) -> ConnectionState:
        with self._state_lock:
            if self._state is not ConnectionState.UNINITIALIZED:
                return self._state
            try:
                backend = self._backend_factory(self.config)
            except LedgerUnavailable as e:
                logger.info("No ledger configured, running in mock mode", extra={"reason": str(e)})
                self._enter_mock(str(e))
                return self._state
            except Exception as e:
                logger.exception("Failed to initialize ledger connection, running in mock mode")
                self._enter_mock(f"init failed: {e}")
                return self._state

            live = LiveLedger(backend, max_retries=self.config.max_retries,
                              retry_backoff=self.config.retry_backoff, sleep=self._sleep)
            try:
                total = live.get_total_requests()
            except Exception as e:
                logger.exception("Ledger connectivity check failed, running in mock mode")
                try:
                    backend.close()
                except Exception:
                    logger.warning("Error closing ledger backend", exc_info=True)
                self._enter_mock(f"connectivity check failed: {e}")
                return self._state

            self._impl = live
            self._state = ConnectionState.CONNECTED
            monitoring.set_ledger_connected(True)
            logger.info(
                "Ledger connection initialized",
                extra={"backend": self.config.backend, "identity": live.identity, "total_requests": total},
            )
            return self._state

    def _enter_mock(self, reason: str) -> None:
        self._impl = MockLedger(self._ids, reason=reason)
        self._state = ConnectionState.MOCK
        self.mock_reason = reason
        monitoring.set_ledger_connected(False)

    def _demote(self, reason: str) -> None:
        with self._state_lock:
            if self._state is ConnectionState.MOCK:
                return
            old = self._impl
            self._enter_mock(reason)
        monitoring.inc_ledger_demotion("unavailable")
        logger.error("Ledger unreachable, demoted to mock mode for the rest of the process",
                     extra={"reason": reason})
        try:
            old.close()
        except Exception:
            logger.warning("Error closing ledger backend", exc_info=True)

    def _ledger(self) -> Ledger:
        if self._closed:
            raise NotConnected("Ledger client closed")
        if self._state is ConnectionState.UNINITIALIZED:
            self.init()
        return self._impl

    def ensure_connected(self) -> None:
        """Raise NotConnected unless reads can reach a live ledger."""
        self._ledger()
        if not self.is_connected:
            raise NotConnected("Ledger not connected")

    def _call(self, name: str, *args):
        impl = self._ledger()
        try:
            return getattr(impl, name)(*args)
        except LedgerUnavailable as e:
            self._demote(str(e))
            raise

    def create_request(self, prompt_hash: bytes) -> LedgerReceipt:
        return self._call("create_request", prompt_hash)

    def submit_answer(self, request_id: int, answer: str, proof: bytes) -> LedgerReceipt:
        return self._call("submit_answer", request_id, answer, proof)

    def verify_signature(self, request_id: int, signature: bytes) -> bool:
        return self._call("verify_signature", request_id, signature)

    def get_request(self, request_id: int) -> RequestRecord:
        return self._call("get_request", request_id)

    def get_answer(self, request_id: int) -> AnswerRecord:
        return self._call("get_answer", request_id)

    def get_total_requests(self) -> int:
        return self._call("get_total_requests")

    def fallback_request_id(self) -> int:
        """Local id for a request the ledger did not register."""
        return self._ids.issue()

    def close(self) -> None:
        with self._state_lock:
            if self._closed:
                return
            self._closed = True
            impl = self._impl
        if impl is not None:
            impl.close()
        logger.info("Ledger client closed")
