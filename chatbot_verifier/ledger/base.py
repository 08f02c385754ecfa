# chatbot_verifier/ledger/base.py
import abc
import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


class ConnectionState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    CONNECTED = "connected"
    MOCK = "mock"


@dataclass
class RequestRecord:
    request_id: int
    prompt_hash: bytes
    requester: str
    timestamp: int
    answered: bool


@dataclass
class AnswerRecord:
    request_id: int
    text: str
    proof: bytes
    submitter: str
    timestamp: int
    verified: bool


@dataclass
class LedgerReceipt:
    """Confirmation of a mutating call. `event` holds the decoded event args."""
    operation: str
    request_id: int
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None
    # False for ids synthesized locally in mock mode
    confirmed: bool = True
    event: Dict[str, Any] = field(default_factory=dict)


class LedgerBackend(abc.ABC):
    """
    Wire-level access to one ledger (a contract on an EVM chain, a local store...).

    Backends raise LedgerUnavailable for transport problems and
    LedgerTransactionFailure for rejected/timed-out/malformed transactions.
    They do no locking and no retrying; LiveLedger does both.
    """

    identity: str = ""

    @abc.abstractmethod
    def create_request(self, prompt_hash: bytes) -> LedgerReceipt:
        ...

    @abc.abstractmethod
    def submit_answer(self, request_id: int, answer: str, proof: bytes) -> LedgerReceipt:
        ...

    @abc.abstractmethod
    def verify_signature(self, request_id: int, signature: bytes) -> bool:
        ...

    @abc.abstractmethod
    def get_request(self, request_id: int) -> RequestRecord:
        ...

    @abc.abstractmethod
    def get_answer(self, request_id: int) -> AnswerRecord:
        ...

    @abc.abstractmethod
    def get_total_requests(self) -> int:
        ...

    def close(self) -> None:
        pass


class Ledger(abc.ABC):
    """Operation set shared by LiveLedger and MockLedger."""

    state: ConnectionState

    @abc.abstractmethod
    def create_request(self, prompt_hash: bytes) -> LedgerReceipt:
        ...

    @abc.abstractmethod
    def submit_answer(self, request_id: int, answer: str, proof: bytes) -> LedgerReceipt:
        ...

    @abc.abstractmethod
    def verify_signature(self, request_id: int, signature: bytes) -> bool:
        ...

    @abc.abstractmethod
    def get_request(self, request_id: int) -> RequestRecord:
        ...

    @abc.abstractmethod
    def get_answer(self, request_id: int) -> AnswerRecord:
        ...

    @abc.abstractmethod
    def get_total_requests(self) -> int:
        ...

    def close(self) -> None:
        pass
