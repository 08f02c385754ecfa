# chatbot_verifier/ledger/local.py
"""
Local ledger backend: an append-only SQL emulation of the ChatbotVerifier
contract, for running the service without a chain.

Contract semantics reproduced here:
- request ids start at 1 and grow by one, never reused
- answering an unknown or already-answered request is rejected
- reading an unknown id returns zero values instead of failing
- RequestCreated / AnswerSubmitted events are appended to an events table
"""

import contextlib
import json
import time
from typing import Any, Dict, List, Optional

from eth_utils import keccak
from sqlalchemy import (
    create_engine, Boolean, Column, ForeignKey, Integer, LargeBinary, String, Text,
)
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool

from chatbot_verifier.errors import LedgerTransactionFailure, LedgerUnavailable
from chatbot_verifier.hashing import to_hex
from chatbot_verifier.ledger.base import AnswerRecord, LedgerBackend, LedgerReceipt, RequestRecord

Base = declarative_base()

ZERO_IDENTITY = "0x" + "00" * 20
EVENT_REQUEST_CREATED = "RequestCreated"
EVENT_ANSWER_SUBMITTED = "AnswerSubmitted"


class LedgerRequestRow(Base):
    __tablename__ = "ledger_requests"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    prompt_hash = Column(LargeBinary(32), nullable=False)
    requester = Column(String(128), nullable=False)
    timestamp = Column(Integer, nullable=False)
    answered = Column(Boolean, nullable=False, default=False)


class LedgerAnswerRow(Base):
    __tablename__ = "ledger_answers"

    request_id = Column(Integer, ForeignKey("ledger_requests.id"), primary_key=True)
    text = Column(Text, nullable=False)
    proof = Column(LargeBinary, nullable=False)
    submitter = Column(String(128), nullable=False)
    timestamp = Column(Integer, nullable=False)
    verified = Column(Boolean, nullable=False, default=False)


class LedgerEventRow(Base):
    __tablename__ = "ledger_events"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(64), nullable=False)
    request_id = Column(Integer, index=True, nullable=False)
    tx_hash = Column(String(66), nullable=False)
    payload_json = Column(Text, nullable=False)


def _make_engine(url: str):
    if url.startswith("sqlite"):
        kwargs: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
            # one shared connection so every session sees the same in-memory db
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)
    return create_engine(url)


class LocalLedgerBackend(LedgerBackend):
    def __init__(self, database_url: str, identity: str = "local-operator"):
        self.identity = identity
        self.engine = _make_engine(database_url)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        try:
            Base.metadata.create_all(bind=self.engine)
        except OperationalError as e:
            raise LedgerUnavailable(f"Local ledger store unavailable: {e}") from e

    @contextlib.contextmanager
    def _session(self, operation: str):
        db: Session = self.SessionLocal()
        try:
            yield db
        except OperationalError as e:
            db.rollback()
            raise LedgerUnavailable(f"{operation}: store unavailable: {e}") from e
        except SQLAlchemyError as e:
            db.rollback()
            raise LedgerTransactionFailure(f"{operation}: {e}", operation=operation) from e
        finally:
            db.close()

    def _tx_hash(self, operation: str, request_id: int) -> str:
        seed = f"{operation}:{request_id}:{self.identity}:{time.time_ns()}".encode("utf-8")
        return to_hex(keccak(seed))

    def _emit(self, db: Session, name: str, request_id: int, tx_hash: str,
              payload: Dict[str, Any]) -> LedgerEventRow:
        ev = LedgerEventRow(name=name, request_id=request_id, tx_hash=tx_hash,
                            payload_json=json.dumps(payload))
        db.add(ev)
        db.flush()
        return ev

    def create_request(self, prompt_hash: bytes) -> LedgerReceipt:
        if len(prompt_hash) != 32:
            raise LedgerTransactionFailure("promptHash must be 32 bytes", operation="createRequest")
        with self._session("createRequest") as db:
            row = LedgerRequestRow(prompt_hash=bytes(prompt_hash), requester=self.identity,
                                   timestamp=int(time.time()), answered=False)
            db.add(row)
            db.flush()
            tx_hash = self._tx_hash("createRequest", row.id)
            event = {"requestId": row.id, "promptHash": to_hex(prompt_hash), "requester": self.identity}
            ev = self._emit(db, EVENT_REQUEST_CREATED, row.id, tx_hash, event)
            db.commit()
            return LedgerReceipt(operation="createRequest", request_id=row.id,
                                 tx_hash=tx_hash, block_number=ev.id, event=event)

    def submit_answer(self, request_id: int, answer: str, proof: bytes) -> LedgerReceipt:
        with self._session("submitAnswer") as db:
            req = db.get(LedgerRequestRow, request_id)
            if req is None:
                raise LedgerTransactionFailure(f"Request {request_id} does not exist",
                                               operation="submitAnswer")
            if req.answered:
                raise LedgerTransactionFailure(f"Request {request_id} already answered",
                                               operation="submitAnswer")
            proof = bytes(proof)
            db.add(LedgerAnswerRow(request_id=request_id, text=answer, proof=proof,
                                   submitter=self.identity, timestamp=int(time.time()),
                                   verified=len(proof) > 0))
            req.answered = True
            tx_hash = self._tx_hash("submitAnswer", request_id)
            event = {"requestId": request_id, "answer": answer, "proof": to_hex(proof),
                     "submitter": self.identity}
            ev = self._emit(db, EVENT_ANSWER_SUBMITTED, request_id, tx_hash, event)
            db.commit()
            return LedgerReceipt(operation="submitAnswer", request_id=request_id,
                                 tx_hash=tx_hash, block_number=ev.id, event=event)

    def verify_signature(self, request_id: int, signature: bytes) -> bool:
        """True when the request is answered and the signature matches the committed proof."""
        with self._session("verifySignature") as db:
            ans = db.get(LedgerAnswerRow, request_id)
            if ans is None or not signature:
                return False
            return bytes(ans.proof) == bytes(signature)

    def get_request(self, request_id: int) -> RequestRecord:
        with self._session("getRequest") as db:
            row = db.get(LedgerRequestRow, request_id)
            if row is None:
                return RequestRecord(request_id, b"\x00" * 32, ZERO_IDENTITY, 0, False)
            return RequestRecord(row.id, bytes(row.prompt_hash), row.requester,
                                 row.timestamp, bool(row.answered))

    def get_answer(self, request_id: int) -> AnswerRecord:
        with self._session("getAnswer") as db:
            row = db.get(LedgerAnswerRow, request_id)
            if row is None:
                return AnswerRecord(request_id, "", b"", ZERO_IDENTITY, 0, False)
            return AnswerRecord(row.request_id, row.text, bytes(row.proof), row.submitter,
                                row.timestamp, bool(row.verified))

    def get_total_requests(self) -> int:
        with self._session("getTotalRequests") as db:
            return db.query(LedgerRequestRow).count()

    def events(self, request_id: Optional[int] = None) -> List[Dict[str, Any]]:
        """Emitted events in order, optionally for one request."""
        with self._session("events") as db:
            q = db.query(LedgerEventRow).order_by(LedgerEventRow.id)
            if request_id is not None:
                q = q.filter(LedgerEventRow.request_id == request_id)
            return [
                {"name": ev.name, "requestId": ev.request_id, "txHash": ev.tx_hash,
                 "args": json.loads(ev.payload_json)}
                for ev in q.all()
            ]

    def close(self) -> None:
        self.engine.dispose()
