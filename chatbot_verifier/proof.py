# chatbot_verifier/proof.py
"""
Proof tokens accompanying a generated answer.

A token is PROOF_PREFIX followed by the hex SHA-256 of
prompt + answer + generation time (milliseconds). The timestamp makes every
token unique, so a token can't be re-derived from content alone.

verify_proof() is a shape check only: prefix and total length. It does not
recompute the digest and is not bound to the ledger entry that records the
token, so it proves nothing about provenance.

The prefix is "0gproof-" (8 characters, 72-character tokens). Tokens minted
with the hyphenated "0g-proof-" prefix are 73 characters long and are rejected
by verify_proof().
"""
import hashlib
import time
from typing import Optional

PROOF_PREFIX = "0gproof-"
DIGEST_HEX_LENGTH = 64
PROOF_LENGTH = len(PROOF_PREFIX) + DIGEST_HEX_LENGTH


def _now_ms() -> int:
    return int(time.time() * 1000)


def generate_proof(prompt: str, answer: str, timestamp_ms: Optional[int] = None) -> str:
    ts = _now_ms() if timestamp_ms is None else timestamp_ms
    data = prompt + answer + str(ts)
    digest = hashlib.sha256(data.encode("utf-8")).hexdigest()
    return PROOF_PREFIX + digest


def verify_proof(token: str, prompt: str, answer: str) -> bool:
    # prompt/answer are accepted for interface stability; they are not checked
    if not isinstance(token, str):
        return False
    return token.startswith(PROOF_PREFIX) and len(token) == PROOF_LENGTH


def proof_bytes(token: str) -> bytes:
    """Bytes committed to the ledger for a token."""
    return token.encode("utf-8")
