# chatbot_verifier/hashing.py
import random
from typing import Dict

from eth_utils import keccak

# A session's first mock/fallback id is drawn from [0, LOCAL_ID_SPACE). Ledger ids start at 1 and
# grow by one per request, so collisions are unlikely in practice but possible.
LOCAL_ID_SPACE = 1_000_000


def prompt_hash(prompt: str) -> bytes:
    """keccak-256 over the UTF-8 bytes of the prompt. No normalization."""
    return keccak(prompt.encode("utf-8"))


def to_hex(data: bytes) -> str:
    return "0x" + bytes(data).hex()


def from_hex(value: str) -> bytes:
    """Parse a hex string with or without the 0x prefix. Raises ValueError."""
    if not isinstance(value, str):
        raise ValueError("hex value must be a string")
    v = value[2:] if value[:2] in ("0x", "0X") else value
    return bytes.fromhex(v)


def local_request_id() -> int:
    """Non-cryptographic id used when the ledger did not assign one."""
    return random.randrange(LOCAL_ID_SPACE)


def estimate_usage(prompt: str, completion: str) -> Dict[str, int]:
    """
    Byte length // 4 for each side. This is an approximation kept for
    compatibility with existing clients, not a tokenizer.
    """
    p = len(prompt.encode("utf-8"))
    c = len(completion.encode("utf-8"))
    return {
        "promptTokens": p // 4,
        "completionTokens": c // 4,
        "totalTokens": (p + c) // 4,
    }
