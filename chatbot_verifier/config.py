# chatbot_verifier/config.py
"""
Ledger configuration.

Env vars:
- LEDGER_BACKEND           evm | local | mock (default: evm if PRIVATE_KEY is set, else mock)
- SEPOLIA_RPC_URL          JSON-RPC endpoint (default: 0G testnet)
- PRIVATE_KEY              signing key for the evm backend
- CHATBOT_VERIFIER_ADDRESS deployed ChatbotVerifier contract
- LEDGER_TX_TIMEOUT        seconds to wait for a receipt (default: 120)
- LEDGER_MAX_RETRIES       extra attempts on transport errors (default: 0)
- LEDGER_RETRY_BACKOFF     base backoff in seconds, doubled per attempt (default: 0.5)
- LEDGER_DATABASE_URL      local backend store (default: sqlite:///./ledger.db)
- LEDGER_IDENTITY          requester/submitter name used by the local backend
"""

import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_RPC_URL = "https://evmrpc-testnet.0g.ai"
DEFAULT_CONTRACT_ADDRESS = "0x0B1eB634c9F6Cf22B831ca5B7B66E8CBeD3BfC78"

BACKEND_EVM = "evm"
BACKEND_LOCAL = "local"
BACKEND_MOCK = "mock"


def _env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(name)
    if v is None:
        return default
    v = v.strip()
    return v if v else default


@dataclass
class LedgerConfig:
    backend: str = BACKEND_MOCK
    rpc_url: str = DEFAULT_RPC_URL
    private_key: Optional[str] = None
    contract_address: Optional[str] = DEFAULT_CONTRACT_ADDRESS
    tx_timeout: float = 120.0
    max_retries: int = 0
    retry_backoff: float = 0.5
    database_url: str = "sqlite:///./ledger.db"
    identity: str = "local-operator"

    @classmethod
    def from_env(cls) -> "LedgerConfig":
        private_key = _env_str("PRIVATE_KEY")
        backend = (_env_str("LEDGER_BACKEND") or "").lower()
        if not backend:
            backend = BACKEND_EVM if private_key else BACKEND_MOCK
        return cls(
            backend=backend,
            rpc_url=_env_str("SEPOLIA_RPC_URL", DEFAULT_RPC_URL),
            private_key=private_key,
            contract_address=_env_str("CHATBOT_VERIFIER_ADDRESS", DEFAULT_CONTRACT_ADDRESS),
            tx_timeout=float(_env_str("LEDGER_TX_TIMEOUT", "120")),
            max_retries=int(_env_str("LEDGER_MAX_RETRIES", "0")),
            retry_backoff=float(_env_str("LEDGER_RETRY_BACKOFF", "0.5")),
            database_url=_env_str("LEDGER_DATABASE_URL", "sqlite:///./ledger.db"),
            identity=_env_str("LEDGER_IDENTITY", "local-operator"),
        )
