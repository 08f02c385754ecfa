# chatbot_verifier/ledger/evm.py
"""
ChatbotVerifier contract backend over JSON-RPC (web3.py).

The assigned request id is decoded from the RequestCreated event in the
transaction's own receipt, so there is no window between confirmation and
log visibility.
"""

from typing import Any, Dict, List

from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception
from web3.logs import DISCARD

from chatbot_verifier import monitoring
from chatbot_verifier.errors import LedgerTransactionFailure, LedgerUnavailable
from chatbot_verifier.hashing import to_hex
from chatbot_verifier.ledger.base import AnswerRecord, LedgerBackend, LedgerReceipt, RequestRecord

logger = monitoring.logger


def _fn(name: str, inputs: List[Dict[str, str]], outputs: List[Dict[str, str]], mutability: str):
    return {"type": "function", "name": name, "inputs": inputs, "outputs": outputs,
            "stateMutability": mutability}


def _arg(name: str, typ: str, indexed: bool = None) -> Dict[str, Any]:
    a = {"name": name, "type": typ}
    if indexed is not None:
        a["indexed"] = indexed
    return a


CONTRACT_ABI = [
    _fn("createRequest", [_arg("promptHash", "bytes32")], [_arg("", "uint256")], "nonpayable"),
    _fn("submitAnswer",
        [_arg("requestId", "uint256"), _arg("answer", "string"), _arg("proof", "bytes")],
        [], "nonpayable"),
    _fn("verifySignature",
        [_arg("requestId", "uint256"), _arg("signature", "bytes")],
        [_arg("", "bool")], "view"),
    _fn("getRequest", [_arg("requestId", "uint256")],
        [_arg("", "bytes32"), _arg("", "address"), _arg("", "uint256"), _arg("", "bool")], "view"),
    _fn("getAnswer", [_arg("requestId", "uint256")],
        [_arg("", "string"), _arg("", "bytes"), _arg("", "address"), _arg("", "uint256"),
         _arg("", "bool")], "view"),
    _fn("getTotalRequests", [], [_arg("", "uint256")], "view"),
    {
        "type": "event", "name": "RequestCreated", "anonymous": False,
        "inputs": [_arg("requestId", "uint256", True), _arg("promptHash", "bytes32", True),
                   _arg("requester", "address", True)],
    },
    {
        "type": "event", "name": "AnswerSubmitted", "anonymous": False,
        "inputs": [_arg("requestId", "uint256", True), _arg("answer", "string", False),
                   _arg("proof", "bytes", False), _arg("submitter", "address", True)],
    },
]


def _event_args(args: Dict[str, Any]) -> Dict[str, Any]:
    out = {}
    for k, v in dict(args).items():
        out[k] = to_hex(v) if isinstance(v, (bytes, bytearray)) else v
    return out


class EvmContractBackend(LedgerBackend):
    def __init__(self, rpc_url: str, private_key: str, contract_address: str,
                 tx_timeout: float = 120.0, web3: Web3 = None):
        self.tx_timeout = tx_timeout
        self.w3 = web3 or Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": 30}))
        try:
            self.account = self.w3.eth.account.from_key(private_key)
            address = Web3.to_checksum_address(contract_address)
        except (ValueError, TypeError) as e:
            raise LedgerUnavailable(f"Invalid ledger credentials: {e}") from e
        self.identity = self.account.address
        self.contract = self.w3.eth.contract(address=address, abi=CONTRACT_ABI)
        self._chain_id = None
        logger.info("EVM ledger backend configured",
                    extra={"contract": address, "wallet": self.identity})

    @property
    def chain_id(self) -> int:
        if self._chain_id is None:
            self._chain_id = self._rpc("chainId", lambda: self.w3.eth.chain_id)
        return self._chain_id

    def _rpc(self, operation: str, call):
        """Run a read-only RPC call, mapping transport errors to LedgerUnavailable."""
        try:
            return call()
        except OSError as e:
            # requests' connection/timeout errors are OSError subclasses
            raise LedgerUnavailable(f"{operation}: RPC unreachable: {e}") from e
        except (ContractLogicError, Web3Exception, ValueError) as e:
            raise LedgerTransactionFailure(f"{operation}: {e}", operation=operation) from e

    def _send(self, operation: str, fn) -> Any:
        """Sign, send and wait for a confirmed receipt."""
        tx_hash = None
        try:
            nonce = self.w3.eth.get_transaction_count(self.identity, "pending")
            tx = fn.build_transaction({
                "from": self.identity,
                "nonce": nonce,
                "chainId": self.chain_id,
            })
            signed = self.account.sign_transaction(tx)
            tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
            receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.tx_timeout)
        except TimeExhausted as e:
            raise LedgerTransactionFailure(
                f"{operation}: not confirmed within {self.tx_timeout}s", operation=operation,
                tx_hash=to_hex(tx_hash) if tx_hash else None,
            ) from e
        except OSError as e:
            raise LedgerUnavailable(f"{operation}: RPC unreachable: {e}") from e
        except (ContractLogicError, Web3Exception, ValueError) as e:
            raise LedgerTransactionFailure(
                f"{operation}: rejected: {e}", operation=operation,
                tx_hash=to_hex(tx_hash) if tx_hash else None,
            ) from e

        if receipt.get("status") != 1:
            raise LedgerTransactionFailure(f"{operation}: transaction reverted",
                                           operation=operation, tx_hash=to_hex(tx_hash))
        return receipt

    def _single_event(self, operation: str, event_name: str, receipt) -> Dict[str, Any]:
        event = getattr(self.contract.events, event_name)()
        logs = event.process_receipt(receipt, errors=DISCARD)
        if len(logs) != 1:
            raise LedgerTransactionFailure(
                f"{operation}: expected one {event_name} event, got {len(logs)}",
                operation=operation, tx_hash=to_hex(receipt["transactionHash"]),
            )
        return _event_args(logs[0]["args"])

    def create_request(self, prompt_hash: bytes) -> LedgerReceipt:
        receipt = self._send("createRequest", self.contract.functions.createRequest(bytes(prompt_hash)))
        args = self._single_event("createRequest", "RequestCreated", receipt)
        return LedgerReceipt(
            operation="createRequest",
            request_id=int(args["requestId"]),
            tx_hash=to_hex(receipt["transactionHash"]),
            block_number=receipt.get("blockNumber"),
            event=args,
        )

    def submit_answer(self, request_id: int, answer: str, proof: bytes) -> LedgerReceipt:
        receipt = self._send(
            "submitAnswer",
            self.contract.functions.submitAnswer(int(request_id), answer, bytes(proof)),
        )
        args = self._single_event("submitAnswer", "AnswerSubmitted", receipt)
        return LedgerReceipt(
            operation="submitAnswer",
            request_id=int(args.get("requestId", request_id)),
            tx_hash=to_hex(receipt["transactionHash"]),
            block_number=receipt.get("blockNumber"),
            event=args,
        )

    def verify_signature(self, request_id: int, signature: bytes) -> bool:
        return bool(self._rpc(
            "verifySignature",
            self.contract.functions.verifySignature(int(request_id), bytes(signature)).call,
        ))

    def get_request(self, request_id: int) -> RequestRecord:
        prompt_hash, requester, ts, answered = self._rpc(
            "getRequest", self.contract.functions.getRequest(int(request_id)).call
        )
        return RequestRecord(int(request_id), bytes(prompt_hash), requester, int(ts), bool(answered))

    def get_answer(self, request_id: int) -> AnswerRecord:
        text, proof, submitter, ts, verified = self._rpc(
            "getAnswer", self.contract.functions.getAnswer(int(request_id)).call
        )
        return AnswerRecord(int(request_id), text, bytes(proof), submitter, int(ts), bool(verified))

    def get_total_requests(self) -> int:
        return int(self._rpc("getTotalRequests", self.contract.functions.getTotalRequests().call))
