# chatbot_verifier/errors.py
"""
Error taxonomy shared by the coordinator, the ledger client and the API layer.

Every error carries an `error_code` that the API puts into its JSON body,
the same way the response dicts carry "E_*" codes.
"""

E_INVALID_INPUT = "E_INVALID_INPUT"
E_LEDGER_UNAVAILABLE = "E_LEDGER_UNAVAILABLE"
E_LEDGER_TX_FAILED = "E_LEDGER_TX_FAILED"
E_NOT_CONNECTED = "E_NOT_CONNECTED"
E_GENERATION_FAILED = "E_GENERATION_FAILED"
E_INTERNAL = "E_INTERNAL"


class VerifierError(Exception):
    error_code = E_INTERNAL

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class InvalidInput(VerifierError):
    """Bad request body. Surfaced as a client error, never retried."""
    error_code = E_INVALID_INPUT


class GenerationFailure(VerifierError):
    """The generation collaborator raised. Fatal to the current query."""
    error_code = E_GENERATION_FAILED


class LedgerError(VerifierError):
    error_code = E_LEDGER_TX_FAILED


class LedgerUnavailable(LedgerError):
    """No credential/endpoint, or the transport to the ledger is down."""
    error_code = E_LEDGER_UNAVAILABLE


class LedgerTransactionFailure(LedgerError):
    """A single mutating call was rejected, timed out or returned a malformed receipt."""
    error_code = E_LEDGER_TX_FAILED

    def __init__(self, message: str = "", operation: str = None, tx_hash: str = None):
        super().__init__(message)
        self.operation = operation
        self.tx_hash = tx_hash


class NotConnected(LedgerError):
    """Read or verify attempted while the ledger client is in mock mode."""
    error_code = E_NOT_CONNECTED
