class RelayerError(Exception):
    """Base class for every error raised by the relayer."""


class ConfigError(RelayerError):
    """Required configuration is missing or invalid. Fatal at startup."""


class CorruptStateError(RelayerError):
    """The persisted state file exists but cannot be parsed."""

    def __init__(self, path: str, reason: str):
        self.path = path
        super().__init__(f"State file '{path}' is corrupt: {reason}")


class ChainError(RelayerError):
    """An RPC call against a chain failed. Retryable."""


class TransactionReverted(RelayerError):
    """A submitted transaction was included with a failed status."""

    def __init__(self, tx_hash: str):
        self.tx_hash = tx_hash
        super().__init__(f"Transaction {tx_hash} reverted")


class NonceAlreadyProcessed(RelayerError):
    """
    The receiving contract rejected a submission because its effect was
    already applied. Callers treat this as success: the event must be
    marked processed and never resubmitted.
    """
