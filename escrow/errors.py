"""
Exception taxonomy for the escrow back-office.
"""
from typing import List, Optional


class EscrowError(Exception):
    """Base error for chain order operations."""
    pass


class EscrowValidationError(EscrowError):
    """Input rejected before any chain or database side effect."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidCreditAmount(EscrowValidationError):
    pass


class IllegalTransitionError(EscrowValidationError):
    """The chain order is not in a status that admits the requested action."""

    def __init__(self, message: str, current_status: int, allowed_statuses: List[int]):
        super().__init__(message)
        self.current_status = current_status
        self.allowed_statuses = list(allowed_statuses)


class ChainOrderNotFound(EscrowError):

    TROUBLESHOOTING = [
        'Confirm the order was created on-chain and the transaction succeeded.',
        'Check that SUI_NETWORK and SUI_PACKAGE_ID match the deployment that created it.',
        'Raise ADMIN_CHAIN_EVENT_LIMIT if the order is older than the scanned event window.',
        'Retry with refresh=true to bypass the chain order cache.',
    ]

    def __init__(self, order_id: str):
        super().__init__(f'Chain order {order_id} not found')
        self.order_id = order_id


class ChainConfigurationError(EscrowError):
    """Required chain settings are missing or malformed."""
    pass


class ChainRpcError(EscrowError):
    """A fullnode call failed."""

    RETRYABLE_PATTERNS = (
        '429',
        'too many requests',
        'timeout',
        'timed out',
        'socket',
        'connection',
        'temporarily unavailable',
        'already locked',
        'wrong epoch',
    )

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.code = code

    @property
    def retryable(self) -> bool:
        message = self.message.lower()
        return self.code == 429 or any(p in message for p in self.RETRYABLE_PATTERNS)


class ChainTransactionError(ChainRpcError):
    """The transaction executed but its effects report failure."""

    def __init__(self, message: str, digest: Optional[str] = None):
        super().__init__(message)
        self.digest = digest
