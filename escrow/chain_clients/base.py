"""
Base chain client interface.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from escrow.cache import ChainOrderCache


@dataclass
class ChainOrder:
    """Snapshot of one escrow order record as stored on-chain."""
    order_id: str
    status: int
    created_at: str = '0'
    user: str = ''
    companion: str = ''
    rule_set_id: str = '0'
    service_fee: str = '0'
    deposit: str = '0'
    platform_fee_bps: str = '0'
    finish_at: str = '0'
    dispute_deadline: str = '0'
    vault_service: str = '0'
    vault_deposit: str = '0'
    evidence_hash: str = '0x'
    dispute_status: int = 0
    resolved_by: str = ''
    resolved_at: str = '0'
    last_updated_ms: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'orderId': self.order_id,
            'status': self.status,
            'createdAt': self.created_at,
            'user': self.user,
            'companion': self.companion,
            'ruleSetId': self.rule_set_id,
            'serviceFee': self.service_fee,
            'deposit': self.deposit,
            'platformFeeBps': self.platform_fee_bps,
            'finishAt': self.finish_at,
            'disputeDeadline': self.dispute_deadline,
            'vaultService': self.vault_service,
            'vaultDeposit': self.vault_deposit,
            'evidenceHash': self.evidence_hash,
            'disputeStatus': self.dispute_status,
            'resolvedBy': self.resolved_by,
            'resolvedAt': self.resolved_at,
            'lastUpdatedMs': self.last_updated_ms,
        }


@dataclass
class ChainOrdersPage:
    """Orders decoded from one pass over the order event stream."""
    orders: List[ChainOrder] = field(default_factory=list)
    next_cursor: Optional[Dict[str, Any]] = None
    latest_event_ms: Optional[int] = None


@dataclass
class TransactionResult:
    """Result of an executed admin transaction."""
    digest: str
    effects: Optional[Dict[str, Any]] = None
    events: Optional[List[Dict[str, Any]]] = None


class ChainClient(ABC):
    """
    Abstract base class for escrow chain clients.

    Reads return ``ChainOrder`` snapshots; writes are signed by the admin key
    and return once the transaction has executed.
    """

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize the chain client.

        Args:
            config: Chain-specific configuration (RPC URL, package ids, admin key, etc.)
        """
        self.config = config
        self.order_cache = ChainOrderCache(
            self.fetch_orders,
            ttl_ms=config.get('cache_ttl_ms', 30000),
            max_age_ms=config.get('max_cache_age_ms', 300000),
        )

    @property
    @abstractmethod
    def chain_name(self) -> str:
        """Return the chain name (e.g., 'sui')."""
        pass

    @abstractmethod
    def fetch_orders_page(
        self,
        cursor: Optional[Dict[str, Any]] = None,
        order: str = 'descending',
        limit: Optional[int] = None,
    ) -> ChainOrdersPage:
        """
        Read order records from the event stream.

        Args:
            cursor: Event cursor to resume after, or None to start at an end of the stream
            order: 'ascending' (oldest first) or 'descending' (newest first)
            limit: Maximum number of events to scan

        Returns:
            ChainOrdersPage with the latest snapshot per order and the cursor to resume from
        """
        pass

    def fetch_orders(self) -> List[ChainOrder]:
        """Latest snapshot of every order within the configured event window."""
        return self.fetch_orders_page().orders

    @abstractmethod
    def cancel_order(self, order_id: str) -> TransactionResult:
        pass

    @abstractmethod
    def resolve_dispute(self, order_id: str, service_refund_bps: int,
                        deposit_slash_bps: int) -> TransactionResult:
        pass

    @abstractmethod
    def mark_completed(self, order_id: str) -> TransactionResult:
        pass

    @abstractmethod
    def finalize_no_dispute(self, order_id: str) -> TransactionResult:
        pass

    @abstractmethod
    def credit_balance(self, user_address: str, amount: str, receipt_id: str) -> TransactionResult:
        """
        Credit ``amount`` diamonds to ``user_address`` on the ledger.

        The receipt id is attached to the transaction so the ledger can refuse
        to apply it twice.
        """
        pass

    @abstractmethod
    def validate_address(self, address: str) -> bool:
        """
        Validate if the address format is correct for this chain.

        Args:
            address: Address to validate

        Returns:
            True if valid, False otherwise
        """
        pass

    @abstractmethod
    def normalize_address(self, address: str) -> str:
        pass

    def get_explorer_url(self, digest: str) -> str:
        return f"{self.config.get('explorer_url', '')}/tx/{digest}"
