"""
Idempotent diamond ledger credits.

A credit is keyed by a caller-supplied receipt id. The receipt row is claimed
before the chain transaction is sent, and the unique constraint on
``receipt_id`` decides which caller gets to send it.
"""
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

from django.db import IntegrityError, transaction
from loguru import logger

from escrow.chain_clients import ChainClient, get_chain_client
from escrow.errors import EscrowValidationError, InvalidCreditAmount
from escrow.models import LedgerCreditReceipt

U64_MAX = 2 ** 64 - 1
AMOUNT_RE = re.compile(r'^[0-9]+$')


@dataclass
class LedgerCreditResult:
    duplicated: bool
    receipt_id: str
    digest: Optional[str] = None
    record_id: Optional[int] = None
    status: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'duplicated': self.duplicated,
            'receiptId': self.receipt_id,
            'digest': self.digest,
            'recordId': self.record_id,
            'status': self.status,
        }


def validate_credit_amount(amount: Any) -> str:
    """Return the amount as a canonical positive integer string."""
    if isinstance(amount, bool) or isinstance(amount, float):
        raise InvalidCreditAmount('Amount must be a positive integer string')
    if isinstance(amount, int):
        amount = str(amount)
    if not isinstance(amount, str):
        raise InvalidCreditAmount('Amount must be a positive integer string')
    value = amount.strip()
    if not AMOUNT_RE.match(value):
        raise InvalidCreditAmount(f'Amount must be a positive integer string, got {amount!r}')
    number = int(value)
    if number <= 0:
        raise InvalidCreditAmount('Amount must be greater than zero')
    if number > U64_MAX:
        raise InvalidCreditAmount('Amount exceeds u64 range')
    return str(number)


def _claim_receipt(receipt_id: str, **fields) -> Optional[LedgerCreditReceipt]:
    """
    Claim the receipt for this caller. Returns None when another caller holds
    it or it was already credited.
    """
    try:
        with transaction.atomic():
            receipt = LedgerCreditReceipt(receipt_id=receipt_id, **fields)
            receipt.save(force_insert=True)
            return receipt
    except IntegrityError:
        pass

    # A failed attempt may be retried; the status guard makes the reclaim atomic.
    reclaimed = LedgerCreditReceipt.objects.filter(
        receipt_id=receipt_id,
        status=LedgerCreditReceipt.Status.FAILED,
    ).update(status=LedgerCreditReceipt.Status.PENDING, error='', **fields)
    if reclaimed:
        logger.info('Ledger receipt {} reclaimed after failed attempt', receipt_id)
        return LedgerCreditReceipt.objects.get(receipt_id=receipt_id)
    return None


def credit_ledger_with_admin(user_address: str, amount: Any, receipt_id: str,
                             order_id: Optional[str] = None, note: Optional[str] = None,
                             source: str = 'manual',
                             client: Optional[ChainClient] = None) -> LedgerCreditResult:
    amount_value = validate_credit_amount(amount)
    receipt_id = (receipt_id or '').strip()
    if not receipt_id:
        raise EscrowValidationError('receiptId is required')

    client = client or get_chain_client()
    if not user_address or not client.validate_address(user_address):
        raise EscrowValidationError(f'Invalid user address: {user_address!r}')
    user = client.normalize_address(user_address)

    receipt = _claim_receipt(
        receipt_id,
        user_address=user,
        amount=amount_value,
        order_id=order_id or None,
        note=(note or '')[:255],
        source=source or 'manual',
    )
    if receipt is None:
        existing = LedgerCreditReceipt.objects.get(receipt_id=receipt_id)
        if existing.user_address != user or existing.amount != amount_value:
            logger.warning('Ledger receipt {} reused with different credit ({} {} vs {} {})',
                           receipt_id, user, amount_value, existing.user_address, existing.amount)
        logger.info('Ledger credit {} already processed ({})', receipt_id, existing.status)
        return LedgerCreditResult(
            duplicated=True,
            receipt_id=receipt_id,
            digest=existing.digest,
            record_id=existing.pk,
            status=existing.status,
        )

    try:
        tx = client.credit_balance(user, amount_value, receipt_id)
    except Exception as exc:
        receipt.mark_failed(str(exc))
        receipt.save(update_fields=['status', 'error', 'updated_at'])
        logger.error('Ledger credit {} failed: {}', receipt_id, exc)
        raise

    receipt.mark_credited(tx.digest)
    receipt.save(update_fields=['status', 'digest', 'error', 'credited_at', 'updated_at'])
    logger.info('Ledger credit {} applied: {} diamonds to {} tx {}',
                receipt_id, amount_value, user, tx.digest)
    return LedgerCreditResult(
        duplicated=False,
        receipt_id=receipt_id,
        digest=tx.digest,
        record_id=receipt.pk,
        status=receipt.status,
    )
