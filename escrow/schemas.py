"""
Request bodies and query parameters accepted by the admin API.
"""
from typing import Any, Literal, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, StrictInt, ValidationError, field_validator

from escrow.errors import EscrowValidationError

SchemaT = TypeVar('SchemaT', bound=BaseModel)


class RequestSchema(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra='ignore')


class CancelOrderRequest(RequestSchema):
    order_id: str = Field(alias='orderId', min_length=1)
    reason: Optional[str] = Field(default=None, max_length=255)

    @field_validator('order_id', mode='before')
    @classmethod
    def _coerce_order_id(cls, value: Any) -> Any:
        return str(value).strip() if isinstance(value, (int, str)) else value


class ResolveDisputeRequest(CancelOrderRequest):
    service_refund_bps: StrictInt = Field(alias='serviceRefundBps', ge=0, le=10000)
    deposit_slash_bps: StrictInt = Field(alias='depositSlashBps', ge=0, le=10000)


class AutoCancelRequest(RequestSchema):
    dry_run: bool = Field(default=False, alias='dryRun')
    limit: Optional[int] = Field(default=None, gt=0)


class AutoFinalizeRequest(RequestSchema):
    dry_run: bool = Field(default=False, alias='dryRun')
    complete_limit: Optional[int] = Field(default=None, alias='completeLimit', gt=0)
    finalize_limit: Optional[int] = Field(default=None, alias='finalizeLimit', gt=0)


class CleanupMissingRequest(RequestSchema):
    dry_run: bool = Field(default=False, alias='dryRun')
    max_age_hours: float = Field(default=0, alias='maxAgeHours', ge=0)
    max_delete: int = Field(default=500, alias='maxDelete', gt=0, le=5000)
    chain_only: bool = Field(default=True, alias='chainOnly')


class ReconcileRepairRequest(RequestSchema):
    action: Literal['sync_missing', 'fix_status', 'sync_all']


class LedgerCreditRequest(RequestSchema):
    user: str = Field(min_length=1)
    # Validated as a positive integer string by the ledger; never coerced here.
    amount: Union[StrictInt, str]
    receipt_id: str = Field(alias='receiptId', min_length=1, max_length=128)
    order_id: Optional[str] = Field(default=None, alias='orderId', max_length=64)
    note: Optional[str] = Field(default=None, max_length=255)
    source: str = Field(default='manual', max_length=32)


class CursorQuery(RequestSchema):
    cursor: Optional[str] = None
    page_size: int = Field(default=20, alias='pageSize', ge=1, le=200)
    q: Optional[str] = Field(default=None, max_length=128)
    stage: Optional[str] = None
    source: Optional[str] = None
    action: Optional[str] = None


def parse_request(schema: Type[SchemaT], data: Any) -> SchemaT:
    """Validate ``data`` against ``schema``; the first error becomes the rejection reason."""
    if hasattr(data, 'dict') and not isinstance(data, dict):
        data = data.dict()
    try:
        return schema.model_validate(data or {})
    except ValidationError as exc:
        error = exc.errors()[0]
        location = '.'.join(str(part) for part in error.get('loc', ())) or 'body'
        raise EscrowValidationError(f"{location}: {error.get('msg', 'invalid value')}") from exc
