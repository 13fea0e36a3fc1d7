"""
Minimal BCS decoding for Dubhe store records.

Store events carry each key and value field as its own BCS-encoded byte list,
so only scalar decoders are needed here.
"""
from typing import List, Optional, Sequence, Tuple

from hexbytes import HexBytes

from escrow.chain_clients.base import ChainOrder

SUI_ADDRESS_LENGTH = 32
ORDER_VALUE_FIELDS = 16


class BcsDecodeError(ValueError):
    pass


def _as_bytes(data: Sequence[int]) -> bytes:
    try:
        return bytes(data)
    except (TypeError, ValueError) as exc:
        raise BcsDecodeError(f'Invalid byte list: {exc}') from exc


def decode_u8(data: Sequence[int]) -> int:
    raw = _as_bytes(data)
    if len(raw) < 1:
        raise BcsDecodeError('u8 requires 1 byte')
    return raw[0]


def decode_u64(data: Sequence[int]) -> str:
    raw = _as_bytes(data)
    if len(raw) < 8:
        raise BcsDecodeError(f'u64 requires 8 bytes, got {len(raw)}')
    return str(int.from_bytes(raw[:8], 'little'))


def normalize_sui_address(value: str) -> str:
    """Lowercase 0x-prefixed address left-padded to 32 bytes."""
    raw = HexBytes(value.strip())
    if len(raw) > SUI_ADDRESS_LENGTH:
        raise ValueError(f'Address longer than {SUI_ADDRESS_LENGTH} bytes: {value}')
    return '0x' + bytes(raw).rjust(SUI_ADDRESS_LENGTH, b'\x00').hex()


def decode_address(data: Sequence[int]) -> str:
    raw = _as_bytes(data)
    if len(raw) < SUI_ADDRESS_LENGTH:
        raise BcsDecodeError(f'address requires {SUI_ADDRESS_LENGTH} bytes, got {len(raw)}')
    return '0x' + raw[:SUI_ADDRESS_LENGTH].hex()


def _read_uleb128(raw: bytes) -> Tuple[int, int]:
    value = 0
    shift = 0
    for index, byte in enumerate(raw):
        value |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return value, index + 1
        shift += 7
        if shift > 28:
            break
    raise BcsDecodeError('Malformed ULEB128 length')


def decode_vec_u8(data: Sequence[int]) -> str:
    raw = _as_bytes(data)
    length, offset = _read_uleb128(raw)
    body = raw[offset:offset + length]
    if len(body) != length:
        raise BcsDecodeError(f'vector<u8> declares {length} bytes, got {len(body)}')
    return '0x' + body.hex()


def decode_order_from_tuple(key_tuple: List[List[int]],
                            value_tuple: List[List[int]]) -> Optional[ChainOrder]:
    """Decode an ``order`` table record. Returns None for truncated records."""
    if not key_tuple or len(value_tuple or []) < ORDER_VALUE_FIELDS:
        return None
    return ChainOrder(
        order_id=decode_u64(key_tuple[0]),
        user=decode_address(value_tuple[0]),
        companion=decode_address(value_tuple[1]),
        rule_set_id=decode_u64(value_tuple[2]),
        service_fee=decode_u64(value_tuple[3]),
        deposit=decode_u64(value_tuple[4]),
        platform_fee_bps=decode_u64(value_tuple[5]),
        status=decode_u8(value_tuple[6]),
        created_at=decode_u64(value_tuple[7]),
        finish_at=decode_u64(value_tuple[8]),
        dispute_deadline=decode_u64(value_tuple[9]),
        vault_service=decode_u64(value_tuple[10]),
        vault_deposit=decode_u64(value_tuple[11]),
        evidence_hash=decode_vec_u8(value_tuple[12]),
        dispute_status=decode_u8(value_tuple[13]),
        resolved_by=decode_address(value_tuple[14]),
        resolved_at=decode_u64(value_tuple[15]),
    )
