import base64
import json
import unittest

from django.test import TestCase

from escrow.cursors import (
    Cursor,
    clamp_page_size,
    decode_cursor_param,
    encode_cursor_param,
    paginate_by_cursor,
    query_audit_logs_cursor,
    query_orders_cursor,
)
from escrow.models import AuditLog, Order


class CursorCodecTests(unittest.TestCase):
    def test_round_trip(self):
        cursor = Cursor(created_at=1700000000123, id='42')
        self.assertEqual(decode_cursor_param(encode_cursor_param(cursor)), cursor)

    def test_encoding_is_unpadded_base64url(self):
        encoded = encode_cursor_param(Cursor(created_at=1, id='a?>'))
        self.assertNotIn('=', encoded)
        self.assertNotIn('+', encoded)
        self.assertNotIn('/', encoded)

    def test_malformed_values_decode_to_none(self):
        def b64(value):
            return base64.urlsafe_b64encode(value.encode()).decode().rstrip('=')

        for value in (
            None,
            '',
            '!!!',
            b64('not json'),
            b64('[1, 2]'),
            b64(json.dumps({'createdAt': '12', 'id': 'x'})),
            b64(json.dumps({'createdAt': 1.5, 'id': 'x'})),
            b64(json.dumps({'createdAt': True, 'id': 'x'})),
            b64(json.dumps({'createdAt': 12, 'id': ''})),
            b64(json.dumps({'createdAt': 12})),
            b64('[' * 300),
            b64('[' * 100000),
            b64(json.dumps({'createdAt': 12, 'id': 'x' * 600})),
        ):
            self.assertIsNone(decode_cursor_param(value), value)

    def test_page_size_is_clamped(self):
        self.assertEqual(clamp_page_size(0), 1)
        self.assertEqual(clamp_page_size(500), 200)
        self.assertEqual(clamp_page_size('15'), 15)
        self.assertEqual(clamp_page_size('many'), 20)


class CursorPaginationTests(TestCase):
    def setUp(self) -> None:
        # Two rows share a timestamp so the id tiebreak is exercised.
        for order_id, created_at in (('1', 100), ('2', 200), ('3', 200), ('4', 300), ('5', 400)):
            Order.objects.create(id=order_id, created_at=created_at)

    def test_pages_cover_every_row_once_in_order(self):
        seen = []
        cursor = None
        while True:
            rows, next_cursor = paginate_by_cursor(Order.objects.all(), decode_cursor_param(cursor), 2)
            seen.extend(row.id for row in rows)
            if next_cursor is None:
                break
            cursor = next_cursor

        self.assertEqual(seen, ['5', '4', '3', '2', '1'])

    def test_last_page_has_no_cursor(self):
        rows, next_cursor = paginate_by_cursor(Order.objects.all(), None, 10)
        self.assertEqual(len(rows), 5)
        self.assertIsNone(next_cursor)


class CursorQueryTests(TestCase):
    def test_orders_filtered_by_source_and_search(self):
        Order.objects.create(id='7', source=Order.Source.CHAIN, created_at=10, user_address='0xabc')
        Order.objects.create(id='8', source=Order.Source.CHAIN, created_at=20, user_address='0xdef')
        Order.objects.create(id='web-1', source=Order.Source.APP, created_at=30, user_address='0xabc')

        rows, next_cursor = query_orders_cursor(source=Order.Source.CHAIN, q='abc')

        self.assertEqual([row.id for row in rows], ['7'])
        self.assertIsNone(next_cursor)

    def test_audit_logs_page_through_action(self):
        for target in ('1', '2', '3'):
            AuditLog.objects.create(action='chain_cancel', target_id=target)
        AuditLog.objects.create(action='ledger_credit', target_id='9')

        first, next_cursor = query_audit_logs_cursor(page_size=2, action='chain_cancel')
        second, last_cursor = query_audit_logs_cursor(next_cursor, 2, action='chain_cancel')

        self.assertEqual(len(first), 2)
        self.assertEqual(len(second), 1)
        self.assertIsNone(last_cursor)
        self.assertEqual(sorted(e.target_id for e in first + second), ['1', '2', '3'])

    def test_nested_cursor_token_starts_from_first_page(self):
        Order.objects.create(id='1', created_at=10)
        token = base64.urlsafe_b64encode(('[' * 100000).encode()).decode().rstrip('=')

        rows, next_cursor = query_orders_cursor(token)

        self.assertEqual([row.id for row in rows], ['1'])
        self.assertIsNone(next_cursor)
