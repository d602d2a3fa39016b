from __future__ import annotations

import io
import json
import logging
import unittest
from decimal import Decimal

from gate_office.exceptions import ServerError
from gate_office.logging_config import LogContext, configure_logging, get_logger, reset_logging


class LoggingConfigTests(unittest.TestCase):
    def setUp(self) -> None:
        reset_logging()
        LogContext.clear()
        self.stream = io.StringIO()
        configure_logging(level=logging.DEBUG, stream=self.stream)
        self.logger = get_logger('tests')

    def tearDown(self) -> None:
        reset_logging()
        LogContext.clear()

    def _lines(self) -> list[dict]:
        return [json.loads(line) for line in self.stream.getvalue().splitlines()]

    def test_record_is_one_json_line_with_extra_fields(self) -> None:
        self.logger.info('po_receipt_saved', extra={'po_number': 'PO-1', 'qty': Decimal('2.5')})

        [line] = self._lines()
        self.assertEqual(line['message'], 'po_receipt_saved')
        self.assertEqual(line['logger'], 'gate_office.tests')
        self.assertEqual(line['level'], 'INFO')
        self.assertEqual(line['po_number'], 'PO-1')
        self.assertEqual(line['qty'], '2.5')

    def test_bound_context_is_added_and_restored(self) -> None:
        with LogContext.bind(session_id=12, step_kind='weighment'):
            self.logger.info('inside')
        self.logger.info('outside')

        inside, outside = self._lines()
        self.assertEqual(inside['session_id'], '12')
        self.assertEqual(inside['step_kind'], 'weighment')
        self.assertNotIn('session_id', outside)

    def test_unknown_context_field(self) -> None:
        with self.assertRaises(KeyError):
            LogContext.set(operator='x')

    def test_exception_code_is_logged(self) -> None:
        try:
            raise ServerError('down', status_code=502)
        except ServerError:
            self.logger.exception('fetch_failed')

        [line] = self._lines()
        self.assertEqual(line['exc_type'], 'ServerError')
        self.assertEqual(line['exc_code'], 'SERVER_ERROR')
        self.assertIn('Traceback', line['traceback'])

    def test_configure_is_idempotent(self) -> None:
        configure_logging(stream=io.StringIO())

        self.logger.info('once')

        self.assertEqual(len(self._lines()), 1)
        self.assertEqual(len(logging.getLogger('gate_office').handlers), 1)


if __name__ == '__main__':
    unittest.main()
