"""
test_errors.py - errors モジュールのテスト
"""

from __future__ import annotations

import unittest

from activity_runtime.errors import (
    REQ_INVALID_VALUE,
    REQ_UNKNOWN,
    ActivityManagerError,
    ErrorCode,
    format_error,
    get_all_error_codes,
)


class TestErrorCodes(unittest.TestCase):

    def test_registry_collects_all_codes(self):
        codes = get_all_error_codes()
        self.assertIn("AMGR-REQ-001", codes)
        self.assertIs(codes["AMGR-REQ-002"], REQ_INVALID_VALUE)
        self.assertTrue(all(code.startswith("AMGR-") for code in codes))

    def test_invalid_code_format(self):
        with self.assertRaises(ValueError):
            ErrorCode(code="REQ-1", template="x")


class TestFormatError(unittest.TestCase):

    def test_message_and_dict(self):
        err = format_error(
            REQ_UNKNOWN, requirement="wifi", manager="SystemManagerProxy", activity_id=4,
            details={"activity_id": 4},
        )
        self.assertIsInstance(err, ActivityManagerError)
        self.assertIn("'wifi'", err.message)
        self.assertTrue(str(err).startswith("AMGR-REQ-001: "))
        self.assertEqual(err.to_dict()["details"], {"activity_id": 4})
        self.assertEqual(err.to_dict()["suggestion"], REQ_UNKNOWN.suggestion)

    def test_missing_parameter_is_reported(self):
        err = format_error(REQ_INVALID_VALUE, requirement="bootup")
        self.assertIn("missing parameter", err.message)

    def test_to_dict_omits_none(self):
        err = ActivityManagerError("AMGR-SYS-001", "boom")
        self.assertEqual(err.to_dict(), {"code": "AMGR-SYS-001", "message": "boom"})


if __name__ == "__main__":
    unittest.main()
