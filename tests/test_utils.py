"""
Tests for shared utilities: numeric coercion, guarded lookups, decision log.

Running:
    python -m pytest tests/test_utils.py -v
"""

import csv
import time

import pytest

from loyaltyguard.schemas.receipt import Decision, FraudResult
from loyaltyguard.utils.logger import FIELDNAMES, decision_to_row, log_decision
from loyaltyguard.utils.lookups import guarded_call
from loyaltyguard.utils.numbers import coerce_int, coerce_number


class TestCoerceNumber:

    @pytest.mark.parametrize("raw,expected", [
        ("12.50", 12.5),
        ("12.5kg", 12.5),
        ("S$1,200.50", 1200.5),
        ("฿ 350", 350.0),
        ("SGD 15.00", 15.0),
        (7, 7.0),
        ("-3", -3.0),
        (".5", 0.5),
    ])
    def test_parses(self, raw, expected):
        assert coerce_number(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "abc", True, float("nan"), float("inf")])
    def test_rejects(self, raw):
        assert coerce_number(raw) is None

    def test_coerce_int(self):
        assert coerce_int("3.9") == 3
        assert coerce_int("none", default=1) == 1


class TestGuardedCall:

    def test_success(self):
        lookup = guarded_call(lambda x: x * 2, 21, timeout=1.0, fallback=0)
        assert lookup.value == 42
        assert lookup.degraded is False

    def test_exception_gives_fallback(self):
        def boom():
            raise ValueError("bad")

        lookup = guarded_call(boom, timeout=1.0, fallback="fallback")
        assert lookup.value == "fallback"
        assert lookup.degraded is True
        assert "bad" in lookup.error

    def test_timeout_gives_fallback(self):
        lookup = guarded_call(time.sleep, 0.5, timeout=0.05, fallback=None)
        assert lookup.degraded is True
        assert lookup.error == "timeout"

    def test_kwargs_passed(self):
        lookup = guarded_call(lambda a, b=0: a + b, 1, b=2, timeout=1.0, fallback=0)
        assert lookup.value == 3


def _result(decision=Decision.REVIEW, score=55):
    return FraudResult(
        score=score,
        decision=decision,
        reasons=("Weak merchant template match", "Receipt is not in English"),
        details={"image_count": 2, "template_id": "naturel_sg", "events": [{"rule_id": "NON_ENGLISH"}], "extra": 1},
    )


class TestDecisionLog:

    def test_row_flattens_details(self):
        row = decision_to_row("r1", _result(), 40)
        assert row["decision"] == "REVIEW"
        assert row["fraud_image_count"] == 2
        assert row["fraud_events"] == '[{"rule_id": "NON_ENGLISH"}]'
        assert row["reasons"] == "Weak merchant template match | Receipt is not in English"

    def test_header_written_once(self, tmp_path):
        path = str(tmp_path / "logs" / "decisions.csv")
        log_decision("r1", _result(), 40, log_file=path)
        log_decision("r2", _result(Decision.ACCEPT, 5), None, log_file=path)

        with open(path, newline="", encoding="utf-8") as f:
            lines = f.read().splitlines()
        assert lines[0].split(",") == FIELDNAMES
        assert len(lines) == 3

        with open(path, newline="", encoding="utf-8") as f:
            rows = list(csv.DictReader(f))
        assert [r["receipt_id"] for r in rows] == ["r1", "r2"]
        assert rows[1]["suggested_points"] == ""
        assert "fraud_extra" not in rows[0]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
