from datetime import datetime, timezone

import pytest

from workshopledger.errors import (
    ErrorCode, InvalidInputError, Result, StoreError,
)
from workshopledger.helpers import (
    from_iso, is_positive_int, is_valid_email, new_id, normalize_email, to_iso,
)
from workshopledger.infra import timings
from workshopledger.model.inventory import Tier, parse_tier


class TestHelpers:
    def test_normalize_email(self):
        assert normalize_email("  Foo@Bar.COM ") == "foo@bar.com"
        assert normalize_email(None) == ""
        assert normalize_email(123) == ""

    def test_is_valid_email(self):
        assert is_valid_email("a@b.co")
        assert not is_valid_email("a@b")
        assert not is_valid_email("")
        assert not is_valid_email(123)

    def test_is_positive_int(self):
        assert is_positive_int(1)
        assert not is_positive_int(0)
        assert not is_positive_int(True)
        assert not is_positive_int(2.0)

    def test_new_ids_sort_by_creation(self):
        ids = [new_id("txn") for _ in range(50)]

        assert all(i.startswith("txn_") for i in ids)
        assert len(set(ids)) == 50
        assert [i.split("_")[1] for i in ids] == sorted(
            i.split("_")[1] for i in ids
        )

    def test_iso_round_trip(self):
        ts = 1767225600.0  # 2026-01-01T00:00:00Z

        assert to_iso(ts) == "2026-01-01T00:00:00+00:00"
        assert from_iso("2026-01-01T00:00:00Z") == ts
        assert from_iso(datetime(2026, 1, 1, tzinfo=timezone.utc)) == ts
        assert from_iso("2026-01-01T00:00:00") == ts
        assert from_iso(None) is None


class TestTierAndResults:
    @pytest.mark.parametrize("raw", ["ga", "GA", " Ga ", Tier.GA])
    def test_parse_tier(self, raw):
        assert parse_tier(raw) is Tier.GA

    def test_parse_tier_rejects_unknown(self):
        with pytest.raises(InvalidInputError) as exc:
            parse_tier("balcony")
        assert exc.value.code == ErrorCode.INVALID_INPUT

    def test_result_as_dict(self):
        assert Result.ok().as_dict() == {
            "success": True, "code": None, "error": None,
        }
        assert Result.fail(ErrorCode.INVALID_INPUT, "bad").as_dict() == {
            "success": False, "code": "INVALID_INPUT", "error": "bad",
        }

    def test_store_error_carries_code(self):
        err = StoreError("inventory store failure: TimeoutError")

        assert err.code == ErrorCode.STORE_ERROR
        assert str(err) == "STORE_ERROR: inventory store failure: TimeoutError"


class TestTimings:
    def test_samples_are_capped_per_kind(self, monkeypatch):
        monkeypatch.setattr(timings, "MAX_SAMPLES", 5)

        for i in range(8):
            timings.record_timing("inventory.list", float(i))

        agg = {a["kind"]: a for a in timings.aggregates()}
        assert agg["inventory.list"]["n"] == 5
        assert agg["inventory.list"]["mean"] == 5.0
        assert agg["inventory.list"]["max"] == 7.0
