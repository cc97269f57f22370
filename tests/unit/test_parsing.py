"""
Tests for upstream payload parsing and the VNDirect adapter.

The adapter is exercised with a fake ``requests`` session; no network.
"""
import pytest
import requests

from src.vnsignal.data.adapters.vndirect_adapter import VNDirectAdapter
from src.vnsignal.data.parsing import (
    PriceRowsParsed,
    PriceRowsParseError,
    RatiosParsed,
    RatiosParseError,
    parse_vndirect_prices,
    parse_vndirect_ratios,
    ratios_from_mapping,
)
from src.vnsignal.data.schemas import PB, PE
from src.vnsignal.errors import UpstreamFetchError


def _price_entry(day: int, close: float) -> dict:
    return {
        "code": "FPT",
        "date": f"2025-03-{day:02d}",
        "open": close - 0.5, "high": close + 1, "low": close - 1, "close": close,
        "adOpen": close - 0.5, "adHigh": close + 1, "adLow": close - 1, "adClose": close,
        "nmVolume": 1_000_000,
    }


class TestRatioParsing:
    def test_ok_branch(self):
        payload = {"data": [
            {"ratioCode": PE, "value": 12.5},
            {"ratioCode": PB, "value": "2.1"},
        ]}
        result = parse_vndirect_ratios("FPT", payload)
        assert isinstance(result, RatiosParsed)
        assert result.ratios.get(PE) == 12.5
        assert result.ratios.get(PB) == 2.1
        assert result.skipped == 0

    def test_entries_without_numeric_value_are_skipped(self):
        payload = {"data": [
            {"ratioCode": PE, "value": None},
            {"ratioCode": PB, "value": "n/a"},
            {"value": 3.0},
            "garbage",
        ]}
        result = parse_vndirect_ratios("FPT", payload)
        assert isinstance(result, RatiosParsed)
        assert len(result.ratios) == 0
        assert result.skipped == 4

    @pytest.mark.parametrize("payload", [None, [], {"error": "x"}, {"data": {"a": 1}}])
    def test_error_branch(self, payload):
        result = parse_vndirect_ratios("FPT", payload)
        assert isinstance(result, RatiosParseError)
        assert result.kind == "error"
        assert result.reason

    def test_from_mapping_drops_non_numeric(self):
        result = ratios_from_mapping("FPT", {PE: 9.0, PB: None, "X": float("nan")})
        assert isinstance(result, RatiosParsed)
        assert result.ratios.values == {PE: 9.0}
        assert result.skipped == 2


class TestPriceParsing:
    def test_fields_are_mapped(self):
        result = parse_vndirect_prices("FPT", {"data": [_price_entry(3, 100.0)]})
        assert isinstance(result, PriceRowsParsed)
        row = result.rows[0]
        assert row["trade_date"] == "2025-03-03"
        assert row["adj_close"] == 100.0
        assert row["volume"] == 1_000_000

    def test_empty_data_is_an_error(self):
        result = parse_vndirect_prices("FPT", {"data": []})
        assert isinstance(result, PriceRowsParseError)
        assert result.reason == "no price rows returned"


class _FakeResponse:
    def __init__(self, payload, status: int = 200):
        self.payload = payload
        self.status = status

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} error")

    def json(self):
        return self.payload


class _FakeSession:
    def __init__(self, responses: dict):
        self.responses = responses
        self.headers = {}
        self.calls = []

    def get(self, url, params=None, timeout=None):
        self.calls.append((url, params))
        for suffix, response in self.responses.items():
            if url.endswith(suffix):
                if isinstance(response, Exception):
                    raise response
                return response
        raise AssertionError(f"unexpected url {url}")


class TestVNDirectAdapter:
    def test_fetch_price_series_validates_and_sorts(self):
        entries = [_price_entry(d, 100.0 + d) for d in (5, 4, 3)]  # newest first
        session = _FakeSession({"stock_prices": _FakeResponse({"data": entries})})
        adapter = VNDirectAdapter(session=session)

        series = adapter.fetch_price_series("fpt", 3)

        assert series.symbol == "FPT"
        assert series.closes == [103.0, 104.0, 105.0]
        _, params = session.calls[0]
        assert params["q"] == "code:FPT"
        assert params["sort"] == "date:desc"

    def test_http_error_raises_upstream_error(self):
        session = _FakeSession({"stock_prices": _FakeResponse({}, status=503)})
        adapter = VNDirectAdapter(session=session)
        with pytest.raises(UpstreamFetchError):
            adapter.fetch_price_series("FPT", 10)

    def test_timeout_raises_upstream_error(self):
        session = _FakeSession({"stock_prices": requests.Timeout("read timed out")})
        adapter = VNDirectAdapter(session=session)
        with pytest.raises(UpstreamFetchError):
            adapter.fetch_price_series("FPT", 10)

    def test_all_rows_invalid_raises_upstream_error(self):
        bad = _price_entry(3, 100.0)
        bad["high"] = 10.0
        session = _FakeSession({"stock_prices": _FakeResponse({"data": [bad]})})
        adapter = VNDirectAdapter(session=session)
        with pytest.raises(UpstreamFetchError):
            adapter.fetch_price_series("FPT", 10)

    def test_ratios_parse_error_is_returned_not_raised(self):
        session = _FakeSession({"ratios/latest": _FakeResponse({"unexpected": True})})
        adapter = VNDirectAdapter(session=session)
        result = adapter.fetch_fundamental_ratios("FPT")
        assert isinstance(result, RatiosParseError)
