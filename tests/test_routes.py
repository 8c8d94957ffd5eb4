"""Tests for the legacy /v1 rewrite table and the phantom-endpoint shim."""

import pytest

from motor_proxy.routes import phantom_response_body, rewrite_legacy_path


class TestRewriteLegacyPath:

    @pytest.mark.parametrize("path, expected", [
        ("/v1/Information/Chek-Chart/Years", "/api/years"),
        ("/v1/Information/Chek-Chart/Years/2020/Makes", "/api/year/2020/makes"),
        ("/v1/Information/Chek-Chart/Years/2020/Makes/12/Models",
         "/api/year/2020/make/12/models"),
        ("/v1/api/vehicle/123/parts", "/api/vehicle/123/parts"),
        ("/v1/api", "/api"),
    ])
    def test_table(self, path, expected):
        assert rewrite_legacy_path(path) == expected

    def test_unmatched_path_is_unchanged(self):
        assert rewrite_legacy_path("/v1/Other/Thing") == "/v1/Other/Thing"


class TestPhantomEndpoints:

    @pytest.mark.parametrize("path, key", [
        ("/api/vehicle/123/dtcs", "dtcs"),
        ("/api/vehicle/123/tsbs", "tsbs"),
        ("/api/vehicle/123/diagrams", "diagrams"),
        ("/api/vehicle/123/procedures", "procedures"),
        ("/api/vehicle/123/specs", "specs"),
        ("/api/vehicle/123/wiring", "wiringDiagrams"),
        ("/api/vehicle/123/components", "componentLocations"),
    ])
    def test_empty_listing(self, path, key):
        body = phantom_response_body(path)
        assert body["header"]["status"] == "OK"
        assert body["header"]["statusCode"] == 200
        assert body["header"]["date"].endswith("GMT")
        assert body["body"] == {"total": 0, key: []}

    @pytest.mark.parametrize("path", ["/api/years", "/api/vehicle/123", "/api/dtcs/123"])
    def test_real_routes_are_not_shimmed(self, path):
        assert phantom_response_body(path) is None
