"""
Unit tests for the StreamCat client and catalog parsing.
"""

import httpx
import pandas as pd
import pytest

from watershed_metrics.remote.retry import RemoteServiceError
from watershed_metrics.remote.streamcat_client import StreamCatClient, parse_variable_info

VARIABLE_INFO_CSV = """METRIC_NAME,FULL_NAME,YEAR,AOI
PctDecid[Year],Percent Deciduous Forest [Year],"2001, 2019",Cat/Ws
Elev,Mean Elevation,,Cat/Ws
,Blank row,,
"""


def _client(handler, api_key: str | None = None) -> StreamCatClient:
    transport = httpx.MockTransport(handler)
    return StreamCatClient(
        "https://sc.test/StreamCat/streams", api_key=api_key, client=httpx.Client(transport=transport)
    )


class TestParseVariableInfo:
    """Tests for parse_variable_info."""

    def test_expands_year_placeholders(self) -> None:
        table = pd.DataFrame(
            {
                "METRIC_NAME": ["PctDecid[Year]"],
                "FULL_NAME": ["Percent Deciduous Forest [Year]"],
                "YEAR": ["2001, 2019"],
            }
        )
        assert parse_variable_info(table) == [
            ("PctDecid2001", "Percent Deciduous Forest 2001"),
            ("PctDecid2019", "Percent Deciduous Forest 2019"),
        ]

    def test_year_list_from_json(self) -> None:
        table = pd.DataFrame.from_records([{"metric_name": "PctUrbHi[Year]", "year": [2016, 2019]}])
        assert [name for name, _ in parse_variable_info(table)] == ["PctUrbHi2016", "PctUrbHi2019"]

    def test_plain_names_and_blank_rows(self) -> None:
        table = pd.DataFrame({"name": ["Elev", None, "  "], "description": ["Mean Elevation", "x", "y"]})
        assert parse_variable_info(table) == [("Elev", "Mean Elevation")]

    def test_missing_full_name_column(self) -> None:
        table = pd.DataFrame({"METRIC_NAME": ["Elev"]})
        assert parse_variable_info(table) == [("Elev", "")]

    def test_missing_name_column(self) -> None:
        with pytest.raises(RemoteServiceError, match="no metric name column"):
            parse_variable_info(pd.DataFrame({"foo": [1]}))


class TestVariableInfo:
    """Tests for StreamCatClient.variable_info."""

    def test_csv_catalog(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/StreamCat/streams/variable_info"
            return httpx.Response(200, text=VARIABLE_INFO_CSV, headers={"content-type": "text/csv"})

        pairs = _client(handler).variable_info()
        assert ("PctDecid2019", "Percent Deciduous Forest 2019") in pairs
        assert ("Elev", "Mean Elevation") in pairs
        assert len(pairs) == 3

    def test_json_catalog(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"items": [{"metric_name": "Elev", "full_name": "Mean Elevation"}]})

        assert _client(handler).variable_info() == [("Elev", "Mean Elevation")]

    def test_empty_catalog_is_an_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"items": [{"metric_name": None}]})

        with pytest.raises(RemoteServiceError, match="empty catalog"):
            _client(handler).variable_info()

    def test_http_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500)

        with pytest.raises(RemoteServiceError, match="HTTP 500"):
            _client(handler).variable_info()

    def test_api_key_header(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=[{"metric_name": "Elev", "full_name": "Mean Elevation"}])

        _client(handler, api_key="secret").variable_info()
        assert seen[0].headers["x-api-key"] == "secret"


class TestMetrics:
    """Tests for StreamCatClient.metrics."""

    def test_request_form(self) -> None:
        """Variables and COMIDs should be comma-joined in the form body."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"items": [{"comid": 4000390, "pctdecid2019ws": 42.7}]})

        items = _client(handler).metrics(["pctdecid2019", "elev"], "watershed", ["4000390", "2889278"])

        assert items == [{"comid": 4000390, "pctdecid2019ws": 42.7}]
        assert seen[0].method == "POST"
        assert seen[0].url.path == "/StreamCat/streams/metrics"
        form = dict(httpx.QueryParams(seen[0].content.decode()))
        assert form == {"name": "pctdecid2019,elev", "areaOfInterest": "watershed", "comid": "4000390,2889278"}

    def test_bare_list_payload(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=[{"COMID": 1, "ELEVCAT": 300.0}])

        assert _client(handler).metrics(["elev"], "catchment", ["1"]) == [{"COMID": 1, "ELEVCAT": 300.0}]

    def test_unexpected_shape(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"items": "nope"})

        with pytest.raises(RemoteServiceError, match="Unexpected metrics payload"):
            _client(handler).metrics(["elev"], "catchment", ["1"])

    def test_not_json(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="Internal error")

        with pytest.raises(RemoteServiceError, match="Malformed metrics response"):
            _client(handler).metrics(["elev"], "catchment", ["1"])

    def test_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(RemoteServiceError, match="failed"):
            _client(handler).metrics(["elev"], "catchment", ["1"])
