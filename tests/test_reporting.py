"""Tests for the typed reporting API client"""

import json
import logging

import pytest

from conftest import FakeResponse, ok, query_params
from matomo_connector.api.cache import InMemoryCache
from matomo_connector.api.models import Goal, Language, ProcessedReport, Site, StoredSegment
from matomo_connector.api.reporting import ReportingClient
from matomo_connector.core.config import CacheConfig, ConnectorConfig
from matomo_connector.core.exceptions import APIError

REPORT_METADATA = [
    {
        "module": "VisitsSummary",
        "action": "get",
        "category": "Visitors",
        "name": "Visits Summary",
        "metrics": {"nb_visits": "Visits"},
        "metricTypes": {"nb_visits": "number"},
        "documentation": "A long text the listing does not keep",
    },
    {
        "module": "MultiSites",
        "action": "getOne",
        "category": "All Websites",
        "name": "Website",
        "metrics": {"nb_visits": "Visits"},
    },
    {
        "module": "Goals",
        "action": "get",
        "category": "Goals",
        "name": "Signup",
        "parameters": {"idGoal": 3},
        "metricsGoal": {"nb_conversions": "Conversions"},
    },
    {"module": "API", "action": "getSettings", "category": "API", "name": "No metrics"},
]


def api(responses):
    """Handler answering by API method and recording the parameters of each request"""
    seen = []

    def handler(request, round_number):
        params = query_params(request)
        seen.append(params)
        return ok(responses[params["method"]])

    handler.seen = seen
    return handler


@pytest.fixture
def cache(fake_time):
    return InMemoryCache(time_func=fake_time)


@pytest.fixture
def make_client(make_dispatcher):
    def _make(responses, cache=None, config=None):
        handler = api(responses)
        dispatcher, fetcher = make_dispatcher(handler, cache=cache, config=config)
        return ReportingClient(dispatcher), handler, fetcher

    return _make


class TestSites:
    """Tests for get_sites_with_view_access"""

    def test_sites(self, make_client):
        """Test the sites listing request and result"""
        client, handler, _ = make_client(
            {"SitesManager.getSitesWithAtLeastViewAccess": [{"idsite": "1", "name": "Demo", "currency": "EUR"}]}
        )
        assert client.get_sites_with_view_access() == [Site(1, "Demo", "EUR")]
        assert handler.seen[0]["filter_limit"] == "-1"

    def test_cached_when_ttl_configured(self, make_client, cache):
        """Test that sites are cached when a config request TTL is set"""
        config = ConnectorConfig(cache=CacheConfig(config_request_ttl_seconds=60))
        client, _, fetcher = make_client(
            {"SitesManager.getSitesWithAtLeastViewAccess": [{"idsite": "1", "name": "Demo"}]},
            cache=cache,
            config=config,
        )
        client.get_sites_with_view_access()
        client.get_sites_with_view_access()
        assert len(fetcher.calls) == 1
        assert cache.get("getConfig.SitesManager.getSitesWithAtLeastViewAccess") is not None

    def test_not_cached_by_default(self, make_client, cache):
        """Test that sites are fetched each time without a TTL"""
        client, _, fetcher = make_client(
            {"SitesManager.getSitesWithAtLeastViewAccess": []},
            cache=cache,
        )
        client.get_sites_with_view_access()
        client.get_sites_with_view_access()
        assert len(fetcher.calls) == 2


class TestVersion:
    """Tests for get_matomo_version and is_version_supported"""

    @pytest.mark.parametrize(
        "value,expected,supported",
        [
            ("5.1.0", (5, 1), True),
            ("4.14.0", (4, 14), True),
            ("4.13.3", (4, 13), False),
            ("3.14.1", (3, 14), False),
            ("5", (5, 0), True),
            ("5.0.0-rc1", (5, 0), True),
        ],
    )
    def test_versions(self, make_client, value, expected, supported):
        """Test version parsing and the supported version check"""
        client, _, _ = make_client({"API.getMatomoVersion": {"value": value}})
        assert client.get_matomo_version() == expected
        assert client.is_version_supported() is supported


class TestReportMetadata:
    """Tests for get_report_metadata"""

    def test_filters_and_trims(self, make_client):
        """Test report metadata filtering and trimming"""
        client, handler, _ = make_client({"API.getReportMetadata": REPORT_METADATA})
        listing = client.get_report_metadata(1)

        assert [r.report_id for r in listing.reports] == ["VisitsSummary.get", "Goals.get?idGoal=3"]
        assert listing.has_metric_types is True
        assert listing.reports[0].to_dict() == {
            "module": "VisitsSummary",
            "action": "get",
            "category": "Visitors",
            "name": "Visits Summary",
            "parameters": None,
        }
        params = handler.seen[0]
        assert params["idSite"] == "1"
        assert params["period"] == "day"
        assert params["date"] == "yesterday"
        assert "language" not in params

    def test_language(self, make_client):
        """Test that the language parameter is forwarded"""
        client, handler, _ = make_client({"API.getReportMetadata": REPORT_METADATA})
        client.get_report_metadata(1, language="de")
        assert handler.seen[0]["language"] == "de"

    def test_old_server_without_metric_types(self, make_client):
        """Test detection of servers without metric types"""
        reports = [{k: v for k, v in r.items() if k != "metricTypes"} for r in REPORT_METADATA]
        client, _, _ = make_client({"API.getReportMetadata": reports})
        assert client.get_report_metadata(1).has_metric_types is False

    def test_listing_is_cached(self, make_client, cache):
        """Test that the metadata listing is memoized"""
        client, _, fetcher = make_client({"API.getReportMetadata": REPORT_METADATA}, cache=cache)
        first = client.get_report_metadata(1)
        second = client.get_report_metadata(1)

        assert len(fetcher.calls) == 1
        assert second == first
        cached = json.loads(cache.get("getConfig.API.getReportMetadata.1"))
        assert cached["hasMetricTypes"] is True
        assert len(cached["reportMetadata"]) == 2

    def test_listing_cached_per_site(self, make_client, cache):
        """Test that each site has its own cached listing"""
        client, _, fetcher = make_client({"API.getReportMetadata": REPORT_METADATA}, cache=cache)
        client.get_report_metadata(1)
        client.get_report_metadata(2)
        assert len(fetcher.calls) == 2

    def test_unreadable_cache_entry_is_refetched(self, make_client, cache, caplog):
        """Test that an unreadable cached listing is fetched again"""
        caplog.set_level(logging.INFO, logger="matomo_connector")
        cache.put("getConfig.API.getReportMetadata.1", "{broken", 600)
        client, _, fetcher = make_client({"API.getReportMetadata": REPORT_METADATA}, cache=cache)

        listing = client.get_report_metadata(1)
        assert len(listing.reports) == 2
        assert len(fetcher.calls) == 1
        assert "unable to parse cache value for getConfig.API.getReportMetadata.1" in caplog.text
        assert json.loads(cache.get("getConfig.API.getReportMetadata.1"))["hasMetricTypes"] is True


class TestConfigurationLookups:
    """Segments, languages and goals"""

    def test_segments(self, make_client):
        """Test the stored segments listing"""
        client, handler, _ = make_client(
            {"SegmentEditor.getAll": [{"name": "France", "definition": "countryCode==fr", "idsegment": "4"}]}
        )
        assert client.get_segments(7) == [StoredSegment("France", "countryCode==fr")]
        assert handler.seen[0]["idSite"] == "7"

    def test_segments_cached_when_ttl_configured(self, make_client, cache):
        """Test that segments are cached per site when a TTL is set"""
        config = ConnectorConfig(cache=CacheConfig(config_request_ttl_seconds=60))
        client, _, fetcher = make_client({"SegmentEditor.getAll": []}, cache=cache, config=config)
        client.get_segments(7)
        client.get_segments(7)
        assert len(fetcher.calls) == 1
        assert cache.get("getConfig.SegmentEditor.getAll.7") is not None

    def test_languages(self, make_client):
        """Test the languages listing"""
        client, _, _ = make_client(
            {"LanguagesManager.getAvailableLanguageNames": [{"code": "de", "name": "Deutsch", "english_name": "German"}]}
        )
        assert client.get_languages() == [Language("de", "Deutsch")]

    def test_goals_list(self, make_client):
        """Test goals returned as a list"""
        client, _, _ = make_client({"Goals.getGoals": [{"idsite": "1", "idgoal": "2", "name": "Signup"}]})
        assert client.get_goals(1) == [Goal(1, 2, "Signup")]

    def test_goals_keyed_by_id(self, make_client):
        """Test goals returned keyed by id"""
        client, _, _ = make_client({"Goals.getGoals": {"2": {"idsite": "1", "idgoal": "2", "name": "Signup"}}})
        assert client.get_goals(1) == [Goal(1, 2, "Signup")]

    def test_errors_are_raised(self, make_dispatcher):
        """Test that API errors raise APIError"""
        dispatcher, _ = make_dispatcher(lambda request, round_number: FakeResponse(403, text="forbidden"))
        with pytest.raises(APIError, match="Goals.getGoals"):
            ReportingClient(dispatcher).get_goals(1)


class TestProcessedReport:
    """Tests for get_processed_report"""

    RESPONSE = {
        "metadata": {"columns": {"label": "Browser", "nb_visits": "Visits"}},
        "reportData": [{"nb_visits": 10, "label": "Chrome"}, {"nb_visits": 4, "label": "Firefox"}],
        "reportMetadata": [{"logo": "chrome.png"}, {"logo": "firefox.png"}],
    }

    def test_request_parameters(self, make_client):
        """Test processed report request parameters"""
        client, handler, _ = make_client({"API.getProcessedReport": self.RESPONSE})
        client.get_processed_report(
            1, "DevicesDetection", "getBrowsers", period="month", date="today", segment="countryCode==fr",
            extra_params={"idGoal": "3"},
        )
        params = handler.seen[0]
        assert params["apiModule"] == "DevicesDetection"
        assert params["apiAction"] == "getBrowsers"
        assert params["period"] == "month"
        assert params["date"] == "today"
        assert params["segment"] == "countryCode==fr"
        assert params["format_metrics"] == "0"
        assert params["flat"] == "1"
        assert params["idGoal"] == "3"

    def test_report_rows(self, make_client):
        """Test processed report rows and DataFrame conversion"""
        client, _, _ = make_client({"API.getProcessedReport": self.RESPONSE})
        report = client.get_processed_report(1, "DevicesDetection", "getBrowsers")

        assert report.columns == {"label": "Browser", "nb_visits": "Visits"}
        assert report.report_metadata[1] == {"logo": "firefox.png"}
        df = report.to_dataframe()
        assert list(df.columns) == ["label", "nb_visits"]
        assert df["nb_visits"].tolist() == [10, 4]

    def test_single_row_report(self):
        """Test a report returning a single row"""
        report = ProcessedReport.from_api(
            {"metadata": {"columns": {"nb_visits": "Visits"}}, "reportData": {"nb_visits": 5}}
        )
        assert report.report_data == [{"nb_visits": 5}]
        assert report.to_dataframe()["nb_visits"].tolist() == [5]

    def test_empty_report(self):
        """Test a report without rows"""
        report = ProcessedReport.from_api({"metadata": {}, "reportData": []})
        assert report.to_dataframe().empty
