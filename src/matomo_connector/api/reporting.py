"""Typed reporting API calls used to configure and fill a Looker Studio data source."""

from __future__ import annotations

import json
import logging
from typing import Any

from matomo_connector.api.dispatcher import BatchDispatcher
from matomo_connector.api.models import (
    FetchOptions,
    Goal,
    Language,
    ProcessedReport,
    ReportMetadata,
    ReportMetadataListing,
    Site,
    StoredSegment,
)
from matomo_connector.core.constants import (
    MIN_SUPPORTED_VERSION,
    REPORT_METADATA_CACHE_KEY_PREFIX,
    REPORT_METADATA_CACHE_TTL,
    SEGMENTS_CACHE_KEY_PREFIX,
    SITES_CACHE_KEY,
)

_METRIC_FIELDS = ("metrics", "processedMetrics", "metricsGoal", "processedMetricsGoal")

# Reports that cannot be shown even though they define metrics
_EXCLUDED_REPORTS = {("MultiSites", "getOne")}


class ReportingClient:
    """Reporting API calls made while configuring a data source.

    Args:
        dispatcher: Dispatcher used for every request
        logger: Logger instance (default: module logger)
    """

    def __init__(self, dispatcher: BatchDispatcher, logger: logging.Logger | None = None):
        self.dispatcher = dispatcher
        self.logger = logger or logging.getLogger(__name__)

    @property
    def _config_cache_ttl(self) -> int:
        return self.dispatcher.config.cache.config_request_ttl_seconds

    def get_sites_with_view_access(self) -> list[Site]:
        """Sites the token owner can at least view."""
        response = self.dispatcher.fetch(
            "SitesManager.getSitesWithAtLeastViewAccess",
            {"filter_limit": "-1"},
            FetchOptions(cache_key=SITES_CACHE_KEY, cache_ttl=self._config_cache_ttl),
        )
        return [Site.from_api(site) for site in response or []]

    def get_matomo_version(self) -> tuple[int, int]:
        """Return the server version as ``(major, minor)``."""
        version = str(self.dispatcher.fetch("API.getMatomoVersion")["value"])
        parts = version.split(".")
        major = int(parts[0])
        minor = int(parts[1]) if len(parts) > 1 and parts[1].isdigit() else 0
        return major, minor

    def is_version_supported(self) -> bool:
        """False for servers older than 4.14, which miss report metadata the connector relies on."""
        return self.get_matomo_version() >= MIN_SUPPORTED_VERSION

    def get_report_metadata(self, id_site: int | str, language: str | None = None) -> ReportMetadataListing:
        """Reports of a site that define metrics, trimmed to what report selection needs.

        The listing is memoized in the dispatcher's cache; an unreadable cache
        entry is ignored and the listing fetched again.
        """
        cache = self.dispatcher.cache
        cache_key = f"{REPORT_METADATA_CACHE_KEY_PREFIX}{id_site}"

        if cache is not None:
            cached = cache.get(cache_key)
            if cached is not None:
                try:
                    return ReportMetadataListing.from_dict(json.loads(cached))
                except (json.JSONDecodeError, KeyError, TypeError) as e:
                    self.logger.info(f"unable to parse cache value for {cache_key}, making actual request ({e})")

        params = {"idSite": str(id_site), "period": "day", "date": "yesterday", "filter_limit": "-1"}
        if language:
            params["language"] = language
        response: list[dict[str, Any]] = self.dispatcher.fetch("API.getReportMetadata", params) or []

        has_metric_types = any(isinstance(report.get("metricTypes"), dict) for report in response)
        reports = [
            ReportMetadata.from_api(report)
            for report in response
            if any(report.get(f) for f in _METRIC_FIELDS)
            and (report.get("module"), report.get("action")) not in _EXCLUDED_REPORTS
        ]
        listing = ReportMetadataListing(reports=reports, has_metric_types=has_metric_types)

        if cache is not None:
            try:
                cache.put(cache_key, json.dumps(listing.to_dict()), REPORT_METADATA_CACHE_TTL)
            except OSError as e:
                self.logger.info(f"unable to save cache value for {cache_key}: {e}")
        return listing

    def get_segments(self, id_site: int | str) -> list[StoredSegment]:
        """Stored segments available for a site."""
        response = self.dispatcher.fetch(
            "SegmentEditor.getAll",
            {"idSite": str(id_site), "filter_limit": "-1"},
            FetchOptions(cache_key=f"{SEGMENTS_CACHE_KEY_PREFIX}{id_site}", cache_ttl=self._config_cache_ttl),
        )
        return [StoredSegment.from_api(segment) for segment in response or []]

    def get_languages(self) -> list[Language]:
        return [Language.from_api(lang) for lang in self.dispatcher.fetch("LanguagesManager.getAvailableLanguageNames")]

    def get_goals(self, id_site: int | str) -> list[Goal]:
        response = self.dispatcher.fetch("Goals.getGoals", {"idSite": str(id_site)})
        # Older servers key goals by id instead of returning a list
        goals = response.values() if isinstance(response, dict) else response or []
        return [Goal.from_api(goal) for goal in goals]

    def get_processed_report(
        self,
        id_site: int | str,
        api_module: str,
        api_action: str,
        period: str = "day",
        date: str = "yesterday",
        segment: str | None = None,
        extra_params: dict[str, str] | None = None,
        options: FetchOptions | None = None,
    ) -> ProcessedReport:
        """Fetch one report with metadata via ``API.getProcessedReport``."""
        params = {
            "idSite": str(id_site),
            "period": period,
            "date": date,
            "apiModule": api_module,
            "apiAction": api_action,
            "format_metrics": "0",
            "flat": "1",
        }
        if segment:
            params["segment"] = segment
        params.update(extra_params or {})
        return ProcessedReport.from_api(self.dispatcher.fetch("API.getProcessedReport", params, options))
