"""Data models for the Matomo reporting API client."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

import pandas as pd

# A decoded API response, or a locally synthesized {"result": "error", "message": ...} entry
ResponseEntry = Any


@dataclass(frozen=True)
class Request:
    """One reporting API call: a method name such as ``SitesManager.getSitesWithAtLeastViewAccess``
    and its query parameters."""

    method: str
    params: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        # Freeze a private copy so callers cannot mutate the request afterwards
        object.__setattr__(self, "params", MappingProxyType(dict(self.params)))

    def __hash__(self) -> int:
        return hash((self.method, tuple(self.params.items())))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Request):
            return NotImplemented
        return self.method == other.method and dict(self.params) == dict(other.params)


@dataclass
class FetchOptions:
    """Per-call options for :class:`~matomo_connector.api.dispatcher.BatchDispatcher`.

    Attributes:
        instance_url: Matomo base URL; overrides the credential store
        token: Auth token; overrides the credential store
        cache_key: Cache key for the whole response list
        cache_ttl: Cache TTL in seconds; the cache is only used when positive
        check_runtime_limit: Abort between rounds once the host runtime budget is used up
        runtime_limit_abort_message: Message used for that abort
        throw_on_failed_request: Raise :class:`~matomo_connector.core.exceptions.APIError`
            if any entry is an error once retries are over
    """

    instance_url: str | None = None
    token: str | None = None
    cache_key: str | None = None
    cache_ttl: int = 0
    check_runtime_limit: bool = False
    runtime_limit_abort_message: str | None = None
    throw_on_failed_request: bool = False

    @property
    def uses_cache(self) -> bool:
        return bool(self.cache_key) and self.cache_ttl > 0


def error_entry(message: str) -> dict[str, str]:
    """Build a locally synthesized error response entry."""
    return {"result": "error", "message": message}


def is_error_entry(entry: ResponseEntry) -> bool:
    return isinstance(entry, dict) and entry.get("result") == "error"


# ==================== REPORTING MODELS ====================


@dataclass
class Site:
    idsite: int
    name: str
    currency: str = ""

    @classmethod
    def from_api(cls, data: Mapping[str, Any]) -> Site:
        return cls(idsite=int(data["idsite"]), name=str(data.get("name", "")), currency=str(data.get("currency", "")))


@dataclass
class Language:
    code: str
    name: str

    @classmethod
    def from_api(cls, data: Mapping[str, Any]) -> Language:
        return cls(code=str(data["code"]), name=str(data.get("name", "")))


@dataclass
class StoredSegment:
    name: str
    definition: str

    @classmethod
    def from_api(cls, data: Mapping[str, Any]) -> StoredSegment:
        return cls(name=str(data.get("name", "")), definition=str(data.get("definition", "")))


@dataclass
class Goal:
    idsite: int
    idgoal: int
    name: str

    @classmethod
    def from_api(cls, data: Mapping[str, Any]) -> Goal:
        return cls(idsite=int(data["idsite"]), idgoal=int(data["idgoal"]), name=str(data.get("name", "")))


@dataclass
class ReportMetadata:
    """Trimmed report metadata entry, as kept for the configuration flow."""

    module: str
    action: str
    category: str = ""
    name: str = ""
    parameters: dict[str, str] | None = None

    @property
    def report_id(self) -> str:
        """Identifier used in report selection, e.g. ``Goals.get`` or ``Goals.get?idGoal=3``."""
        report_id = f"{self.module}.{self.action}"
        if self.parameters:
            report_id += "?" + "&".join(f"{k}={v}" for k, v in self.parameters.items())
        return report_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "module": self.module,
            "action": self.action,
            "category": self.category,
            "name": self.name,
            "parameters": self.parameters,
        }

    @classmethod
    def from_api(cls, data: Mapping[str, Any]) -> ReportMetadata:
        parameters = data.get("parameters")
        return cls(
            module=str(data.get("module", "")),
            action=str(data.get("action", "")),
            category=str(data.get("category", "")),
            name=str(data.get("name", "")),
            parameters={str(k): str(v) for k, v in parameters.items()} if isinstance(parameters, dict) else None,
        )


@dataclass
class ReportMetadataListing:
    """Reports usable in the connector, plus whether the server reports metric types.

    Servers older than 4.14 do not include ``metricTypes`` in report metadata.
    """

    reports: list[ReportMetadata]
    has_metric_types: bool

    def to_dict(self) -> dict[str, Any]:
        return {"reportMetadata": [r.to_dict() for r in self.reports], "hasMetricTypes": self.has_metric_types}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ReportMetadataListing:
        return cls(
            reports=[ReportMetadata.from_api(r) for r in data["reportMetadata"]],
            has_metric_types=bool(data["hasMetricTypes"]),
        )


@dataclass
class ProcessedReport:
    """Result of ``API.getProcessedReport``.

    Attributes:
        metadata: Report metadata as returned by the server (untrimmed)
        report_data: One mapping per row, keyed by column name
        report_metadata: Per-row metadata (e.g. segment, url), parallel to ``report_data``
    """

    metadata: dict[str, Any]
    report_data: list[dict[str, Any]]
    report_metadata: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: Mapping[str, Any]) -> ProcessedReport:
        rows = data.get("reportData") or []
        # Reports without dimensions return a single row as a mapping
        if isinstance(rows, dict):
            rows = [rows]
        row_metadata = data.get("reportMetadata") or []
        if isinstance(row_metadata, dict):
            row_metadata = [row_metadata]
        return cls(metadata=dict(data.get("metadata") or {}), report_data=list(rows), report_metadata=list(row_metadata))

    @property
    def columns(self) -> dict[str, str]:
        """Column name -> display name, dimension first then metrics."""
        return dict(self.metadata.get("columns") or {})

    def to_dataframe(self) -> pd.DataFrame:
        """Return report rows as a DataFrame, ordered by the report's declared columns."""
        df = pd.DataFrame(self.report_data)
        ordered = [c for c in self.columns if c in df.columns]
        extra = [c for c in df.columns if c not in ordered]
        if ordered:
            df = df[ordered + extra]
        return df
