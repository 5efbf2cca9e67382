"""Command line entry point: ``matomo-connector``."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import NoReturn

import argcomplete
import requests

from matomo_connector.api.cache import create_cache
from matomo_connector.api.dispatcher import BatchDispatcher
from matomo_connector.api.models import FetchOptions, Request
from matomo_connector.api.reporting import ReportingClient
from matomo_connector.api.resilience import ErrorMessageHelper
from matomo_connector.api.transport import RequestsBatchFetcher
from matomo_connector.core.config import ConnectorConfig
from matomo_connector.core.constants import BANNER_WIDTH
from matomo_connector.core.credentials import ResolvedCredentialStore, bootstrap_dotenv
from matomo_connector.core.exceptions import MatomoConnectorError
from matomo_connector.core.logging import setup_logging
from matomo_connector.core.version import __version__
from matomo_connector.formula.translator import translate

EXIT_OK = 0
EXIT_ERROR = 1


def _exit_error(msg: str) -> NoReturn:
    """Print an error message to stderr and exit with code 1."""
    print(f"ERROR: {msg}", file=sys.stderr)
    sys.exit(EXIT_ERROR)


def _key_value(text: str) -> tuple[str, str]:
    key, sep, value = text.partition("=")
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"expected key=value, got {text!r}")
    return key, value


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser"""
    parser = argparse.ArgumentParser(
        prog="matomo-connector",
        description="Matomo Connector - translate Matomo formulas and query the Matomo reporting API",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Translate a processed metric formula
  matomo-connector translate '$nb_conversions / $nb_visits'

  # Call any API method
  matomo-connector fetch VisitsSummary.get -p idSite=1 -p period=day -p date=yesterday

  # List sites and the reports of one site
  matomo-connector sites
  matomo-connector reports --idsite 1

Credentials are read from MATOMO_URL / MATOMO_TOKEN, a JSON config file
(--config-file, default matomo.json) or a .env file, in that order.
""",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    logging_group = parser.add_argument_group("Logging", "Options for log output")
    logging_group.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: LOG_LEVEL environment variable or INFO)",
    )
    logging_group.add_argument("--log-format", choices=["text", "json"], default=None, help="Log output format")
    logging_group.add_argument("--log-file", metavar="PATH", help="Also write logs to a rotating log file")
    logging_group.add_argument("--quiet", "-q", action="store_true", help="Disable progress bars")

    api_group = parser.add_argument_group("Reporting API", "Options for API requests")
    api_group.add_argument("--config-file", metavar="PATH", help="JSON file with instance_url and token_auth")
    api_group.add_argument(
        "--retry-limit",
        type=float,
        metavar="SECONDS",
        help="Stop retrying failed requests after this many seconds (default: 60)",
    )
    api_group.add_argument(
        "--runtime-limit",
        type=float,
        metavar="SECONDS",
        help="Abort once the whole run exceeds this many seconds (default: 0, disabled)",
    )
    api_group.add_argument("--cache-dir", metavar="PATH", help="Keep cached responses in this directory")

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND", required=True)

    translate_parser = subparsers.add_parser("translate", help="Translate a Matomo formula for Looker Studio")
    translate_parser.add_argument("formula", help="Matomo formula, e.g. '$nb_visits + $nb_actions'")
    translate_parser.add_argument("--json", action="store_true", help="Print the result as JSON")

    fetch_parser = subparsers.add_parser("fetch", help="Call one reporting API method")
    fetch_parser.add_argument("method", help="API method, e.g. VisitsSummary.get")
    fetch_parser.add_argument(
        "-p",
        "--param",
        action="append",
        type=_key_value,
        default=[],
        metavar="KEY=VALUE",
        help="Request parameter (repeatable)",
    )
    fetch_parser.add_argument("--url", help="Matomo base URL (overrides configured credentials)")
    fetch_parser.add_argument("--token", help="Matomo auth token (overrides configured credentials)")
    fetch_parser.add_argument("--cache-key", help="Cache the response under this key")
    fetch_parser.add_argument("--cache-ttl", type=int, default=0, metavar="SECONDS", help="Cache TTL (default: 0)")
    fetch_parser.add_argument("--strict", action="store_true", help="Exit with an error if the API returns an error")

    subparsers.add_parser("sites", help="List sites the token can view")

    reports_parser = subparsers.add_parser("reports", help="List reports usable for a site")
    reports_parser.add_argument("--idsite", type=int, required=True, help="Site ID")
    reports_parser.add_argument("--language", help="Language code for report names, e.g. de")

    argcomplete.autocomplete(parser)
    return parser


def parse_arguments(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments"""
    return build_parser().parse_args(argv)


# ==================== COMMANDS ====================


def _build_dispatcher(args: argparse.Namespace, config: ConnectorConfig) -> BatchDispatcher:
    return BatchDispatcher(
        fetcher=RequestsBatchFetcher(timeout=config.fetch.timeout_seconds, quiet=config.quiet),
        cache=create_cache(config.cache.directory, max_size=config.cache.max_size),
        credentials=ResolvedCredentialStore(config_file=args.config_file),
        config=config,
    )


def run_translate(args: argparse.Namespace) -> int:
    result = translate(args.formula)
    if args.json:
        print(
            json.dumps(
                {"translated_formula": result.translated_formula, "temporary_metrics": list(result.temporary_metrics)}
            )
        )
        return EXIT_OK
    print(f"Translated formula: {result.translated_formula or ''}")
    print(f"Temporary metrics:  {', '.join(result.temporary_metrics) or '(none)'}")
    return EXIT_OK


def run_fetch(args: argparse.Namespace, dispatcher: BatchDispatcher) -> int:
    options = FetchOptions(
        instance_url=args.url,
        token=args.token,
        cache_key=args.cache_key,
        cache_ttl=args.cache_ttl,
        check_runtime_limit=True,
        throw_on_failed_request=args.strict,
    )
    if args.strict:
        response = dispatcher.fetch(args.method, dict(args.param), options)
    else:
        response = dispatcher.fetch_all([Request(args.method, dict(args.param))], options)[0]
    print(json.dumps(response, indent=2, ensure_ascii=False))
    return EXIT_OK


def run_sites(client: ReportingClient) -> int:
    sites = client.get_sites_with_view_access()
    print("=" * BANNER_WIDTH)
    print(f"{'ID':>6}  {'Currency':<8}  Name")
    print("=" * BANNER_WIDTH)
    for site in sites:
        print(f"{site.idsite:>6}  {site.currency:<8}  {site.name}")
    print(f"\n{len(sites)} site(s)")
    return EXIT_OK


def run_reports(args: argparse.Namespace, client: ReportingClient) -> int:
    listing = client.get_report_metadata(args.idsite, language=args.language)
    if not listing.has_metric_types:
        print(
            "Warning: this Matomo does not report metric types; some metrics may display incorrectly. "
            "Please consider updating Matomo to version 4.14 or later.",
            file=sys.stderr,
        )
    for report in listing.reports:
        print(f"{report.category} > {report.name}  [{report.report_id}]")
    print(f"\n{len(listing.reports)} report(s)")
    return EXIT_OK


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the script"""
    args = parse_arguments(argv)

    bootstrap_dotenv(logging.getLogger(__name__))
    config = ConnectorConfig.from_args(args)
    logger = setup_logging(config.log.level, config.log.format, config.log.file)

    try:
        if args.command == "translate":
            sys.exit(run_translate(args))

        dispatcher = _build_dispatcher(args, config)
        if args.command == "fetch":
            sys.exit(run_fetch(args, dispatcher))

        client = ReportingClient(dispatcher)
        if args.command == "sites":
            sys.exit(run_sites(client))
        sys.exit(run_reports(args, client))
    except MatomoConnectorError as e:
        logger.debug(f"{type(e).__name__}: {e}")
        _exit_error(str(e))
    except requests.RequestException as e:
        _exit_error("\n" + ErrorMessageHelper.get_network_error_message(e, operation=args.command))


if __name__ == "__main__":
    main()
