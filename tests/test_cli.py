"""Tests for command-line interface"""

import importlib
import json
import logging

import pytest
import requests

from conftest import INSTANCE_URL, TOKEN, FakeFetcher, FakeResponse, ok, query_params
from matomo_connector.cli.main import main, parse_arguments
from matomo_connector.core.version import __version__

cli_main = importlib.import_module("matomo_connector.cli.main")


@pytest.fixture
def cli_env(tmp_path, clean_env):
    """Run the CLI from an empty directory with credentials in the environment"""
    clean_env.chdir(tmp_path)
    clean_env.setenv("MATOMO_URL", INSTANCE_URL)
    clean_env.setenv("MATOMO_TOKEN", TOKEN)
    clean_env.setattr(cli_main, "setup_logging", lambda *args, **kwargs: logging.getLogger("matomo_connector"))
    return clean_env


@pytest.fixture
def fake_api(cli_env):
    """Replace the HTTP transport with a FakeFetcher driven by ``handler``"""

    def _install(handler):
        fetcher = FakeFetcher(handler)
        cli_env.setattr(cli_main, "RequestsBatchFetcher", lambda **kwargs: fetcher)
        return fetcher

    return _install


def run(argv):
    with pytest.raises(SystemExit) as exc_info:
        main(argv)
    return exc_info.value.code


class TestCLIArguments:
    """Test command-line argument parsing"""

    def test_translate(self):
        """Test parsing the translate command"""
        args = parse_arguments(["translate", "$a + $b", "--json"])
        assert args.command == "translate"
        assert args.formula == "$a + $b"
        assert args.json is True

    def test_fetch_params(self):
        """Test that repeated -p options are collected as key/value pairs"""
        args = parse_arguments(["fetch", "VisitsSummary.get", "-p", "idSite=1", "-p", "segment=a==b"])
        assert args.method == "VisitsSummary.get"
        assert args.param == [("idSite", "1"), ("segment", "a==b")]
        assert args.strict is False
        assert args.cache_ttl == 0

    def test_global_options(self):
        """Test parsing of options shared by every command"""
        args = parse_arguments(
            ["--retry-limit", "10", "--runtime-limit", "300", "--log-level", "DEBUG", "-q", "sites"]
        )
        assert args.retry_limit == 10.0
        assert args.runtime_limit == 300.0
        assert args.log_level == "DEBUG"
        assert args.quiet is True

    def test_reports_requires_idsite(self, capsys):
        """Test that reports without --idsite is a usage error"""
        with pytest.raises(SystemExit) as exc_info:
            parse_arguments(["reports"])
        assert exc_info.value.code == 2

    def test_command_required(self, capsys):
        """Test that a command is required"""
        with pytest.raises(SystemExit) as exc_info:
            parse_arguments([])
        assert exc_info.value.code == 2

    def test_invalid_param(self, capsys):
        """Test that -p without key=value is a usage error"""
        with pytest.raises(SystemExit) as exc_info:
            parse_arguments(["fetch", "A.b", "-p", "novalue"])
        assert exc_info.value.code == 2
        assert "expected key=value" in capsys.readouterr().err

    def test_version(self, capsys):
        """Test the --version option"""
        with pytest.raises(SystemExit) as exc_info:
            parse_arguments(["--version"])
        assert exc_info.value.code == 0
        assert __version__ in capsys.readouterr().out


class TestTranslateCommand:
    """Tests for the translate command"""

    def test_text_output(self, cli_env, capsys):
        """Test translate text output"""
        assert run(["translate", '$goals["idgoal=1"]["revenue"] / $nb_visits']) == 0
        out = capsys.readouterr().out
        assert "Translated formula: $goals_1_revenue / $nb_visits" in out
        assert "Temporary metrics:  nb_visits" in out

    def test_json_output(self, cli_env, capsys):
        """Test translate JSON output"""
        assert run(["translate", "max($a, $b)", "--json"]) == 0
        assert json.loads(capsys.readouterr().out) == {
            "translated_formula": "NARY_MAX($a, $b)",
            "temporary_metrics": ["a", "b"],
        }

    def test_empty_formula(self, cli_env, capsys):
        """Test translating an empty formula"""
        assert run(["translate", "", "--json"]) == 0
        assert json.loads(capsys.readouterr().out) == {"translated_formula": None, "temporary_metrics": []}

    def test_unsupported_formula(self, cli_env, capsys):
        """Test the exit code and message for an unsupported formula"""
        assert run(["translate", "sqrt($a)"]) == 1
        assert capsys.readouterr().err.startswith('ERROR: Unknown function "sqrt"')

    def test_parse_error(self, cli_env, capsys):
        """Test the exit code and message for a malformed formula"""
        assert run(["translate", "$a +"]) == 1
        assert 'Failed to parse formula "$a +"' in capsys.readouterr().err


class TestFetchCommand:
    """Tests for the fetch command"""

    def test_prints_response(self, fake_api, capsys):
        """Test that fetch prints the decoded response"""
        fetcher = fake_api(lambda request, round_number: ok({"nb_visits": 12}))
        assert run(["fetch", "VisitsSummary.get", "-p", "idSite=1", "-p", "period=day"]) == 0

        assert json.loads(capsys.readouterr().out) == {"nb_visits": 12}
        request = fetcher.calls[0][0]
        params = query_params(request)
        assert params["method"] == "VisitsSummary.get"
        assert params["idSite"] == "1"
        assert request.url == f"{INSTANCE_URL}/index.php?"
        assert request.payload.endswith(f"token_auth={TOKEN}")

    def test_url_and_token_options(self, fake_api, capsys):
        """Test that --url and --token override configured credentials"""
        fetcher = fake_api(lambda request, round_number: ok([]))
        assert run(["fetch", "A.b", "--url", "https://other.example.org", "--token", "tok"]) == 0
        request = fetcher.calls[0][0]
        assert request.url == "https://other.example.org/index.php?"
        assert request.payload.endswith("token_auth=tok")

    def test_error_entry_printed_without_strict(self, fake_api, capsys):
        """Test that error entries are printed without --strict"""
        fake_api(lambda request, round_number: FakeResponse(404, text="not here"))
        assert run(["fetch", "A.b"]) == 0
        assert json.loads(capsys.readouterr().out)["result"] == "error"

    def test_strict_exits_with_error(self, fake_api, capsys):
        """Test that --strict turns an error entry into exit code 1"""
        fake_api(lambda request, round_number: FakeResponse(404, text="not here"))
        assert run(["fetch", "A.b", "--strict"]) == 1
        assert "ERROR: API method A.b failed" in capsys.readouterr().err

    def test_network_error(self, fake_api, capsys):
        """Test the message for a network failure"""
        def handler(request, round_number):
            raise requests.ConnectionError("Connection refused")

        fake_api(handler)
        assert run(["fetch", "A.b"]) == 1
        err = capsys.readouterr().err
        assert "Network Error: ConnectionError during fetch" in err
        assert "Connection refused" in err

    def test_missing_credentials(self, fake_api, cli_env, capsys):
        """Test the message when no credentials are configured"""
        cli_env.delenv("MATOMO_URL")
        cli_env.delenv("MATOMO_TOKEN")
        fake_api(lambda request, round_number: ok({}))
        assert run(["fetch", "A.b"]) == 1
        assert "No valid credentials found" in capsys.readouterr().err

    def test_credentials_from_config_file(self, fake_api, cli_env, tmp_path, capsys):
        """Test credentials read from --config-file"""
        cli_env.delenv("MATOMO_URL")
        cli_env.delenv("MATOMO_TOKEN")
        config_file = tmp_path / "prod.json"
        config_file.write_text(json.dumps({"instance_url": "https://prod.example.org/", "token_auth": "p"}))
        fetcher = fake_api(lambda request, round_number: ok({}))

        assert run(["--config-file", str(config_file), "fetch", "A.b"]) == 0
        assert fetcher.calls[0][0].url == "https://prod.example.org/index.php?"


class TestConfigurationCommands:
    """Tests for the sites and reports commands"""

    def test_sites(self, fake_api, capsys):
        """Test the sites listing"""
        fake_api(
            lambda request, round_number: ok(
                [{"idsite": "1", "name": "Demo", "currency": "EUR"}, {"idsite": "2", "name": "Shop", "currency": "USD"}]
            )
        )
        assert run(["sites"]) == 0
        out = capsys.readouterr().out
        assert "Demo" in out
        assert "Shop" in out
        assert "2 site(s)" in out

    def test_reports(self, fake_api, capsys):
        """Test the reports listing"""
        report = {
            "module": "VisitsSummary",
            "action": "get",
            "category": "Visitors",
            "name": "Visits Summary",
            "metrics": {"nb_visits": "Visits"},
            "metricTypes": {"nb_visits": "number"},
        }
        fake_api(lambda request, round_number: ok([report]))
        assert run(["reports", "--idsite", "1"]) == 0
        captured = capsys.readouterr()
        assert "Visitors > Visits Summary  [VisitsSummary.get]" in captured.out
        assert "1 report(s)" in captured.out
        assert "Warning" not in captured.err

    def test_reports_warns_on_old_server(self, fake_api, capsys):
        """Test the warning for servers older than 4.14"""
        report = {"module": "VisitsSummary", "action": "get", "name": "Visits", "metrics": {"nb_visits": "Visits"}}
        fake_api(lambda request, round_number: ok([report]))
        assert run(["reports", "--idsite", "1"]) == 0
        assert "4.14" in capsys.readouterr().err
