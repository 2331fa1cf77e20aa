import json

import click
import pytest
from click.testing import CliRunner

from lambdawatch import constants
from lambdawatch.cli.lambdawatch import lambdawatch as cli
from lambdawatch.utils.net import get_free_tcp_port

cli: click.Group


@pytest.fixture
def runner():
    return CliRunner()


def _address(httpserver):
    return ["--host", httpserver.host, "--port", str(httpserver.port)]


def test_help(runner):
    """Make sure the help command is not interpreted as an error (Exit exception is raised)."""
    result = runner.invoke(cli, ["-h"])
    assert result.exit_code == 0
    assert "Usage: lambdawatch" in result.output


def test_version(runner):
    result = runner.invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert result.output.strip() == f"lambdawatch {constants.VERSION}"


class TestStart:
    def test_start(self, runner, monkeypatch):
        calls = []

        class _Runtime:
            def run(self):
                calls.append("run")

        def _create(**kwargs):
            calls.append(kwargs)
            return _Runtime()

        monkeypatch.setattr("lambdawatch.logging.setup.setup_logging_from_config", lambda: None)
        monkeypatch.setattr("lambdawatch.runtime.runtime.create_from_environment", _create)

        result = runner.invoke(
            cli, ["start", "--no-banner", "--port", "9090", "--target", "arm64", "--release", "--no-watch"]
        )

        assert result.exit_code == 0, result.output
        assert calls[0]["port"] == 9090
        assert calls[0]["build_target"] == "arm64"
        assert calls[0]["build_profile"] == "release"
        assert calls[0]["watch"] is False
        assert calls[1] == "run"

    def test_port_in_use(self, runner, monkeypatch):
        class _Runtime:
            def run(self):
                raise OSError(98, "Address already in use")

        monkeypatch.setattr("lambdawatch.logging.setup.setup_logging_from_config", lambda: None)
        monkeypatch.setattr(
            "lambdawatch.runtime.runtime.create_from_environment", lambda **kwargs: _Runtime()
        )

        result = runner.invoke(cli, ["start", "--no-banner"])

        assert result.exit_code == 1
        assert "Address already in use" in result.output


class TestInvoke:
    def test_invoke(self, runner, httpserver):
        httpserver.expect_request(
            "/2015-03-31/functions/billing/invocations", method="POST", data=b'{"amount": 42}'
        ).respond_with_json({"status": "ok"})

        result = runner.invoke(cli, ["invoke", "billing", "-A", '{"amount": 42}', *_address(httpserver)])

        assert result.exit_code == 0, result.output
        assert json.loads(result.output) == {"status": "ok"}

    def test_invoke_with_data_file(self, runner, httpserver, tmp_path):
        event = tmp_path / "event.json"
        event.write_text('{"orderId": "1"}')
        httpserver.expect_request(
            "/2015-03-31/functions/order-processor/invocations",
            method="POST",
            data=b'{"orderId": "1"}',
            headers={constants.HEADER_INVOKE_TIMEOUT: "3.0"},
        ).respond_with_data("accepted")

        result = runner.invoke(
            cli,
            ["invoke", "order-processor", "-F", str(event), "--timeout", "3", *_address(httpserver)],
        )

        assert result.exit_code == 0, result.output
        assert result.output.strip() == "accepted"

    def test_invoke_with_stdin(self, runner, httpserver):
        httpserver.expect_request(
            "/2015-03-31/functions/billing/invocations", method="POST", data=b'{"from": "stdin"}'
        ).respond_with_json({})

        result = runner.invoke(
            cli, ["invoke", "billing", "-F", "-", *_address(httpserver)], input='{"from": "stdin"}'
        )

        assert result.exit_code == 0, result.output

    def test_function_error(self, runner, httpserver):
        httpserver.expect_request("/2015-03-31/functions/billing/invocations").respond_with_json(
            {"errorType": "PaymentDeclined", "errorMessage": "card expired"},
            headers={constants.HEADER_FUNCTION_ERROR: "Unhandled"},
        )

        result = runner.invoke(cli, ["invoke", "billing", *_address(httpserver)])

        assert result.exit_code == 1
        assert "PaymentDeclined" in result.output

    def test_compile_error(self, runner, httpserver):
        httpserver.expect_request("/2015-03-31/functions/billing/invocations").respond_with_json(
            {
                "errorType": "CompileError",
                "errorMessage": "Failed to compile function billing",
                "diagnostics": "error[E0425]: cannot find value `x` in this scope",
            },
            status=500,
        )

        result = runner.invoke(cli, ["invoke", "billing", *_address(httpserver)])

        assert result.exit_code == 2
        assert "CompileError: Failed to compile function billing" in result.output
        assert "error[E0425]" in result.output

    def test_not_running(self, runner):
        result = runner.invoke(
            cli, ["invoke", "billing", "--host", "127.0.0.1", "--port", str(get_free_tcp_port())]
        )

        assert result.exit_code == 2
        assert "is it running?" in result.output

    def test_payload_options_are_exclusive(self, runner, tmp_path):
        event = tmp_path / "event.json"
        event.write_text("{}")

        result = runner.invoke(cli, ["invoke", "billing", "-A", "{}", "-F", str(event)])

        assert result.exit_code == 2
        assert "mutually exclusive" in result.output


class TestFunctions:
    functions = [
        {"name": "order-processor", "state": "Ready", "stale": True, "pid": 4242, "queued": 1, "crashes": 0},
        {"name": "billing", "state": "Crashed", "stale": False, "pid": None, "queued": 0, "crashes": 3},
    ]

    def test_table(self, runner, httpserver):
        httpserver.expect_request("/_lambdawatch/functions", method="GET").respond_with_json(
            {"functions": self.functions}
        )

        result = runner.invoke(cli, ["functions", *_address(httpserver)])

        assert result.exit_code == 0, result.output
        for line in result.output.splitlines():
            if "order-processor" in line:
                assert "4242" in line
                assert "changed" in line
            if "billing" in line:
                assert "Crashed" in line

    def test_json(self, runner, httpserver):
        httpserver.expect_request("/_lambdawatch/functions", method="GET").respond_with_json(
            {"functions": self.functions}
        )

        result = runner.invoke(cli, ["functions", "-f", "json", *_address(httpserver)])

        assert result.exit_code == 0, result.output
        assert json.loads(result.output) == self.functions
