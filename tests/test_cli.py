import pytest

from tcpecho import cli
from tcpecho.common import DEFAULT_PORT


@pytest.fixture(autouse=True)
def _no_log_handlers(monkeypatch):
    # Handlers bound to a captured stderr would outlive the test.
    monkeypatch.setattr(cli, "configure_logging", lambda *args, **kwargs: None)


def test_server_defaults():
    args = cli.build_parser().parse_args(["server"])
    assert args.bind == "0.0.0.0"
    assert args.port == DEFAULT_PORT == 8888
    assert args.max_connections == 0


def test_server_exits_nonzero_when_port_taken(echo_server, capsys):
    port = echo_server.address.port
    code = cli.main(["server", "--bind", "127.0.0.1", "--port", str(port)])

    assert code == 1
    assert "ERROR" in capsys.readouterr().err


def test_client_prints_echo(echo_server, capsys):
    code = cli.main(["client", "--port", str(echo_server.address.port), "--message", "hello there"])

    assert code == 0
    assert capsys.readouterr().out.strip() == "hello there"


def test_loadtest_reports_time(echo_server, capsys):
    code = cli.main(["loadtest", "--port", str(echo_server.address.port), "--connections", "50"])

    assert code == 0
    assert "Needed time:" in capsys.readouterr().out
    assert echo_server.registry.wait_until_empty(timeout=10)


def test_missing_command_is_an_error():
    with pytest.raises(SystemExit):
        cli.main([])


@pytest.mark.parametrize(
    "flags",
    [
        ["--chunk-size", "0"],
        ["--chunk-size", "-5"],
        ["--backlog", "-1"],
        ["--max-connections", "-1"],
    ],
)
def test_server_rejects_invalid_limits(flags, capsys):
    with pytest.raises(SystemExit) as excinfo:
        cli.build_parser().parse_args(["server", *flags])

    assert excinfo.value.code == 2
    assert flags[0] in capsys.readouterr().err


def test_zero_max_connections_means_unlimited():
    args = cli.build_parser().parse_args(["server", "--max-connections", "0"])
    assert args.max_connections == 0
