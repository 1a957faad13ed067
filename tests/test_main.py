import logging

import pytest

import hot_tokens.__main__ as cli
from hot_tokens.api import ServiceRuntime


class _Server:
    def __init__(self, host, port, app, threaded=False):
        self.host = host
        self.server_port = port
        self.app = app
        self.threaded = threaded
        self.closed = False

    def serve_forever(self):
        raise KeyboardInterrupt

    def server_close(self):
        self.closed = True


@pytest.fixture
def servers(monkeypatch, restore_root_logger):
    for name in ("HOT_TOKENS_CONFIG", "HOT_TOKENS_HOST", "HOT_TOKENS_PORT", "HOT_TOKENS_LOG_LEVEL",
                 "HOT_TOKENS_JSON_LOGS", "REDIS_URL", "HOT_TOKENS_REDIS_URL", "HELIUS_API_KEY"):
        monkeypatch.delenv(name, raising=False)
    created = []

    def _make_server(host, port, app, threaded=False):
        server = _Server(host, port, app, threaded=threaded)
        created.append(server)
        return server

    stopped = []
    original_stop = ServiceRuntime.stop

    def _stop(self):
        stopped.append(self)
        original_stop(self)

    monkeypatch.setattr(cli, "make_server", _make_server)
    monkeypatch.setattr(ServiceRuntime, "stop", _stop)
    return created, stopped


def test_cli_flags_override_config_file(tmp_path, servers):
    created, stopped = servers
    path = tmp_path / "hot_tokens.toml"
    path.write_text('[hot_tokens]\nhost = "0.0.0.0"\nport = 9100\nlog_level = "WARNING"\n')

    code = cli.main(["--config", str(path), "--port", "9200", "--log-level", "debug"])

    assert code == 0
    (server,) = created
    assert server.host == "0.0.0.0"
    assert server.server_port == 9200
    assert server.threaded is True
    assert server.closed is True
    assert len(stopped) == 1
    assert not stopped[0].running
    assert logging.getLogger().level == logging.DEBUG
    assert {rule.rule for rule in server.app.url_map.iter_rules()} >= {"/hot-tokens", "/hot-tokens/stats", "/health"}


def test_cli_defaults_without_flags(servers):
    created, _ = servers
    assert cli.main([]) == 0
    (server,) = created
    assert (server.host, server.server_port) == ("127.0.0.1", 8000)


def test_invalid_config_exits_with_status_2(tmp_path, servers):
    created, _ = servers
    path = tmp_path / "bad.toml"
    path.write_text("[hot_tokens]\ncache_ttl = -1\n")

    assert cli.main(["--config", str(path)]) == 2
    assert cli.main(["--config", str(tmp_path / "missing.toml")]) == 2
    assert created == []
