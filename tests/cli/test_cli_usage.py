"""
Command-line flag handling: a missing flag prints the usage line and exits cleanly.
"""

from typer.testing import CliRunner

from moqrelay.cli import main as cli_main
from moqrelay.cli.main import CLIENT_OUTPUT_USAGE, CLIENT_PLAYLIST_USAGE, SERVER_USAGE, app

runner = CliRunner()


def test_server_without_moqrs_dir_prints_usage():
    result = runner.invoke(app, [])
    assert result.exit_code == 0
    assert SERVER_USAGE in result.output


def test_client_without_playlist_prints_usage():
    result = runner.invoke(app, ["--client", "--output-dir", "out"])
    assert result.exit_code == 0
    assert CLIENT_PLAYLIST_USAGE in result.output


def test_client_without_output_dir_prints_usage():
    result = runner.invoke(app, ["--client", "--playlist", "iptv/index.m3u"])
    assert result.exit_code == 0
    assert CLIENT_OUTPUT_USAGE in result.output


def test_client_update_failure_exits_nonzero(tmp_path, monkeypatch):
    monkeypatch.setattr(cli_main, "configure_logging", lambda: None)
    result = runner.invoke(
        app,
        ["--client", "--update", "--playlist", str(tmp_path / "missing.m3u"), "--output-dir", str(tmp_path / "out")],
    )
    assert result.exit_code == 1


def test_client_runs_with_given_paths(tmp_path, monkeypatch):
    seen = {}

    class StubClient:
        def __init__(self, catalog_root, output_dir, config=None):
            seen["catalog_root"] = catalog_root
            seen["output_dir"] = output_dir

        async def run(self):
            return "pub0"

    monkeypatch.setattr(cli_main, "configure_logging", lambda: None)
    monkeypatch.setattr(cli_main, "SubscribeClient", StubClient)
    playlist = tmp_path / "iptv" / "index.m3u"

    result = runner.invoke(app, ["--client", "--playlist", str(playlist), "--output-dir", str(tmp_path / "out")])

    assert result.exit_code == 0
    assert seen == {"catalog_root": playlist.parent, "output_dir": tmp_path / "out"}
