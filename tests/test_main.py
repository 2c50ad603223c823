"""Tests for the command line interface."""
import json

import pytest

from canvasnote.main import main, parse_args


@pytest.fixture
def cli_data_dir(test_config, tmp_path):
    """Data directory handed to the CLI; config changes are rolled back."""
    data_dir = tmp_path / "cli-data"
    return data_dir


def run_cli(capsys, *argv):
    code = main(list(argv))
    captured = capsys.readouterr()
    return code, captured.out, captured.err


class TestParseArgs:
    def test_search_options(self):
        args = parse_args(["search", "alpha", "--type", "card", "--type", "journal",
                           "--from", "10", "--to", "20", "--limit", "5"])
        assert args.command == "search"
        assert args.types == ["card", "journal"]
        assert (args.date_from, args.date_to, args.limit) == (10, 20, 5)

    def test_command_is_required(self):
        with pytest.raises(SystemExit):
            parse_args([])


class TestCommands:
    """End-to-end runs of each subcommand."""

    def test_init_creates_layout_and_database(self, capsys, cli_data_dir):
        code, out, _ = run_cli(capsys, "--data-dir", str(cli_data_dir),
                               "--database-path", "db/search.db", "init")
        assert code == 0
        assert (cli_data_dir / "assets" / "pdfs").is_dir()
        assert (cli_data_dir / "db" / "search.db").is_file()
        assert json.loads(out)["data_dir"] == str(cli_data_dir)

    def test_ingest_resolve_delete(self, capsys, cli_data_dir, tmp_path):
        source = tmp_path / "paper.pdf"
        source.write_bytes(b"%PDF")

        code, out, _ = run_cli(capsys, "--data-dir", str(cli_data_dir),
                               "ingest", str(source), "--file-type", "pdf")
        assert code == 0
        locator = json.loads(out)["locator"]
        assert locator.startswith("pdfs/")

        code, out, _ = run_cli(capsys, "--data-dir", str(cli_data_dir), "resolve", locator)
        assert json.loads(out)["exists"] is True

        code, out, _ = run_cli(capsys, "--data-dir", str(cli_data_dir), "delete-asset", locator)
        assert json.loads(out)["deleted"] is True

    def test_search_and_stats_on_empty_index(self, capsys, cli_data_dir):
        code, out, _ = run_cli(capsys, "--data-dir", str(cli_data_dir),
                               "--database-path", "db/search.db", "search", "alpha")
        assert code == 0
        assert json.loads(out) == []

        code, out, _ = run_cli(capsys, "--data-dir", str(cli_data_dir),
                               "--database-path", "db/search.db", "stats")
        payload = json.loads(out)
        assert payload["index"]["records"] == 0
        assert "search_load" in payload["metrics"]["operations_tracked"]
        assert payload["operations"]["search_load"]["error_count"] == 0

    def test_errors_are_reported_as_json(self, capsys, cli_data_dir, tmp_path):
        code, _, err = run_cli(capsys, "--data-dir", str(cli_data_dir),
                               "ingest", str(tmp_path / "missing.pdf"))
        assert code == 1
        payload = json.loads(err.strip().splitlines()[-1])
        assert payload["code_name"] == "SOURCE_FILE_NOT_FOUND"

    def test_malformed_locator_fails(self, capsys, cli_data_dir):
        code, _, err = run_cli(capsys, "--data-dir", str(cli_data_dir), "resolve", "../etc/passwd")
        assert code == 1
        assert "INVALID_LOCATOR" in err
