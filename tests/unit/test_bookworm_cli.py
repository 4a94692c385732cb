import json

from bookworm.domain.errors import NotConfiguredError
from bookworm.infrastructure.queue import jobs
from bookworm.presentation.cli import main as cli_main


def test_cli_crawl_parser_flags():
    parser = cli_main.create_parser()
    args = parser.parse_args(
        [
            "crawl",
            "--take",
            "5",
            "--lists",
            "3",
            "--per-list",
            "10",
            "--min-rating",
            "3.5",
            "--delay-ms",
            "0",
            "--steps",
        ]
    )

    assert args.command == "crawl"
    assert args.take == 5
    assert args.lists == 3
    assert args.per_list == 10
    assert args.min_rating == 3.5
    assert args.delay_ms == 0
    assert args.steps is True


def test_cli_rank_json_output(monkeypatch, capsys):
    monkeypatch.setattr(jobs, "rank_stored_suggestions", lambda cleanup=False: ([], 2 if cleanup else 0))

    exit_code = cli_main.run_cli(["rank", "--cleanup"])
    captured = capsys.readouterr()

    assert exit_code == 0
    payload = json.loads(captured.out)
    assert payload == {"count": 0, "removedOwned": 2, "items": []}


def test_cli_sync_without_path_fails(capsys):
    exit_code = cli_main.run_cli(["sync"])
    captured = capsys.readouterr()

    assert exit_code == 1
    assert "Calibre path not configured" in captured.err


def test_cli_want_sync_reports_missing_key(monkeypatch, capsys):
    async def _missing(settings=None):
        raise NotConfiguredError("Hardcover API key not configured.")

    monkeypatch.setattr(jobs, "run_want_sync", _missing)

    assert cli_main.run_cli(["want-sync"]) == 1
    assert "Hardcover API key" in capsys.readouterr().err


def test_cli_without_command_prints_help(capsys):
    assert cli_main.run_cli([]) == 0
    assert "usage: bookworm" in capsys.readouterr().out
