import json

import pytest

from tradepilot.cli import EXIT_FAILURE, EXIT_OK, build_parser, main
from tradepilot.logging_config import setup_logging

VEHICLE_ARGS = ["--year", "2020", "--make", "Toyota", "--model", "Camry", "--ask-price", "32000"]


@pytest.fixture
def run(tmp_path, monkeypatch):
    for name in ("OPENAI_API_KEY", "FIRECRAWL_API_KEY", "TRADEPILOT_DB_PATH", "TRADEPILOT_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    base = [
        "--config",
        str(tmp_path / "absent.yaml"),
        "--db-path",
        str(tmp_path / "cli.db"),
    ]

    def _run(*argv):
        return main(base + list(argv))

    yield _run
    setup_logging(console=False)


def test_parser_requires_a_command():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_message_rejects_unknown_tone():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["message", *VEHICLE_ARGS, "--tone", "angry"])


def test_plan_then_usage(run, capsys):
    assert run("--json", "plan", "--org", "org-1", "PREMIUM") == EXIT_OK
    plan = json.loads(capsys.readouterr().out)
    assert plan["daily_limit"] == 100
    assert plan["plan_name"] == "Premium"

    assert run("--json", "usage", "--org", "org-1") == EXIT_OK
    usage = json.loads(capsys.readouterr().out)
    assert usage["plan"] == "PREMIUM"
    assert usage["allowed"] is True
    assert usage["usage"]["today"] == 0
    assert usage["message"] == "100 analyses remaining today"


def test_analyze_counts_usage_until_quota(run, capsys):
    for _ in range(3):
        assert run("--json", "analyze", "--org", "org-1", *VEHICLE_ARGS) == EXIT_OK
        outcome = json.loads(capsys.readouterr().out)
        assert outcome["success"] is True
        assert outcome["result"]["valuation"]["source"] == "heuristic"

    assert run("--json", "analyze", "--org", "org-1", *VEHICLE_ARGS) == EXIT_FAILURE
    outcome = json.loads(capsys.readouterr().out)
    assert outcome["error"] == "quota_exceeded"
    assert outcome["usage"]["current_usage"] == 3


def test_analyze_text_output(run, capsys):
    assert run("analyze", "--org", "org-2", *VEHICLE_ARGS) == EXIT_OK

    out = capsys.readouterr().out
    assert "Vehicle: 2020 Toyota Camry" in out
    assert "Recommendation: SKIP" in out
    assert "Usage: 2 analyses remaining today" in out


def test_scrape_with_only_invalid_urls_fails(run, capsys):
    assert run("--json", "scrape", "not-a-url") == EXIT_FAILURE

    report = json.loads(capsys.readouterr().out)
    assert report["scraping"]["total_scraped"] == 0
    assert report["scraping"]["failed_urls"][0]["status"] == "invalid"


def test_summary_without_ai(run, capsys):
    assert run("summary", *VEHICLE_ARGS) == EXIT_OK

    out = capsys.readouterr().out
    assert "Recommendation: SKIP (heuristic)" in out
    assert "AI summary unavailable" in out


def test_message_without_ai_uses_template(run, capsys):
    assert run("--json", "message", *VEHICLE_ARGS, "--seller", "Sam") == EXIT_OK

    message = json.loads(capsys.readouterr().out)["message"]
    assert message.startswith("Hi Sam,")
    assert "2020 Toyota Camry" in message
