import json

from typer.testing import CliRunner

from novelfetch import cli
from novelfetch.cli import app

runner = CliRunner()


def test_no_arguments_prints_minimal_help():
    result = runner.invoke(app, [])
    assert result.exit_code == 0
    assert "novelfetch analyze <url>" in result.stdout


def test_help_full_lists_exit_codes():
    result = runner.invoke(app, ["--help-full"])
    assert result.exit_code == 0
    assert "Exit codes:" in result.stdout
    assert "NOVELFETCH_MAX_TOC_PAGES" in result.stdout


def test_find_searches_the_index():
    result = runner.invoke(app, ["--find", "user-agent"])
    assert result.exit_code == 0
    lines = result.stdout.strip().splitlines()
    assert "flag --user-agent - User-Agent to reuse from the crawl session." in lines
    assert any(line.startswith("env NOVELFETCH_USER_AGENT") for line in lines)


def test_doctor_flag_prints_report():
    result = runner.invoke(app, ["--doctor"])
    assert result.exit_code in (0, 2)
    assert result.stdout.startswith("novelfetch doctor")
    assert "Effective configuration:" in result.stdout


def test_analyze_rejects_bad_url_before_fetching():
    result = runner.invoke(app, ["analyze", "ftp://novels.example/toc", "--json"])
    assert result.exit_code == 2


def test_batch_missing_manifest_is_bad_input(tmp_path):
    result = runner.invoke(app, ["batch", str(tmp_path / "nope.json"), "--json"])
    assert result.exit_code == 2


def test_batch_prints_summary_json(monkeypatch, tmp_path):
    manifest = tmp_path / "chapters.txt"
    manifest.write_text("https://n.example/c/1\n", encoding="utf-8")
    seen = {}

    def fake_run_batch(chapters, **kwargs):
        seen["chapters"] = chapters
        seen.update(kwargs)
        return {"command": "batch", "counts": {"total": 1, "ok": 1, "failed": 0}}, 0

    monkeypatch.setattr(cli, "run_batch", fake_run_batch)
    result = runner.invoke(app, ["batch", str(manifest), "--json", "--user-agent", "UA/1"])

    assert result.exit_code == 0
    assert json.loads(result.stdout)["counts"]["ok"] == 1
    assert seen["chapters"] == [{"title": "Chapter", "url": "https://n.example/c/1"}]
    assert seen["user_agent"] == "UA/1"
