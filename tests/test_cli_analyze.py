from __future__ import annotations

import json
from hashlib import sha256

import pytest
from click.testing import CliRunner
from loguru import logger

from contractflags import __version__
from contractflags.cli import main
from contractflags.models import Source
from tests.cli_support import BENIGN_TEXT, use_default_settings, write_contract
from tests.docx_factory import create_contract_docx
from tests.fakes import FakeAnalyzer, raw_finding


@pytest.fixture(autouse=True)
def default_settings(monkeypatch):
    use_default_settings(monkeypatch)
    yield
    logger.remove()


def test_cli_analyze_single_file(tmp_path):
    runner = CliRunner()
    path = write_contract(tmp_path)

    result = runner.invoke(main, ["analyze", "-a", "rule_engine", str(path)])

    assert result.exit_code == 0
    payload = json.loads(result.output)
    assert payload["tool"] == "contractflags-analyze"
    assert payload["contractflags_version"] == __version__

    entry = payload["files"][0]
    assert entry["path"] == str(path)
    assert entry["sha256"] == sha256(path.read_bytes()).hexdigest()
    assert entry["partialFailures"] == []

    analysis = entry["result"]
    assert analysis["documentRef"] == str(path)
    assert analysis["totalFlags"] == 3
    assert analysis["totalFlags"] == len(analysis["findings"])
    assert analysis["summary"]["bySource"]["rule_engine"] == 3
    assert 0 <= analysis["overallRiskScore"] <= 10
    assert [item["id"] for item in entry["items"]] == ["1", "2", "3"]
    assert {item["location"] for item in entry["items"]} == {"Section 2.3", "Section 6.1", "Section 8.2"}


def test_cli_analyze_docx(tmp_path):
    runner = CliRunner()
    path = create_contract_docx(
        tmp_path,
        "merger.docx",
        ["Section 8.2 Limitation of Liability", "Party A shall be liable for all damages."],
    )

    result = runner.invoke(main, ["analyze", "--analyzer", "rule_engine", str(path)])

    assert result.exit_code == 0
    payload = json.loads(result.output)
    [item] = payload["files"][0]["items"]
    assert item["title"] == "Unlimited Liability Clause"
    assert item["location"] == "Section 8.2"


def test_cli_analyze_filters_items_but_keeps_full_result(tmp_path):
    runner = CliRunner()
    path = write_contract(tmp_path)

    result = runner.invoke(
        main,
        ["analyze", "-a", "rule_engine", "--severity", "critical", "--sort", "title", str(path)],
    )

    assert result.exit_code == 0
    entry = json.loads(result.output)["files"][0]
    assert [item["title"] for item in entry["items"]] == [
        "Unlimited Liability Clause",
        "IP Ownership Ambiguity",
    ]
    assert entry["result"]["totalFlags"] == 3


def test_cli_analyze_multiple_files_sorted(tmp_path):
    runner = CliRunner()
    second = write_contract(tmp_path, "b.txt")
    first = write_contract(tmp_path, "a.txt", BENIGN_TEXT)

    result = runner.invoke(main, ["analyze", "-a", "rule_engine", str(tmp_path / "*.txt")])

    assert result.exit_code == 0
    payload = json.loads(result.output)
    assert [entry["path"] for entry in payload["files"]] == [str(first), str(second)]
    assert payload["files"][0]["items"] == []


def test_cli_analyze_table_output(tmp_path):
    runner = CliRunner()
    path = write_contract(tmp_path)

    result = runner.invoke(
        main,
        ["analyze", "-a", "rule_engine", "--format", "table", "--category", "liability", str(path)],
    )

    assert result.exit_code == 0
    assert str(path) in result.output
    assert "1 flags match your filters" in result.output
    assert "Unlimited Liability Clause" in result.output
    assert "IP Ownership Ambiguity" not in result.output


def test_cli_analyze_writes_output_file(tmp_path):
    runner = CliRunner()
    path = write_contract(tmp_path)
    output = tmp_path / "report.json"

    result = runner.invoke(main, ["analyze", "-a", "rule_engine", "-o", str(output), str(path)])

    assert result.exit_code == 0
    assert result.output == ""
    payload = json.loads(output.read_text())
    assert payload["files"][0]["result"]["totalFlags"] == 3


def test_cli_analyze_fail_on_findings(tmp_path):
    runner = CliRunner()
    risky = write_contract(tmp_path)
    benign = write_contract(tmp_path, "notices.txt", BENIGN_TEXT)

    assert runner.invoke(main, ["analyze", "-a", "rule_engine", "-f", str(risky)]).exit_code == 1
    assert runner.invoke(main, ["analyze", "-a", "rule_engine", "-f", str(benign)]).exit_code == 0
    assert runner.invoke(
        main, ["analyze", "-a", "rule_engine", "-f", "--severity", "MEDIUM", str(risky)]
    ).exit_code == 0


def test_cli_analyze_verbose_reports_progress(tmp_path):
    runner = CliRunner()
    path = write_contract(tmp_path)
    output = tmp_path / "report.json"

    result = runner.invoke(main, ["analyze", "-a", "rule_engine", "-v", "-o", str(output), str(path)])

    assert result.exit_code == 0
    assert "Processing 1 file(s)..." in result.output
    assert "[100%] complete" in result.output
    assert "Summary: LOW=0 MEDIUM=1 HIGH=0 CRITICAL=2" in result.output


def test_cli_analyze_missing_file(tmp_path):
    runner = CliRunner()

    result = runner.invoke(main, ["analyze", str(tmp_path / "missing.txt")])

    assert result.exit_code != 0
    assert "No files matched" in result.output


def test_cli_analyze_unreadable_document(tmp_path):
    runner = CliRunner()
    path = write_contract(tmp_path, "empty.txt", "")

    result = runner.invoke(main, ["analyze", "-a", "rule_engine", str(path)])

    assert result.exit_code == 1
    assert "Error:" in result.output


def test_cli_analyze_closes_analyzers_after_each_document(tmp_path, monkeypatch):
    built = []

    def fake_build(settings):
        analyzer = FakeAnalyzer(Source.ANALYZER_A, [raw_finding()])
        built.append(analyzer)
        return {Source.ANALYZER_A: analyzer}

    monkeypatch.setattr("contractflags.cli.build_analyzers", fake_build)
    good = write_contract(tmp_path, "a.txt")
    empty = write_contract(tmp_path, "b.txt", "")

    result = CliRunner().invoke(main, ["analyze", "-a", "analyzer_a", str(good), str(empty)])

    assert result.exit_code == 1
    assert [analyzer.closed for analyzer in built] == [1, 1]


def test_cli_analyze_rejects_unknown_analyzer(tmp_path):
    runner = CliRunner()
    path = write_contract(tmp_path)

    result = runner.invoke(main, ["analyze", "-a", "analyzer_z", str(path)])

    assert result.exit_code == 2
