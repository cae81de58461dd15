from __future__ import annotations

import csv
import json
import subprocess
import sys
from pathlib import Path

import report_pizza_order as reporter
from pizza_allocation import generate_report
from tests.utils import CATALOG, vote, vote_row, write_inputs

ROOT = Path(__file__).resolve().parents[1]


def _run(args, cwd=ROOT, check=True):
    cmd = [sys.executable, str(ROOT / "report_pizza_order.py"), *[str(a) for a in args]]
    if check:
        return subprocess.check_call(cmd, cwd=cwd)
    return subprocess.run(cmd, cwd=cwd, capture_output=True, text=True)


def test_report_cli_writes_all_artifacts(tmp_path: Path) -> None:
    paths = write_inputs(
        tmp_path,
        [
            vote_row("u1", "Ann", 4, ["A", "B"]),
            vote_row("u2", "Bob", 4, ["A", "C"]),
            vote_row("u3", "Cara", 2, ["D", "C"]),
            vote_row("u4", "Dan", 2, ["C", "A"]),
        ],
    )
    out = tmp_path / "report.json"
    orders = tmp_path / "orders.csv"
    summary = tmp_path / "summary.txt"
    decision_log = tmp_path / "log.csv"

    _run([
        "--votes", paths["votes"],
        "--pizzas", paths["pizzas"],
        "--out", out,
        "--orders-out", orders,
        "--summary", summary,
        "--decision-log", decision_log,
    ])

    data = json.loads(out.read_text(encoding="utf-8"))
    # Cara and Dan start thin; Cara merges into Dan's Hawaiian, Dan leaves it
    # for Margherita, then Cara is alone on Hawaiian and runs out of choices.
    assert [(o["name"], o["quantity"], o["slices_requested"]) for o in data["orders"]] == [("Margherita", 1, 10)]
    assert data["summary"] == {"total_voters": 4, "total_slices_requested": 12}
    assert "Margherita (2 slices, below half-pizza threshold)" in data["dropped_options"]
    assert "Cara's 2 slices couldn't be allocated (no viable options)" in data["dropped_options"]
    assert data["voter_breakdown"][2]["allocated_to"] == "Not allocated"

    rows = list(csv.DictReader(orders.open(encoding="utf-8")))
    assert rows == [{"Pizza": "Margherita", "Quantity": "1", "SlicesRequested": "10", "Voters": "3"}]

    text = summary.read_text(encoding="utf-8")
    assert "Voters: 4 (slices requested=12)" in text
    assert "1 x Margherita" in text
    assert "Dan: 2 slices, Hawaiian > Margherita -> Margherita" in text

    log_rows = list(csv.DictReader(decision_log.open(encoding="utf-8")))
    assert [r["Status"] for r in log_rows].count("Exhausted") == 1


def test_report_cli_accepts_snapshot_and_config(tmp_path: Path) -> None:
    snapshot = tmp_path / "snapshot.json"
    snapshot.write_text(
        json.dumps(
            {
                "pizzas": [
                    {"id": "A", "name": "Margherita", "topping_count": 1},
                    {"id": "B", "name": "Pepperoni", "topping_count": 1},
                ],
                "votes": [
                    {"voter_id": "u1", "voter_name": "Ann", "slice_count": 4,
                     "choices": [{"pizza_id": "A", "priority": 1}]},
                    {"voter_id": "u2", "voter_name": "Bob", "slice_count": 4,
                     "choices": [{"pizza_id": "B", "priority": 1}]},
                ],
            }
        ),
        encoding="utf-8",
    )
    config = tmp_path / "config.json"
    config.write_text(json.dumps({"HALF_PIZZAS": {"ENABLED": True}}), encoding="utf-8")
    out = tmp_path / "report.json"

    _run([
        "--snapshot", snapshot,
        "--config", config,
        "--out", out,
        "--orders-out", tmp_path / "orders.csv",
        "--summary", "-",
        "--decision-log", "-",
    ])

    data = json.loads(out.read_text(encoding="utf-8"))
    assert data["orders"] == []
    assert data["half_pizzas"] == [{"half1": "Margherita", "half2": "Pepperoni", "quantity": 1}]
    assert data["total_pizzas"] == 1
    assert not (tmp_path / "log.csv").exists()


def test_report_cli_rejects_unknown_pizza(tmp_path: Path) -> None:
    paths = write_inputs(tmp_path, [vote_row("u1", "Ann", 4, ["Z"])])
    proc = _run(
        ["--votes", paths["votes"], "--pizzas", paths["pizzas"], "--out", tmp_path / "r.json"],
        check=False,
    )
    assert proc.returncode != 0
    assert "Invalid input" in proc.stderr
    assert not (tmp_path / "r.json").exists()


def test_summary_flags_unsettled_allocation() -> None:
    report = generate_report([vote("Ann", 2, "A", "B", "C")], CATALOG, {"MAX_ITERATIONS": 2})
    lines = reporter.summary_lines(report)

    assert "No pizzas to order." in lines
    assert lines[-1] == "Warning: allocation stopped after 2 passes without settling"


def test_order_rows_include_half_pizzas() -> None:
    votes = [vote("Ann", 12, "A"), vote("Bob", 4, "B")]
    report = generate_report(votes, CATALOG, {"HALF_PIZZAS": {"ENABLED": True}})
    rows = reporter.order_rows(report)

    assert rows[0] == {"Pizza": "Margherita", "Quantity": 1, "SlicesRequested": 12, "Voters": 1}
    assert rows[1]["Pizza"] == "Half Margherita / Half Pepperoni"


def test_summary_has_no_warning_when_cap_pass_settles() -> None:
    report = generate_report([vote("Ann", 2, "A", "B", "C")], CATALOG, {"MAX_ITERATIONS": 3})
    lines = reporter.summary_lines(report)

    assert not any(line.startswith("Warning") for line in lines)


def test_report_cli_rejects_malformed_config(tmp_path: Path) -> None:
    paths = write_inputs(tmp_path, [vote_row("u1", "Ann", 4, ["A"])])
    config = tmp_path / "config.json"
    config.write_text(json.dumps({"HALF_PIZZAS": True, "MAX_ITERATIONS": None}), encoding="utf-8")
    proc = _run(
        ["--votes", paths["votes"], "--pizzas", paths["pizzas"], "--config", config, "--out", tmp_path / "r.json"],
        check=False,
    )
    assert proc.returncode != 0
    assert "Invalid config" in proc.stderr
    assert "Traceback" not in proc.stderr
