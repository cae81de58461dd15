#!/usr/bin/env python3
"""Build the pizza order recommendation for one event.

Reads the vote and catalog snapshot, runs the waterfall allocation and emits:

* ``pizza_report.json``   full report (orders, drops, per-voter breakdown)
* ``pizza_orders.csv``    one row per pizza to buy
* ``pizza_report.txt``    printable summary for the admin
* ``allocation_log.csv``  every waterfall decision, step by step
"""

from __future__ import annotations

import argparse
import csv
import json
from pathlib import Path
from typing import Dict, List

from pizza_allocation import AllocationInputError, AllocationLogger, Report, generate_report
from vote_inputs import download_if_needed, load_inputs

ORDER_COLUMNS = ["Pizza", "Quantity", "SlicesRequested", "Voters"]


def parse_args() -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Generate the pizza order report", formatter_class=argparse.ArgumentDefaultsHelpFormatter)
    ap.add_argument("--votes", default="votes.csv", type=Path, help="Votes CSV (VoterId,Voter,Slices,Choice 1..N)")
    ap.add_argument("--pizzas", default="pizzas.csv", type=Path, help="Pizza catalog CSV (PizzaId,Name,Toppings)")
    ap.add_argument("--snapshot", type=Path, help="JSON snapshot with 'pizzas' and 'votes' (replaces --votes/--pizzas)")
    ap.add_argument("--votes-url", help="Published CSV export to download into --votes first")
    ap.add_argument("--pizzas-url", help="Published CSV export to download into --pizzas first")
    ap.add_argument("--force-refresh", action="store_true", help="Download even when the local copy exists")
    ap.add_argument("--config", type=Path, help="Optional JSON file with engine config overrides")
    ap.add_argument("--out", default=Path("reports") / "pizza_report.json", type=Path, help="Where to write the JSON report")
    ap.add_argument("--orders-out", default=Path("reports") / "pizza_orders.csv", type=Path, help="Where to write the per-pizza order CSV")
    ap.add_argument("--summary", default=Path("reports") / "pizza_report.txt", type=Path, help="Printable summary (set to '-' to skip)")
    ap.add_argument("--decision-log", default=Path("reports") / "allocation_log.csv", type=Path, help="Allocation decisions CSV (set to '-' to skip)")
    return ap.parse_args()


def order_rows(report: Report) -> List[Dict[str, object]]:
    rows: List[Dict[str, object]] = [
        {
            "Pizza": line.name,
            "Quantity": line.quantity,
            "SlicesRequested": line.slices_requested,
            "Voters": line.voter_count,
        }
        for line in report.orders
    ]
    for half in report.half_pizzas:
        rows.append(
            {
                "Pizza": f"Half {half.half1} / Half {half.half2}",
                "Quantity": half.quantity,
                "SlicesRequested": "",
                "Voters": "",
            }
        )
    return rows


def write_orders(rows: List[Dict[str, object]], path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8", newline="") as handle:
        writer = csv.DictWriter(handle, fieldnames=ORDER_COLUMNS)
        writer.writeheader()
        for row in rows:
            writer.writerow(row)


def write_report_json(report: Report, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(report.to_dict(), indent=2, ensure_ascii=False) + "\n", encoding="utf-8")


def summary_lines(report: Report) -> List[str]:
    lines = ["Pizza order report"]
    lines.append(
        f"Voters: {report.total_voters} (slices requested={report.total_slices_requested})"
    )
    if not report.orders and not report.half_pizzas:
        lines.append("No pizzas to order.")
    else:
        lines.append(f"Order: {report.total_pizzas} pizzas (~{report.total_slices} slices)")
        for line in report.orders:
            lines.append(f"  {line.quantity} x {line.name} ({line.slices_requested} slices requested)")
        for half in report.half_pizzas:
            lines.append(f"  {half.quantity} x half {half.half1} / half {half.half2}")

    if report.dropped_options:
        lines.append("Dropped:")
        lines.extend(f"  - {text}" for text in report.dropped_options)

    lines.append("Voters:")
    for row in report.voter_breakdown:
        ranked = " > ".join(name for name, _prio in row.choices) or "(no choices)"
        lines.append(f"  {row.voter_name}: {row.slice_count} slices, {ranked} -> {row.allocated_to}")

    if not report.converged:
        lines.append(f"Warning: allocation stopped after {report.iterations} passes without settling")
    return lines


def write_summary(report: Report, path: Path) -> None:
    if str(path) == "-":
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(summary_lines(report)) + "\n", encoding="utf-8")


def main() -> None:
    args = parse_args()
    if args.votes_url:
        download_if_needed(args.votes_url, args.votes, force=args.force_refresh)
    if args.pizzas_url:
        download_if_needed(args.pizzas_url, args.pizzas, force=args.force_refresh)

    overrides = None
    if args.config:
        overrides = json.loads(args.config.read_text(encoding="utf-8"))

    log = AllocationLogger()
    try:
        if args.snapshot:
            votes, pizzas = load_inputs(snapshot=args.snapshot)
        else:
            votes, pizzas = load_inputs(votes=args.votes, pizzas=args.pizzas)
        report = generate_report(votes, pizzas, overrides, log=log)
    except AllocationInputError as exc:
        raise SystemExit(f"Invalid input: {exc}")
    except ValueError as exc:
        raise SystemExit(f"Invalid config: {exc}")

    write_report_json(report, args.out)
    write_orders(order_rows(report), args.orders_out)
    write_summary(report, args.summary)
    print(f"Wrote report to {args.out}")
    print(f"Wrote orders to {args.orders_out}")
    if str(args.summary) != "-":
        print(f"Summary saved to {args.summary}")
    if str(args.decision_log) != "-":
        log.write_csv(args.decision_log)
        print(f"Decision log saved to {args.decision_log}")


if __name__ == "__main__":
    main()
