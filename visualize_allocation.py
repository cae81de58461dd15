#!/usr/bin/env python3
"""Draw where the waterfall moved each voter's slices.

Produces two images for one event:

* a directed graph with one node per pizza option (plus ``Not allocated``),
  edges from a voter's first choice to the option they ended on, weighted by
  the slices that moved;
* a bar chart comparing first-choice demand, final demand and the slices
  actually ordered per pizza.
"""
from __future__ import annotations

import argparse
import json
from collections import defaultdict
from pathlib import Path
from typing import Dict, List, Tuple

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt
from matplotlib.lines import Line2D
import networkx as nx

from pizza_allocation import NOT_ALLOCATED, AllocationInputError, Report, build_config, generate_report
from vote_inputs import load_inputs

LAYOUT_CHOICES = ("spring", "circular", "shell")


def parse_args() -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Visualize waterfall pizza allocation")
    ap.add_argument("--votes", default="votes.csv", type=Path)
    ap.add_argument("--pizzas", default="pizzas.csv", type=Path)
    ap.add_argument("--snapshot", type=Path, help="JSON snapshot with 'pizzas' and 'votes'")
    ap.add_argument("--config", type=Path, help="Optional JSON file with engine config overrides")
    ap.add_argument("--graph-out", default=Path("reports") / "allocation_graph.png", type=Path)
    ap.add_argument("--chart-out", default=Path("reports") / "allocation_demand.png", type=Path)
    ap.add_argument("--layout", choices=LAYOUT_CHOICES, default="spring")
    ap.add_argument("--dpi", type=int, default=150, help="Output DPI")
    return ap.parse_args()


def pizza_labels(report: Report) -> Dict[str, str]:
    """Map each pizza id seen in the report to its display name."""
    labels: Dict[str, str] = {}
    for row in report.voter_breakdown:
        for pid, (name, _prio) in zip(row.choice_ids, row.choices):
            labels.setdefault(pid, name)
    for line in report.orders:
        labels.setdefault(line.pizza_id, line.name)
    return labels


def demand_by_pizza(report: Report) -> Tuple[Dict[str, int], Dict[str, int]]:
    """Return (first-choice demand, final demand) keyed by pizza id."""
    first: Dict[str, int] = defaultdict(int)
    final: Dict[str, int] = defaultdict(int)
    for row in report.voter_breakdown:
        if row.choice_ids:
            first[row.choice_ids[0]] += row.slice_count
        final[row.allocated_id if row.allocated_id is not None else NOT_ALLOCATED] += row.slice_count
    return dict(first), dict(final)


def build_move_graph(report: Report) -> nx.DiGraph:
    first, final = demand_by_pizza(report)
    labels = pizza_labels(report)
    graph = nx.DiGraph()
    nodes: List[str] = []
    for row in report.voter_breakdown:
        for pid in row.choice_ids:
            if pid not in nodes:
                nodes.append(pid)
        dst = row.allocated_id if row.allocated_id is not None else NOT_ALLOCATED
        if dst not in nodes:
            nodes.append(dst)
    for node in nodes:
        sink = node == NOT_ALLOCATED
        graph.add_node(
            node,
            label=NOT_ALLOCATED if sink else labels.get(node, node),
            first=first.get(node, 0),
            final=final.get(node, 0),
            sink=sink,
        )

    for row in report.voter_breakdown:
        if not row.choice_ids:
            continue
        src = row.choice_ids[0]
        dst = row.allocated_id if row.allocated_id is not None else NOT_ALLOCATED
        if src == dst:
            continue
        if graph.has_edge(src, dst):
            graph[src][dst]["slices"] += row.slice_count
            graph[src][dst]["voters"] += 1
        else:
            graph.add_edge(src, dst, slices=row.slice_count, voters=1)
    return graph


def _layout(graph: nx.DiGraph, name: str) -> Dict[str, Tuple[float, float]]:
    if len(graph.nodes) == 1:
        return {next(iter(graph.nodes)): (0.0, 0.0)}
    if name == "circular":
        return nx.circular_layout(graph)
    if name == "shell":
        sinks = [n for n in graph.nodes if graph.nodes[n]["sink"]]
        rest = [n for n in graph.nodes if not graph.nodes[n]["sink"]]
        return nx.shell_layout(graph, nlist=[sinks, rest] if sinks else [rest])
    return nx.spring_layout(graph, seed=42)


def render_move_graph(graph: nx.DiGraph, out_path: Path, *, layout: str, dpi: int) -> Path:
    if not graph.nodes:
        raise RuntimeError("No pizza options to visualize")
    positions = _layout(graph, layout)
    fig, ax = plt.subplots(figsize=(11, 8))

    sizes = [400 + 120 * graph.nodes[n]["final"] for n in graph.nodes]
    colors = []
    for n in graph.nodes:
        attrs = graph.nodes[n]
        if attrs["sink"]:
            colors.append("#cb181d")
        elif attrs["final"] > 0:
            colors.append("#55a868")
        else:
            colors.append("#bdbdbd")
    nx.draw_networkx_nodes(graph, positions, node_color=colors, node_size=sizes, alpha=0.9, ax=ax,
                           linewidths=1.0, edgecolors="#2f2f2f")
    labels = {n: f"{attrs['label']}\n{attrs['first']}→{attrs['final']}" for n, attrs in graph.nodes(data=True)}
    nx.draw_networkx_labels(graph, positions, labels=labels, font_size=8, ax=ax,
                            bbox=dict(boxstyle="round,pad=0.2", facecolor="#ffffff", alpha=0.65, linewidth=0))

    if graph.edges:
        widths = [1.0 + 0.6 * graph[u][v]["slices"] for u, v in graph.edges]
        nx.draw_networkx_edges(graph, positions, width=widths, alpha=0.6, ax=ax, edge_color="#555555",
                               arrows=True, arrowsize=16, connectionstyle="arc3,rad=0.1")
        edge_labels = {(u, v): f"{graph[u][v]['slices']} sl" for u, v in graph.edges}
        nx.draw_networkx_edge_labels(graph, positions, edge_labels=edge_labels, font_size=7, ax=ax)

    handles = [
        Line2D([0], [0], marker="o", linestyle="", markerfacecolor=color, markeredgecolor="#2f2f2f", label=label)
        for color, label in (("#55a868", "ordered"), ("#bdbdbd", "emptied"), ("#cb181d", NOT_ALLOCATED))
    ]
    ax.legend(handles=handles, loc="upper right", fontsize=8, title="Final state")
    ax.set_title(f"Waterfall moves ({layout} layout), first choice → final slices")
    ax.set_axis_off()
    out_path.parent.mkdir(parents=True, exist_ok=True)
    fig.tight_layout()
    fig.savefig(out_path, dpi=dpi)
    plt.close(fig)
    return out_path


def render_demand_chart(report: Report, out_path: Path, *, slices_per_pizza: int, dpi: int) -> Path:
    first, final = demand_by_pizza(report)
    labels = pizza_labels(report)
    ordered = {line.pizza_id: line.quantity * slices_per_pizza for line in report.orders}
    for half in report.half_pizzas:
        for pid in (half.half1_id, half.half2_id):
            ordered[pid] = ordered.get(pid, 0) + slices_per_pizza // 2
    pids = [p for p in dict.fromkeys([*first, *final]) if p != NOT_ALLOCATED]

    fig, ax = plt.subplots(figsize=(max(8, len(pids) * 1.2), 5))
    xs = list(range(len(pids)))
    width = 0.27
    ax.bar([x - width for x in xs], [first.get(p, 0) for p in pids], width, label="first choice", color="#4c72b0")
    ax.bar(xs, [final.get(p, 0) for p in pids], width, label="after waterfall", color="#55a868")
    ax.bar([x + width for x in xs], [ordered.get(p, 0) for p in pids], width, label="ordered", color="#dd8452")
    ax.set_xticks(xs, [labels.get(p, p) for p in pids], rotation=20, ha="right")
    ax.set_ylabel("Slices")
    lost = final.get(NOT_ALLOCATED, 0)
    title = "Demand per pizza"
    if lost:
        title += f" ({lost} slices not allocated)"
    ax.set_title(title)
    ax.legend(loc="upper right", fontsize=8)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    fig.tight_layout()
    fig.savefig(out_path, dpi=dpi)
    plt.close(fig)
    return out_path


def main() -> None:
    args = parse_args()
    overrides = json.loads(args.config.read_text(encoding="utf-8")) if args.config else None
    try:
        if args.snapshot:
            votes, pizzas = load_inputs(snapshot=args.snapshot)
        else:
            votes, pizzas = load_inputs(votes=args.votes, pizzas=args.pizzas)
        cfg = build_config(overrides)
        report = generate_report(votes, pizzas, overrides)
    except AllocationInputError as exc:
        raise SystemExit(f"Invalid input: {exc}")
    except ValueError as exc:
        raise SystemExit(f"Invalid config: {exc}")

    graph = build_move_graph(report)
    path = render_move_graph(graph, args.graph_out, layout=args.layout, dpi=args.dpi)
    print(f"Wrote graph to {path}")
    path = render_demand_chart(report, args.chart_out, slices_per_pizza=int(cfg["SLICES_PER_PIZZA"]), dpi=args.dpi)
    print(f"Wrote chart to {path}")


if __name__ == "__main__":
    main()
