"""Fixtures and helpers for allocation tests."""
from __future__ import annotations

import csv
from pathlib import Path
from typing import Dict, Iterable, List, Sequence

from pizza_allocation import PizzaCatalogEntry, RankedChoice, VoteRecord

PIZZA_COLUMNS: Sequence[str] = ("PizzaId", "Name", "Toppings")
VOTE_COLUMNS: Sequence[str] = ("VoterId", "Voter", "Slices", "Choice 1", "Choice 2", "Choice 3")

CATALOG: List[PizzaCatalogEntry] = [
    PizzaCatalogEntry("A", "Margherita", 1),
    PizzaCatalogEntry("B", "Pepperoni", 1),
    PizzaCatalogEntry("C", "Hawaiian", 2),
    PizzaCatalogEntry("D", "Veggie", 2),
]


def vote(voter: str, slices: int, *choices: str, voter_id: str | None = None) -> VoteRecord:
    """Build a vote whose choices are ranked in argument order."""

    return VoteRecord(
        voter_id=voter_id or voter.lower(),
        voter_name=voter,
        slice_count=slices,
        choices=tuple(RankedChoice(pid, idx + 1) for idx, pid in enumerate(choices)),
    )


def pizza_row(pid: str, name: str, toppings: int = 0) -> Dict[str, str]:
    return {"PizzaId": pid, "Name": name, "Toppings": str(toppings)}


def vote_row(voter_id: str, voter: str, slices: int, choices: Iterable[str]) -> Dict[str, str]:
    row = {col: "" for col in VOTE_COLUMNS}
    row.update({"VoterId": voter_id, "Voter": voter, "Slices": str(slices)})
    for idx, pid in enumerate(choices):
        row[f"Choice {idx + 1}"] = pid
    return row


def write_rows(path: Path, columns: Sequence[str], rows: Iterable[Dict[str, str]]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8", newline="") as handle:
        writer = csv.DictWriter(handle, fieldnames=list(columns))
        writer.writeheader()
        for row in rows:
            writer.writerow(row)


def write_inputs(tmp_path: Path, votes: Iterable[Dict[str, str]], pizzas: Iterable[Dict[str, str]] | None = None,
                 prefix: str = "case") -> Dict[str, Path]:
    if pizzas is None:
        pizzas = [pizza_row(p.pizza_id, p.name, p.topping_count) for p in CATALOG]
    votes_path = tmp_path / f"{prefix}_votes.csv"
    pizzas_path = tmp_path / f"{prefix}_pizzas.csv"
    write_rows(votes_path, VOTE_COLUMNS, votes)
    write_rows(pizzas_path, PIZZA_COLUMNS, pizzas)
    return {"votes": votes_path, "pizzas": pizzas_path}
