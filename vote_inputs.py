#!/usr/bin/env python3
"""Load vote and pizza catalog snapshots for the allocation engine.

Two layouts are accepted:

* a pair of CSV exports

    pizzas.csv  PizzaId,Name,Toppings
    votes.csv   VoterId,Voter,Slices,Choice 1,Choice 2,Choice 3

  Choice cells hold pizza ids in priority order; the first blank cell ends the
  ranked list. Extra ``Choice N`` columns are read the same way.

* a single JSON snapshot with ``pizzas`` and ``votes`` arrays.

Either CSV can be pulled from a published export URL first; the download is
cached locally and skipped when the cache already exists.
"""

from __future__ import annotations

import csv
import io
import json
import re
import ssl
import urllib.request
from pathlib import Path
from typing import Dict, List, Tuple

import certifi

from pizza_allocation import AllocationInputError, PizzaCatalogEntry, RankedChoice, VoteRecord

PIZZA_COLUMNS = ("PizzaId", "Name", "Toppings")
VOTE_COLUMNS = ("VoterId", "Voter", "Slices")
CHOICE_COL_RE = re.compile(r"^Choice\s*(\d+)$", re.IGNORECASE)


# ---------------------------- I/O ------------------------------------

def download_if_needed(url: str, dest: Path, force: bool = False) -> Path:
    if dest.exists() and not force:
        return dest
    ctx = ssl.create_default_context(cafile=certifi.where())
    req = urllib.request.Request(url, headers={"User-Agent": "Mozilla/5.0 (PizzaOrder/1.0)"})
    with urllib.request.urlopen(req, context=ctx) as resp:
        data = resp.read()
    dest.parent.mkdir(parents=True, exist_ok=True)
    dest.write_bytes(data)
    return dest


def read_csv_rows(path: Path) -> List[Dict[str, str]]:
    if not path.exists():
        raise AllocationInputError(f"Missing file: {path}")
    text = path.read_bytes().decode("utf-8-sig", errors="replace")
    return list(csv.DictReader(io.StringIO(text)))


def trim(s: str) -> str:
    return (s or "").strip()


def to_int(value: object, what: str) -> int:
    try:
        return int(trim(str(value)))
    except (TypeError, ValueError):
        raise AllocationInputError(f"{what} is not an integer: {value!r}") from None


def _require_columns(rows: List[Dict[str, str]], columns: Tuple[str, ...], path: Path) -> None:
    if not rows:
        return
    missing = [c for c in columns if c not in rows[0]]
    if missing:
        raise AllocationInputError(f"{path} is missing columns: {', '.join(missing)}")


# ------------------------ CSV layout ----------------------------------

def load_pizzas_csv(path: Path) -> List[PizzaCatalogEntry]:
    rows = read_csv_rows(path)
    _require_columns(rows, PIZZA_COLUMNS, path)
    pizzas: List[PizzaCatalogEntry] = []
    for row in rows:
        pid = trim(row.get("PizzaId"))
        if not pid:
            continue
        toppings = trim(row.get("Toppings"))
        pizzas.append(
            PizzaCatalogEntry(
                pizza_id=pid,
                name=trim(row.get("Name")) or pid,
                topping_count=to_int(toppings, f"Toppings for pizza '{pid}'") if toppings else 0,
            )
        )
    return pizzas


def choice_columns(header: List[str]) -> List[str]:
    numbered = []
    for col in header:
        m = CHOICE_COL_RE.match(trim(col))
        if m:
            numbered.append((int(m.group(1)), col))
    return [col for _, col in sorted(numbered)]


def load_votes_csv(path: Path) -> List[VoteRecord]:
    rows = read_csv_rows(path)
    _require_columns(rows, VOTE_COLUMNS, path)
    if not rows:
        return []
    columns = choice_columns(list(rows[0].keys()))
    votes: List[VoteRecord] = []
    for row in rows:
        voter_id = trim(row.get("VoterId"))
        if not voter_id:
            continue
        choices: List[RankedChoice] = []
        for col in columns:
            pid = trim(row.get(col))
            if not pid:
                break
            choices.append(RankedChoice(pizza_id=pid, priority=len(choices) + 1))
        votes.append(
            VoteRecord(
                voter_id=voter_id,
                voter_name=trim(row.get("Voter")) or voter_id,
                slice_count=to_int(row.get("Slices"), f"Slices for voter '{voter_id}'"),
                choices=tuple(choices),
            )
        )
    return votes


# ------------------------ JSON layout ---------------------------------

def load_snapshot(path: Path) -> Tuple[List[VoteRecord], List[PizzaCatalogEntry]]:
    if not path.exists():
        raise AllocationInputError(f"Missing file: {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8-sig"))
    except json.JSONDecodeError as exc:
        raise AllocationInputError(f"{path} is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise AllocationInputError(f"{path} must hold an object with 'pizzas' and 'votes'")
    try:
        return _parse_snapshot(data)
    except (KeyError, TypeError) as exc:
        raise AllocationInputError(f"{path} has a malformed entry: {exc!r}") from exc


def _parse_snapshot(data: dict) -> Tuple[List[VoteRecord], List[PizzaCatalogEntry]]:
    pizzas = [
        PizzaCatalogEntry(
            pizza_id=str(p["id"]),
            name=str(p.get("name") or p["id"]),
            topping_count=to_int(p.get("topping_count", 0), f"topping_count for pizza '{p['id']}'"),
        )
        for p in data.get("pizzas") or []
    ]
    votes: List[VoteRecord] = []
    for v in data.get("votes") or []:
        voter_id = str(v["voter_id"])
        choices = tuple(
            RankedChoice(pizza_id=str(c["pizza_id"]), priority=to_int(c["priority"], f"priority for '{voter_id}'"))
            for c in v.get("choices") or []
        )
        votes.append(
            VoteRecord(
                voter_id=voter_id,
                voter_name=str(v.get("voter_name") or voter_id),
                slice_count=to_int(v.get("slice_count"), f"slice_count for voter '{voter_id}'"),
                choices=choices,
            )
        )
    return votes, pizzas


def load_inputs(
    *,
    votes: Path | None = None,
    pizzas: Path | None = None,
    snapshot: Path | None = None,
) -> Tuple[List[VoteRecord], List[PizzaCatalogEntry]]:
    if snapshot is not None:
        return load_snapshot(snapshot)
    if votes is None or pizzas is None:
        raise AllocationInputError("Provide either a snapshot or both votes and pizzas CSVs")
    return load_votes_csv(votes), load_pizzas_csv(pizzas)
