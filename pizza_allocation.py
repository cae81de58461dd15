#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Pizza order allocation engine.

Turns ranked, weighted votes into a whole-pizza order:

* every voter starts on their priority-1 choice
* options whose demand is above zero but below ``MIN_VIABLE_SLICES`` are
  evicted and their voters fall through to the next-ranked choice
* the eviction pass repeats until nobody moves (capped at ``MAX_ITERATIONS``)
* final demand is rounded to whole pizzas; a remainder of at least
  ``ROUND_UP_REMAINDER`` slices buys one more pizza, anything less is dropped

Optional half-pizza mode pairs leftover half pizzas with the same topping
count onto one split pizza instead of rounding each up.

Nothing here performs I/O. Callers hand in a snapshot of votes and catalog
entries and get a :class:`Report` back.
"""

from __future__ import annotations

import copy
import csv
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

# =============== CONFIG ================================================
DEFAULT_CONFIG = {
    "SLICES_PER_PIZZA": 8,
    # Demand strictly below this (and above zero) is not worth keeping alive
    "MIN_VIABLE_SLICES": 4,
    # Remainder slices at or above this buy one more pizza (half a pizza)
    "ROUND_UP_REMAINDER": 4,
    "MAX_ITERATIONS": 10,
    # "name": slices desc, then pizza name, then catalog order
    # "catalog": slices desc, then catalog order
    "TIE_BREAK": "name",
    "HALF_PIZZAS": {
        "ENABLED": False,
        "MATCH_TOPPINGS": True,
    },
}

TIE_BREAK_CHOICES = ("name", "catalog")
NOT_ALLOCATED = "Not allocated"


def deep_update(dst: dict, src: dict) -> dict:
    """Recursively merge ``src`` into ``dst`` (in-place)."""

    for key, value in (src or {}).items():
        if isinstance(value, dict) and isinstance(dst.get(key), dict):
            deep_update(dst[key], value)
        else:
            dst[key] = copy.deepcopy(value)
    return dst


def _int_setting(cfg: dict, key: str) -> int:
    try:
        return int(cfg[key])
    except (TypeError, ValueError):
        raise ValueError(f"{key} must be an integer, got {cfg[key]!r}") from None


def _validate_config(cfg: dict) -> None:
    per_pizza = _int_setting(cfg, "SLICES_PER_PIZZA")
    if per_pizza <= 0:
        raise ValueError("SLICES_PER_PIZZA must be >0")
    for key in ("MIN_VIABLE_SLICES", "ROUND_UP_REMAINDER"):
        value = _int_setting(cfg, key)
        if value < 1 or value > per_pizza:
            raise ValueError(f"{key} must be within 1..{per_pizza}")
    if _int_setting(cfg, "MAX_ITERATIONS") < 1:
        raise ValueError("MAX_ITERATIONS must be >=1")
    if cfg["TIE_BREAK"] not in TIE_BREAK_CHOICES:
        raise ValueError(f"TIE_BREAK must be one of {', '.join(TIE_BREAK_CHOICES)}")
    if not isinstance(cfg["HALF_PIZZAS"], dict):
        raise ValueError("HALF_PIZZAS must be an object with ENABLED / MATCH_TOPPINGS")


def build_config(overrides: dict | None = None) -> dict:
    cfg = copy.deepcopy(DEFAULT_CONFIG)
    if overrides:
        deep_update(cfg, overrides)
    _validate_config(cfg)
    return cfg

# =====================================================================


class AllocationInputError(ValueError):
    """Raised when votes or catalog entries break a structural precondition."""


# -------------------- Input model --------------------
@dataclass(frozen=True)
class PizzaCatalogEntry:
    pizza_id: str
    name: str
    topping_count: int = 0


@dataclass(frozen=True)
class RankedChoice:
    pizza_id: str
    priority: int


@dataclass(frozen=True)
class VoteRecord:
    voter_id: str
    voter_name: str
    slice_count: int
    choices: Tuple[RankedChoice, ...] = ()


# -------------------- Output model --------------------
@dataclass
class OrderLine:
    pizza_id: str
    name: str
    quantity: int
    slices_requested: int
    voter_count: int = 0


@dataclass
class HalfPizzaLine:
    half1: str
    half2: str
    quantity: int = 1
    half1_id: Optional[str] = None
    half2_id: Optional[str] = None


@dataclass
class VoterBreakdown:
    voter_id: str
    voter_name: str
    slice_count: int
    choices: List[Tuple[str, int]]
    allocated_to: str
    # pizza ids alongside the display names above
    choice_ids: List[str] = field(default_factory=list)
    allocated_id: Optional[str] = None


@dataclass
class Report:
    orders: List[OrderLine]
    half_pizzas: List[HalfPizzaLine]
    dropped_options: List[str]
    voter_breakdown: List[VoterBreakdown]
    total_voters: int
    total_slices_requested: int
    total_pizzas: int
    # total_pizzas * SLICES_PER_PIZZA, not the demand actually served
    total_slices: int
    iterations: int
    converged: bool

    def to_dict(self) -> dict:
        return {
            "orders": [
                {
                    "pizza_id": line.pizza_id,
                    "name": line.name,
                    "quantity": line.quantity,
                    "slices_requested": line.slices_requested,
                    "voter_count": line.voter_count,
                }
                for line in self.orders
            ],
            "half_pizzas": [
                {"half1": line.half1, "half2": line.half2, "quantity": line.quantity}
                for line in self.half_pizzas
            ],
            "total_pizzas": self.total_pizzas,
            "total_slices": self.total_slices,
            "dropped_options": list(self.dropped_options),
            "voter_breakdown": [
                {
                    "voter_id": row.voter_id,
                    "voter_name": row.voter_name,
                    "slice_count": row.slice_count,
                    "choices": [
                        {"pizza_id": pid, "pizza_name": name, "priority": prio}
                        for pid, (name, prio) in zip(row.choice_ids, row.choices)
                    ],
                    "allocated_to": row.allocated_to,
                    "allocated_pizza_id": row.allocated_id,
                }
                for row in self.voter_breakdown
            ],
            "summary": {
                "total_voters": self.total_voters,
                "total_slices_requested": self.total_slices_requested,
            },
            "allocation": {"iterations": self.iterations, "converged": self.converged},
        }


# -------------------- Decision log --------------------
DECISION_FIELDS = ["Step", "Iteration", "Voter", "From", "To", "Status", "Note"]


class AllocationLogger:
    """Collects one row per allocation decision for later CSV export."""

    def __init__(self):
        self.rows: List[Dict[str, object]] = []
        self.step = 0

    def log(self, iteration: int, voter: str, from_name: str, to_name: str, status: str, note: str = ""):
        self.step += 1
        self.rows.append({
            "Step": self.step, "Iteration": iteration, "Voter": voter,
            "From": from_name, "To": to_name, "Status": status, "Note": note,
        })

    def write_csv(self, out: Path):
        out.parent.mkdir(parents=True, exist_ok=True)
        with out.open("w", newline="", encoding="utf-8") as f:
            w = csv.DictWriter(f, fieldnames=DECISION_FIELDS)
            w.writeheader()
            for r in self.rows: w.writerow({k: r.get(k, "") for k in DECISION_FIELDS})


# -------------------- Catalog index --------------------
class CatalogIndex:
    def __init__(self, entries: Iterable[PizzaCatalogEntry]):
        self.entries: List[PizzaCatalogEntry] = []
        self._by_id: Dict[str, PizzaCatalogEntry] = {}
        self._position: Dict[str, int] = {}
        for entry in entries:
            if entry.pizza_id in self._by_id:
                raise AllocationInputError(f"Duplicate pizza option id '{entry.pizza_id}'")
            self._position[entry.pizza_id] = len(self.entries)
            self._by_id[entry.pizza_id] = entry
            self.entries.append(entry)

    def __contains__(self, pizza_id: object) -> bool:
        return pizza_id in self._by_id

    def __len__(self) -> int:
        return len(self.entries)

    def get(self, pizza_id: str) -> PizzaCatalogEntry:
        try:
            return self._by_id[pizza_id]
        except KeyError:
            raise AllocationInputError(f"Unknown pizza option id '{pizza_id}'") from None

    def name(self, pizza_id: str) -> str:
        return self.get(pizza_id).name

    def position(self, pizza_id: str) -> int:
        self.get(pizza_id)
        return self._position[pizza_id]


# -------------------- Voter allocation state --------------------
class VoterAllocation:
    """Mutable per-vote cursor over the voter's ranked choices."""

    __slots__ = ("vote", "choices", "index")

    def __init__(self, vote: VoteRecord):
        self.vote = vote
        self.choices: Tuple[RankedChoice, ...] = tuple(sorted(vote.choices, key=lambda c: c.priority))
        # index into choices; None once every choice is exhausted
        self.index: Optional[int] = 0 if self.choices else None

    @property
    def allocated_to(self) -> Optional[str]:
        if self.index is None:
            return None
        return self.choices[self.index].pizza_id

    @property
    def priority(self) -> Optional[int]:
        if self.index is None:
            return None
        return self.choices[self.index].priority

    def advance(self) -> Optional[str]:
        """Move to the next-ranked choice (or unallocated) and return it."""
        if self.index is None:
            return None
        nxt = self.index + 1
        self.index = nxt if nxt < len(self.choices) else None
        return self.allocated_to


def build_allocations(votes: Sequence[VoteRecord], catalog: CatalogIndex) -> List[VoterAllocation]:
    allocations: List[VoterAllocation] = []
    for vote in votes:
        if int(vote.slice_count) <= 0:
            raise AllocationInputError(f"Vote by '{vote.voter_name}' has non-positive slice count {vote.slice_count}")
        seen: set = set()
        for choice in vote.choices:
            if choice.priority in seen:
                raise AllocationInputError(f"Vote by '{vote.voter_name}' repeats priority {choice.priority}")
            seen.add(choice.priority)
            if choice.pizza_id not in catalog:
                raise AllocationInputError(
                    f"Vote by '{vote.voter_name}' references unknown pizza option id '{choice.pizza_id}'"
                )
        allocations.append(VoterAllocation(vote))
    return allocations


# -------------------- Waterfall reallocation --------------------
def compute_demand(allocations: Iterable[VoterAllocation], catalog: CatalogIndex) -> Dict[str, int]:
    demand = {entry.pizza_id: 0 for entry in catalog.entries}
    for alloc in allocations:
        pid = alloc.allocated_to
        if pid is not None:
            demand[pid] += alloc.vote.slice_count
    return demand


def unviable_options(demand: Dict[str, int], min_viable: int) -> set:
    return {pid for pid, slices in demand.items() if 0 < slices < min_viable}


def reallocate(
    allocations: List[VoterAllocation],
    catalog: CatalogIndex,
    *,
    min_viable: int,
    max_iterations: int,
    log: AllocationLogger | None = None,
) -> Tuple[int, bool]:
    """Run the waterfall in place. Returns (iterations run, converged)."""

    if log is not None:
        for alloc in allocations:
            pid = alloc.allocated_to
            placed = pid is not None
            log.log(0, alloc.vote.voter_name, "", catalog.name(pid) if placed else NOT_ALLOCATED,
                    "Initial" if placed else "No choices", f"{alloc.vote.slice_count} slices")

    iterations = 0
    for iteration in range(1, max_iterations + 1):
        iterations = iteration
        demand = compute_demand(allocations, catalog)
        unviable = unviable_options(demand, min_viable)
        moved = False
        for alloc in allocations:
            src = alloc.allocated_to
            if src is None or src not in unviable:
                continue
            dst = alloc.advance()
            moved = True
            if log is not None:
                note = f"{catalog.name(src)} had {demand[src]} slices (<{min_viable})"
                if dst is None:
                    log.log(iteration, alloc.vote.voter_name, catalog.name(src), NOT_ALLOCATED, "Exhausted", note)
                else:
                    log.log(iteration, alloc.vote.voter_name, catalog.name(src), catalog.name(dst), "Moved", note)
        if not moved:
            return iterations, True
    # the last allowed pass may itself have reached the fixed point
    settled = not unviable_options(compute_demand(allocations, catalog), min_viable)
    return iterations, settled


# -------------------- Quantizer --------------------
def quantize(demand: int, slices_per_pizza: int = 8, round_up_remainder: int = 4) -> Tuple[int, int]:
    """Return (quantity, dropped remainder slices) for one option's demand."""
    full, remainder = divmod(int(demand), slices_per_pizza)
    if remainder >= round_up_remainder:
        return full + 1, 0
    return full, remainder


def _order_key(catalog: CatalogIndex, tie_break: str):
    def key(item: Tuple[str, int]):
        pid, slices = item
        if tie_break == "name":
            return (-slices, catalog.name(pid).casefold(), catalog.position(pid))
        return (-slices, catalog.position(pid))
    return key


def match_half_pizzas(
    candidates: List[Tuple[PizzaCatalogEntry, int]],
    *,
    match_toppings: bool,
) -> Tuple[List[HalfPizzaLine], List[str]]:
    """Pair leftover half pizzas. ``candidates`` must already be in tie-break order."""

    groups: Dict[int, List[Tuple[PizzaCatalogEntry, int]]] = defaultdict(list)
    for entry, remainder in candidates:
        groups[entry.topping_count if match_toppings else 0].append((entry, remainder))

    halves: List[HalfPizzaLine] = []
    dropped: List[str] = []
    for toppings in sorted(groups):
        # stable sort keeps the caller's tie-break among equal remainders
        group = sorted(groups[toppings], key=lambda item: -item[1])
        for i in range(0, len(group) - 1, 2):
            first, second = group[i][0], group[i + 1][0]
            halves.append(HalfPizzaLine(half1=first.name, half2=second.name,
                                        half1_id=first.pizza_id, half2_id=second.pizza_id))
        if len(group) % 2 == 1:
            leftover, slices = group[-1]
            dropped.append(f"{leftover.name} ({slices} slices, no compatible half-pizza match)")
    return halves, dropped


# -------------------- Report assembly --------------------
def generate_report(
    votes: Sequence[VoteRecord],
    pizzas: Sequence[PizzaCatalogEntry],
    overrides: dict | None = None,
    log: AllocationLogger | None = None,
) -> Report:
    cfg = build_config(overrides)
    per_pizza = int(cfg["SLICES_PER_PIZZA"])
    round_up = int(cfg["ROUND_UP_REMAINDER"])
    half_cfg = cfg["HALF_PIZZAS"]
    halves_enabled = bool(half_cfg.get("ENABLED"))

    catalog = CatalogIndex(pizzas)
    allocations = build_allocations(votes, catalog)
    iterations, converged = reallocate(
        allocations,
        catalog,
        min_viable=int(cfg["MIN_VIABLE_SLICES"]),
        max_iterations=int(cfg["MAX_ITERATIONS"]),
        log=log,
    )

    demand = compute_demand(allocations, catalog)
    voter_counts: Dict[str, int] = defaultdict(int)
    for alloc in allocations:
        if alloc.allocated_to is not None:
            voter_counts[alloc.allocated_to] += 1

    ranked = sorted(((pid, d) for pid, d in demand.items() if d > 0), key=_order_key(catalog, cfg["TIE_BREAK"]))

    orders: List[OrderLine] = []
    dropped: List[str] = []
    half_candidates: List[Tuple[PizzaCatalogEntry, int]] = []
    for pid, slices in ranked:
        entry = catalog.get(pid)
        if halves_enabled:
            full, remainder = divmod(slices, per_pizza)
            quantity = full
            if remainder >= round_up:
                half_candidates.append((entry, remainder))
                remainder = 0
        else:
            quantity, remainder = quantize(slices, per_pizza, round_up)
        if quantity > 0:
            orders.append(OrderLine(pid, entry.name, quantity, slices, voter_counts[pid]))
        if remainder:
            dropped.append(f"{entry.name} ({remainder} slices, below half-pizza threshold)")

    half_pizzas: List[HalfPizzaLine] = []
    if half_candidates:
        half_pizzas, unmatched = match_half_pizzas(
            half_candidates, match_toppings=bool(half_cfg.get("MATCH_TOPPINGS", True))
        )
        dropped.extend(unmatched)

    for alloc in allocations:
        if alloc.allocated_to is None:
            dropped.append(
                f"{alloc.vote.voter_name}'s {alloc.vote.slice_count} slices couldn't be allocated (no viable options)"
            )

    breakdown = [
        VoterBreakdown(
            voter_id=alloc.vote.voter_id,
            voter_name=alloc.vote.voter_name,
            slice_count=alloc.vote.slice_count,
            choices=[(catalog.name(c.pizza_id), c.priority) for c in alloc.choices],
            allocated_to=catalog.name(alloc.allocated_to) if alloc.allocated_to is not None else NOT_ALLOCATED,
            choice_ids=[c.pizza_id for c in alloc.choices],
            allocated_id=alloc.allocated_to,
        )
        for alloc in allocations
    ]

    total_pizzas = sum(line.quantity for line in orders) + sum(line.quantity for line in half_pizzas)
    return Report(
        orders=orders,
        half_pizzas=half_pizzas,
        dropped_options=dropped,
        voter_breakdown=breakdown,
        total_voters=len(votes),
        total_slices_requested=sum(int(v.slice_count) for v in votes),
        total_pizzas=total_pizzas,
        total_slices=total_pizzas * per_pizza,
        iterations=iterations,
        converged=converged,
    )
