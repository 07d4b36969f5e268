from __future__ import annotations

import logging
from collections import defaultdict
from itertools import combinations
from typing import TYPE_CHECKING

from qbatch_engine.providers.topology import is_local

from .stage import OptimizationStage, StageName, StageOutcome

if TYPE_CHECKING:
    from qbatch_engine.framework.model import (
        Circuit,
        Gate,
        ProviderCapability,
        Topology,
    )

logger = logging.getLogger(__name__)


def remap(circuit: Circuit, layout: dict[int, int]) -> Circuit:
    """Relabel qubits; the register grows to hold the largest index."""
    gates = [g.on(*(layout.get(q, q) for q in g.qubits)) for g in circuit.gates]
    width = max([circuit.qubit_count, *(q + 1 for g in gates for q in g.qubits)])
    return circuit.with_gates(gates, qubit_count=width)


def count_non_local(gates: tuple[Gate, ...] | list[Gate], topology: Topology) -> int:
    return sum(1 for g in gates if not is_local(topology, g.qubits))


def interaction_weights(circuit: Circuit) -> dict[tuple[int, int], int]:
    """How often each logical qubit pair appears in a multi-qubit gate."""
    weights: dict[tuple[int, int], int] = defaultdict(int)
    for gate in circuit.gates:
        for a, b in combinations(sorted(gate.qubits), 2):
            weights[a, b] += 1
    return weights


def greedy_layout(circuit: Circuit, topology: Topology) -> dict[int, int]:
    """Place interacting logical qubits close together on the topology.

    The busiest logical qubit lands on the best-connected physical qubit.
    Each next qubit is the unplaced one most strongly tied to the placed
    set; it goes to the free physical qubit minimizing the
    interaction-weighted hop distance to its placed partners. Qubits that
    never interact fill the lowest free physical indices.
    """
    weights = interaction_weights(circuit)
    partners: dict[int, dict[int, int]] = defaultdict(dict)
    for (a, b), w in weights.items():
        partners[a][b] = w
        partners[b][a] = w
    total = {q: sum(p.values()) for q, p in partners.items()}

    physical = range(topology.qubit_count)
    free = set(physical)
    layout: dict[int, int] = {}

    def by_connectivity(p: int) -> tuple[int, int]:
        return (-topology.degree(p), p)

    while len(layout) < len(partners):
        unplaced = [q for q in partners if q not in layout]
        logical = max(
            unplaced,
            key=lambda q: (
                sum(w for m, w in partners[q].items() if m in layout),
                total[q],
                -q,
            ),
        )
        placed_partners = {m: w for m, w in partners[logical].items() if m in layout}
        if not placed_partners:
            target = min(free, key=by_connectivity)
        else:
            frontier = {
                n
                for m in placed_partners
                for n in topology.neighbors(layout[m])
                if n in free
            }
            candidates = frontier or free
            target = min(
                candidates,
                key=lambda p: (
                    sum(w * topology.distance(p, layout[m]) for m, w in placed_partners.items()),
                    *by_connectivity(p),
                ),
            )
        layout[logical] = target
        free.discard(target)

    for q in range(circuit.qubit_count):
        if q not in layout:
            target = min(free)
            layout[q] = target
            free.discard(target)
    return layout


class LayoutMappingStage(OptimizationStage):
    """Map logical qubits onto a sparse topology.

    The greedy placement is kept only if it strictly lowers the number of
    multi-qubit gates on non-adjacent physical qubits; otherwise the layout
    stays the identity. Fully connected providers skip the stage.
    """

    name = StageName.LAYOUT_MAPPING

    def supports(self, provider: ProviderCapability) -> bool:  # noqa: PLR6301
        return not provider.topology.is_fully_connected

    def apply(self, circuit: Circuit, provider: ProviderCapability) -> StageOutcome:  # noqa: PLR6301
        topology = provider.topology
        identity = {q: q for q in range(circuit.qubit_count)}
        before = count_non_local(circuit.gates, topology)

        if before == 0 or circuit.qubit_count > topology.qubit_count:
            return StageOutcome(
                circuit=circuit,
                trace=(f"layout_mapping: identity layout ({before} non-adjacent gates)",),
                layout=identity,
                detail={"non_adjacent_before": before, "non_adjacent_after": before},
            )

        candidate = greedy_layout(circuit, topology)
        mapped = remap(circuit, candidate)
        after = count_non_local(mapped.gates, topology)
        logger.debug(
            "layout evaluated",
            extra={"provider": provider.name, "before": before, "after": after},
        )
        if after >= before:
            return StageOutcome(
                circuit=circuit,
                trace=(
                    f"layout_mapping: kept identity layout, greedy placement "
                    f"did not help ({before} -> {after} non-adjacent gates)",
                ),
                layout=identity,
                detail={"non_adjacent_before": before, "non_adjacent_after": before},
            )

        moved = sum(1 for q, p in candidate.items() if q != p)
        return StageOutcome(
            circuit=mapped,
            changes=moved,
            trace=(
                f"layout_mapping: remapped {moved} qubit(s), non-adjacent gates "
                f"{before} -> {after}",
            ),
            layout=candidate,
            detail={"non_adjacent_before": before, "non_adjacent_after": after},
        )
