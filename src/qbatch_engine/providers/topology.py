from qbatch_engine.framework.enums import TopologyKind
from qbatch_engine.framework.model import Topology

HEAVY_HEX_ROW = 7


def full_topology(qubit_count: int) -> Topology:
    """Every pair of qubits is connected."""
    return Topology(kind=TopologyKind.FULL, qubit_count=qubit_count)


def grid_topology(rows: int, cols: int) -> Topology:
    """Nearest-neighbour square lattice, row-major numbering."""
    edges = set()
    for r in range(rows):
        for c in range(cols):
            q = r * cols + c
            if c + 1 < cols:
                edges.add((q, q + 1))
            if r + 1 < rows:
                edges.add((q, q + cols))
    return Topology(kind=TopologyKind.GRID, qubit_count=rows * cols, edges=frozenset(edges))


def heavy_hex_topology(qubit_count: int) -> Topology:
    """Sparse heavy-hex-like lattice.

    Qubits form rows of seven connected in a line. Rows are bridged at the
    first and fifth position of each row, which leaves most qubits with
    degree two and a few with degree three.
    """
    edges = set()
    for q in range(qubit_count):
        if q % HEAVY_HEX_ROW != HEAVY_HEX_ROW - 1 and q + 1 < qubit_count:
            edges.add((q, q + 1))
        if q % HEAVY_HEX_ROW in {0, 4} and q + HEAVY_HEX_ROW < qubit_count:
            edges.add((q, q + HEAVY_HEX_ROW))
    return Topology(kind=TopologyKind.CUSTOM, qubit_count=qubit_count, edges=frozenset(edges))


def is_local(topology: Topology, qubits: tuple[int, ...]) -> bool:
    """Whether a gate on `qubits` runs without routing.

    Two-qubit gates need an edge. A three-qubit gate needs its qubits to
    form a connected path, i.e. at least two adjacent pairs.
    """
    if len(qubits) < 2 or topology.is_fully_connected:  # noqa: PLR2004
        return True
    pairs = [(a, b) for i, a in enumerate(qubits) for b in qubits[i + 1 :]]
    adjacent = sum(1 for a, b in pairs if topology.are_adjacent(a, b))
    return adjacent >= len(qubits) - 1
