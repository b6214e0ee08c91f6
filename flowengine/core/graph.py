"""Static validation and read-only queries over flow graphs."""

from collections import Counter, deque
from typing import Dict, List, Optional, Set

from ..models.core import Connection, Flow, Node, NodeType, ValidationResult
from .logging import get_logger

logger = get_logger(__name__)


def validate_flow(flow: Flow) -> ValidationResult:
    """
    Validate a flow definition for structural correctness.

    Every violation is collected so a caller sees all problems at once.
    Cycles, unreachable and isolated nodes are reported as warnings: the
    traversal engine bounds revisits at run time.

    Args:
        flow: The flow to validate

    Returns:
        ValidationResult: Validation results with errors and warnings
    """
    logger.debug(f"Validating flow: {flow.id}")

    errors: List[str] = []
    warnings: List[str] = []

    _validate_node_ids(flow, errors)
    _validate_terminals(flow, errors)
    _validate_invalid_references(flow, errors)

    # Structural warnings only make sense on a graph whose references resolve
    if not errors:
        _validate_cycles(flow, warnings)
        _validate_unreachable_nodes(flow, warnings)

    result = ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)
    logger.debug(f"Flow validation completed. Valid: {result.is_valid}, "
                 f"Errors: {len(result.errors)}, Warnings: {len(result.warnings)}")
    return result


def outgoing_connections(flow: Flow, node_id: str) -> List[Connection]:
    """Connections leaving ``node_id`` in declaration order."""
    return [c for c in flow.connections if c.source_node_id == node_id]


def find_node(flow: Flow, node_id: str) -> Optional[Node]:
    """Find a node by ID, or None."""
    for node in flow.nodes:
        if node.id == node_id:
            return node
    return None


def find_start_node(flow: Flow) -> Optional[Node]:
    """Return the first start node of the flow, or None."""
    for node in flow.nodes:
        if node.type == NodeType.START:
            return node
    return None


def _validate_node_ids(flow: Flow, errors: List[str]):
    counts = Counter(node.id for node in flow.nodes)
    duplicates = sorted(node_id for node_id, count in counts.items() if count > 1)
    if duplicates:
        errors.append(f"Duplicate node IDs: {', '.join(duplicates)}")


def _validate_terminals(flow: Flow, errors: List[str]):
    start_count = sum(1 for node in flow.nodes if node.type == NodeType.START)
    end_count = sum(1 for node in flow.nodes if node.type == NodeType.END)

    if start_count == 0:
        errors.append("Flow must have exactly one start node, found none")
    elif start_count > 1:
        errors.append(f"Flow must have exactly one start node, found {start_count}")

    if end_count == 0:
        errors.append("Flow must have at least one end node")


def _validate_invalid_references(flow: Flow, errors: List[str]):
    node_ids = {node.id for node in flow.nodes}

    for connection in flow.connections:
        label = connection.id or f"{connection.source_node_id}->{connection.target_node_id}"
        if connection.source_node_id not in node_ids:
            errors.append(
                f"Connection '{label}' references non-existent source node: '{connection.source_node_id}'"
            )
        if connection.target_node_id not in node_ids:
            errors.append(
                f"Connection '{label}' references non-existent target node: '{connection.target_node_id}'"
            )


def _adjacency(flow: Flow) -> Dict[str, List[str]]:
    graph: Dict[str, List[str]] = {}
    for connection in flow.connections:
        graph.setdefault(connection.source_node_id, []).append(connection.target_node_id)
    return graph


def _has_cycles(flow: Flow) -> bool:
    """Check if the flow contains cycles using an iterative DFS."""
    graph = _adjacency(flow)
    visited: Set[str] = set()

    for root in (node.id for node in flow.nodes):
        if root in visited:
            continue
        on_stack = {root}
        visited.add(root)
        stack = [(root, iter(graph.get(root, [])))]
        while stack:
            current, neighbors = stack[-1]
            advanced = False
            for neighbor in neighbors:
                if neighbor in on_stack:
                    return True
                if neighbor not in visited:
                    visited.add(neighbor)
                    on_stack.add(neighbor)
                    stack.append((neighbor, iter(graph.get(neighbor, []))))
                    advanced = True
                    break
            if not advanced:
                on_stack.discard(current)
                stack.pop()

    return False


def _find_reachable_nodes(flow: Flow, entry_point: str) -> Set[str]:
    """Find all nodes reachable from the entry point."""
    graph = _adjacency(flow)
    reachable = {entry_point}
    queue = deque([entry_point])
    while queue:
        current = queue.popleft()
        for neighbor in graph.get(current, []):
            if neighbor not in reachable:
                reachable.add(neighbor)
                queue.append(neighbor)
    return reachable


def _validate_cycles(flow: Flow, warnings: List[str]):
    if _has_cycles(flow):
        warnings.append(
            "Flow contains cycles; revisits are bounded at run time"
        )


def _validate_unreachable_nodes(flow: Flow, warnings: List[str]):
    start = find_start_node(flow)
    if start is None:
        return

    node_ids = {node.id for node in flow.nodes}
    unreachable = node_ids - _find_reachable_nodes(flow, start.id)
    if unreachable:
        warnings.append(f"Unreachable nodes detected: {', '.join(sorted(unreachable))}")
