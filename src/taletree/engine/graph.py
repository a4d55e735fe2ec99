"""Narrative graph store: structural operations on a session's nodes and edges.

All functions work on the session passed in and touch nothing else.
Nodes live in ``session.nodes_by_id``; edges are a flat list indexed by
``(from_node_id, option_id)`` for reuse lookups and by ``to_node_id`` for
walking back to the option that led to a node.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from taletree.engine.errors import (
    DuplicateEdgeError,
    DuplicateIdError,
    GraphIntegrityError,
    NodeNotFoundError,
)
from taletree.models.session import Edge, Node, Session

log = logging.getLogger(__name__)


def get_node(session: Session, node_id: str) -> Node:
    node = session.nodes_by_id.get(node_id)
    if node is None:
        raise NodeNotFoundError(node_id)
    return node


def add_node(session: Session, node: Node) -> None:
    """Insert *node*.  The parent must already be present."""
    if node.id in session.nodes_by_id:
        raise DuplicateIdError(node.id)

    if node.parent_id is None:
        if session.nodes_by_id:
            raise GraphIntegrityError(
                f"Node '{node.id}' has no parent but the session already has "
                f"root '{session.root_node_id}'"
            )
        if node.depth != 0:
            raise GraphIntegrityError(f"Root node '{node.id}' must have depth 0")
    else:
        parent = session.nodes_by_id.get(node.parent_id)
        if parent is None:
            raise GraphIntegrityError(
                f"Parent '{node.parent_id}' of node '{node.id}' is not in the session"
            )
        if node.depth != parent.depth + 1:
            raise GraphIntegrityError(
                f"Node '{node.id}' has depth {node.depth}, expected {parent.depth + 1}"
            )

    session.nodes_by_id[node.id] = node


def add_edge(
    session: Session,
    from_id: str,
    option_id: str,
    to_id: str,
    label: str = "",
) -> Edge:
    """Insert the edge ``from_id --option_id--> to_id``.

    Callers must check :func:`get_child` first; an existing edge for the
    same key is an error here, not a reuse.
    """
    existing = session._child_index.get((from_id, option_id))
    if existing is not None:
        raise DuplicateEdgeError(from_id, option_id, existing)

    target = session.nodes_by_id.get(to_id)
    if from_id not in session.nodes_by_id or target is None:
        raise GraphIntegrityError(
            f"Edge '{from_id}' --{option_id}--> '{to_id}' has a missing endpoint"
        )
    if target.parent_id != from_id:
        raise GraphIntegrityError(
            f"Node '{to_id}' belongs to parent '{target.parent_id}', not '{from_id}'"
        )
    if to_id in session._incoming:
        raise GraphIntegrityError(f"Node '{to_id}' already has an incoming edge")

    edge = Edge(from_node_id=from_id, option_id=option_id, to_node_id=to_id, label=label)
    session.edges.append(edge)
    session._child_index[(from_id, option_id)] = to_id
    session._incoming[to_id] = edge
    return edge


def get_child(session: Session, node_id: str, option_id: str) -> Optional[Node]:
    """Return the node reached from *node_id* via *option_id*, if any."""
    to_id = session._child_index.get((node_id, option_id))
    if to_id is None:
        return None
    return session.nodes_by_id.get(to_id)


def incoming_edge(session: Session, node_id: str) -> Optional[Edge]:
    return session._incoming.get(node_id)


def children_of(session: Session, node_id: str) -> List[Tuple[str, Node]]:
    """``(option_id, child)`` pairs of *node_id* in insertion order."""
    return [
        (e.option_id, session.nodes_by_id[e.to_node_id])
        for e in session.edges
        if e.from_node_id == node_id and e.to_node_id in session.nodes_by_id
    ]


def path_to_root(session: Session, node_id: str) -> List[str]:
    """Node ids from the root down to *node_id* (inclusive)."""
    path: List[str] = []
    current: Optional[str] = node_id
    while current is not None:
        node = session.nodes_by_id.get(current)
        if node is None:
            raise NodeNotFoundError(current, context=f"walking up from '{node_id}'")
        path.append(current)
        if len(path) > len(session.nodes_by_id):
            raise GraphIntegrityError(f"Parent chain of '{node_id}' contains a cycle")
        current = node.parent_id
    path.reverse()
    return path


def insert_child(
    session: Session,
    parent_id: str,
    option_id: str,
    node: Node,
    label: str = "",
) -> Tuple[Node, bool]:
    """Commit *node* under ``(parent_id, option_id)`` unless a child exists.

    Returns ``(node, True)`` when the candidate was committed, or
    ``(existing_child, False)`` when another operation got there first and
    the candidate was discarded.  Node and edge are committed together.
    """
    existing = get_child(session, parent_id, option_id)
    if existing is not None:
        log.debug(
            "Discarding candidate %s for %s/%s: branch already holds %s",
            node.id, parent_id, option_id, existing.id,
        )
        return existing, False

    add_node(session, node)
    try:
        add_edge(session, parent_id, option_id, node.id, label=label)
    except GraphIntegrityError:
        del session.nodes_by_id[node.id]
        raise
    return node, True


def tree_view(session: Session) -> Optional[dict]:
    """Nested view of the whole graph for rendering a branch navigator."""
    root = session.nodes_by_id.get(session.root_node_id)
    if root is None:
        return None

    def _subtree(node: Node) -> dict:
        children = [_subtree(child) for _, child in children_of(session, node.id)]
        return {
            "id": node.id,
            "title": node.title or f"Turn {node.depth}",
            "depth": node.depth,
            "is_current": node.id == session.current_node_id,
            "visited": node.visited,
            "has_branches": len(children) > 1,
            "children": children,
        }

    return _subtree(root)
