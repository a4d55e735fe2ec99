"""Engine error taxonomy.

Every error carries a ``kind`` string so callers of the session API can
branch on the failure without importing the classes.

- ``GeneratorFailure`` / ``ParseFailure``: the external generator failed or
  returned something unusable.  Recoverable; retrying with the same
  arguments is safe.
- ``GraphIntegrityError`` and subclasses: a structural invariant of the
  session graph would be broken.  Programming error.
- ``NodeNotFoundError``: unknown node id (bad rollback target).
- ``InvalidOptionError``: the chosen option is not on offer at the current
  node.
"""

from __future__ import annotations

from dataclasses import dataclass


class EngineError(Exception):
    """Base class for all session-engine failures."""

    kind = "engine_error"


class GeneratorFailure(EngineError):
    """The generator call failed (network, quota, provider error)."""

    kind = "generator_failure"


class ParseFailure(GeneratorFailure):
    """The generator answered but not in the expected structured shape."""

    kind = "parse_failure"

    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.raw = raw


class GraphIntegrityError(EngineError):
    """A graph mutation would violate a structural invariant."""

    kind = "graph_integrity"


@dataclass
class DuplicateIdError(GraphIntegrityError):
    """Raised when a node id is already present in the session."""

    node_id: str

    def __post_init__(self) -> None:
        super().__init__(f"Node '{self.node_id}' already exists")


@dataclass
class DuplicateEdgeError(GraphIntegrityError):
    """Raised when ``(from_node_id, option_id)`` already has a target."""

    from_node_id: str
    option_id: str
    existing_to: str = ""

    def __post_init__(self) -> None:
        msg = f"Edge '{self.from_node_id}' --{self.option_id}--> already exists"
        if self.existing_to:
            msg += f" (target '{self.existing_to}')"
        super().__init__(msg)


@dataclass
class NodeNotFoundError(EngineError):
    """Raised when a node id does not resolve in the session."""

    node_id: str
    context: str = ""

    kind = "node_not_found"

    def __post_init__(self) -> None:
        msg = f"Node '{self.node_id}' not found"
        if self.context:
            msg += f" ({self.context})"
        super().__init__(msg)


@dataclass
class InvalidOptionError(EngineError):
    """Raised when an option cannot be taken from the given node."""

    node_id: str
    option_id: str
    reason: str = "not offered"

    kind = "invalid_option"

    def __post_init__(self) -> None:
        super().__init__(
            f"Option '{self.option_id}' at node '{self.node_id}': {self.reason}"
        )
