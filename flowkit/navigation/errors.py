# errors.py
# Description: Structural error types raised by the node registry
#
"""
Flow Errors
-----------

Only structural problems are raised as exceptions. Restriction denials,
hook timeouts, persistence failures and permission denials are reported
through return values and status enums instead.
"""

from enum import Enum
from typing import Optional

from loguru import logger


class FlowErrorType(Enum):
    """Types of flow errors."""
    DUPLICATE_SIBLING_NAME = "duplicate_sibling_name"
    MISSING_PARENT = "missing_parent"
    CYCLE_DETECTED = "cycle_detected"
    INVALID_NODE = "invalid_node"
    UNKNOWN_NODE = "unknown_node"


class FlowError(Exception):
    """Base exception for flowkit."""

    def __init__(
        self,
        error_type: FlowErrorType,
        message: str,
        node_id: Optional[str] = None,
        details: Optional[str] = None,
    ):
        super().__init__(message)
        self.error_type = error_type
        self.message = message
        self.node_id = node_id
        self.details = details

        logger.warning(f"FlowError [{error_type.value}]: {message}")
        if details:
            logger.debug(f"Details: {details}")

    def get_user_message(self) -> str:
        """Get a short user-facing message."""
        messages = {
            FlowErrorType.DUPLICATE_SIBLING_NAME: "A screen with this name already exists here.",
            FlowErrorType.MISSING_PARENT: "The containing flow has not been registered yet.",
            FlowErrorType.CYCLE_DETECTED: "This move would make a flow contain itself.",
            FlowErrorType.INVALID_NODE: "The flow definition is invalid.",
            FlowErrorType.UNKNOWN_NODE: "No such flow is registered.",
        }
        return messages.get(self.error_type, self.message)


class StructuralError(FlowError):
    """Registration-time failure. Always fatal to the registration call."""


class DuplicateSiblingName(StructuralError):
    def __init__(self, parent_id: Optional[str], name: str):
        super().__init__(
            FlowErrorType.DUPLICATE_SIBLING_NAME,
            f"Parent {parent_id or '<root>'} already has a child named '{name}'",
            node_id=parent_id,
        )
        self.parent_id = parent_id
        self.name = name


class MissingParent(StructuralError):
    def __init__(self, parent_id: str, name: str):
        super().__init__(
            FlowErrorType.MISSING_PARENT,
            f"Cannot register '{name}': parent '{parent_id}' is not registered",
            node_id=parent_id,
        )
        self.parent_id = parent_id
        self.name = name


class CycleDetected(StructuralError):
    def __init__(self, node_id: str, parent_id: str):
        super().__init__(
            FlowErrorType.CYCLE_DETECTED,
            f"Moving '{node_id}' under '{parent_id}' would create a cycle",
            node_id=node_id,
        )
        self.parent_id = parent_id


class InvalidNode(StructuralError):
    def __init__(self, message: str, node_id: Optional[str] = None):
        super().__init__(FlowErrorType.INVALID_NODE, message, node_id=node_id)
