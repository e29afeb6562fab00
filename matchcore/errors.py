"""Errors shared by every pipeline.

Pipeline-specific failures live next to the pipeline that raises them
(``OracleError``, ``SignalComputationError``, ...).
"""
from __future__ import annotations


class BadRequestError(Exception):
    """Raised when a required identifier or argument is missing."""
    pass


class NotFoundError(Exception):
    """Raised when a referenced entity does not exist."""

    def __init__(self, entity: str, entity_id: object) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")
