"""Exceptions raised by the mirror engine."""

from __future__ import annotations


class MirrorError(Exception):
    """Base class for all product-mirror errors."""


class StoreError(MirrorError):
    """A database write/read or blob upload failed."""


class NotFoundError(MirrorError):
    """A referenced entity does not exist."""


class ProductNotFoundError(NotFoundError):
    def __init__(self, product_id: str) -> None:
        super().__init__(f"Product not found: {product_id}")
        self.product_id = product_id


class SessionNotFoundError(NotFoundError):
    def __init__(self, session_id: str) -> None:
        super().__init__(f"Recording session not found: {session_id}")
        self.session_id = session_id


class FlowNotFoundError(NotFoundError):
    def __init__(self, flow_id: str) -> None:
        super().__init__(f"Flow not found: {flow_id}")
        self.flow_id = flow_id


class InvalidRequestError(MirrorError):
    """A caller omitted a required identifier."""
