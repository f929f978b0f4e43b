"""Exceptions raised by the memory graph client, editor and store."""


class MissionControlError(Exception):
    """Base class for memory graph errors."""


class GraphApiError(MissionControlError):
    """The graph endpoint returned an error or an unreadable response."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class GraphNotLoadedError(MissionControlError):
    """An editor operation was attempted before any graph was loaded."""


class UnknownNodeError(MissionControlError):
    """An editor operation referenced a node id that is not in the payload."""

    def __init__(self, node_id: str) -> None:
        super().__init__(f"Unknown node: {node_id}")
        self.node_id = node_id


class GraphStoreError(MissionControlError):
    """The persisted graph could not be read or written."""


class ExtractionError(MissionControlError):
    """The extraction model could not be reached or returned an unusable answer."""
