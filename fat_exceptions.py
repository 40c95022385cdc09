
class AllocationTableError(Exception):
    pass


class ClusterIndexError(AllocationTableError, IndexError):
    def __init__(self, cluster: int, capacity: int) -> None:
        super().__init__(f"Cluster index {cluster} out of range [0, {capacity})")
        self.cluster = cluster
        self.capacity = capacity


class InvalidGeometry(AllocationTableError, ValueError):
    pass


class AllocationError(AllocationTableError):
    pass


class InsufficientSpace(AllocationError):
    def __init__(self, needed: int, available: int) -> None:
        super().__init__(f"Not enough free clusters: need {needed}, {available} free")
        self.needed = needed
        self.available = available


class InvalidHandle(AllocationError):
    def __init__(self, start) -> None:
        super().__init__(f"Cluster {start} is not the start of an allocated file")
        self.start = start


class ChainCorrupted(AllocationTableError):
    pass
