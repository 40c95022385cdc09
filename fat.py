import attr

from fat_exceptions import InvalidGeometry

END_OF_CHAIN = -1  # Pointer value of the last cluster in a chain
EMPTY_FILE = None  # Result of allocating zero bytes: no chain at all

DEFAULT_POINTER_BITS = 4
DEFAULT_CLUSTER_SIZE = 1024
MAX_POINTER_BITS = 24


@attr.s(auto_attribs=True, frozen=True)
class ClusterEntry:
    """One row of the table: cluster id, occupancy bit and next pointer"""
    cluster: int
    occupied: bool
    next: int = END_OF_CHAIN

    @property
    def is_tail(self) -> bool:
        return self.occupied and self.next == END_OF_CHAIN


@attr.s(auto_attribs=True, frozen=True)
class TableGeometry:
    """Size parameters of a table, fixed for its whole lifetime"""
    pointer_bits: int
    cluster_bytes: int

    def __attrs_post_init__(self):
        if not 0 <= self.pointer_bits <= MAX_POINTER_BITS:
            raise InvalidGeometry(
                f"pointer_bits must be between 0 and {MAX_POINTER_BITS}, got {self.pointer_bits}"
            )
        if self.cluster_bytes <= 0:
            raise InvalidGeometry(f"cluster_bytes must be positive, got {self.cluster_bytes}")

    @property
    def capacity(self) -> int:
        return 1 << self.pointer_bits

    @property
    def table_bytes(self) -> int:
        return self.capacity * self.cluster_bytes

    def clusters_for(self, byte_length: int) -> int:
        """Number of clusters needed to hold byte_length bytes (rounded up)"""
        if byte_length < 0:
            raise ValueError(f"Byte length must not be negative, got {byte_length}")
        return (byte_length + self.cluster_bytes - 1) // self.cluster_bytes


@attr.s(auto_attribs=True, frozen=True)
class ChainIssue:
    """A single finding of the table consistency check"""
    cluster: int
    problem: str

    def __str__(self) -> str:
        return f"cluster {self.cluster}: {self.problem}"
