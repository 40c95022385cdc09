import logging
from typing import Dict, Iterable, Iterator, List, Optional

from fat import (
    DEFAULT_CLUSTER_SIZE,
    DEFAULT_POINTER_BITS,
    EMPTY_FILE,
    END_OF_CHAIN,
    ChainIssue,
    ClusterEntry,
    TableGeometry,
)
from fat_exceptions import ChainCorrupted, ClusterIndexError, InsufficientSpace, InvalidHandle

log = logging.getLogger(__name__)

# Visit states for the loop check
_UNVISITED = 0
_IN_SEARCH = 1
_DONE = 2


class ClusterAllocationTable:
    """FAT-like cluster allocation table kept in memory.

    Two parallel arrays indexed by cluster id: an occupancy bitmap and a
    next-pointer table. A file is the chain of clusters reachable from its
    start cluster; the table keeps no other record of files.
    """

    def __init__(self, pointer_bits: int, cluster_bytes: int):
        self._geometry = TableGeometry(pointer_bits, cluster_bytes)
        capacity = self._geometry.capacity
        self._bitfield: List[bool] = [False] * capacity
        self._pointers: List[int] = [END_OF_CHAIN] * capacity

    def __repr__(self) -> str:
        return (
            f"ClusterAllocationTable(pointer_bits={self._geometry.pointer_bits}, "
            f"cluster_bytes={self._geometry.cluster_bytes}, used={self.used_count()}/{self.capacity})"
        )

    @property
    def geometry(self) -> TableGeometry:
        return self._geometry

    @property
    def capacity(self) -> int:
        return len(self._bitfield)

    @property
    def cluster_bytes(self) -> int:
        return self._geometry.cluster_bytes

    def _in_range(self, index) -> bool:
        return isinstance(index, int) and 0 <= index < len(self._bitfield)

    def _check_index(self, index: int):
        if not self._in_range(index):
            raise ClusterIndexError(index, self.capacity)

    # Low-level accessors

    def set_status(self, index: int, occupied: bool):
        """Set the occupancy bit of a cluster"""
        self._check_index(index)
        self._bitfield[index] = bool(occupied)

    def get_status(self, index: int) -> bool:
        """Return True if the cluster is occupied"""
        self._check_index(index)
        return self._bitfield[index]

    def set_next(self, index: int, target: int):
        """Set the next pointer of a cluster. The target is not validated."""
        self._check_index(index)
        self._pointers[index] = target

    def get_next(self, index: int) -> int:
        """Return the next pointer of a cluster"""
        self._check_index(index)
        return self._pointers[index]

    # Chain helpers

    def is_valid_start(self, start: Optional[int]) -> bool:
        """True if start names an occupied cluster"""
        return self._in_range(start) and self._bitfield[start]

    def _walk(self, start: int, stop_at_free: bool = False) -> Iterator[int]:
        """Yield the clusters of the chain beginning at start, in order.

        The walk is bounded by the table capacity, so a cycle or a pointer
        leaving the table raises ChainCorrupted instead of looping forever.
        A pointer to a free cluster is corruption as well, unless
        stop_at_free is set, in which case the walk ends before it.
        """
        current = start
        for _ in range(self.capacity):
            yield current
            previous, current = current, self._pointers[current]
            if current == END_OF_CHAIN:
                return
            if not self._in_range(current):
                raise ChainCorrupted(f"Chain from cluster {start} points outside the table ({current})")
            if not self._bitfield[current]:
                if stop_at_free:
                    return
                raise ChainCorrupted(f"Cluster {previous} in chain from {start} points to free cluster {current}")
        raise ChainCorrupted(f"Chain from cluster {start} is longer than the table, it must contain a cycle")

    def _claim_clusters(self, needed: int) -> List[int]:
        """First-fit scan that claims `needed` free clusters as one chain.

        Clusters are marked occupied as the scan selects them. If the table
        runs out before the demand is met every one of them is released again
        and InsufficientSpace is raised, so the table is left as it was.
        On success the claimed clusters are linked in ascending order and the
        last one is terminated with END_OF_CHAIN.
        """
        claimed = []
        for cluster, occupied in enumerate(self._bitfield):
            if len(claimed) == needed:
                break
            if not occupied:
                self._bitfield[cluster] = True
                claimed.append(cluster)

        if len(claimed) < needed:
            for cluster in claimed:
                self._bitfield[cluster] = False
            log.debug("Rolled back %d clusters: %d needed", len(claimed), needed)
            raise InsufficientSpace(needed, len(claimed))

        for cluster, successor in zip(claimed, claimed[1:]):
            self._pointers[cluster] = successor
        self._pointers[claimed[-1]] = END_OF_CHAIN
        return claimed

    # File operations

    def allocate(self, byte_length: int) -> Optional[int]:
        """Allocate a chain big enough for byte_length bytes.

        Returns the start cluster of the new file, or EMPTY_FILE for a zero
        length request, which consumes no cluster.
        """
        needed = self._geometry.clusters_for(byte_length)
        if needed == 0:
            return EMPTY_FILE

        claimed = self._claim_clusters(needed)
        log.debug("Allocated %d bytes as chain %s", byte_length, claimed)
        return claimed[0]

    def append(self, start: int, extra_bytes: int) -> int:
        """Grow the file at start by extra_bytes. Returns start."""
        needed = self._geometry.clusters_for(extra_bytes)
        if not self.is_valid_start(start):
            raise InvalidHandle(start)
        if needed == 0:
            return start

        # Find the tail before claiming anything, a broken chain must not leak clusters
        tail = start
        for tail in self._walk(start):
            pass

        claimed = self._claim_clusters(needed)
        self._pointers[tail] = claimed[0]
        log.debug("Appended chain %s to file %d after cluster %d", claimed, start, tail)
        return start

    def get_cluster_list(self, start: Optional[int]) -> List[int]:
        """Return the clusters of the file at start, or [] if there is none"""
        if not self.is_valid_start(start):
            return []
        return list(self._walk(start))

    def chain_length(self, start: Optional[int]) -> int:
        if not self.is_valid_start(start):
            return 0
        return sum(1 for _ in self._walk(start))

    def seek_cluster(self, start: Optional[int], byte_offset: int) -> int:
        """Return the cluster holding byte_offset of the file at start.

        END_OF_CHAIN is returned for an invalid start and for offsets past
        the end of the chain.
        """
        if byte_offset < 0:
            raise ValueError(f"Byte offset must not be negative, got {byte_offset}")
        if not self.is_valid_start(start):
            return END_OF_CHAIN

        hops = byte_offset // self._geometry.cluster_bytes
        for position, cluster in enumerate(self._walk(start)):
            if position == hops:
                return cluster
        return END_OF_CHAIN

    def delete_file(self, start: Optional[int]):
        """Release every cluster of the chain at start. Invalid starts are ignored.

        A chain cut short by an earlier release of one of its clusters is
        released up to the cut, so its occupied prefix is never stranded.
        """
        if not self.is_valid_start(start):
            return

        chain = list(self._walk(start, stop_at_free=True))
        for cluster in chain:
            self._bitfield[cluster] = False
            self._pointers[cluster] = END_OF_CHAIN
        log.debug("Released chain %s", chain)

    # Inspection

    def free_count(self) -> int:
        return self._bitfield.count(False)

    def used_count(self) -> int:
        return self._bitfield.count(True)

    def status_snapshot(self) -> List[ClusterEntry]:
        """Return (cluster, occupied, next) for every cluster of the table"""
        return [
            ClusterEntry(cluster, occupied, target)
            for cluster, (occupied, target) in enumerate(zip(self._bitfield, self._pointers))
        ]

    def _links_to_occupied(self, target) -> bool:
        return target != END_OF_CHAIN and self._in_range(target) and self._bitfield[target]

    def check(self, starts: Optional[Iterable[int]] = None) -> List[ChainIssue]:
        """Scan the table for broken chains.

        Reports pointers leaving the table or landing on free clusters,
        clusters with several predecessors, loops and free clusters that kept
        a pointer. With starts, also reports invalid starts, clusters shared
        by two files and occupied clusters that no file reaches.
        """
        issues: List[ChainIssue] = []
        referrers = [0] * self.capacity

        for cluster, (occupied, target) in enumerate(zip(self._bitfield, self._pointers)):
            if not occupied:
                if target != END_OF_CHAIN:
                    issues.append(ChainIssue(cluster, f"free cluster still points to {target}"))
                continue
            if target == END_OF_CHAIN:
                continue
            if not self._in_range(target):
                issues.append(ChainIssue(cluster, f"points outside the table ({target})"))
                continue
            if not self._bitfield[target]:
                issues.append(ChainIssue(cluster, f"points to free cluster {target}"))
                continue
            referrers[target] += 1
            if referrers[target] == 2:
                issues.append(ChainIssue(target, "referenced by more than one cluster"))

        state = [_UNVISITED] * self.capacity
        for cluster, occupied in enumerate(self._bitfield):
            if not occupied or state[cluster] != _UNVISITED:
                continue
            path = []
            current = cluster
            while state[current] == _UNVISITED:
                state[current] = _IN_SEARCH
                path.append(current)
                target = self._pointers[current]
                if not self._links_to_occupied(target):
                    break
                current = target
            else:
                if state[current] == _IN_SEARCH:
                    issues.append(ChainIssue(current, "chain loops back on itself"))
            for visited in path:
                state[visited] = _DONE

        if starts is not None:
            owner: Dict[int, int] = {}
            for start in dict.fromkeys(starts):
                if not self.is_valid_start(start):
                    issues.append(ChainIssue(start, "start is not an allocated cluster"))
                    continue
                current = start
                while current not in owner:
                    owner[current] = start
                    target = self._pointers[current]
                    if not self._links_to_occupied(target):
                        break
                    current = target
                else:
                    if owner[current] != start:
                        issues.append(ChainIssue(current, f"shared by files {owner[current]} and {start}"))

            for cluster, occupied in enumerate(self._bitfield):
                if occupied and cluster not in owner:
                    issues.append(ChainIssue(cluster, "occupied but not reachable from any file"))

        return issues


def create_table(pointer_bits: int = DEFAULT_POINTER_BITS, cluster_bytes: int = DEFAULT_CLUSTER_SIZE) -> ClusterAllocationTable:
    """Create a new, empty allocation table"""
    return ClusterAllocationTable(pointer_bits, cluster_bytes)
