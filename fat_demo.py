import logging
import os
import random
from typing import List, Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from fat import END_OF_CHAIN
from fat_exceptions import AllocationTableError
from fatapi import ClusterAllocationTable, create_table

KIB = 1024

# Walkthrough parameters
DEMO_POINTER_BITS = 4
DEMO_CLUSTER_SMALL = 1024
DEMO_CLUSTER_BIG = 2048
DEMO_FILE_SIZES_KIB = [3, 5, 7, 16]

# Smoke test parameters
SMOKE_POINTER_BITS = 16
SMOKE_CLUSTER_SIZE = 2048
SMOKE_STEPS = 20
SMOKE_MAX_FILE_KIB = 20
SMOKE_MAX_OFFSET = 10000


def configure_logging():
    """Route engine debug logging to the console when FAT_DEBUG is set"""
    flag = os.environ.get("FAT_DEBUG", "")
    if flag and flag != "0":
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(show_path=False)],
        )


def status_table(table: ClusterAllocationTable, occupied_only: bool = False) -> Table:
    """Build a rich table with the state of every cluster"""
    view = Table(title=f"Clusters ({table.used_count()}/{table.capacity} used, {table.cluster_bytes} bytes each)")
    view.add_column("Cluster", justify="right")
    view.add_column("Status")
    view.add_column("Next", justify="right")

    for entry in table.status_snapshot():
        if occupied_only and not entry.occupied:
            continue
        status = "[red]used[/red]" if entry.occupied else "[green]free[/green]"
        target = "EOC" if entry.next == END_OF_CHAIN else str(entry.next)
        view.add_row(str(entry.cluster), status, target)
    return view


def demo(console: Console) -> List[int]:
    """Allocate the sample files in two tables and delete two of them again.

    Returns the starts still live in the small-cluster table.
    """
    small = create_table(DEMO_POINTER_BITS, DEMO_CLUSTER_SMALL)
    big = create_table(DEMO_POINTER_BITS, DEMO_CLUSTER_BIG)

    console.print("[bold]small clusters:[/bold]")
    console.print(status_table(small))
    console.print("[bold]big clusters:[/bold]")
    console.print(status_table(big))

    file_starts = []
    for size_kib in DEMO_FILE_SIZES_KIB:
        file_size = size_kib * KIB
        for sim in (small, big):
            console.print(f"adding file of size: {file_size} ({sim.cluster_bytes} byte clusters)")
            try:
                start = sim.allocate(file_size)
            except AllocationTableError as e:
                console.print(f"[yellow]allocate: {e}[/yellow]")
                start = None
            if sim is small:
                file_starts.append(start)
            console.print(status_table(sim))

    console.print("[bold]removing files 1 & 3:[/bold]")
    small.delete_file(file_starts[0])
    small.delete_file(file_starts[2])
    console.print(status_table(small))

    return [start for i, start in enumerate(file_starts) if i not in (0, 2) and start is not None]


def smoke_test(
    table: ClusterAllocationTable,
    console: Console,
    steps: int = SMOKE_STEPS,
    seed: Optional[int] = None,
    show_status: bool = True,
) -> List[int]:
    """Run random allocate/append/list/seek/delete steps against a table.

    Allocation errors are reported and the run carries on. Returns the
    start clusters of the files still alive at the end.
    """
    rng = random.Random(seed)
    file_starts: List[int] = []

    for _ in range(steps):
        action = rng.randrange(5)
        file_size = rng.randint(1, SMOKE_MAX_FILE_KIB) * KIB
        start = rng.choice(file_starts) if file_starts else END_OF_CHAIN
        offset = rng.randrange(SMOKE_MAX_OFFSET)

        try:
            if action == 0:
                console.print(f"Allocating file of size: {file_size}")
                file_starts.append(table.allocate(file_size))
            elif action == 1:
                console.print(f"Appending {file_size} bytes to file starting at cluster: {start}")
                table.append(start, file_size)
            elif action == 2:
                console.print(f"Getting cluster list for file starting at cluster: {start}")
                clusters = table.get_cluster_list(start)
                if clusters:
                    console.print("Cluster list: " + " ".join(str(c) for c in clusters))
            elif action == 3:
                console.print(f"Seeking cluster at offset {offset} bytes in file starting at cluster: {start}")
                console.print(f"Found cluster: {table.seek_cluster(start, offset)}")
            else:
                console.print(f"Deleting file starting at cluster: {start}")
                table.delete_file(start)
                file_starts = [s for s in file_starts if s != start]
        except AllocationTableError as e:
            console.print(f"[red]Error: {e}[/red]")

        if show_status:
            console.print(status_table(table, occupied_only=True))

    return file_starts


def main():
    configure_logging()
    console = Console()

    demo(console)

    console.print("\n[bold]smoke test:[/bold]")
    table = create_table(SMOKE_POINTER_BITS, SMOKE_CLUSTER_SIZE)
    live = smoke_test(table, console, show_status=False)
    console.print(f"{len(live)} files alive, {table.used_count()} of {table.capacity} clusters used")

    issues = table.check(live)
    if issues:
        for issue in issues:
            console.print(f"[red]{issue}[/red]")
    else:
        console.print("[green]table is consistent[/green]")


if __name__ == "__main__":
    main()
