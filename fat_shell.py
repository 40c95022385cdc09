import sys
from typing import List

import attr
from rich import print

from fat import DEFAULT_CLUSTER_SIZE, DEFAULT_POINTER_BITS, EMPTY_FILE, END_OF_CHAIN
from fatapi import ClusterAllocationTable, create_table
from fat_demo import configure_logging, status_table

commands = []


@attr.s(auto_attribs=True)
class ShellSession:
    """State of one shell: the table and the files handed out so far"""
    table: ClusterAllocationTable
    files: List[int] = attr.ib(factory=list)

    def forget(self, start: int):
        self.files = [f for f in self.files if f != start]


def command(name, description):
    def decorator(func):
        commands.append({'name': name, 'func': func, 'description': description})
        return func
    return decorator


def find_command(name):
    return next((c for c in commands if c['name'] == name), None)


def parse_int(text, what):
    try:
        return int(text, 0)
    except ValueError:
        raise ValueError(f"invalid {what}: {text}") from None


@command('help', 'Show available commands')
def handle_help(args, session):
    print("Available commands:")
    for cmd in sorted(commands, key=lambda x: x['name']):
        print(f"  {cmd['name']}: {cmd['description']}")


@command('alloc', 'Allocate a file: alloc <bytes>')
def handle_alloc(args, session):
    if not args:
        print("alloc: missing operand")
        return
    size = parse_int(args[0], "size")
    start = session.table.allocate(size)
    if start is EMPTY_FILE:
        print("Empty file, no clusters allocated")
        return
    session.files.append(start)
    clusters = session.table.get_cluster_list(start)
    print(f"File starts at cluster [bold]{start}[/bold] ({len(clusters)} clusters)")


@command('append', 'Grow a file: append <start> <bytes>')
def handle_append(args, session):
    if len(args) < 2:
        print("append: missing operand")
        return
    start = parse_int(args[0], "start cluster")
    size = parse_int(args[1], "size")
    before = session.table.chain_length(start)
    session.table.append(start, size)
    after = session.table.chain_length(start)
    print(f"File {start}: {before} -> {after} clusters")


@command('chain', 'List the clusters of a file: chain <start>')
def handle_chain(args, session):
    if not args:
        print("chain: missing operand")
        return
    start = parse_int(args[0], "start cluster")
    clusters = session.table.get_cluster_list(start)
    if not clusters:
        print(f"chain: no file at cluster {start}")
        return
    print(" -> ".join(str(c) for c in clusters))


@command('seek', 'Find the cluster holding a byte: seek <start> <offset>')
def handle_seek(args, session):
    if len(args) < 2:
        print("seek: missing operand")
        return
    start = parse_int(args[0], "start cluster")
    offset = parse_int(args[1], "offset")
    cluster = session.table.seek_cluster(start, offset)
    if cluster == END_OF_CHAIN:
        print(f"seek: offset {offset} is not inside a file at cluster {start}")
    else:
        print(f"Offset {offset} is in cluster [bold]{cluster}[/bold]")


@command('rm', 'Delete a file: rm <start>')
def handle_rm(args, session):
    if not args:
        print("rm: missing operand")
        return
    start = parse_int(args[0], "start cluster")
    released = session.table.chain_length(start)
    session.table.delete_file(start)
    session.forget(start)
    print(f"Released {released} clusters")


@command('status', 'Show the cluster table: status [--all]')
def handle_status(args, session):
    print(status_table(session.table, occupied_only="--all" not in args))


@command('df', 'Display cluster usage')
def handle_df(args, session):
    table = session.table
    used = table.used_count()
    free = table.free_count()
    print("Clusters  Used  Free  Use%  Cluster size  Files")
    print("{:8d}  {:4d}  {:4d}  {:3.0f}%  {:12d}  {:5d}".format(
        table.capacity, used, free, used / table.capacity * 100, table.cluster_bytes, len(session.files)))


@command('fsck', 'Check the table against the files handed out')
def handle_fsck(args, session):
    issues = session.table.check(session.files)
    if not issues:
        print("[green]No problems found[/green]")
        return
    for issue in issues:
        print(f"[red]{issue}[/red]")


@command('get', 'Read a raw table entry: get <cluster>')
def handle_get(args, session):
    if not args:
        print("get: missing operand")
        return
    cluster = parse_int(args[0], "cluster")
    occupied = session.table.get_status(cluster)
    target = session.table.get_next(cluster)
    print(f"Cluster {cluster}: {'used' if occupied else 'free'}, next {target}")


@command('set', 'Write a raw table entry: set status <cluster> 0|1, set next <cluster> <target>')
def handle_set(args, session):
    if len(args) < 3:
        print("set: missing operand")
        return
    field, cluster, value = args[0], parse_int(args[1], "cluster"), parse_int(args[2], "value")
    if field == "status":
        session.table.set_status(cluster, bool(value))
    elif field == "next":
        session.table.set_next(cluster, value)
    else:
        print(f"set: unknown field {field}")


def main():
    configure_logging()

    try:
        pointer_bits = int(sys.argv[1]) if len(sys.argv) > 1 else DEFAULT_POINTER_BITS
        cluster_bytes = int(sys.argv[2]) if len(sys.argv) > 2 else DEFAULT_CLUSTER_SIZE
        session = ShellSession(create_table(pointer_bits, cluster_bytes))
        print(f"Table with {session.table.capacity} clusters of {cluster_bytes} bytes")
    except Exception as e:
        print(f"Error creating table: {e}")
        return

    while True:
        try:
            print("[bold cyan]fat[/bold cyan][bold white]>[/bold white] ", end="")
            cmd = input().strip()
            if not cmd:
                continue

            parts = cmd.split()
            command_name = parts[0].lower()
            args = parts[1:]

            if command_name == "exit" or command_name == "quit":
                break

            cmd_entry = find_command(command_name)
            if cmd_entry:
                try:
                    cmd_entry['func'](args, session)
                except Exception as e:
                    print(f"{command_name}: {e}")
            else:
                print(f"Unknown command: {command_name}")

        except (KeyboardInterrupt, EOFError):
            print("\nExiting...")
            break


if __name__ == "__main__":
    main()
