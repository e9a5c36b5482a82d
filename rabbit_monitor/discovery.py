"""One-shot listings that help pick values for the filter options."""

from __future__ import annotations

from typing import Callable, TextIO

from rabbit_monitor.facts import PlatformFacts


def list_interfaces(facts: PlatformFacts) -> list[str]:
    return sorted(facts.network())


def list_disks(facts: PlatformFacts) -> list[str]:
    return [f"{disk.name}\t{disk.mount_point}" for disk in facts.disks()]


def list_components(facts: PlatformFacts) -> list[str]:
    return [reading.label for reading in facts.components()]


def list_processes(facts: PlatformFacts) -> list[str]:
    return [f"{pid}\t{name}" for pid, name in facts.process_list()]


def list_ups(facts: PlatformFacts) -> list[str]:
    return facts.ups_names()


def list_batteries(facts: PlatformFacts) -> list[str]:
    return [
        f"{name}\t{battery.vendor} {battery.model}".rstrip()
        for name, battery in sorted(facts.batteries().items())
    ]


LISTINGS: dict[str, Callable[[PlatformFacts], list[str]]] = {
    "interfaces": list_interfaces,
    "disks": list_disks,
    "components": list_components,
    "processes": list_processes,
    "ups": list_ups,
    "batteries": list_batteries,
}


def print_listing(kind: str, facts: PlatformFacts, stream: TextIO) -> int:
    """Print one listing, one entry per line. Returns the number of entries."""
    entries = LISTINGS[kind](facts)
    if not entries:
        stream.write(f"No {kind} found.\n")
        return 0
    for entry in entries:
        stream.write(f"{entry}\n")
    return len(entries)
