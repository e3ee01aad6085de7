"""Reference graph: input cell -> formulas that read it."""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterator

from gridcalc.address import CellAddress

if TYPE_CHECKING:
    from gridcalc.registry import Formula


class ReferenceGraph:
    """Inverse index of every installed formula's bindings.

    A formula appears at most once per input address regardless of how many
    variable names resolve to it.  Empty entries are pruned, so absence and
    emptiness mean the same thing.  The graph performs no resolution; the
    formula registry subscribes and unsubscribes bindings.
    """

    __slots__ = ("_dependents",)

    def __init__(self) -> None:
        # cell -> formulas that read from it
        self._dependents: dict[CellAddress, set[Formula]] = {}

    def subscribe(self, address: CellAddress, formula: Formula) -> None:
        """Record that *formula* reads *address*."""
        self._dependents.setdefault(address, set()).add(formula)

    def unsubscribe(self, address: CellAddress, formula: Formula) -> None:
        """Forget that *formula* reads *address*.  No-op if it was not recorded."""
        dependents = self._dependents.get(address)
        if dependents is None:
            return
        dependents.discard(formula)
        if not dependents:
            del self._dependents[address]

    def dependents_of(self, address: CellAddress) -> frozenset[Formula]:
        """Formulas reading *address* (empty if none).  Unordered."""
        return frozenset(self._dependents.get(address, ()))

    def addresses(self) -> Iterator[CellAddress]:
        """Input addresses that currently have at least one dependent."""
        return iter(list(self._dependents))

    def __contains__(self, address: object) -> bool:
        return address in self._dependents

    def __len__(self) -> int:
        return len(self._dependents)
