"""Project-wide symbol table with kind/owner/file indices and a class hierarchy graph."""
from typing import Dict, Iterable, Iterator, List, Set

import networkx as nx

from phpjanitor.analyzer.models import CLASS_LIKE_KINDS, Symbol, SymbolKind
from phpjanitor.errors import SymbolTableFrozenError


class SymbolTable:
    """All Symbols of a run, built by merging per-file results, then frozen.

    FQNs are not unique: conditional declarations (``if (!class_exists(...))``)
    and duplicated polyfills are kept as separate entries under the same key.

    The class hierarchy is a DiGraph with an edge child -> parent for every
    ``extends``, ``implements`` and trait ``use``. Node keys are lowercased
    because PHP class names are case-insensitive.
    """

    def __init__(self, symbols: Iterable[Symbol] = ()):
        self._by_fqn: Dict[str, List[Symbol]] = {}
        self._by_kind: Dict[SymbolKind, List[Symbol]] = {}
        self._by_owner: Dict[str, List[Symbol]] = {}
        self._by_file: Dict[str, List[Symbol]] = {}
        self.hierarchy = nx.DiGraph()
        self._frozen = False
        self.add_all(symbols)

    def add(self, symbol: Symbol):
        """Register a symbol.

        Raises:
            SymbolTableFrozenError: If the table has been frozen
        """
        if self._frozen:
            raise SymbolTableFrozenError(f"Cannot add {symbol.id}: symbol table is frozen")

        self._by_fqn.setdefault(symbol.fqn, []).append(symbol)
        self._by_kind.setdefault(symbol.kind, []).append(symbol)
        self._by_file.setdefault(symbol.file, []).append(symbol)
        if symbol.owner:
            self._by_owner.setdefault(symbol.owner.lower(), []).append(symbol)

        if symbol.kind in CLASS_LIKE_KINDS:
            node = symbol.fqn.lower()
            self.hierarchy.add_node(node)
            for parent in (*symbol.extends, *symbol.implements, *symbol.uses_traits):
                self.hierarchy.add_edge(node, parent.lower())

    def add_all(self, symbols: Iterable[Symbol]):
        for symbol in symbols:
            self.add(symbol)

    def freeze(self) -> 'SymbolTable':
        """Make the table read-only. Symbol metadata stays writable for plugins."""
        self._frozen = True
        return self

    @property
    def is_frozen(self) -> bool:
        return self._frozen

    # -- lookups -----------------------------------------------------------

    def get(self, fqn: str) -> List[Symbol]:
        return list(self._by_fqn.get(fqn, []))

    def of_kind(self, *kinds: SymbolKind) -> List[Symbol]:
        found = []
        for kind in kinds:
            found.extend(self._by_kind.get(kind, []))
        return found

    def class_likes(self) -> List[Symbol]:
        return self.of_kind(SymbolKind.CLASS, SymbolKind.INTERFACE, SymbolKind.TRAIT, SymbolKind.ENUM)

    def members_of(self, owner: str) -> List[Symbol]:
        return list(self._by_owner.get(owner.lower(), []))

    def in_file(self, file_path: str) -> List[Symbol]:
        return list(self._by_file.get(file_path, []))

    @property
    def files(self) -> List[str]:
        return sorted(self._by_file)

    # -- hierarchy ---------------------------------------------------------

    def ancestors(self, class_fqn: str) -> Set[str]:
        """Lowercased FQNs of every parent, interface and trait above a class."""
        node = class_fqn.lower()
        if node not in self.hierarchy:
            return set()
        return nx.descendants(self.hierarchy, node)

    def descendants(self, class_fqn: str) -> Set[str]:
        """Lowercased FQNs of every class extending / implementing / using this one."""
        node = class_fqn.lower()
        if node not in self.hierarchy:
            return set()
        return nx.ancestors(self.hierarchy, node)

    def family(self, class_fqn: str) -> Set[str]:
        """The class itself plus everything above and below it."""
        return {class_fqn.lower()} | self.ancestors(class_fqn) | self.descendants(class_fqn)

    def __len__(self) -> int:
        return sum(len(symbols) for symbols in self._by_fqn.values())

    def __iter__(self) -> Iterator[Symbol]:
        for symbols in self._by_fqn.values():
            yield from symbols
