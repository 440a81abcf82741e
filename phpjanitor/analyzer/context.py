"""Analysis context: the frozen, read-only input every liveness analyzer consumes."""
import re
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Set

from phpjanitor.analyzer.dependencies import ComposerDependencies
from phpjanitor.analyzer.models import Reference, ReferenceKind, Severity, Symbol, UseStatement
from phpjanitor.analyzer.reference_tracker import references_by_kind
from phpjanitor.analyzer.symbol_table import SymbolTable


# rule name -> default severity
DEFAULT_RULES: Dict[str, Severity] = {
    'unused-files': Severity.WARNING,
    'unused-classes': Severity.ERROR,
    'unused-interfaces': Severity.WARNING,
    'unused-traits': Severity.ERROR,
    'unused-functions': Severity.ERROR,
    'unused-methods': Severity.WARNING,
    'unused-properties': Severity.WARNING,
    'unused-constants': Severity.WARNING,
    'unused-use-statements': Severity.WARNING,
    'unused-dependencies': Severity.WARNING,
}

# Files executed directly by the web server or CLI
DEFAULT_ENTRY_POINT_PATTERNS = (
    'bin/*',
    'public/index.php',
    'public/*.php',
    'index.php',
    'bootstrap.php',
    'bootstrap/*.php',
    'artisan',
    'console/*',
    'cli/*',
)


@lru_cache(maxsize=512)
def symbol_pattern(pattern: str) -> re.Pattern:
    """Compile a symbol glob: ``*`` matches any substring, ``?`` one character."""
    parts = []
    for char in pattern:
        if char == '*':
            parts.append('.*')
        elif char == '?':
            parts.append('.')
        else:
            parts.append(re.escape(char))
    return re.compile('^' + ''.join(parts) + '$', re.IGNORECASE)


@lru_cache(maxsize=512)
def path_pattern(pattern: str) -> re.Pattern:
    """Compile a path glob: ``**`` crosses directories, ``*`` and ``?`` do not."""
    pattern = pattern.replace('\\', '/')
    if pattern.startswith('./'):
        pattern = pattern[2:]
    regex = []
    i = 0
    while i < len(pattern):
        if pattern.startswith('**/', i):
            regex.append('(?:.*/)?')
            i += 3
        elif pattern.startswith('**', i):
            regex.append('.*')
            i += 2
        elif pattern[i] == '*':
            regex.append('[^/]*')
            i += 1
        elif pattern[i] == '?':
            regex.append('[^/]')
            i += 1
        else:
            regex.append(re.escape(pattern[i]))
            i += 1
    return re.compile('^' + ''.join(regex) + '$')


def matches_symbol_pattern(name: str, patterns: Iterable[str]) -> bool:
    return any(symbol_pattern(p).match(name) for p in patterns)


def matches_path_pattern(path: str, patterns: Iterable[str]) -> bool:
    path = path.replace('\\', '/')
    return any(path_pattern(p).match(path) for p in patterns)


@dataclass
class AnalysisSettings:
    """Rule toggles, severities, ignore lists and entry points for one run."""
    rules: Dict[str, Optional[Severity]] = field(default_factory=lambda: dict(DEFAULT_RULES))
    ignore_patterns: List[str] = field(default_factory=list)  # symbol FQN globs
    ignore_paths: List[str] = field(default_factory=list)  # project-relative path globs
    entry_points: List[str] = field(default_factory=list)  # project-relative path globs
    ignore_dependencies: List[str] = field(default_factory=list)  # composer package name globs
    check_public_methods: bool = False
    check_public_constants: bool = False

    def severity(self, rule: str) -> Optional[Severity]:
        """Configured severity, or None when the rule is switched off."""
        if rule in self.rules:
            return self.rules[rule]
        return DEFAULT_RULES.get(rule)


class AnalysisContext:
    """Everything the analyzers need, assembled once and never mutated.

    Plugin contributions are ordinary inputs: extra References are appended
    to the reference list, extra ignore patterns and entry points extend
    the configured ones.
    """

    def __init__(self,
                 symbol_table: SymbolTable,
                 references: Sequence[Reference] = (),
                 use_statements: Optional[Dict[str, List[UseStatement]]] = None,
                 settings: Optional[AnalysisSettings] = None,
                 project_root: Optional[str | Path] = None,
                 plugin_references: Sequence[Reference] = (),
                 plugin_ignore_patterns: Sequence[str] = (),
                 plugin_ignore_file_patterns: Sequence[str] = (),
                 entry_point_symbols: Iterable[str] = (),
                 entry_point_files: Iterable[str] = (),
                 dependencies: Optional[ComposerDependencies] = None):
        self.symbol_table = symbol_table.freeze()
        self.references = tuple(references) + tuple(plugin_references)
        self.use_statements = {f: tuple(uses) for f, uses in (use_statements or {}).items()}
        self.settings = settings or AnalysisSettings()
        self.project_root = Path(project_root).resolve() if project_root else None
        self.ignore_patterns = tuple(self.settings.ignore_patterns) + tuple(plugin_ignore_patterns)
        self.ignore_paths = tuple(self.settings.ignore_paths) + tuple(plugin_ignore_file_patterns)
        self.entry_point_symbols = frozenset(s.lstrip('\\').lower() for s in entry_point_symbols)
        self.entry_point_files = tuple(entry_point_files)
        self.dependencies = dependencies

        self._by_kind = references_by_kind(list(self.references))
        self._by_file: Dict[str, List[Reference]] = {}
        for ref in self.references:
            self._by_file.setdefault(ref.file, []).append(ref)

    # -- references --------------------------------------------------------

    def references_of(self, *kinds: ReferenceKind, include_dynamic: bool = False) -> List[Reference]:
        found = []
        for kind in kinds:
            for ref in self._by_kind.get(kind, ()):
                if include_dynamic or not ref.is_dynamic:
                    found.append(ref)
        return found

    def references_in(self, file_path: str) -> List[Reference]:
        return list(self._by_file.get(file_path, ()))

    def alias_map(self, file_path: str) -> Dict[str, str]:
        """alias -> FQN for the class imports of one file."""
        return {u.alias: u.fqn for u in self.use_statements.get(file_path, ()) if u.kind == 'class'}

    def dynamic_member_classes(self) -> Set[str]:
        """Lowercased FQNs of classes that access their own members dynamically."""
        classes = set()
        for ref in self._by_kind.get(ReferenceKind.PROPERTY_ACCESS, ()):
            if ref.is_dynamic and ref.symbol_parent:
                classes.add(ref.symbol_parent.lower())
        for ref in self._by_kind.get(ReferenceKind.STATIC_PROPERTY, ()):
            if ref.is_dynamic and ref.symbol_parent:
                classes.add(ref.symbol_parent.lower())
        return classes

    # -- configuration -----------------------------------------------------

    def severity(self, rule: str) -> Optional[Severity]:
        return self.settings.severity(rule)

    def relative_path(self, file_path: str) -> str:
        path = Path(file_path)
        if self.project_root is not None and path.is_absolute():
            try:
                return path.resolve().relative_to(self.project_root).as_posix()
            except ValueError:
                pass
        return path.as_posix()

    def is_path_ignored(self, file_path: str) -> bool:
        if not self.ignore_paths:
            return False
        return matches_path_pattern(self.relative_path(file_path), self.ignore_paths)

    def matches_ignore_pattern(self, fqn: str) -> bool:
        return matches_symbol_pattern(fqn, self.ignore_patterns)

    def is_ignored(self, symbol: Symbol, rule: str) -> bool:
        """True if an annotation, ignore pattern or ignored path suppresses the symbol."""
        if symbol.ignored and symbol.ignored_rule in (None, rule):
            return True
        if self.matches_ignore_pattern(symbol.fqn):
            return True
        if symbol.owner and self.matches_ignore_pattern(symbol.owner):
            return True
        return self.is_path_ignored(symbol.file)

    def is_entry_point_symbol(self, fqn: str) -> bool:
        return fqn.lower() in self.entry_point_symbols

    def is_entry_point_file(self, file_path: str) -> bool:
        relative = self.relative_path(file_path)
        patterns = (*DEFAULT_ENTRY_POINT_PATTERNS, *self.settings.entry_points, *self.entry_point_files)
        return matches_path_pattern(relative, patterns)
