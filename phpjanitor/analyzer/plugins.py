"""Framework plugins.

A plugin tells the analyzers about usage that is invisible in PHP source:
classes wired up by configuration files, files executed by the framework,
naming conventions the framework calls by reflection. Plugins run after
collection and before analysis; they only ever add References, ignore
patterns and entry points, or set ``metadata`` flags on Symbols.

The bundled plugins are data-driven: each ``rules/<name>.json`` file becomes
one RulePlugin.
"""
import json
import logging
import re
from functools import lru_cache
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple, Union

from phpjanitor.analyzer.models import Reference, ReferenceKind, short_name
from phpjanitor.analyzer.resolver import NameScope
from phpjanitor.analyzer.symbol_table import SymbolTable


logger = logging.getLogger(__name__)

RULES_DIR = Path(__file__).parent.parent / "rules"
SKIPPED_DIRS = frozenset({"vendor", "node_modules", ".git"})

# App\Http\Controllers\HomeController, also with doubled backslashes inside PHP strings
FQN_LITERAL = re.compile(r'\\{0,2}([A-Z][A-Za-z0-9_]*(?:\\{1,2}[A-Za-z_][A-Za-z0-9_]*)+)')
# Laravel's 'HomeController@index' route syntax
CONTROLLER_ACTION = re.compile(r'[\'"]([A-Za-z0-9_\\]+)@([A-Za-z_][A-Za-z0-9_]*)[\'"]')

NAMESPACE_DECLARATION = re.compile(r'^\s*namespace\s+([A-Za-z_\\][A-Za-z0-9_\\]*)\s*[;{]', re.MULTILINE)
# Top-level class imports only; indented `use` inside a class body imports a trait
USE_IMPORT = re.compile(
    r'^use\s+(\\?[A-Za-z_][A-Za-z0-9_\\]*)(?:\s+as\s+([A-Za-z_][A-Za-z0-9_]*))?\s*;',
    re.MULTILINE | re.IGNORECASE,
)
IDENTIFIER = r'[^\W\d]\w*'
# One call argument: a string, a one-level call such as __('Shop', 'acme'), or a plain expression
ARGUMENT = r'(?:[\'"][^\'"]*[\'"]|\w+\s*\([^()]*\)|[^,()\'"]+?)'
QUALIFIED = r'\\{0,2}[^\W\d][\w\\]*'
# [$this, 'method'], array(__CLASS__, 'method'), [Foo::class, 'method'], ['Foo', 'method']
ARRAY_CALLBACK = (
    r'(?:array\s*\(|\[)\s*'
    r'(?:(?P<this>\$this|__CLASS__|self::class|static::class)'
    rf'|[\'"](?P<class_string>{QUALIFIED})[\'"]'
    rf'|(?P<class_constant>{QUALIFIED})::class)'
    rf'\s*,\s*[\'"](?P<method>{IDENTIFIER})[\'"]\s*[)\]]'
)


def load_composer(project_root: str | Path) -> Dict:
    """Read composer.json from the project root; {} when absent or unreadable."""
    path = Path(project_root) / "composer.json"
    if not path.is_file():
        return {}
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Ignoring unreadable composer.json: %s", e)
        return {}
    return data if isinstance(data, dict) else {}


def composer_packages(composer: Dict) -> List[str]:
    packages = []
    for section in ('require', 'require-dev'):
        value = composer.get(section)
        if isinstance(value, dict):
            packages.extend(name.lower() for name in value)
    return packages


def composer_entry_files(composer: Dict) -> List[str]:
    """Project-relative files composer executes or always loads (``bin``, ``autoload.files``)."""
    files = []
    bins = composer.get('bin', [])
    if isinstance(bins, str):
        bins = [bins]
    files.extend(bins)
    autoload = composer.get('autoload')
    if isinstance(autoload, dict):
        files.extend(autoload.get('files', []))
    return [f[2:] if f.startswith('./') else f for f in files if isinstance(f, str)]


class Plugin:
    """Base class for framework plugins. Every hook defaults to contributing nothing."""

    name = "plugin"
    description = ""
    priority = 0

    def is_applicable(self, project_root: Path, composer: Dict) -> bool:
        return False

    def ignore_patterns(self) -> List[str]:
        return []

    def ignore_file_patterns(self) -> List[str]:
        return []

    def entry_points(self, project_root: Path) -> List[str]:
        """FQNs of classes/functions, or project-relative files, the framework runs."""
        return []

    def additional_references(self, project_root: Path) -> List[Reference]:
        return []

    def annotate(self, table: SymbolTable, project_root: Path):
        """Set metadata flags on Symbols; must not add or remove Symbols."""


class RulePlugin(Plugin):
    """Plugin defined by a JSON rule file."""

    def __init__(self, data: Dict, source: Optional[Path] = None):
        self.data = data
        self.source = source
        self.name = data.get('name') or (source.stem if source else 'rules')
        self.description = data.get('description', '')
        self.priority = int(data.get('priority', 0))

    @classmethod
    def from_file(cls, path: str | Path) -> 'RulePlugin':
        path = Path(path)
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Rule file {path.name} must contain a JSON object")
        return cls(data, path)

    def is_applicable(self, project_root: Path, composer: Dict) -> bool:
        detect = self.data.get('detect', {})
        for marker in detect.get('files', []):
            if (project_root / marker).exists():
                return True
        packages = composer_packages(composer)
        wanted = {p.lower() for p in detect.get('packages', [])}
        if wanted.intersection(packages):
            return True
        prefixes = tuple(p.lower() for p in detect.get('package_prefixes', []))
        return bool(prefixes) and any(p.startswith(prefixes) for p in packages)

    def ignore_patterns(self) -> List[str]:
        return list(self.data.get('ignore_patterns', []))

    def ignore_file_patterns(self) -> List[str]:
        return list(self.data.get('ignore_file_patterns', []))

    def entry_points(self, project_root: Path) -> List[str]:
        return list(self.data.get('entry_point_files', []))

    def _reference_files(self, project_root: Path) -> List[Path]:
        files = []
        for pattern in self.data.get('reference_files', []):
            files.extend(p for p in sorted(project_root.glob(pattern)) if p.is_file())
        return files

    def _hook_files(self, project_root: Path) -> List[Path]:
        hooks = self.data.get('hooks', {})
        files = set()
        for pattern in hooks.get('files', ['**/*.php']):
            for path in project_root.glob(pattern):
                parts = path.relative_to(project_root).parts[:-1]
                if path.is_file() and not SKIPPED_DIRS.intersection(parts):
                    files.add(path)
        return sorted(files)

    def additional_references(self, project_root: Path) -> List[Reference]:
        """Class names mentioned in framework configuration (routes, services, bundles),
        plus callbacks registered through the hook functions listed under ``hooks``."""
        references = []
        for path in self._reference_files(project_root):
            text = _read_text(path)
            if text is not None:
                references.extend(scan_class_names(text, str(path), self.name))

        hooks = self.data.get('hooks')
        if hooks:
            functions = hooks.get('functions', [])
            commands = hooks.get('commands', [])
            for path in self._hook_files(project_root):
                text = _read_text(path)
                if text is not None:
                    references.extend(scan_hook_callbacks(text, str(path), functions, commands, self.name))
        return references

    def annotate(self, table: SymbolTable, project_root: Path):
        rules = self.data.get('framework_used', {})
        directories = [d.strip('/') + '/' for d in rules.get('directories', [])]
        bases = {b.lstrip('\\').lower() for b in rules.get('base_classes', [])}
        namespaces = [n.strip('\\').lower() + '\\' for n in rules.get('namespaces', [])]

        for symbol in table.class_likes():
            relative = _relative(symbol.file, project_root)
            reason = None
            if any(relative.startswith(d) for d in directories):
                reason = f"{self.name}: framework directory"
            elif bases and bases.intersection(table.ancestors(symbol.fqn)):
                reason = f"{self.name}: framework base class"
            elif any(symbol.fqn.lower().startswith(n) for n in namespaces):
                reason = f"{self.name}: framework namespace"
            if reason:
                symbol.metadata['framework_used'] = True
                symbol.metadata['framework_reason'] = reason


def _read_text(path: Path) -> Optional[str]:
    try:
        return path.read_text(encoding='utf-8', errors='replace')
    except OSError as e:
        logger.debug("Skipping %s: %s", path, e)
        return None


def _relative(file_path: str, project_root: Path) -> str:
    path = Path(file_path)
    try:
        return path.resolve().relative_to(project_root.resolve()).as_posix()
    except ValueError:
        return path.as_posix()


def scan_class_names(text: str, file_path: str, source: str = '') -> List[Reference]:
    """Turn FQN-looking strings in a non-PHP (or config) file into class-string References.

    ``Controller@method`` strings additionally yield a method-call on that class.
    """
    references = []
    for number, line in enumerate(text.splitlines(), start=1):
        for match in FQN_LITERAL.finditer(line):
            name = match.group(1).replace('\\\\', '\\')
            references.append(Reference(
                kind=ReferenceKind.CLASS_STRING,
                symbol_name=name,
                file=file_path,
                line=number,
                context=source,
            ))
        for match in CONTROLLER_ACTION.finditer(line):
            controller = match.group(1).replace('\\\\', '\\').lstrip('\\')
            references.append(Reference(
                kind=ReferenceKind.METHOD_CALL,
                symbol_name=match.group(2),
                symbol_parent=controller,
                file=file_path,
                line=number,
                context=source,
            ))
    return references


def _callback_positions(functions: Union[Dict[str, int], Iterable[str]]) -> Tuple[Tuple[str, int], ...]:
    """(function, 1-based callback argument) pairs; a plain list means the second argument."""
    if isinstance(functions, dict):
        return tuple(sorted((name, int(position)) for name, position in functions.items()))
    return tuple((name, 2) for name in functions)


@lru_cache(maxsize=32)
def _hook_pattern(positions: Tuple[Tuple[str, int], ...]) -> re.Pattern:
    by_position: Dict[int, List[str]] = {}
    for name, position in positions:
        by_position.setdefault(position, []).append(re.escape(name))
    calls = '|'.join(
        rf'(?:{"|".join(names)})\s*\(\s*(?:{ARGUMENT}\s*,\s*){{{position - 1}}}'
        for position, names in sorted(by_position.items())
    )
    return re.compile(
        rf'\b(?:{calls})'
        rf'(?:[\'"](?P<function>{QUALIFIED})[\'"]|{ARRAY_CALLBACK})'
    )


@lru_cache(maxsize=32)
def _command_pattern(commands: Tuple[str, ...]) -> re.Pattern:
    names = '|'.join(re.escape(c) for c in commands)
    return re.compile(
        rf'(?<![\w\\])(?:{names})\s*\(\s*[\'"][^\'"]*[\'"]\s*,\s*'
        rf'(?:[\'"](?P<class_string>{QUALIFIED})[\'"]|(?P<class_constant>{QUALIFIED})::class)'
    )


def _file_scope(text: str) -> NameScope:
    """Namespace and class imports of a PHP file, read with regexes."""
    match = NAMESPACE_DECLARATION.search(text)
    aliases = {}
    for use in USE_IMPORT.finditer(text):
        fqn = use.group(1).lstrip('\\')
        aliases[(use.group(2) or short_name(fqn)).lower()] = fqn
    return NameScope(namespace=match.group(1).strip('\\') if match else '', class_aliases=aliases)


def _class_name(match: re.Match, scope: NameScope) -> str:
    """Quoted class names are always fully qualified; ``Foo::class`` resolves like code."""
    if match.group('class_string'):
        return match.group('class_string').replace('\\\\', '\\').lstrip('\\')
    return scope.resolve_class(match.group('class_constant'))


def scan_hook_callbacks(text: str, file_path: str, functions: Union[Dict[str, int], Iterable[str]],
                        commands: Iterable[str] = (), source: str = '') -> List[Reference]:
    """References for callbacks registered by name (``add_action('init', 'boot')``).

    ``functions`` maps each registration function to the 1-based position of
    its callback argument; a plain list of names means the second argument.
    String callbacks become function-calls, ``[$this, 'm']`` an untyped
    method-call, ``[Foo::class, 'm']`` and ``['Foo', 'm']`` a static-call on
    Foo. Classes handed to a command registrar (``WP_CLI::add_command``)
    become class-strings. ``Foo::class`` resolves through the file's namespace
    and class imports.
    """
    positions, commands = _callback_positions(functions), tuple(commands)
    scope = _file_scope(text)

    def line_of(offset: int) -> int:
        return text.count('\n', 0, offset) + 1

    references = []
    for match in (_hook_pattern(positions).finditer(text) if positions else ()):
        line = line_of(match.start())
        if match.group('function'):
            references.append(Reference(
                kind=ReferenceKind.FUNCTION_CALL,
                symbol_name=match.group('function').replace('\\\\', '\\').lstrip('\\'),
                file=file_path,
                line=line,
                context=source,
            ))
        elif match.group('this'):
            references.append(Reference(
                kind=ReferenceKind.METHOD_CALL,
                symbol_name=match.group('method'),
                file=file_path,
                line=line,
                context=source,
            ))
        else:
            references.append(Reference(
                kind=ReferenceKind.STATIC_CALL,
                symbol_name=match.group('method'),
                symbol_parent=_class_name(match, scope),
                file=file_path,
                line=line,
                context=source,
            ))

    for match in (_command_pattern(commands).finditer(text) if commands else ()):
        references.append(Reference(
            kind=ReferenceKind.CLASS_STRING,
            symbol_name=_class_name(match, scope),
            file=file_path,
            line=line_of(match.start()),
            context=source,
        ))
    return references


def load_builtin_plugins(rules_dir: Optional[Path] = None) -> List[Plugin]:
    """One RulePlugin per JSON file in the rules directory. Malformed files are skipped."""
    rules_dir = Path(rules_dir or RULES_DIR)
    plugins: List[Plugin] = []
    if not rules_dir.exists():
        logger.warning("Rules directory not found: %s", rules_dir)
        return plugins
    for json_file in sorted(rules_dir.glob('*.json')):
        try:
            plugins.append(RulePlugin.from_file(json_file))
        except (OSError, ValueError) as e:
            # json.JSONDecodeError is a ValueError
            logger.warning("Skipping rule file %s: %s", json_file.name, e)
    return plugins


class PluginManager:
    """Registry of plugins; activation picks the ones that apply to a project."""

    def __init__(self, plugins: Iterable[Plugin] = ()):
        self._plugins: Dict[str, Plugin] = {}
        self.active: List[Plugin] = []
        for plugin in plugins:
            self.register(plugin)

    def register(self, plugin: Plugin):
        """Register a plugin; a later plugin with the same name replaces the earlier one."""
        self._plugins[plugin.name] = plugin

    @property
    def registered(self) -> List[Plugin]:
        return list(self._plugins.values())

    def activate(self, project_root: str | Path, composer: Optional[Dict] = None,
                 framework: str = 'auto', enabled: Iterable[str] = ()) -> List[Plugin]:
        """Select the plugins for a project, highest priority first.

        Args:
            project_root: Project being analysed
            composer: Parsed composer.json (read from the root when None)
            framework: 'auto' to detect, 'none' for no plugins, or a plugin name
            enabled: Plugin names forced on in addition to detection

        Returns:
            The active plugins
        """
        root = Path(project_root)
        composer = load_composer(root) if composer is None else composer
        forced = set(enabled)
        framework = (framework or 'auto').lower()

        selected = []
        for plugin in self._plugins.values():
            if plugin.name in forced:
                selected.append(plugin)
            elif framework == 'auto':
                if plugin.is_applicable(root, composer):
                    selected.append(plugin)
            elif framework == plugin.name:
                selected.append(plugin)

        unknown = forced - set(self._plugins)
        if framework not in ('auto', 'none') and framework not in self._plugins:
            unknown.add(framework)
        for name in sorted(unknown):
            logger.warning("Unknown framework plugin: %s", name)

        self.active = sorted(selected, key=lambda p: (-p.priority, p.name))
        if self.active:
            logger.info("Active plugins: %s", ', '.join(self.active_names))
        return self.active

    @property
    def active_names(self) -> List[str]:
        return [p.name for p in self.active]

    def ignore_patterns(self) -> List[str]:
        return [pattern for p in self.active for pattern in p.ignore_patterns()]

    def ignore_file_patterns(self) -> List[str]:
        return [pattern for p in self.active for pattern in p.ignore_file_patterns()]

    def entry_points(self, project_root: str | Path) -> List[str]:
        root = Path(project_root)
        seen = {}
        for plugin in self.active:
            for entry in plugin.entry_points(root):
                seen.setdefault(entry, None)
        return list(seen)

    def additional_references(self, project_root: str | Path) -> List[Reference]:
        root = Path(project_root)
        return [ref for p in self.active for ref in p.additional_references(root)]

    def annotate(self, table: SymbolTable, project_root: str | Path):
        root = Path(project_root)
        for plugin in self.active:
            plugin.annotate(table, root)


def split_entry_points(entries: Iterable[str]) -> Tuple[List[str], List[str]]:
    """Separate file entries (paths / globs) from symbol FQNs.

    Returns:
        Tuple of (symbol_fqns, file_patterns)
    """
    symbols, files = [], []
    for entry in entries:
        if '/' in entry or entry.endswith(('.php', '.phtml', '.inc')) or '*' in entry:
            files.append(entry)
        else:
            symbols.append(entry)
    return symbols, files

