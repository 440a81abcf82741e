"""Whole-project analysis pipeline.

1. Discover PHP files under the project root
2. Collect symbols and references per file (cache hit, or parse) on a thread pool
3. Merge into one SymbolTable and freeze it
4. Let the active framework plugins contribute references, entry points and metadata
   (and read composer.json/composer.lock for the dependency rule)
5. Run the liveness analyzers over the resulting AnalysisContext
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Union

from phpjanitor.analyzer.cache import CacheEntry, CacheManager
from phpjanitor.analyzer.context import AnalysisContext, AnalysisSettings
from phpjanitor.analyzer.dependencies import ComposerDependencies
from phpjanitor.analyzer.extractor import collect_symbols
from phpjanitor.analyzer.liveness import analyze
from phpjanitor.analyzer.models import (
    EncodingFailure,
    IOFailure,
    Issue,
    ParseFailure,
    Reference,
    Symbol,
    UseStatement,
)
from phpjanitor.analyzer.parser import PHP_EXTENSIONS, PhpParser
from phpjanitor.analyzer.plugins import (
    PluginManager,
    composer_entry_files,
    load_builtin_plugins,
    load_composer,
    split_entry_points,
)
from phpjanitor.analyzer.reference_tracker import collect_references
from phpjanitor.analyzer.symbol_table import SymbolTable
from phpjanitor.config import Config
from phpjanitor.errors import EncodingError, ParseError


logger = logging.getLogger(__name__)

Failure = Union[ParseFailure, EncodingFailure, IOFailure]

DEFAULT_EXCLUDE_DIRS = ('vendor', 'node_modules', '.git')


@dataclass
class FileResult:
    """Collector output (or the failure) for one file."""
    file: str
    symbols: List[Symbol] = field(default_factory=list)
    references: List[Reference] = field(default_factory=list)
    use_statements: List[UseStatement] = field(default_factory=list)
    failure: Optional[Failure] = None
    from_cache: bool = False


@dataclass
class AnalysisResult:
    """Everything one run produced."""
    issues: List[Issue]
    failures: List[Failure]
    files_analyzed: int
    symbol_count: int
    cache_stats: Dict
    active_plugins: List[str] = field(default_factory=list)
    project_root: Optional[Path] = None

    @property
    def summary(self) -> Dict:
        by_severity: Dict[str, int] = {}
        by_rule: Dict[str, int] = {}
        for issue in self.issues:
            by_severity[issue.severity.value] = by_severity.get(issue.severity.value, 0) + 1
            by_rule[issue.kind] = by_rule.get(issue.kind, 0) + 1
        return {
            'files_analyzed': self.files_analyzed,
            'symbols': self.symbol_count,
            'issues': len(self.issues),
            'failures': len(self.failures),
            'by_severity': by_severity,
            'by_rule': by_rule,
        }


def discover_files(project_root: str | Path, exclude_dirs: Iterable[str] = DEFAULT_EXCLUDE_DIRS) -> List[Path]:
    """All PHP sources under a directory, sorted, skipping excluded directory names."""
    root = Path(project_root)
    if root.is_file():
        return [root] if PhpParser.is_php_file(root) else []

    excluded = set(exclude_dirs)
    files = []
    for extension in PHP_EXTENSIONS:
        for file_path in root.rglob(f'*{extension}'):
            relative_parts = file_path.relative_to(root).parts[:-1]
            if any(part in excluded for part in relative_parts):
                continue
            if file_path.is_file():
                files.append(file_path)
    return sorted(set(files))


class ProjectAnalyzer:
    """Runs the full pipeline for one project root."""

    def __init__(self,
                 project_root: str | Path,
                 config: Optional[Config] = None,
                 cache: Optional[CacheManager] = None,
                 plugin_manager: Optional[PluginManager] = None,
                 settings: Optional[AnalysisSettings] = None):
        """Set up the pipeline.

        Args:
            project_root: Directory (or single file) to analyse
            config: Loaded configuration (defaults read from project_root)
            cache: Cache to use (defaults to the configured cache directory)
            plugin_manager: Plugins to choose from (defaults to the bundled rule files)
            settings: Analyzer settings overriding the ones derived from config
        """
        self.project_root = Path(project_root).resolve()
        base = self.project_root if self.project_root.is_dir() else self.project_root.parent
        self.config = config or Config(base)
        self.base_dir = base
        self.cache = cache or CacheManager(self.config.cache_dir, enabled=self.config.cache_enabled)
        self.plugin_manager = plugin_manager or PluginManager(load_builtin_plugins())
        self.settings = settings or self.config.analysis_settings()
        self._local = threading.local()

    def _parser(self) -> PhpParser:
        # tree-sitter parsers are not shared between threads
        parser = getattr(self._local, 'parser', None)
        if parser is None:
            parser = PhpParser(self.config.php_version, self.config.encoding)
            self._local.parser = parser
        return parser

    def discover(self) -> List[Path]:
        return discover_files(self.project_root, self.config.exclude_dirs)

    def collect_file(self, file_path: str | Path) -> FileResult:
        """Symbols and references of one file, from cache when its fingerprint matches."""
        key = str(file_path)
        cached = self.cache.get(key)
        if cached is not None:
            return FileResult(key, cached.symbols, cached.references, cached.use_statements, from_cache=True)

        try:
            tree = self._parser().parse_file(key)
        except EncodingError as e:
            return FileResult(key, failure=EncodingFailure(key, 0, str(e)))
        except ParseError as e:
            return FileResult(key, failure=ParseFailure(key, e.line, e.message))
        except OSError as e:
            return FileResult(key, failure=IOFailure(key, 0, e.strerror or str(e)))

        symbols = collect_symbols(tree, key)
        found = collect_references(tree, key)
        self.cache.set(key, CacheEntry(symbols, found.references, found.use_statements))
        return FileResult(key, symbols, found.references, found.use_statements)

    def collect(self, files: List[Path], on_file: Optional[Callable[[str], None]] = None) -> List[FileResult]:
        """Collect every file, in parallel when configured. Results keep input order."""
        def work(path: Path) -> FileResult:
            result = self.collect_file(path)
            if on_file is not None:
                on_file(result.file)
            return result

        workers = self.config.parallel
        if workers > 1 and len(files) > 1:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                results = list(executor.map(work, files))
        else:
            results = [work(path) for path in files]
        self.cache.save_metadata()
        return results

    def build_context(self, results: List[FileResult]) -> AnalysisContext:
        """Merge per-file results, apply plugins and freeze everything into a context."""
        table = SymbolTable()
        references: List[Reference] = []
        use_statements: Dict[str, List[UseStatement]] = {}
        for result in results:
            if result.failure is not None:
                continue
            table.add_all(result.symbols)
            references.extend(result.references)
            use_statements[result.file] = list(result.use_statements)
        table.freeze()

        composer = load_composer(self.base_dir)
        self.plugin_manager.activate(self.base_dir, composer, self.config.framework, self.config.plugins)
        self.plugin_manager.annotate(table, self.base_dir)
        entry_symbols, entry_files = split_entry_points(self.plugin_manager.entry_points(self.base_dir))
        entry_files.extend(composer_entry_files(composer))

        return AnalysisContext(
            table,
            references,
            use_statements,
            settings=self.settings,
            project_root=self.base_dir,
            plugin_references=self.plugin_manager.additional_references(self.base_dir),
            plugin_ignore_patterns=self.plugin_manager.ignore_patterns(),
            plugin_ignore_file_patterns=self.plugin_manager.ignore_file_patterns(),
            entry_point_symbols=entry_symbols,
            entry_point_files=entry_files,
            dependencies=ComposerDependencies.load(self.base_dir, composer),
        )

    def run(self,
            files: Optional[List[Path]] = None,
            rules: Optional[Iterable[str]] = None,
            on_phase: Optional[Callable[[str, int], None]] = None,
            on_file: Optional[Callable[[str], None]] = None) -> AnalysisResult:
        """Analyse the project.

        Args:
            files: Explicit file list (defaults to discovery)
            rules: Rules to run (defaults to every enabled rule)
            on_phase: Called with (description, total) when a phase starts
            on_file: Called after each file is collected

        Returns:
            AnalysisResult with sorted, deduplicated issues
        """
        files = self.discover() if files is None else files
        logger.info("Analysing %d file(s) under %s", len(files), self.project_root)

        if on_phase:
            on_phase("Collecting symbols", len(files))
        results = self.collect(files, on_file)
        failures = [r.failure for r in results if r.failure is not None]
        for failure in failures:
            logger.debug("Skipped %s: %s", failure.file, failure.message)

        if on_phase:
            on_phase("Analyzing liveness", 0)
        context = self.build_context(results)
        issues = analyze(context, rules, max_workers=self.config.parallel)

        stats = self.cache.stats()
        logger.info("Cache: %d hit(s), %d miss(es)", stats['hits'], stats['misses'])
        return AnalysisResult(
            issues=issues,
            failures=failures,
            files_analyzed=len(files) - len(failures),
            symbol_count=len(context.symbol_table),
            cache_stats=stats,
            active_plugins=self.plugin_manager.active_names,
            project_root=self.base_dir,
        )
