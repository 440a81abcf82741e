"""Per-kind liveness analyzers.

Each rule is a pure function of the AnalysisContext. The set of rules is
closed: ``run_analyzer`` dispatches on the rule name with a single match
statement, and ``analyze`` runs every enabled rule and merges the results.

Known gap: usage expressed only as a string literal handed to a
higher-order call (``array_map('format_row', $rows)``, ``[$this, 'method']``)
is not tracked, except for the WordPress hook registrations the wordpress
rule plugin scans. Such functions and methods are reported as unused.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Iterable, List, Optional, Set

from phpjanitor.analyzer.context import AnalysisContext, matches_symbol_pattern
from phpjanitor.analyzer.models import (
    CLASS_REFERENCE_KINDS,
    PARENT_CLASS_REFERENCE_KINDS,
    Issue,
    Reference,
    ReferenceKind,
    Severity,
    Symbol,
    SymbolKind,
    short_name,
)


logger = logging.getLogger(__name__)

ANALYZERS = (
    'unused-classes',
    'unused-interfaces',
    'unused-traits',
    'unused-functions',
    'unused-methods',
    'unused-properties',
    'unused-constants',
    'unused-use-statements',
    'unused-files',
    'unused-dependencies',
)

# Invoked implicitly by the PHP runtime
MAGIC_METHODS = frozenset({
    '__construct', '__destruct', '__call', '__callstatic', '__get', '__set',
    '__isset', '__unset', '__sleep', '__wakeup', '__serialize', '__unserialize',
    '__tostring', '__invoke', '__set_state', '__clone', '__debuginfo',
})

MESSAGES = {
    SymbolKind.CLASS: "Class '%s' is never used",
    SymbolKind.ENUM: "Enum '%s' is never used",
    SymbolKind.INTERFACE: "Interface '%s' is never implemented",
    SymbolKind.TRAIT: "Trait '%s' is never used",
    SymbolKind.FUNCTION: "Function '%s' is never called",
    SymbolKind.METHOD: "Method '%s' is never called",
    SymbolKind.PROPERTY: "Property '%s' is never accessed",
    SymbolKind.CLASS_CONSTANT: "Constant '%s' is never used",
    SymbolKind.GLOBAL_CONSTANT: "Constant '%s' is never used",
}


def _issue(rule: str, symbol: Symbol, severity: Severity) -> Issue:
    return Issue(
        kind=rule,
        symbol_name=symbol.display_name,
        file=symbol.file,
        line=symbol.start_line,
        severity=severity,
        message=MESSAGES[symbol.kind] % symbol.display_name,
        symbol_kind=symbol.kind.value,
    )


def _is_self_reference(ref: Reference, class_fqn: str) -> bool:
    """A class naming itself (``new static``, ``self::X``) does not keep it alive."""
    return bool(ref.enclosing_class) and ref.enclosing_class.lower() == class_fqn


# -- class-likes -------------------------------------------------------------

class ClassUsage:
    """Index of class-like names referenced anywhere in the project."""

    def __init__(self, context: AnalysisContext):
        self.by_name: Dict[str, List[Reference]] = {}
        for ref in context.references_of(*CLASS_REFERENCE_KINDS):
            self.by_name.setdefault(ref.symbol_name.lower(), []).append(ref)
        for ref in context.references_of(*PARENT_CLASS_REFERENCE_KINDS, include_dynamic=True):
            # X::$dynamic still names class X
            if ref.symbol_parent and ref.symbol_parent != 'parent':
                self.by_name.setdefault(ref.symbol_parent.lower(), []).append(ref)

    def is_referenced(self, symbol: Symbol) -> bool:
        fqn = symbol.fqn.lower()
        candidates = self.by_name.get(fqn, []) + (
            self.by_name.get(symbol.name.lower(), []) if symbol.namespace else []
        )
        return any(not _is_self_reference(ref, fqn) for ref in candidates)

    def has_subclass(self, symbol: Symbol) -> bool:
        fqn = symbol.fqn.lower()
        return any(
            ref.kind == ReferenceKind.EXTENDS and not _is_self_reference(ref, fqn)
            for ref in self.by_name.get(fqn, [])
        )


def is_class_live(symbol: Symbol, usage: ClassUsage, context: AnalysisContext) -> bool:
    if usage.is_referenced(symbol):
        return True
    if symbol.is_abstract and usage.has_subclass(symbol):
        return True
    if symbol.metadata.get('framework_used'):
        return True
    return context.is_entry_point_symbol(symbol.fqn)


def _analyze_class_likes(context: AnalysisContext, rule: str, kinds: Iterable[SymbolKind]) -> List[Issue]:
    severity = context.severity(rule)
    if severity is None:
        return []
    usage = ClassUsage(context)
    issues = []
    for symbol in context.symbol_table.of_kind(*kinds):
        if context.is_ignored(symbol, rule):
            continue
        if not is_class_live(symbol, usage, context):
            issues.append(_issue(rule, symbol, severity))
    return issues


# -- functions ---------------------------------------------------------------

class FunctionUsage:
    """Names of functions called anywhere, resolved and short forms."""

    def __init__(self, context: AnalysisContext):
        self.called: Set[str] = set()
        for ref in context.references_of(ReferenceKind.FUNCTION_CALL):
            self.called.add(ref.symbol_name.lower())
            # Unqualified calls fall back to the global function at runtime
            self.called.add(ref.short_name.lower())


def is_function_live(symbol: Symbol, usage: FunctionUsage, context: AnalysisContext) -> bool:
    if symbol.fqn.lower() in usage.called or symbol.name.lower() in usage.called:
        return True
    if symbol.metadata.get('framework_used'):
        return True
    return context.is_entry_point_symbol(symbol.fqn)


def _analyze_functions(context: AnalysisContext) -> List[Issue]:
    rule = 'unused-functions'
    severity = context.severity(rule)
    if severity is None:
        return []
    usage = FunctionUsage(context)
    return [
        _issue(rule, symbol, severity)
        for symbol in context.symbol_table.of_kind(SymbolKind.FUNCTION)
        if not context.is_ignored(symbol, rule) and not is_function_live(symbol, usage, context)
    ]


# -- members -----------------------------------------------------------------

def _member_refs(context: AnalysisContext, *kinds: ReferenceKind) -> Dict[str, List[Reference]]:
    index: Dict[str, List[Reference]] = {}
    for ref in context.references_of(*kinds):
        index.setdefault(ref.symbol_name, []).append(ref)
    return index


def _names_member_of(ref: Reference, family: Set[str]) -> bool:
    """Untyped calls ($obj->m()) match by name; typed ones must hit the hierarchy."""
    if ref.symbol_parent is None or ref.symbol_parent == 'parent':
        return True
    return ref.symbol_parent.lower() in family


def _owner_is_framework_used(context: AnalysisContext, owner: str) -> bool:
    return any(s.metadata.get('framework_used') for s in context.symbol_table.get(owner))


def _analyze_methods(context: AnalysisContext) -> List[Issue]:
    rule = 'unused-methods'
    severity = context.severity(rule)
    if severity is None:
        return []

    calls: Dict[str, List[Reference]] = {}
    for ref in context.references_of(ReferenceKind.METHOD_CALL, ReferenceKind.STATIC_CALL):
        calls.setdefault(ref.symbol_name.lower(), []).append(ref)

    issues = []
    for method in context.symbol_table.of_kind(SymbolKind.METHOD):
        if not method.is_private and not context.settings.check_public_methods:
            continue
        if method.name.lower() in MAGIC_METHODS or method.is_abstract:
            continue
        if context.is_ignored(method, rule):
            continue
        if method.is_public and _owner_is_framework_used(context, method.owner):
            continue

        family = context.symbol_table.family(method.owner)
        if any(_names_member_of(ref, family) for ref in calls.get(method.name.lower(), [])):
            continue
        # Non-private methods are part of a class's API; lower confidence
        issues.append(_issue(rule, method, severity if method.is_private else Severity.INFO))
    return issues


def _analyze_properties(context: AnalysisContext) -> List[Issue]:
    rule = 'unused-properties'
    severity = context.severity(rule)
    if severity is None:
        return []

    accesses = _member_refs(context, ReferenceKind.PROPERTY_ACCESS, ReferenceKind.STATIC_PROPERTY)
    dynamic_classes = context.dynamic_member_classes()

    issues = []
    for prop in context.symbol_table.of_kind(SymbolKind.PROPERTY):
        if not prop.is_private or context.is_ignored(prop, rule):
            continue
        family = context.symbol_table.family(prop.owner)
        if any(_names_member_of(ref, family) for ref in accesses.get(prop.name, [])):
            continue
        # $this->$name may be touching it; report with lower confidence
        level = Severity.INFO if prop.owner.lower() in dynamic_classes else severity
        issues.append(_issue(rule, prop, level))
    return issues


def _analyze_constants(context: AnalysisContext) -> List[Issue]:
    rule = 'unused-constants'
    severity = context.severity(rule)
    if severity is None:
        return []

    usage = ConstantUsage(context)
    issues = []
    for constant in context.symbol_table.of_kind(SymbolKind.GLOBAL_CONSTANT, SymbolKind.CLASS_CONSTANT):
        if constant.metadata.get('enum_case'):
            # Enum cases are enumerated through cases()/from()
            continue
        if constant.kind == SymbolKind.CLASS_CONSTANT and constant.is_public \
                and not context.settings.check_public_constants:
            continue
        if context.is_ignored(constant, rule):
            continue
        if not usage.is_live(constant, context):
            issues.append(_issue(rule, constant, severity))
    return issues


class ConstantUsage:
    """Global constant fetches and class constant accesses."""

    def __init__(self, context: AnalysisContext):
        self.global_names: Set[str] = set()
        for ref in context.references_of(ReferenceKind.CONSTANT):
            self.global_names.add(ref.symbol_name)
            self.global_names.add(ref.short_name)
        self.class_constants = _member_refs(context, ReferenceKind.CLASS_CONSTANT_ACCESS)

    def is_live(self, constant: Symbol, context: AnalysisContext) -> bool:
        if constant.kind == SymbolKind.GLOBAL_CONSTANT:
            return constant.fqn in self.global_names or constant.name in self.global_names \
                or context.is_entry_point_symbol(constant.fqn)
        family = context.symbol_table.family(constant.owner)
        return any(_names_member_of(ref, family) for ref in self.class_constants.get(constant.name, []))


# -- imports -----------------------------------------------------------------

def _analyze_use_statements(context: AnalysisContext) -> List[Issue]:
    rule = 'unused-use-statements'
    severity = context.severity(rule)
    if severity is None:
        return []

    issues = []
    for file_path, uses in sorted(context.use_statements.items()):
        if not uses or context.is_path_ignored(file_path):
            continue

        used: Set[str] = set()
        for ref in context.references_in(file_path):
            if ref.is_dynamic or ref.kind in (ReferenceKind.IMPORT, ReferenceKind.IMPORT_ALIAS):
                continue
            used.add(ref.symbol_name.lower())
            if ref.symbol_parent:
                used.add(ref.symbol_parent.lower())
        used_short = {short_name(name) for name in used}

        for use in uses:
            fqn = use.fqn.lower()
            prefix = fqn + '\\'
            # A relative name (B\Foo with "use A\B;") resolves to a name under the import
            if fqn in used or any(name.startswith(prefix) for name in used):
                continue
            # Plain imports also match a use-site by their trailing short name
            if not use.explicit_alias and short_name(fqn) in used_short:
                continue
            if context.matches_ignore_pattern(use.fqn):
                continue
            issues.append(Issue(
                kind=rule,
                symbol_name=use.fqn,
                file=file_path,
                line=use.line,
                severity=severity,
                message=f"Use statement '{use.fqn}' is never used",
                symbol_kind='import',
            ))
    return issues


# -- files -------------------------------------------------------------------

TOP_LEVEL_KINDS = (
    SymbolKind.CLASS, SymbolKind.INTERFACE, SymbolKind.TRAIT, SymbolKind.ENUM,
    SymbolKind.FUNCTION, SymbolKind.GLOBAL_CONSTANT,
)


def _analyze_files(context: AnalysisContext) -> List[Issue]:
    rule = 'unused-files'
    severity = context.severity(rule)
    if severity is None:
        return []

    classes = ClassUsage(context)
    functions = FunctionUsage(context)
    constants = ConstantUsage(context)

    def is_live(symbol: Symbol) -> bool:
        # Ignored declarations count as used: the user vouched for them
        if symbol.ignored or context.matches_ignore_pattern(symbol.fqn):
            return True
        if symbol.kind.is_class_like:
            return is_class_live(symbol, classes, context)
        if symbol.kind == SymbolKind.FUNCTION:
            return is_function_live(symbol, functions, context)
        return constants.is_live(symbol, context)

    issues = []
    for file_path in context.symbol_table.files:
        declared = [s for s in context.symbol_table.in_file(file_path) if s.kind in TOP_LEVEL_KINDS]
        if not declared:
            continue
        if context.is_entry_point_file(file_path) or context.is_path_ignored(file_path):
            continue
        if any(is_live(s) for s in declared):
            continue
        relative = context.relative_path(file_path)
        issues.append(Issue(
            kind=rule,
            symbol_name=relative,
            file=file_path,
            line=0,
            severity=severity,
            message=f"File '{relative}' contains no used code",
            symbol_kind='file',
        ))
    return issues


# -- composer packages -------------------------------------------------------

# Use-sites that need a package's code at runtime
DEPENDENCY_REFERENCE_KINDS = (
    *CLASS_REFERENCE_KINDS,
    ReferenceKind.IMPORT,
    ReferenceKind.IMPORT_ALIAS,
    ReferenceKind.STATIC_CALL,
    ReferenceKind.FUNCTION_CALL,
)


def used_packages(context: AnalysisContext) -> Set[str]:
    """Lowercased names of the packages whose namespaces the code references."""
    namespace_map = context.dependencies.namespace_map
    used: Set[str] = set()
    for ref in context.references_of(*DEPENDENCY_REFERENCE_KINDS):
        if ref.kind == ReferenceKind.FUNCTION_CALL:
            package = namespace_map.resolve_function(ref.symbol_name)
        else:
            package = namespace_map.resolve_class(ref.symbol_name)
        if package is not None:
            used.add(package)
        if ref.symbol_parent and ref.symbol_parent not in ('self', 'static', 'parent'):
            package = namespace_map.resolve_class(ref.symbol_parent)
            if package is not None:
                used.add(package)
    return used


def _analyze_dependencies(context: AnalysisContext) -> List[Issue]:
    rule = 'unused-dependencies'
    severity = context.severity(rule)
    if severity is None or context.dependencies is None:
        return []

    used = used_packages(context)
    issues = []
    for package in context.dependencies.packages:
        if package.name in used:
            continue
        if matches_symbol_pattern(package.name, context.settings.ignore_dependencies):
            continue
        label = 'dev ' if package.is_dev else ''
        issues.append(Issue(
            kind=rule,
            symbol_name=package.name,
            file=context.dependencies.composer_file,
            line=0,
            # Dev tools (phpunit, phpstan) are run from the shell, not referenced
            severity=Severity.INFO if package.is_dev else severity,
            message=f"Package '{package.name}' is declared as {label}dependency but never used",
            symbol_kind='dependency',
        ))
    return issues


# -- dispatch ----------------------------------------------------------------

def run_analyzer(rule: str, context: AnalysisContext) -> List[Issue]:
    """Run one liveness rule.

    Raises:
        ValueError: If the rule name is unknown
    """
    match rule:
        case 'unused-classes':
            return _analyze_class_likes(context, rule, (SymbolKind.CLASS, SymbolKind.ENUM))
        case 'unused-interfaces':
            return _analyze_class_likes(context, rule, (SymbolKind.INTERFACE,))
        case 'unused-traits':
            return _analyze_class_likes(context, rule, (SymbolKind.TRAIT,))
        case 'unused-functions':
            return _analyze_functions(context)
        case 'unused-methods':
            return _analyze_methods(context)
        case 'unused-properties':
            return _analyze_properties(context)
        case 'unused-constants':
            return _analyze_constants(context)
        case 'unused-use-statements':
            return _analyze_use_statements(context)
        case 'unused-files':
            return _analyze_files(context)
        case 'unused-dependencies':
            return _analyze_dependencies(context)
        case _:
            raise ValueError(f"Unknown rule: {rule}")


def dedupe_issues(issues: Iterable[Issue]) -> List[Issue]:
    """Drop duplicate issues (same kind/symbol/file/line) and sort by location."""
    unique: Dict[Issue, Issue] = {}
    for issue in issues:
        unique.setdefault(issue, issue)
    return sorted(unique.values(), key=Issue.sort_key)


def analyze(context: AnalysisContext, rules: Optional[Iterable[str]] = None,
            max_workers: int = 1) -> List[Issue]:
    """Run every requested rule over a frozen context.

    Args:
        context: Analysis input; never modified
        rules: Rule names to run (defaults to all)
        max_workers: Run rules concurrently when > 1

    Returns:
        Deduplicated issues sorted by file, line, kind and symbol
    """
    selected = [r for r in (ANALYZERS if rules is None else rules) if context.severity(r) is not None]
    if max_workers > 1 and len(selected) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            results = list(executor.map(lambda r: run_analyzer(r, context), selected))
    else:
        results = [run_analyzer(rule, context) for rule in selected]

    for rule, found in zip(selected, results):
        logger.debug("%s: %d issue(s)", rule, len(found))
    return dedupe_issues(issue for found in results for issue in found)
