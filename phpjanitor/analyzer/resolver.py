"""PHP name resolution: namespaces, ``use`` imports and relative class names.

The collectors thread a NameScope through their tree walk instead of keeping
namespace and alias state on the collector object. A scope is never mutated;
namespace and ``use`` statements produce a new one.
"""
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Optional

from tree_sitter import Node

from phpjanitor.analyzer.models import UseStatement, join_namespace, short_name
from phpjanitor.analyzer.parser import node_line, node_text


# Names that never correspond to a user-declared symbol
BUILTIN_TYPES = frozenset({
    'int', 'integer', 'float', 'double', 'string', 'bool', 'boolean',
    'array', 'object', 'callable', 'iterable', 'void', 'null', 'mixed',
    'never', 'true', 'false', 'self', 'static', 'parent',
})

RELATIVE_CLASS_NAMES = frozenset({'self', 'static', 'parent'})

NAME_NODE_TYPES = ('name', 'qualified_name', 'relative_name', 'namespace_name')


def clean_name(raw: str) -> str:
    """Strip whitespace tree-sitter keeps inside qualified names (``Foo \\ Bar``)."""
    return ''.join(raw.split())


def is_builtin_type(raw: str) -> bool:
    return clean_name(raw).lstrip('\\').lower() in BUILTIN_TYPES


@dataclass(frozen=True)
class NameScope:
    """Resolver context for one point of a file's tree walk."""
    namespace: str = ''
    class_aliases: Dict[str, str] = field(default_factory=dict)  # lowercased alias -> FQN
    function_aliases: Dict[str, str] = field(default_factory=dict)  # lowercased alias -> FQN
    const_aliases: Dict[str, str] = field(default_factory=dict)  # alias -> FQN (case-sensitive)
    current_class: Optional[str] = None
    parent_class: Optional[str] = None
    function: Optional[str] = None

    def enter_namespace(self, namespace: str) -> 'NameScope':
        """New namespace: aliases and class context reset."""
        return NameScope(namespace=clean_name(namespace).strip('\\'))

    def with_imports(self, uses: Iterable[UseStatement]) -> 'NameScope':
        classes = dict(self.class_aliases)
        functions = dict(self.function_aliases)
        consts = dict(self.const_aliases)
        for use in uses:
            if use.kind == 'function':
                functions[use.alias.lower()] = use.fqn
            elif use.kind == 'constant':
                consts[use.alias] = use.fqn
            else:
                classes[use.alias.lower()] = use.fqn
        return replace(self, class_aliases=classes, function_aliases=functions, const_aliases=consts)

    def enter_class(self, class_fqn: str, parent_fqn: Optional[str] = None) -> 'NameScope':
        return replace(self, current_class=class_fqn, parent_class=parent_fqn, function=None)

    def enter_function(self, name: str) -> 'NameScope':
        return replace(self, function=name)

    @property
    def context(self) -> str:
        """Enclosing ``Class::method``, ``Class`` or function name."""
        if self.current_class and self.function:
            return f"{self.current_class}::{self.function}"
        if self.current_class:
            return self.current_class
        return self.function or ''

    def resolve_class(self, raw: str) -> str:
        """Resolve a class-like name as PHP does at compile time.

        Args:
            raw: Name as written (``Foo``, ``Bar\\Foo``, ``\\Foo``, ``self``)

        Returns:
            Fully-qualified name without a leading backslash
        """
        name = clean_name(raw)
        lowered = name.lower()
        if lowered in ('self', 'static'):
            return self.current_class or name
        if lowered == 'parent':
            return self.parent_class or 'parent'
        if name.startswith('\\'):
            return name[1:]
        if lowered.startswith('namespace\\'):
            return join_namespace(self.namespace, name[len('namespace\\'):])

        first, sep, rest = name.partition('\\')
        imported = self.class_aliases.get(first.lower())
        if imported:
            return f"{imported}\\{rest}" if sep else imported
        return join_namespace(self.namespace, name)

    def resolve_function(self, raw: str) -> str:
        name = clean_name(raw)
        if name.startswith('\\'):
            return name[1:]
        if '\\' in name:
            # Qualified function names resolve through class/namespace aliases
            return self.resolve_class(name)
        imported = self.function_aliases.get(name.lower())
        if imported:
            return imported
        return join_namespace(self.namespace, name)

    def resolve_constant(self, raw: str) -> str:
        name = clean_name(raw)
        if name.startswith('\\'):
            return name[1:]
        if '\\' in name:
            return self.resolve_class(name)
        imported = self.const_aliases.get(name)
        if imported:
            return imported
        return join_namespace(self.namespace, name)


def _use_kind(node: Node, default: str) -> str:
    for child in node.children:
        if child.type == 'function':
            return 'function'
        if child.type == 'const':
            return 'constant'
    return default


def _use_clause(clause: Node, prefix: str, kind: str, line: int, file_path: str) -> Optional[UseStatement]:
    kind = _use_kind(clause, kind)
    alias_node = clause.child_by_field_name('alias')
    target = None
    for child in clause.named_children:
        if child.type == 'namespace_aliasing_clause':
            # Older grammars wrap "as Foo" in its own node
            for sub in child.named_children:
                if sub.type == 'name':
                    alias_node = sub
        elif child.type in NAME_NODE_TYPES and target is None:
            if alias_node is not None and child == alias_node:
                continue
            target = child
    if target is None:
        return None

    fqn = clean_name(node_text(target)).lstrip('\\')
    if prefix:
        fqn = f"{prefix}\\{fqn}"
    alias = node_text(alias_node) if alias_node is not None else ''
    return UseStatement(
        fqn=fqn,
        alias=alias or short_name(fqn),
        line=line,
        kind=kind,
        file=file_path,
        explicit_alias=bool(alias),
    )


def parse_use_declaration(node: Node, file_path: str = '') -> List[UseStatement]:
    """Extract imported names from a ``namespace_use_declaration`` node.

    Handles ``use A\\B;``, ``use A\\B as C;``, ``use function a\\b;``,
    ``use const A\\B;`` and group syntax ``use A\\{B, C as D};``.

    Args:
        node: namespace_use_declaration node
        file_path: File the statement lives in

    Returns:
        One UseStatement per imported name, all carrying the statement's line
    """
    kind = _use_kind(node, 'class')
    line = node_line(node)
    prefix = ''
    uses = []
    for child in node.named_children:
        if child.type == 'namespace_name':
            prefix = clean_name(node_text(child)).strip('\\')
        elif child.type == 'namespace_use_clause':
            use = _use_clause(child, '', kind, line, file_path)
            if use:
                uses.append(use)
        elif child.type == 'namespace_use_group':
            for clause in child.named_children:
                if clause.type in ('namespace_use_clause', 'namespace_use_group_clause'):
                    use = _use_clause(clause, prefix, kind, line, file_path)
                    if use:
                        uses.append(use)
    return uses


CLASS_LIKE_NODES = {
    'class_declaration': 'class',
    'interface_declaration': 'interface',
    'trait_declaration': 'trait',
    'enum_declaration': 'enum',
}

FUNCTION_NODES = ('function_definition', 'method_declaration')

ANONYMOUS_CLASS = 'class@anonymous'


def is_anonymous_class(node: Node) -> bool:
    if node.type == 'anonymous_class':
        return True
    # Older grammars inline the class body into the "new" expression
    return node.type == 'object_creation_expression' and any(
        child.type == 'declaration_list' for child in node.children
    )


def base_clause_names(node: Node) -> List[str]:
    """Raw names listed in a declaration's ``extends`` clause."""
    for child in node.children:
        if child.type == 'base_clause':
            return [node_text(c) for c in child.named_children if c.type in NAME_NODE_TYPES]
    return []


def interface_clause_names(node: Node) -> List[str]:
    """Raw names listed in a declaration's ``implements`` clause."""
    for child in node.children:
        if child.type == 'class_interface_clause':
            return [node_text(c) for c in child.named_children if c.type in NAME_NODE_TYPES]
    return []


def _scope_for_children(node: Node, scope: NameScope) -> NameScope:
    if node.type == 'namespace_definition' and node.child_by_field_name('body') is not None:
        return scope.enter_namespace(node_text(node.child_by_field_name('name')))

    if node.type in CLASS_LIKE_NODES:
        fqn = join_namespace(scope.namespace, node_text(node.child_by_field_name('name')))
        parents = base_clause_names(node)
        parent = scope.resolve_class(parents[0]) if parents and node.type == 'class_declaration' else None
        return scope.enter_class(fqn, parent)

    if is_anonymous_class(node):
        parents = base_clause_names(node)
        return scope.enter_class(ANONYMOUS_CLASS, scope.resolve_class(parents[0]) if parents else None)

    if node.type in FUNCTION_NODES:
        return scope.enter_function(node_text(node.child_by_field_name('name')))

    return scope


def _is_statement_list(node: Node) -> bool:
    if node.type == 'program':
        return True
    return node.type == 'compound_statement' and node.parent is not None \
        and node.parent.type == 'namespace_definition'


def walk_scoped(root: Node, file_path: str = ''):
    """Walk a PHP tree in document order, pairing every node with its NameScope.

    Unbracketed ``namespace Foo;`` statements and ``use`` imports take
    effect for the statements that follow them; braced namespaces and
    class / function bodies scope their children.

    Args:
        root: Tree root (``program``)
        file_path: File path recorded on parsed use statements

    Yields:
        (node, scope) tuples, where scope is the context the node appears in
    """
    stack = [(root, NameScope())]
    while stack:
        node, scope = stack.pop()
        yield node, scope

        child_scope = _scope_for_children(node, scope)
        if not _is_statement_list(node):
            stack.extend((child, child_scope) for child in reversed(node.children))
            continue

        pairs = []
        current = child_scope
        for child in node.children:
            if child.type == 'namespace_definition' and child.child_by_field_name('body') is None:
                current = current.enter_namespace(node_text(child.child_by_field_name('name')))
            pairs.append((child, current))
            if child.type == 'namespace_use_declaration':
                current = current.with_imports(parse_use_declaration(child, file_path))
        stack.extend(reversed(pairs))
