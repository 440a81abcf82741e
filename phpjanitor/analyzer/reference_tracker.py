"""Reference extraction: every place a PHP file names a class, function or member."""
from typing import Callable, Dict, Iterator, List, Optional

from tree_sitter import Node, Tree

from phpjanitor.analyzer.models import FileReferences, Reference, ReferenceKind
from phpjanitor.analyzer.parser import node_line, node_text
from phpjanitor.analyzer.resolver import (
    NAME_NODE_TYPES,
    RELATIVE_CLASS_NAMES,
    NameScope,
    clean_name,
    is_anonymous_class,
    is_builtin_type,
    parse_use_declaration,
    walk_scoped,
)


DYNAMIC = '(dynamic)'

# Parents under which a bare name is a constant fetch (echo FOO; f(BAR); ...)
EXPRESSION_PARENTS = frozenset({
    'argument', 'arguments', 'binary_expression', 'unary_op_expression',
    'assignment_expression', 'augmented_assignment_expression',
    'reference_assignment_expression', 'echo_statement', 'return_statement',
    'parenthesized_expression', 'array_element_initializer',
    'conditional_expression', 'expression_statement', 'subscript_expression',
    'match_condition_list', 'match_conditional_expression', 'case_statement',
    'sequence_expression', 'print_intrinsic', 'yield_expression',
    'cast_expression', 'const_element', 'property_element',
    'property_initializer', 'simple_parameter', 'property_promotion_parameter',
    'static_variable_declaration', 'variadic_unpacking', 'throw_expression',
    'exit_statement', 'enum_case',
})

# Declarations whose name child is the declared name, not a constant fetch
DECLARING_PARENTS = ('const_element', 'enum_case')


def _type_names(node: Optional[Node]) -> Iterator[Node]:
    """Yield the class-name nodes inside a (possibly composite) type."""
    if node is None or node.type == 'primitive_type':
        return
    if node.type in NAME_NODE_TYPES:
        yield node
        return
    # named_type, optional_type, union_type, intersection_type, DNF types
    for child in node.named_children:
        yield from _type_names(child)


def _is_magic_constant(name: str) -> bool:
    return len(name) > 4 and name.startswith('__') and name.endswith('__')


class ReferenceTracker:
    """Collect References and use statements from a single PHP syntax tree.

    Each node type that can name another symbol has one handler. Handlers
    receive the NameScope in effect at that node, so resolution never
    depends on collector state.
    """

    def __init__(self, file_path: str):
        self.file_path = file_path
        self.result = FileReferences()
        self._handlers: Dict[str, Callable[[Node, NameScope], None]] = {
            'namespace_use_declaration': self._handle_use_import,
            'base_clause': self._handle_base_clause,
            'class_interface_clause': self._handle_interface_clause,
            'use_declaration': self._handle_trait_use,
            'object_creation_expression': self._handle_new,
            'scoped_call_expression': self._handle_static_call,
            'class_constant_access_expression': self._handle_class_constant,
            'scoped_property_access_expression': self._handle_static_property,
            'function_call_expression': self._handle_function_call,
            'member_call_expression': self._handle_method_call,
            'nullsafe_member_call_expression': self._handle_method_call,
            'member_access_expression': self._handle_property_access,
            'nullsafe_member_access_expression': self._handle_property_access,
            'binary_expression': self._handle_instanceof,
            'catch_clause': self._handle_catch,
            'simple_parameter': self._handle_typed_node,
            'variadic_parameter': self._handle_typed_node,
            'property_promotion_parameter': self._handle_typed_node,
            'property_declaration': self._handle_typed_node,
            'function_definition': self._handle_return_type,
            'method_declaration': self._handle_return_type,
            'anonymous_function': self._handle_return_type,
            'anonymous_function_creation_expression': self._handle_return_type,
            'arrow_function': self._handle_return_type,
            'attribute': self._handle_attribute,
            'name': self._handle_constant_fetch,
            'qualified_name': self._handle_constant_fetch,
        }

    def extract_references(self, tree: Tree | Node) -> FileReferences:
        """Walk the tree once and collect every reference.

        Args:
            tree: Parsed tree-sitter Tree (or its root node)

        Returns:
            FileReferences with References and UseStatements in document order
        """
        root = tree.root_node if isinstance(tree, Tree) else tree
        for node, scope in walk_scoped(root, self.file_path):
            handler = self._handlers.get(node.type)
            if handler is not None:
                handler(node, scope)
        return self.result

    def _add(self, kind: ReferenceKind, name: str, node: Node, scope: NameScope,
             parent: Optional[str] = None, dynamic: bool = False, alias: Optional[str] = None):
        self.result.references.append(Reference(
            kind=kind,
            symbol_name=name,
            symbol_parent=parent,
            file=self.file_path,
            line=node_line(node),
            context=scope.context,
            is_dynamic=dynamic,
            alias=alias,
            enclosing_class=scope.current_class,
        ))

    def _add_class(self, kind: ReferenceKind, name_node: Node, scope: NameScope):
        """Emit a class-like reference unless it names a builtin or relative type."""
        raw = node_text(name_node)
        if not raw or is_builtin_type(raw):
            return
        self._add(kind, scope.resolve_class(raw), name_node, scope)

    def _class_operand(self, node: Optional[Node], scope: NameScope) -> Optional[str]:
        """Resolve the class part of ``X::member``; None when it is an expression."""
        if node is None:
            return None
        raw = clean_name(node_text(node))
        if node.type in NAME_NODE_TYPES or node.type == 'relative_scope' \
                or raw.lower() in RELATIVE_CLASS_NAMES:
            return scope.resolve_class(raw)
        return None

    # -- imports and declarations ------------------------------------------

    def _handle_use_import(self, node: Node, scope: NameScope):
        for use in parse_use_declaration(node, self.file_path):
            self.result.use_statements.append(use)
            kind = ReferenceKind.IMPORT_ALIAS if use.explicit_alias else ReferenceKind.IMPORT
            self._add(kind, use.fqn, node, scope, alias=use.alias)

    def _handle_base_clause(self, node: Node, scope: NameScope):
        for child in node.named_children:
            if child.type in NAME_NODE_TYPES:
                self._add_class(ReferenceKind.EXTENDS, child, scope)

    def _handle_interface_clause(self, node: Node, scope: NameScope):
        for child in node.named_children:
            if child.type in NAME_NODE_TYPES:
                self._add_class(ReferenceKind.IMPLEMENTS, child, scope)

    def _handle_trait_use(self, node: Node, scope: NameScope):
        for child in node.named_children:
            if child.type in NAME_NODE_TYPES:
                self._add_class(ReferenceKind.USE_TRAIT, child, scope)

    def _handle_typed_node(self, node: Node, scope: NameScope):
        for name_node in _type_names(node.child_by_field_name('type')):
            self._add_class(ReferenceKind.TYPE_HINT, name_node, scope)

    def _handle_return_type(self, node: Node, scope: NameScope):
        for name_node in _type_names(node.child_by_field_name('return_type')):
            self._add_class(ReferenceKind.RETURN_TYPE, name_node, scope)

    def _handle_attribute(self, node: Node, scope: NameScope):
        # #[Route(...)] instantiates the attribute class through reflection
        for child in node.named_children:
            if child.type in NAME_NODE_TYPES:
                self._add_class(ReferenceKind.INSTANTIATION, child, scope)
                return

    # -- expressions -------------------------------------------------------

    def _handle_new(self, node: Node, scope: NameScope):
        if is_anonymous_class(node) or any(c.type == 'anonymous_class' for c in node.children):
            # extends/implements of the anonymous class are emitted by their clauses
            return
        target = next(
            (c for c in node.named_children if c.type not in ('arguments', 'attribute_list')),
            None,
        )
        if target is None:
            return
        raw = clean_name(node_text(target))
        if raw.lower() in RELATIVE_CLASS_NAMES:
            return
        if target.type in NAME_NODE_TYPES:
            self._add_class(ReferenceKind.INSTANTIATION, target, scope)
        else:
            self._add(ReferenceKind.INSTANTIATION, DYNAMIC, node, scope, dynamic=True)

    def _handle_static_call(self, node: Node, scope: NameScope):
        class_name = self._class_operand(node.child_by_field_name('scope'), scope)
        name_node = node.child_by_field_name('name')
        if name_node is None or name_node.type != 'name':
            self._add(ReferenceKind.STATIC_CALL, DYNAMIC, node, scope, parent=class_name, dynamic=True)
            return
        self._add(ReferenceKind.STATIC_CALL, node_text(name_node), node, scope, parent=class_name)

    def _handle_class_constant(self, node: Node, scope: NameScope):
        children = node.named_children
        if len(children) < 2:
            return
        scope_node, name_node = children[0], children[-1]
        constant = node_text(name_node)

        if constant.lower() == 'class':
            raw = clean_name(node_text(scope_node))
            if scope_node.type in NAME_NODE_TYPES and raw.lower() not in RELATIVE_CLASS_NAMES:
                self._add(ReferenceKind.CLASS_STRING, scope.resolve_class(raw), node, scope)
            return

        class_name = self._class_operand(scope_node, scope)
        self._add(ReferenceKind.CLASS_CONSTANT_ACCESS, constant, node, scope, parent=class_name)

    def _handle_static_property(self, node: Node, scope: NameScope):
        class_name = self._class_operand(node.child_by_field_name('scope'), scope)
        name_node = node.child_by_field_name('name')
        if name_node is None or name_node.type != 'variable_name':
            self._add(ReferenceKind.STATIC_PROPERTY, DYNAMIC, node, scope, parent=class_name, dynamic=True)
            return
        self._add(ReferenceKind.STATIC_PROPERTY, node_text(name_node).lstrip('$'), node, scope,
                  parent=class_name)

    def _handle_function_call(self, node: Node, scope: NameScope):
        function = node.child_by_field_name('function')
        if function is None:
            return
        if function.type not in NAME_NODE_TYPES:
            # $callback(), ($this->factory)(), 'name'() ...
            self._add(ReferenceKind.FUNCTION_CALL, DYNAMIC, node, scope, dynamic=True)
            return
        raw = clean_name(node_text(function))
        if raw.lstrip('\\').lower() == 'define':
            return
        self._add(ReferenceKind.FUNCTION_CALL, scope.resolve_function(raw), node, scope)

    def _this_class(self, node: Node, scope: NameScope) -> Optional[str]:
        target = node.child_by_field_name('object')
        if target is not None and node_text(target) == '$this':
            return scope.current_class
        return None

    def _handle_method_call(self, node: Node, scope: NameScope):
        parent = self._this_class(node, scope)
        name_node = node.child_by_field_name('name')
        if name_node is None or name_node.type != 'name':
            self._add(ReferenceKind.METHOD_CALL, DYNAMIC, node, scope, parent=parent, dynamic=True)
            return
        self._add(ReferenceKind.METHOD_CALL, node_text(name_node), node, scope, parent=parent)

    def _handle_property_access(self, node: Node, scope: NameScope):
        parent = self._this_class(node, scope)
        name_node = node.child_by_field_name('name')
        if name_node is None or name_node.type != 'name':
            # $this->$field marks the owner as using dynamic member access
            self._add(ReferenceKind.PROPERTY_ACCESS, DYNAMIC, node, scope, parent=parent, dynamic=True)
            return
        self._add(ReferenceKind.PROPERTY_ACCESS, node_text(name_node), node, scope, parent=parent)

    def _handle_instanceof(self, node: Node, scope: NameScope):
        operator = node.child_by_field_name('operator')
        if operator is None or node_text(operator).lower() != 'instanceof':
            return
        right = node.child_by_field_name('right')
        if right is None:
            return
        raw = clean_name(node_text(right))
        if raw.lower() in RELATIVE_CLASS_NAMES:
            return
        if right.type in NAME_NODE_TYPES:
            self._add_class(ReferenceKind.INSTANCEOF, right, scope)
        else:
            self._add(ReferenceKind.INSTANCEOF, DYNAMIC, node, scope, dynamic=True)

    def _handle_catch(self, node: Node, scope: NameScope):
        type_node = node.child_by_field_name('type')
        if type_node is None:
            type_node = next((c for c in node.named_children if c.type == 'type_list'), None)
        for name_node in _type_names(type_node):
            self._add_class(ReferenceKind.CATCH, name_node, scope)

    def _handle_constant_fetch(self, node: Node, scope: NameScope):
        parent = node.parent
        if parent is None or parent.type not in EXPRESSION_PARENTS:
            return
        if parent.type in DECLARING_PARENTS and parent.named_children and parent.named_children[0] == node:
            return
        if parent.type == 'argument' and parent.child_by_field_name('name') == node:
            return  # named argument label: f(name: $x)
        if parent.type in ('simple_parameter', 'property_promotion_parameter') \
                and parent.child_by_field_name('default_value') != node:
            return
        if parent.type == 'binary_expression':
            operator = parent.child_by_field_name('operator')
            if operator is not None and node_text(operator).lower() == 'instanceof':
                return

        raw = clean_name(node_text(node))
        bare = raw.lstrip('\\')
        if not bare or is_builtin_type(bare) or _is_magic_constant(bare):
            return
        self._add(ReferenceKind.CONSTANT, scope.resolve_constant(raw), node, scope)


def collect_references(tree: Tree | Node, file_path: str) -> FileReferences:
    """Collect References and the import alias bookkeeping of one file.

    Returns:
        FileReferences; ``alias_map`` gives the file's alias -> FQN map
    """
    return ReferenceTracker(file_path).extract_references(tree)


def references_by_kind(references: List[Reference]) -> Dict[ReferenceKind, List[Reference]]:
    grouped: Dict[ReferenceKind, List[Reference]] = {}
    for ref in references:
        grouped.setdefault(ref.kind, []).append(ref)
    return grouped
