"""Symbol extraction from parsed PHP syntax trees."""
import re
from typing import Dict, List, Optional, Tuple

from tree_sitter import Node, Tree

from phpjanitor.analyzer.models import Symbol, SymbolKind
from phpjanitor.analyzer.parser import node_line, node_text
from phpjanitor.analyzer.resolver import (
    ANONYMOUS_CLASS,
    CLASS_LIKE_NODES,
    NAME_NODE_TYPES,
    NameScope,
    base_clause_names,
    clean_name,
    interface_clause_names,
    walk_scoped,
)


# /** @phpjanitor-ignore */ or // @phpjanitor-ignore unused-methods
IGNORE_ANNOTATION = re.compile(r'@phpjanitor-ignore(?:[ \t]+([a-z][a-z-]*))?')


def _modifiers(node: Node) -> Dict[str, str]:
    """Collect ``*_modifier`` children keyed by modifier type."""
    found = {}
    for child in node.children:
        if child.type.endswith('_modifier'):
            found[child.type] = node_text(child).lower()
    return found


def _ignore_annotation(node: Node) -> Tuple[bool, Optional[str]]:
    """Look for an ignore tag in the comments directly above a declaration.

    Returns:
        Tuple of (ignored, rule). rule is None when every rule is suppressed.
    """
    sibling = node.prev_named_sibling
    while sibling is not None and sibling.type == 'comment':
        match = IGNORE_ANNOTATION.search(node_text(sibling))
        if match:
            return True, match.group(1)
        sibling = sibling.prev_named_sibling
    return False, None


def _string_literal(node: Node) -> Optional[str]:
    """Value of a plain quoted string node, or None for anything else."""
    if node.type not in ('string', 'encapsed_string'):
        return None
    for child in node.named_children:
        # Interpolation makes the value dynamic
        if child.type not in ('string_content', 'string_value', 'escape_sequence'):
            return None
    text = node_text(node)
    if len(text) >= 2 and text[0] in '\'"' and text[-1] == text[0]:
        return text[1:-1]
    return None


def first_argument(call: Node) -> Optional[Node]:
    arguments = call.child_by_field_name('arguments')
    if arguments is None:
        return None
    for arg in arguments.named_children:
        if arg.type == 'argument':
            return arg.named_children[-1] if arg.named_children else None
        return arg
    return None


class SymbolExtractor:
    """Extract classes, functions, members and constants from PHP syntax trees."""

    def extract_symbols(self, tree: Tree | Node, file_path: str) -> List[Symbol]:
        """Collect every declaration in one file.

        Args:
            tree: Parsed tree-sitter Tree (or its root node)
            file_path: Path recorded on each Symbol

        Returns:
            Symbols in document order
        """
        root = tree.root_node if isinstance(tree, Tree) else tree
        symbols: List[Symbol] = []
        # class FQN -> (ignored, rule); members inherit a blanket class ignore
        class_ignores: Dict[str, Tuple[bool, Optional[str]]] = {}

        for node, scope in walk_scoped(root, file_path):
            if node.type in CLASS_LIKE_NODES:
                symbol = self._class_symbol(node, scope, file_path)
                class_ignores[symbol.fqn] = (symbol.ignored, symbol.ignored_rule)
                symbols.append(symbol)
            elif node.type == 'function_definition':
                symbols.append(self._function_symbol(node, scope, file_path))
            elif scope.current_class == ANONYMOUS_CLASS:
                # Members of anonymous classes cannot be referenced by name
                continue
            elif node.type == 'method_declaration' and scope.current_class:
                symbols.append(self._method_symbol(node, scope, file_path, class_ignores))
            elif node.type == 'property_declaration' and scope.current_class:
                symbols.extend(self._property_symbols(node, scope, file_path, class_ignores))
            elif node.type == 'property_promotion_parameter' and scope.current_class:
                symbols.append(self._promoted_property(node, scope, file_path, class_ignores))
            elif node.type == 'const_declaration':
                symbols.extend(self._constant_symbols(node, scope, file_path, class_ignores))
            elif node.type == 'enum_case' and scope.current_class:
                symbol = self._enum_case(node, scope, file_path, class_ignores)
                if symbol:
                    symbols.append(symbol)
            elif node.type == 'function_call_expression':
                symbol = self._define_constant(node, file_path)
                if symbol:
                    symbols.append(symbol)

        return symbols

    def _class_symbol(self, node: Node, scope: NameScope, file_path: str) -> Symbol:
        kind = SymbolKind(CLASS_LIKE_NODES[node.type])
        modifiers = _modifiers(node)
        ignored, rule = _ignore_annotation(node)

        uses_traits = []
        body = node.child_by_field_name('body')
        if body is not None:
            for member in body.named_children:
                if member.type == 'use_declaration':
                    uses_traits.extend(
                        scope.resolve_class(node_text(c))
                        for c in member.named_children if c.type in NAME_NODE_TYPES
                    )

        return Symbol(
            kind=kind,
            name=node_text(node.child_by_field_name('name')),
            namespace=scope.namespace,
            file=file_path,
            start_line=node_line(node),
            end_line=node.end_point[0] + 1,
            is_abstract='abstract_modifier' in modifiers,
            is_final='final_modifier' in modifiers,
            extends=tuple(scope.resolve_class(n) for n in base_clause_names(node)),
            implements=tuple(scope.resolve_class(n) for n in interface_clause_names(node)),
            uses_traits=tuple(uses_traits),
            ignored=ignored,
            ignored_rule=rule,
        )

    def _function_symbol(self, node: Node, scope: NameScope, file_path: str) -> Symbol:
        ignored, rule = _ignore_annotation(node)
        return Symbol(
            kind=SymbolKind.FUNCTION,
            name=node_text(node.child_by_field_name('name')),
            namespace=scope.namespace,
            file=file_path,
            start_line=node_line(node),
            end_line=node.end_point[0] + 1,
            ignored=ignored,
            ignored_rule=rule,
        )

    def _member_ignore(self, node: Node, scope: NameScope,
                       class_ignores: Dict[str, Tuple[bool, Optional[str]]]) -> Tuple[bool, Optional[str]]:
        ignored, rule = _ignore_annotation(node)
        if ignored:
            return ignored, rule
        class_ignored, class_rule = class_ignores.get(scope.current_class, (False, None))
        if class_ignored and class_rule is None:
            return True, None
        return False, None

    def _method_symbol(self, node: Node, scope: NameScope, file_path: str,
                       class_ignores: Dict[str, Tuple[bool, Optional[str]]]) -> Symbol:
        modifiers = _modifiers(node)
        ignored, rule = self._member_ignore(node, scope, class_ignores)
        # Interface methods are implicitly abstract
        in_interface = node.parent is not None and node.parent.parent is not None \
            and node.parent.parent.type == 'interface_declaration'
        return Symbol(
            kind=SymbolKind.METHOD,
            name=node_text(node.child_by_field_name('name')),
            namespace=scope.namespace,
            file=file_path,
            start_line=node_line(node),
            end_line=node.end_point[0] + 1,
            visibility=modifiers.get('visibility_modifier', 'public'),
            is_static='static_modifier' in modifiers,
            is_abstract='abstract_modifier' in modifiers or in_interface,
            is_final='final_modifier' in modifiers,
            owner=scope.current_class,
            ignored=ignored,
            ignored_rule=rule,
        )

    def _property_symbols(self, node: Node, scope: NameScope, file_path: str,
                          class_ignores: Dict[str, Tuple[bool, Optional[str]]]) -> List[Symbol]:
        modifiers = _modifiers(node)
        ignored, rule = self._member_ignore(node, scope, class_ignores)
        visibility = modifiers.get('visibility_modifier', 'public')
        symbols = []
        for element in node.named_children:
            if element.type != 'property_element':
                continue
            variable = element.child_by_field_name('name')
            if variable is None:
                variable = next((c for c in element.named_children if c.type == 'variable_name'), None)
            if variable is None:
                continue
            symbols.append(Symbol(
                kind=SymbolKind.PROPERTY,
                name=node_text(variable).lstrip('$'),
                namespace=scope.namespace,
                file=file_path,
                start_line=node_line(element),
                end_line=element.end_point[0] + 1,
                visibility=visibility,
                is_static='static_modifier' in modifiers,
                owner=scope.current_class,
                ignored=ignored,
                ignored_rule=rule,
            ))
        return symbols

    def _promoted_property(self, node: Node, scope: NameScope, file_path: str,
                           class_ignores: Dict[str, Tuple[bool, Optional[str]]]) -> Symbol:
        modifiers = _modifiers(node)
        ignored, rule = self._member_ignore(node, scope, class_ignores)
        variable = node.child_by_field_name('name')
        return Symbol(
            kind=SymbolKind.PROPERTY,
            name=node_text(variable).lstrip('&$'),
            namespace=scope.namespace,
            file=file_path,
            start_line=node_line(node),
            end_line=node.end_point[0] + 1,
            visibility=modifiers.get('visibility_modifier', 'public'),
            owner=scope.current_class,
            ignored=ignored,
            ignored_rule=rule,
            metadata={'promoted': True},
        )

    def _constant_symbols(self, node: Node, scope: NameScope, file_path: str,
                          class_ignores: Dict[str, Tuple[bool, Optional[str]]]) -> List[Symbol]:
        in_class = scope.current_class is not None
        modifiers = _modifiers(node)
        if in_class:
            ignored, rule = self._member_ignore(node, scope, class_ignores)
        else:
            ignored, rule = _ignore_annotation(node)

        symbols = []
        for element in node.named_children:
            if element.type != 'const_element':
                continue
            name_node = next((c for c in element.named_children if c.type == 'name'), None)
            if name_node is None:
                continue
            symbols.append(Symbol(
                kind=SymbolKind.CLASS_CONSTANT if in_class else SymbolKind.GLOBAL_CONSTANT,
                name=node_text(name_node),
                namespace=scope.namespace,
                file=file_path,
                start_line=node_line(element),
                end_line=element.end_point[0] + 1,
                visibility=modifiers.get('visibility_modifier', 'public') if in_class else None,
                is_final='final_modifier' in modifiers,
                owner=scope.current_class,
                ignored=ignored,
                ignored_rule=rule,
            ))
        return symbols

    def _enum_case(self, node: Node, scope: NameScope, file_path: str,
                   class_ignores: Dict[str, Tuple[bool, Optional[str]]]) -> Optional[Symbol]:
        name_node = node.child_by_field_name('name')
        if name_node is None:
            name_node = next((c for c in node.named_children if c.type == 'name'), None)
        if name_node is None:
            return None
        ignored, rule = self._member_ignore(node, scope, class_ignores)
        return Symbol(
            kind=SymbolKind.CLASS_CONSTANT,
            name=node_text(name_node),
            namespace=scope.namespace,
            file=file_path,
            start_line=node_line(node),
            end_line=node.end_point[0] + 1,
            visibility='public',
            owner=scope.current_class,
            ignored=ignored,
            ignored_rule=rule,
            metadata={'enum_case': True},
        )

    def _define_constant(self, node: Node, file_path: str) -> Optional[Symbol]:
        """``define('NAME', value)`` declares a global constant at runtime."""
        function = node.child_by_field_name('function')
        if function is None or clean_name(node_text(function)).lstrip('\\').lower() != 'define':
            return None
        arg = first_argument(node)
        value = _string_literal(arg) if arg is not None else None
        if not value:
            return None

        # define() names are always absolute
        namespace, _, name = value.lstrip('\\').rpartition('\\')
        statement = node.parent if node.parent is not None and node.parent.type == 'expression_statement' else node
        ignored, rule = _ignore_annotation(statement)
        return Symbol(
            kind=SymbolKind.GLOBAL_CONSTANT,
            name=name,
            namespace=namespace,
            file=file_path,
            start_line=node_line(node),
            end_line=node.end_point[0] + 1,
            ignored=ignored,
            ignored_rule=rule,
            metadata={'defined_with': 'define'},
        )


def collect_symbols(tree: Tree | Node, file_path: str) -> List[Symbol]:
    """Collect all declared Symbols of one file."""
    return SymbolExtractor().extract_symbols(tree, file_path)
