"""Symbol, Reference and Issue records shared by the collectors and analyzers."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple


class SymbolKind(str, Enum):
    """Kinds of PHP declarations tracked for liveness."""
    CLASS = 'class'
    INTERFACE = 'interface'
    TRAIT = 'trait'
    ENUM = 'enum'
    FUNCTION = 'function'
    METHOD = 'method'
    PROPERTY = 'property'
    CLASS_CONSTANT = 'class-constant'
    GLOBAL_CONSTANT = 'global-constant'

    @property
    def is_class_like(self) -> bool:
        return self in CLASS_LIKE_KINDS


CLASS_LIKE_KINDS = frozenset({
    SymbolKind.CLASS, SymbolKind.INTERFACE, SymbolKind.TRAIT, SymbolKind.ENUM,
})


class ReferenceKind(str, Enum):
    """Kinds of use-sites emitted by the reference collector."""
    INSTANTIATION = 'instantiation'
    EXTENDS = 'extends'
    IMPLEMENTS = 'implements'
    USE_TRAIT = 'use-trait'
    IMPORT = 'import'
    IMPORT_ALIAS = 'import-alias'
    STATIC_CALL = 'static-call'
    STATIC_PROPERTY = 'static-property'
    FUNCTION_CALL = 'function-call'
    METHOD_CALL = 'method-call'
    PROPERTY_ACCESS = 'property-access'
    INSTANCEOF = 'instanceof'
    TYPE_HINT = 'type-hint'
    RETURN_TYPE = 'return-type'
    CATCH = 'catch'
    CLASS_CONSTANT_ACCESS = 'class-constant-access'
    CLASS_STRING = 'class-string'
    CONSTANT = 'constant'


# Reference kinds whose target (or parent, for member access) is a class-like symbol
CLASS_REFERENCE_KINDS = frozenset({
    ReferenceKind.INSTANTIATION,
    ReferenceKind.EXTENDS,
    ReferenceKind.IMPLEMENTS,
    ReferenceKind.USE_TRAIT,
    ReferenceKind.INSTANCEOF,
    ReferenceKind.TYPE_HINT,
    ReferenceKind.RETURN_TYPE,
    ReferenceKind.CATCH,
    ReferenceKind.CLASS_STRING,
})

# Reference kinds that name a class through symbol_parent
PARENT_CLASS_REFERENCE_KINDS = frozenset({
    ReferenceKind.STATIC_CALL,
    ReferenceKind.STATIC_PROPERTY,
    ReferenceKind.CLASS_CONSTANT_ACCESS,
})


class Severity(str, Enum):
    ERROR = 'error'
    WARNING = 'warning'
    INFO = 'info'

    @property
    def rank(self) -> int:
        return {'error': 3, 'warning': 2, 'info': 1}[self.value]


def short_name(name: str) -> str:
    """Return the last segment of a namespaced name (``A\\B\\Foo`` -> ``Foo``)."""
    return name.rsplit('\\', 1)[-1]


def join_namespace(namespace: str, name: str) -> str:
    return f"{namespace}\\{name}" if namespace else name


@dataclass(frozen=True)
class Symbol:
    """A declared program element (class, function, method, constant, ...).

    Core fields are immutable once collected. Only ``metadata`` is written
    after collection, and only by the plugin phase.
    """
    kind: SymbolKind
    name: str
    namespace: str = ''
    file: str = ''
    start_line: int = 0
    end_line: int = 0
    visibility: Optional[str] = None  # public / protected / private (members only)
    is_static: bool = False
    is_abstract: bool = False
    is_final: bool = False
    extends: Tuple[str, ...] = ()
    implements: Tuple[str, ...] = ()
    uses_traits: Tuple[str, ...] = ()
    owner: Optional[str] = None  # FQN of declaring class (members only)
    ignored: bool = False
    ignored_rule: Optional[str] = None
    metadata: Dict[str, object] = field(default_factory=dict, compare=False, hash=False)

    @property
    def fqn(self) -> str:
        if self.owner:
            return f"{self.owner}::{self.name}"
        return join_namespace(self.namespace, self.name)

    @property
    def id(self) -> str:
        return f"{self.kind.value}:{self.fqn}"

    @property
    def display_name(self) -> str:
        """Name used in issue messages (``Class::method``, ``Class::$prop``)."""
        if self.kind == SymbolKind.PROPERTY:
            return f"{self.owner}::${self.name}"
        return self.fqn

    @property
    def is_private(self) -> bool:
        return self.visibility == 'private'

    @property
    def is_public(self) -> bool:
        return self.visibility in (None, 'public')

    def to_dict(self) -> Dict:
        return {
            'kind': self.kind.value,
            'name': self.name,
            'namespace': self.namespace,
            'file': self.file,
            'start_line': self.start_line,
            'end_line': self.end_line,
            'visibility': self.visibility,
            'is_static': self.is_static,
            'is_abstract': self.is_abstract,
            'is_final': self.is_final,
            'extends': list(self.extends),
            'implements': list(self.implements),
            'uses_traits': list(self.uses_traits),
            'owner': self.owner,
            'ignored': self.ignored,
            'ignored_rule': self.ignored_rule,
            'metadata': dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'Symbol':
        return cls(
            kind=SymbolKind(data['kind']),
            name=data['name'],
            namespace=data.get('namespace', ''),
            file=data.get('file', ''),
            start_line=data.get('start_line', 0),
            end_line=data.get('end_line', 0),
            visibility=data.get('visibility'),
            is_static=data.get('is_static', False),
            is_abstract=data.get('is_abstract', False),
            is_final=data.get('is_final', False),
            extends=tuple(data.get('extends', ())),
            implements=tuple(data.get('implements', ())),
            uses_traits=tuple(data.get('uses_traits', ())),
            owner=data.get('owner'),
            ignored=data.get('ignored', False),
            ignored_rule=data.get('ignored_rule'),
            metadata=dict(data.get('metadata', {})),
        )


@dataclass(frozen=True)
class Reference:
    """A use-site naming a symbol.

    ``symbol_name`` carries the resolved name wherever resolution was
    statically possible. Dynamic references (``new $cls``) never count
    toward liveness.
    """
    kind: ReferenceKind
    symbol_name: str
    symbol_parent: Optional[str] = None
    file: str = ''
    line: int = 0
    context: str = ''
    is_dynamic: bool = False
    alias: Optional[str] = None  # import references only
    enclosing_class: Optional[str] = None  # FQN of the class whose body holds the reference

    @property
    def short_name(self) -> str:
        return short_name(self.symbol_name)

    def to_dict(self) -> Dict:
        data = {
            'kind': self.kind.value,
            'symbol_name': self.symbol_name,
            'file': self.file,
            'line': self.line,
        }
        # Keep blobs small: only write optional fields that are set
        if self.symbol_parent is not None:
            data['symbol_parent'] = self.symbol_parent
        if self.context:
            data['context'] = self.context
        if self.is_dynamic:
            data['is_dynamic'] = True
        if self.alias is not None:
            data['alias'] = self.alias
        if self.enclosing_class:
            data['enclosing_class'] = self.enclosing_class
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> 'Reference':
        return cls(
            kind=ReferenceKind(data['kind']),
            symbol_name=data['symbol_name'],
            symbol_parent=data.get('symbol_parent'),
            file=data.get('file', ''),
            line=data.get('line', 0),
            context=data.get('context', ''),
            is_dynamic=data.get('is_dynamic', False),
            alias=data.get('alias'),
            enclosing_class=data.get('enclosing_class'),
        )


@dataclass(frozen=True)
class UseStatement:
    """One imported name from a ``use`` statement."""
    fqn: str
    alias: str
    line: int
    kind: str = 'class'  # class / function / constant
    file: str = ''
    explicit_alias: bool = False

    @property
    def short_name(self) -> str:
        return short_name(self.fqn)

    def to_dict(self) -> Dict:
        return {
            'fqn': self.fqn,
            'alias': self.alias,
            'line': self.line,
            'kind': self.kind,
            'file': self.file,
            'explicit_alias': self.explicit_alias,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'UseStatement':
        return cls(
            fqn=data['fqn'],
            alias=data['alias'],
            line=data['line'],
            kind=data.get('kind', 'class'),
            file=data.get('file', ''),
            explicit_alias=data.get('explicit_alias', False),
        )


@dataclass
class FileReferences:
    """Everything the reference collector learns from a single file."""
    references: List[Reference] = field(default_factory=list)
    use_statements: List[UseStatement] = field(default_factory=list)

    @property
    def alias_map(self) -> Dict[str, str]:
        """Map of alias -> FQN for class imports in this file."""
        return {u.alias: u.fqn for u in self.use_statements if u.kind == 'class'}


@dataclass(frozen=True)
class Issue:
    """A detected problem.

    Two issues are equal when kind, symbol_name, file and line match, so
    the same finding from two analyzers collapses to one report row.
    """
    kind: str
    symbol_name: str
    file: str
    line: int
    severity: Severity = field(default=Severity.WARNING, compare=False)
    message: str = field(default='', compare=False)
    symbol_kind: Optional[str] = field(default=None, compare=False)

    def sort_key(self) -> Tuple[str, int, str, str]:
        return (self.file or '', self.line, self.kind, self.symbol_name)

    def to_dict(self) -> Dict:
        return {
            'kind': self.kind,
            'severity': self.severity.value,
            'symbol': self.symbol_name,
            'symbol_kind': self.symbol_kind,
            'file': self.file,
            'line': self.line,
            'message': self.message,
        }


@dataclass(frozen=True)
class ParseFailure:
    """Source file that could not be parsed; skipped from analysis."""
    file: str
    line: int
    message: str
    kind: str = field(default='parse', init=False)


@dataclass(frozen=True)
class EncodingFailure:
    """Source file whose bytes could not be normalised to UTF-8."""
    file: str
    line: int
    message: str
    kind: str = field(default='encoding', init=False)


@dataclass(frozen=True)
class IOFailure:
    """Source file that is missing or unreadable."""
    file: str
    line: int
    message: str
    kind: str = field(default='io', init=False)
