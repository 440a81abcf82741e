"""Tests for name resolution and the symbol / reference collectors."""
import pytest

from phpjanitor.analyzer.extractor import collect_symbols
from phpjanitor.analyzer.models import ReferenceKind, SymbolKind, UseStatement
from phpjanitor.analyzer.reference_tracker import DYNAMIC, collect_references
from phpjanitor.analyzer.resolver import NameScope
from phpjanitor.errors import ParseError


def _symbols(parser, code, path='a.php'):
    return collect_symbols(parser.parse_source(code), path)


def _refs(parser, code, path='a.php'):
    return collect_references(parser.parse_source(code), path)


def _by_kind(refs, kind):
    return [r for r in refs if r.kind == kind]


class TestNameScope:
    def test_relative_name_joins_namespace(self):
        assert NameScope(namespace='App').resolve_class('Foo') == 'App\\Foo'

    def test_fully_qualified_name_drops_leading_backslash(self):
        assert NameScope(namespace='App').resolve_class('\\Foo\\Bar') == 'Foo\\Bar'

    def test_imported_alias_is_case_insensitive(self):
        scope = NameScope(namespace='App').with_imports([
            UseStatement(fqn='Lib\\Http\\Client', alias='Client', line=3),
        ])
        assert scope.resolve_class('client') == 'Lib\\Http\\Client'
        assert scope.resolve_class('Client\\Pool') == 'Lib\\Http\\Client\\Pool'

    def test_namespace_keyword(self):
        assert NameScope(namespace='App').resolve_class('namespace\\Foo') == 'App\\Foo'

    def test_self_and_parent_resolve_to_enclosing_classes(self):
        scope = NameScope(namespace='App').enter_class('App\\Child', 'App\\Base')
        assert scope.resolve_class('self') == 'App\\Child'
        assert scope.resolve_class('static') == 'App\\Child'
        assert scope.resolve_class('parent') == 'App\\Base'

    def test_function_and_constant_imports(self):
        scope = NameScope(namespace='App').with_imports([
            UseStatement(fqn='Lib\\helper', alias='helper', line=2, kind='function'),
            UseStatement(fqn='Lib\\LIMIT', alias='LIMIT', line=3, kind='constant'),
        ])
        assert scope.resolve_function('helper') == 'Lib\\helper'
        assert scope.resolve_function('other') == 'App\\other'
        assert scope.resolve_constant('LIMIT') == 'Lib\\LIMIT'
        # Constant aliases are case-sensitive
        assert scope.resolve_constant('limit') == 'App\\limit'

    def test_new_namespace_resets_imports(self):
        scope = NameScope(namespace='A').with_imports([UseStatement(fqn='X\\Foo', alias='Foo', line=2)])
        assert scope.enter_namespace('B').resolve_class('Foo') == 'B\\Foo'

    def test_context_names_enclosing_member(self):
        scope = NameScope(namespace='App').enter_class('App\\Foo').enter_function('run')
        assert scope.context == 'App\\Foo::run'


class TestSymbolCollection:
    def test_class_and_members(self, php_parser):
        code = """<?php
namespace App\\Models;

abstract class Base {}

final class User extends Base implements \\JsonSerializable {
    use HasName;

    public const TABLE = 'users';
    private $age = 0;

    public function __construct(private string $name) {}

    protected static function make() { return null; }

    public function jsonSerialize() { return []; }
}
"""
        symbols = {s.fqn: s for s in _symbols(php_parser, code)}

        base = symbols['App\\Models\\Base']
        assert base.kind == SymbolKind.CLASS
        assert base.is_abstract

        user = symbols['App\\Models\\User']
        assert user.is_final
        assert user.start_line == 6
        assert user.extends == ('App\\Models\\Base',)
        assert user.implements == ('JsonSerializable',)
        assert user.uses_traits == ('App\\Models\\HasName',)

        table = symbols['App\\Models\\User::TABLE']
        assert table.kind == SymbolKind.CLASS_CONSTANT
        assert table.visibility == 'public'

        age = symbols['App\\Models\\User::age']
        assert age.kind == SymbolKind.PROPERTY
        assert age.is_private
        assert age.display_name == 'App\\Models\\User::$age'

        promoted = symbols['App\\Models\\User::name']
        assert promoted.kind == SymbolKind.PROPERTY
        assert promoted.is_private
        assert promoted.metadata['promoted'] is True

        make = symbols['App\\Models\\User::make']
        assert make.kind == SymbolKind.METHOD
        assert make.visibility == 'protected'
        assert make.is_static
        assert make.owner == 'App\\Models\\User'

    def test_interface_methods_are_abstract(self, php_parser):
        code = """<?php
interface Greets {
    public function greet();
}
"""
        symbols = {s.fqn: s for s in _symbols(php_parser, code)}
        assert symbols['Greets'].kind == SymbolKind.INTERFACE
        assert symbols['Greets::greet'].is_abstract

    def test_enum_cases(self, php_parser):
        code = """<?php
enum Status: string {
    case Active = 'active';
    case Archived = 'archived';
}
"""
        symbols = _symbols(php_parser, code)
        assert symbols[0].kind == SymbolKind.ENUM
        cases = [s for s in symbols if s.kind == SymbolKind.CLASS_CONSTANT]
        assert [c.name for c in cases] == ['Active', 'Archived']
        assert all(c.metadata.get('enum_case') for c in cases)

    def test_global_constants_and_define(self, php_parser):
        code = """<?php
define('APP_VERSION', '1.0');
const LIMIT = 10;
"""
        symbols = {s.fqn: s for s in _symbols(php_parser, code)}
        assert symbols['APP_VERSION'].kind == SymbolKind.GLOBAL_CONSTANT
        assert symbols['APP_VERSION'].metadata['defined_with'] == 'define'
        assert symbols['LIMIT'].kind == SymbolKind.GLOBAL_CONSTANT

    def test_functions_take_namespace(self, php_parser):
        code = """<?php
namespace App\\Support;

function helper() {}
"""
        symbols = _symbols(php_parser, code)
        assert [s.fqn for s in symbols] == ['App\\Support\\helper']
        assert symbols[0].kind == SymbolKind.FUNCTION

    def test_ignore_annotations(self, php_parser):
        code = """<?php
/** @phpjanitor-ignore */
class Legacy {
    private function old() {}
}

class Service {
    // @phpjanitor-ignore unused-methods
    private function helper() {}

    private function other() {}
}
"""
        symbols = {s.fqn: s for s in _symbols(php_parser, code)}
        assert symbols['Legacy'].ignored
        assert symbols['Legacy'].ignored_rule is None
        # Members inherit a blanket class-level ignore
        assert symbols['Legacy::old'].ignored
        assert symbols['Service::helper'].ignored
        assert symbols['Service::helper'].ignored_rule == 'unused-methods'
        assert not symbols['Service::other'].ignored

    def test_anonymous_class_members_are_skipped(self, php_parser):
        code = """<?php
$handler = new class {
    private function hidden() {}
};
"""
        assert _symbols(php_parser, code) == []

    def test_file_path_recorded(self, php_parser):
        symbols = _symbols(php_parser, "<?php\nclass Foo {}\n", path='src/Foo.php')
        assert symbols[0].file == 'src/Foo.php'

    def test_syntax_error_raises(self, php_parser):
        with pytest.raises(ParseError) as exc_info:
            php_parser.parse_source("<?php\nclass {\n")
        assert exc_info.value.line >= 1


class TestReferenceCollection:
    CODE = """<?php
namespace App;

use App\\Models\\User;
use App\\Services\\Mailer as Mail;
use function App\\Support\\helper;
use const App\\Support\\LIMIT;

class Controller extends BaseController implements HasRoutes {
    use Loggable;

    public function show(User $user): Response {
        $mail = new Mail();
        $mail->send($user);
        $this->render();
        $label = $this->title;
        Cache::get('key');
        $cls = Report::class;
        $timeout = Config::TIMEOUT;
        $items = Registry::$items;
        helper(LIMIT);
        if ($user instanceof Admin) {
            return null;
        }
        try {
            $label = null;
        } catch (NotFound $e) {
            $label = null;
        }
        $other = new $cls();
        $field = $this->$label;
        return new Response();
    }
}
"""

    @pytest.fixture
    def found(self, php_parser):
        return _refs(php_parser, self.CODE)

    def test_use_statements(self, found):
        uses = {u.alias: u for u in found.use_statements}
        assert uses['User'].fqn == 'App\\Models\\User'
        assert uses['User'].line == 4
        assert uses['Mail'].fqn == 'App\\Services\\Mailer'
        assert uses['Mail'].explicit_alias
        assert uses['helper'].kind == 'function'
        assert uses['LIMIT'].kind == 'constant'
        assert found.alias_map['Mail'] == 'App\\Services\\Mailer'

    def test_import_references(self, found):
        imports = _by_kind(found.references, ReferenceKind.IMPORT)
        aliased = _by_kind(found.references, ReferenceKind.IMPORT_ALIAS)
        assert 'App\\Models\\User' in {r.symbol_name for r in imports}
        assert [(r.symbol_name, r.alias) for r in aliased] == [('App\\Services\\Mailer', 'Mail')]

    def test_declaration_clauses(self, found):
        refs = found.references
        assert [r.symbol_name for r in _by_kind(refs, ReferenceKind.EXTENDS)] == ['App\\BaseController']
        assert [r.symbol_name for r in _by_kind(refs, ReferenceKind.IMPLEMENTS)] == ['App\\HasRoutes']
        assert [r.symbol_name for r in _by_kind(refs, ReferenceKind.USE_TRAIT)] == ['App\\Loggable']

    def test_types_resolve_through_imports(self, found):
        hints = _by_kind(found.references, ReferenceKind.TYPE_HINT)
        assert [r.symbol_name for r in hints] == ['App\\Models\\User']
        assert hints[0].context == 'App\\Controller::show'
        assert [r.symbol_name for r in _by_kind(found.references, ReferenceKind.RETURN_TYPE)] == ['App\\Response']

    def test_instantiations(self, found):
        created = _by_kind(found.references, ReferenceKind.INSTANTIATION)
        static_names = [r.symbol_name for r in created if not r.is_dynamic]
        assert static_names == ['App\\Services\\Mailer', 'App\\Response']
        dynamic = [r for r in created if r.is_dynamic]
        assert len(dynamic) == 1
        assert dynamic[0].symbol_name == DYNAMIC

    def test_member_calls_on_this_carry_the_class(self, found):
        calls = {r.symbol_name: r for r in _by_kind(found.references, ReferenceKind.METHOD_CALL)}
        assert calls['send'].symbol_parent is None
        assert calls['render'].symbol_parent == 'App\\Controller'
        accesses = _by_kind(found.references, ReferenceKind.PROPERTY_ACCESS)
        title = [r for r in accesses if r.symbol_name == 'title']
        assert title[0].symbol_parent == 'App\\Controller'
        assert any(r.is_dynamic and r.symbol_parent == 'App\\Controller' for r in accesses)

    def test_static_access(self, found):
        refs = found.references
        static_calls = _by_kind(refs, ReferenceKind.STATIC_CALL)
        assert [(r.symbol_name, r.symbol_parent) for r in static_calls] == [('get', 'App\\Cache')]
        constants = _by_kind(refs, ReferenceKind.CLASS_CONSTANT_ACCESS)
        assert [(r.symbol_name, r.symbol_parent) for r in constants] == [('TIMEOUT', 'App\\Config')]
        props = _by_kind(refs, ReferenceKind.STATIC_PROPERTY)
        assert [(r.symbol_name, r.symbol_parent) for r in props] == [('items', 'App\\Registry')]

    def test_class_string(self, found):
        strings = _by_kind(found.references, ReferenceKind.CLASS_STRING)
        assert [r.symbol_name for r in strings] == ['App\\Report']

    def test_imported_function_and_constant(self, found):
        calls = [r.symbol_name for r in _by_kind(found.references, ReferenceKind.FUNCTION_CALL)]
        assert calls == ['App\\Support\\helper']
        constants = [r.symbol_name for r in _by_kind(found.references, ReferenceKind.CONSTANT)]
        assert constants == ['App\\Support\\LIMIT']

    def test_instanceof_and_catch(self, found):
        refs = found.references
        assert [r.symbol_name for r in _by_kind(refs, ReferenceKind.INSTANCEOF)] == ['App\\Admin']
        assert [r.symbol_name for r in _by_kind(refs, ReferenceKind.CATCH)] == ['App\\NotFound']

    def test_references_record_file_and_line(self, found):
        render = [r for r in found.references if r.symbol_name == 'render'][0]
        assert render.file == 'a.php'
        assert render.line == 15

    def test_group_use(self, php_parser):
        found = _refs(php_parser, "<?php\nuse App\\Models\\{User, Post as Article};\n")
        uses = {u.alias: u for u in found.use_statements}
        assert uses['User'].fqn == 'App\\Models\\User'
        assert uses['Article'].fqn == 'App\\Models\\Post'
        assert uses['Article'].explicit_alias
        assert {u.line for u in found.use_statements} == {2}

    def test_relative_class_names_are_not_references(self, php_parser):
        code = """<?php
class Node {
    public static function make() {
        $a = new static();
        $b = new self();
        return self::class;
    }
}
"""
        found = _refs(php_parser, code)
        assert _by_kind(found.references, ReferenceKind.INSTANTIATION) == []
        assert _by_kind(found.references, ReferenceKind.CLASS_STRING) == []

    def test_define_and_builtin_constants_are_skipped(self, php_parser):
        code = """<?php
define('FLAG', true);
$x = null;
echo __LINE__;
echo FLAG;
"""
        found = _refs(php_parser, code)
        assert _by_kind(found.references, ReferenceKind.FUNCTION_CALL) == []
        assert [r.symbol_name for r in _by_kind(found.references, ReferenceKind.CONSTANT)] == ['FLAG']

    def test_dynamic_function_call(self, php_parser):
        found = _refs(php_parser, "<?php\n$fn = 'strlen';\n$fn('x');\n")
        calls = _by_kind(found.references, ReferenceKind.FUNCTION_CALL)
        assert len(calls) == 1
        assert calls[0].is_dynamic
