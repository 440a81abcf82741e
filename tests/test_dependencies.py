"""Tests for composer dependency data and the unused-dependencies rule."""
import json

import pytest

from phpjanitor.analyzer.context import AnalysisSettings
from phpjanitor.analyzer.dependencies import (
    ComposerDependencies,
    DeclaredPackage,
    NamespaceMap,
    declared_packages,
    is_platform_package,
    load_composer_lock,
)
from phpjanitor.analyzer.liveness import analyze
from phpjanitor.analyzer.models import Severity

COMPOSER = {
    'name': 'acme/app',
    'require': {
        'php': '^8.1',
        'ext-json': '*',
        'lib-curl': '*',
        'guzzlehttp/guzzle': '^7.0',
        'Monolog/Monolog': '^3.0',
        'acme/helpers': '^1.0',
        'symfony/flex': '^2.0',
    },
    'require-dev': {
        'phpunit/phpunit': '^10.0',
    },
    'autoload': {'psr-4': {'App\\': 'src/'}},
}

LOCK = {
    'packages': [
        {'name': 'guzzlehttp/guzzle', 'autoload': {'psr-4': {'GuzzleHttp\\': 'src/'}}},
        {'name': 'monolog/monolog', 'autoload': {'psr-4': {'Monolog\\': 'src/Monolog'}}},
        {'name': 'acme/helpers', 'autoload': {'psr-0': {'Acme\\Helpers\\': 'src/'}}},
    ],
    'packages-dev': [
        {'name': 'phpunit/phpunit', 'autoload': {'classmap': ['src/']}},
    ],
}

SOURCE = """<?php
namespace App;

use GuzzleHttp\\Client;

function fetch() {
    $client = new Client();
    return \\Acme\\Helpers\\format_bytes(strlen('x'));
}
"""


def _dependencies():
    return ComposerDependencies('/p/composer.json', declared_packages(COMPOSER), NamespaceMap.build(COMPOSER, LOCK))


class TestDeclaredPackages:
    def test_platform_and_configuration_packages_skipped(self):
        assert declared_packages(COMPOSER) == [
            DeclaredPackage('guzzlehttp/guzzle'),
            DeclaredPackage('monolog/monolog'),
            DeclaredPackage('acme/helpers'),
            DeclaredPackage('phpunit/phpunit', is_dev=True),
        ]

    def test_platform_names(self):
        assert is_platform_package('PHP')
        assert is_platform_package('ext-mbstring')
        assert not is_platform_package('phpunit/phpunit')

    def test_require_wins_over_require_dev(self):
        composer = {'require': {'foo/bar': '^1'}, 'require-dev': {'foo/bar': '^1'}}
        assert declared_packages(composer) == [DeclaredPackage('foo/bar')]


class TestNamespaceMap:
    def test_longest_prefix_wins(self):
        namespaces = NamespaceMap([('Acme\\', 'acme/core'), ('Acme\\Helpers', 'acme/helpers')])
        assert namespaces.resolve_class('Acme\\Helpers\\Str') == 'acme/helpers'
        assert namespaces.resolve_class('\\Acme\\Other') == 'acme/core'
        assert namespaces.resolve_class('Acme') == 'acme/core'

    def test_prefix_must_end_at_namespace_boundary(self):
        namespaces = NamespaceMap([('Acme', 'acme/core')])
        assert namespaces.resolve_class('AcmeCorp\\Foo') is None

    def test_functions_resolve_through_their_namespace(self):
        namespaces = NamespaceMap([('Acme\\Helpers', 'acme/helpers')])
        assert namespaces.resolve_function('acme\\helpers\\format_bytes') == 'acme/helpers'
        assert namespaces.resolve_function('strlen') is None

    def test_build_includes_project_namespaces(self):
        namespaces = NamespaceMap.build(COMPOSER, LOCK)
        assert namespaces.resolve_class('App\\Http\\Kernel') == 'acme/app'
        assert namespaces.resolve_class('GuzzleHttp\\Client') == 'guzzlehttp/guzzle'
        assert namespaces.resolve_class('PHPUnit\\Framework\\TestCase') is None
        assert len(namespaces) == 4


class TestLoading:
    def test_missing_lock_file(self, tmp_path):
        assert load_composer_lock(tmp_path) == {}
        (tmp_path / 'composer.json').write_text(json.dumps(COMPOSER), encoding='utf-8')
        assert ComposerDependencies.load(tmp_path) is None

    def test_unreadable_lock_file(self, tmp_path):
        (tmp_path / 'composer.lock').write_text('{broken', encoding='utf-8')
        assert load_composer_lock(tmp_path) == {}

    def test_load(self, tmp_path):
        (tmp_path / 'composer.json').write_text(json.dumps(COMPOSER), encoding='utf-8')
        (tmp_path / 'composer.lock').write_text(json.dumps(LOCK), encoding='utf-8')
        dependencies = ComposerDependencies.load(tmp_path)
        assert dependencies.composer_file == str(tmp_path / 'composer.json')
        assert [p.name for p in dependencies.packages][-1] == 'phpunit/phpunit'
        assert dependencies.namespace_map.resolve_class('Monolog\\Logger') == 'monolog/monolog'


class TestUnusedDependencies:
    def test_unused_packages_reported(self, make_context):
        context = make_context({'src/fetch.php': SOURCE}, dependencies=_dependencies())
        issues = analyze(context, ['unused-dependencies'])
        assert [(i.symbol_name, i.severity) for i in issues] == [
            ('monolog/monolog', Severity.WARNING),
            ('phpunit/phpunit', Severity.INFO),
        ]
        monolog, phpunit = issues
        assert monolog.file == '/p/composer.json'
        assert monolog.line == 0
        assert monolog.symbol_kind == 'dependency'
        assert monolog.message == "Package 'monolog/monolog' is declared as dependency but never used"
        assert phpunit.message == "Package 'phpunit/phpunit' is declared as dev dependency but never used"

    def test_static_call_parent_counts(self, make_context):
        source = "<?php\n\\Monolog\\Registry::getInstance('app');\n"
        context = make_context({'a.php': source}, dependencies=_dependencies())
        names = [i.symbol_name for i in analyze(context, ['unused-dependencies'])]
        assert 'monolog/monolog' not in names

    def test_ignore_patterns(self, make_context):
        context = make_context(
            {'src/fetch.php': SOURCE},
            dependencies=_dependencies(),
            settings=AnalysisSettings(ignore_dependencies=['monolog/*', 'phpunit/*']),
        )
        assert analyze(context, ['unused-dependencies']) == []

    def test_no_composer_data(self, make_context):
        context = make_context({'src/fetch.php': SOURCE})
        assert analyze(context, ['unused-dependencies']) == []

    @pytest.mark.parametrize('severity', [None, Severity.ERROR])
    def test_configured_severity(self, make_context, severity):
        settings = AnalysisSettings()
        settings.rules['unused-dependencies'] = severity
        context = make_context({'src/fetch.php': SOURCE}, dependencies=_dependencies(), settings=settings)
        issues = analyze(context, ['unused-dependencies'])
        if severity is None:
            assert issues == []
        else:
            # dev packages stay informational
            assert [i.severity for i in issues] == [Severity.ERROR, Severity.INFO]
