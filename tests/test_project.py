"""End-to-end tests for the project pipeline: discovery, cache, plugins and analysis."""
import json

import pytest

from phpjanitor.analyzer.models import Severity
from phpjanitor.analyzer.project import ProjectAnalyzer, discover_files
from phpjanitor.config import Config


def _write(root, relative, content):
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding='utf-8')
    return path


@pytest.fixture
def project(tmp_path):
    _write(tmp_path, 'src/Models/User.php', "<?php\nnamespace App\\Models;\n\nclass User {}\n")
    _write(tmp_path, 'src/Models/Orphan.php', "<?php\nnamespace App\\Models;\n\nclass Orphan {}\n")
    _write(tmp_path, 'src/helpers.php', """<?php
namespace App;

function used() {}
function unused() {}
""")
    _write(tmp_path, 'index.php', """<?php

use App\\Models\\User;
use App\\Models\\Post;

$user = new User();
App\\used();
""")
    _write(tmp_path, 'broken.php', "<?php\nclass {\n")
    _write(tmp_path, 'vendor/lib/Vendored.php', "<?php\nclass Vendored {}\n")
    return tmp_path


def _by_rule(result):
    found = {}
    for issue in result.issues:
        found.setdefault(issue.kind, []).append(issue)
    return found


def test_full_run(project):
    result = ProjectAnalyzer(project).run()
    issues = _by_rule(result)

    assert [i.symbol_name for i in issues['unused-classes']] == ['App\\Models\\Orphan']
    assert [i.symbol_name for i in issues['unused-functions']] == ['App\\unused']
    uses = issues['unused-use-statements']
    assert [(i.symbol_name, i.line) for i in uses] == [('App\\Models\\Post', 4)]
    assert uses[0].file == str(project.resolve() / 'index.php')
    assert [i.symbol_name for i in issues['unused-files']] == ['src/Models/Orphan.php']
    assert set(issues) == {'unused-classes', 'unused-functions', 'unused-use-statements', 'unused-files'}

    assert len(result.failures) == 1
    failure = result.failures[0]
    assert failure.kind == 'parse'
    assert failure.file.endswith('broken.php')
    assert failure.line >= 1
    assert result.files_analyzed == 4
    assert result.active_plugins == []


def test_summary(project):
    summary = ProjectAnalyzer(project).run().summary
    assert summary['issues'] == 4
    assert summary['failures'] == 1
    assert summary['by_rule']['unused-classes'] == 1
    assert summary['by_severity'] == {'error': 2, 'warning': 2}


def test_rule_selection(project):
    result = ProjectAnalyzer(project).run(rules=['unused-functions'])
    assert {i.kind for i in result.issues} == {'unused-functions'}


def test_vendor_directory_is_skipped(project):
    files = ProjectAnalyzer(project).discover()
    assert not any('vendor' in f.parts for f in files)
    assert len(files) == 5


def test_callbacks(project):
    phases, seen = [], []
    ProjectAnalyzer(project).run(on_phase=lambda d, n: phases.append((d, n)), on_file=seen.append)
    assert phases[0] == ('Collecting symbols', 5)
    assert len(seen) == 5


def test_repeat_runs_use_cache(project):
    first = ProjectAnalyzer(project).run()
    assert first.cache_stats['writes'] == 4
    assert first.cache_stats['hits'] == 0

    second = ProjectAnalyzer(project).run()
    assert second.cache_stats['hits'] == 4
    assert second.issues == first.issues
    assert [i.message for i in second.issues] == [i.message for i in first.issues]

    _write(project, 'src/helpers.php', """<?php
namespace App;

function used() {}
function unused() {}
function also_unused() {}
""")
    third = ProjectAnalyzer(project).run()
    assert third.cache_stats['hits'] == 3
    names = [i.symbol_name for i in third.issues if i.kind == 'unused-functions']
    assert names == ['App\\unused', 'App\\also_unused']


def test_cache_disabled(project):
    config = Config(project)
    config.data['cache']['enabled'] = False
    result = ProjectAnalyzer(project, config=config).run()
    assert result.cache_stats['enabled'] is False
    assert not (project / '.phpjanitor-cache').exists()


def test_parallel_collection_matches_serial(project):
    serial = ProjectAnalyzer(project).run()
    config = Config(project)
    config.data['parallel'] = 4
    config.data['cache']['enabled'] = False
    parallel = ProjectAnalyzer(project, config=config).run()
    assert parallel.issues == serial.issues
    assert len(parallel.failures) == len(serial.failures)


def test_encoding_failure(tmp_path):
    _write(tmp_path, 'ok.php', "<?php\nclass Ok {}\n")
    (tmp_path / 'latin.php').write_bytes("<?php\n// café\nclass Latin {}\n".encode('latin-1'))
    config = Config(tmp_path)
    config.data['encoding'] = 'ascii'
    result = ProjectAnalyzer(tmp_path, config=config).run()
    assert [f.kind for f in result.failures] == ['encoding']
    assert result.failures[0].file.endswith('latin.php')


def test_latin1_source_is_decoded(tmp_path):
    (tmp_path / 'latin.php').write_bytes("<?php\n// café crème\nclass Latin {}\n".encode('latin-1'))
    result = ProjectAnalyzer(tmp_path).run(rules=['unused-classes'])
    assert result.failures == []
    assert [i.symbol_name for i in result.issues] == ['Latin']


def test_laravel_plugin(tmp_path):
    _write(tmp_path, 'composer.json', json.dumps({
        'require': {'laravel/framework': '^10.0'},
        'autoload': {'files': ['app/helpers.php']},
    }))
    _write(tmp_path, 'app/Http/Controllers/HomeController.php', """<?php
namespace App\\Http\\Controllers;

class HomeController {
    public function index() {}
}
""")
    _write(tmp_path, 'app/Providers/AppServiceProvider.php', """<?php
namespace App\\Providers;

class AppServiceProvider {}
""")
    _write(tmp_path, 'app/Services/Billing.php', """<?php
namespace App\\Services;

class Billing {}
""")
    _write(tmp_path, 'app/helpers.php', "<?php\nfunction money() {}\n")
    _write(tmp_path, 'routes/web.php', "<?php\nRoute::get('/billing', [App\\Services\\Billing::class, 'show']);\n")

    result = ProjectAnalyzer(tmp_path).run()
    assert result.active_plugins == ['laravel']
    unused_classes = [i.symbol_name for i in result.issues if i.kind == 'unused-classes']
    assert unused_classes == []
    unused_files = [i.symbol_name for i in result.issues if i.kind == 'unused-files']
    # autoload.files from composer.json are always loaded
    assert 'app/helpers.php' not in unused_files
    assert [i.symbol_name for i in result.issues if i.kind == 'unused-functions'] == ['money']


def test_framework_none(tmp_path):
    _write(tmp_path, 'artisan', '#!/usr/bin/env php\n')
    _write(tmp_path, 'app/Http/Controllers/HomeController.php', "<?php\nclass HomeController {}\n")
    config = Config(tmp_path)
    config.data['framework'] = 'none'
    result = ProjectAnalyzer(tmp_path, config=config).run(rules=['unused-classes'])
    assert result.active_plugins == []
    assert [i.symbol_name for i in result.issues] == ['HomeController']
    assert result.issues[0].severity == Severity.ERROR


class TestDiscovery:
    def test_single_file(self, tmp_path):
        path = _write(tmp_path, 'one.php', "<?php\n")
        assert discover_files(path) == [path]

    def test_non_php_file(self, tmp_path):
        path = _write(tmp_path, 'notes.txt', "hello")
        assert discover_files(path) == []

    def test_extensions_and_exclusions(self, tmp_path):
        _write(tmp_path, 'a.php', "<?php\n")
        _write(tmp_path, 'views/b.phtml', "<?php\n")
        _write(tmp_path, 'node_modules/c.php', "<?php\n")
        _write(tmp_path, 'README.md', "# readme")
        names = [p.name for p in discover_files(tmp_path)]
        assert 'a.php' in names
        assert 'c.php' not in names
        assert 'README.md' not in names


def test_wordpress_hook_callbacks_keep_functions_alive(tmp_path):
    _write(tmp_path, 'wp-config.php', "<?php\n")
    _write(tmp_path, 'wp-content/themes/acme/inc/setup.php', """<?php
add_action('after_setup_theme', 'acme_setup');

function acme_setup() {}
function acme_orphan() {}
""")
    result = ProjectAnalyzer(tmp_path).run(rules=['unused-functions'])
    assert result.active_plugins == ['wordpress']
    assert [i.symbol_name for i in result.issues] == ['acme_orphan']


def test_unused_composer_dependencies(tmp_path):
    _write(tmp_path, 'composer.json', json.dumps({
        'name': 'acme/app',
        'require': {'php': '>=8.1', 'guzzlehttp/guzzle': '^7.0', 'monolog/monolog': '^3.0'},
        'require-dev': {'phpunit/phpunit': '^10.0'},
        'autoload': {'psr-4': {'App\\': 'src/'}},
    }))
    _write(tmp_path, 'composer.lock', json.dumps({
        'packages': [
            {'name': 'guzzlehttp/guzzle', 'autoload': {'psr-4': {'GuzzleHttp\\': 'src/'}}},
            {'name': 'monolog/monolog', 'autoload': {'psr-4': {'Monolog\\': 'src/Monolog'}}},
        ],
        'packages-dev': [
            {'name': 'phpunit/phpunit', 'autoload': {'classmap': ['src/']}},
        ],
    }))
    _write(tmp_path, 'src/Http.php', """<?php
namespace App;

use GuzzleHttp\\Client;

class Http {
    public function client(): Client { return new Client(); }
}
""")
    config = Config(tmp_path)
    config.data['ignore']['dependencies'] = ['phpunit/*']
    result = ProjectAnalyzer(tmp_path, config=config).run(rules=['unused-dependencies'])
    assert [(i.symbol_name, i.severity) for i in result.issues] == [('monolog/monolog', Severity.WARNING)]
    assert result.issues[0].file == str(tmp_path.resolve() / 'composer.json')


def test_dependencies_skipped_without_lock_file(tmp_path):
    _write(tmp_path, 'composer.json', json.dumps({'require': {'monolog/monolog': '^3.0'}}))
    _write(tmp_path, 'index.php', "<?php\necho 1;\n")
    result = ProjectAnalyzer(tmp_path).run(rules=['unused-dependencies'])
    assert result.issues == []
