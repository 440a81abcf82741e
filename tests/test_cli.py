"""Tests for the php-janitor command line."""
import json

import pytest
from typer.testing import CliRunner

from phpjanitor.config import __version__
from phpjanitor.main import app

runner = CliRunner()

INDEX = """<?php

use App\\Models\\User;
use App\\Models\\Post;

$user = new User();
"""


@pytest.fixture
def project(tmp_path):
    models = tmp_path / 'src' / 'Models'
    models.mkdir(parents=True)
    (models / 'User.php').write_text("<?php\nnamespace App\\Models;\n\nclass User {}\n", encoding='utf-8')
    (models / 'Orphan.php').write_text("<?php\nnamespace App\\Models;\n\nclass Orphan {}\n", encoding='utf-8')
    (tmp_path / 'index.php').write_text(INDEX, encoding='utf-8')
    return tmp_path


def test_version():
    result = runner.invoke(app, ['version'])
    assert result.exit_code == 0
    assert result.stdout.strip() == f'php-janitor {__version__}'


def test_json_to_stdout(project):
    result = runner.invoke(app, ['analyze', str(project), '--format', 'json', '--no-cache'])
    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    symbols = {(i['kind'], i['symbol']) for i in payload['issues']}
    assert ('unused-classes', 'App\\Models\\Orphan') in symbols
    assert ('unused-use-statements', 'App\\Models\\Post') in symbols
    assert payload['summary']['files_analyzed'] == 3


def test_report_written_to_file(project, tmp_path):
    report = tmp_path / 'report.json'
    result = runner.invoke(app, ['analyze', str(project), '-o', str(report), '--only', 'unused-classes'])
    assert result.exit_code == 0
    payload = json.loads(report.read_text(encoding='utf-8'))
    assert [i['symbol'] for i in payload['issues']] == ['App\\Models\\Orphan']


def test_text_output(project):
    result = runner.invoke(app, ['analyze', str(project), '--no-cache'])
    assert result.exit_code == 0
    assert 'Orphan' in result.stdout


def test_github_output(project):
    result = runner.invoke(app, ['analyze', str(project), '-f', 'github', '--min-severity', 'error'])
    assert result.exit_code == 0
    lines = [line for line in result.stdout.splitlines() if line.startswith('::')]
    assert lines
    assert all(line.startswith('::error ') for line in lines)


def test_csv_output(project):
    result = runner.invoke(app, ['analyze', str(project), '-f', 'csv', '--no-cache', '--only', 'unused-classes'])
    assert result.exit_code == 0
    lines = result.stdout.splitlines()
    assert lines[0] == 'kind,severity,file,line,symbol,symbol_kind,message'
    assert lines[1].startswith('unused-classes,error,src/Models/Orphan.php,4,')


def test_junit_report_file(project, tmp_path):
    report = tmp_path / 'junit.xml'
    result = runner.invoke(app, ['analyze', str(project), '-f', 'junit', '-o', str(report), '--no-cache'])
    assert result.exit_code == 0
    text = report.read_text(encoding='utf-8')
    assert text.startswith('<?xml')
    assert '<testsuite name="unused-classes"' in text


def test_strict_fails_on_errors(project):
    result = runner.invoke(app, ['analyze', str(project), '--strict', '-f', 'json'])
    assert result.exit_code == 1


def test_strict_passes_when_errors_excluded(project):
    result = runner.invoke(app, ['analyze', str(project), '--strict', '-f', 'json',
                                 '--exclude', 'unused-classes,unused-files'])
    assert result.exit_code == 0


def test_unknown_rule(project):
    result = runner.invoke(app, ['analyze', str(project), '--only', 'unused-everything'])
    assert result.exit_code == 2
    assert 'unused-everything' in result.output


def test_unknown_excluded_rule(project):
    result = runner.invoke(app, ['analyze', str(project), '--exclude', 'unused-classes,bogus'])
    assert result.exit_code == 2
    assert 'bogus' in result.output


def test_missing_path(tmp_path):
    result = runner.invoke(app, ['analyze', str(tmp_path / 'nowhere')])
    assert result.exit_code == 1


def test_no_php_files(tmp_path):
    (tmp_path / 'README.md').write_text('# nothing here', encoding='utf-8')
    result = runner.invoke(app, ['analyze', str(tmp_path)])
    assert result.exit_code == 1


def test_invalid_config(project):
    (project / 'php-janitor.json').write_text('{ broken', encoding='utf-8')
    result = runner.invoke(app, ['analyze', str(project)])
    assert result.exit_code == 1


def test_fix_removes_unused_import(project):
    result = runner.invoke(app, ['analyze', str(project), '--fix', '-f', 'json', '--no-cache'])
    assert result.exit_code == 0
    text = (project / 'index.php').read_text(encoding='utf-8')
    assert 'use App\\Models\\Post;' not in text
    assert 'use App\\Models\\User;' in text


def test_fixed_issue_dropped_from_report(project, tmp_path):
    report = tmp_path / 'report.json'
    result = runner.invoke(app, ['analyze', str(project), '--fix', '--no-cache', '-o', str(report)])
    assert result.exit_code == 0
    payload = json.loads(report.read_text(encoding='utf-8'))
    assert 'unused-use-statements' not in {i['kind'] for i in payload['issues']}


def test_dry_run_leaves_files_alone(project):
    result = runner.invoke(app, ['analyze', str(project), '--fix', '--dry-run', '--no-cache'])
    assert result.exit_code == 0
    assert (project / 'index.php').read_text(encoding='utf-8') == INDEX


def test_cache_commands(project):
    assert runner.invoke(app, ['analyze', str(project), '-f', 'json']).exit_code == 0
    cache_dir = project / '.phpjanitor-cache'
    assert list(cache_dir.glob('*.json'))

    stats = runner.invoke(app, ['cache', 'stats', str(project)])
    assert stats.exit_code == 0
    assert 'Files Cached' in stats.stdout

    cleared = runner.invoke(app, ['cache', 'clear', str(project)])
    assert cleared.exit_code == 0
    assert list(cache_dir.glob('*.json')) == []
