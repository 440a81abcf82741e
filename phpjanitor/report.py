"""Rendering of analysis results: rich tables, plus machine-readable formats
(JSON, GitHub annotations, CSV, XML, JUnit XML and HTML).
"""
import csv
import html
import io
import json
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Iterable, List, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from phpjanitor.analyzer.models import Issue, Severity
from phpjanitor.analyzer.project import AnalysisResult
from phpjanitor.config import __version__


SEVERITY_STYLES = {
    Severity.ERROR: 'bold red',
    Severity.WARNING: 'yellow',
    Severity.INFO: 'dim',
}

GITHUB_LEVELS = {
    Severity.ERROR: 'error',
    Severity.WARNING: 'warning',
    Severity.INFO: 'notice',
}


def filter_issues(issues: Iterable[Issue],
                  min_severity: Optional[Severity] = None,
                  only: Iterable[str] = (),
                  exclude: Iterable[str] = ()) -> List[Issue]:
    """Keep issues at or above a severity, restricted to / excluding rule names."""
    only, exclude = set(only), set(exclude)
    kept = []
    for issue in issues:
        if min_severity is not None and issue.severity.rank < min_severity.rank:
            continue
        if only and issue.kind not in only:
            continue
        if issue.kind in exclude:
            continue
        kept.append(issue)
    return kept


def _display_path(file_path: str, root: Optional[Path]) -> str:
    if root is None:
        return file_path
    try:
        return Path(file_path).relative_to(root).as_posix()
    except ValueError:
        return file_path


def render_text(result: AnalysisResult, console: Console, verbose: bool = False):
    """Print issues as one rich table per rule, then a summary."""
    root = result.project_root
    by_rule = {}
    for issue in result.issues:
        by_rule.setdefault(issue.kind, []).append(issue)

    for rule in sorted(by_rule):
        table = Table(title=f"{rule} ({len(by_rule[rule])})", title_justify='left')
        table.add_column("Severity")
        table.add_column("Symbol", style="cyan")
        table.add_column("File", style="magenta", no_wrap=False)
        table.add_column("Line", style="green", justify="right")
        for issue in by_rule[rule]:
            style = SEVERITY_STYLES[issue.severity]
            table.add_row(
                f"[{style}]{issue.severity.value}[/{style}]",
                escape(issue.symbol_name),
                escape(_display_path(issue.file, root)),
                str(issue.line) if issue.line else '',
            )
        console.print(table)

    if result.failures:
        console.print(f"[bold yellow]Skipped {len(result.failures)} file(s) that could not be analysed[/bold yellow]")
        if verbose:
            for failure in result.failures:
                location = f":{failure.line}" if failure.line else ''
                console.print(f"  [dim]{failure.kind}[/dim] {escape(_display_path(failure.file, root))}{location}"
                              f" - {escape(failure.message)}")

    summary = result.summary
    console.print("\n[bold yellow]Summary:[/bold yellow]")
    console.print(f"  Files analysed: {summary['files_analyzed']}")
    console.print(f"  Symbols: {summary['symbols']}")
    if result.active_plugins:
        console.print(f"  Frameworks: {', '.join(result.active_plugins)}")
    if result.issues:
        counts = ', '.join(f"{n} {level}" for level, n in sorted(summary['by_severity'].items()))
        console.print(f"  Issues: {summary['issues']} ({counts})")
    else:
        console.print("[bold green]No dead code found![/bold green]")


def render_json(result: AnalysisResult) -> str:
    payload = {
        'version': __version__,
        'summary': result.summary,
        'issues': [issue.to_dict() for issue in result.issues],
        'failures': [
            {'kind': f.kind, 'file': f.file, 'line': f.line, 'message': f.message}
            for f in result.failures
        ],
    }
    return json.dumps(payload, indent=2, ensure_ascii=False)


def _escape_github(value: str) -> str:
    return value.replace('%', '%25').replace('\r', '%0D').replace('\n', '%0A')


def render_github(result: AnalysisResult) -> str:
    """GitHub Actions workflow commands, one annotation per issue."""
    lines = []
    for issue in result.issues:
        path = _display_path(issue.file, result.project_root)
        properties = f"file={path}"
        if issue.line:
            properties += f",line={issue.line}"
        properties += f",title={issue.kind}"
        lines.append(f"::{GITHUB_LEVELS[issue.severity]} {properties}::{_escape_github(issue.message)}")
    return '\n'.join(lines)


CSV_COLUMNS = ('kind', 'severity', 'file', 'line', 'symbol', 'symbol_kind', 'message')


def render_csv(result: AnalysisResult) -> str:
    """One row per issue under a header row; paths relative to the project root."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator='\n')
    writer.writerow(CSV_COLUMNS)
    for issue in result.issues:
        writer.writerow([
            issue.kind,
            issue.severity.value,
            _display_path(issue.file, result.project_root),
            issue.line or '',
            issue.symbol_name,
            issue.symbol_kind or '',
            issue.message,
        ])
    return buffer.getvalue()


def _xml_string(root: ET.Element) -> str:
    ET.indent(root)
    return '<?xml version="1.0" encoding="UTF-8"?>\n' + ET.tostring(root, encoding='unicode')


def render_xml(result: AnalysisResult) -> str:
    """Summary counts, then issues grouped by file."""
    summary = result.summary
    root = ET.Element('php-janitor', version=__version__)

    summary_element = ET.SubElement(root, 'summary')
    for key in ('files_analyzed', 'symbols', 'issues', 'failures'):
        ET.SubElement(summary_element, key.replace('_', '-')).text = str(summary[key])
    by_severity = ET.SubElement(summary_element, 'by-severity')
    for level, count in sorted(summary['by_severity'].items()):
        ET.SubElement(by_severity, level).text = str(count)
    by_rule = ET.SubElement(summary_element, 'by-rule')
    for rule, count in sorted(summary['by_rule'].items()):
        ET.SubElement(by_rule, 'rule', name=rule, count=str(count))

    issues_element = ET.SubElement(root, 'issues')
    by_file = {}
    for issue in result.issues:
        by_file.setdefault(_display_path(issue.file, result.project_root), []).append(issue)
    for path in sorted(by_file):
        file_element = ET.SubElement(issues_element, 'file', path=path)
        for issue in by_file[path]:
            element = ET.SubElement(file_element, 'issue', kind=issue.kind, severity=issue.severity.value,
                                    line=str(issue.line))
            ET.SubElement(element, 'symbol', name=issue.symbol_name, kind=issue.symbol_kind or '')
            ET.SubElement(element, 'message').text = issue.message

    failures_element = ET.SubElement(root, 'failures')
    for failure in result.failures:
        ET.SubElement(failures_element, 'failure', kind=failure.kind,
                      file=_display_path(failure.file, result.project_root),
                      line=str(failure.line)).text = failure.message
    return _xml_string(root)


def render_junit(result: AnalysisResult) -> str:
    """JUnit XML for CI dashboards: one testsuite per rule, one failing testcase per issue.

    Error-severity issues are reported as ``<error>``, the rest as ``<failure>``.
    """
    by_rule = {}
    for issue in result.issues:
        by_rule.setdefault(issue.kind, []).append(issue)

    errors = sum(1 for i in result.issues if i.severity == Severity.ERROR)
    root = ET.Element('testsuites', name='php-janitor', tests=str(len(result.issues)),
                      failures=str(len(result.issues) - errors), errors=str(errors), time='0')
    for rule in sorted(by_rule):
        issues = by_rule[rule]
        suite_errors = sum(1 for i in issues if i.severity == Severity.ERROR)
        suite = ET.SubElement(root, 'testsuite', name=rule, tests=str(len(issues)),
                              failures=str(len(issues) - suite_errors), errors=str(suite_errors), time='0')
        for issue in issues:
            path = _display_path(issue.file, result.project_root)
            case = ET.SubElement(suite, 'testcase', name=issue.symbol_name, classname=path, time='0')
            if issue.line:
                case.set('line', str(issue.line))
            tag = 'error' if issue.severity == Severity.ERROR else 'failure'
            outcome = ET.SubElement(case, tag, type=rule, message=issue.message)
            outcome.text = f"{path}:{issue.line}" if issue.line else path
    return _xml_string(root)


HTML_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>PHP Janitor report</title>
<style>
body {{ font-family: sans-serif; margin: 2em; }}
table {{ border-collapse: collapse; width: 100%; margin-bottom: 2em; }}
th, td {{ border: 1px solid #ccc; padding: 4px 8px; text-align: left; }}
th {{ background: #f4f4f4; }}
.error {{ color: #b00020; font-weight: bold; }}
.warning {{ color: #b26a00; }}
.info {{ color: #666; }}
</style>
</head>
<body>
<h1>PHP Janitor report</h1>
<p>{summary}</p>
{sections}
</body>
</html>
"""


def render_html(result: AnalysisResult) -> str:
    """Self-contained HTML page: a summary line and one table per rule."""
    summary = result.summary
    by_rule = {}
    for issue in result.issues:
        by_rule.setdefault(issue.kind, []).append(issue)

    sections = []
    for rule in sorted(by_rule):
        rows = []
        for issue in by_rule[rule]:
            level = issue.severity.value
            rows.append(
                f'<tr><td class="{level}">{level}</td>'
                f'<td>{html.escape(issue.symbol_name)}</td>'
                f'<td>{html.escape(_display_path(issue.file, result.project_root))}</td>'
                f'<td>{issue.line or ""}</td>'
                f'<td>{html.escape(issue.message)}</td></tr>'
            )
        sections.append(
            f'<h2>{html.escape(rule)} ({len(rows)})</h2>\n<table>\n'
            '<tr><th>Severity</th><th>Symbol</th><th>File</th><th>Line</th><th>Message</th></tr>\n'
            + '\n'.join(rows) + '\n</table>'
        )
    if not sections:
        sections.append('<p>No dead code found!</p>')

    line = f"{summary['files_analyzed']} file(s) analysed, {summary['symbols']} symbol(s), {summary['issues']} issue(s)"
    if result.active_plugins:
        line += f" - frameworks: {', '.join(result.active_plugins)}"
    return HTML_TEMPLATE.format(summary=html.escape(line), sections='\n'.join(sections))


RENDERERS = {
    'json': render_json,
    'github': render_github,
    'csv': render_csv,
    'xml': render_xml,
    'junit': render_junit,
    'html': render_html,
}
