"""Shared fixtures: build analysis inputs straight from inline PHP sources."""
from typing import Dict

import pytest

from phpjanitor.analyzer.context import AnalysisContext
from phpjanitor.analyzer.extractor import collect_symbols
from phpjanitor.analyzer.parser import PhpParser
from phpjanitor.analyzer.reference_tracker import collect_references
from phpjanitor.analyzer.symbol_table import SymbolTable


def build_context(sources: Dict[str, str], **kwargs) -> AnalysisContext:
    """Parse each (path, code) pair and merge the results into one context."""
    parser = PhpParser()
    table = SymbolTable()
    references = []
    use_statements = {}
    for path, code in sources.items():
        tree = parser.parse_source(code)
        table.add_all(collect_symbols(tree, path))
        found = collect_references(tree, path)
        references.extend(found.references)
        use_statements[path] = found.use_statements
    return AnalysisContext(table, references, use_statements, **kwargs)


@pytest.fixture(scope="session")
def php_parser():
    return PhpParser()


@pytest.fixture
def make_context():
    return build_context


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep PHPJANITOR_* variables from the developer's shell out of the tests."""
    for name in ("PHPJANITOR_CACHE_DIR", "PHPJANITOR_NO_CACHE", "PHPJANITOR_PARALLEL", "PHPJANITOR_FORMAT"):
        # setenv first so teardown also removes values a test's .env file loaded
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
