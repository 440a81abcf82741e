"""Removal of unused ``use`` import lines."""
import re
from typing import List, Optional

from phpjanitor.analyzer.models import Issue, short_name
from phpjanitor.reaper.fixer import Fixer, FixResult


# use Foo\Bar;  use function foo\bar;  use const FOO\BAR as BAZ;
SINGLE_USE = re.compile(
    r'^use\s+(?:function\s+|const\s+)?\\?([^\W\d][\w\\]*)(?:\s+as\s+(\w+))?\s*;\s*$'
)


def _is_blank(line: str) -> bool:
    return line.strip() == ''


class UseStatementFixer(Fixer):
    """Delete a single-import use line reported by the unused-use-statements rule."""

    name = 'use-statement'
    description = 'Removes unused use statements'
    priority = 100

    def can_fix(self, issue: Issue) -> bool:
        return issue.kind == 'unused-use-statements' and bool(issue.file) and issue.line > 0

    @staticmethod
    def matches_symbol(imported: str, alias: Optional[str], symbol: str) -> bool:
        """True if the issue's symbol names this import (alias, FQN, short name or FQN suffix)."""
        symbol = symbol.lstrip('\\')
        if alias is not None and alias == symbol:
            return True
        if imported == symbol or short_name(imported) == symbol:
            return True
        return imported.endswith('\\' + symbol)

    def fix(self, issue: Issue, text: str) -> FixResult:
        lines: List[str] = text.split('\n')
        index = issue.line - 1
        if index < 0 or index >= len(lines):
            return FixResult.failed(issue, f"Line {issue.line} does not exist")

        target = lines[index].strip()
        if not target.startswith('use ') and not target.startswith('use\t'):
            return FixResult.failed(issue, f"Line {issue.line} is not a use statement")

        match = SINGLE_USE.match(target)
        if match is None:
            # Group use, several clauses on one line, or a statement spanning lines
            return FixResult.skipped(issue, f"Line {issue.line} is not a single-import use statement")
        if not self.matches_symbol(match.group(1), match.group(2), issue.symbol_name):
            return FixResult.skipped(issue, 'Use statement does not match symbol')

        del lines[index]
        # Collapse blank runs left at the removal point; lines above stay put
        while 0 < index < len(lines) and _is_blank(lines[index]) and _is_blank(lines[index - 1]):
            del lines[index]

        return FixResult.fixed(
            issue,
            '\n'.join(lines),
            f"Removed use statement '{issue.symbol_name}' from line {issue.line}",
            removed_lines=[issue.line],
        )
