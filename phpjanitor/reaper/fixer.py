"""Fixer engine: turns detected issues into source edits.

Edits are made against an in-memory copy of each file. Issues of one file
are applied bottom-up (descending line) so earlier edits never shift the
lines later ones point at. Nothing touches the disk until apply_fixes()
is called on a manager created with dry_run=False.
"""
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Tuple

from phpjanitor.analyzer.encoding import detect_encoding
from phpjanitor.analyzer.models import Issue


logger = logging.getLogger(__name__)


class FixStatus(str, Enum):
    FIXED = 'fixed'
    FAILED = 'failed'
    SKIPPED = 'skipped'


@dataclass
class FixResult:
    """Outcome of one fix attempt."""
    status: FixStatus
    issue: Issue
    message: str = ''
    new_text: Optional[str] = None
    removed_lines: List[int] = field(default_factory=list)
    modified_lines: List[int] = field(default_factory=list)

    @classmethod
    def fixed(cls, issue: Issue, new_text: str, message: str, removed_lines: Iterable[int] = ()) -> 'FixResult':
        return cls(FixStatus.FIXED, issue, message, new_text, list(removed_lines))

    @classmethod
    def failed(cls, issue: Issue, message: str) -> 'FixResult':
        return cls(FixStatus.FAILED, issue, message)

    @classmethod
    def skipped(cls, issue: Issue, message: str) -> 'FixResult':
        return cls(FixStatus.SKIPPED, issue, message)

    @property
    def is_success(self) -> bool:
        return self.status == FixStatus.FIXED

    @property
    def has_modification(self) -> bool:
        return self.is_success and self.new_text is not None


class Fixer:
    """Base class for fixers: one fixer handles one or more issue kinds."""

    name = 'fixer'
    description = ''
    priority = 0

    def can_fix(self, issue: Issue) -> bool:
        return False

    def fix(self, issue: Issue, text: str) -> FixResult:
        raise NotImplementedError


@dataclass
class _SourceFile:
    text: str
    codec: str
    modified: bool = False


class FixerManager:
    """Dispatches issues to fixers and tracks the edited file contents."""

    def __init__(self, dry_run: bool = True):
        self.dry_run = dry_run
        self._fixers: Dict[str, Fixer] = {}
        self._files: Dict[str, _SourceFile] = {}
        self._file_locks: Dict[str, threading.Lock] = {}
        self._written: Set[str] = set()
        self._lock = threading.Lock()
        self.results: List[FixResult] = []

    def register_fixer(self, fixer: Fixer) -> 'FixerManager':
        self._fixers[fixer.name] = fixer
        return self

    def register_builtin_fixers(self) -> 'FixerManager':
        from phpjanitor.reaper.use_statement_fixer import UseStatementFixer
        return self.register_fixer(UseStatementFixer())

    @property
    def fixers(self) -> List[Fixer]:
        """Registered fixers, highest priority first."""
        return sorted(self._fixers.values(), key=lambda f: -f.priority)

    def find_fixer(self, issue: Issue) -> Optional[Fixer]:
        for fixer in self.fixers:
            if fixer.can_fix(issue):
                return fixer
        return None

    def _file_lock(self, file_path: str) -> threading.Lock:
        with self._lock:
            return self._file_locks.setdefault(file_path, threading.Lock())

    def _load(self, file_path: str) -> Optional[_SourceFile]:
        source = self._files.get(file_path)
        if source is not None:
            return source
        try:
            raw = Path(file_path).read_bytes()
        except OSError as e:
            logger.debug("Cannot read %s: %s", file_path, e)
            return None
        codec = detect_encoding(raw) or 'latin-1'
        try:
            text = raw.decode(codec)
        except UnicodeDecodeError:
            return None
        source = _SourceFile(text, codec)
        self._files[file_path] = source
        return source

    def fix_issue(self, issue: Issue) -> FixResult:
        """Apply the best fixer to one issue against the in-memory file text."""
        fixer = self.find_fixer(issue) if issue.file else None
        if not issue.file:
            result = FixResult.failed(issue, 'Issue has no file path')
        elif fixer is None:
            result = FixResult.skipped(issue, 'No fixer available for this issue type')
        else:
            with self._file_lock(issue.file):
                source = self._load(issue.file)
                if source is None:
                    result = FixResult.failed(issue, f"Could not read file: {issue.file}")
                else:
                    result = fixer.fix(issue, source.text)
                    if result.has_modification:
                        source.text = result.new_text
                        source.modified = True

        with self._lock:
            self.results.append(result)
        return result

    def fix_issues(self, issues: Iterable[Issue]) -> List[FixResult]:
        """Fix a batch of issues, grouped by file and applied bottom-up.

        Returns:
            The results of this batch, in application order
        """
        by_file: Dict[str, List[Issue]] = {}
        results = []
        for issue in issues:
            if not issue.file:
                results.append(self.fix_issue(issue))
                continue
            by_file.setdefault(issue.file, []).append(issue)

        for file_path in sorted(by_file):
            # Descending line so earlier removals don't shift later targets
            ordered = sorted(by_file[file_path], key=lambda i: (-i.line, i.kind, i.symbol_name))
            for issue in ordered:
                results.append(self.fix_issue(issue))
        return results

    def modified_text(self, file_path: str) -> Optional[str]:
        source = self._files.get(file_path)
        return source.text if source is not None and source.modified else None

    @property
    def modified_files(self) -> List[str]:
        return sorted(f for f, source in self._files.items() if source.modified)

    def apply_fixes(self) -> Dict[str, Tuple[bool, str]]:
        """Write modified files back in their original encoding. No-op in dry-run mode."""
        if self.dry_run:
            return {}
        written = {}
        for file_path in self.modified_files:
            source = self._files[file_path]
            try:
                Path(file_path).write_bytes(source.text.encode(source.codec))
            except (OSError, UnicodeEncodeError) as e:
                logger.error("Could not write %s: %s", file_path, e)
                written[file_path] = (False, str(e))
                continue
            self._written.add(file_path)
            written[file_path] = (True, 'written')
        return written

    def fixed_issues(self) -> List[Issue]:
        """Issues whose fix reached the disk (empty in dry-run mode or before apply_fixes)."""
        if self.dry_run:
            return []
        return [r.issue for r in self.results if r.is_success and r.issue.file in self._written]

    def summary(self) -> Dict[str, int]:
        counts = {status: 0 for status in FixStatus}
        for result in self.results:
            counts[result.status] += 1
        return {
            'total': len(self.results),
            'successful': counts[FixStatus.FIXED],
            'failed': counts[FixStatus.FAILED],
            'skipped': counts[FixStatus.SKIPPED],
            'files_modified': len(self.modified_files),
        }

    def clear(self):
        self.results = []
        self._files = {}
        self._written = set()
