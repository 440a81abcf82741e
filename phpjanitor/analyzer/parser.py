"""Tree-sitter parser for PHP source files."""
from pathlib import Path
from typing import Iterator, Optional

from tree_sitter import Language, Node, Parser, Tree
import tree_sitter_php as tsphp

from phpjanitor.analyzer.encoding import normalize_to_utf8
from phpjanitor.errors import ParseError


PHP_EXTENSIONS = ('.php', '.phtml', '.inc')


def node_text(node: Optional[Node]) -> str:
    """Decode a node's source text, tolerating odd bytes."""
    if node is None or node.text is None:
        return ''
    return node.text.decode('utf-8', errors='ignore')


def node_line(node: Node) -> int:
    """1-based start line of a node."""
    return node.start_point[0] + 1


def traverse(node: Node) -> Iterator[Node]:
    """Yield every node below (and including) ``node`` in document order."""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        # Reverse so the leftmost child is visited first
        stack.extend(reversed(current.children))


def find_error(root: Node) -> Optional[Node]:
    """Return the first ERROR or MISSING node, or None for a clean tree."""
    if not root.has_error:
        return None
    for node in traverse(root):
        if node.type == 'ERROR' or node.is_missing:
            return node
    return root


class PhpParser:
    """PHP parser using tree-sitter v0.22+ API."""

    def __init__(self, php_version: str = 'auto', encoding: str = 'auto'):
        """Initialize parser.

        Args:
            php_version: Target PHP version hint ('auto', '7.4', '8.2', ...).
                The grammar accepts every PHP 7/8 construct, so the hint is
                recorded for reporting only.
            encoding: Source encoding, or 'auto' to detect per file
        """
        self.php_version = php_version
        self.encoding = encoding
        self.parser = self._create_parser()

    def _create_parser(self) -> Parser:
        """Factory method using tree-sitter v0.25+ API.

        Returns:
            Configured Parser instance
        """
        # tree-sitter-php ships two grammars: 'php' (with inline HTML) and 'php_only'
        lang = Language(tsphp.language_php())
        return Parser(lang)

    def parse_source(self, source: str | bytes) -> Tree:
        """Parse PHP source text.

        Args:
            source: Source code, already normalised to UTF-8

        Returns:
            Parsed Tree

        Raises:
            ParseError: If the tree contains syntax errors
        """
        if isinstance(source, str):
            source = source.encode('utf-8')
        tree = self.parser.parse(source)

        error_node = find_error(tree.root_node)
        if error_node is not None:
            line = node_line(error_node)
            if error_node.is_missing:
                message = f"Syntax error: missing '{error_node.type}' on line {line}"
            else:
                message = f"Syntax error on line {line}"
            raise ParseError(message, line=line)
        return tree

    def parse_file(self, file_path: str | Path) -> Tree:
        """Read, decode and parse a PHP file.

        Args:
            file_path: Path to source file to parse

        Returns:
            Parsed Tree

        Raises:
            OSError: If the file cannot be read
            EncodingError: If the bytes cannot be decoded
            ParseError: If the source has syntax errors
        """
        raw = Path(file_path).read_bytes()
        return self.parse_source(normalize_to_utf8(raw, self.encoding))

    @staticmethod
    def is_php_file(file_path: str | Path) -> bool:
        return Path(file_path).suffix.lower() in PHP_EXTENSIONS
