"""Composer dependency data for the unused-dependencies rule.

composer.json says which packages the project requires; composer.lock says
which namespaces each installed package autoloads. Together they map a
class or function name seen in the source back to the package providing it.
"""
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from phpjanitor.analyzer.plugins import load_composer


logger = logging.getLogger(__name__)

PROJECT_PACKAGE = '(project)'

# Installed only for their composer plugin or metadata, never referenced from code
CONFIGURATION_PACKAGES = frozenset({
    'roave/security-advisories',
    'composer/installers',
    'symfony/flex',
    'dealerdirect/phpcodesniffer-composer-installer',
})


@dataclass(frozen=True)
class DeclaredPackage:
    name: str
    is_dev: bool = False


def is_platform_package(name: str) -> bool:
    """``php``, ``ext-*`` and ``lib-*`` requirements describe the runtime, not a package."""
    name = name.lower()
    return name == 'php' or name.startswith(('ext-', 'lib-'))


def declared_packages(composer: Dict) -> List[DeclaredPackage]:
    """Packages from ``require`` then ``require-dev``, minus platform and configuration packages."""
    packages: Dict[str, DeclaredPackage] = {}
    for section, is_dev in (('require', False), ('require-dev', True)):
        value = composer.get(section)
        if not isinstance(value, dict):
            continue
        for name in value:
            lowered = name.lower()
            if is_platform_package(lowered) or lowered in CONFIGURATION_PACKAGES:
                continue
            packages.setdefault(lowered, DeclaredPackage(lowered, is_dev))
    return list(packages.values())


def load_composer_lock(project_root: str | Path) -> Dict:
    """Read composer.lock from the project root; {} when absent or unreadable."""
    path = Path(project_root) / "composer.lock"
    if not path.is_file():
        return {}
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Ignoring unreadable composer.lock: %s", e)
        return {}
    return data if isinstance(data, dict) else {}


def _autoload_prefixes(autoload) -> List[str]:
    if not isinstance(autoload, dict):
        return []
    prefixes = []
    for standard in ('psr-4', 'psr-0'):
        mapping = autoload.get(standard)
        if isinstance(mapping, dict):
            prefixes.extend(p.rstrip('\\') for p in mapping if isinstance(p, str))
    return [p for p in prefixes if p]


class NamespaceMap:
    """Namespace prefix -> package name, longest prefix first."""

    def __init__(self, entries: Iterable[Tuple[str, str]] = ()):
        self._map: Dict[str, str] = {}
        for prefix, package in entries:
            self._map[prefix.strip('\\').lower()] = package.lower()
        self._prefixes = sorted(self._map, key=len, reverse=True)

    @classmethod
    def build(cls, composer: Dict, lock: Dict) -> 'NamespaceMap':
        """Prefixes of every locked package plus the project's own autoload prefixes."""
        entries: List[Tuple[str, str]] = []
        for section in ('packages', 'packages-dev'):
            for package in lock.get(section) or []:
                if not isinstance(package, dict) or not isinstance(package.get('name'), str):
                    continue
                entries.extend((p, package['name']) for p in _autoload_prefixes(package.get('autoload')))
        project = composer.get('name') if isinstance(composer.get('name'), str) else PROJECT_PACKAGE
        entries.extend((p, project) for p in _autoload_prefixes(composer.get('autoload')))
        return cls(entries)

    def __len__(self) -> int:
        return len(self._map)

    def _lookup(self, namespace: str) -> Optional[str]:
        for prefix in self._prefixes:
            if namespace == prefix or namespace.startswith(prefix + '\\'):
                return self._map[prefix]
        return None

    def resolve_class(self, name: str) -> Optional[str]:
        return self._lookup(name.lstrip('\\').lower())

    def resolve_function(self, name: str) -> Optional[str]:
        """Functions resolve through their namespace; global functions belong to no package."""
        name = name.lstrip('\\').lower()
        if '\\' not in name:
            return None
        return self._lookup(name.rsplit('\\', 1)[0])


@dataclass
class ComposerDependencies:
    """What the project declares and how to attribute names to packages."""
    composer_file: str
    packages: List[DeclaredPackage] = field(default_factory=list)
    namespace_map: NamespaceMap = field(default_factory=NamespaceMap)

    @classmethod
    def load(cls, project_root: str | Path, composer: Optional[Dict] = None) -> Optional['ComposerDependencies']:
        """Dependency data for a project, or None without both composer.json and composer.lock.

        Without a lock file there is no way to tell which namespaces a
        package provides, so nothing could ever count as used.
        """
        root = Path(project_root)
        composer = load_composer(root) if composer is None else composer
        if not composer:
            return None
        lock = load_composer_lock(root)
        if not lock:
            logger.info("No composer.lock in %s; skipping dependency analysis", root)
            return None
        namespace_map = NamespaceMap.build(composer, lock)
        logger.debug("Namespace map: %d prefix(es)", len(namespace_map))
        return cls(str(root / "composer.json"), declared_packages(composer), namespace_map)
