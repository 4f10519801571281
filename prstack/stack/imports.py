"""Find import references between changed files."""

import logging
import posixpath
import re
from typing import Dict, Iterable, List, Optional, Set

from ..git import show_file
from ..typing import GitInterface

logger = logging.getLogger(__name__)

JS_EXTS = (".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs", ".mts", ".cts")
JS_IMPORT_RE = re.compile(
    r'''(?:import|export)\s[^'"]*?from\s*['"]([^'"]+)['"]'''
    r'''|import\s*['"]([^'"]+)['"]'''
    r'''|(?:require|import)\s*\(\s*['"]([^'"]+)['"]\s*\)''')
PY_FROM_RE = re.compile(
    r'^[ \t]*from[ \t]+(\.*)([\w.]*)[ \t]+import[ \t]+(?:\(([^)]*)\)|([\w \t,*]+))', re.MULTILINE)
PY_IMPORT_RE = re.compile(r'^[ \t]*import[ \t]+([\w.]+(?:[ \t]*,[ \t]*[\w.]+)*)', re.MULTILINE)

# Skip very large files when scanning
MAX_SCAN_BYTES = 512 * 1024


def _js_specifiers(source: str) -> List[str]:
    specs = []
    for m in JS_IMPORT_RE.finditer(source):
        spec = m.group(1) or m.group(2) or m.group(3)
        if spec and spec.startswith("."):
            specs.append(spec)
    return specs


def resolve_js_import(importer: str, spec: str, known: Set[str]) -> Optional[str]:
    """Resolve a relative JS/TS import specifier to a known path."""
    target = posixpath.normpath(posixpath.join(posixpath.dirname(importer), spec))
    stem, ext = posixpath.splitext(target)
    candidates = [target]
    if ext in (".js", ".jsx", ".mjs", ".cjs"):
        # ESM TypeScript imports name the emitted .js file
        candidates += [stem + e for e in (".ts", ".tsx", ".mts", ".cts")]
    candidates += [target + e for e in JS_EXTS]
    candidates += [f"{target}/index{e}" for e in JS_EXTS]
    for candidate in candidates:
        if candidate in known:
            return candidate
    return None


def _python_module_index(known: Iterable[str]) -> Dict[str, str]:
    index: Dict[str, str] = {}
    for path in known:
        if not path.endswith(".py"):
            continue
        parts = path[:-len(".py")].split("/")
        if parts[-1] == "__init__":
            parts = parts[:-1]
        if parts:
            index[".".join(parts)] = path
    return index


def _resolve_py_module(module: str, index: Dict[str, str]) -> Optional[str]:
    if module in index:
        return index[module]
    suffix = "." + module
    matches = sorted(name for name in index if name.endswith(suffix))
    return index[matches[0]] if matches else None


def resolve_python_imports(importer: str, source: str, known: Set[str]) -> Set[str]:
    """Resolve absolute and relative imports of a Python file to known paths."""
    index = _python_module_index(known)
    package = posixpath.dirname(importer).split("/") if posixpath.dirname(importer) else []
    found: Set[str] = set()

    def add(module: str) -> bool:
        path = _resolve_py_module(module, index) if module else None
        if path and path != importer:
            found.add(path)
            return True
        return False

    for m in PY_FROM_RE.finditer(source):
        dots, module = m.group(1), m.group(2)
        names = m.group(3) or m.group(4) or ""
        if dots:
            up = len(dots) - 1
            if up > len(package):
                continue
            base = package[:len(package) - up] if up else package
            module = ".".join(base + ([module] if module else []))
        for name in (n.strip() for n in names.split(",")):
            if not name:
                continue
            if name != "*" and add(f"{module}.{name.split()[0]}" if module else name.split()[0]):
                continue
            add(module)

    for m in PY_IMPORT_RE.finditer(source):
        for module in (part.strip().split()[0] for part in m.group(1).split(",")):
            add(module)
    return found


def collect_file_imports(git_cmd: GitInterface, head_sha: str, paths: Iterable[str]) -> Dict[str, Set[str]]:
    """Map each changed file at head to the changed files it imports."""
    known = set(paths)
    imports: Dict[str, Set[str]] = {}
    for path in sorted(known):
        is_js = path.endswith(JS_EXTS)
        is_py = path.endswith(".py")
        if not (is_js or is_py):
            continue
        source = show_file(git_cmd, head_sha, path)
        if not source or len(source) > MAX_SCAN_BYTES:
            continue
        if is_js:
            targets = {t for t in (resolve_js_import(path, s, known) for s in _js_specifiers(source)) if t}
        else:
            targets = resolve_python_imports(path, source, known)
        targets.discard(path)
        if targets:
            imports[path] = targets
    logger.debug(f"Import scan found references in {len(imports)} files")
    return imports
