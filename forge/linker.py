"""
Source-to-source linker for the live preview.

There is no bundler in the sandbox, so every selected file is rewritten into
plain declarations (imports stripped, exports unwrapped) and concatenated into
one Babel-transformed script behind the runtime shim. Cross-file order comes
from a reference graph over exported names; the entry file always goes last.
"""
import heapq, logging, re
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import PurePosixPath

from forge.runtime import STANDARD_LIBRARY, RuntimeLibrary

log = logging.getLogger("linker")

ENTRY_PATH        = "src/App.jsx"
COMPONENTS_DIR    = "src/components/"
STYLESHEET_PATH   = "src/index.css"
SOURCE_EXTENSIONS = (".jsx", ".js")

REACT_URL     = "https://unpkg.com/react@18/umd/react.development.js"
REACT_DOM_URL = "https://unpkg.com/react-dom@18/umd/react-dom.development.js"
BABEL_URL     = "https://unpkg.com/@babel/standalone/babel.min.js"
TAILWIND_URL  = "https://cdn.tailwindcss.com"
FONTS_URL     = "https://fonts.googleapis.com/css2?family=Inter:wght@400;500;600;700&display=swap"

_IDENT = r"[A-Za-z_$][\w$]*"
_FROM  = r"""\s*from\s*['"][^'"]*['"]"""
_EOL   = r"[ \t]*;?[ \t]*$\n?"

# ── Import stripping ──────────────────────────────────────────────────────────

IMPORT_PATTERNS = (
    # import { a, b } from 'x' / import React, { useState } from 'react' (may span lines)
    re.compile(rf"^[ \t]*import\s*(?:type\s+)?(?:{_IDENT}\s*,\s*)?\{{[^}}]*\}}{_FROM}{_EOL}", re.M),
    # import * as ns from 'x'
    re.compile(rf"^[ \t]*import\s+(?:{_IDENT}\s*,\s*)?\*\s*as\s+{_IDENT}{_FROM}{_EOL}", re.M),
    # import X from 'x'
    re.compile(rf"^[ \t]*import\s+{_IDENT}\s+from\s*['\"][^'\"]*['\"]{_EOL}", re.M),
    # import './index.css'
    re.compile(rf"^[ \t]*import\s*['\"][^'\"]*['\"]{_EOL}", re.M),
)


def strip_imports(code: str) -> str:
    for pat in IMPORT_PATTERNS:
        code = pat.sub("", code)
    return re.sub(r"^\s*[\r\n]", "\n", code, flags=re.M)


# ── Export rewriting ──────────────────────────────────────────────────────────

_DECLARED_AT_TOP = re.compile(rf"^(?:async\s+)?(?:function\*?\s+|class\s+|(?:const|let|var)\s+)({_IDENT})", re.M)

_EXPORT_DECL       = re.compile(rf"^[ \t]*export\s+(?:default\s+)?(?:async\s+)?(?:function\*?|class|const|let|var)\s+({_IDENT})", re.M)
_EXPORT_DEFAULT_ID = re.compile(rf"^[ \t]*export\s+default\s+({_IDENT})[ \t]*;?[ \t]*$", re.M)
_EXPORT_LIST       = re.compile(r"^[ \t]*export\s*\{([^}]*)\}", re.M)
_EXPORT_ANONYMOUS  = re.compile(r"^[ \t]*export\s+default\s+(?!(?:async\s+)?function\s+[\w$]|class\s+[\w$])", re.M)


def component_name(path: str) -> str:
    stem = re.sub(r"[^\w$]", "", PurePosixPath(path).stem)
    if not stem or stem[0].isdigit():
        stem = f"Component{stem}"
    return stem


def rewrite_exports(code: str, name: str = "App") -> str:
    code = re.sub(rf"\bexport\s+default\s+(async\s+)?function\s+({_IDENT})", r"\1function \2", code)
    code = re.sub(rf"\bexport\s+default\s+class\s+({_IDENT})", r"class \1", code)
    code = re.sub(r"^([ \t]*)export\s+default\s+(async\s+)?function\s*\(", rf"\1\2function {name}(", code, flags=re.M)
    code = re.sub(r"^([ \t]*)export\s+default\s+class\s*\{", rf"\1class {name} {{", code, flags=re.M)
    # export default App  →  (removed, App is already declared)
    code = re.sub(rf"^[ \t]*export\s+default\s+{_IDENT}{_EOL}", "", code, flags=re.M)
    # export { a, b } / export { a } from './x' / export * from './x'  →  (removed)
    code = re.sub(rf"^[ \t]*export\s*\{{[^}}]*\}}(?:{_FROM})?{_EOL}", "", code, flags=re.M)
    code = re.sub(rf"^[ \t]*export\s*\*\s*(?:as\s+{_IDENT}\s*)?{_FROM}{_EOL}", "", code, flags=re.M)
    # export const X / export function X / export class X  →  plain declarations
    code = re.sub(r"^([ \t]*)export\s+(?=(?:const|let|var|function|async\s+function|class)\b)", r"\1", code, flags=re.M)
    # export default <expression>  →  bind it to the component name
    if re.search(r"^[ \t]*export\s+default\s+", code, re.M):
        declared = set(_DECLARED_AT_TOP.findall(code))
        binding = "" if name in declared else f"const {name} = "
        code = re.sub(r"^([ \t]*)export\s+default\s+", rf"\1{binding}", code, flags=re.M)
    return code


def exported_names(code: str, name: str = "App") -> set[str]:
    """Names a file makes available to the shared scope once linked."""
    names = set(_EXPORT_DECL.findall(code)) | set(_EXPORT_DEFAULT_ID.findall(code))
    for group in _EXPORT_LIST.findall(code):
        for item in group.split(","):
            local = item.strip().split(" as ")[0].strip()
            if re.fullmatch(_IDENT, local):
                names.add(local)
    if _EXPORT_ANONYMOUS.search(code) and not _EXPORT_DEFAULT_ID.search(code):
        names.add(name)
    return names


def entry_component(code: str, fallback: str = "App") -> str:
    for pat in (
        rf"\bexport\s+default\s+(?:async\s+)?function\s+({_IDENT})",
        rf"\bexport\s+default\s+class\s+({_IDENT})",
        _EXPORT_DEFAULT_ID.pattern,
    ):
        m = re.search(pat, code, re.M)
        if m:
            return m.group(1)
    return fallback


# ── Stylesheet cleaning ───────────────────────────────────────────────────────

def _strip_blocks(css: str, opener: re.Pattern) -> str:
    """Remove every `<at-rule> { ... }` block, honouring nested braces."""
    out, pos = [], 0
    while True:
        m = opener.search(css, pos)
        if not m:
            out.append(css[pos:])
            return "".join(out)
        out.append(css[pos:m.start()])
        depth, i = 0, m.end() - 1
        while i < len(css):
            if css[i] == "{": depth += 1
            elif css[i] == "}":
                depth -= 1
                if depth == 0: break
            i += 1
        pos = i + 1


def clean_stylesheet(css: str) -> str:
    css = _strip_blocks(css, re.compile(r"@layer\s+[\w-]+\s*\{"))
    css = re.sub(r"@layer[^;{]*;", "", css)
    css = re.sub(r"@tailwind[^;]+;", "", css)
    css = re.sub(r"@import[^;]+;", "", css)
    css = re.sub(r"@apply[^;]+;", "", css)
    return css


# ── Reference scanning ────────────────────────────────────────────────────────

_JSX_PREFIX = set("(,=?:&|[{};>")
_TAG_NAME   = re.compile(r"[\w.$:-]*")


def _skip_quoted(code: str, i: int) -> int:
    quote, i = code[i], i + 1
    while i < len(code) and code[i] != quote:
        if code[i] == "\\":
            i += 1
        elif code[i] == "\n" and quote != "`":
            break
        i += 1
    return i + 1


def _starts_jsx(code: str, i: int) -> bool:
    nxt = code[i + 1:i + 2]
    if not (nxt.isalpha() or nxt == ">"):
        return False
    j = i - 1
    while j >= 0 and code[j].isspace():
        j -= 1
    return j < 0 or code[j] in _JSX_PREFIX or code[:j + 1].endswith("return")


def _scan_code(code: str, i: int, out: list, in_braces: bool = False) -> int:
    depth = 0
    while i < len(code):
        c = code[i]
        if c in "'\"`":
            i = _skip_quoted(code, i)
            out.append(" ")
            continue
        if code.startswith("//", i):
            end = code.find("\n", i)
            i = len(code) if end < 0 else end
            continue
        if code.startswith("/*", i):
            end = code.find("*/", i + 2)
            i = len(code) if end < 0 else end + 2
            out.append(" ")
            continue
        if c == "<" and _starts_jsx(code, i):
            i = _scan_element(code, i, out)
            continue
        if c == "{":
            depth += 1
        elif c == "}":
            if in_braces and depth == 0:
                out.append(" ")
                return i + 1
            depth -= 1
        out.append(c)
        i += 1
    return i


def _scan_tag(code: str, i: int, out: list) -> tuple[int, bool, bool]:
    """Consume `<Name attrs>` / `</Name>` / `<Name/>`; the name and `{...}` values are code."""
    i += 1
    closing = code.startswith("/", i)
    if closing:
        i += 1
    m = _TAG_NAME.match(code, i)
    out.append(f" {m.group(0)} ")
    i = m.end()
    while i < len(code):
        if code[i] in "'\"":
            i = _skip_quoted(code, i)
        elif code[i] == "{":
            i = _scan_code(code, i + 1, out, in_braces=True)
        elif code.startswith("/>", i):
            return i + 2, closing, True
        elif code[i] == ">":
            return i + 1, closing, False
        else:
            i += 1
    return i, closing, False


def _scan_element(code: str, i: int, out: list) -> int:
    depth = 0
    while i < len(code):
        i, closing, self_closing = _scan_tag(code, i, out)
        depth += -1 if closing else (0 if self_closing else 1)
        if depth <= 0:
            return i
        # children: plain text is display-only, `{...}` holds code
        while i < len(code) and code[i] != "<":
            if code[i] == "{":
                i = _scan_code(code, i + 1, out, in_braces=True)
            else:
                i += 1
    return i


def code_identifiers(code: str) -> set[str]:
    """Identifiers used as code. Comments, string literals and JSX text are skipped."""
    out: list = []
    _scan_code(code, 0, out)
    return set(re.findall(_IDENT, "".join(out)))


# ── Ordering ──────────────────────────────────────────────────────────────────

def reference_graph(sources: dict[str, str], exports: dict[str, set]) -> dict[str, set]:
    """path → set of paths whose exported names its code refers to."""
    owners: dict[str, set] = {}
    for path, names in exports.items():
        for n in names:
            owners.setdefault(n, set()).add(path)
    deps = {}
    for path, code in sources.items():
        tokens = code_identifiers(code) - exports.get(path, set())
        deps[path] = {o for t in tokens for o in owners.get(t, ()) if o != path}
    return deps


def _find_cycle(start: str, deps: dict, pending: set) -> list:
    path, cur = [start], start
    while True:
        nxt = min(d for d in deps[cur] if d in pending)
        if nxt in path:
            return path[path.index(nxt):] + [nxt]
        path.append(nxt)
        cur = nxt


def topological_order(deps: dict[str, set]) -> tuple[list, list]:
    """
    Dependencies first, lexicographic among ready nodes. Cycles are broken at
    the smallest pending path and reported as diagnostics.
    """
    waiting = {p: len(d) for p, d in deps.items()}
    dependents = {p: set() for p in deps}
    for p, ds in deps.items():
        for d in ds:
            dependents[d].add(p)
    ready = [p for p, n in waiting.items() if n == 0]
    heapq.heapify(ready)
    pending = set(deps)
    order, diagnostics = [], []

    def emit(p):
        order.append(p)
        pending.discard(p)
        for q in dependents[p]:
            waiting[q] -= 1
            if waiting[q] == 0 and q in pending:
                heapq.heappush(ready, q)

    while pending:
        if ready:
            p = heapq.heappop(ready)
            if p in pending:
                emit(p)
            continue
        p = min(pending)
        cycle = _find_cycle(p, deps, pending)
        diagnostics.append("dependency cycle: " + " -> ".join(cycle))
        emit(p)
    return order, diagnostics


# ── Program ───────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class LinkedProgram:
    document: str
    script: str
    stylesheet: str
    order: tuple = ()
    entry_name: str = "App"
    diagnostics: tuple = field(default_factory=tuple)

    def __str__(self) -> str:
        return self.document


def _contents(source) -> dict[str, str]:
    if hasattr(source, "snapshot"):
        return source.snapshot()
    if isinstance(source, Mapping):
        return {p: c or "" for p, c in source.items()}
    return {f.path: f.content or "" for f in source}


def _escape_tag(text: str, tag: str) -> str:
    return re.sub(rf"</({tag})", r"<\\/\1", text, flags=re.I)


BASE_STYLES = """
    :root {
      --background: 0 0% 100%;
      --foreground: 222.2 84% 4.9%;
      --card: 0 0% 100%;
      --card-foreground: 222.2 84% 4.9%;
      --primary: 222.2 47.4% 11.2%;
      --primary-foreground: 210 40% 98%;
      --secondary: 210 40% 96.1%;
      --secondary-foreground: 222.2 47.4% 11.2%;
      --muted: 210 40% 96.1%;
      --muted-foreground: 215.4 16.3% 46.9%;
      --accent: 210 40% 96.1%;
      --accent-foreground: 222.2 47.4% 11.2%;
      --destructive: 0 84.2% 60.2%;
      --destructive-foreground: 210 40% 98%;
      --border: 214.3 31.8% 91.4%;
      --input: 214.3 31.8% 91.4%;
      --ring: 222.2 84% 4.9%;
      --radius: 0.5rem;
    }
    * { box-sizing: border-box; border-color: hsl(var(--border)); }
    body {
      margin: 0;
      font-family: Inter, system-ui, -apple-system, 'Segoe UI', Roboto, sans-serif;
      background-color: hsl(var(--background));
      color: hsl(var(--foreground));
      -webkit-font-smoothing: antialiased;
    }
"""

TAILWIND_CONFIG = """
    tailwind.config = {
      theme: {
        extend: {
          colors: {
            border: "hsl(var(--border))",
            input: "hsl(var(--input))",
            ring: "hsl(var(--ring))",
            background: "hsl(var(--background))",
            foreground: "hsl(var(--foreground))",
            primary: { DEFAULT: "hsl(var(--primary))", foreground: "hsl(var(--primary-foreground))" },
            secondary: { DEFAULT: "hsl(var(--secondary))", foreground: "hsl(var(--secondary-foreground))" },
            destructive: { DEFAULT: "hsl(var(--destructive))", foreground: "hsl(var(--destructive-foreground))" },
            muted: { DEFAULT: "hsl(var(--muted))", foreground: "hsl(var(--muted-foreground))" },
            accent: { DEFAULT: "hsl(var(--accent))", foreground: "hsl(var(--accent-foreground))" },
            card: { DEFAULT: "hsl(var(--card))", foreground: "hsl(var(--card-foreground))" },
          },
          borderRadius: {
            lg: "var(--radius)",
            md: "calc(var(--radius) - 2px)",
            sm: "calc(var(--radius) - 4px)",
          },
        },
      },
    }
"""

# Registered before Babel runs so transform errors are caught as well.
ERROR_REPORTER = r"""
    window.showPreviewError = function (text) {
      document.getElementById('root').style.display = 'none';
      document.getElementById('error-display').style.display = 'block';
      document.getElementById('error-message').textContent = text;
    };
    window.addEventListener('error', function (e) {
      if (e.message) window.showPreviewError(e.message);
    });
"""


def mount_call(entry_name: str) -> str:
    return (
        "// Render with error boundary\n"
        "try {\n"
        "  const root = ReactDOM.createRoot(document.getElementById('root'));\n"
        "  root.render(\n"
        "    React.createElement(ErrorBoundary, null,\n"
        f"      React.createElement({entry_name})\n"
        "    )\n"
        "  );\n"
        "} catch (err) {\n"
        "  console.error('Render error:', err);\n"
        "  window.showPreviewError(err.message + '\\n\\n' + (err.stack || ''));\n"
        "}\n"
    )


def document_shell(stylesheet: str, script: str) -> str:
    return "".join([
        '<!DOCTYPE html>\n<html lang="en">\n<head>\n',
        '  <meta charset="UTF-8"/>\n',
        '  <meta name="viewport" content="width=device-width, initial-scale=1.0"/>\n',
        f'  <script src="{TAILWIND_URL}"></script>\n',
        f"  <script>{TAILWIND_CONFIG}  </script>\n",
        f'  <script src="{REACT_URL}"></script>\n',
        f'  <script src="{REACT_DOM_URL}"></script>\n',
        f'  <script src="{BABEL_URL}"></script>\n',
        f'  <link href="{FONTS_URL}" rel="stylesheet">\n',
        f"  <style>{BASE_STYLES}\n{_escape_tag(stylesheet, 'style')}\n  </style>\n",
        f"  <script>{ERROR_REPORTER}  </script>\n",
        "</head>\n<body>\n",
        '  <div id="root"></div>\n',
        '  <div id="error-display" style="display:none;padding:40px;text-align:center;">\n',
        '    <h2 style="color:#ef4444;margin-bottom:16px;">Preview Error</h2>\n',
        '    <pre id="error-message" style="background:#fee2e2;padding:16px;border-radius:8px;'
        'text-align:left;overflow:auto;max-width:600px;margin:0 auto;white-space:pre-wrap;"></pre>\n',
        "  </div>\n",
        '  <script type="text/babel" data-presets="react">\n',
        _escape_tag(script, "script"),
        "\n  </script>\n</body>\n</html>\n",
    ])


class ModuleLinker:
    def __init__(self, runtime: RuntimeLibrary = STANDARD_LIBRARY,
                 entry_path: str = ENTRY_PATH,
                 components_dir: str = COMPONENTS_DIR,
                 stylesheet_path: str = STYLESHEET_PATH):
        self.runtime         = runtime
        self.entry_path      = entry_path
        self.components_dir  = components_dir
        self.stylesheet_path = stylesheet_path

    def select(self, contents: dict[str, str]) -> dict[str, str]:
        return {
            p: c for p, c in sorted(contents.items())
            if p.startswith(self.components_dir) and p.endswith(SOURCE_EXTENSIONS)
        }

    def order(self, components: dict[str, str]) -> tuple[list, list]:
        rewritten, exports = {}, {}
        for path, code in components.items():
            name = component_name(path)
            exports[path] = exported_names(code, name)
            rewritten[path] = rewrite_exports(strip_imports(code), name)
        return topological_order(reference_graph(rewritten, exports))

    def compile(self, source) -> LinkedProgram:
        contents   = _contents(source)
        components = self.select(contents)
        order, diagnostics = self.order(components)
        for d in diagnostics:
            log.warning(f"   ⚠ {d}")

        entry_src  = contents.get(self.entry_path, "")
        entry_name = entry_component(entry_src, component_name(self.entry_path))

        parts = [self.runtime.render(), "// Components"]
        for path in order:
            name = component_name(path)
            parts.append(f"// --- {name} ---\n{rewrite_exports(strip_imports(components[path]), name)}")
        parts.append("// App")
        parts.append(rewrite_exports(strip_imports(entry_src), entry_name))
        parts.append(mount_call(entry_name))
        script = "\n\n".join(parts)

        stylesheet = clean_stylesheet(contents.get(self.stylesheet_path, ""))
        return LinkedProgram(
            document=document_shell(stylesheet, script),
            script=script,
            stylesheet=stylesheet,
            order=tuple(order) + ((self.entry_path,) if self.entry_path in contents else ()),
            entry_name=entry_name,
            diagnostics=tuple(diagnostics),
        )
