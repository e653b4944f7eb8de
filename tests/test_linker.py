from __future__ import annotations

import re

from forge.linker import (
    ModuleLinker, clean_stylesheet, code_identifiers, component_name, entry_component, exported_names,
    reference_graph, rewrite_exports, strip_imports, topological_order,
)
from forge.runtime import STANDARD_LIBRARY

APP = """import React, { useState } from 'react';
import Header from './components/Header';
import './index.css';

export default function App() {
  const [n, setN] = useState(0);
  return <div><Header /><Button onClick={() => setN(n + 1)}>{n}</Button></div>;
}
"""

HEADER = """import React from 'react';
import { Button } from './Button';

export default function Header() {
  return <header><Menu /><Button>Go</Button></header>;
}
"""

BUTTON = """import * as React from 'react';
import {
  cva,
  type VariantProps,
} from 'class-variance-authority';

export const Button = ({ children, ...props }) => <button {...props}>{children}</button>;
"""

CSS = """@tailwind base;
@tailwind components;
@import url('x.css');
@layer base {
  :root { --x: 1; }
  .card { @apply p-4; }
}
@layer components;
.title { color: red; }
"""


def test_strip_imports_removes_every_import_form() -> None:
    code = strip_imports(APP + HEADER + BUTTON)

    assert not re.search(r"^\s*import\b", code, re.M)
    assert "function App()" in code
    assert "export const Button" in code


def test_strip_imports_leaves_dynamic_and_string_imports() -> None:
    code = "const m = await import('./lazy');\nconst s = 'import x from y';\n"

    assert strip_imports(code) == code


def test_rewrite_default_function() -> None:
    assert rewrite_exports("export default function Foo(){}") == "function Foo(){}"
    assert rewrite_exports("export default async function Foo(){}") == "async function Foo(){}"


def test_rewrite_named_declarations() -> None:
    assert rewrite_exports("export const X = 1") == "const X = 1"
    assert rewrite_exports("export function f() {}") == "function f() {}"
    assert rewrite_exports("export class K {}") == "class K {}"


def test_rewrite_removes_default_identifier_and_export_lists() -> None:
    code = "const Card = () => null;\nexport { Card, Other as Alias };\nexport default Card;\nexport * from './x';\n"

    out = rewrite_exports(code, "Card")

    assert "export" not in out
    assert "const Card = () => null;" in out


def test_rewrite_anonymous_default_binds_component_name() -> None:
    assert rewrite_exports("export default () => <div/>;", "Hero") == "const Hero = () => <div/>;"
    assert rewrite_exports("export default function () {}", "Hero") == "function Hero() {}"


def test_rewrite_default_expression_for_already_declared_name() -> None:
    code = "function Hero() {}\nexport default memo(Hero);"

    assert rewrite_exports(code, "Hero") == "function Hero() {}\nmemo(Hero);"


def test_exported_names_and_entry_component() -> None:
    assert exported_names(BUTTON, "Button") == {"Button"}
    assert exported_names("export { a, b as c };\nexport default () => null", "Hero") == {"a", "b", "Hero"}
    assert entry_component(APP) == "App"
    assert entry_component("const Main = () => null;\nexport default Main;") == "Main"
    assert entry_component("export default () => null", "App") == "App"


def test_component_name_from_path() -> None:
    assert component_name("src/components/Header.jsx") == "Header"
    assert component_name("src/components/my-card.jsx") == "mycard"
    assert component_name("src/components/3d.jsx") == "Component3d"


def test_clean_stylesheet_strips_build_directives_and_nested_layers() -> None:
    out = clean_stylesheet(CSS)

    assert "@tailwind" not in out
    assert "@import" not in out
    assert "@layer" not in out
    assert "@apply" not in out
    assert "--x" not in out
    assert ".title { color: red; }" in out


def test_topological_order_puts_dependencies_first() -> None:
    order, diagnostics = topological_order({"c": {"a"}, "b": set(), "a": {"b"}})

    assert order == ["b", "a", "c"]
    assert diagnostics == []


def test_topological_order_is_lexicographic_without_references() -> None:
    order, _ = topological_order({"z": set(), "m": set(), "a": set()})

    assert order == ["a", "m", "z"]


def test_cycle_is_broken_and_reported() -> None:
    order, diagnostics = topological_order({"a": {"b"}, "b": {"a"}, "c": set()})

    assert order == ["c", "a", "b"]
    assert diagnostics == ["dependency cycle: a -> b -> a"]


def test_reference_graph_uses_exported_names() -> None:
    deps = reference_graph(
        {"Header.jsx": "<Button/>", "Button.jsx": "const Button = 1"},
        {"Header.jsx": {"Header"}, "Button.jsx": {"Button"}},
    )

    assert deps == {"Header.jsx": {"Button.jsx"}, "Button.jsx": set()}


def test_code_identifiers_skip_text_strings_and_comments() -> None:
    code = (
        "// Footer goes here\n"
        "/* Sidebar too */\n"
        "const label = 'Header text';\n"
        "const tip = `Nav ${x}`;\n"
        "const View = () => (\n"
        "  <section className=\"Card\" onClick={() => openModal(Dialog)}>\n"
        "    <p>Don't forget the Pricing page</p>\n"
        "    {show && <Banner title=\"Hero\" />}\n"
        "  </section>\n"
        ");\n"
    )

    ids = code_identifiers(code)

    assert {"label", "tip", "View", "openModal", "Dialog", "show", "Banner", "section"} <= ids
    assert not ids & {"Footer", "Sidebar", "Header", "Nav", "Card", "Pricing", "Hero", "forget"}


def test_comparisons_are_not_mistaken_for_tags() -> None:
    ids = code_identifiers("const ok = count < Limit && Limit > 0;")

    assert {"count", "Limit", "ok"} <= ids


def test_components_mentioned_only_in_text_stay_lexicographic() -> None:
    program = ModuleLinker().compile({
        "src/App.jsx": "export default function App() { return <Header />; }",
        "src/components/Footer.jsx": "export default function Footer() { return <p>Back to Header</p>; }",
        "src/components/Header.jsx": "export const Header = () => <a title=\"Footer\">Footer links</a>;",
    })

    assert program.order == ("src/components/Footer.jsx", "src/components/Header.jsx", "src/App.jsx")
    assert program.diagnostics == ()


def files(order: list[str]) -> dict[str, str]:
    all_files = {
        "src/App.jsx": APP,
        "src/components/Header.jsx": HEADER,
        "src/components/Button.jsx": BUTTON,
        "src/index.css": CSS,
        "src/main.jsx": "import App from './App'",
        "package.json": "{}",
    }
    return {p: all_files[p] for p in order}


def test_compile_orders_components_by_reference_and_entry_last() -> None:
    program = ModuleLinker().compile(files([
        "src/App.jsx", "src/components/Header.jsx", "src/components/Button.jsx", "src/index.css",
    ]))

    assert program.order == ("src/components/Button.jsx", "src/components/Header.jsx", "src/App.jsx")
    assert program.script.index("// --- Button ---") < program.script.index("// --- Header ---")
    assert program.script.index("// --- Header ---") < program.script.index("// App")
    assert program.entry_name == "App"
    assert program.diagnostics == ()


def test_compiled_script_has_no_module_syntax() -> None:
    program = ModuleLinker().compile(files(["src/App.jsx", "src/components/Header.jsx", "src/components/Button.jsx"]))

    assert not re.search(r"^\s*(import|export)\b", program.script, re.M)
    assert "function App()" in program.script
    assert "export default" not in program.script
    assert "React.createElement(App)" in program.script


def test_only_component_sources_are_linked() -> None:
    program = ModuleLinker().compile(files(["src/App.jsx", "src/main.jsx", "package.json"]))

    assert program.order == ("src/App.jsx",)
    assert "import App from './App'" not in program.script


def test_compile_is_pure_and_independent_of_insertion_order() -> None:
    paths = ["src/App.jsx", "src/components/Header.jsx", "src/components/Button.jsx", "src/index.css"]
    linker = ModuleLinker()

    first = linker.compile(files(paths))
    again = linker.compile(files(paths))
    shuffled = linker.compile(files(list(reversed(paths))))

    assert first == again == shuffled
    assert first.document == shuffled.document


def test_document_embeds_runtime_styles_and_error_surfaces() -> None:
    program = ModuleLinker().compile(files(["src/App.jsx", "src/index.css"]))
    doc = program.document

    assert doc.startswith("<!DOCTYPE html>")
    assert 'type="text/babel"' in doc
    assert "window.Menu = createIcon(" in doc
    assert "class ErrorBoundary" in doc
    assert 'id="error-display"' in doc
    assert ".title { color: red; }" in doc
    assert str(program) == doc


def test_closing_script_tag_in_source_is_escaped() -> None:
    app = "export default function App() { return <div>{'</script><script>alert(1)'}</div>; }"
    doc = ModuleLinker().compile({"src/App.jsx": app}).document

    assert "</script><script>alert(1)" not in doc
    assert "<\\/script><script>alert(1)" in doc


def test_missing_entry_still_links_components() -> None:
    program = ModuleLinker().compile({"src/components/Card.jsx": "export const Card = () => null"})

    assert program.order == ("src/components/Card.jsx",)
    assert program.entry_name == "App"


def test_linker_uses_its_runtime_library() -> None:
    runtime = STANDARD_LIBRARY.extend({"Rocket": "<path d='M0 0'/>"})
    program = ModuleLinker(runtime=runtime).compile({"src/App.jsx": APP})

    assert "window.Rocket = createIcon(" in program.script
