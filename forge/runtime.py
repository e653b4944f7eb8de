"""
The preview "standard library": helpers every sandbox gets before any
generated component runs. Generated code is written against lucide-style
icons, a `cn` class joiner and React hooks as bare globals, so the linker
prepends this shim instead of resolving real packages.
"""
import json, textwrap
from dataclasses import dataclass, field
from types import MappingProxyType

from forge.icons import ICONS

HOOKS = (
    "useState", "useEffect", "useRef", "useCallback", "useMemo",
    "useContext", "createContext", "Fragment",
)

ICON_FACTORY = textwrap.dedent("""\
    const createIcon = (pathData, options = {}) => {
      const { viewBox = '0 0 24 24', fill = 'none', strokeWidth = 2 } = options;
      return function IconComponent({ className = '', size = 24, ...props }) {
        return React.createElement('svg', {
          xmlns: 'http://www.w3.org/2000/svg',
          width: size,
          height: size,
          viewBox,
          fill,
          stroke: 'currentColor',
          strokeWidth,
          strokeLinecap: 'round',
          strokeLinejoin: 'round',
          className,
          ...props,
          dangerouslySetInnerHTML: { __html: pathData }
        });
      };
    };
    """)

CLASS_JOINER = "const cn = (...classes) => classes.filter(Boolean).join(' ');\n"

ERROR_BOUNDARY = textwrap.dedent("""\
    class ErrorBoundary extends React.Component {
      constructor(props) {
        super(props);
        this.state = { hasError: false, error: null };
      }
      static getDerivedStateFromError(error) {
        return { hasError: true, error };
      }
      componentDidCatch(error, errorInfo) {
        console.error('Component error:', error, errorInfo);
      }
      render() {
        if (this.state.hasError) {
          return (
            <div id="component-error" style={{padding: '40px', textAlign: 'center'}}>
              <h2 style={{color: '#ef4444', marginBottom: '16px'}}>Component Error</h2>
              <pre style={{background: '#fee2e2', padding: '16px', borderRadius: '8px', textAlign: 'left', overflow: 'auto', maxWidth: '600px', margin: '0 auto', whiteSpace: 'pre-wrap'}}>
                {this.state.error?.message || 'Unknown error'}
              </pre>
            </div>
          );
        }
        return this.props.children;
      }
    }
    """)


@dataclass(frozen=True)
class RuntimeLibrary:
    """Immutable shim description; `extend` returns a new library."""

    icons: MappingProxyType = field(default_factory=lambda: MappingProxyType(dict(ICONS)))
    hooks: tuple = HOOKS

    @classmethod
    def standard(cls) -> "RuntimeLibrary":
        return cls()

    def extend(self, icons: dict) -> "RuntimeLibrary":
        merged = dict(self.icons)
        merged.update(icons)
        return RuntimeLibrary(MappingProxyType(merged), self.hooks)

    def icon_names(self) -> list[str]:
        return list(self.icons)

    def render(self) -> str:
        # Icons live on window so a generated component may redeclare one
        # without an "already declared" error in the shared scope.
        icon_lines = "\n".join(
            f"window.{name} = createIcon({json.dumps(svg)});"
            for name, svg in self.icons.items()
        )
        return "\n".join([
            f"const {{ {', '.join(self.hooks)} }} = React;",
            "",
            ICON_FACTORY,
            icon_lines,
            "",
            CLASS_JOINER,
            ERROR_BOUNDARY,
        ])


STANDARD_LIBRARY = RuntimeLibrary.standard()
