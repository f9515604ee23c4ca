from __future__ import annotations

import hashlib
import importlib.util
import os
import sys
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple


EXTENSION_API_VERSION = 1
BUNDLED_EXTENSION_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "ext")


class TinExtensionError(Exception):
    pass


@dataclass(frozen=True)
class ExtensionMetadata:
    name: str
    version: str = "0.0.0"
    requires_api: int = EXTENSION_API_VERSION


# impl(interpreter, args)
HostImpl = Callable[[Any, List[Any]], None]


@dataclass
class HookRegistry:
    # event -> list[(priority, handler, ext_name)]
    _events: Dict[str, List[Tuple[int, Callable[..., None], str]]] = field(default_factory=dict)

    def on_event(self, event: str, handler: Callable[..., None], *, priority: int, ext_name: str) -> None:
        self._events.setdefault(event, []).append((priority, handler, ext_name))
        self._events[event].sort(key=lambda t: t[0], reverse=True)

    def emit(self, event: str, *args: Any, **kwargs: Any) -> None:
        for _priority, handler, _ext in self._events.get(event, []):
            handler(*args, **kwargs)

    def has_handlers(self, event: str) -> bool:
        return bool(self._events.get(event))


@dataclass
class RuntimeServices:
    metadata: List[ExtensionMetadata] = field(default_factory=list)
    hook_registry: HookRegistry = field(default_factory=HookRegistry)
    # host functions are copied into each interpreter's table at construction
    functions: List[Tuple[str, int, Optional[int], HostImpl, str]] = field(default_factory=list)


class ExtensionAPI:
    def __init__(self, *, services: RuntimeServices, ext_name: str) -> None:
        self._services = services
        self._ext_name = ext_name

    # ---- metadata ----
    def metadata(self, *, name: str, version: str = "0.0.0", requires_api: int = EXTENSION_API_VERSION) -> None:
        meta = ExtensionMetadata(name=name, version=version, requires_api=requires_api)
        if meta.requires_api > EXTENSION_API_VERSION:
            raise TinExtensionError(
                f"Extension {meta.name} {meta.version} requires API {meta.requires_api}, host supports {EXTENSION_API_VERSION}"
            )
        self._services.metadata.append(meta)

    # ---- host functions ----
    def register_function(
        self,
        name: str,
        min_args: int,
        max_args: Optional[int],
        impl: HostImpl,
        *,
        doc: str = "",
    ) -> None:
        if not name:
            raise TinExtensionError("Host function name must be non-empty")
        self._services.functions.append((name, int(min_args), None if max_args is None else int(max_args), impl, doc))

    def function(self, name: str, min_args: int = 0, max_args: Optional[int] = None, *, doc: str = ""):
        def deco(fn: HostImpl) -> HostImpl:
            self.register_function(name, min_args, max_args, fn, doc=doc)
            return fn

        return deco

    # ---- hooks ----
    def on_event(self, event: str, handler: Optional[Callable[..., None]] = None, *, priority: int = 0):
        if handler is None:
            def deco(fn: Callable[..., None]) -> Callable[..., None]:
                self._services.hook_registry.on_event(event, fn, priority=priority, ext_name=self._ext_name)
                return fn
            return deco
        self._services.hook_registry.on_event(event, handler, priority=priority, ext_name=self._ext_name)
        return handler


def _unique_module_name(path: str) -> str:
    base = os.path.basename(path)
    digest = hashlib.sha256(os.path.abspath(path).encode("utf-8")).hexdigest()[:12]
    safe = "".join(ch if ch.isalnum() else "_" for ch in base)
    return f"tin_ext_{safe}_{digest}"


def load_extension_module(path: str) -> Any:
    if not os.path.exists(path):
        raise TinExtensionError(f"Extension not found: {path}")
    mod_name = _unique_module_name(path)
    spec = importlib.util.spec_from_file_location(mod_name, path)
    if spec is None or spec.loader is None:
        raise TinExtensionError(f"Failed to load extension module: {path}")
    module = importlib.util.module_from_spec(spec)

    # Let extensions import siblings by temporarily prepending their directory.
    ext_dir = os.path.dirname(os.path.abspath(path))
    sys.path.insert(0, ext_dir)
    try:
        spec.loader.exec_module(module)  # type: ignore[union-attr]
    finally:
        if sys.path and sys.path[0] == ext_dir:
            sys.path.pop(0)
    return module


def read_tinx(pointer_file: str) -> List[str]:
    if not os.path.exists(pointer_file):
        raise TinExtensionError(f".tinx file not found: {pointer_file}")
    base_dir = os.path.dirname(os.path.abspath(pointer_file))
    out: List[str] = []
    with open(pointer_file, "r", encoding="utf-8") as handle:
        for raw in handle.read().splitlines():
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            # Allow inline comments: path # comment
            if "#" in line:
                line = line.split("#", 1)[0].strip()
                if not line:
                    continue
            if not os.path.isabs(line):
                line = os.path.abspath(os.path.join(base_dir, line))
            out.append(line)
    return out


def resolve_extension_path(entry: str) -> str:
    """Bare names (``rand``) refer to the extensions shipped in ``ext/``."""
    if os.path.exists(entry) or entry.lower().endswith((".py", ".tinx")) or os.sep in entry:
        return entry
    return os.path.join(BUNDLED_EXTENSION_DIR, f"{entry}.py")


def gather_extension_paths(paths: Sequence[str]) -> List[str]:
    expanded: List[str] = []
    for p in paths:
        p = resolve_extension_path(p)
        if p.lower().endswith(".tinx"):
            expanded.extend(read_tinx(p))
        else:
            expanded.append(p)
    # normalize
    return [os.path.abspath(p) for p in expanded]


def build_default_services() -> RuntimeServices:
    return RuntimeServices()


def load_runtime_services(paths: Sequence[str]) -> RuntimeServices:
    services = build_default_services()
    resolved = gather_extension_paths(paths)
    for path in resolved:
        module = load_extension_module(path)
        api_version = getattr(module, "TIN_EXTENSION_API_VERSION", EXTENSION_API_VERSION)
        if api_version != EXTENSION_API_VERSION:
            raise TinExtensionError(
                f"Extension {path} requires API {api_version}, host supports {EXTENSION_API_VERSION}"
            )
        register = getattr(module, "tin_register", None)
        if register is None or not callable(register):
            raise TinExtensionError(f"Extension {path} must define callable tin_register(ext)")
        ext_name = getattr(module, "TIN_EXTENSION_NAME", os.path.splitext(os.path.basename(path))[0])
        ext = ExtensionAPI(services=services, ext_name=str(ext_name))
        register(ext)
    return services
