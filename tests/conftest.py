import argparse
import importlib
import sys
import textwrap
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from pathlib import Path

import pytest

GENERATOR_DIR = Path(__file__).resolve().parent.parent
if str(GENERATOR_DIR) not in sys.path:
    sys.path.insert(0, str(GENERATOR_DIR))

import enumgen  # noqa: E402


# ===--- Fake host ---=== #


@dataclass(frozen=True)
class FakeNode:
    key: enumgen.DeclarationKey
    kind: str = enumgen.ENUM_KIND
    annotations: tuple[str, ...] = ()


@dataclass(frozen=True)
class FakeMember:
    name: str
    is_constant_field: bool = True


@dataclass(frozen=True)
class FakeType:
    qualified_name: str
    module: str
    members: tuple[FakeMember, ...] = ()


@dataclass
class FakeHost:
    """In-memory SemanticHost.

    Annotations are plain strings; ``resolutions`` maps each annotation to
    the qualified name it resolves to (missing -> None, "!" -> raise).
    ``types`` maps declaration keys to their type symbol (missing -> None,
    "!" -> raise).
    """

    nodes: list[FakeNode] = field(default_factory=list)
    resolutions: dict[str, str] = field(default_factory=dict)
    types: dict[enumgen.DeclarationKey, object] = field(default_factory=dict)
    annotation_calls: list[tuple[str, int]] = field(default_factory=list)

    def enumerate_syntax_nodes(self) -> Iterator[FakeNode]:
        yield from self.nodes

    def resolve_annotation_type(self, node: FakeNode, index: int) -> str | None:
        self.annotation_calls.append((node.key.name, index))
        resolved = self.resolutions.get(node.annotations[index])
        if resolved == "!":
            raise enumgen.ResolutionError(f"cannot resolve {node.annotations[index]}")
        return resolved

    def resolve_declared_type(self, node: FakeNode) -> object:
        symbol = self.types.get(node.key)
        if symbol == "!":
            raise enumgen.ResolutionError(f"cannot resolve {node.key.name}")
        return symbol

    def add_enum(
        self,
        qualified_name: str,
        members: tuple[str, ...] = (),
        *,
        line: int,
        marked: bool = True,
        path: str = "app/models.py",
        module: str = "app.models",
    ) -> FakeNode:
        key = enumgen.DeclarationKey(path, line, 0, qualified_name.rsplit(".", 1)[-1])
        annotations = ("enum_extensions",) if marked else ("unique",)
        node = FakeNode(key=key, annotations=annotations)
        self.nodes.append(node)
        self.resolutions.setdefault("enum_extensions", enumgen.MARKER_FULL_NAME)
        self.resolutions.setdefault("unique", "enum.unique")
        self.types[key] = FakeType(
            qualified_name=qualified_name,
            module=module,
            members=tuple(FakeMember(m) for m in members),
        )
        return node


@pytest.fixture
def fake_host() -> FakeHost:
    return FakeHost()


@pytest.fixture
def make_key() -> Callable[..., enumgen.DeclarationKey]:
    def _make_key(name: str, line: int = 1, path: str = "app/models.py") -> enumgen.DeclarationKey:
        return enumgen.DeclarationKey(path, line, 0, name)

    return _make_key


# ===--- Source trees ---=== #


@pytest.fixture
def write_tree(tmp_path: Path) -> Callable[..., Path]:
    """Write ``{relative_path: source}`` under a root and return the root."""

    def _write_tree(files: dict[str, str], root: Path | None = None) -> Path:
        base = tmp_path / "src" if root is None else root
        for relative, source in files.items():
            path = base / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(textwrap.dedent(source).lstrip("\n"), encoding="utf-8")
        return base

    return _write_tree


@pytest.fixture
def load_program(write_tree: Callable[..., Path]) -> Callable[..., enumgen.PythonProgram]:
    def _load_program(files: dict[str, str]) -> enumgen.PythonProgram:
        root = write_tree(files)
        return enumgen.PythonProgram(enumgen.discover_source_files([root]))

    return _load_program


def _drop_modules(top_level: set[str]) -> None:
    for name in list(sys.modules):
        if name.split(".")[0] in top_level:
            del sys.modules[name]


@pytest.fixture
def import_generated(
    monkeypatch: pytest.MonkeyPatch,
) -> Iterator[Callable[..., object]]:
    """Import ``enum_generators.extensions`` from root with a clean module cache."""
    imported: set[str] = {enumgen.GENERATED_NAMESPACE}

    def _import_generated(root: Path, *app_packages: str) -> object:
        imported.update(app_packages)
        _drop_modules(imported)
        monkeypatch.syspath_prepend(str(root))
        importlib.invalidate_caches()
        return importlib.import_module(f"{enumgen.GENERATED_NAMESPACE}.extensions")

    yield _import_generated

    _drop_modules(imported)


@pytest.fixture
def make_args(tmp_path: Path) -> Callable[..., argparse.Namespace]:
    source_root = tmp_path / "src"
    source_root.mkdir(exist_ok=True)

    def _make_args(**overrides: object) -> argparse.Namespace:
        base_args: dict[str, object] = {
            "source_root": [source_root],
            "output_dir": tmp_path / "out",
            "exclude": None,
            "check": False,
            "list": False,
            "watch": False,
            "interval": None,
            "timeout": None,
            "verbose": False,
        }
        base_args.update(overrides)
        return argparse.Namespace(**base_args)

    return _make_args
