"""Fast enum-to-string lookup generator for Python.

Scans Python sources for enum classes decorated with ``@enum_extensions``
and emits an ``enum_generators`` package holding one member-name lookup
function per marked enum, plus a ``to_string_fast`` dispatcher.

Usage:
    python enumgen.py --source-root src --output-dir src
"""

import argparse
import ast
import builtins
import fnmatch
import hashlib
import io
import keyword
import logging
import signal
import time
import tokenize
from dataclasses import dataclass, field, replace
from pathlib import Path
from collections.abc import Callable, Iterable, Iterator, Sequence
from typing import Protocol

__version__ = "0.1.0"

logger = logging.getLogger("enumgen")

DEFAULT_OUTPUT_DIR = Path("generated")
DEFAULT_INTERVAL = 1.0

EXIT_STALE = 1
EXIT_CANCELLED = 3


# ===--- CLI config contracts ---=== #


MODE_GENERATE = "generate"
MODE_CHECK = "check"
MODE_WATCH = "watch"
VALID_MODES = {MODE_GENERATE, MODE_CHECK, MODE_WATCH}


@dataclass(frozen=True)
class GenerateConfig:
    source_roots: tuple[Path, ...]
    output_dir: Path
    exclude: tuple[str, ...] = ()
    mode: str = MODE_GENERATE
    interval: float = DEFAULT_INTERVAL
    timeout: float | None = None
    verbose: bool = False


@dataclass(frozen=True)
class DiscoveryConfig:
    source_roots: tuple[Path, ...]
    exclude: tuple[str, ...] = ()
    verbose: bool = False


VALID_ERROR_CODES = {
    "MISSING_SOURCE_ROOT",
    "PATH_NOT_FOUND",
    "NOT_A_DIRECTORY",
    "INVALID_INTERVAL",
    "INVALID_TIMEOUT",
    "INTERVAL_WITHOUT_WATCH",
}


class ConfigError(Exception):
    def __init__(self, code: str, message: str, suggestion: str | None = None):
        if code not in VALID_ERROR_CODES:
            raise ValueError(f"Unknown config error code: {code}")
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion


def validate_source_root(path: Path) -> Path:
    if not path.exists():
        raise ConfigError(
            "PATH_NOT_FOUND",
            f"Path for --source-root does not exist: {path}",
            "Provide an existing directory for this flag.",
        )
    if not path.is_dir():
        raise ConfigError(
            "NOT_A_DIRECTORY",
            f"--source-root must be a directory: {path}",
            "Point --source-root at the directory that contains your packages.",
        )
    return path


def build_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Generate fast enum-to-string lookups for marked Python enums"
    )

    parser.add_argument("--source-root", action="append", type=Path, default=None)
    parser.add_argument("--output-dir", type=Path, default=DEFAULT_OUTPUT_DIR)
    parser.add_argument("--exclude", action="append", default=None)

    mode_group = parser.add_mutually_exclusive_group()
    mode_group.add_argument("--check", action="store_true", default=False)
    mode_group.add_argument("--list", action="store_true", default=False)
    mode_group.add_argument("--watch", action="store_true", default=False)

    parser.add_argument("--interval", type=float, default=None)
    parser.add_argument("--timeout", type=float, default=None)
    parser.add_argument("--verbose", action="store_true", default=False)

    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = build_argument_parser()
    return parser.parse_args(argv)


def validate_config(args: argparse.Namespace) -> GenerateConfig | DiscoveryConfig:
    if not args.source_root:
        raise ConfigError(
            "MISSING_SOURCE_ROOT",
            "At least one --source-root is required.",
            "Pass the directory that holds your enums, e.g. --source-root src.",
        )
    source_roots = tuple(validate_source_root(Path(p)) for p in args.source_root)
    exclude = tuple(args.exclude or ())

    if args.interval is not None and not args.watch:
        raise ConfigError(
            "INTERVAL_WITHOUT_WATCH",
            "--interval requires --watch.",
            "Add --watch or remove --interval.",
        )
    interval = DEFAULT_INTERVAL if args.interval is None else args.interval
    if interval <= 0:
        raise ConfigError(
            "INVALID_INTERVAL",
            f"--interval must be positive, got {interval:g}",
            "Use a polling interval in seconds, e.g. --interval 0.5.",
        )
    if args.timeout is not None and args.timeout <= 0:
        raise ConfigError(
            "INVALID_TIMEOUT",
            f"--timeout must be positive, got {args.timeout:g}",
            "Use a limit in seconds, e.g. --timeout 30.",
        )

    if args.list:
        return DiscoveryConfig(
            source_roots=source_roots, exclude=exclude, verbose=args.verbose
        )

    if args.check:
        mode = MODE_CHECK
    elif args.watch:
        mode = MODE_WATCH
    else:
        mode = MODE_GENERATE

    return GenerateConfig(
        source_roots=source_roots,
        output_dir=args.output_dir,
        exclude=exclude,
        mode=mode,
        interval=interval,
        timeout=args.timeout,
        verbose=args.verbose,
    )


def build_config(argv: list[str] | None = None) -> GenerateConfig | DiscoveryConfig:
    return validate_config(parse_args(argv))


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


# ===--- Constants ---=== #

GENERATED_NAMESPACE: str = "enum_generators"
MARKER_NAME: str = "enum_extensions"
MARKER_FULL_NAME: str = f"{GENERATED_NAMESPACE}.{MARKER_NAME}"
"""Fully qualified name every marker decorator must resolve to."""

MARKER_UNIT_TAG: str = "__init__.py"
EXTENSIONS_UNIT_TAG: str = "extensions.py"
UNIT_ORDER: tuple[str, ...] = (MARKER_UNIT_TAG, EXTENSIONS_UNIT_TAG)
"""Every unit tag the generator can emit, in write order."""

DISPATCH_FUNCTION: str = "to_string_fast"

ENUM_KIND: str = "enum"
CLASS_KIND: str = "class"

ENUM_BASE_NAMES = frozenset(
    {"Enum", "IntEnum", "StrEnum", "Flag", "IntFlag", "ReprEnum"}
)
ENUM_BASE_QUALNAMES = frozenset(f"enum.{name}" for name in ENUM_BASE_NAMES)

# Wrappers that keep a class-body assignment out of the enum's member set.
NON_MEMBER_WRAPPERS = frozenset({"nonmember", "property", "staticmethod", "classmethod"})


# ===--- Host interface ---=== #


@dataclass(frozen=True, order=True)
class DeclarationKey:
    """Opaque identity of one declaration in the source set.

    Ordering follows source position (path, then line, then column), which
    is the declaration order every later stage iterates in.
    """

    path: str
    line: int
    column: int
    name: str


class ResolutionError(Exception):
    """A semantic query could not be answered for one declaration."""


class SyntaxNode(Protocol):
    @property
    def kind(self) -> str: ...

    @property
    def annotations(self) -> Sequence[object]: ...

    @property
    def key(self) -> DeclarationKey: ...


class MemberSymbol(Protocol):
    @property
    def name(self) -> str: ...

    @property
    def is_constant_field(self) -> bool: ...


class TypeSymbol(Protocol):
    @property
    def qualified_name(self) -> str: ...

    @property
    def module(self) -> str: ...

    @property
    def members(self) -> Sequence[MemberSymbol]: ...


class SemanticHost(Protocol):
    """Query surface the pipeline needs from a host.

    ``resolve_annotation_type`` and ``resolve_declared_type`` may return
    None or raise ResolutionError when a lookup fails; the pipeline treats
    both the same way.
    """

    def enumerate_syntax_nodes(self) -> Iterable[SyntaxNode]: ...

    def resolve_annotation_type(self, node: SyntaxNode, index: int) -> str | None: ...

    def resolve_declared_type(self, node: SyntaxNode) -> TypeSymbol | None: ...


class Cancellation(Protocol):
    @property
    def is_requested(self) -> bool: ...


class CancellationToken:
    """Cancellation flag flipped by the host, polled by the pipeline."""

    def __init__(self) -> None:
        self._requested = False

    @property
    def is_requested(self) -> bool:
        return self._requested

    def cancel(self) -> None:
        self._requested = True


class DeadlineCancellation:
    """Requests cancellation once ``seconds`` have elapsed on ``clock``."""

    def __init__(
        self, seconds: float, clock: Callable[[], float] = time.monotonic
    ) -> None:
        self._clock = clock
        self._deadline = clock() + seconds

    @property
    def is_requested(self) -> bool:
        return self._clock() >= self._deadline


class CompositeCancellation:
    """Requested as soon as any of its sources is requested."""

    def __init__(self, *sources: Cancellation | None) -> None:
        self._sources = tuple(s for s in sources if s is not None)

    @property
    def is_requested(self) -> bool:
        return any(source.is_requested for source in self._sources)


class GenerationCancelled(Exception):
    """Internal signal used to unwind a cancelled run."""


def _check_cancelled(cancellation: Cancellation | None) -> None:
    if cancellation is not None and cancellation.is_requested:
        raise GenerationCancelled()


# ===--- Pipeline data classes ---=== #


@dataclass(frozen=True)
class EnumDescriptor:
    """Minimal facts needed to render one enum's lookup function.

    Attributes:
        qualified_name: Dotted path that references the enum from any
            module, e.g. "app.models.Outer.Color".
        module: Importable module holding the enum, e.g. "app.models".
            Always a prefix of qualified_name.
        members: Member names in declaration order. Duplicates are kept.

    Raises:
        ValueError: If qualified_name is empty or does not live under module.
    """

    qualified_name: str
    module: str
    members: tuple[str, ...]

    def __post_init__(self) -> None:
        if not self.qualified_name:
            raise ValueError("qualified_name must not be empty")
        if not self.module or not self.qualified_name.startswith(f"{self.module}."):
            raise ValueError(
                f"qualified_name {self.qualified_name!r} is not inside "
                f"module {self.module!r}"
            )


@dataclass(frozen=True)
class GeneratedUnit:
    """One generated source file: a fixed logical tag plus its full text."""

    tag: str
    text: str


@dataclass(frozen=True)
class GenerationResult:
    """Everything one pipeline run produced.

    Attributes:
        units: Marker unit first, then the aggregate unit when at least one
            descriptor was extracted.
        descriptors: Extracted descriptors in render order.
        cancelled: True when the run observed cancellation and was
            abandoned. A cancelled result never carries the aggregate unit.
    """

    units: tuple[GeneratedUnit, ...]
    descriptors: tuple[EnumDescriptor, ...]
    cancelled: bool = False

    def unit(self, tag: str) -> GeneratedUnit | None:
        for unit in self.units:
            if unit.tag == tag:
                return unit
        return None


# ===--- Stage 1: syntactic candidate filter ---=== #


def is_syntax_target_for_generation(node: SyntaxNode) -> bool:
    """Return True for enum declarations carrying at least one decorator.

    Structural check only; no semantic lookups are made here.
    """
    return node.kind == ENUM_KIND and len(node.annotations) > 0


# ===--- Stage 2: semantic target resolver ---=== #


def get_semantic_target_for_generation(
    node: SyntaxNode, host: SemanticHost
) -> SyntaxNode | None:
    """Return node when one of its decorators resolves to the marker.

    Decorators are scanned in order and the first match wins. A decorator
    the host cannot resolve is treated as a non-match and scanning
    continues with the next one.

    Args:
        node: A candidate that passed is_syntax_target_for_generation.
        host: Semantic query capability for the node's source set.

    Returns:
        The same node object when the marker is present, otherwise None.
    """
    for index in range(len(node.annotations)):
        try:
            resolved = host.resolve_annotation_type(node, index)
        except ResolutionError as err:
            logger.debug(f"Decorator {index} on {node.key.name} unresolved: {err}")
            continue
        if resolved == MARKER_FULL_NAME:
            return node
    return None


def collect_generation_targets(
    host: SemanticHost, cancellation: Cancellation | None = None
) -> tuple[SyntaxNode, ...]:
    """Run stages 1 and 2 over every syntax node the host enumerates.

    Raises:
        GenerationCancelled: When cancellation is requested between nodes.
    """
    targets: list[SyntaxNode] = []
    for node in host.enumerate_syntax_nodes():
        _check_cancelled(cancellation)
        if not is_syntax_target_for_generation(node):
            continue
        target = get_semantic_target_for_generation(node, host)
        if target is not None:
            targets.append(target)
    return tuple(targets)


# ===--- Stage 3: fact extractor ---=== #


def deduplicate_targets(targets: Iterable[SyntaxNode]) -> list[SyntaxNode]:
    """Collapse repeated reports of one declaration and sort by position.

    The first report of each key is kept. The result is ordered by
    DeclarationKey, never by arrival order.
    """
    unique: dict[DeclarationKey, SyntaxNode] = {}
    for target in targets:
        unique.setdefault(target.key, target)
    return [unique[key] for key in sorted(unique)]


def build_enum_descriptor(symbol: TypeSymbol) -> EnumDescriptor:
    members = tuple(m.name for m in symbol.members if m.is_constant_field)
    return EnumDescriptor(
        qualified_name=symbol.qualified_name,
        module=symbol.module,
        members=members,
    )


def extract_enum_descriptors(
    host: SemanticHost,
    targets: Iterable[SyntaxNode],
    cancellation: Cancellation | None = None,
) -> list[EnumDescriptor]:
    """Turn confirmed targets into one EnumDescriptor per distinct enum.

    Declarations the host cannot resolve to a type are dropped without a
    partial descriptor. When two declarations resolve to the same qualified
    name (a class rebound later in its module), the later declaration
    replaces the earlier one, matching what the name refers to at runtime.

    Args:
        host: Semantic query capability for the whole source set.
        targets: Output of collect_generation_targets, in any order and
            possibly with repeats.
        cancellation: Polled before each declaration.

    Returns:
        Descriptors ordered by declaration position. Empty when there is
        nothing to generate.

    Raises:
        GenerationCancelled: When cancellation is requested mid-extraction.
    """
    distinct = deduplicate_targets(targets)
    if not distinct:
        return []

    by_name: dict[str, EnumDescriptor] = {}
    for node in distinct:
        _check_cancelled(cancellation)
        try:
            symbol = host.resolve_declared_type(node)
        except ResolutionError as err:
            logger.debug(f"Dropping {node.key.name}: {err}")
            continue
        if symbol is None:
            logger.debug(f"Dropping {node.key.name}: not resolvable to an enum type")
            continue
        descriptor = build_enum_descriptor(symbol)
        by_name.pop(descriptor.qualified_name, None)
        by_name[descriptor.qualified_name] = descriptor
    return list(by_name.values())


# ===--- Stage 4: source synthesizer ---=== #

_HEADER_BORDER: str = "# x-------------------------------------------x #"


def format_file_header(title: str) -> list[str]:
    """Return comment-block lines for a generated file header.

    Output format:
        # x-------------------------------------------x #
        # | <title>
        # | Generated by enumgen <version>
        # | Do not edit: rewritten on every run
        # x-------------------------------------------x #

    Raises:
        ValueError: If title is empty.
    """
    if not title:
        raise ValueError("header title must not be empty")
    return [
        _HEADER_BORDER,
        f"# | {title}",
        f"# | Generated by enumgen {__version__}",
        "# | Do not edit: rewritten on every run",
        _HEADER_BORDER,
    ]


def assign_function_names(descriptors: Sequence[EnumDescriptor]) -> list[str]:
    """Return one lookup-function name per descriptor, in the same order.

    Names are the qualified name with dots replaced by underscores plus a
    ``_to_string_fast`` suffix. Two different enums that flatten to the
    same name get ``_2``, ``_3``... in render order.
    """
    names: list[str] = []
    seen: dict[str, int] = {}
    for descriptor in descriptors:
        base = f"{descriptor.qualified_name.replace('.', '_')}_{DISPATCH_FUNCTION}"
        count = seen.get(base, 0) + 1
        seen[base] = count
        names.append(base if count == 1 else f"{base}_{count}")
    return names


def assign_module_aliases(descriptors: Sequence[EnumDescriptor]) -> dict[str, str]:
    """Map each distinct enum module, sorted, to ``_module_0``, ``_module_1``...

    Generated code imports user modules only under these aliases, so no
    user package name can shadow ``singledispatch``, ``str`` or the
    generated functions.
    """
    modules = sorted({descriptor.module for descriptor in descriptors})
    return {module: f"_module_{index}" for index, module in enumerate(modules)}


def format_mapping_function(
    descriptor: EnumDescriptor, function_name: str, module_alias: str
) -> list[str]:
    """Return the source lines of one enum's lookup function.

    Output format (for ``app.models.Color`` with members Red, Blue, and
    app.models imported as ``_module_0``):
        @to_string_fast.register(_module_0.Color)
        def app_models_Color_to_string_fast(value: _module_0.Color) -> str:
            if value == _module_0.Color.Red:
                return "Red"
            if value == _module_0.Color.Blue:
                return "Blue"
            return str(value)

    Clauses follow declared member order and compare by value, so raw
    values equal to a member map to that member's name. Anything else
    falls through to ``str(value)``.
    """
    enum_ref = module_alias + descriptor.qualified_name[len(descriptor.module):]
    lines = [
        f"@{DISPATCH_FUNCTION}.register({enum_ref})",
        f"def {function_name}(value: {enum_ref}) -> str:",
    ]
    for member in descriptor.members:
        lines.append(f"    if value == {enum_ref}.{member}:")
        lines.append(f'        return "{member}"')
    lines.append("    return str(value)")
    return lines


def render_enum_extensions(descriptors: Sequence[EnumDescriptor]) -> str:
    """Render the aggregate ``extensions.py`` unit for a run.

    File structure:
        <header_comment_block>
        <module docstring>
                                    <- blank line
        from functools import singledispatch
                                    <- blank line
        import <module> as _module_N  <- one per distinct enum module, sorted
                                    <- blank line
        __all__ = [...]             <- dispatcher then per-enum functions
                                    <- two blank lines
        <to_string_fast dispatcher>
        <one lookup function per descriptor, two blank lines apart>

    Pure function: identical descriptors always give byte-identical text.

    Args:
        descriptors: Non-empty sequence of descriptors in render order.

    Returns:
        Complete Python source string including trailing newline.

    Raises:
        ValueError: If descriptors is empty. Callers skip synthesis when
            there is nothing to generate.
    """
    if not descriptors:
        raise ValueError("render_enum_extensions requires at least one descriptor")

    function_names = assign_function_names(descriptors)
    aliases = assign_module_aliases(descriptors)

    parts: list[str] = list(format_file_header("Fast enum member-name lookups"))
    parts.append('"""Member-name lookups for enums marked with @enum_extensions."""')
    parts.append("")
    parts.append("from functools import singledispatch")
    parts.append("")
    parts.extend(f"import {module} as {alias}" for module, alias in aliases.items())
    parts.append("")
    parts.append("__all__ = [")
    parts.extend(f'    "{name}",' for name in (DISPATCH_FUNCTION, *function_names))
    parts.append("]")
    parts.append("")
    parts.append("")
    parts.append("@singledispatch")
    parts.append(f"def {DISPATCH_FUNCTION}(value) -> str:")
    parts.append('    """Return the member name of a registered enum value."""')
    parts.append("    return str(value)")

    for descriptor, function_name in zip(descriptors, function_names):
        parts.append("")
        parts.append("")
        parts.extend(
            format_mapping_function(descriptor, function_name, aliases[descriptor.module])
        )

    return "\n".join(parts) + "\n"


def render_marker_source() -> str:
    """Render the ``__init__.py`` unit that defines the marker decorator."""
    parts: list[str] = list(format_file_header("enumgen marker package"))
    parts.extend(
        [
            '"""Marker decorator recognized by enumgen."""',
            "",
            f'__all__ = ["{MARKER_NAME}"]',
            "",
            "",
            f"def {MARKER_NAME}(cls):",
            '    """Mark an enum class for fast member-name lookup generation."""',
            "    return cls",
        ]
    )
    return "\n".join(parts) + "\n"


MARKER_DEFINITION_SOURCE: str = render_marker_source()


# ===--- Pipeline driver ---=== #


def run_generation(
    host: SemanticHost,
    cancellation: Cancellation | None = None,
    render: Callable[[tuple[EnumDescriptor, ...]], str] = render_enum_extensions,
) -> GenerationResult:
    """Run filter -> resolve -> extract -> synthesize over one source set.

    The marker unit is always emitted. The aggregate unit is emitted only
    when at least one descriptor was extracted. A cancelled run returns
    the marker unit alone with cancelled=True.

    Args:
        host: Semantic query capability for the source set.
        cancellation: Polled between per-item steps. None never cancels.
        render: Synthesizer for the aggregate unit. Sessions pass a
            memoizing wrapper around render_enum_extensions.

    Returns:
        GenerationResult for the run.
    """
    marker_unit = GeneratedUnit(tag=MARKER_UNIT_TAG, text=MARKER_DEFINITION_SOURCE)
    try:
        targets = collect_generation_targets(host, cancellation)
        descriptors = tuple(extract_enum_descriptors(host, targets, cancellation))
        _check_cancelled(cancellation)
    except GenerationCancelled:
        logger.debug("Generation cancelled before synthesis")
        return GenerationResult(units=(marker_unit,), descriptors=(), cancelled=True)

    if not descriptors:
        return GenerationResult(units=(marker_unit,), descriptors=())

    extensions_unit = GeneratedUnit(tag=EXTENSIONS_UNIT_TAG, text=render(descriptors))
    return GenerationResult(units=(marker_unit, extensions_unit), descriptors=descriptors)


# ===--- Python source host ---=== #


@dataclass(frozen=True)
class SourceFile:
    """One Python file of the source set.

    Attributes:
        path: Root-prefixed POSIX path, e.g. "src/app/models.py". Part of
            every DeclarationKey from this file.
        module: Dotted module name, e.g. "app.models".
        is_package: True for ``__init__.py`` files (affects relative imports).
        text: Full file contents.
    """

    path: str
    module: str
    is_package: bool
    text: str


def module_name_for(relative: Path) -> str | None:
    """Map a root-relative ``.py`` path to its dotted module name.

    Returns None when a path segment is not a Python identifier or is a
    keyword (such a file cannot be imported by generated code).
    """
    parts = list(relative.with_suffix("").parts)
    if parts and parts[-1] == "__init__":
        parts = parts[:-1]
    if not parts:
        return None
    if not all(part.isidentifier() and not keyword.iskeyword(part) for part in parts):
        return None
    return ".".join(parts)


def read_source_text(path: Path) -> str:
    """Decode a Python file the way the interpreter would.

    Honors a UTF-8 BOM and a PEP 263 coding cookie; the BOM is stripped.

    Raises:
        SyntaxError: On a malformed or unknown coding cookie.
        UnicodeError: When the bytes do not match the encoding.
        OSError: Propagated when the file cannot be read.
    """
    data = path.read_bytes()
    encoding, _ = tokenize.detect_encoding(io.BytesIO(data).readline)
    return data.decode(encoding)


def _is_generated_module(module: str) -> bool:
    return module == GENERATED_NAMESPACE or module.startswith(f"{GENERATED_NAMESPACE}.")


def discover_source_files(
    roots: Sequence[Path], exclude: Sequence[str] = ()
) -> tuple[SourceFile, ...]:
    """Load every importable ``*.py`` file under the given roots.

    Roots are visited in the order given and files within a root in sorted
    path order. Skipped: files matching an exclude glob (matched against
    the root-relative POSIX path), files with a non-identifier path
    segment, undecodable files, and the generated package itself.

    Raises:
        OSError: Propagated when a file cannot be read.
    """
    files: list[SourceFile] = []
    for root in roots:
        root = Path(root)
        for path in sorted(root.rglob("*.py")):
            relative = path.relative_to(root)
            relative_text = relative.as_posix()
            if any(fnmatch.fnmatch(relative_text, pattern) for pattern in exclude):
                logger.debug(f"Excluded {relative_text}")
                continue
            module = module_name_for(relative)
            if module is None:
                logger.debug(f"Skipping {relative_text}: not an importable module path")
                continue
            if _is_generated_module(module):
                continue
            try:
                text = read_source_text(path)
            except (SyntaxError, LookupError, UnicodeError) as err:
                logger.warning(f"Skipping {path.as_posix()}: {err}")
                continue
            files.append(
                SourceFile(
                    path=path.as_posix(),
                    module=module,
                    is_package=relative.name == "__init__.py",
                    text=text,
                )
            )
    return tuple(files)


def source_fingerprint(files: Iterable[SourceFile]) -> str:
    """SHA-256 over the paths and contents of a source set."""
    digest = hashlib.sha256()
    for source in files:
        digest.update(source.path.encode("utf-8"))
        digest.update(b"\0")
        digest.update(source.text.encode("utf-8"))
        digest.update(b"\0")
    return digest.hexdigest()


class ParseCache:
    """Parsed module trees keyed by the SHA-256 of their source text.

    Files that fail to parse are cached as None so an unchanged broken file
    is neither re-parsed nor re-reported.
    """

    def __init__(self) -> None:
        self._trees: dict[str, ast.Module | None] = {}
        self.stats = {"hits": 0, "misses": 0}

    def __len__(self) -> int:
        return len(self._trees)

    @staticmethod
    def content_key(text: str) -> str:
        return hashlib.sha256(text.encode("utf-8")).hexdigest()

    def parse(self, source: SourceFile) -> ast.Module | None:
        key = self.content_key(source.text)
        if key in self._trees:
            self.stats["hits"] += 1
            return self._trees[key]

        self.stats["misses"] += 1
        try:
            tree: ast.Module | None = ast.parse(source.text, filename=source.path)
        except (SyntaxError, ValueError) as err:
            logger.warning(f"Skipping {source.path}: {err}")
            tree = None
        except (RecursionError, MemoryError) as err:
            logger.warning(f"Skipping {source.path}: too deeply nested to parse ({err})")
            tree = None
        self._trees[key] = tree
        return tree

    def retain(self, files: Iterable[SourceFile]) -> None:
        """Drop cached trees whose content no longer appears in files."""
        live = {self.content_key(source.text) for source in files}
        self._trees = {key: tree for key, tree in self._trees.items() if key in live}


@dataclass(frozen=True)
class ClassDeclaration:
    """A class statement found at module level or nested in a class.

    Implements the SyntaxNode protocol. Equality and hashing use the key
    and names only; the AST node is carried along for later queries.
    """

    key: DeclarationKey
    module: str
    qualname: str
    kind: str
    node: ast.ClassDef = field(compare=False, repr=False)

    @property
    def annotations(self) -> tuple[ast.expr, ...]:
        return tuple(self.node.decorator_list)


@dataclass(frozen=True)
class EnumMember:
    """One statement-level member of an enum class body."""

    name: str
    is_constant_field: bool


@dataclass(frozen=True)
class EnumTypeSymbol:
    """Implements the TypeSymbol protocol for a Python enum class."""

    qualified_name: str
    module: str
    qualname: str
    members: tuple[EnumMember, ...]


def _dotted_name(expr: ast.expr) -> str | None:
    attrs: list[str] = []
    while isinstance(expr, ast.Attribute):
        attrs.append(expr.attr)
        expr = expr.value
    if not isinstance(expr, ast.Name):
        return None
    return ".".join([expr.id, *reversed(attrs)])


def _terminal_name(expr: ast.expr) -> str | None:
    if isinstance(expr, ast.Call):
        expr = expr.func
    if isinstance(expr, ast.Name):
        return expr.id
    if isinstance(expr, ast.Attribute):
        return expr.attr
    return None


def classify_class_kind(node: ast.ClassDef) -> str:
    """Structural guess at whether a class statement declares an enum.

    Looks only at the last identifier of each base expression. Confirmed
    semantically later by PythonProgram.resolve_declared_type.
    """
    for base in node.bases:
        name = _terminal_name(base)
        if name is None:
            continue
        if name in ENUM_BASE_NAMES or name.endswith(("Enum", "Flag")):
            return ENUM_KIND
    return CLASS_KIND


def _iter_block_statements(body: Iterable[ast.stmt]) -> Iterator[ast.stmt]:
    """Yield statements of a block, descending into if/try branches."""
    for stmt in body:
        yield stmt
        if isinstance(stmt, ast.If):
            yield from _iter_block_statements(stmt.body)
            yield from _iter_block_statements(stmt.orelse)
        elif isinstance(stmt, (ast.Try, ast.TryStar)):
            yield from _iter_block_statements(stmt.body)
            for handler in stmt.handlers:
                yield from _iter_block_statements(handler.body)
            yield from _iter_block_statements(stmt.orelse)
            yield from _iter_block_statements(stmt.finalbody)


def _target_names(target: ast.expr) -> list[str]:
    if isinstance(target, ast.Name):
        return [target.id]
    if isinstance(target, (ast.Tuple, ast.List)):
        names: list[str] = []
        for element in target.elts:
            names.extend(_target_names(element))
        return names
    return []


def resolve_from_module(source: SourceFile, level: int, module: str | None) -> str | None:
    """Absolute module named by a ``from ... import`` inside source.

    Returns None when a relative import climbs above the top package.
    """
    if level == 0:
        return module
    package_parts = source.module.split(".")
    if not source.is_package:
        package_parts = package_parts[:-1]
    climb = level - 1
    if climb > len(package_parts):
        return None
    parts = package_parts[: len(package_parts) - climb]
    if module:
        parts.extend(module.split("."))
    return ".".join(parts) or None


def build_module_bindings(source: SourceFile, tree: ast.Module) -> dict[str, str]:
    """Map each module-level name to the fully qualified name it refers to.

    Covers plain, aliased, ``from`` and relative imports plus module-level
    definitions, in statement order so later bindings win. Star imports
    bind nothing.
    """
    bindings: dict[str, str] = {}
    for stmt in _iter_block_statements(tree.body):
        if isinstance(stmt, ast.Import):
            for alias in stmt.names:
                if alias.asname:
                    bindings[alias.asname] = alias.name
                else:
                    head = alias.name.split(".")[0]
                    bindings[head] = head
        elif isinstance(stmt, ast.ImportFrom):
            base = resolve_from_module(source, stmt.level, stmt.module)
            if base is None:
                continue
            for alias in stmt.names:
                if alias.name == "*":
                    continue
                bindings[alias.asname or alias.name] = f"{base}.{alias.name}"
        elif isinstance(stmt, (ast.ClassDef, ast.FunctionDef, ast.AsyncFunctionDef)):
            bindings[stmt.name] = f"{source.module}.{stmt.name}"
        elif isinstance(stmt, ast.Assign):
            for target in stmt.targets:
                for name in _target_names(target):
                    bindings[name] = f"{source.module}.{name}"
        elif isinstance(stmt, ast.AnnAssign) and isinstance(stmt.target, ast.Name):
            bindings[stmt.target.id] = f"{source.module}.{stmt.target.id}"
    return bindings


def _collect_class_declarations(
    source: SourceFile, body: Iterable[ast.stmt], prefix: str = ""
) -> Iterator[ClassDeclaration]:
    for stmt in _iter_block_statements(body):
        if not isinstance(stmt, ast.ClassDef):
            continue
        qualname = f"{prefix}.{stmt.name}" if prefix else stmt.name
        yield ClassDeclaration(
            key=DeclarationKey(source.path, stmt.lineno, stmt.col_offset, qualname),
            module=source.module,
            qualname=qualname,
            kind=classify_class_kind(stmt),
            node=stmt,
        )
        yield from _collect_class_declarations(source, stmt.body, qualname)


def _ignored_names(node: ast.ClassDef) -> frozenset[str]:
    """Names listed in an enum's ``_ignore_`` attribute."""
    for stmt in node.body:
        if not isinstance(stmt, ast.Assign):
            continue
        if not any(isinstance(t, ast.Name) and t.id == "_ignore_" for t in stmt.targets):
            continue
        value = stmt.value
        if isinstance(value, ast.Constant) and isinstance(value.value, str):
            return frozenset(value.value.replace(",", " ").split())
        if isinstance(value, (ast.List, ast.Tuple)):
            return frozenset(
                element.value
                for element in value.elts
                if isinstance(element, ast.Constant) and isinstance(element.value, str)
            )
    return frozenset()


def is_member_name(name: str, ignored: frozenset[str] = frozenset()) -> bool:
    """Whether the enum machinery would turn an assignment to name into a member."""
    if name in ignored:
        return False
    if name.startswith("__") and name.endswith("__"):
        return False
    if len(name) > 2 and name.startswith("_") and name.endswith("_"):
        return False
    if name.startswith("__"):
        return False
    return True


def is_member_value(value: ast.expr) -> bool:
    if isinstance(value, ast.Lambda):
        return False
    if isinstance(value, ast.Call) and _terminal_name(value.func) in NON_MEMBER_WRAPPERS:
        return False
    return True


def iter_enum_members(node: ast.ClassDef) -> Iterator[EnumMember]:
    """Yield every named statement of an enum body in declaration order.

    Assignments (plain, annotated with a value, chained and unpacking)
    yield members flagged by is_member_name and is_member_value. Methods,
    nested classes and bare annotations are yielded as non-members.
    """
    ignored = _ignored_names(node)
    for stmt in node.body:
        if isinstance(stmt, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
            yield EnumMember(stmt.name, is_constant_field=False)
        elif isinstance(stmt, ast.Assign):
            value_ok = is_member_value(stmt.value)
            for target in stmt.targets:
                for name in _target_names(target):
                    yield EnumMember(name, value_ok and is_member_name(name, ignored))
        elif isinstance(stmt, ast.AnnAssign) and isinstance(stmt.target, ast.Name):
            name = stmt.target.id
            if stmt.value is None:
                yield EnumMember(name, is_constant_field=False)
            else:
                yield EnumMember(
                    name, is_member_value(stmt.value) and is_member_name(name, ignored)
                )


@dataclass
class _ModuleIndex:
    source: SourceFile
    bindings: dict[str, str]
    declarations: tuple[ClassDeclaration, ...]
    classes: dict[str, ast.ClassDef]


class PythonProgram:
    """SemanticHost over a set of Python source files.

    Every file is parsed (through parse_cache when given) and indexed on
    construction. Files that fail to parse contribute no declarations. When
    two roots provide the same module name, the first one wins.

    Indexing also settles each declaration's kind: a class is reported as
    an enum when its bases look like one or resolve, through any chain of
    in-program classes, to an ``enum`` base.
    """

    def __init__(
        self, files: Iterable[SourceFile], parse_cache: ParseCache | None = None
    ) -> None:
        self.parse_cache = ParseCache() if parse_cache is None else parse_cache
        self._modules: dict[str, _ModuleIndex] = {}
        self._enum_memo: dict[str, bool] = {}
        for source in files:
            if source.module in self._modules:
                logger.debug(f"Skipping {source.path}: module {source.module} already loaded")
                continue
            tree = self.parse_cache.parse(source)
            if tree is None:
                continue
            try:
                declarations = tuple(_collect_class_declarations(source, tree.body))
                bindings = build_module_bindings(source, tree)
            except RecursionError:
                logger.warning(f"Skipping {source.path}: too deeply nested to index")
                continue
            self._modules[source.module] = _ModuleIndex(
                source=source,
                bindings=bindings,
                declarations=declarations,
                classes={d.qualname: d.node for d in declarations},
            )
        for module_index in self._modules.values():
            module_index.declarations = tuple(
                self._classify(declaration) for declaration in module_index.declarations
            )

    def _classify(self, declaration: ClassDeclaration) -> ClassDeclaration:
        if declaration.kind == ENUM_KIND or not declaration.node.bases:
            return declaration
        try:
            is_enum = self._is_enum_class(declaration.module, declaration.qualname)
        except (ResolutionError, RecursionError) as err:
            logger.debug(f"Cannot classify {declaration.qualname}: {err!r}")
            return declaration
        return replace(declaration, kind=ENUM_KIND) if is_enum else declaration

    @property
    def modules(self) -> tuple[str, ...]:
        return tuple(self._modules)

    def enumerate_syntax_nodes(self) -> Iterator[ClassDeclaration]:
        for index in self._modules.values():
            yield from index.declarations

    def resolve_annotation_type(self, node: ClassDeclaration, index: int) -> str | None:
        module_index = self._modules.get(node.module)
        if module_index is None or not 0 <= index < len(node.annotations):
            return None
        dotted = _dotted_name(_call_target(node.annotations[index]))
        if dotted is None:
            return None
        resolved = self._resolve_dotted(module_index, dotted)
        return None if resolved is None else self.canonical_name(resolved)

    def resolve_declared_type(self, node: ClassDeclaration) -> EnumTypeSymbol | None:
        """Confirm node is an enum and collect its members.

        Raises:
            ResolutionError: On an inheritance cycle, or when the class is
                nested too deeply to analyse.
        """
        module_index = self._modules.get(node.module)
        if module_index is None or node.qualname not in module_index.classes:
            return None
        try:
            if not self._is_enum_class(node.module, node.qualname):
                return None
            members = tuple(iter_enum_members(module_index.classes[node.qualname]))
        except RecursionError as err:
            raise ResolutionError(f"{node.qualname} is nested too deeply") from err
        return EnumTypeSymbol(
            qualified_name=f"{node.module}.{node.qualname}",
            module=node.module,
            qualname=node.qualname,
            members=members,
        )

    def canonical_name(self, qualified: str) -> str:
        """Follow in-program re-exports until reaching a defining module.

        ``app.markers.enum_extensions`` becomes
        ``enum_generators.enum_extensions`` when app/markers.py imports it
        from there.

        Raises:
            ResolutionError: On an import cycle.
        """
        seen: set[str] = set()
        while qualified not in seen:
            seen.add(qualified)
            split = self._split_module_prefix(qualified)
            if split is None:
                return qualified
            module, rest = split
            head, _, tail = rest.partition(".")
            target = self._modules[module].bindings.get(head)
            if target is None or target == f"{module}.{head}":
                return qualified
            qualified = f"{target}.{tail}" if tail else target
        raise ResolutionError(f"Import cycle while resolving {qualified}")

    def _split_module_prefix(self, qualified: str) -> tuple[str, str] | None:
        parts = qualified.split(".")
        for end in range(len(parts) - 1, 0, -1):
            module = ".".join(parts[:end])
            if module in self._modules:
                return module, ".".join(parts[end:])
        return None

    def _resolve_dotted(self, module_index: _ModuleIndex, dotted: str) -> str | None:
        head, _, rest = dotted.partition(".")
        target = module_index.bindings.get(head)
        if target is None:
            if not hasattr(builtins, head):
                return None
            target = f"builtins.{head}"
        return f"{target}.{rest}" if rest else target

    def _resolve_base(self, module: str, qualname: str, base: ast.expr) -> str | None:
        dotted = _dotted_name(base)
        if dotted is None:
            return None
        module_index = self._modules[module]
        # Names in a class body also see classes declared earlier in the
        # enclosing class body.
        outer, _, _ = qualname.rpartition(".")
        head, _, rest = dotted.partition(".")
        if outer and f"{outer}.{head}" in module_index.classes:
            local = f"{module}.{outer}.{head}"
            return f"{local}.{rest}" if rest else local
        resolved = self._resolve_dotted(module_index, dotted)
        return None if resolved is None else self.canonical_name(resolved)

    def _is_enum_class(
        self, module: str, qualname: str, visiting: set[str] | None = None
    ) -> bool:
        full_name = f"{module}.{qualname}"
        if full_name in self._enum_memo:
            return self._enum_memo[full_name]
        visiting = set() if visiting is None else visiting
        if full_name in visiting:
            raise ResolutionError(f"Inheritance cycle through {full_name}")
        visiting.add(full_name)
        try:
            is_enum = self._has_enum_base(module, qualname, visiting)
        finally:
            visiting.discard(full_name)
        self._enum_memo[full_name] = is_enum
        return is_enum

    def _has_enum_base(self, module: str, qualname: str, visiting: set[str]) -> bool:
        class_node = self._modules[module].classes[qualname]
        for base in class_node.bases:
            resolved = self._resolve_base(module, qualname, base)
            if resolved is None:
                continue
            if resolved in ENUM_BASE_QUALNAMES:
                return True
            split = self._split_module_prefix(resolved)
            if split is None:
                continue
            base_module, base_qualname = split
            if base_qualname not in self._modules[base_module].classes:
                continue
            if self._is_enum_class(base_module, base_qualname, visiting):
                return True
        return False


def _call_target(expr: ast.expr) -> ast.expr:
    return expr.func if isinstance(expr, ast.Call) else expr


# ===--- Incremental session ---=== #


class GenerationSession:
    """Reusable generator state for repeated runs over the same roots.

    Keeps a ParseCache (unchanged files are not re-parsed) and the last
    rendered aggregate text keyed by its descriptors (an unchanged fact set
    is not re-rendered). Results are identical to a fresh run_generation.

    Usage:
        session = GenerationSession([Path("src")])
        result = session.run()
        ...edit files...
        result = session.run()   # reparses only the edited files
    """

    def __init__(self, source_roots: Sequence[Path], exclude: Sequence[str] = ()):
        self.source_roots = tuple(Path(root) for root in source_roots)
        self.exclude = tuple(exclude)
        self.parse_cache = ParseCache()
        self._render_cache: dict[tuple[EnumDescriptor, ...], str] = {}
        self.stats = {"runs": 0, "renders": 0}

    def discover(self) -> tuple[SourceFile, ...]:
        return discover_source_files(self.source_roots, self.exclude)

    def render(self, descriptors: tuple[EnumDescriptor, ...]) -> str:
        text = self._render_cache.get(descriptors)
        if text is None:
            text = render_enum_extensions(descriptors)
            self.stats["renders"] += 1
            self._render_cache = {descriptors: text}
        return text

    def run(
        self,
        cancellation: Cancellation | None = None,
        files: tuple[SourceFile, ...] | None = None,
    ) -> GenerationResult:
        if files is None:
            files = self.discover()
        self.parse_cache.retain(files)
        program = PythonProgram(files, parse_cache=self.parse_cache)
        self.stats["runs"] += 1
        return run_generation(program, cancellation, render=self.render)


# ===--- Package writer ---=== #

STATUS_WRITTEN: str = "written"
STATUS_UNCHANGED: str = "unchanged"
STATUS_REMOVED: str = "removed"


@dataclass(frozen=True)
class FileWriteResult:
    """Result of writing (or removing) a single generated file.

    Attributes:
        filename: Unit tag, e.g. "extensions.py".
        path: Absolute path of the file.
        line_count: Newline characters in the content; 0 when removed.
        byte_count: UTF-8 bytes of the content; 0 when removed.
        status: STATUS_WRITTEN, STATUS_UNCHANGED or STATUS_REMOVED.
    """

    filename: str
    path: Path
    line_count: int
    byte_count: int
    status: str


@dataclass(frozen=True)
class PackageWriteResult:
    """Result of writing the generated package.

    files is ordered: emitted units in UNIT_ORDER, then removals.
    """

    output_dir: Path
    files: tuple[FileWriteResult, ...]

    @property
    def total_lines(self) -> int:
        return sum(f.line_count for f in self.files)

    @property
    def changed(self) -> bool:
        return any(f.status != STATUS_UNCHANGED for f in self.files)


def package_dir(output_dir: Path) -> Path:
    return Path(output_dir) / GENERATED_NAMESPACE


def _ordered_units(units: Iterable[GeneratedUnit]) -> list[GeneratedUnit]:
    ordered = list(units)
    for unit in ordered:
        if unit.tag not in UNIT_ORDER:
            raise ValueError(f"Unknown unit tag: {unit.tag!r}")
    return sorted(ordered, key=lambda unit: UNIT_ORDER.index(unit.tag))


def write_unit(output_dir: Path, unit: GeneratedUnit) -> FileWriteResult:
    """Write one unit under ``<output_dir>/enum_generators/``.

    The file is only rewritten when its bytes differ, so unchanged output
    keeps its modification time.

    Raises:
        ValueError: If unit.tag is not a known unit tag.
        OSError: Propagated directly if the filesystem write fails.
    """
    if unit.tag not in UNIT_ORDER:
        raise ValueError(f"Unknown unit tag: {unit.tag!r}")
    target_dir = package_dir(output_dir)
    target_dir.mkdir(parents=True, exist_ok=True)
    file_path = target_dir / unit.tag
    data = unit.text.encode("utf-8")

    if file_path.is_file() and file_path.read_bytes() == data:
        status = STATUS_UNCHANGED
    else:
        file_path.write_bytes(data)
        status = STATUS_WRITTEN

    return FileWriteResult(
        filename=unit.tag,
        path=file_path.resolve(),
        line_count=unit.text.count("\n"),
        byte_count=len(data),
        status=status,
    )


def write_units(output_dir: Path, units: Iterable[GeneratedUnit]) -> PackageWriteResult:
    """Write every emitted unit and remove known units that were not emitted.

    Each emitted unit replaces its file in full. A leftover
    ``extensions.py`` from an earlier run is deleted when the current run
    has nothing to generate. No rollback on partial failure.

    Raises:
        ValueError: If any unit has an unknown tag (checked before writing).
        OSError: Propagated directly from any write or delete failure.
    """
    ordered = _ordered_units(units)
    emitted = {unit.tag for unit in ordered}
    files = [write_unit(output_dir, unit) for unit in ordered]

    for tag in UNIT_ORDER:
        if tag in emitted:
            continue
        stale = package_dir(output_dir) / tag
        if stale.is_file():
            stale.unlink()
            files.append(
                FileWriteResult(
                    filename=tag,
                    path=stale.resolve(),
                    line_count=0,
                    byte_count=0,
                    status=STATUS_REMOVED,
                )
            )

    return PackageWriteResult(output_dir=Path(output_dir), files=tuple(files))


def check_units(output_dir: Path, units: Iterable[GeneratedUnit]) -> tuple[str, ...]:
    """Return the tags of generated files that are missing, differ, or stale.

    Nothing is written. An empty tuple means the package is up to date.
    """
    ordered = _ordered_units(units)
    expected = {unit.tag: unit.text.encode("utf-8") for unit in ordered}
    out_of_date: list[str] = []
    for tag in UNIT_ORDER:
        path = package_dir(output_dir) / tag
        if tag in expected:
            if not path.is_file() or path.read_bytes() != expected[tag]:
                out_of_date.append(tag)
        elif path.is_file():
            out_of_date.append(tag)
    return tuple(out_of_date)


# ===--- Summary report ---=== #


@dataclass(frozen=True)
class EnumRow:
    qualified_name: str
    member_count: int


@dataclass(frozen=True)
class GenerationSummary:
    """Immutable data for the post-generation console report.

    Attributes:
        source_label: Comma-separated source roots as given.
        output_dir: Generated package directory as a string.
        enums: One row per generated lookup function, in render order.
        files: Ordered write results from PackageWriteResult.files.
    """

    source_label: str
    output_dir: str
    enums: tuple[EnumRow, ...]
    files: tuple[FileWriteResult, ...]

    @property
    def member_total(self) -> int:
        return sum(row.member_count for row in self.enums)


def build_source_label(source_roots: Sequence[Path]) -> str:
    return ", ".join(Path(root).as_posix() for root in source_roots)


def build_generation_summary(
    config: GenerateConfig,
    result: GenerationResult,
    write_result: PackageWriteResult,
) -> GenerationSummary:
    return GenerationSummary(
        source_label=build_source_label(config.source_roots),
        output_dir=package_dir(write_result.output_dir).as_posix(),
        enums=tuple(
            EnumRow(d.qualified_name, len(d.members)) for d in result.descriptors
        ),
        files=write_result.files,
    )


def format_generation_summary(summary: GenerationSummary) -> str:
    """Render a GenerationSummary to a multi-section console string.

    Returns a string with exactly one trailing newline.
    """
    lines: list[str] = []
    lines.append("Enum extensions generated:")
    lines.append("")
    lines.append(f"  Sources:    {summary.source_label}")
    lines.append(f"  Output:     {summary.output_dir}")
    lines.append(f"  Enums:      {len(summary.enums)} ({summary.member_total} members)")
    lines.append("")

    if summary.enums:
        lines.append("  Lookups generated:")
        for row in summary.enums:
            noun = "member" if row.member_count == 1 else "members"
            lines.append(f"    {row.qualified_name:<40} {row.member_count:>4} {noun}")
    else:
        lines.append(f"  No enums marked with @{MARKER_NAME} were found.")

    lines.append("")
    lines.append("  Files:")
    for file_result in summary.files:
        line_str = f"{file_result.line_count:>6,} lines"
        lines.append(f"    {file_result.filename:<16} {line_str}  {file_result.status}")

    total_lines = sum(f.line_count for f in summary.files)
    lines.append("")
    lines.append(f"  Total: {total_lines:,} lines across {len(summary.files)} files")
    lines.append("")

    return "\n".join(lines)


def print_generation_summary(summary: GenerationSummary) -> None:
    print(format_generation_summary(summary), end="")


def format_enum_table(descriptors: Sequence[EnumDescriptor]) -> str:
    """Render the ``--list`` table of marked enums.

    Output format:
        Marked enums: 2

          app.models.Color                         Red, Blue
          app.status.Status                        ACTIVE, INACTIVE

    Enums without members show ``(no members)``.
    """
    lines = [f"Marked enums: {len(descriptors)}"]
    if descriptors:
        lines.append("")
    for descriptor in descriptors:
        members = ", ".join(descriptor.members) or "(no members)"
        lines.append(f"  {descriptor.qualified_name:<40} {members}")
    return "\n".join(lines) + "\n"


# ===--- Commands ---=== #


def _run_cancellation(timeout: float | None) -> Cancellation | None:
    return None if timeout is None else DeadlineCancellation(timeout)


def run_discovery(config: DiscoveryConfig) -> None:
    """Print the marked enums found under the source roots. Writes nothing."""
    session = GenerationSession(config.source_roots, config.exclude)
    result = session.run()
    print(format_enum_table(result.descriptors), end="")


def run_generate(config: GenerateConfig) -> PackageWriteResult:
    """Run the pipeline once, write the package and print the summary.

    Raises:
        SystemExit(3): When the run exceeded config.timeout. Nothing is
            written in that case.
        OSError: Propagated from discovery or writing.
    """
    print(f"Scanning: {build_source_label(config.source_roots)}")
    session = GenerationSession(config.source_roots, config.exclude)
    result = session.run(_run_cancellation(config.timeout))
    if result.cancelled:
        print(f"Error: generation exceeded --timeout {config.timeout:g}s; nothing written")
        raise SystemExit(EXIT_CANCELLED)
    print(f"  Found: {len(result.descriptors)} marked enums")

    write_result = write_units(config.output_dir, result.units)
    summary = build_generation_summary(config, result, write_result)
    print_generation_summary(summary)
    return write_result


def run_check(config: GenerateConfig) -> None:
    """Compare the generated package against a fresh run without writing.

    Raises:
        SystemExit(1): When any generated file is missing, differs or is stale.
        SystemExit(3): When the run exceeded config.timeout.
    """
    session = GenerationSession(config.source_roots, config.exclude)
    result = session.run(_run_cancellation(config.timeout))
    if result.cancelled:
        print(f"Error: check exceeded --timeout {config.timeout:g}s")
        raise SystemExit(EXIT_CANCELLED)

    out_of_date = check_units(config.output_dir, result.units)
    target = package_dir(config.output_dir).as_posix()
    if out_of_date:
        print(f"Out of date: {target}")
        for tag in out_of_date:
            print(f"  {tag}")
        print("Hint: rerun enumgen without --check to regenerate.")
        raise SystemExit(EXIT_STALE)
    print(f"Up to date: {target} ({len(result.descriptors)} enums)")


def run_watch(
    config: GenerateConfig,
    sleep: Callable[[float], None] = time.sleep,
    max_cycles: int | None = None,
) -> int:
    """Regenerate whenever the source set changes until interrupted.

    Ctrl-C flips a CancellationToken instead of raising, so an in-flight
    run is abandoned cleanly and nothing partial is written. A cancelled or
    timed-out run is retried on the next cycle.

    Args:
        config: Validated GenerateConfig with mode == MODE_WATCH.
        sleep: Called with config.interval between polls.
        max_cycles: Stop after this many polls. None polls until interrupted.

    Returns:
        Number of runs that wrote output.
    """
    session = GenerationSession(config.source_roots, config.exclude)
    stop = CancellationToken()
    previous_handler = signal.signal(signal.SIGINT, lambda signum, frame: stop.cancel())
    fingerprint: str | None = None
    cycles = 0
    writes = 0
    print(f"Watching: {build_source_label(config.source_roots)} (Ctrl-C to stop)")
    try:
        while not stop.is_requested and (max_cycles is None or cycles < max_cycles):
            cycles += 1
            files = session.discover()
            current = source_fingerprint(files)
            if current != fingerprint:
                cancellation = CompositeCancellation(stop, _run_cancellation(config.timeout))
                result = session.run(cancellation, files=files)
                if result.cancelled:
                    print("  Run cancelled; nothing written")
                else:
                    write_result = write_units(config.output_dir, result.units)
                    fingerprint = current
                    writes += 1
                    state = "updated" if write_result.changed else "unchanged"
                    print(f"  {len(result.descriptors)} enums, output {state}")
            if not stop.is_requested:
                sleep(config.interval)
    finally:
        signal.signal(signal.SIGINT, previous_handler)
    print("Stopped watching.")
    return writes


# ===--- Main generation ---=== #


def main(argv: list[str] | None = None):
    try:
        config = build_config(argv)
    except ConfigError as err:
        print(f"Config error [{err.code}]: {err.message}")
        if err.suggestion:
            print(f"Hint: {err.suggestion}")
        raise SystemExit(1) from err

    configure_logging(config.verbose)

    try:
        if isinstance(config, DiscoveryConfig):
            run_discovery(config)
        elif config.mode == MODE_CHECK:
            run_check(config)
        elif config.mode == MODE_WATCH:
            run_watch(config)
        else:
            run_generate(config)
    except OSError as err:
        print(f"Error: {err}")
        raise SystemExit(1) from err
    except ValueError as err:
        print(f"Internal error: {err}")
        raise SystemExit(1) from err


if __name__ == "__main__":
    main()
