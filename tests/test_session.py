from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import enumgen


COLOR_SOURCE = """
from enum import Enum

from enum_generators import enum_extensions


@enum_extensions
class Color(Enum):
    Red = 0
    Blue = 1
"""

SHAPE_SOURCE = """
from enum import Enum


class Shape(Enum):
    Circle = 1
"""


def _tree(write_tree: Callable[..., Path]) -> Path:
    return write_tree(
        {
            "app/__init__.py": "",
            "app/colors.py": COLOR_SOURCE,
            "app/shapes.py": SHAPE_SOURCE,
        }
    )


def test_t_01_session_matches_fresh_run(write_tree: Callable[..., Path]) -> None:
    root = _tree(write_tree)
    session = enumgen.GenerationSession([root])

    cached = session.run()
    fresh = enumgen.run_generation(
        enumgen.PythonProgram(enumgen.discover_source_files([root]))
    )

    assert cached == fresh


def test_t_02_second_run_reuses_parse_and_render_caches(
    write_tree: Callable[..., Path],
) -> None:
    root = _tree(write_tree)
    session = enumgen.GenerationSession([root])

    first = session.run()
    misses_after_first = session.parse_cache.stats["misses"]
    second = session.run()

    assert first == second
    assert session.parse_cache.stats["misses"] == misses_after_first
    assert session.stats == {"runs": 2, "renders": 1}


def test_t_03_edited_file_is_reparsed_and_output_updated(
    write_tree: Callable[..., Path],
) -> None:
    root = _tree(write_tree)
    session = enumgen.GenerationSession([root])
    session.run()
    misses_before = session.parse_cache.stats["misses"]

    (root / "app" / "shapes.py").write_text(
        SHAPE_SOURCE.replace("class Shape", "@enum_extensions\nclass Shape").replace(
            "from enum import Enum",
            "from enum import Enum\nfrom enum_generators import enum_extensions",
        ),
        encoding="utf-8",
    )
    result = session.run()

    assert session.parse_cache.stats["misses"] == misses_before + 1
    assert [d.qualified_name for d in result.descriptors] == [
        "app.colors.Color",
        "app.shapes.Shape",
    ]
    assert session.stats["renders"] == 2


def test_t_04_cancelled_session_run_writes_no_aggregate(
    write_tree: Callable[..., Path],
) -> None:
    root = _tree(write_tree)
    token = enumgen.CancellationToken()
    token.cancel()

    result = enumgen.GenerationSession([root]).run(token)

    assert result.cancelled is True
    assert result.unit(enumgen.EXTENSIONS_UNIT_TAG) is None


def test_t_05_source_fingerprint_tracks_content(write_tree: Callable[..., Path]) -> None:
    root = _tree(write_tree)
    before = enumgen.source_fingerprint(enumgen.discover_source_files([root]))

    (root / "app" / "shapes.py").write_text(SHAPE_SOURCE + "\n# edit\n", encoding="utf-8")
    after = enumgen.source_fingerprint(enumgen.discover_source_files([root]))

    assert before != after
    assert after == enumgen.source_fingerprint(enumgen.discover_source_files([root]))
