from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

import enumgen


def _require_callable(name: str) -> Callable[..., object]:
    symbol = getattr(enumgen, name, None)
    assert callable(symbol), f"Missing writer symbol: enumgen.{name}"
    return symbol


def _marker_unit() -> enumgen.GeneratedUnit:
    return enumgen.GeneratedUnit(
        tag=enumgen.MARKER_UNIT_TAG, text=enumgen.MARKER_DEFINITION_SOURCE
    )


def _extensions_unit(text: str = "# lookups\nX = 1\n") -> enumgen.GeneratedUnit:
    return enumgen.GeneratedUnit(tag=enumgen.EXTENSIONS_UNIT_TAG, text=text)


def test_t_01_write_unit_creates_package_dir_and_reports_counts(tmp_path: Path) -> None:
    write_unit = _require_callable("write_unit")
    output_dir = tmp_path / "nested" / "out"

    result = write_unit(output_dir, _extensions_unit("a\nb\n"))

    target = output_dir / "enum_generators" / "extensions.py"
    assert target.read_text(encoding="utf-8") == "a\nb\n"
    assert result.filename == "extensions.py"
    assert result.path == target.resolve()
    assert result.line_count == 2
    assert result.byte_count == 4
    assert result.status == enumgen.STATUS_WRITTEN


def test_t_02_write_unit_leaves_identical_file_untouched(tmp_path: Path) -> None:
    enumgen.write_unit(tmp_path, _extensions_unit())
    target = tmp_path / "enum_generators" / "extensions.py"
    before = target.stat().st_mtime_ns

    result = enumgen.write_unit(tmp_path, _extensions_unit())

    assert result.status == enumgen.STATUS_UNCHANGED
    assert target.stat().st_mtime_ns == before


def test_t_03_write_unit_replaces_changed_content_in_full(tmp_path: Path) -> None:
    enumgen.write_unit(tmp_path, _extensions_unit("old content that is longer\n"))

    result = enumgen.write_unit(tmp_path, _extensions_unit("new\n"))

    target = tmp_path / "enum_generators" / "extensions.py"
    assert target.read_text(encoding="utf-8") == "new\n"
    assert result.status == enumgen.STATUS_WRITTEN


def test_t_04_write_unit_rejects_unknown_tag(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="Unknown unit tag"):
        enumgen.write_unit(tmp_path, enumgen.GeneratedUnit(tag="other.py", text=""))

    assert not (tmp_path / "enum_generators").exists()


def test_t_05_write_units_orders_marker_first(tmp_path: Path) -> None:
    result = enumgen.write_units(tmp_path, [_extensions_unit(), _marker_unit()])

    assert [f.filename for f in result.files] == ["__init__.py", "extensions.py"]
    assert result.output_dir == tmp_path
    assert result.total_lines == sum(f.line_count for f in result.files)
    assert result.changed is True


def test_t_06_write_units_removes_stale_aggregate(tmp_path: Path) -> None:
    enumgen.write_units(tmp_path, [_marker_unit(), _extensions_unit()])

    result = enumgen.write_units(tmp_path, [_marker_unit()])

    assert not (tmp_path / "enum_generators" / "extensions.py").exists()
    assert [(f.filename, f.status) for f in result.files] == [
        ("__init__.py", enumgen.STATUS_UNCHANGED),
        ("extensions.py", enumgen.STATUS_REMOVED),
    ]
    assert result.files[1].line_count == 0


def test_t_07_write_units_validates_all_tags_before_writing(tmp_path: Path) -> None:
    units = [_marker_unit(), enumgen.GeneratedUnit(tag="bogus.py", text="")]

    with pytest.raises(ValueError):
        enumgen.write_units(tmp_path, units)

    assert not (tmp_path / "enum_generators").exists()


def test_t_08_write_units_leaves_unrelated_files_alone(tmp_path: Path) -> None:
    package = tmp_path / "enum_generators"
    package.mkdir()
    (package / "notes.txt").write_text("keep\n", encoding="utf-8")

    enumgen.write_units(tmp_path, [_marker_unit()])

    assert (package / "notes.txt").read_text(encoding="utf-8") == "keep\n"


def test_t_09_check_units_reports_missing_changed_and_stale(tmp_path: Path) -> None:
    check_units = _require_callable("check_units")
    units = [_marker_unit(), _extensions_unit()]

    assert check_units(tmp_path, units) == ("__init__.py", "extensions.py")

    enumgen.write_units(tmp_path, units)
    assert check_units(tmp_path, units) == ()

    changed = [_marker_unit(), _extensions_unit("# different\n")]
    assert check_units(tmp_path, changed) == ("extensions.py",)

    assert check_units(tmp_path, [_marker_unit()]) == ("extensions.py",)


def test_t_10_check_units_writes_nothing(tmp_path: Path) -> None:
    enumgen.check_units(tmp_path, [_marker_unit()])

    assert not (tmp_path / "enum_generators").exists()
