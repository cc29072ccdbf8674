import pytest
from pathlib import Path
from unittest.mock import patch
from jxlbatch.infrastructure.housekeeping import HousekeepingService

def test_housekeeping_removes_only_given_empty_outputs(tmp_path):
    (tmp_path / "empty.jxl").write_bytes(b"")
    (tmp_path / "full.jxl").write_bytes(b"data")
    (tmp_path / "subdir").mkdir()
    (tmp_path / "subdir" / "nested.jxl").write_bytes(b"")
    (tmp_path / "unrelated.jxl").write_bytes(b"")

    service = HousekeepingService()
    removed = service.remove_empty_outputs([
        tmp_path / "empty.jxl",
        tmp_path / "full.jxl",
        tmp_path / "subdir" / "nested.jxl",
    ])

    assert removed == 2
    assert not (tmp_path / "empty.jxl").exists()
    assert (tmp_path / "full.jxl").exists()
    assert not (tmp_path / "subdir" / "nested.jxl").exists()
    assert (tmp_path / "unrelated.jxl").exists()

def test_housekeeping_ignores_missing_outputs(tmp_path):
    service = HousekeepingService()
    assert service.remove_empty_outputs([tmp_path / "never-written.jxl", tmp_path]) == 0
    assert service.remove_empty_outputs([]) == 0

def test_housekeeping_handles_oserror(tmp_path):
    f = tmp_path / "protected.jxl"
    f.write_bytes(b"")

    service = HousekeepingService()
    with patch.object(Path, 'unlink', side_effect=OSError("Permission denied")):
        # Should not raise exception
        assert service.remove_empty_outputs([f]) == 0
        assert f.exists()
