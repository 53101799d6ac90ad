"""
Tests for heightmap export.
"""

import queue

import numpy as np
import pytest
from PIL import Image

from py_wgen.config import settings as app_settings
from py_wgen.core.errors import ExportError
from py_wgen.core.exporter import (
    ExportDone,
    ExportFileType,
    ExportSettings,
    ExportStepDone,
    ExportTask,
    export_heightmap,
    extract_tile,
    tile_origin,
    write_tile,
)
from py_wgen.core.steps import FbmConf, HillsConf, NormalizeConf, Step


class TestExportSettings:
    """Test tile geometry and naming."""

    def test_tile_path(self, tmp_path):
        settings = ExportSettings(export_dir=str(tmp_path), file_pattern="island", file_type=ExportFileType.TIFF)
        assert settings.tile_path(2, 3) == tmp_path / "island_x2_y3.tiff"

    def test_default_directory_comes_from_settings(self, tmp_path, monkeypatch):
        monkeypatch.setattr(app_settings, "export_dir", str(tmp_path))
        settings = ExportSettings()
        assert settings.export_dir == str(tmp_path)
        assert settings.tile_path(0, 0) == tmp_path / "wgen_x0_y0.png"

    def test_explicit_directory_wins(self, tmp_path, monkeypatch):
        monkeypatch.setattr(app_settings, "export_dir", "elsewhere")
        assert ExportSettings(export_dir=str(tmp_path)).export_dir == str(tmp_path)

    def test_world_size(self):
        settings = ExportSettings(export_width=64, export_height=32, tiles_h=3, tiles_v=2)
        assert settings.world_size == (192, 64)

    def test_tile_origin(self):
        settings = ExportSettings(export_width=10, export_height=20)
        assert tile_origin(settings, 2, 1) == (20, 20)
        seamless = settings.model_copy(update={"seamless": True})
        assert tile_origin(seamless, 2, 1) == (18, 19)

    def test_seamless_tiles_share_border(self):
        settings = ExportSettings(export_width=8, export_height=6, tiles_h=2, tiles_v=2, seamless=True)
        heights = np.arange(16 * 12, dtype=np.float32).reshape(12, 16)
        left = extract_tile(heights, settings, 0, 0)
        right = extract_tile(heights, settings, 1, 0)
        below = extract_tile(heights, settings, 0, 1)
        assert left.shape == (6, 8)
        assert np.array_equal(left[:, -1], right[:, 0])
        assert np.array_equal(left[-1, :], below[0, :])


class TestExportHeightmap:
    """Test full resolution export runs."""

    @pytest.fixture
    def steps(self):
        return [Step(conf=FbmConf()), Step(conf=HillsConf(count=20))]

    def test_png_tiles_use_full_16_bit_range(self, tmp_path, steps):
        settings = ExportSettings(export_width=16, export_height=16, tiles_h=2, tiles_v=1, export_dir=str(tmp_path))
        export_heightmap(3, steps, settings)

        tiles = [np.array(Image.open(tmp_path / f"wgen_x{tx}_y0.png")) for tx in range(2)]
        assert tiles[0].shape == (16, 16)
        values = np.concatenate([tile.ravel() for tile in tiles])
        assert values.min() == 0
        assert values.max() == 65535

    def test_seamless_float_tiles(self, tmp_path, steps):
        settings = ExportSettings(
            export_width=12,
            export_height=10,
            tiles_h=2,
            tiles_v=1,
            seamless=True,
            file_type=ExportFileType.TIFF,
            export_dir=str(tmp_path),
        )
        export_heightmap(3, steps, settings)
        left = np.array(Image.open(tmp_path / "wgen_x0_y0.tiff"))
        right = np.array(Image.open(tmp_path / "wgen_x1_y0.tiff"))
        assert left.dtype == np.float32
        assert np.array_equal(left[:, -1], right[:, 0])
        assert 0.0 <= min(left.min(), right.min())
        assert max(left.max(), right.max()) <= 1.0 + 1e-6

    def test_pfm_tile(self, tmp_path, steps):
        settings = ExportSettings(export_width=8, export_height=4, file_type=ExportFileType.PFM, export_dir=str(tmp_path))
        export_heightmap(3, steps, settings)
        data = (tmp_path / "wgen_x0_y0.pfm").read_bytes()
        assert data.startswith(b"PF\n8 4\n-1.0\n")
        assert len(data) == len(b"PF\n8 4\n-1.0\n") + 8 * 4 * 3 * 4

    def test_flat_map_is_not_scaled(self, tmp_path):
        settings = ExportSettings(export_width=4, export_height=4, file_type=ExportFileType.TIFF, export_dir=str(tmp_path))
        export_heightmap(1, [Step(conf=NormalizeConf())], settings)
        tile = np.array(Image.open(tmp_path / "wgen_x0_y0.tiff"))
        assert not tile.any()

    def test_missing_directory_raises(self, tmp_path, steps):
        settings = ExportSettings(export_width=8, export_height=8, export_dir=str(tmp_path / "missing"))
        with pytest.raises(ExportError) as info:
            export_heightmap(3, steps, settings)
        assert str(info.value).startswith("Error while saving")
        assert "wgen_x0_y0.png" in str(info.value)

    def test_write_tile_error_names_path(self, tmp_path):
        path = tmp_path / "nowhere" / "tile.png"
        with pytest.raises(ExportError, match="tile.png"):
            write_tile(path, np.zeros((4, 4), dtype=np.float32), ExportFileType.PNG)

    def test_progress_and_step_done(self, tmp_path, steps):
        settings = ExportSettings(export_width=8, export_height=8, export_dir=str(tmp_path))
        progress = []
        done = []
        export_heightmap(3, steps, settings, progress=lambda i, f: progress.append(i), step_done=done.append)
        assert done == [0, 1]
        assert set(progress) <= {0, 1}


class TestExportTask:
    """Test background exports."""

    def test_task_posts_messages(self, tmp_path):
        settings = ExportSettings(export_width=8, export_height=8, export_dir=str(tmp_path))
        messages = queue.Queue()
        task = ExportTask(9, [Step(conf=HillsConf(count=10))], settings, messages)
        task.start()
        task.join(timeout=30.0)

        received = []
        while not messages.empty():
            received.append(messages.get_nowait())
        assert isinstance(received[-1], ExportDone)
        assert received[-1].ok
        assert any(isinstance(m, ExportStepDone) for m in received)
        assert (tmp_path / "wgen_x0_y0.png").exists()

    def test_task_reports_failure(self, tmp_path):
        settings = ExportSettings(export_width=8, export_height=8, export_dir=str(tmp_path / "missing"))
        task = ExportTask(9, [Step(conf=HillsConf(count=10))], settings)
        task.start()
        task.join(timeout=30.0)
        assert task.result is not None
        assert not task.result.ok
        assert "Error while saving" in task.result.error

    def test_cancelled_task(self, tmp_path):
        settings = ExportSettings(export_width=8, export_height=8, export_dir=str(tmp_path))
        task = ExportTask(9, [Step(conf=HillsConf(count=10))], settings)
        task.cancel()
        task.start()
        task.join(timeout=30.0)
        assert task.result == ExportDone("Export cancelled")
        assert not (tmp_path / "wgen_x0_y0.png").exists()

    def test_unexpected_error_still_reports_done(self, tmp_path, monkeypatch):
        def broken(*args, **kwargs):
            raise RuntimeError("disk on fire")

        monkeypatch.setattr("py_wgen.core.exporter.export_heightmap", broken)
        settings = ExportSettings(export_width=8, export_height=8, export_dir=str(tmp_path))
        task = ExportTask(9, [Step(conf=HillsConf(count=10))], settings)
        task.start()
        task.join(timeout=30.0)
        assert task.result == ExportDone("disk on fire")
        assert task.messages.get_nowait() == task.result
