"""
Unit tests for gifsicle command construction and failure mapping.
"""

import os
import subprocess
import tempfile
import unittest
from unittest.mock import patch

from gifconform.config_manager import ConfigManager
from gifconform.gif_processing.exceptions import ProcessingError
from gifconform.gif_processing.gif_config import GifConfigHelper
from gifconform.gif_processing.gif_optimizer import create_processor
from gifconform.gif_processing.gifsicle_processor import GifsicleProcessor
from gifconform.gif_processing.pil_processor import PILProcessor


class Result:
    def __init__(self, returncode=0, stderr=""):
        self.returncode = returncode
        self.stdout = ""
        self.stderr = stderr


class TestGifsicleCommand(unittest.TestCase):
    """Validate gifsicle command construction details."""

    def setUp(self):
        self.work_dir = tempfile.mkdtemp()
        self.input_path = os.path.join(self.work_dir, "input.gif")
        with open(self.input_path, "wb") as handle:
            handle.write(b"GIF89a")
        self.processor = GifsicleProcessor(temp_dir=self.work_dir, optimize_level=3, timeout_seconds=7)
        self.captured = {}

    def tearDown(self):
        for name in os.listdir(self.work_dir):
            os.remove(os.path.join(self.work_dir, name))
        os.rmdir(self.work_dir)

    def fake_run(self, cmd, **kwargs):
        self.captured['cmd'] = cmd
        self.captured['kwargs'] = kwargs
        output_path = cmd[cmd.index("--output") + 1]
        with open(output_path, "wb") as handle:
            handle.write(b"GIF89a\x00")
        return Result()

    def test_recolor_builds_optimize_and_colors_arguments(self):
        with patch("gifconform.gif_processing.gifsicle_processor.subprocess.run", side_effect=self.fake_run):
            output = self.processor.recolor(self.input_path, 64)

        cmd = self.captured['cmd']
        self.assertEqual(cmd[0], "gifsicle")
        self.assertIn("--no-warnings", cmd)
        self.assertIn("--optimize=3", cmd)
        self.assertEqual(cmd[cmd.index("--colors") + 1], "64")
        self.assertIn("--dither", cmd)
        self.assertIn(self.input_path, cmd)
        self.assertEqual(cmd[-1], output)
        self.assertEqual(self.captured['kwargs']['timeout'], 7)
        self.assertTrue(os.path.exists(output))

    def test_recolor_clamps_color_count(self):
        with patch("gifconform.gif_processing.gifsicle_processor.subprocess.run", side_effect=self.fake_run):
            self.processor.recolor(self.input_path, 999)

        cmd = self.captured['cmd']
        self.assertEqual(cmd[cmd.index("--colors") + 1], "256")

    def test_dither_can_be_disabled(self):
        processor = GifsicleProcessor(temp_dir=self.work_dir, dither=False)
        with patch("gifconform.gif_processing.gifsicle_processor.subprocess.run", side_effect=self.fake_run):
            processor.recolor(self.input_path, 32)

        self.assertNotIn("--dither", self.captured['cmd'])

    def test_sample_frames_uses_frame_selectors(self):
        with patch("gifconform.gif_processing.gifsicle_processor.subprocess.run", side_effect=self.fake_run):
            self.processor.sample_frames(self.input_path, [4, 0, 2])

        cmd = self.captured['cmd']
        selectors = cmd[cmd.index(self.input_path) + 1:cmd.index("--output")]
        self.assertEqual(selectors, ["#0", "#2", "#4"])

    def test_resize_uses_gifsicle_resize(self):
        with patch("gifconform.gif_processing.gifsicle_processor.subprocess.run", side_effect=self.fake_run):
            output = self.processor.resize(self.input_path, 120, 90)

        cmd = self.captured['cmd']
        self.assertEqual(cmd[cmd.index("--resize") + 1], "120x90")
        self.assertIn(self.input_path, cmd)
        self.assertEqual(cmd[-1], output)

    def test_nonzero_exit_raises_processing_error(self):
        with patch("gifconform.gif_processing.gifsicle_processor.subprocess.run",
                   return_value=Result(returncode=1, stderr="gifsicle: input.gif: not a GIF")):
            with self.assertRaises(ProcessingError) as ctx:
                self.processor.recolor(self.input_path, 64)

        self.assertEqual(ctx.exception.operation, 'recolor')
        self.assertIn("not a GIF", str(ctx.exception))

    def test_timeout_raises_processing_error(self):
        with patch("gifconform.gif_processing.gifsicle_processor.subprocess.run",
                   side_effect=subprocess.TimeoutExpired(cmd="gifsicle", timeout=7)):
            with self.assertRaises(ProcessingError) as ctx:
                self.processor.recolor(self.input_path, 64)

        self.assertIn("timed out", str(ctx.exception))

    def test_missing_output_raises_processing_error(self):
        with patch("gifconform.gif_processing.gifsicle_processor.subprocess.run", return_value=Result()):
            with self.assertRaises(ProcessingError):
                self.processor.sample_frames(self.input_path, [0])


class TestCreateProcessor(unittest.TestCase):

    def helper_for(self, backend):
        config = ConfigManager(config_dir=None)
        config.update_from_args({'gif_settings.processing.backend': backend})
        return GifConfigHelper(config)

    def test_pillow_backend(self):
        processor = create_processor(self.helper_for('pillow'), temp_dir="unused")
        self.assertIs(type(processor), PILProcessor)

    def test_gifsicle_backend_is_used_when_requested(self):
        processor = create_processor(self.helper_for('gifsicle'), temp_dir="unused")
        self.assertIsInstance(processor, GifsicleProcessor)
        self.assertEqual(processor.optimize_level, 3)

    def test_auto_falls_back_to_pillow_without_gifsicle(self):
        with patch.object(GifsicleProcessor, 'is_available', return_value=False):
            processor = create_processor(self.helper_for('auto'), temp_dir="unused")
        self.assertIs(type(processor), PILProcessor)

    def test_auto_prefers_gifsicle_when_installed(self):
        with patch.object(GifsicleProcessor, 'is_available', return_value=True):
            processor = create_processor(self.helper_for('auto'), temp_dir="unused")
        self.assertIsInstance(processor, GifsicleProcessor)


if __name__ == '__main__':
    unittest.main()
