"""
Pipeline tests for GifOptimizer driven by the deterministic FakeProcessor.
"""

import unittest

from fakes import MB, FakeAsset, FakeProcessor, asset_of_size

from gifconform.gif_processing.exceptions import ProcessingError
from gifconform.gif_processing.gif_optimizer import GifOptimizer
from gifconform.gif_processing.models import (
    ApprovalRequired, Failed, FailureReason, OptimizationRequest, Success,
)


class CountdownCancel:
    """Cancel checker that starts answering True after ``calls`` checks"""

    def __init__(self, calls):
        self.remaining = calls

    def __call__(self):
        self.remaining -= 1
        return self.remaining < 0


class PipelineTestCase(unittest.TestCase):

    def setUp(self):
        self.processor = FakeProcessor()
        self.optimizer = GifOptimizer(self.processor)

    def optimize(self, asset, max_size_bytes, cancel_checker=None, **kwargs):
        request = OptimizationRequest(source_asset=asset, max_size_bytes=max_size_bytes, **kwargs)
        return self.optimizer.optimize(request, cancel_checker=cancel_checker)

    def assert_only_output_alive(self, result):
        live = self.processor.live_assets()
        if isinstance(result, Success) and result.output_asset in self.processor.created:
            self.assertEqual(len(live), 1)
            self.assertIs(live[0], result.output_asset)
        else:
            self.assertEqual(live, [])


class TestScenarios(PipelineTestCase):

    def test_large_canvas_keeps_dimensions_and_asks_for_approval(self):
        source = asset_of_size(3000, 3000, 40, 5 * MB)

        result = self.optimize(source, 2 * MB)

        self.assertIsInstance(result, ApprovalRequired)
        self.assertEqual(result.estimated_frame_reduction_percent, 29)
        self.assertEqual(result.target_size_bytes, 2 * MB)
        self.assertEqual(result.original_metadata.width, 3000)
        self.assertEqual(result.original_metadata.frame_count, 40)
        self.assertEqual(self.processor.ops('resize'), [])
        self.assertEqual(self.processor.ops('pad_canvas'), [])
        self.assertEqual(self.processor.ops('sample_frames'), [])
        self.assert_only_output_alive(result)

    def test_large_canvas_reaches_budget_through_palette_ladder(self):
        source = asset_of_size(3000, 3000, 40, 5 * MB)

        result = self.optimize(source, 3 * MB)

        self.assertIsInstance(result, Success)
        self.assertEqual((result.final_metadata.width, result.final_metadata.height), (3000, 3000))
        self.assertEqual(result.final_metadata.frame_count, 40)
        self.assertLessEqual(result.final_metadata.size_bytes, 3 * MB)
        self.assertEqual(self.processor.ops('recolor'), [256, 192, 128, 96, 64, 48])
        self.assert_only_output_alive(result)

    def test_small_canvas_is_padded_to_minimum(self):
        source = asset_of_size(100, 100, 10, 500 * 1024)

        result = self.optimize(source, 2 * MB, min_width=180, min_height=180)

        self.assertIsInstance(result, Success)
        self.assertEqual((result.final_metadata.width, result.final_metadata.height), (180, 180))
        self.assertEqual(result.final_metadata.frame_count, 10)
        self.assertLessEqual(result.final_metadata.size_bytes, 2 * MB)
        self.assertEqual(self.processor.ops('pad_canvas'), [(180, 180, (10, 20, 30))])
        self.assertEqual(self.processor.ops('resize'), [])
        self.assert_only_output_alive(result)

    def test_budget_unreachable_even_at_one_frame(self):
        source = asset_of_size(200, 200, 10, 10 * MB)

        result = self.optimize(source, MB // 2, allow_frame_reduction=True)

        self.assertIsInstance(result, Failed)
        self.assertEqual(result.reason, FailureReason.BUDGET_UNREACHABLE)
        self.assertEqual(result.frame_count, 1)
        self.assertEqual(result.best_achieved_size_bytes, 589824)
        self.assertEqual(self.processor.ops('sample_frames')[-1], [0])
        self.assert_only_output_alive(result)

    def test_thirty_percent_cut_requires_approval_and_leaves_nothing_behind(self):
        source = asset_of_size(200, 200, 20, 2_000_000)

        result = self.optimize(source, 787_500)

        self.assertIsInstance(result, ApprovalRequired)
        self.assertEqual(result.estimated_frame_reduction_percent, 30)
        self.assertEqual(result.current_size_bytes, 1_125_000)
        self.assertIn("approximately 30% of frames", result.message)
        self.assertTrue(result.request_id)
        self.assertEqual(self.processor.live_assets(), [])

    def test_approved_resubmission_drops_frames(self):
        source = asset_of_size(200, 200, 20, 2_000_000)

        first = self.optimize(source, 787_500)
        second = self.optimize(source, 787_500, allow_frame_reduction=True)

        self.assertIsInstance(first, ApprovalRequired)
        self.assertIsInstance(second, Success)
        self.assertNotEqual(first.request_id, second.request_id)
        self.assertEqual(second.final_metadata.frame_count, 10)
        self.assertEqual(second.original_metadata.frame_count, 20)
        self.assertLessEqual(second.final_metadata.size_bytes, 787_500)
        self.assertEqual(self.processor.ops('sample_frames'), [[0, 2, 4, 6, 8, 10, 12, 14, 16, 18]])
        self.assert_only_output_alive(second)


class TestPipelineInvariants(PipelineTestCase):

    def test_conforming_input_is_returned_unchanged(self):
        source = asset_of_size(300, 300, 12, 1 * MB)

        result = self.optimize(source, 2 * MB)

        self.assertIsInstance(result, Success)
        self.assertIs(result.output_asset, source)
        self.assertEqual(self.processor.created, [])
        self.assertEqual([op for op, _ in self.processor.calls], ['probe'])

    def test_downscale_then_pad(self):
        source = asset_of_size(1000, 100, 8, 1 * MB)

        result = self.optimize(source, 2 * MB, max_width=500, max_height=500)

        self.assertIsInstance(result, Success)
        self.assertEqual(self.processor.ops('resize'), [(500, 50)])
        self.assertEqual(self.processor.ops('pad_canvas'), [(500, 180, (10, 20, 30))])
        self.assertEqual((result.final_metadata.width, result.final_metadata.height), (500, 180))
        self.assert_only_output_alive(result)

    def test_max_bounds_preserve_aspect_ratio(self):
        source = asset_of_size(1000, 500, 8, 1 * MB)

        result = self.optimize(source, 2 * MB, max_width=400, max_height=400)

        self.assertEqual((result.final_metadata.width, result.final_metadata.height), (400, 200))
        self.assertEqual(self.processor.ops('pad_canvas'), [])

    def test_no_minimum_skips_padding(self):
        source = asset_of_size(64, 64, 5, 100 * 1024)

        result = self.optimize(source, 2 * MB, min_width=None, min_height=None)

        self.assertIs(result.output_asset, source)
        self.assertEqual(self.processor.ops('pad_canvas'), [])

    def test_frame_count_never_changes_without_approval(self):
        source = asset_of_size(400, 400, 30, 8 * MB)

        result = self.optimize(source, 3 * MB)

        self.assertIsInstance(result, ApprovalRequired)
        self.assertEqual(self.processor.ops('sample_frames'), [])
        self.assertTrue(all(a.frames == 30 for a in self.processor.created))

    def test_frame_count_is_monotonically_non_increasing(self):
        source = asset_of_size(200, 200, 40, 12 * MB)

        result = self.optimize(source, 2 * MB, allow_frame_reduction=True)

        self.assertIsInstance(result, Success)
        frame_counts = [a.frames for a in self.processor.created]
        self.assertEqual(frame_counts, sorted(frame_counts, reverse=True))
        self.assertLess(result.final_metadata.frame_count, 40)

    def test_stage_that_changes_frame_count_fails_the_run(self):
        self.processor = FakeProcessor(frame_loss_on=['recolor'])
        self.optimizer = GifOptimizer(self.processor)
        source = asset_of_size(200, 200, 10, 4 * MB)

        result = self.optimize(source, 3 * MB)

        self.assertIsInstance(result, Failed)
        self.assertEqual(result.reason, FailureReason.PROCESSING_ERROR)
        self.assert_only_output_alive(result)

    def test_webp_input_is_converted_first(self):
        source = asset_of_size(200, 200, 10, 1 * MB, format='webp')

        result = self.optimize(source, 2 * MB)

        self.assertIsInstance(result, Success)
        self.assertEqual(result.output_asset.format, 'gif')
        self.assertEqual(len(self.processor.ops('to_gif')), 1)
        self.assert_only_output_alive(result)


class TestFailureHandling(PipelineTestCase):

    def test_unreadable_source_reports_probe_error(self):
        result = self.optimize("not-an-image", 2 * MB)

        self.assertIsInstance(result, Failed)
        self.assertEqual(result.reason, FailureReason.PROBE_ERROR)
        self.assertIsNone(result.best_achieved_size_bytes)

    def test_processing_error_is_reported_after_cleanup(self):
        self.processor = FakeProcessor(fail_on={'sample_frames': ProcessingError("codec crashed")})
        self.optimizer = GifOptimizer(self.processor)
        source = asset_of_size(200, 200, 20, 2_000_000)

        result = self.optimize(source, 787_500, allow_frame_reduction=True)

        self.assertIsInstance(result, Failed)
        self.assertEqual(result.reason, FailureReason.PROCESSING_ERROR)
        self.assertEqual(result.best_achieved_size_bytes, 1_125_000)
        self.assertIn("codec crashed", result.message)
        self.assert_only_output_alive(result)

    def test_unexpected_error_propagates_after_cleanup(self):
        self.processor = FakeProcessor(fail_on={'recolor': RuntimeError("boom")})
        self.optimizer = GifOptimizer(self.processor)
        source = asset_of_size(100, 100, 10, 4 * MB)

        with self.assertRaises(RuntimeError):
            self.optimize(source, 1 * MB)
        self.assertEqual(self.processor.live_assets(), [])

    def test_cancelled_before_first_stage(self):
        source = asset_of_size(200, 200, 10, 4 * MB)

        result = self.optimize(source, 1 * MB, cancel_checker=lambda: True)

        self.assertIsInstance(result, Failed)
        self.assertEqual(result.reason, FailureReason.CANCELLED)
        self.assertEqual(self.processor.created, [])

    def test_cancelled_inside_palette_ladder_cleans_up(self):
        source = asset_of_size(200, 200, 10, 8 * MB)

        result = self.optimize(source, 1 * MB, cancel_checker=CountdownCancel(5))

        self.assertIsInstance(result, Failed)
        self.assertEqual(result.reason, FailureReason.CANCELLED)
        self.assertTrue(self.processor.created)
        self.assertEqual(self.processor.live_assets(), [])

    def test_decline_reports_cancelled_without_retry(self):
        source = asset_of_size(200, 200, 20, 2_000_000)
        pending = self.optimize(source, 787_500)

        declined = self.optimizer.decline(pending)

        self.assertEqual(declined.reason, FailureReason.CANCELLED)
        self.assertEqual(declined.best_achieved_size_bytes, 1_125_000)
        self.assertEqual(declined.request_id, pending.request_id)
        self.assertEqual(self.processor.ops('sample_frames'), [])


class TestCustomLadder(unittest.TestCase):

    def test_palette_ladder_from_configuration(self):
        from gifconform.config_manager import ConfigManager

        config = ConfigManager(config_dir=None)
        config.update_from_args({'gif_settings.optimization.palette_ladder': [128, 16]})
        processor = FakeProcessor()
        optimizer = GifOptimizer(processor, config_manager=config, temp_dir='unused')
        source = FakeAsset(width=200, height=200, frames=10, bytes_per_frame=400_000)

        optimizer.optimize(OptimizationRequest(source_asset=source, max_size_bytes=1 * MB))

        self.assertEqual(processor.ops('recolor'), [128, 16])


if __name__ == '__main__':
    unittest.main()
