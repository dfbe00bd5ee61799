import pytest

from fakes import MB, FakeProcessor, asset_of_size

from gifconform.gif_processing.exceptions import BudgetUnreachable, PipelineCancelled
from gifconform.gif_processing.models import ApprovalRequired, ImageMetadata, OptimizationRequest
from gifconform.gif_processing.optimization_stages import (
    PROCEED, ApprovalGate, DimensionNormalizer, FrameSampler, SizeReducer, StageStatus,
    estimate_frame_reduction_percent,
)


def _meta(asset):
    return ImageMetadata(asset.width, asset.height, asset.frames, asset.size_bytes)


@pytest.mark.parametrize("size, max_bounds, expected", [
    ((3000, 1500), (1000, None), (1000, 500)),
    ((1000, 500), (400, 400), (400, 200)),
    ((500, 2000), (None, 1000), (250, 1000)),
    ((100, 50), (200, 200), (100, 50)),
    ((640, 480), (None, None), (640, 480)),
    ((5000, 3), (100, None), (100, 1)),
])
def test_fit_within_max_preserves_aspect_and_never_upscales(size, max_bounds, expected):
    assert DimensionNormalizer.fit_within_max(*size, *max_bounds) == expected


def test_padded_size_only_grows():
    assert DimensionNormalizer.padded_size(100, 300, 180, 180) == (180, 300)
    assert DimensionNormalizer.padded_size(100, 300, None, None) == (100, 300)


def test_select_indices_uses_uniform_stride_from_first_frame():
    assert FrameSampler.select_indices(10, 8) == [0, 2, 4, 6, 8]
    assert FrameSampler.select_indices(20, 17) == list(range(0, 20, 2))
    assert FrameSampler.select_indices(7, 7) == list(range(7))
    assert FrameSampler.select_indices(2, 1) == [0]


def test_frames_to_keep_rounds_down():
    sampler = FrameSampler(FakeProcessor())
    assert sampler.frames_to_keep(20) == 17
    assert sampler.frames_to_keep(10) == 8
    assert sampler.frames_to_keep(1) == 1


def test_estimate_frame_reduction_percent_rounds_up():
    assert estimate_frame_reduction_percent(1_125_000, 787_500) == 30
    assert estimate_frame_reduction_percent(2_949_120, 2 * MB) == 29
    assert estimate_frame_reduction_percent(1001, 1000) == 1


def test_gate_requires_approval_without_consent():
    metadata = ImageMetadata(200, 200, 20, 1_125_000)

    decision = ApprovalGate.decide(metadata, 787_500, allow_frame_reduction=False)

    assert isinstance(decision, ApprovalRequired)
    assert decision.estimated_frame_reduction_percent == 30
    assert ApprovalGate.decide(metadata, 787_500, allow_frame_reduction=True) is PROCEED


def test_gate_refuses_assets_already_within_budget():
    with pytest.raises(ValueError):
        ApprovalGate.decide(ImageMetadata(200, 200, 20, 500), 1000, allow_frame_reduction=False)


def test_gate_halts_with_approval_result():
    asset = asset_of_size(200, 200, 20, 1_125_000)
    request = OptimizationRequest(source_asset=asset, max_size_bytes=787_500)

    outcome = ApprovalGate(FakeProcessor()).attempt(asset, _meta(asset), request)

    assert outcome.status is StageStatus.HALT
    assert outcome.asset is asset
    assert isinstance(outcome.result, ApprovalRequired)


def test_size_reducer_stops_at_first_level_within_budget():
    processor = FakeProcessor()
    asset = asset_of_size(300, 300, 40, 5 * MB)

    reduced, metadata, level = SizeReducer(processor).reduce_size(asset, _meta(asset), 3 * MB)

    assert level == 48
    assert processor.ops('recolor') == [256, 192, 128, 96, 64, 48]
    assert metadata.size_bytes <= 3 * MB
    assert reduced.colors == 48


def test_size_reducer_skips_assets_within_budget():
    processor = FakeProcessor()
    asset = asset_of_size(300, 300, 10, MB)

    reduced, _, level = SizeReducer(processor).reduce_size(asset, _meta(asset), 2 * MB)

    assert reduced is asset
    assert level is None
    assert processor.calls == []


def test_size_reducer_returns_smallest_level_when_exhausted():
    processor = FakeProcessor()
    asset = asset_of_size(300, 300, 10, 8 * MB)

    outcome = SizeReducer(processor, palette_ladder=[128, 64]).attempt(
        asset, _meta(asset), OptimizationRequest(source_asset=asset, max_size_bytes=MB))

    assert outcome.status is StageStatus.CONTINUE
    assert outcome.asset.colors == 64


def test_size_reducer_checks_cancellation_between_levels():
    processor = FakeProcessor()
    asset = asset_of_size(300, 300, 10, 8 * MB)

    with pytest.raises(PipelineCancelled):
        SizeReducer(processor, cancel_checker=lambda: True).reduce_size(asset, _meta(asset), MB)
    assert processor.ops('recolor') == []


def test_frame_sampler_refuses_short_animations():
    asset = asset_of_size(200, 200, 2, 4 * MB)

    with pytest.raises(BudgetUnreachable) as excinfo:
        FrameSampler(FakeProcessor()).reduce_frames(asset, _meta(asset), MB)

    assert excinfo.value.frame_count == 2
    assert excinfo.value.best_size_bytes == asset.size_bytes


def test_frame_sampler_reprobes_after_each_pass():
    processor = FakeProcessor()
    asset = asset_of_size(200, 200, 40, 4 * MB)

    reduced, metadata = FrameSampler(processor).reduce_frames(asset, _meta(asset), MB)

    assert metadata.frame_count == reduced.frames
    assert metadata.size_bytes <= MB
    assert [len(indices) for indices in processor.ops('sample_frames')] == [20, 10]


def test_normalizer_pads_with_dominant_edge_color():
    processor = FakeProcessor(edge_color=(200, 0, 0))
    asset = asset_of_size(120, 90, 6, 100_000)
    request = OptimizationRequest(source_asset=asset, max_size_bytes=MB)

    outcome = DimensionNormalizer(processor).attempt(asset, _meta(asset), request)

    assert (outcome.metadata.width, outcome.metadata.height) == (180, 180)
    assert outcome.metadata.frame_count == 6
    assert processor.ops('pad_canvas') == [(180, 180, (200, 0, 0))]


def test_normalizer_is_skippable_only_without_dimension_constraints():
    normalizer = DimensionNormalizer(FakeProcessor())
    asset = asset_of_size(100, 100, 3, 1000)

    assert not normalizer.skippable_on_error(OptimizationRequest(source_asset=asset, max_size_bytes=MB))
    assert normalizer.skippable_on_error(
        OptimizationRequest(source_asset=asset, max_size_bytes=MB, min_width=None, min_height=None))
