"""
Tests for request parsing, response shapes and output handling in ConversionService.
"""

import os
import unittest

import pytest

from fakes import write_test_gif

from gifconform.config_manager import ConfigManager
from gifconform.conversion_service import ConversionService
from gifconform.gif_processing.exceptions import ValidationError
from gifconform.gif_processing.models import (
    ApprovalRequired, Failed, FailureReason, ImageMetadata, Success,
)
from gifconform.gif_processing.pil_processor import PILProcessor

MB = 1024 * 1024


@pytest.fixture
def service(tmp_path):
    work_dir = str(tmp_path / "work")
    return ConversionService(ConfigManager(config_dir=None), processor=PILProcessor(temp_dir=work_dir),
                             temp_dir=work_dir)


@pytest.fixture
def source(tmp_path):
    return write_test_gif(tmp_path / "sticker.gif", width=100, height=100, frames=10)


def test_preset_request(service, source):
    request = service.build_request(source, {'mode': 'preset'})

    assert request.max_size_bytes == 2 * MB
    assert (request.min_width, request.min_height) == (180, 180)
    assert request.max_width is None
    assert not request.allow_frame_reduction


def test_custom_request_parses_form_values(service, source):
    request = service.build_request(source, {
        'mode': 'custom',
        'maxFileSizeMB': '1.5',
        'minWidth': '200',
        'minHeight': 150,
        'maxWidth': '',
        'maxHeight': '640',
        'allowFrameReduction': 'true',
    })

    assert request.max_size_bytes == int(1.5 * MB)
    assert (request.min_width, request.min_height) == (200, 150)
    assert request.max_width is None
    assert request.max_height == 640
    assert request.allow_frame_reduction


def test_custom_request_defaults(service, source):
    request = service.build_request(source, {'mode': 'custom'})

    assert request.max_size_bytes == 2 * MB
    assert (request.min_width, request.min_height) == (180, 180)


@pytest.mark.parametrize("params, field", [
    ({'mode': 'custom', 'maxFileSizeMB': 0.05}, 'maxFileSizeMB'),
    ({'mode': 'custom', 'maxFileSizeMB': 51}, 'maxFileSizeMB'),
    ({'mode': 'custom', 'maxFileSizeMB': 'lots'}, 'maxFileSizeMB'),
    ({'mode': 'custom', 'minWidth': 0}, 'minWidth'),
    ({'mode': 'custom', 'minHeight': 2001}, 'minHeight'),
    ({'mode': 'custom', 'maxWidth': 4001}, 'maxWidth'),
    ({'mode': 'custom', 'maxWidth': 0}, 'maxWidth'),
    ({'mode': 'custom', 'maxHeight': '0'}, 'maxHeight'),
    ({'mode': 'custom', 'maxHeight': -5}, 'maxHeight'),
    ({'mode': 'custom', 'minHeight': 300, 'maxHeight': 200}, 'maxHeight'),
    ({'mode': 'sticker_pack'}, 'mode'),
    ({}, 'mode'),
])
def test_invalid_parameters_are_rejected(service, source, params, field):
    with pytest.raises(ValidationError) as excinfo:
        service.build_request(source, params)

    assert excinfo.value.field == field


def test_missing_source_is_rejected(service, tmp_path):
    with pytest.raises(ValidationError):
        service.build_request(str(tmp_path / "gone.gif"), {'mode': 'preset'})


def test_convert_writes_padded_output(service, source, tmp_path):
    output = str(tmp_path / "out" / "sticker_conv.gif")

    response = service.convert(source, output, {'mode': 'preset'})

    assert response['success']
    assert response['outputPath'] == output
    assert (response['originalWidth'], response['originalHeight']) == (100, 100)
    assert (response['finalWidth'], response['finalHeight']) == (180, 180)
    assert response['frameCount'] == 10
    assert response['finalSizeBytes'] == os.path.getsize(output)
    assert response['originalSizeBytes'] == os.path.getsize(source)
    assert os.listdir(tmp_path / "work") == []


def test_conforming_source_is_copied_byte_for_byte(service, tmp_path):
    source = write_test_gif(tmp_path / "big.gif", width=200, height=200, frames=4)
    output = str(tmp_path / "copy.gif")

    result, response = service.process(source, output, {'mode': 'preset'})

    assert isinstance(result, Success)
    with open(source, 'rb') as a, open(output, 'rb') as b:
        assert a.read() == b.read()
    assert os.path.exists(source)


def test_convert_returns_error_for_invalid_request(service, source, tmp_path):
    response = service.convert(source, str(tmp_path / "x.gif"), {'mode': 'custom', 'maxFileSizeMB': 100})

    assert set(response) == {'error'}
    assert "0.1-50" in response['error']
    assert not os.path.exists(tmp_path / "x.gif")


def test_describe_reports_metadata(service, source):
    info = service.describe(source)

    assert info == {
        'width': 100,
        'height': 100,
        'fileSize': os.path.getsize(source),
        'frames': 10,
        'format': 'GIF',
        'isAnimated': True,
    }


class TestResponses(unittest.TestCase):

    def setUp(self):
        self.service = ConversionService.__new__(ConversionService)
        self.original = ImageMetadata(width=3000, height=3000, frame_count=40, size_bytes=5 * MB)

    def test_approval_response(self):
        pending = ApprovalRequired(estimated_frame_reduction_percent=29, current_size_bytes=2_949_120,
                                   target_size_bytes=2 * MB, request_id="r", original_metadata=self.original)

        response = self.service.to_response(pending)

        self.assertTrue(response['requiresApproval'])
        self.assertIn("29%", response['approvalMessage'])
        self.assertEqual(response['frameCount'], 40)
        self.assertEqual(response['originalSizeBytes'], 5 * MB)
        self.assertNotIn('outputPath', response)

    def test_failure_response(self):
        failed = Failed(reason=FailureReason.BUDGET_UNREACHABLE, best_achieved_size_bytes=10,
                        message="Conversion not possible")

        self.assertEqual(self.service.to_response(failed), {'error': "Conversion not possible"})

    def test_failure_without_message_uses_reason(self):
        failed = Failed(reason=FailureReason.CANCELLED, best_achieved_size_bytes=None)

        self.assertEqual(self.service.to_response(failed), {'error': 'cancelled'})


if __name__ == '__main__':
    unittest.main()
