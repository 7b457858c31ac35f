"""Tests for audio recorder module."""

import asyncio
from unittest.mock import MagicMock, Mock, patch

import numpy as np
import pytest

from livescribe._types import SampleFrame
from livescribe.recorder import AudioRecorder, CaptureError


def _block(values) -> np.ndarray:
    return np.array(values, dtype=np.float32).reshape(-1, 1)


class TestAudioRecorderInit:
    """Tests for AudioRecorder initialization."""

    def test_init_default_params(self):
        """Test recorder initialization with default parameters."""
        recorder = AudioRecorder()
        assert recorder.sample_rate == 16000
        assert recorder.block_size == 4096
        assert recorder.device is None
        assert not recorder.is_recording

    def test_init_invalid_sample_rate(self):
        """Test initialization fails with invalid sample rate."""
        with pytest.raises(ValueError, match="sample_rate must be positive"):
            AudioRecorder(sample_rate=0)

    def test_init_invalid_block_size(self):
        """Test initialization fails with invalid block size."""
        with pytest.raises(ValueError, match="block_size must be positive"):
            AudioRecorder(block_size=-1)


class TestAudioRecorderStartStop:
    """Tests for recorder start/stop lifecycle."""

    @patch("livescribe.recorder.sounddevice.InputStream")
    def test_start_creates_mono_float_stream(self, mock_input_stream):
        """The stream is opened mono float32 with the recorder callback."""
        mock_stream_instance = MagicMock()
        mock_input_stream.return_value = mock_stream_instance

        recorder = AudioRecorder(sample_rate=16000, block_size=1024)
        recorder.start(Mock(), loop=MagicMock())

        call_kwargs = mock_input_stream.call_args[1]
        assert call_kwargs["samplerate"] == 16000
        assert call_kwargs["channels"] == 1
        assert call_kwargs["blocksize"] == 1024
        assert call_kwargs["dtype"] == "float32"
        assert call_kwargs["callback"] == recorder._callback
        mock_stream_instance.start.assert_called_once()
        assert recorder.is_recording

    @patch("livescribe.recorder.sounddevice.InputStream")
    def test_start_twice_raises_error(self, mock_input_stream):
        """Test calling start() twice raises RuntimeError."""
        recorder = AudioRecorder()
        recorder.start(Mock(), loop=MagicMock())

        with pytest.raises(RuntimeError, match="Cannot start recording"):
            recorder.start(Mock(), loop=MagicMock())

    @patch("livescribe.recorder.sounddevice.InputStream")
    def test_start_stream_error(self, mock_input_stream):
        """Device failures surface as CaptureError and leave the recorder idle."""
        mock_input_stream.side_effect = RuntimeError("Device busy")

        recorder = AudioRecorder()
        with pytest.raises(CaptureError, match="Failed to start audio stream"):
            recorder.start(Mock(), loop=MagicMock())

        assert not recorder.is_recording
        assert recorder._stream is None

    @patch("livescribe.recorder.sounddevice.InputStream")
    def test_stream_start_error_closes_stream(self, mock_input_stream):
        """A stream that fails to start is closed again."""
        mock_stream_instance = MagicMock()
        mock_stream_instance.start.side_effect = RuntimeError("Permission denied")
        mock_input_stream.return_value = mock_stream_instance

        recorder = AudioRecorder()
        with pytest.raises(CaptureError, match="Permission denied"):
            recorder.start(Mock(), loop=MagicMock())

        mock_stream_instance.close.assert_called_once()

    @patch("livescribe.recorder.sounddevice.InputStream")
    def test_context_manager_cleanup(self, mock_input_stream):
        """Test context manager ensures cleanup."""
        mock_stream_instance = MagicMock()
        mock_input_stream.return_value = mock_stream_instance

        with AudioRecorder() as recorder:
            recorder.start(Mock(), loop=MagicMock())

        mock_stream_instance.stop.assert_called_once()
        mock_stream_instance.close.assert_called_once()
        assert recorder._stream is None

    @patch("livescribe.recorder.sounddevice.InputStream")
    def test_close_is_idempotent(self, mock_input_stream):
        """Closing twice releases the stream once."""
        mock_stream_instance = MagicMock()
        mock_input_stream.return_value = mock_stream_instance

        recorder = AudioRecorder()
        recorder.start(Mock(), loop=MagicMock())
        recorder.close()
        recorder.close()

        mock_stream_instance.close.assert_called_once()
        assert not recorder.is_recording

    @patch("livescribe.recorder.sounddevice.InputStream")
    def test_close_tolerates_stream_errors(self, mock_input_stream):
        """Errors while releasing the stream are logged, not raised."""
        mock_stream_instance = MagicMock()
        mock_stream_instance.stop.side_effect = RuntimeError("already stopped")
        mock_stream_instance.close.side_effect = RuntimeError("already closed")
        mock_input_stream.return_value = mock_stream_instance

        recorder = AudioRecorder()
        recorder.start(Mock(), loop=MagicMock())
        recorder.close()

        assert recorder._stream is None

    @patch("livescribe.recorder.sounddevice.InputStream")
    def test_restart_after_close(self, mock_input_stream):
        """A closed recorder can be started again."""
        recorder = AudioRecorder()
        recorder.start(Mock(), loop=MagicMock())
        recorder.close()
        recorder.start(Mock(), loop=MagicMock())

        assert mock_input_stream.call_count == 2


class TestAudioRecorderCallback:
    """Tests for frame hand-off from the audio thread."""

    @patch("livescribe.recorder.sounddevice.InputStream")
    def test_callback_schedules_copy_on_loop(self, mock_input_stream):
        """Blocks are copied and handed to the loop thread."""
        loop = MagicMock()
        recorder = AudioRecorder()
        recorder.start(Mock(), loop=loop)

        indata = _block([0.1, 0.2, 0.3])
        recorder._callback(indata, 3, None, None)
        indata[:] = 0.0

        loop.call_soon_threadsafe.assert_called_once()
        deliver, samples = loop.call_soon_threadsafe.call_args.args
        assert deliver == recorder._deliver
        assert samples.tolist() == pytest.approx([0.1, 0.2, 0.3])

    @patch("livescribe.recorder.sounddevice.InputStream")
    def test_deliver_builds_frame(self, mock_input_stream):
        """Delivered samples reach the consumer as a SampleFrame."""
        on_frame = Mock()
        recorder = AudioRecorder(sample_rate=16000)
        recorder.start(on_frame, loop=MagicMock())

        recorder._deliver(np.array([0.5], dtype=np.float32))

        frame = on_frame.call_args.args[0]
        assert isinstance(frame, SampleFrame)
        assert frame.sample_rate == 16000
        assert frame.samples.tolist() == [0.5]

    @patch("livescribe.recorder.sounddevice.InputStream")
    def test_stop_drops_in_flight_frames(self, mock_input_stream):
        """Frames queued before stop() are not delivered after it."""
        loop = MagicMock()
        on_frame = Mock()
        recorder = AudioRecorder()
        recorder.start(on_frame, loop=loop)

        recorder._callback(_block([0.1]), 1, None, None)
        recorder.stop()
        deliver, samples = loop.call_soon_threadsafe.call_args.args
        deliver(samples)
        recorder._callback(_block([0.2]), 1, None, None)

        on_frame.assert_not_called()
        loop.call_soon_threadsafe.assert_called_once()

    @patch("livescribe.recorder.sounddevice.InputStream")
    def test_callback_after_loop_closed(self, mock_input_stream):
        """A closed loop deactivates delivery instead of raising."""
        loop = MagicMock()
        loop.call_soon_threadsafe.side_effect = RuntimeError("Event loop is closed")
        recorder = AudioRecorder()
        recorder.start(Mock(), loop=loop)

        recorder._callback(_block([0.1]), 1, None, None)
        recorder._callback(_block([0.1]), 1, None, None)

        loop.call_soon_threadsafe.assert_called_once()

    @pytest.mark.asyncio
    @patch("livescribe.recorder.sounddevice.InputStream")
    async def test_frames_arrive_on_running_loop(self, mock_input_stream):
        """With no explicit loop the running loop receives frames."""
        received = []
        recorder = AudioRecorder()
        recorder.start(received.append)

        recorder._callback(_block([0.25, -0.25]), 2, None, None)
        await asyncio.sleep(0)

        assert len(received) == 1
        assert received[0].samples.tolist() == [0.25, -0.25]
        recorder.close()


class TestDeviceSelection:
    """Tests for device name resolution."""

    @patch("livescribe.recorder.sounddevice.InputStream")
    @patch("livescribe.recorder.sounddevice.query_devices")
    def test_device_name_partial_match(self, mock_query, mock_input_stream):
        """Device names resolve to indices by partial match."""
        mock_query.return_value = [
            {"name": "Built-in Output", "max_input_channels": 0},
            {"name": "Blue Yeti USB", "max_input_channels": 2},
        ]
        recorder = AudioRecorder(device="yeti")
        recorder.start(Mock(), loop=MagicMock())

        assert mock_input_stream.call_args[1]["device"] == 1

    @patch("livescribe.recorder.sounddevice.InputStream")
    @patch("livescribe.recorder.sounddevice.query_devices")
    def test_unknown_device_uses_default(self, mock_query, mock_input_stream):
        """Unknown device names fall back to the default input."""
        mock_query.return_value = [{"name": "Mic", "max_input_channels": 1}]
        recorder = AudioRecorder(device="nonexistent")
        recorder.start(Mock(), loop=MagicMock())

        assert mock_input_stream.call_args[1]["device"] is None
