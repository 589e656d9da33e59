"""Tests for track publication."""

import numpy as np
import pytest

from voice_gate.core.errors import PublishError, RebuildError
from voice_gate.output.publisher import OutputPublisher, ProcessedTrack

from .helpers import FakeTransport


class TestProcessedTrack:
    def test_write_then_read(self):
        track = ProcessedTrack(48000)
        block = np.ones(1440, dtype=np.float32)
        track.write(block)
        assert track.read(timeout=0.1) is block
        assert track.read(timeout=0.01) is None

    def test_full_track_drops_oldest(self):
        track = ProcessedTrack(48000, max_blocks=2)
        blocks = [np.full(4, i, dtype=np.float32) for i in range(3)]
        for block in blocks:
            track.write(block)

        assert track.blocks_dropped == 1
        assert track.read(timeout=0.1)[0] == 1
        assert track.read(timeout=0.1)[0] == 2

    def test_ended_track_ignores_writes(self):
        track = ProcessedTrack(48000)
        track.end()
        track.write(np.zeros(4, dtype=np.float32))
        assert track.ended
        assert track.blocks_written == 0


class TestOutputPublisher:
    def test_replace_track_publishes_and_ends_previous(self):
        transport = FakeTransport()
        publisher = OutputPublisher(transport)
        first, second = ProcessedTrack(48000), ProcessedTrack(16000)

        publisher.replace_track(first)
        publisher.replace_track(second)

        assert transport.published == [first, second]
        assert first.ended
        assert not second.ended
        assert publisher.track is second

    def test_replacing_with_same_track_is_noop(self):
        transport = FakeTransport()
        publisher = OutputPublisher(transport)
        track = ProcessedTrack(48000)
        publisher.replace_track(track)
        publisher.replace_track(track)
        assert transport.published == [track]

    def test_rejected_track_raises_publish_error_and_keeps_previous(self):
        transport = FakeTransport()
        publisher = OutputPublisher(transport)
        first = ProcessedTrack(48000)
        publisher.replace_track(first)

        transport.reject = True
        with pytest.raises(PublishError):
            publisher.replace_track(ProcessedTrack(48000))

        assert publisher.track is first
        assert not first.ended

    def test_unpublish(self):
        transport = FakeTransport()
        publisher = OutputPublisher(transport)
        track = ProcessedTrack(48000)
        publisher.replace_track(track)

        publisher.unpublish()
        publisher.unpublish()

        assert transport.unpublished == 1
        assert track.ended
        assert not publisher.published

    def test_notify_error_reaches_transport(self):
        transport = FakeTransport()
        publisher = OutputPublisher(transport)
        error = RebuildError("boom", fatal=True)
        publisher.notify_error(error)
        assert transport.errors == [error]
