"""Unit tests for the speech segmentation engine."""

import pytest
from unittest.mock import MagicMock

from earshot.audio.segmenter import (
    SegmentationMode,
    SegmenterConfig,
    SegmenterState,
    SpeechSegmenter,
)
from earshot.models.audio import AudioFrame


def feed(segmenter, frames):
    for frame in frames:
        segmenter.process_frame(frame)


@pytest.fixture
def commits():
    return []


@pytest.fixture
def segmenter(commits):
    engine = SpeechSegmenter(on_commit=commits.append)
    engine.start()
    return engine


@pytest.mark.unit
class TestAutomaticSegmentation:

    def test_silence_produces_no_commit(self, segmenter, commits, frame_sequence):
        feed(segmenter, frame_sequence(("silence", 50)))

        assert commits == []
        assert segmenter.state == SegmenterState.LISTENING
        assert segmenter.frames_processed == 50

    def test_single_utterance_with_pre_roll_and_post_roll(self, segmenter, commits, frame_sequence):
        frames = frame_sequence(("silence", 5), ("voice", 10), ("silence", 15))
        feed(segmenter, frames)

        assert len(commits) == 1
        segment = commits[0]
        # 5 pre-roll + 10 voice + 2 post-roll
        assert segment.frame_count == 17
        assert [f.sequence_number for f in segment.frames] == list(range(1, 18))
        assert segment.duration_ms == pytest.approx(340.0)
        assert segment.sample_rate == 16000
        assert segment.pcm == b"".join(f.data for f in frames[:17])
        assert segmenter.state == SegmenterState.LISTENING

    def test_short_voice_region_is_discarded(self, segmenter, commits, frame_sequence):
        feed(segmenter, frame_sequence(("silence", 5), ("voice", 5), ("silence", 20)))

        assert commits == []
        assert segmenter.discards == 1
        assert segmenter.state == SegmenterState.LISTENING

    def test_voice_run_below_onset_never_records(self, commits, frame_sequence):
        states = []
        engine = SpeechSegmenter(on_commit=commits.append,
                                 on_state_change=lambda new, old: states.append(new))
        engine.start()
        feed(engine, frame_sequence(("silence", 5), ("voice", 2), ("silence", 20)))

        assert commits == []
        assert SegmenterState.RECORDING not in states

    def test_brief_pause_keeps_one_utterance(self, segmenter, commits, frame_sequence):
        feed(segmenter, frame_sequence(("silence", 5), ("voice", 10), ("silence", 5),
                                       ("voice", 10), ("silence", 15)))

        assert len(commits) == 1
        assert commits[0].frame_count == 5 + 10 + 5 + 10 + 2

    def test_two_utterances_commit_in_order(self, segmenter, commits, frame_sequence):
        feed(segmenter, frame_sequence(("silence", 5), ("voice", 12), ("silence", 20),
                                       ("voice", 12), ("silence", 20)))

        assert len(commits) == 2
        assert commits[0].last_sequence_number < commits[1].first_sequence_number
        # The second utterance gets its pre-roll from the silence in between
        assert commits[1].frame_count == 5 + 12 + 2

    def test_max_duration_forces_commit(self, commits, frame_sequence):
        engine = SpeechSegmenter(on_commit=commits.append,
                                 config=SegmenterConfig(max_recording_ms=400))
        engine.start()
        feed(engine, frame_sequence(("silence", 5), ("voice", 30)))

        assert len(commits) == 1
        assert commits[0].frame_count == 5 + 20

    def test_state_transitions_are_reported(self, commits, frame_sequence):
        transitions = []
        engine = SpeechSegmenter(on_commit=commits.append,
                                 on_state_change=lambda new, old: transitions.append((old, new)))
        engine.start()
        feed(engine, frame_sequence(("silence", 5), ("voice", 10), ("silence", 15)))

        assert transitions == [
            (SegmenterState.IDLE, SegmenterState.LISTENING),
            (SegmenterState.LISTENING, SegmenterState.RECORDING),
            (SegmenterState.RECORDING, SegmenterState.COMMITTING),
            (SegmenterState.COMMITTING, SegmenterState.LISTENING),
        ]

    def test_stop_commits_in_flight_recording(self, segmenter, commits, frame_sequence):
        feed(segmenter, frame_sequence(("silence", 5), ("voice", 15)))
        segmenter.stop()

        assert len(commits) == 1
        assert commits[0].frame_count == 20
        assert segmenter.state == SegmenterState.IDLE


@pytest.mark.unit
class TestFailureSemantics:

    def test_idle_engine_ignores_frames(self, commits, frame_sequence):
        engine = SpeechSegmenter(on_commit=commits.append)
        feed(engine, frame_sequence(("voice", 20), ("silence", 20)))

        assert commits == []
        assert engine.frames_processed == 0
        assert engine.state == SegmenterState.IDLE

    def test_malformed_frames_are_skipped(self, segmenter, audio_test_data):
        segmenter.process_frame(AudioFrame(data=b"\x01\x02\x03"))
        segmenter.process_frame(AudioFrame(data=b""))
        segmenter.process_frame(AudioFrame(data=audio_test_data("sine"), sample_rate=8000))
        segmenter.process_frame(b"\x00\x00" * 320)

        assert segmenter.frames_skipped == 4
        assert segmenter.frames_processed == 0
        assert segmenter.state == SegmenterState.LISTENING

    def test_commit_callback_errors_are_contained(self, frame_sequence):
        on_commit = MagicMock(side_effect=RuntimeError("downstream broke"))
        engine = SpeechSegmenter(on_commit=on_commit)
        engine.start()
        feed(engine, frame_sequence(("silence", 5), ("voice", 10), ("silence", 15)))

        on_commit.assert_called_once()
        assert engine.commits == 1
        assert engine.state == SegmenterState.LISTENING


@pytest.mark.unit
class TestManualMode:

    @pytest.fixture
    def manual(self, commits):
        engine = SpeechSegmenter(on_commit=commits.append,
                                 config=SegmenterConfig(mode=SegmentationMode.MANUAL))
        engine.start()
        return engine

    def test_starts_paused_and_ignores_frames(self, manual, commits, frame_sequence):
        assert manual.state == SegmenterState.PAUSED
        feed(manual, frame_sequence(("voice", 20), ("silence", 20)))

        assert commits == []
        assert manual.frames_processed == 0

    def test_resume_records_until_silence(self, manual, commits, frame_sequence):
        manual.resume()
        assert manual.state == SegmenterState.RECORDING

        feed(manual, frame_sequence(("silence", 5), ("voice", 10), ("silence", 15)))

        assert len(commits) == 1
        assert commits[0].frame_count == 5 + 10 + 2
        assert manual.state == SegmenterState.PAUSED

    def test_pause_force_commits_recording(self, manual, commits, frame_sequence):
        manual.resume()
        feed(manual, frame_sequence(("voice", 10)))
        manual.pause()

        assert len(commits) == 1
        assert commits[0].frame_count == 10
        assert manual.state == SegmenterState.PAUSED

    def test_pause_without_audio_commits_nothing(self, manual, commits):
        manual.resume()
        manual.pause()

        assert commits == []
        assert manual.state == SegmenterState.PAUSED

    def test_short_blip_is_kept_in_manual_mode(self, manual, commits, frame_sequence):
        manual.resume()
        feed(manual, frame_sequence(("voice", 3), ("silence", 15)))

        assert len(commits) == 1


@pytest.mark.unit
class TestStreamingMode:

    def test_frames_are_forwarded_tagged(self, commits, frame_sequence):
        forwarded = []
        engine = SpeechSegmenter(on_commit=commits.append, on_frame=forwarded.append,
                                 config=SegmenterConfig(streaming=True))
        engine.start()
        frames = frame_sequence(("silence", 5), ("voice", 10), ("silence", 15))
        feed(engine, frames)

        assert commits == []
        assert len(forwarded) == len(frames)
        assert all(f.streaming for f in forwarded)
        assert [f.data for f in forwarded] == [f.data for f in frames]

    def test_streaming_requires_frame_callback(self, commits):
        with pytest.raises(ValueError):
            SpeechSegmenter(on_commit=commits.append, config=SegmenterConfig(streaming=True))


@pytest.mark.unit
class TestConfiguration:

    def test_update_config_changes_pre_roll(self, segmenter, commits, frame_sequence):
        segmenter.update_config(pre_roll_frames=2)
        feed(segmenter, frame_sequence(("silence", 5), ("voice", 10), ("silence", 15)))

        assert commits[0].frame_count == 2 + 10 + 2
        assert commits[0].first_sequence_number == 4

    def test_get_config_returns_copy(self, segmenter):
        config = segmenter.get_config()
        config.silence_threshold_ms = 999

        assert segmenter.config.silence_threshold_ms == 200.0
