"""Tests for caption source parsing."""

import json

from render_worker.render.captions import (
    is_json_caption_source,
    parse_captions,
    parse_json_cues,
    parse_srt,
)

SRT = """1
00:00:01,000 --> 00:00:02,500
Hello world

2
00:00:03,000 --> 00:00:04,000
Second
line
"""


class TestSrt:
    """Tests for SRT parsing."""

    def test_parse_blocks(self):
        """Test parsing timed blocks with multi-line text."""
        cues = parse_srt(SRT)

        assert len(cues) == 2
        assert (cues[0].start, cues[0].end, cues[0].text) == (1.0, 2.5, "Hello world")
        assert (cues[1].start, cues[1].end, cues[1].text) == (3.0, 4.0, "Second line")
        assert not cues[0].has_word_timings

    def test_crlf_and_dot_separator(self):
        """Test Windows line endings and a dot millisecond separator."""
        text = "1\r\n00:00:05.250 --> 00:00:06.000\r\nHi\r\n\r\n"
        cues = parse_srt(text)
        assert len(cues) == 1
        assert cues[0].start == 5.25

    def test_skips_blocks_without_text(self):
        """Test that a timing line with no text is dropped."""
        assert parse_srt("1\n00:00:01,000 --> 00:00:02,000\n") == []


class TestJsonCues:
    """Tests for JSON cue arrays."""

    def test_parse_with_words(self):
        """Test cues with word timings using either text or word keys."""
        data = [
            {
                "start": 0.0,
                "end": 1.0,
                "text": "hi there",
                "words": [{"start": 0.0, "end": 0.4, "word": "hi"}, {"start": 0.4, "end": 1.0, "text": "there"}],
            }
        ]
        cues = parse_json_cues(json.dumps(data))

        assert len(cues) == 1
        assert [w.text for w in cues[0].words] == ["hi", "there"]
        assert cues[0].has_word_timings

    def test_skips_malformed_entries(self):
        """Test that bad entries are skipped without failing the document."""
        data = [
            {"start": 0, "end": 1, "text": "ok"},
            {"start": "x", "end": 1, "text": "bad start"},
            {"end": 2, "text": "missing start"},
            {"start": 3, "end": 2, "text": "reversed"},
            "not a dict",
        ]
        cues = parse_json_cues(json.dumps(data))
        assert [c.text for c in cues] == ["ok"]

    def test_invalid_json(self):
        """Test that invalid JSON yields no cues."""
        assert parse_json_cues("[{not json") == []
        assert parse_json_cues('{"start": 0}') == []


class TestParseCaptions:
    """Tests for source format detection."""

    def test_detect_json_by_name_or_content(self):
        """Test JSON detection by key suffix or leading bracket."""
        assert is_json_caption_source("", "captions/a.JSON")
        assert is_json_caption_source('  [{"start": 0}]', "captions/a.txt")
        assert not is_json_caption_source(SRT, "captions/a.srt")

    def test_track_format_and_end(self):
        """Test the parsed track's source format and end time."""
        track = parse_captions(SRT, "captions.srt")
        assert track.source_format == "srt"
        assert track.end_seconds == 4.0

        track = parse_captions('[{"start": 0, "end": 7.5, "text": "x"}]', "captions.json")
        assert track.source_format == "json"
        assert track.end_seconds == 7.5

    def test_empty_track(self):
        """Test that an empty document yields no end time."""
        track = parse_captions("", "captions.srt")
        assert track.cues == []
        assert track.end_seconds is None
