from pathlib import Path

import pytest

from mux_pipeline.commands import (
    Command,
    build_ffmpeg_command,
    build_mkvmerge_command,
    delay_to_ms,
    is_mp4_family,
)
from mux_pipeline.config import (
    DefaultLanguages,
    Font,
    LanguageItem,
    MediaTrack,
    MergeJob,
    MuxerOptions,
    SubtitleTrack,
)

ENG = LanguageItem(code="eng", name="English")
JPN = LanguageItem(code="jpn", name="Japanese", language="日本語")
SPA = LanguageItem(code="spa", name="Spanish")

FONTS = (
    Font(name="arial.ttf", path=Path("fonts/arial.ttf"), mime="application/x-truetype-font"),
    Font(name="trebuc.otf", path=Path("fonts/trebuc.otf"), mime="application/vnd.ms-opentype"),
)


def _job(output="out.mkv", **kwargs):
    kwargs.setdefault("defaults", DefaultLanguages(audio=ENG, sub=ENG))
    return MergeJob(output=Path(output), **kwargs)


def _pairs(tokens, flag):
    return [tokens[i + 1] for i, token in enumerate(tokens) if token == flag]


@pytest.mark.parametrize(
    "delay, frame_rate, expected",
    [(12, 24, 500), (1, 23.976, 42), (3, 30, 100), (24, 24000 / 1001, 1001), (1, 999.999, 2)],
)
def test_delay_to_ms(delay, frame_rate, expected):
    assert delay_to_ms(delay, frame_rate) == expected


def test_is_mp4_family():
    assert is_mp4_family(Path("a.MP4"))
    assert is_mp4_family(Path("a.m4v"))
    assert not is_mp4_family(Path("a.mkv"))


def test_command_render_quotes_tokens():
    cmd = Command().add("-i", "my file.mkv")
    assert cmd.argv("ffmpeg") == ["ffmpeg", "-i", "my file.mkv"]
    assert cmd.render("ffmpeg") == "ffmpeg -i 'my file.mkv'"


def test_ffmpeg_seek_only_after_first_video():
    """The base video is never seeked; later inputs get ceil(ms) seeks."""
    job = _job(
        video_and_audio=(
            MediaTrack(path=Path("jpn.mkv"), lang=JPN, delay=4, frame_rate=24.0),
            MediaTrack(path=Path("eng.mkv"), lang=ENG, delay=12, frame_rate=24.0),
        ),
        subtitles=(SubtitleTrack(language=ENG, file=Path("eng.ass"), delay=12, frame_rate=24.0),),
    )

    tokens = build_ffmpeg_command(job).tokens

    assert tokens[:8] == ["-i", "jpn.mkv", "-ss", "500ms", "-i", "eng.mkv", "-ss", "500ms"]
    assert tokens[8:10] == ["-i", "eng.ass"]
    assert tokens[-1] == "out.mkv"


def test_ffmpeg_missing_frame_rate_omits_seek(caplog):
    job = _job(
        video_and_audio=(
            MediaTrack(path=Path("jpn.mkv"), lang=JPN),
            MediaTrack(path=Path("eng.mkv"), lang=ENG, delay=12),
        ),
    )

    tokens = build_ffmpeg_command(job).tokens

    assert "-ss" not in tokens
    assert "Missing framerate" in caplog.text


def test_ffmpeg_maps_and_metadata_follow_input_order():
    job = _job(
        video_title="Episode 1",
        video_and_audio=(
            MediaTrack(path=Path("jpn.mkv"), lang=JPN),
            MediaTrack(path=Path("eng.mkv"), lang=ENG),
        ),
        only_vid=(MediaTrack(path=Path("video.mkv"), lang=JPN),),
        only_audio=(MediaTrack(path=Path("spa.aac"), lang=SPA),),
        subtitles=(
            SubtitleTrack(language=JPN, file=Path("jpn.ass")),
            SubtitleTrack(language=ENG, file=Path("eng.ass"), closed_caption=True),
        ),
        cc_tag="CC",
    )

    tokens = build_ffmpeg_command(job).tokens

    # video-only input is dropped because a video already exists
    assert _pairs(tokens, "-i") == ["jpn.mkv", "eng.mkv", "spa.aac", "jpn.ass", "eng.ass"]
    assert _pairs(tokens, "-map") == ["0:a", "0:v", "1:a", "2", "3", "4"]
    assert _pairs(tokens, "-metadata:s:a:0") == ["language=jpn"]
    assert _pairs(tokens, "-metadata:s:a:1") == ["language=eng"]
    assert _pairs(tokens, "-metadata:s:a:2") == ["language=spa"]
    assert _pairs(tokens, "-metadata:s:v:0") == ["title=Episode 1"]
    assert _pairs(tokens, "-metadata:s:s:0") == ["title=日本語", "language=jpn"]
    assert _pairs(tokens, "-metadata:s:s:1") == ["title=English CC", "language=eng"]


def test_ffmpeg_keep_all_videos_adds_video_only_inputs():
    job = _job(
        keep_all_videos=True,
        video_and_audio=(MediaTrack(path=Path("jpn.mkv"), lang=JPN),),
        only_vid=(MediaTrack(path=Path("video.mkv"), lang=JPN),),
        only_audio=(MediaTrack(path=Path("eng.aac"), lang=ENG),),
    )

    tokens = build_ffmpeg_command(job).tokens

    assert _pairs(tokens, "-i") == ["jpn.mkv", "video.mkv", "eng.aac"]
    assert _pairs(tokens, "-map") == ["0:a", "0:v", "1", "-1:a", "2"]


def test_ffmpeg_named_video_source_supplies_the_video():
    job = _job(
        video_and_audio=(
            MediaTrack(path=Path("jpn.mkv"), lang=JPN),
            MediaTrack(path=Path("eng.mkv"), lang=ENG, delay=12, frame_rate=24.0, is_video_source=True),
        ),
    )

    tokens = build_ffmpeg_command(job).tokens

    assert tokens[:6] == ["-i", "jpn.mkv", "-ss", "500ms", "-i", "eng.mkv"]
    assert _pairs(tokens, "-map") == ["0:a", "1:a", "1:v"]


def test_ffmpeg_mp4_uses_mov_text_and_skips_fonts():
    """MP4 output never attaches fonts."""
    job = _job(
        output="out.mp4",
        video_and_audio=(MediaTrack(path=Path("jpn.mkv"), lang=JPN),),
        subtitles=(SubtitleTrack(language=ENG, file=Path("eng.ass")),),
        fonts=FONTS,
    )

    tokens = build_ffmpeg_command(job).tokens

    assert _pairs(tokens, "-c:s") == ["mov_text"]
    assert "-attach" not in tokens


def test_ffmpeg_mkv_uses_ass_and_attaches_every_font():
    job = _job(
        video_and_audio=(MediaTrack(path=Path("jpn.mkv"), lang=JPN),),
        subtitles=(SubtitleTrack(language=ENG, file=Path("eng.ass")),),
        fonts=FONTS,
        options=MuxerOptions(ffmpeg=("-y",)),
    )

    tokens = build_ffmpeg_command(job).tokens

    assert _pairs(tokens, "-c:s") == ["ass"]
    assert _pairs(tokens, "-attach") == ["fonts/arial.ttf", "fonts/trebuc.otf"]
    assert _pairs(tokens, "-metadata:s:t:0") == ["mimetype=application/x-truetype-font"]
    assert _pairs(tokens, "-metadata:s:t:1") == ["mimetype=application/vnd.ms-opentype"]
    assert tokens[-2:] == ["-y", "out.mkv"]


def test_mkvmerge_default_audio_track_selection():
    """Only the default-language audio is flagged default; others are explicitly not."""
    job = _job(
        video_and_audio=(
            MediaTrack(path=Path("eng.mkv"), lang=ENG),
            MediaTrack(path=Path("jpn.mkv"), lang=JPN),
        ),
    )

    tokens = build_mkvmerge_command(job).tokens

    assert _pairs(tokens, "--default-track-flag") == ["1", "1:0"]
    eng_group = tokens[: tokens.index("eng.mkv")]
    assert eng_group[-2:] == ["--default-track-flag", "1"]
    jpn_group = tokens[tokens.index("eng.mkv") + 1 : tokens.index("jpn.mkv")]
    assert jpn_group[:3] == ["--no-video", "--audio-tracks", "1"]
    assert ["--track-name", "1:Japanese"] == jpn_group[5:7]


def test_mkvmerge_sync_and_track_names():
    job = _job(
        video_title="Show",
        simul=True,
        options=MuxerOptions(mkvmerge=("--no-global-tags",)),
        video_and_audio=(
            MediaTrack(path=Path("jpn.mkv"), lang=JPN),
            MediaTrack(path=Path("eng.mkv"), lang=ENG, delay=1, frame_rate=23.976),
        ),
    )

    tokens = build_mkvmerge_command(job).tokens

    assert tokens[:3] == ["-o", "out.mkv", "--no-global-tags"]
    assert _pairs(tokens, "--sync") == ["1:-42"]
    assert "0:Show [Simulcast]" in _pairs(tokens, "--track-name")
    assert _pairs(tokens, "--video-tracks") == ["0"]


def test_mkvmerge_missing_frame_rate_keeps_track_without_sync(caplog):
    job = _job(
        video_and_audio=(
            MediaTrack(path=Path("jpn.mkv"), lang=JPN),
            MediaTrack(path=Path("eng.mkv"), lang=ENG, delay=5),
        ),
    )

    tokens = build_mkvmerge_command(job).tokens

    assert "--sync" not in tokens
    assert "eng.mkv" in tokens
    assert "Unable to find framerate" in caplog.text


def test_mkvmerge_named_video_source_supplies_the_video():
    job = _job(
        video_and_audio=(
            MediaTrack(path=Path("jpn.mkv"), lang=JPN),
            MediaTrack(path=Path("eng.mkv"), lang=ENG, is_video_source=True),
        ),
    )

    tokens = build_mkvmerge_command(job).tokens

    jpn_group = tokens[: tokens.index("jpn.mkv")]
    eng_group = tokens[tokens.index("jpn.mkv") + 1 : tokens.index("eng.mkv")]
    assert "--no-video" in jpn_group
    assert eng_group[:4] == ["--video-tracks", "0", "--audio-tracks", "1"]
    assert _pairs(tokens, "--video-tracks") == ["0"]


def test_mkvmerge_inverse_track_order_swaps_ids():
    job = _job(
        inverse_track_order=True,
        video_and_audio=(MediaTrack(path=Path("jpn.mkv"), lang=JPN, delay=12, frame_rate=24.0),),
    )

    tokens = build_mkvmerge_command(job).tokens

    assert _pairs(tokens, "--video-tracks") == ["1"]
    assert _pairs(tokens, "--audio-tracks") == ["0"]
    assert _pairs(tokens, "--sync") == ["0:-500"]
    assert _pairs(tokens, "--language") == ["0:jpn"]
    assert _pairs(tokens, "--track-name") == ["1:Japanese [Uncut]"]


def test_mkvmerge_video_only_first_then_audio_only():
    job = _job(
        only_vid=(MediaTrack(path=Path("video.mkv"), lang=JPN),),
        video_and_audio=(MediaTrack(path=Path("eng.mkv"), lang=ENG),),
        only_audio=(MediaTrack(path=Path("spa.aac"), lang=SPA),),
    )

    tokens = build_mkvmerge_command(job).tokens

    assert tokens.index("video.mkv") < tokens.index("eng.mkv") < tokens.index("spa.aac")
    assert tokens[2:5] == ["--video-tracks", "0", "--no-audio"]
    spa_group = tokens[tokens.index("eng.mkv") + 1 : tokens.index("spa.aac")]
    assert spa_group == [
        "--track-name", "0:Spanish",
        "--language", "0:spa",
        "--no-video", "--audio-tracks", "0",
        "--default-track-flag", "0:0",
    ]


def test_mkvmerge_subtitles_and_closed_captions():
    """Closed captions are never default, even in the default language."""
    job = _job(
        video_and_audio=(MediaTrack(path=Path("eng.mkv"), lang=ENG),),
        subtitles=(
            SubtitleTrack(language=ENG, file=Path("eng.ass"), delay=12, frame_rate=24.0),
            SubtitleTrack(language=ENG, file=Path("eng-cc.ass"), closed_caption=True),
            SubtitleTrack(language=JPN, file=Path("jpn.ass")),
        ),
        cc_tag="[CC]",
        fonts=FONTS,
    )

    tokens = build_mkvmerge_command(job).tokens

    sub_tokens = tokens[tokens.index("eng.mkv") + 1 :]
    assert _pairs(sub_tokens, "--sync") == ["0:-500"]
    assert _pairs(sub_tokens, "--track-name") == ["0:English", "0:English [CC]", "0:日本語"]
    assert _pairs(sub_tokens, "--default-track-flag") == ["0", "0:0", "0:0"]
    assert _pairs(tokens, "--attach-file") == ["fonts/arial.ttf", "fonts/trebuc.otf"]
    assert _pairs(tokens, "--attachment-name") == ["arial.ttf", "trebuc.otf"]
    assert "--no-subtitles" not in tokens
    assert "--no-attachments" not in tokens


def test_mkvmerge_explicitly_disables_missing_subtitles_and_attachments():
    job = _job(video_and_audio=(MediaTrack(path=Path("eng.mkv"), lang=ENG),))

    tokens = build_mkvmerge_command(job).tokens

    assert tokens[-2:] == ["--no-subtitles", "--no-attachments"]


def test_commands_are_deterministic():
    def make():
        return _job(
            video_title="Show",
            video_and_audio=(
                MediaTrack(path=Path("jpn.mkv"), lang=JPN),
                MediaTrack(path=Path("eng.mkv"), lang=ENG, delay=3, frame_rate=29.97),
            ),
            subtitles=(SubtitleTrack(language=ENG, file=Path("eng.ass"), delay=3, frame_rate=29.97),),
            fonts=FONTS,
        )

    assert build_ffmpeg_command(make()).render("ffmpeg") == build_ffmpeg_command(make()).render("ffmpeg")
    assert build_mkvmerge_command(make()).render() == build_mkvmerge_command(make()).render()
