import subprocess

import pytest

from sendrec_media.worker import media
from sendrec_media.worker.media import MediaTool, MediaToolError


def _completed(returncode=0, stdout=b""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout)


def test_composite_mp4_uses_h264_aac_faststart():
    args = media.composite_args("s.mp4", "w.mp4", "o.mp4", "video/mp4")
    assert args[args.index("-c:v") + 1] == "libx264"
    assert args[args.index("-profile:v") + 1] == "high"
    assert args[args.index("-level:v") + 1] == "5.1"
    assert args[args.index("-c:a") + 1] == "aac"
    assert args[args.index("-movflags") + 1] == "+faststart"
    assert args[-1] == "o.mp4"


def test_composite_quicktime_uses_mp4_branch():
    args = media.composite_args("s.mov", "w.mov", "o.mov", "video/quicktime")
    assert "libx264" in args


def test_composite_webm_uses_vp9_and_copies_audio():
    args = media.composite_args("s.webm", "w.webm", "o.webm", "video/webm")
    assert args[args.index("-c:v") + 1] == "libvpx-vp9"
    assert args[args.index("-c:a") + 1] == "copy"
    assert "-movflags" not in args
    assert "libx264" not in args


def test_composite_filter_normalizes_webcam_and_caps_screen():
    graph = media.composite_filter()
    assert "[1:v]setpts=PTS-STARTPTS" in graph
    assert "min(1920,iw)" in graph and "min(1080,ih)" in graph
    assert "overlay=W-w-20:H-h-20" in graph


def test_trim_formats_timestamps():
    args = media.trim_args("in.webm", "out.webm", 1.5, 10, "video/webm")
    assert args[args.index("-ss") + 1] == "1.500"
    assert args[args.index("-to") + 1] == "10.000"


def test_remove_segments_filter_with_and_without_audio():
    segments = [(1, 2.5), (4, 5)]
    with_audio = media.remove_segments_args("in.mp4", "out.mp4", segments, "video/mp4", True)
    graph = with_audio[with_audio.index("-filter_complex") + 1]
    assert "select='not(between(t,1.000,2.500)+between(t,4.000,5.000))'" in graph
    assert "aselect=" in graph
    assert with_audio[with_audio.index("-c:a") + 1] == "aac"

    silent = media.remove_segments_args("in.webm", "out.webm", segments, "video/webm", False)
    assert "-an" in silent
    assert "aselect" not in silent[silent.index("-filter_complex") + 1]


def test_extract_frame_seek_is_integer_seconds():
    args = media.extract_frame_args("in.webm", "f.jpg", 2)
    assert args[args.index("-ss") + 1] == "2"
    assert args[args.index("-frames:v") + 1] == "1"


def test_parse_frame_count():
    assert media.parse_frame_count("nb_read_frames=42\n") == 42
    assert media.parse_frame_count("nb_read_frames=0") == 0
    with pytest.raises(MediaToolError):
        media.parse_frame_count("nb_read_frames=N/A")
    with pytest.raises(MediaToolError):
        media.parse_frame_count("")


def test_run_prepends_overwrite_and_returns_output(monkeypatch):
    calls = []

    def fake_run(cmd, **kwargs):
        calls.append((cmd, kwargs))
        return _completed(stdout=b"done")

    monkeypatch.setattr(subprocess, "run", fake_run)
    tool = MediaTool(ffmpeg="/usr/bin/ffmpeg", timeout=30)
    assert tool.run(["-i", "a", "b"]) == "done"
    cmd, kwargs = calls[0]
    assert cmd == ["/usr/bin/ffmpeg", "-y", "-i", "a", "b"]
    assert kwargs["stderr"] == subprocess.STDOUT
    assert kwargs["timeout"] == 30


def test_run_failure_carries_output(monkeypatch):
    monkeypatch.setattr(subprocess, "run", lambda cmd, **kw: _completed(1, b"Invalid data found"))
    with pytest.raises(MediaToolError) as exc:
        MediaTool().run(["-i", "a", "b"])
    assert exc.value.output == "Invalid data found"
    assert "exit status 1" in str(exc.value)


def test_run_timeout_is_tool_error(monkeypatch):
    def fake_run(cmd, **kwargs):
        raise subprocess.TimeoutExpired(cmd, kwargs["timeout"])

    monkeypatch.setattr(subprocess, "run", fake_run)
    with pytest.raises(MediaToolError):
        MediaTool(timeout=1).run(["-i", "a", "b"])


def test_missing_binary_is_tool_error(monkeypatch):
    def fake_run(cmd, **kwargs):
        raise FileNotFoundError(cmd[0])

    monkeypatch.setattr(subprocess, "run", fake_run)
    with pytest.raises(MediaToolError):
        MediaTool().probe_frames("x.webm")


def test_probe_frames_zero_is_not_an_error(monkeypatch):
    calls = []

    def fake_run(cmd, **kwargs):
        calls.append((cmd, kwargs))
        return _completed(stdout=b"nb_read_frames=0\n")

    monkeypatch.setattr(subprocess, "run", fake_run)
    frames, raw = MediaTool(probe_timeout=15).probe_frames("w.webm")
    assert frames == 0
    assert raw.strip() == "nb_read_frames=0"
    cmd, kwargs = calls[0]
    assert cmd[cmd.index("-select_streams") + 1] == "v:0"
    assert "-count_frames" in cmd
    assert kwargs["timeout"] == 15


def test_has_audio(monkeypatch):
    monkeypatch.setattr(subprocess, "run", lambda cmd, **kw: _completed(stdout=b"audio\n"))
    assert MediaTool().has_audio("a.webm") is True
    monkeypatch.setattr(subprocess, "run", lambda cmd, **kw: _completed(stdout=b""))
    assert MediaTool().has_audio("a.webm") is False
    monkeypatch.setattr(subprocess, "run", lambda cmd, **kw: _completed(1))
    assert MediaTool().has_audio("a.webm") is False


def test_probe_duration(monkeypatch):
    monkeypatch.setattr(subprocess, "run", lambda cmd, **kw: _completed(stdout=b"12.480000\n"))
    assert MediaTool().probe_duration("a.webm") == pytest.approx(12.48)
    monkeypatch.setattr(subprocess, "run", lambda cmd, **kw: _completed(stdout=b"N/A\n"))
    with pytest.raises(MediaToolError):
        MediaTool().probe_duration("a.webm")
