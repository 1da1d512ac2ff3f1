"""ffmpeg/ffprobe invocation with fixed argument sets.

Commands are always built as argument lists, never shell strings. Numeric
parameters are formatted here rather than passed through from callers.
"""
import logging
import subprocess
from typing import List, Sequence, Tuple

logger = logging.getLogger(__name__)

THUMB_WIDTH = 640
THUMB_HEIGHT = 360
PIP_WIDTH = 240
MAX_SCREEN_WIDTH = 1920
MAX_SCREEN_HEIGHT = 1080

MP4_TYPES = {"video/mp4", "video/quicktime"}


class MediaToolError(Exception):
    def __init__(self, message: str, output: str = ""):
        super().__init__(message)
        self.output = output

    def __str__(self):
        msg = super().__str__()
        if self.output:
            # the tail of ffmpeg output carries the actual error
            return f"{msg}: {self.output[-400:]}"
        return msg


def _ts(seconds: float) -> str:
    return f"{float(seconds):.3f}"


def is_mp4(content_type: str) -> bool:
    return content_type in MP4_TYPES


def video_codec_args(content_type: str) -> List[str]:
    if is_mp4(content_type):
        return ["-c:v", "libx264", "-profile:v", "high", "-level:v", "5.1", "-pix_fmt", "yuv420p"]
    return ["-c:v", "libvpx-vp9"]


def extract_frame_args(src: str, dst: str, seek: int) -> List[str]:
    box = (
        f"scale={THUMB_WIDTH}:{THUMB_HEIGHT}:force_original_aspect_ratio=decrease,"
        f"pad={THUMB_WIDTH}:{THUMB_HEIGHT}:(ow-iw)/2:(oh-ih)/2"
    )
    return ["-i", src, "-ss", str(int(seek)), "-frames:v", "1", "-vf", box, "-q:v", "5", dst]


def composite_filter() -> str:
    # webcam recorders in some browsers start at a non-zero pts
    pip = f"[1:v]setpts=PTS-STARTPTS,scale={PIP_WIDTH}:-2,pad=iw+8:ih+8:4:4:color=black@0.3[pip]"
    screen = (
        f"[0:v]scale='min({MAX_SCREEN_WIDTH},iw)':'min({MAX_SCREEN_HEIGHT},ih)'"
        ":force_original_aspect_ratio=decrease,scale=trunc(iw/2)*2:trunc(ih/2)*2[screen]"
    )
    return f"{pip};{screen};[screen][pip]overlay=W-w-20:H-h-20[out]"


def composite_args(screen: str, webcam: str, dst: str, content_type: str) -> List[str]:
    args = ["-i", screen, "-i", webcam, "-filter_complex", composite_filter(), "-map", "[out]", "-map", "0:a?"]
    args += video_codec_args(content_type)
    if is_mp4(content_type):
        args += ["-c:a", "aac", "-b:a", "128k", "-movflags", "+faststart"]
    else:
        args += ["-c:a", "copy"]
    return args + [dst]


def trim_args(src: str, dst: str, start: float, end: float, content_type: str) -> List[str]:
    args = ["-i", src, "-ss", _ts(start), "-to", _ts(end)]
    args += video_codec_args(content_type)
    if is_mp4(content_type):
        args += ["-c:a", "aac", "-movflags", "+faststart"]
    else:
        args += ["-c:a", "copy"]
    return args + [dst]


def segment_expression(segments: Sequence[Tuple[float, float]]) -> str:
    return "+".join(f"between(t,{_ts(start)},{_ts(end)})" for start, end in segments)


def remove_segments_args(src: str, dst: str, segments, content_type: str, audio: bool) -> List[str]:
    expr = segment_expression(segments)
    video = f"[0:v]select='not({expr})',setpts=N/FRAME_RATE/TB[v]"
    args = ["-i", src]
    if audio:
        audio_filter = f"[0:a]aselect='not({expr})',asetpts=N/SR/TB[a]"
        args += ["-filter_complex", f"{video};{audio_filter}", "-map", "[v]", "-map", "[a]"]
        args += video_codec_args(content_type)
        args += ["-c:a", "aac"] if is_mp4(content_type) else ["-c:a", "libopus"]
    else:
        args += ["-filter_complex", video, "-map", "[v]"]
        args += video_codec_args(content_type)
        args += ["-an"]
    if is_mp4(content_type):
        args += ["-movflags", "+faststart"]
    return args + [dst]


def fix_cues_args(src: str, dst: str) -> List[str]:
    return ["-i", src, "-c", "copy", "-reserve_index_space", "200k", dst]


def parse_frame_count(output: str) -> int:
    for line in output.splitlines():
        key, _, value = line.strip().partition("=")
        if key == "nb_read_frames":
            try:
                return int(value)
            except ValueError:
                break
    raise MediaToolError("ffprobe: no frame count in output", output=output)


class MediaTool:
    def __init__(self, ffmpeg: str = "ffmpeg", ffprobe: str = "ffprobe", timeout: float = 540, probe_timeout: float = 120):
        self.ffmpeg = ffmpeg
        self.ffprobe = ffprobe
        self.timeout = timeout
        self.probe_timeout = probe_timeout

    @classmethod
    def from_settings(cls, settings):
        return cls(
            ffmpeg=settings.ffmpeg_bin,
            ffprobe=settings.ffprobe_bin,
            timeout=settings.tool_timeout_seconds,
            probe_timeout=settings.probe_timeout_seconds,
        )

    def _exec(self, cmd: List[str], timeout: float) -> str:
        try:
            proc = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, timeout=timeout)
        except subprocess.TimeoutExpired as e:
            output = (e.output or b"").decode("utf-8", "ignore")
            raise MediaToolError(f"{cmd[0]}: timed out after {timeout}s", output=output) from e
        except OSError as e:
            raise MediaToolError(f"{cmd[0]}: failed to execute: {e}") from e
        output = (proc.stdout or b"").decode("utf-8", "ignore")
        if proc.returncode != 0:
            raise MediaToolError(f"{cmd[0]}: exit status {proc.returncode}", output=output)
        return output

    def run(self, args: List[str]) -> str:
        """Run one ffmpeg transform; the output path is the last argument and is always overwritten."""
        cmd = [self.ffmpeg, "-y", *args]
        logger.debug("media: running %s", cmd)
        return self._exec(cmd, self.timeout)

    def probe_frames(self, path: str) -> Tuple[int, str]:
        cmd = [
            self.ffprobe, "-v", "error",
            "-select_streams", "v:0",
            "-count_frames",
            "-show_entries", "stream=nb_read_frames",
            "-of", "default=noprint_wrappers=1",
            path,
        ]
        output = self._exec(cmd, self.probe_timeout)
        return parse_frame_count(output), output

    def probe_duration(self, path: str) -> float:
        cmd = [
            self.ffprobe, "-v", "error",
            "-show_entries", "format=duration",
            "-of", "default=noprint_wrappers=1:nokey=1",
            path,
        ]
        output = self._exec(cmd, self.probe_timeout).strip()
        try:
            return float(output)
        except ValueError:
            raise MediaToolError("ffprobe: unparsable duration", output=output)

    def has_audio(self, path: str) -> bool:
        cmd = [
            self.ffprobe, "-v", "error",
            "-select_streams", "a",
            "-show_entries", "stream=codec_type",
            "-of", "csv=p=0",
            path,
        ]
        try:
            return self._exec(cmd, self.probe_timeout).strip() != ""
        except MediaToolError as e:
            logger.warning("media: audio probe failed for %s: %s", path, e)
            return False
