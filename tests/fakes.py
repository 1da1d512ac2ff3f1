import os

from sendrec_media.worker.media import MediaToolError


class FakeStore:
    """In-memory AssetStore."""

    def __init__(self, objects=None):
        self.objects = dict(objects or {})
        self.uploads = []
        self.deletes = []
        self.delete_failures = {}
        self.fail_download = set()
        self.fail_upload = False

    def download_to_file(self, key, local_path):
        if key in self.fail_download or key not in self.objects:
            raise IOError(f"no such object {key}")
        with open(local_path, "wb") as f:
            f.write(self.objects[key])

    def upload_file(self, key, local_path, content_type):
        if self.fail_upload:
            raise IOError("upload refused")
        with open(local_path, "rb") as f:
            self.objects[key] = f.read()
        self.uploads.append((key, content_type))

    def delete_object(self, key):
        self.deletes.append(key)
        remaining = self.delete_failures.get(key, 0)
        if remaining:
            self.delete_failures[key] = remaining - 1
            raise IOError(f"delete failed for {key}")
        self.objects.pop(key, None)

    def head_object(self, key):
        if key not in self.objects:
            raise IOError(f"no such object {key}")
        return len(self.objects[key]), "video/webm"


class FakeTool:
    """Scripted MediaTool: writes ``outputs`` in order, probes by workspace file name."""

    def __init__(self, outputs=None, frames=None, probe_error=None, run_error=None, audio=True, duration=12.4):
        self.outputs = list(outputs) if outputs is not None else None
        self.frames = frames or {}
        self.probe_error = probe_error
        self.run_error = run_error
        self.audio = audio
        self.duration = duration
        self.runs = []
        self.probed = []

    def run(self, args):
        self.runs.append(list(args))
        if self.run_error:
            raise MediaToolError(self.run_error, output="Invalid data found when processing input")
        data = self.outputs.pop(0) if self.outputs else b"media"
        with open(args[-1], "wb") as f:
            f.write(data)
        return ""

    def probe_frames(self, path):
        self.probed.append(path)
        name = os.path.basename(path)
        if self.probe_error and name.startswith(self.probe_error):
            raise MediaToolError("ffprobe: exit status 1", output="moov atom not found")
        for prefix, count in self.frames.items():
            if name.startswith(prefix):
                return count, f"nb_read_frames={count}"
        return 120, "nb_read_frames=120"

    def probe_duration(self, path):
        return self.duration

    def has_audio(self, path):
        return self.audio

