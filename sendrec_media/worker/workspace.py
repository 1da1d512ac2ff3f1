import os
import shutil
import tempfile
import uuid


class Workspace:
    """Scratch directory private to one job invocation.

    Use as a context manager; the directory and everything allocated in it
    are removed on exit, whichever way the job leaves.
    """

    def __init__(self, job: str, root: str = None):
        self.job = job
        self.root = root
        self.tmpdir = None

    def __enter__(self):
        self.tmpdir = tempfile.mkdtemp(prefix=f"sendrec-{self.job}-", dir=self.root)
        return self

    def __exit__(self, exc_type, exc, tb):
        shutil.rmtree(self.tmpdir, ignore_errors=True)
        return False

    def path(self, name: str, ext: str = "") -> str:
        return os.path.join(self.tmpdir, f"{name}-{uuid.uuid4().hex[:12]}{ext}")
