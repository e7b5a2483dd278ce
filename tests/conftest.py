import os
import tempfile

# Keep logs and settings out of the real home directory, and let pystray
# load without a display.
os.environ["STORY_LAUNCHER_HOME"] = tempfile.mkdtemp(prefix="story-launcher-tests-")
os.environ.setdefault("PYSTRAY_BACKEND", "dummy")
