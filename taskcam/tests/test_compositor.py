"""Tests for app.compositor — ffmpeg command line and failure handling."""

import os
import subprocess
from unittest.mock import patch

import pytest

from app.compositor import GridCompositor
from app.errors import CompositeError, NoInputsError


def _completed(cmd, returncode=0, stderr=b""):
    return subprocess.CompletedProcess(cmd, returncode, stdout=b"", stderr=stderr)


class FakeRun:
    """Stands in for ``subprocess.run``; scripted return codes per call."""

    def __init__(self, returncodes=(0,), stderr=b"", write_output=True) -> None:
        self.returncodes = list(returncodes)
        self.stderr = stderr
        self.write_output = write_output
        self.calls = []

    def __call__(self, cmd, **kwargs):
        self.calls.append((cmd, kwargs))
        rc = self.returncodes.pop(0) if self.returncodes else 0
        if self.write_output:
            # ffmpeg creates the output even when it fails part-way
            with open(cmd[-1], "wb") as f:
                f.write(b"\x00" * 64)
        return _completed(cmd, rc, self.stderr if rc else b"")


@pytest.fixture(autouse=True)
def _fake_ffmpeg_path():
    with patch("app.compositor._ffmpeg_exe", return_value="ffmpeg"):
        yield


# ── build_command ───────────────────────────────────────────────────


class TestBuildCommand:
    def test_inputs_in_order(self) -> None:
        cmd = GridCompositor().build_command(["a.mp4", "b.mp4", "c.mp4"], "out.mp4")
        inputs = [cmd[i + 1] for i, tok in enumerate(cmd) if tok == "-i"]
        assert inputs == ["a.mp4", "b.mp4", "c.mp4"]

    def test_filter_and_map(self) -> None:
        cmd = GridCompositor().build_command(["a.mp4", "b.mp4"], "out.mp4")
        graph = cmd[cmd.index("-filter_complex") + 1]
        assert "xstack=inputs=2" in graph
        assert cmd[cmd.index("-map") + 1] == "[v]"

    def test_quality_encode(self) -> None:
        cmd = GridCompositor().build_command(["a.mp4", "b.mp4"], "out.mp4")
        assert cmd[cmd.index("-c:v") + 1] == "libx264"
        assert cmd[cmd.index("-crf") + 1] == "18"
        assert cmd[cmd.index("-preset") + 1] == "medium"
        assert cmd[cmd.index("-pix_fmt") + 1] == "yuv420p"

    def test_overwrite_and_output_last(self) -> None:
        cmd = GridCompositor().build_command(["a.mp4", "b.mp4"], "out.mp4")
        assert cmd[0] == "ffmpeg"
        assert "-y" in cmd
        assert cmd[-1] == "out.mp4"
        assert "+faststart" in cmd

    def test_encoder_override(self) -> None:
        cmd = GridCompositor().build_command(["a.mp4", "b.mp4"], "out.mp4", encoder_id="h264_nvenc")
        assert cmd[cmd.index("-c:v") + 1] == "h264_nvenc"

    def test_canvas_size(self) -> None:
        comp = GridCompositor(canvas_width=1280, canvas_height=720)
        cmd = comp.build_command(["a.mp4"], "out.mp4")
        assert cmd[cmd.index("-filter_complex") + 1] == "[0:v]scale=1280:720[v]"


# ── combine ─────────────────────────────────────────────────────────


class TestCombine:
    def test_empty_input_list(self, tmp_path) -> None:
        run = FakeRun()
        with patch("app.compositor.subprocess.run", run):
            with pytest.raises(NoInputsError):
                GridCompositor().combine([], str(tmp_path / "out.mp4"))
        assert run.calls == []

    def test_success(self, tmp_path) -> None:
        out = str(tmp_path / "out.mp4")
        run = FakeRun()
        with patch("app.compositor.subprocess.run", run):
            GridCompositor().combine(["a.mp4", "b.mp4", "c.mp4"], out)
        assert len(run.calls) == 1
        cmd, kwargs = run.calls[0]
        assert cmd[-1] == out
        assert kwargs["capture_output"] is True
        assert kwargs["stdin"] == subprocess.DEVNULL
        assert os.path.exists(out)

    def test_failure_carries_stderr(self, tmp_path) -> None:
        out = str(tmp_path / "out.mp4")
        run = FakeRun(returncodes=[1], stderr=b"a.mp4: Invalid data found when processing input")
        with patch("app.compositor.subprocess.run", run):
            with pytest.raises(CompositeError) as info:
                GridCompositor().combine(["a.mp4", "b.mp4"], out)
        assert "Invalid data found" in info.value.diagnostic
        assert info.value.returncode == 1
        assert str(info.value).startswith("composite:")

    def test_failure_removes_partial_output(self, tmp_path) -> None:
        out = str(tmp_path / "out.mp4")
        run = FakeRun(returncodes=[1], stderr=b"boom")
        with patch("app.compositor.subprocess.run", run):
            with pytest.raises(CompositeError):
                GridCompositor().combine(["a.mp4", "b.mp4"], out)
        assert not os.path.exists(out)

    def test_missing_binary(self, tmp_path) -> None:
        with patch("app.compositor.subprocess.run", side_effect=FileNotFoundError("ffmpeg")):
            with pytest.raises(CompositeError) as info:
                GridCompositor().combine(["a.mp4", "b.mp4"], str(tmp_path / "out.mp4"))
        assert "could not run ffmpeg" in info.value.diagnostic

    def test_timeout(self, tmp_path) -> None:
        out = str(tmp_path / "out.mp4")
        timeout = subprocess.TimeoutExpired(["ffmpeg"], 5, stderr=b"frame= 100")
        with patch("app.compositor.subprocess.run", side_effect=timeout):
            with pytest.raises(CompositeError) as info:
                GridCompositor(timeout_s=5).combine(["a.mp4", "b.mp4"], out)
        assert "timed out" in info.value.diagnostic

    def test_hw_encoder_falls_back_to_software(self, tmp_path) -> None:
        out = str(tmp_path / "out.mp4")
        run = FakeRun(returncodes=[1, 0], stderr=b"No NVENC capable devices found")
        with patch("app.compositor.subprocess.run", run):
            GridCompositor(encoder_id="h264_nvenc").combine(["a.mp4", "b.mp4"], out)
        codecs = [cmd[cmd.index("-c:v") + 1] for cmd, _ in run.calls]
        assert codecs == ["h264_nvenc", "libx264"]
        assert os.path.exists(out)

    def test_software_failure_not_retried(self, tmp_path) -> None:
        run = FakeRun(returncodes=[1, 0], stderr=b"boom")
        with patch("app.compositor.subprocess.run", run):
            with pytest.raises(CompositeError):
                GridCompositor().combine(["a.mp4", "b.mp4"], str(tmp_path / "out.mp4"))
        assert len(run.calls) == 1

    def test_fallback_failure_raises(self, tmp_path) -> None:
        run = FakeRun(returncodes=[1, 1], stderr=b"still broken")
        with patch("app.compositor.subprocess.run", run):
            with pytest.raises(CompositeError) as info:
                GridCompositor(encoder_id="h264_qsv").combine(["a.mp4", "b.mp4"], str(tmp_path / "o.mp4"))
        assert len(run.calls) == 2
        assert "still broken" in info.value.diagnostic
