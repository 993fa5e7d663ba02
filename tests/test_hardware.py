"""Tests for the hardware scaler capability."""

import subprocess

import numpy as np
import pytest
from PIL import Image

from superscale import hardware
from superscale.errors import InferenceFailed
from superscale.hardware import (
    NCNNHardwareScaler,
    UnsupportedHardwareScaler,
    best_scale_factor,
)


class FakeScaler:
    def __init__(self, factors=(2, 3, 4), supported=True):
        self.factors = factors
        self.supported = supported

    def is_supported(self):
        return self.supported

    def supported_factors(self):
        return self.factors

    def max_input_size(self):
        return (1920, 1920)

    def scale(self, image, factor):
        return np.repeat(np.repeat(image, factor, axis=0), factor, axis=1)


@pytest.mark.parametrize(
    "remaining, expected",
    [(6.0, 4), (4.0, 4), (3.5, 3), (2.0, 2), (1.9995, 2), (1.5, None)],
)
def test_best_scale_factor_never_overshoots(remaining, expected):
    assert best_scale_factor(FakeScaler(), remaining) == expected


def test_best_scale_factor_ignores_unit_factors():
    assert best_scale_factor(FakeScaler(factors=(1,)), 4.0) is None


def test_best_scale_factor_requires_supported_scaler():
    assert best_scale_factor(None, 4.0) is None
    assert best_scale_factor(FakeScaler(supported=False), 4.0) is None
    assert best_scale_factor(UnsupportedHardwareScaler(), 4.0) is None


def test_ncnn_disabled_when_executable_missing(tmp_path):
    scaler = NCNNHardwareScaler(enabled=True, exec_path=str(tmp_path / "missing"))

    assert not scaler.is_supported()
    with pytest.raises(InferenceFailed):
        scaler.scale(np.zeros((4, 4, 3), dtype=np.uint8), 2)


@pytest.fixture()
def ncnn_executable(tmp_path):
    exe = tmp_path / "realesrgan-ncnn-vulkan"
    exe.write_text("")
    return exe


def test_ncnn_scale_round_trips_through_executable(monkeypatch, ncnn_executable):
    captured = {}

    def fake_run(cmd, **kwargs):
        captured["cmd"] = cmd
        src = cmd[cmd.index("-i") + 1]
        dst = cmd[cmd.index("-o") + 1]
        factor = int(cmd[cmd.index("-s") + 1])
        with Image.open(src) as img:
            img.resize((img.width * factor, img.height * factor)).save(dst)
        return subprocess.CompletedProcess(cmd, 0, b"", b"")

    monkeypatch.setattr(hardware.subprocess, "run", fake_run)
    scaler = NCNNHardwareScaler(enabled=True, exec_path=str(ncnn_executable))
    image = np.full((5, 7, 3), 200, dtype=np.uint8)

    result = scaler.scale(image, 3)

    assert result.shape == (15, 21, 3)
    assert captured["cmd"][0] == str(ncnn_executable)
    assert "realesr-animevideov3" in captured["cmd"]


def test_ncnn_process_failure_raises_inference_failed(monkeypatch, ncnn_executable):
    def failing_run(cmd, **kwargs):
        raise subprocess.CalledProcessError(1, cmd, stderr=b"vkCreateInstance failed")

    monkeypatch.setattr(hardware.subprocess, "run", failing_run)
    scaler = NCNNHardwareScaler(enabled=True, exec_path=str(ncnn_executable))

    with pytest.raises(InferenceFailed, match="vkCreateInstance"):
        scaler.scale(np.zeros((4, 4, 3), dtype=np.uint8), 2)


def test_ncnn_rejects_unsupported_factor(ncnn_executable):
    scaler = NCNNHardwareScaler(enabled=True, exec_path=str(ncnn_executable))

    with pytest.raises(InferenceFailed):
        scaler.scale(np.zeros((4, 4, 3), dtype=np.uint8), 5)
