import pytest
import yaml
from pathlib import Path
from pydantic import ValidationError
from hwbench.config.loader import load_config
from hwbench.config.models import AppConfig, EncodeConfig, GeneralConfig
from hwbench.domain.errors import ConfigError
from hwbench.domain.models import AccelMode, GpuVendor

def test_defaults():
    config = AppConfig()
    assert config.general.gpu == GpuVendor.UNKNOWN
    assert config.general.parallel_streams == 1
    assert config.general.decode_only is True
    assert config.general.cooldown_seconds == 2.0
    assert config.sampling.overall_includes_copy is True
    assert config.encode.bitrate_tokens == {"10mbps": 10, "15mbps": 15, "20mbps": 20, "30mbps": 30}
    assert config.encode.default_bitrate_mbps is None

def test_extensions_are_normalized():
    config = GeneralConfig(extensions=["MP4", ".MKV", "264"])
    assert config.extensions == [".mp4", ".mkv", ".264"]

@pytest.mark.parametrize("streams", [0, 17])
def test_parallel_streams_bounds(streams):
    with pytest.raises(ValidationError):
        GeneralConfig(parallel_streams=streams)

def test_bitrate_tokens_validation():
    assert EncodeConfig(bitrate_tokens={"8MBPS": 8}).bitrate_tokens == {"8mbps": 8}
    with pytest.raises(ValidationError):
        EncodeConfig(bitrate_tokens={"0mbps": 0})

def test_config_is_frozen():
    config = AppConfig()
    with pytest.raises(ValidationError):
        config.general.parallel_streams = 4

def test_with_overrides():
    config = AppConfig()
    updated = config.with_overrides(gpu=GpuVendor.INTEL, parallel_streams=4, software_codec=None)
    assert updated.general.gpu == GpuVendor.INTEL
    assert updated.general.parallel_streams == 4
    assert config.general.parallel_streams == 1
    assert config.with_overrides(device_index=None) is config

def test_with_overrides_validates():
    with pytest.raises(ValidationError):
        AppConfig().with_overrides(parallel_streams=99)

def test_load_missing_file_returns_defaults(tmp_path):
    assert load_config(tmp_path / "missing.yaml") == AppConfig()
    assert load_config(None) == AppConfig()

def test_load_valid_file(tmp_path):
    path = tmp_path / "hwbench.yaml"
    path.write_text(yaml.dump({
        "general": {"gpu": "intel", "modes": ["qsv", "none"], "parallel_streams": 3},
        "sampling": {"overall_includes_copy": False},
        "encode": {"default_bitrate_mbps": 12},
    }))
    config = load_config(path)
    assert config.general.gpu == GpuVendor.INTEL
    assert config.general.modes == [AccelMode.QSV, AccelMode.NONE]
    assert config.general.parallel_streams == 3
    assert config.sampling.overall_includes_copy is False
    assert config.encode.default_bitrate_mbps == 12

def test_load_empty_file(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("")
    assert load_config(path) == AppConfig()

@pytest.mark.parametrize("content", [
    "general: [unclosed",
    "- just\n- a list\n",
    "general:\n  parallel_streams: many\n",
    "general:\n  modes: [opencl]\n",
])
def test_load_invalid_file(tmp_path, content):
    path = tmp_path / "bad.yaml"
    path.write_text(content)
    with pytest.raises(ConfigError):
        load_config(path)

def test_shipped_config_is_valid():
    path = Path(__file__).resolve().parents[2] / "conf" / "hwbench.yaml"
    config = load_config(path)
    assert config.general.gpu == GpuVendor.NVIDIA
    assert ".264" in config.general.extensions
