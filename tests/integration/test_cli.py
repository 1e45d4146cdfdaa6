from typer.testing import CliRunner
from hwbench.main import app

runner = CliRunner()

def test_modes_prints_default_matrix():
    result = runner.invoke(app, ["modes", "--gpu", "NVIDIA GeForce RTX 3060", "--platform", "linux"])
    assert result.exit_code == 0
    assert "nvidia on linux" in result.output
    assert "cuda vdpau vulkan none" in result.output

def test_modes_for_unknown_gpu():
    result = runner.invoke(app, ["modes", "--gpu", "AMD Radeon", "--platform", "windows"])
    assert result.exit_code == 0
    assert "unknown on windows: none" in result.output

def test_run_missing_directory(tmp_path):
    result = runner.invoke(app, ["run", str(tmp_path / "missing")])
    assert result.exit_code == 1
