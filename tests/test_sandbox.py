import os
from pathlib import Path

import pytest

from stepwise.sandbox.environment import SandboxInitError, SandboxManager, venv_binary
from conftest import make_settings

def test_layout_and_idempotent_initialize(ready_settings):
    sb = SandboxManager(ready_settings)
    env = sb.initialize()
    assert env.ready
    assert (env.workspace_path / "scripts").is_dir()
    assert (env.workspace_path / "output").is_dir()
    assert sb.python_path == env.workspace_path / "venv" / "bin" / "python"
    # deuxième appel: rien n'est recréé
    assert sb.initialize() is env
    assert sb.is_ready()

def test_is_ready_rechecks_interpreter(ready_settings):
    sb = SandboxManager(ready_settings)
    sb.initialize()
    sb.python_path.unlink()
    assert sb.is_ready() is False
    assert sb.environment.ready is False

def test_venv_binary_per_platform(tmp_path):
    assert venv_binary(tmp_path, "python", windows=False) == tmp_path / "bin" / "python"
    assert venv_binary(tmp_path, "pip", windows=True) == tmp_path / "Scripts" / "pip.exe"

def test_install_failure_is_reported_not_raised(ready_settings):
    sb = SandboxManager(ready_settings)
    sb.initialize()
    # le venv factice n'a pas de pip: l'échec doit être un résultat, pas une exception
    out = sb.install_packages(["requests"])
    assert out.success is False
    assert "requests" not in sb.installed_packages
    assert out.message

def test_already_installed_is_noop(ready_settings):
    sb = SandboxManager(ready_settings)
    sb.environment.installed_packages.add("numpy")
    out = sb.install_packages(["numpy"])
    assert out.success and out.installed == []

def test_install_success_accumulates(ready_settings):
    if os.name == "nt":
        pytest.skip("pip factice POSIX uniquement")
    sb = SandboxManager(ready_settings)
    sb.initialize()
    pip = sb.pip_path
    pip.write_text("#!/bin/sh\nexit 0\n", encoding="utf-8")
    pip.chmod(0o755)
    out = sb.install_packages(["pandas numpy", "pandas"])
    assert out.success
    assert out.installed == ["pandas", "numpy"]
    assert {"pandas", "numpy"} <= sb.installed_packages

def test_missing_base_interpreter_fails_initialize(tmp_path):
    s = make_settings(tmp_path, {"python.executable": str(tmp_path / "no-python")})
    with pytest.raises(SandboxInitError):
        SandboxManager(s).initialize()

def test_real_venv_creation(tmp_path):
    import importlib.util
    if importlib.util.find_spec("ensurepip") is None:
        pytest.skip("ensurepip indisponible")
    s = make_settings(tmp_path)
    sb = SandboxManager(s)
    env = sb.initialize()
    assert env.ready
    assert Path(sb.python_path).exists()
