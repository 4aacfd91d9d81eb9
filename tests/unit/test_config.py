from __future__ import annotations

from pathlib import Path

import pytest

from calcorrect.config import CorrectionConfig, load_config, resolve_directories
from calcorrect.errors import ConfigurationError, DirectoryError


def test_defaults() -> None:
    cfg = load_config()
    assert isinstance(cfg, CorrectionConfig)
    assert cfg.mode == "dark"
    assert cfg.input_stages == ["_cr", "_ov", ""]
    assert cfg.auxiliary == ["_sky", "_obj"]
    assert cfg.clobber is False
    assert cfg.master_kind == "dark"
    assert cfg.resolved_output_stage == "_dk"


def test_response_mode_output_stage_and_kind() -> None:
    cfg = load_config(overrides=["mode=response"])
    assert cfg.master_kind == "resp"
    assert cfg.resolved_output_stage == "_rr"


def test_yaml_then_overrides(tmp_path: Path) -> None:
    yml = tmp_path / "run.yaml"
    yml.write_text(
        "mode: response\n"
        "clobber: false\n"
        "naming:\n"
        "  prefix: sci\n"
        "paths:\n"
        "  out_dir: /tmp/out\n",
        encoding="utf-8",
    )
    cfg = load_config(yml, ["clobber=true", "naming.width=5"])
    assert cfg.mode == "response"
    assert cfg.clobber is True
    assert cfg.naming.prefix == "sci"
    assert cfg.naming.width == 5
    assert cfg.paths.out_dir == "/tmp/out"
    assert cfg.paths.data_dir == "data/reduced"


def test_explicit_output_stage_wins() -> None:
    assert load_config(overrides=["output_stage=_dark"]).resolved_output_stage == "_dark"


@pytest.mark.parametrize(
    "overrides, message",
    [
        (["mode=flat"], "mode"),
        (["n_slices=0"], "n_slices"),
        (["input_stages=[]"], "input_stages"),
        (["output_stage=_cr"], "collides"),
    ],
)
def test_invalid_values_raise(overrides, message) -> None:
    with pytest.raises(ConfigurationError, match=message):
        load_config(overrides=overrides)


@pytest.mark.parametrize("overrides", [["no_such_key=1"], ["n_slices=abc"], ["clobber=maybe"]])
def test_unknown_keys_and_bad_types_raise(overrides) -> None:
    with pytest.raises(ConfigurationError, match="invalid configuration"):
        load_config(overrides=overrides)


def test_missing_config_file(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError, match="not found"):
        load_config(tmp_path / "absent.yaml")


def test_resolve_directories_creates_outputs(make_config, run_dirs) -> None:
    paths = resolve_directories(make_config())
    assert paths.data_dir == run_dirs["data"].resolve()
    for d in (paths.master_dir, paths.out_dir, paths.events_dir):
        assert d.is_dir()


def test_resolve_directories_requires_calibration_dir(make_config, run_dirs) -> None:
    run_dirs["calib"].rmdir()
    with pytest.raises(DirectoryError, match="calib_dir"):
        resolve_directories(make_config())


def test_configuration_errors_are_fatal_errors() -> None:
    from calcorrect.errors import CalCorrectError

    assert issubclass(ConfigurationError, CalCorrectError)
    assert issubclass(DirectoryError, CalCorrectError)
