"""
Tests for the esc-params CLI and environment settings.
"""
from pathlib import Path

import pytest
from typer.testing import CliRunner

from esc_params.configuration import ParameterStore
from esc_params.main import app
from esc_params.settings import DEFAULT_IMAGE, load_settings
from esc_params.storage.flash import FLASH_PAGE_SIZE, FileFlash

runner = CliRunner()


@pytest.fixture
def image(tmp_path, clean_env):
    clean_env.chdir(tmp_path)
    return tmp_path / "esc.bin"


def _run(image, *args):
    return runner.invoke(app, ["--image", str(image), *args])


# =============================================================================
# Settings
# =============================================================================

class TestSettings:

    def test_defaults(self, tmp_path, clean_env):
        clean_env.chdir(tmp_path)
        s = load_settings()
        assert s.image_path == Path(DEFAULT_IMAGE)
        assert s.region == 0
        assert s.erase_size == FLASH_PAGE_SIZE
        assert s.log_level == "INFO"

    def test_environment_overrides(self, tmp_path, clean_env):
        clean_env.chdir(tmp_path)
        clean_env.setenv("ESC_PARAMS_REGION", "0x800")
        clean_env.setenv("ESC_PARAMS_ERASE_SIZE", "4096")
        clean_env.setenv("ESC_PARAMS_LOG_LEVEL", "debug")
        s = load_settings()
        assert s.region == 2048
        assert s.erase_size == 4096
        assert s.log_level == "DEBUG"

    def test_env_file(self, tmp_path, clean_env):
        env = tmp_path / "custom.env"
        env.write_text("ESC_PARAMS_IMAGE=/tmp/other.bin\n", encoding="utf-8")
        s = load_settings(env)
        assert s.image_path == Path("/tmp/other.bin")

    def test_bad_integer(self, tmp_path, clean_env):
        clean_env.chdir(tmp_path)
        clean_env.setenv("ESC_PARAMS_REGION", "page2")
        with pytest.raises(ValueError):
            load_settings()


# =============================================================================
# CLI
# =============================================================================

class TestCli:

    def test_get_by_name_and_index(self, image):
        result = _run(image, "get", "motor_kv")
        assert result.exit_code == 0, result.output
        assert "motor_kv = 850" in result.output

        result = _run(image, "get", "0")
        assert result.exit_code == 0
        assert "motor_num_poles = 14" in result.output

    def test_set_persists_to_image(self, image):
        result = _run(image, "set", "motor_kv", "900")
        assert result.exit_code == 0, result.output
        assert image.exists()

        store = ParameterStore.from_storage(FileFlash(image))
        assert store.get_param_by_name("motor_kv").value == 900.0
        assert "motor_kv = 900" in _run(image, "get", "motor_kv").output

    def test_set_out_of_bounds(self, image):
        result = _run(image, "set", "motor_kv", "99")
        assert result.exit_code == 1
        assert "outside" in result.output
        assert not image.exists()

    def test_unknown_parameter(self, image):
        result = _run(image, "get", "warp_drive")
        assert result.exit_code == 1
        assert "Unknown parameter" in result.output
        assert _run(image, "set", "22", "1").exit_code == 1

    def test_reset(self, image):
        _run(image, "set", "motor_current_limit", "5")
        result = _run(image, "reset")
        assert result.exit_code == 0, result.output
        store = ParameterStore.from_storage(FileFlash(image))
        assert store.get_param_by_name("motor_current_limit").value == 10.0

    def test_list_and_groups(self, image):
        result = _run(image, "list")
        assert result.exit_code == 0, result.output
        result = _run(image, "groups")
        assert result.exit_code == 0, result.output
        assert "LINEAR" in result.output

    def test_xml_export_import(self, image, tmp_path):
        xml_path = tmp_path / "params.xml"
        _run(image, "set", "pwm_throttle_max", "1800")
        result = _run(image, "export-xml", str(xml_path))
        assert result.exit_code == 0, result.output

        other = tmp_path / "other.bin"
        result = _run(other, "import-xml", str(xml_path))
        assert result.exit_code == 0, result.output
        store = ParameterStore.from_storage(FileFlash(other))
        assert store.get_param_by_name("pwm_throttle_max").value == 1800.0

    def test_import_reports_rejected_values(self, image, tmp_path):
        xml_path = tmp_path / "params.xml"
        xml_path.write_text(
            "<ESCParameters><motor_kv>20</motor_kv><motor_rs>0.5</motor_rs></ESCParameters>",
            encoding="utf-8")
        result = _run(image, "import-xml", str(xml_path))
        assert result.exit_code == 0, result.output
        assert "Rejected motor_kv" in result.output
        store = ParameterStore.from_storage(FileFlash(image))
        assert store.get_param_by_name("motor_rs").value == 0.5
        assert store.get_param_by_name("motor_kv").value == 850.0

    def test_import_bad_document(self, image, tmp_path):
        xml_path = tmp_path / "params.xml"
        xml_path.write_text("<MCConfiguration/>", encoding="utf-8")
        result = _run(image, "import-xml", str(xml_path))
        assert result.exit_code == 1

    def test_invalid_log_level(self, image):
        result = runner.invoke(app, ["--image", str(image), "--log-level", "LOUD", "list"])
        assert result.exit_code == 1
