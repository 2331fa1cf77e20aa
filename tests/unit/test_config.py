import pytest

from lambdawatch import config, constants


class TestBuildTarget:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("arm64", constants.TARGET_ARM),
            ("aarch64", constants.TARGET_ARM),
            ("x86_64", constants.TARGET_X86_64),
            ("X86-64", constants.TARGET_X86_64),
            ("aarch64-unknown-linux-musl", "aarch64-unknown-linux-musl"),
            ("", None),
            (None, None),
        ],
    )
    def test_resolve_build_target(self, value, expected):
        assert config.resolve_build_target(value) == expected


class TestRuntimeApiAddress:
    def test_explicit_address(self):
        assert config.runtime_api_address("127.0.0.1", 9001) == "127.0.0.1:9001"

    def test_wildcard_host_is_reachable_locally(self):
        assert config.runtime_api_address("0.0.0.0", 9001) == f"{constants.LOCALHOST_IP}:9001"

    def test_defaults(self, monkeypatch):
        monkeypatch.setattr(config, "LAMBDA_RUNTIME_API_HOST", "localhost")
        monkeypatch.setattr(config, "LAMBDA_RUNTIME_API_PORT", 9100)
        assert config.runtime_api_address() == "localhost:9100"


class TestEnvironment:
    def test_load_env_file(self, tmp_path):
        env_file = tmp_path / "functions.env"
        env_file.write_text("TABLE_NAME=orders\n# comment\nSTAGE='local'\nEMPTY\n")

        assert config.load_env_file(str(env_file)) == {"TABLE_NAME": "orders", "STAGE": "local"}

    def test_load_env_file_without_path(self):
        assert config.load_env_file(None) == {}
        assert config.load_env_file("") == {}

    def test_load_missing_env_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            config.load_env_file(str(tmp_path / "missing.env"))

    def test_load_environment_profiles(self, tmp_path, monkeypatch):
        monkeypatch.setattr(config, "CONFIG_DIR", str(tmp_path))
        (tmp_path / "default.env").write_text("LAMBDA_TEST_VAR_A=default\n")
        (tmp_path / "dev.env").write_text("LAMBDA_TEST_VAR_A=dev\nLAMBDA_TEST_VAR_B=dev\n")
        (tmp_path / "ci.env").write_text("LAMBDA_TEST_VAR_B=ci\n")
        env = {"LAMBDA_TEST_VAR_B": "from-environment"}

        assert config.load_environment("dev, ci", env=env) == ["dev", "ci"]
        # later profiles win, but the existing environment is never overridden
        assert env == {"LAMBDA_TEST_VAR_A": "dev", "LAMBDA_TEST_VAR_B": "from-environment"}

    def test_load_default_profile(self, tmp_path, monkeypatch):
        monkeypatch.setattr(config, "CONFIG_DIR", str(tmp_path))
        (tmp_path / "default.env").write_text("LAMBDA_TEST_VAR_A=default\n")
        env = {}

        assert config.load_environment(None, env=env) == ["default"]
        assert env == {"LAMBDA_TEST_VAR_A": "default"}


def test_boolean_env(monkeypatch):
    monkeypatch.setenv("LAMBDA_TEST_FLAG", "true")
    assert config.is_env_true("LAMBDA_TEST_FLAG")
    assert config.is_env_not_false("LAMBDA_TEST_FLAG")

    monkeypatch.setenv("LAMBDA_TEST_FLAG", "0")
    assert not config.is_env_true("LAMBDA_TEST_FLAG")
    assert not config.is_env_not_false("LAMBDA_TEST_FLAG")

    monkeypatch.delenv("LAMBDA_TEST_FLAG")
    assert config.is_env_not_false("LAMBDA_TEST_FLAG")

