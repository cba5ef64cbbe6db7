import os
from unittest.mock import MagicMock, patch

import pytest

from cross_build import __main__
from cross_build.driver import BuildResult, InvocationDriver
from cross_build.registry import load_registry
from cross_build.shared.errors import BuildCancelledError, ProcessSpawnError

CUSTOM_TARGETS = """\
targets:
  linux-arm:
    triple: aarch64-unknown-linux-gnu
    linker: aarch64-linux-gnu-gcc
    linker_env: CARGO_TARGET_AARCH64_UNKNOWN_LINUX_GNU_LINKER
    command: build-arm
    description: Build for arm64 linux
"""


@pytest.fixture
def mock_popen():
    with patch("subprocess.Popen") as popen:
        popen.return_value.wait.return_value = 0
        yield popen


@pytest.fixture
def mock_which():
    with patch("shutil.which") as which:
        which.side_effect = lambda binary: f"/usr/bin/{binary}"
        yield which


class TestHelp:
    @pytest.mark.parametrize("argv", [[], ["help"], ["-h"], ["--help"]])
    def test_help(self, argv, capsys, mock_popen):
        snapshot = dict(os.environ)

        assert __main__.main(argv) == 0

        captured = capsys.readouterr()
        assert "Available commands:" in captured.out
        assert "build-linux " in captured.out
        assert "Build for linux" in captured.out
        assert "build-linux-musl" in captured.out
        assert "Build for linux (static)" in captured.out
        mock_popen.assert_not_called()
        assert dict(os.environ) == snapshot

    def test_help_lists_custom_commands(self, tmp_path, capsys):
        path = tmp_path / "targets.yaml"
        path.write_text(CUSTOM_TARGETS)

        assert __main__.main(["--targets", str(path), "help"]) == 0

        captured = capsys.readouterr()
        assert "build-arm" in captured.out
        assert "Build for arm64 linux" in captured.out

    def test_help_with_broken_targets_file(self, tmp_path, capsys):
        path = tmp_path / "targets.yaml"
        path.write_text("not: [valid")

        assert __main__.main(["--targets", str(path)]) == 0

        captured = capsys.readouterr()
        assert "Available commands:" in captured.out
        assert "Invalid YAML" in captured.err


class TestUnknownCommand:
    def test_unknown_command(self, capsys, mock_popen):
        assert __main__.main(["build-windows"]) == 1

        captured = capsys.readouterr()
        assert "Unknown command: build-windows" in captured.out
        assert "build-linux" in captured.out
        mock_popen.assert_not_called()


class TestTargetCommands:
    def test_child_terminated_by_signal(self, mock_popen, mock_which):
        mock_popen.return_value.wait.return_value = -15

        assert __main__.main(["build-linux"]) == 143

    def test_build_linux(self, mock_popen, mock_which):
        assert __main__.main(["build-linux"]) == 0

        mock_popen.assert_called_once()
        command = mock_popen.call_args.args[0]
        env = mock_popen.call_args.kwargs["env"]
        assert command == [
            "cargo",
            "build",
            "--release",
            "--target",
            "x86_64-unknown-linux-gnu",
        ]
        assert env["CARGO_TARGET_X86_64_UNKNOWN_LINUX_GNU_LINKER"] == "x86_64-unknown-linux-gnu-gcc"
        changed = {key for key in env if os.environ.get(key) != env[key]}
        assert changed <= {"CARGO_TARGET_X86_64_UNKNOWN_LINUX_GNU_LINKER"}

    def test_build_linux_musl(self, mock_popen, mock_which):
        assert __main__.main(["build-linux-musl"]) == 0

        command = mock_popen.call_args.args[0]
        env = mock_popen.call_args.kwargs["env"]
        assert command[:5] == ["cargo", "build", "--release", "--target", "x86_64-unknown-linux-musl"]
        assert command[5] == "--config"
        assert "+crt-static" in command[6]
        assert env["CARGO_TARGET_X86_64_UNKNOWN_LINUX_MUSL_LINKER"] == "x86_64-linux-musl-gcc"

    def test_child_exit_code_propagated(self, mock_popen, mock_which, capsys):
        mock_popen.return_value.wait.return_value = 101

        assert __main__.main(["build-linux"]) == 101

        captured = capsys.readouterr()
        assert "[FAIL] linux-gnu" in captured.out

    def test_missing_linker(self, mock_popen, capsys):
        with patch("shutil.which", return_value=None):
            assert __main__.main(["build-linux-musl"]) == 1

        captured = capsys.readouterr()
        assert "x86_64-linux-musl-gcc" in captured.err
        mock_popen.assert_not_called()

    def test_driver_missing(self, mock_popen, mock_which, capsys):
        mock_popen.side_effect = FileNotFoundError(2, "No such file or directory", "cargo")

        assert __main__.main(["build-linux"]) == 1

        captured = capsys.readouterr()
        assert "Failed to start 'cargo'" in captured.err

    def test_debug_profile(self, mock_popen, mock_which):
        assert __main__.main(["build-linux", "--debug"]) == 0

        assert "--release" not in mock_popen.call_args.args[0]

    def test_global_options(self, mock_popen, mock_which, tmp_path):
        manifest = tmp_path / "Cargo.toml"

        assert __main__.main(
            ["--driver", "cross", f"--manifest-path={manifest}", "build-linux"]
        ) == 0

        command = mock_popen.call_args.args[0]
        assert command[0] == "cross"
        assert command[-2:] == ["--manifest-path", str(manifest)]

    def test_custom_targets_file(self, mock_popen, mock_which, tmp_path):
        path = tmp_path / "targets.yaml"
        path.write_text(CUSTOM_TARGETS)

        assert __main__.main(["--targets", str(path), "build-arm"]) == 0

        env = mock_popen.call_args.kwargs["env"]
        assert env["CARGO_TARGET_AARCH64_UNKNOWN_LINUX_GNU_LINKER"] == "aarch64-linux-gnu-gcc"

    def test_default_command_missing_from_custom_file(self, mock_popen, tmp_path):
        path = tmp_path / "targets.yaml"
        path.write_text(CUSTOM_TARGETS)

        assert __main__.main(["--targets", str(path), "build-linux"]) == 1
        mock_popen.assert_not_called()

    def test_invalid_targets_file(self, mock_popen, tmp_path, capsys):
        path = tmp_path / "targets.yaml"
        path.write_text("targets: {}\n")

        assert __main__.main(["--targets", str(path), "build-linux"]) == 1

        captured = capsys.readouterr()
        assert "Error:" in captured.err
        mock_popen.assert_not_called()


class TestCmdBuild:
    def test_build_by_name(self, mock_popen, mock_which):
        assert __main__.main(["build", "linux-musl"]) == 0

        assert "x86_64-unknown-linux-musl" in mock_popen.call_args.args[0]

    def test_build_unknown_target(self, mock_popen, capsys):
        assert __main__.main(["build", "nonexistent"]) == 1

        captured = capsys.readouterr()
        assert "Unknown target 'nonexistent'" in captured.err
        mock_popen.assert_not_called()

    def test_build_missing_target_argument(self, mock_popen):
        assert __main__.main(["build"]) == 2
        mock_popen.assert_not_called()

    def test_build_subcommand_help(self, mock_popen, capsys):
        assert __main__.main(["build", "--help"]) == 0
        mock_popen.assert_not_called()


class TestCmdBuildAll:
    def test_build_all_success(self, mock_popen, mock_which, capsys):
        assert __main__.main(["build-all"]) == 0

        assert mock_popen.call_count == 2
        captured = capsys.readouterr()
        assert "Build Summary" in captured.out
        assert "[OK] linux-gnu" in captured.out
        assert "[OK] linux-musl" in captured.out

    def test_build_all_failure(self, mock_popen, capsys):
        with patch("shutil.which", side_effect=lambda b: None if "musl" in b else f"/usr/bin/{b}"):
            assert __main__.main(["build-all"]) == 1

        captured = capsys.readouterr()
        assert "[OK] linux-gnu" in captured.out
        assert "[FAIL] linux-musl" in captured.out
        assert mock_popen.call_count == 1


class TestCmdList:
    def test_list(self, capsys, mock_popen):
        assert __main__.main(["list"]) == 0

        captured = capsys.readouterr()
        assert "linux-gnu" in captured.out
        assert "x86_64-unknown-linux-musl" in captured.out
        assert "x86_64-linux-musl-gcc (static)" in captured.out
        assert "x86_64-unknown-linux-gnu-gcc (dynamic)" in captured.out
        mock_popen.assert_not_called()

    def test_list_rejects_unknown_option(self, capsys):
        assert __main__.main(["list", "--bogus"]) == 2

        captured = capsys.readouterr()
        assert "unrecognized arguments: --bogus" in captured.err
        assert "Registered targets:" not in captured.out

    def test_list_help(self, capsys):
        assert __main__.main(["list", "--help"]) == 0

        captured = capsys.readouterr()
        assert "List registered targets" in captured.out


class TestRunBuild:
    def test_success(self, capsys):
        driver = MagicMock(spec=InvocationDriver)
        driver.build.return_value = BuildResult("linux-gnu", True, 0, 1.0)
        spec = load_registry().resolve("linux-gnu")

        assert __main__.run_build(driver, spec, MagicMock()) == 0

        captured = capsys.readouterr()
        assert "[OK] linux-gnu (x86_64-unknown-linux-gnu)" in captured.out

    def test_cancelled(self, capsys):
        driver = MagicMock(spec=InvocationDriver)
        driver.build.side_effect = BuildCancelledError("linux-gnu")
        spec = load_registry().resolve("linux-gnu")

        assert __main__.run_build(driver, spec, MagicMock()) == 130

        captured = capsys.readouterr()
        assert "Build interrupted." in captured.out

    def test_spawn_error(self, capsys):
        driver = MagicMock(spec=InvocationDriver)
        driver.build.side_effect = ProcessSpawnError("linux-gnu", "cargo", "denied")
        spec = load_registry().resolve("linux-gnu")

        assert __main__.run_build(driver, spec, MagicMock()) == 1

        captured = capsys.readouterr()
        assert "Error: [linux-gnu] Failed to start 'cargo': denied" in captured.err

    def test_killed_by_signal(self, capsys):
        driver = MagicMock(spec=InvocationDriver)
        driver.build.return_value = BuildResult("linux-gnu", False, -9, 1.0)
        spec = load_registry().resolve("linux-gnu")

        assert __main__.run_build(driver, spec, MagicMock()) == 137

        captured = capsys.readouterr()
        assert "[FAIL] linux-gnu (x86_64-unknown-linux-gnu) exited with -9" in captured.out


class TestSplitGlobalOptions:
    def test_no_options(self):
        assert __main__.split_global_options(["build-linux", "--debug"]) == (
            {},
            ["build-linux", "--debug"],
        )

    def test_separate_value(self):
        options, rest = __main__.split_global_options(["--targets", "t.yaml", "list"])
        assert options == {"--targets": "t.yaml"}
        assert rest == ["list"]

    def test_inline_value(self):
        options, rest = __main__.split_global_options(["--driver=cross", "build-linux"])
        assert options == {"--driver": "cross"}
        assert rest == ["build-linux"]

    def test_stops_at_unknown_option(self):
        options, rest = __main__.split_global_options(["--help"])
        assert options == {}
        assert rest == ["--help"]

    def test_missing_value(self):
        with pytest.raises(ValueError, match="--targets requires a value"):
            __main__.split_global_options(["--targets"])

    def test_missing_value_exit_code(self, capsys):
        assert __main__.main(["--driver"]) == 1
        assert "requires a value" in capsys.readouterr().err
