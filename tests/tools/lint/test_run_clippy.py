"""Tests for the sequential clippy orchestrator."""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING

import pytest
from tools._shared.problem_details import tool_missing_problem_details
from tools._shared.process import ToolExecutionError, set_process_runner
from tools._shared.settings import ClippySettings
from tools.lint.clippy_targets import CLIPPY_TARGETS
from tools.lint.run_clippy import ClippyOrchestrator, LintReport, LintRunState, main

from kwasm_common.errors import ErrorCode, LintAbortedError

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from tests.conftest import RecordingRunner

EXPECTED_COMMAND = ("cargo", "+nightly", "clippy", "--all")


def _dirs(root: Path, *relative_paths: str) -> list[Path]:
    return [root / relative_path for relative_path in relative_paths]


@pytest.fixture
def installed_runner(recording_runner: RecordingRunner) -> Iterator[RecordingRunner]:
    """Install ``recording_runner`` as the global process runner for CLI tests."""
    previous = set_process_runner(recording_runner)  # type: ignore[arg-type]
    yield recording_runner
    set_process_runner(previous)


class TestCommand:
    """Tests for the clippy command line."""

    def test_default_command_matches_nightly_clippy_all(self) -> None:
        orchestrator = ClippyOrchestrator(root=Path("/repo"), settings=ClippySettings())

        assert orchestrator.command() == EXPECTED_COMMAND

    def test_command_follows_settings(self) -> None:
        settings = ClippySettings(toolchain="+1.80.0", args=("--workspace", "--all-targets"))
        orchestrator = ClippyOrchestrator(root=Path("/repo"), settings=settings)

        assert orchestrator.command() == (
            "cargo",
            "+1.80.0",
            "clippy",
            "--workspace",
            "--all-targets",
        )

    def test_plan_lists_every_target_in_order(self) -> None:
        orchestrator = ClippyOrchestrator(root=Path("/repo"), settings=ClippySettings())

        plan = orchestrator.plan()

        assert [directory for _, directory, _ in plan] == [
            Path("/repo/pkg/controller"),
            Path("/repo/pkg/kube-rs"),
            Path("/repo/pkg/kube-runtime-abi"),
            Path("/repo/pkg/wasm-delay-queue"),
            Path("/repo/controllers/ring-rust-controller"),
            Path("/repo/controllers/simple-rust-controller"),
        ]
        assert {command for _, _, command in plan} == {EXPECTED_COMMAND}


class TestRun:
    """Tests for ClippyOrchestrator.run."""

    def test_all_targets_clean_completes_with_zero(
        self, workspace: Callable[..., Path], recording_runner: RecordingRunner
    ) -> None:
        root = workspace()
        orchestrator = ClippyOrchestrator(
            root=root, settings=ClippySettings(), runner=recording_runner
        )

        report = orchestrator.run()

        assert report.state is LintRunState.COMPLETED
        assert report.exit_code == 0
        assert report.failed_target is None
        assert report.problem is None
        assert recording_runner.directories == [
            target.resolve(root) for target in CLIPPY_TARGETS
        ]
        assert all(command == EXPECTED_COMMAND for command, _, _ in recording_runner.calls)

    def test_each_invocation_blocks_and_streams_output(
        self, workspace: Callable[..., Path], recording_runner: RecordingRunner
    ) -> None:
        root = workspace()
        settings = ClippySettings(timeout_seconds=30)
        ClippyOrchestrator(root=root, settings=settings, runner=recording_runner).run()

        for _, _, options in recording_runner.calls:
            assert options["check"] is True
            assert options["capture_output"] is False
            assert options["timeout"] == 30

    def test_missing_directory_stops_before_invoking_it(
        self, workspace: Callable[..., Path], recording_runner: RecordingRunner
    ) -> None:
        root = workspace(missing=["pkg/kube-runtime-abi"])
        orchestrator = ClippyOrchestrator(
            root=root, settings=ClippySettings(), runner=recording_runner
        )

        report = orchestrator.run()

        assert recording_runner.directories == _dirs(root, "pkg/controller", "pkg/kube-rs")
        assert report.state is LintRunState.ABORTED
        assert report.exit_code != 0
        assert report.failed_target == CLIPPY_TARGETS[2]
        assert report.problem is not None
        assert report.problem["type"] == "https://kube-wasm.dev/problems/lint-target-missing"
        assert report.problem["target"] == "pkg/kube-runtime-abi"

    def test_target_that_is_a_file_aborts(
        self, workspace: Callable[..., Path], recording_runner: RecordingRunner
    ) -> None:
        root = workspace(missing=["pkg/controller"])
        (root / "pkg").mkdir(exist_ok=True)
        (root / "pkg" / "controller").write_text("not a crate", encoding="utf-8")

        report = ClippyOrchestrator(
            root=root, settings=ClippySettings(), runner=recording_runner
        ).run()

        assert recording_runner.calls == []
        assert report.state is LintRunState.ABORTED
        assert report.exit_code == 1

    @pytest.mark.parametrize("failing_index", range(len(CLIPPY_TARGETS)))
    def test_failing_target_stops_the_run(
        self,
        workspace: Callable[..., Path],
        recording_runner: RecordingRunner,
        failing_index: int,
    ) -> None:
        root = workspace()
        failing_dir = CLIPPY_TARGETS[failing_index].resolve(root)
        recording_runner.statuses[failing_dir] = 101

        report = ClippyOrchestrator(
            root=root, settings=ClippySettings(), runner=recording_runner
        ).run()

        expected = [target.resolve(root) for target in CLIPPY_TARGETS[: failing_index + 1]]
        assert recording_runner.directories == expected
        assert report.state is LintRunState.ABORTED
        assert report.exit_code == 101
        assert report.failed_target == CLIPPY_TARGETS[failing_index]
        assert [outcome.returncode for outcome in report.outcomes] == [0] * failing_index + [101]

    def test_missing_cargo_aborts_with_problem_details(
        self, workspace: Callable[..., Path], recording_runner: RecordingRunner
    ) -> None:
        root = workspace()
        first_dir = CLIPPY_TARGETS[0].resolve(root)
        recording_runner.errors[first_dir] = ToolExecutionError(
            "Executable 'cargo' could not be resolved to an absolute path",
            command=EXPECTED_COMMAND,
            problem=tool_missing_problem_details(
                EXPECTED_COMMAND, executable="cargo", detail="not found"
            ),
        )

        report = ClippyOrchestrator(
            root=root, settings=ClippySettings(), runner=recording_runner
        ).run()

        assert recording_runner.directories == [first_dir]
        assert report.exit_code == 1
        assert report.outcomes[0].returncode is None
        assert report.problem is not None
        assert report.problem["type"] == "https://kube-wasm.dev/problems/tool-missing"

    @pytest.mark.parametrize(("signal_number", "expected"), [(9, 137), (15, 143), (2, 130)])
    def test_clippy_killed_by_signal_exits_like_a_shell(
        self,
        workspace: Callable[..., Path],
        recording_runner: RecordingRunner,
        signal_number: int,
        expected: int,
    ) -> None:
        root = workspace()
        recording_runner.statuses[root / "pkg/kube-rs"] = -signal_number

        report = ClippyOrchestrator(
            root=root, settings=ClippySettings(), runner=recording_runner
        ).run()

        assert report.state is LintRunState.ABORTED
        assert report.outcomes[-1].returncode == -signal_number
        assert report.exit_code == expected
        assert report.to_payload()["exit_code"] == expected

    def test_payload_is_json_serialisable(
        self, workspace: Callable[..., Path], recording_runner: RecordingRunner
    ) -> None:
        root = workspace(failing={"pkg/kube-rs": 2})
        recording_runner.statuses[root / "pkg/kube-rs"] = 2

        report = ClippyOrchestrator(
            root=root, settings=ClippySettings(), runner=recording_runner
        ).run()
        payload = json.loads(json.dumps(report.to_payload()))

        assert payload["state"] == "aborted"
        assert payload["exit_code"] == 2
        assert payload["failed_target"] == "pkg/kube-rs"
        assert [entry["target"] for entry in payload["outcomes"]] == [
            "pkg/controller",
            "pkg/kube-rs",
        ]
        assert payload["problem"]["returncode"] == 2


class TestReportStateMachine:
    """Tests for LintReport transitions."""

    def test_starts_running_with_non_zero_exit(self) -> None:
        report = LintReport(root=Path("/repo"))

        assert report.state is LintRunState.RUNNING
        assert report.exit_code == 1

    def test_terminal_states_are_final(self) -> None:
        report = LintReport(root=Path("/repo"))
        report.complete()

        with pytest.raises(RuntimeError):
            report.abort(CLIPPY_TARGETS[0], {"type": "x"})
        with pytest.raises(RuntimeError):
            report.complete()


class TestRunOrRaise:
    """Tests for ClippyOrchestrator.run_or_raise."""

    def test_returns_report_when_clean(
        self, workspace: Callable[..., Path], recording_runner: RecordingRunner
    ) -> None:
        report = ClippyOrchestrator(
            root=workspace(), settings=ClippySettings(), runner=recording_runner
        ).run_or_raise()

        assert report.state is LintRunState.COMPLETED

    def test_raises_lint_failed_for_clippy_failure(
        self, workspace: Callable[..., Path], recording_runner: RecordingRunner
    ) -> None:
        root = workspace()
        recording_runner.statuses[root / "pkg/controller"] = 1

        with pytest.raises(LintAbortedError) as excinfo:
            ClippyOrchestrator(
                root=root, settings=ClippySettings(), runner=recording_runner
            ).run_or_raise()

        error = excinfo.value
        assert error.code is ErrorCode.LINT_FAILED
        assert isinstance(error.report, LintReport)
        assert error.context["failed_target"] == "pkg/controller"

    def test_raises_target_missing_for_absent_directory(
        self, workspace: Callable[..., Path], recording_runner: RecordingRunner
    ) -> None:
        root = workspace(missing=["pkg/wasm-delay-queue"])

        with pytest.raises(LintAbortedError) as excinfo:
            ClippyOrchestrator(
                root=root, settings=ClippySettings(), runner=recording_runner
            ).run_or_raise()

        assert excinfo.value.code is ErrorCode.LINT_TARGET_MISSING
        assert len(recording_runner.calls) == 3


class TestMain:
    """Tests for the command-line entry point."""

    def test_root_derived_from_entry_point(
        self, workspace: Callable[..., Path], installed_runner: RecordingRunner
    ) -> None:
        root = workspace()

        exit_code = main([], entry_point=root / "devel" / "clippy.py")

        assert exit_code == 0
        assert installed_runner.directories == [target.resolve(root) for target in CLIPPY_TARGETS]

    def test_root_flag_overrides_entry_point(
        self,
        workspace: Callable[..., Path],
        installed_runner: RecordingRunner,
        tmp_path: Path,
    ) -> None:
        root = workspace()

        exit_code = main(["--root", str(root)], entry_point=tmp_path / "elsewhere" / "x.py")

        assert exit_code == 0
        assert installed_runner.directories[0] == root / "pkg/controller"

    def test_failure_exit_status_and_json_report(
        self,
        workspace: Callable[..., Path],
        installed_runner: RecordingRunner,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        root = workspace()
        installed_runner.statuses[root / "controllers/ring-rust-controller"] = 101

        exit_code = main(["--root", str(root), "--json"])

        assert exit_code == 101
        assert len(installed_runner.calls) == 5
        payload = json.loads(capsys.readouterr().out)
        assert payload["failed_target"] == "controllers/ring-rust-controller"
        assert payload["state"] == "aborted"

    def test_json_report_written_to_path_keeps_stdout_for_cargo(
        self,
        workspace: Callable[..., Path],
        installed_runner: RecordingRunner,
        capsys: pytest.CaptureFixture[str],
        tmp_path: Path,
    ) -> None:
        root = workspace()
        installed_runner.statuses[root / "pkg/kube-rs"] = -9
        report_path = tmp_path / "clippy-report.json"

        exit_code = main(["--root", str(root), "--json", str(report_path)])

        assert exit_code == 137
        assert capsys.readouterr().out == ""
        payload = json.loads(report_path.read_text(encoding="utf-8"))
        assert payload["exit_code"] == 137
        assert payload["failed_target"] == "pkg/kube-rs"

    def test_configuration_problem_written_to_path(
        self, installed_runner: RecordingRunner, tmp_path: Path
    ) -> None:
        report_path = tmp_path / "clippy-report.json"

        exit_code = main(["--root", str(tmp_path / "absent"), "--json", str(report_path)])

        assert exit_code == 2
        problem = json.loads(report_path.read_text(encoding="utf-8"))
        assert problem["type"] == "https://kube-wasm.dev/problems/configuration-error"

    def test_toolchain_flag_changes_command(
        self, workspace: Callable[..., Path], installed_runner: RecordingRunner
    ) -> None:
        root = workspace()

        main(["--root", str(root), "--toolchain", "stable"])

        assert installed_runner.calls[0][0] == ("cargo", "+stable", "clippy", "--all")

    def test_dry_run_prints_plan_without_running(
        self,
        workspace: Callable[..., Path],
        installed_runner: RecordingRunner,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        root = workspace()

        exit_code = main(["--root", str(root), "--dry-run"])

        assert exit_code == 0
        assert installed_runner.calls == []
        lines = capsys.readouterr().out.splitlines()
        assert lines[0] == f"cd {root / 'pkg/controller'} && cargo +nightly clippy --all"
        assert lines[-1] == (
            f"cd {root / 'controllers/simple-rust-controller'} && cargo +nightly clippy --all"
        )
        assert len(lines) == 6

    def test_invalid_timeout_is_a_configuration_error(
        self,
        installed_runner: RecordingRunner,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        exit_code = main(["--root", "/repo", "--timeout", "-5", "--json"])

        assert exit_code == 2
        assert installed_runner.calls == []
        problem = json.loads(capsys.readouterr().out)
        assert problem["type"] == "https://kube-wasm.dev/problems/tool-settings-invalid"

    def test_settings_read_from_environment(
        self,
        workspace: Callable[..., Path],
        installed_runner: RecordingRunner,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        root = workspace()
        monkeypatch.setenv("CLIPPY_ARGS", "--all,--,-D,warnings")

        main(["--root", str(root)])

        assert installed_runner.calls[0][0] == (
            "cargo",
            "+nightly",
            "clippy",
            "--all",
            "--",
            "-D",
            "warnings",
        )

    def test_missing_root_is_a_configuration_error(
        self,
        installed_runner: RecordingRunner,
        capsys: pytest.CaptureFixture[str],
        tmp_path: Path,
    ) -> None:
        exit_code = main(["--root", str(tmp_path / "absent"), "--json"])

        assert exit_code == 2
        assert installed_runner.calls == []
        problem = json.loads(capsys.readouterr().out)
        assert problem["type"] == "https://kube-wasm.dev/problems/configuration-error"
        assert problem["root"] == (tmp_path / "absent").resolve().as_posix()
