"""Unit tests — triggers/executor.py (SubprocessTrigger, TriggerExecutor)."""

from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest

from promptwatch.exceptions import (
    TriggerConfigurationError,
    TriggerExecutionError,
    TriggerNotFoundError,
    TriggerTimeoutError,
)
from promptwatch.triggers.executor import SubprocessTrigger, TriggerExecutor, parse_output_vars

ScriptFactory = Callable[..., Path]


@pytest.mark.unit
class TestParseOutputVars:
    def test_flat_object(self) -> None:
        assert parse_output_vars("t", '{"x": 1, "ok": true, "name": "v", "none": null}') == {
            "x": 1,
            "ok": True,
            "name": "v",
            "none": None,
        }

    def test_multiline_object(self) -> None:
        assert parse_output_vars("t", '{\n  "version": "2.0.0"\n}\n') == {"version": "2.0.0"}

    def test_nested_values_become_json_text(self) -> None:
        out = parse_output_vars("t", '{"labels": ["a", "b"], "meta": {"k": 1}}')
        assert out == {"labels": '["a", "b"]', "meta": '{"k": 1}'}

    @pytest.mark.parametrize("stdout", ["", "   \n", "not json", "[1, 2]", '"string"', "42"])
    def test_malformed_or_non_object_is_empty(self, stdout: str) -> None:
        assert parse_output_vars("t", stdout) == {}


@pytest.mark.unit
class TestSubprocessTrigger:
    async def test_exit_zero_fires_with_output(self, make_script: ScriptFactory) -> None:
        path = make_script("fire", """echo '{"x": 1}'""")
        outcome = await SubprocessTrigger("fire", path).run([])
        assert outcome.fired is True
        assert outcome.output_vars == {"x": 1}
        assert outcome.exit_code == 0
        assert outcome.duration_ms >= 0

    async def test_params_are_positional_arguments(self, make_script: ScriptFactory) -> None:
        path = make_script("echo-args", """printf '{"first": "%s", "second": "%s", "n": %s}' "$1" "$2" "$#" """)
        outcome = await SubprocessTrigger("echo-args", path).run(["a b", "$HOME"])
        assert outcome.output_vars == {"first": "a b", "second": "$HOME", "n": 2}

    async def test_non_zero_exit_is_not_fired(self, make_script: ScriptFactory) -> None:
        path = make_script("nope", """echo '{"x": 1}'; exit 1""")
        outcome = await SubprocessTrigger("nope", path).run([])
        assert outcome.fired is False
        assert outcome.exit_code == 1
        assert outcome.output_vars == {}

    async def test_malformed_stdout_still_fires(self, make_script: ScriptFactory) -> None:
        path = make_script("garbage", "echo 'definitely not json'")
        outcome = await SubprocessTrigger("garbage", path).run([])
        assert outcome.fired is True
        assert outcome.output_vars == {}

    async def test_stderr_is_captured(self, make_script: ScriptFactory) -> None:
        path = make_script("noisy", "echo 'checking upstream' >&2; exit 3")
        outcome = await SubprocessTrigger("noisy", path).run([])
        assert outcome.fired is False
        assert "checking upstream" in outcome.stderr

    async def test_missing_file_raises_not_found(self, triggers_dir: Path) -> None:
        with pytest.raises(TriggerNotFoundError) as exc_info:
            await SubprocessTrigger("ghost", triggers_dir / "ghost").run([])
        assert exc_info.value.transient is True

    async def test_non_executable_raises_not_found(self, make_script: ScriptFactory) -> None:
        path = make_script("plain", "exit 0", executable=False)
        with pytest.raises(TriggerNotFoundError):
            await SubprocessTrigger("plain", path).run([])

    async def test_timeout_kills_process(self, make_script: ScriptFactory, tmp_path: Path) -> None:
        marker = tmp_path / "survived"
        path = make_script("slow", f"sleep 5; touch {marker}")
        with pytest.raises(TriggerTimeoutError) as exc_info:
            await SubprocessTrigger("slow", path, timeout=0.2).run([])
        assert exc_info.value.transient is True
        assert not marker.exists()

    async def test_unlaunchable_params_raise_execution_error(self, make_script: ScriptFactory) -> None:
        path = make_script("fire", "exit 0")
        with pytest.raises(TriggerExecutionError) as exc_info:
            await SubprocessTrigger("fire", path).run(["a\x00b"])
        assert exc_info.value.transient is True


@pytest.mark.unit
class TestTriggerExecutor:
    def test_resolve_exact_name(self, make_script: ScriptFactory, triggers_dir: Path) -> None:
        path = make_script("npm-publish", "exit 0")
        assert TriggerExecutor(triggers_dir).resolve("npm-publish") == path

    def test_resolve_by_stem(self, make_script: ScriptFactory, triggers_dir: Path) -> None:
        path = make_script("gh-pr-merged.sh", "exit 0")
        assert TriggerExecutor(triggers_dir).resolve("gh-pr-merged") == path

    def test_resolve_ignores_yaml_sidecar(self, make_script: ScriptFactory, triggers_dir: Path) -> None:
        path = make_script("check.py", "exit 0")
        (triggers_dir / "check.yaml").write_text("description: x\n")
        assert TriggerExecutor(triggers_dir).resolve("check") == path

    def test_ambiguous_stem_is_not_found(self, make_script: ScriptFactory, triggers_dir: Path) -> None:
        make_script("dup.sh", "exit 0")
        make_script("dup.py", "exit 0")
        with pytest.raises(TriggerNotFoundError):
            TriggerExecutor(triggers_dir).resolve("dup")

    def test_missing_trigger(self, triggers_dir: Path) -> None:
        with pytest.raises(TriggerNotFoundError):
            TriggerExecutor(triggers_dir).resolve("nothing")

    def test_missing_directory(self, tmp_path: Path) -> None:
        with pytest.raises(TriggerNotFoundError):
            TriggerExecutor(tmp_path / "absent").resolve("anything")

    @pytest.mark.parametrize("name", ["../etc/passwd", "a/b", ".hidden", ""])
    def test_path_like_names_are_configuration_errors(self, triggers_dir: Path, name: str) -> None:
        with pytest.raises(TriggerConfigurationError) as exc_info:
            TriggerExecutor(triggers_dir).resolve(name)
        assert exc_info.value.transient is False

    async def test_run(self, make_script: ScriptFactory, triggers_dir: Path) -> None:
        make_script("fire", """echo '{"x": 1}'""")
        outcome = await TriggerExecutor(triggers_dir).run("fire", [])
        assert outcome.fired is True
        assert outcome.output_vars == {"x": 1}

    async def test_trigger_added_later_is_picked_up(
        self, make_script: ScriptFactory, triggers_dir: Path
    ) -> None:
        executor = TriggerExecutor(triggers_dir)
        with pytest.raises(TriggerNotFoundError):
            await executor.run("late", [])
        make_script("late", "exit 1")
        outcome = await executor.run("late", [])
        assert outcome.fired is False

    async def test_timeout_configured_on_executor(
        self, make_script: ScriptFactory, triggers_dir: Path
    ) -> None:
        make_script("slow", "sleep 5")
        with pytest.raises(TriggerTimeoutError):
            await TriggerExecutor(triggers_dir, timeout=0.2).run("slow", [])
