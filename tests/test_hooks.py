"""
Tests for the hook collector.
"""

import asyncio
import json

import pytest

from selfcorrect.hooks import SelfCorrectionHooks
from selfcorrect.models import Severity


@pytest.fixture
def hooks(system):
    return SelfCorrectionHooks(system)


def last_activity(system):
    return system.store.history[-1]


# =============================================================================
# Commands
# =============================================================================

class TestCommandHooks:
    """Tests for begin_command / complete_command."""

    @pytest.mark.asyncio
    async def test_successful_command(self, hooks, system):
        marker = await hooks.begin_command("npm test", {"cwd": "/app"})
        diagnosis = await hooks.complete_command("npm test", 0, "ok", None, marker, {"cwd": "/app"})

        assert diagnosis.has_issue is False
        recorded = last_activity(system)
        assert recorded["type"] == "command_execution"
        assert recorded["success"] is True
        assert recorded["data"]["context"] == {"cwd": "/app"}
        assert recorded["session_id"] == system.session_id

    @pytest.mark.asyncio
    async def test_duration_from_marker(self, hooks, system):
        marker = await hooks.begin_command("sleep")
        await asyncio.sleep(0.02)
        await hooks.complete_command("sleep", 0, "", None, marker)
        assert last_activity(system)["data"]["duration"] > 0

    @pytest.mark.asyncio
    async def test_no_marker_means_zero_duration(self, hooks, system):
        await hooks.complete_command("ls", 0, "", None)
        assert last_activity(system)["data"]["duration"] == 0

    @pytest.mark.asyncio
    async def test_exception_stored_as_message(self, hooks, system):
        diagnosis = await hooks.complete_command("cp a b", 0, "", PermissionError("Permission denied"))

        recorded = last_activity(system)
        assert recorded["data"]["error"] == "Permission denied"
        assert recorded["success"] is False
        assert diagnosis.root_cause == "permission-denied"

    @pytest.mark.asyncio
    async def test_one_activity_per_completion(self, hooks, system):
        before = len(system.store.history)
        marker = await hooks.begin_command("ls")
        assert len(system.store.history) == before
        await hooks.complete_command("ls", 0, "", None, marker)
        assert len(system.store.history) == before + 1


# =============================================================================
# Templates and mechanisms
# =============================================================================

class TestTemplateAndMechanismHooks:
    @pytest.mark.asyncio
    async def test_template_failure(self, hooks, system):
        marker = await hooks.begin_template("react-component", {"name": "Button"})
        diagnosis = await hooks.complete_template(
            "react-component",
            False,
            errors=["Cannot find module './Button.styles'"],
            marker=marker,
            parameters={"name": "Button"},
        )

        assert diagnosis.root_cause == "missing-dependency"
        assert last_activity(system)["data"]["parameters"] == {"name": "Button"}

    @pytest.mark.asyncio
    async def test_mechanism_success(self, hooks, system):
        marker = await hooks.begin_mechanism("build-automation", "build")
        diagnosis = await hooks.complete_mechanism(
            "build-automation", "build", True, output={"artifacts": 3}, marker=marker,
        )

        assert diagnosis.has_issue is False
        assert last_activity(system)["data"]["operation"] == "build"
        assert marker.subject == "build-automation:build"


# =============================================================================
# Feedback, metrics and manual triggers
# =============================================================================

class TestReportHooks:
    @pytest.mark.asyncio
    async def test_feedback_always_success(self, hooks, system):
        diagnosis = await hooks.report_user_feedback("negative", "Edited the wrong file")
        assert last_activity(system)["success"] is True
        assert diagnosis.root_cause == "negative-feedback"

    @pytest.mark.asyncio
    async def test_metric_exceeded(self, hooks, system):
        diagnosis = await hooks.report_performance_metric("build_time_ms", 120000, 60000)
        data = last_activity(system)["data"]
        assert data["exceeded"] is True
        assert data["success"] is False
        assert diagnosis.has_issue is True

    @pytest.mark.asyncio
    async def test_metric_within_threshold(self, hooks, system):
        diagnosis = await hooks.report_performance_metric("build_time_ms", 100, 60000)
        assert last_activity(system)["success"] is True
        assert diagnosis.has_issue is False

    @pytest.mark.asyncio
    async def test_emergency_escalates(self, hooks, system):
        diagnosis = await hooks.trigger_emergency_correction("command_execution", {
            "command": "build && deploy",
            "exit_code": 1,
            "error": "&& is not a valid statement separator",
        })

        assert diagnosis.severity == Severity.HIGH
        assert last_activity(system)["data"]["emergency"] is True
        assert system.last_result.action == "immediate"

    @pytest.mark.asyncio
    async def test_learn_unknown_type(self, hooks):
        assert await hooks.learn_from_activity("telepathy", {}) is None

    @pytest.mark.asyncio
    async def test_insights(self, hooks):
        await hooks.learn_from_activity("command_execution", {"command": "x", "exit_code": 1, "error": "Access denied"})
        insights = hooks.get_insights()
        assert insights.total_activities == 1
        assert insights.pattern_counts["command_errors"] == 1


# =============================================================================
# camelCase payloads
# =============================================================================

class TestCamelCasePayloads:
    """Hosts may send exitCode / templateId / mechanismId style keys."""

    @pytest.mark.asyncio
    async def test_failing_command_is_an_issue(self, hooks, system):
        diagnosis = await hooks.learn_from_activity("command_execution", {"command": "npm test", "exitCode": 1})

        assert diagnosis.has_issue is True
        assert diagnosis.root_cause == "command-failed"
        assert system.store.success_patterns == []
        assert last_activity(system)["data"]["exit_code"] == 1

    @pytest.mark.asyncio
    async def test_template_id(self, hooks, system):
        diagnosis = await hooks.learn_from_activity("template_instantiation", {
            "templateId": "react-component",
            "errors": ["Cannot find module './utils'"],
        })

        assert diagnosis.root_cause == "missing-dependency"
        assert system.store.get_pattern("template_failures", "react-component").count == 1

    @pytest.mark.asyncio
    async def test_emergency_mechanism_with_camel_case_descriptor(self, hooks, system, temp_dir):
        config_file = temp_dir / "loader.json"
        config_file.write_text(json.dumps({"paths": {"root": "lib"}}))

        diagnosis = await hooks.trigger_emergency_correction("mechanism_execution", {
            "mechanismId": "config-loader",
            "operation": "load",
            "errors": ["ENOENT: file not found"],
            "output": {"loaded": 0},
            "correction": {"configPath": str(config_file), "configKey": "paths.root", "correctValue": "src"},
        })

        assert diagnosis.root_cause == "mechanism-file-missing"
        assert diagnosis.severity == Severity.HIGH
        assert system.last_result.success is True
        assert json.loads(config_file.read_text()) == {"paths": {"root": "src"}}


# =============================================================================
# Toggle and failure isolation
# =============================================================================

class TestToggle:
    """Disabled hooks must not write anything."""

    @pytest.mark.asyncio
    async def test_disable_means_no_writes(self, hooks, system, backend):
        writes = backend.writes
        log_lines = len(system.store.correction_log.read_lines())

        hooks.disable()
        assert hooks.enabled is False
        assert await hooks.complete_command("build && deploy", 1, "", "&& is not a valid statement separator") is None
        await hooks.complete_mechanism("m", "run", False, errors=["ENOENT"])
        await hooks.report_user_feedback("negative", "bad")
        await hooks.report_performance_metric("t", 10, 1)

        assert backend.writes == writes
        assert len(system.store.correction_log.read_lines()) == log_lines
        assert system.store.history == []

    @pytest.mark.asyncio
    async def test_enable_again(self, hooks, system):
        hooks.disable()
        hooks.enable()
        await hooks.complete_command("ls", 0, "", None)
        assert len(system.store.history) == 1


class TestFailureIsolation:
    @pytest.mark.asyncio
    async def test_learning_errors_never_raise(self, hooks, system, monkeypatch):
        async def broken(activity_type, data=None):
            raise RuntimeError("store exploded")

        monkeypatch.setattr(system, "monitor_activity", broken)

        assert await hooks.complete_command("ls", 1, "", "boom") is None
        assert await hooks.report_user_feedback("negative", "x") is None
