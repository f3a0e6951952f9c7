"""Unit tests for OpenTofu command helpers."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from plumbum import CommandNotFound

from stackwright._errors import BackendCommandError
from stackwright._tofu import (
    TofuResult,
    change_summary_from_messages,
    ensure_success,
    flatten_state_resources,
    parse_json_lines,
    render_plan_changes,
    run_tofu,
    unwrap_outputs,
)
from stackwright.preview_engine import parse_preview_output


class _FakeCommand:
    def __init__(self, captured: dict[str, object], result: tuple[int, str, str]) -> None:
        self.captured = captured
        self.result = result

    def __getitem__(self, args: list[str]) -> _FakeCommand:
        self.captured["args"] = list(args)
        return self

    def run(self, **kwargs: object) -> tuple[int, str, str]:
        self.captured.update(kwargs)
        return self.result


class _FakeLocal:
    def __init__(self, result: tuple[int, str, str] = (0, "ok", "")) -> None:
        self.captured: dict[str, object] = {}
        self.result = result

    def __getitem__(self, name: str) -> _FakeCommand:
        if name == "missing-tofu":
            raise CommandNotFound(name, [])
        self.captured["program"] = name
        return _FakeCommand(self.captured, self.result)


def test_run_tofu_invokes_plumbum(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    fake_local = _FakeLocal()
    monkeypatch.setattr("stackwright._tofu.local", fake_local)

    result = run_tofu(["plan", "-no-color"], tmp_path, {"TF_LOG": "INFO"})

    assert result == TofuResult(success=True, stdout="ok", stderr="", return_code=0), (
        "Expected a successful result"
    )
    assert fake_local.captured["program"] == "tofu", "Expected the default binary"
    assert fake_local.captured["args"] == ["plan", "-no-color"], "Expected args to be passed"
    assert fake_local.captured["cwd"] == str(tmp_path), "Expected cwd to be passed"
    assert fake_local.captured["retcode"] is None, "Non-zero exits should not raise"
    env = fake_local.captured["env"]
    assert isinstance(env, dict), "Expected an environment mapping"
    assert env["TF_IN_AUTOMATION"] == "1", "Automation mode should be set"
    assert env["TF_LOG"] == "INFO", "Extra env should be merged"


def test_run_tofu_reports_failure(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setattr("stackwright._tofu.local", _FakeLocal((1, "", "boom")))

    result = run_tofu(["apply"], tmp_path, tofu_bin="/opt/tofu")

    assert result.success is False, "Non-zero exit should not be successful"
    assert result.return_code == 1, "Return code should be kept"


def test_run_tofu_missing_binary(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setattr("stackwright._tofu.local", _FakeLocal())
    with pytest.raises(BackendCommandError, match="'missing-tofu' was not found"):
        run_tofu(["init"], tmp_path, tofu_bin="missing-tofu")


def test_run_tofu_rejects_control_characters(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="invalid control character"):
        run_tofu(["plan\n-destroy"], tmp_path)


def test_ensure_success_raises_with_stderr(tmp_path: Path) -> None:
    failed = TofuResult(success=False, stdout="", stderr="Error: bad config\n", return_code=1)
    with pytest.raises(BackendCommandError, match="tofu plan failed .*return_code=1.*bad config") as info:
        ensure_success(failed, "plan", tmp_path)
    assert info.value.return_code == 1, "Return code should be attached"


def test_ensure_success_uses_json_diagnostic(tmp_path: Path) -> None:
    stdout = json.dumps({"type": "diagnostic", "diagnostic": {"severity": "error", "summary": "Quota exceeded"}})
    failed = TofuResult(success=False, stdout=stdout, stderr="", return_code=1)
    with pytest.raises(BackendCommandError, match="Quota exceeded"):
        ensure_success(failed, "apply", tmp_path)


def test_ensure_success_passes_through(tmp_path: Path) -> None:
    ok = TofuResult(success=True, stdout="done", stderr="", return_code=0)
    assert ensure_success(ok, "init", tmp_path) is ok, "Successful result should be returned"


def test_parse_json_lines_skips_noise() -> None:
    stdout = '{"type": "version"}\n\nplain text\n[1, 2]\n{"type": "change_summary"}\n'
    assert [m["type"] for m in parse_json_lines(stdout)] == ["version", "change_summary"], (
        "Only JSON objects should be kept"
    )


def test_change_summary_uses_last_summary_message() -> None:
    messages = [
        {"type": "change_summary", "changes": {"add": 1, "change": 0, "remove": 0}},
        {"type": "change_summary", "changes": {"add": 3, "change": 2, "remove": 1}},
    ]
    assert change_summary_from_messages(messages) == {"create": 3, "update": 2, "delete": 1}, (
        "Latest summary should win"
    )


def test_change_summary_defaults_to_zero() -> None:
    assert change_summary_from_messages([]) == {"create": 0, "update": 0, "delete": 0}, (
        "Missing summary should report no changes"
    )


def test_unwrap_outputs_rejects_non_mapping() -> None:
    with pytest.raises(BackendCommandError, match="unexpected data"):
        unwrap_outputs([1, 2])


def test_render_plan_changes_marks_every_action() -> None:
    plan = {
        "resource_changes": [
            {"type": "aws_vpc", "name": "net", "change": {"actions": ["create"]}},
            {
                "type": "aws_s3_bucket",
                "name": "site",
                "change": {
                    "actions": ["update"],
                    "before": {"tags": {}, "acl": "private"},
                    "after": {"tags": {"team": "web"}, "acl": "private"},
                },
            },
            {"type": "aws_sqs_queue", "name": "jobs", "change": {"actions": ["delete"]}},
            {
                "type": "aws_instance",
                "name": "web",
                "index": 0,
                "change": {"actions": ["delete", "create"], "replace_paths": [["ami"]]},
            },
            {"type": "aws_iam_role", "name": "ci", "change": {"actions": ["no-op"]}},
        ]
    }

    text, tally = render_plan_changes(plan)

    assert text.splitlines() == [
        "+ aws_vpc net",
        "~ aws_s3_bucket site [diff: tags]",
        "- aws_sqs_queue jobs",
        "* aws_instance web[0] [replace: ami]",
    ], "Each change should render as a marker line"
    assert tally == {"create": 1, "update": 1, "delete": 1, "replace": 1, "same": 1}, (
        "Tally should count every action"
    )


def test_flatten_state_resources_includes_child_modules() -> None:
    state = {
        "values": {
            "root_module": {
                "resources": [{"address": "aws_vpc.net", "type": "aws_vpc", "name": "net"}],
                "child_modules": [
                    {
                        "resources": [
                            {
                                "address": "module.construct.aws_s3_bucket.site",
                                "type": "aws_s3_bucket",
                                "name": "site",
                                "values": {"bucket": "site"},
                            }
                        ]
                    }
                ],
            }
        }
    }

    records = flatten_state_resources(state)

    assert [record.urn for record in records] == [
        "aws_vpc.net",
        "module.construct.aws_s3_bucket.site",
    ], "Root and child resources should be listed"
    assert records[1].state == {"bucket": "site"}, "Resource values should be kept"


def test_flatten_state_resources_empty_state() -> None:
    assert flatten_state_resources({}) == [], "Empty state should have no resources"


def test_render_plan_changes_keeps_for_each_keys_in_one_token() -> None:
    plan = {
        "resource_changes": [
            {
                "type": "aws_s3_bucket",
                "name": "site",
                "index": "eu west",
                "change": {"actions": ["delete", "create"]},
            }
        ]
    }

    text, _ = render_plan_changes(plan)
    changes = parse_preview_output(text)

    assert text == '* aws_s3_bucket site["eu\\u0020west"]', "Spaces in keys should be escaped"
    assert [change.name for change in changes] == ['site["eu\\u0020west"]'], (
        "The whole label should parse as the resource name"
    )
    assert json.loads(changes[0].name[len("site[") : -1]) == "eu west", "Key should round-trip"
