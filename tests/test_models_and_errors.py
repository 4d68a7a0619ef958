import io
import json
from pathlib import Path

from crossbake.errors import (
    BuildFailed,
    ConfigurationError,
    CrossbakeError,
    CyclicDependency,
    ErrorCode,
    MissingStaticArtifact,
    PatchConflict,
    PatchError,
    StageTimeout,
)
from crossbake.models import BuildResult, Patch
from crossbake.observability import StructuredLogger


def test_error_to_dict_and_string_rendering() -> None:
    error = MissingStaticArtifact(
        "Static archive is missing from the sandbox.",
        hint="Build the dependency first.",
        context={"dependency": "ssl", "empty": ""},
    )

    payload = error.to_dict()

    assert payload["code"] == "E_MISSING_STATIC_ARTIFACT"
    assert payload["hint"] == "Build the dependency first."
    assert payload["context"] == {"dependency": "ssl", "empty": ""}
    rendered = str(error)
    assert "Hint: Build the dependency first." in rendered
    assert "dependency: ssl" in rendered
    assert "empty" not in rendered


def test_error_hierarchy_groups_preflight_failures() -> None:
    assert issubclass(CyclicDependency, ConfigurationError)
    assert issubclass(MissingStaticArtifact, ConfigurationError)
    assert issubclass(PatchConflict, PatchError)
    assert issubclass(StageTimeout, CrossbakeError)
    assert not issubclass(BuildFailed, ConfigurationError)


def test_build_failure_carries_stage_and_excerpt() -> None:
    error = BuildFailed("link stage failed.", stage="link", log_excerpt="undefined reference\n")

    assert error.code == ErrorCode.BUILD_FAILED
    assert error.context["stage"] == "link"
    assert error.log_excerpt == "undefined reference\n"


def test_stage_timeout_message() -> None:
    error = StageTimeout(stage="compile", timeout=1800.0)

    assert str(error).startswith("Stage `compile` exceeded its 1800s bound.")
    assert error.context["timeout"] == "1800"


def test_build_result_usability() -> None:
    ok = BuildResult(architecture="x86_64", status="success")
    shaky = BuildResult(
        architecture="aarch64",
        status="success",
        warnings=("inconclusive: segfault",),
    )
    failed = BuildResult(architecture="armv7", status="verify_failed")

    assert ok.usable and not ok.inconclusive
    assert shaky.usable and shaky.inconclusive
    assert not failed.usable
    assert failed.summary_line() == "armv7: verify_failed"


def test_build_result_payload_is_json_ready() -> None:
    result = BuildResult(
        architecture="x86_64",
        status="success",
        artifact=Path("dist/app-x86_64"),
        duration=1.23456,
    )

    payload = json.loads(json.dumps(result.to_payload()))

    assert payload["artifact"] == "dist/app-x86_64"
    assert payload["duration"] == 1.235
    assert payload["state"] == "done"


def test_patch_label_and_scope() -> None:
    patch = Patch(target="CMakeLists.txt", op="append-line", payload="x", architectures=("armv7",))

    assert patch.label == "append-line:CMakeLists.txt"
    assert patch.applies_to("armv7")
    assert not patch.applies_to("x86_64")


def test_structured_logger_filters_by_architecture() -> None:
    logger = StructuredLogger()
    logger.log(
        operation="stage_start",
        architecture="x86_64",
        state="building",
        component="executor",
        message="Running compile stage.",
    )
    logger.log(
        operation="run_start",
        architecture=None,
        state=None,
        component="orchestrator",
        message="Starting build matrix.",
        extra={"architectures": ["x86_64"]},
    )

    assert [record["operation"] for record in logger.records_for_architecture("x86_64")] == [
        "stage_start"
    ]
    assert logger.records[1]["extra"] == {"architectures": ["x86_64"]}


def test_structured_logger_streams_debug_records_without_keeping_them() -> None:
    stream = io.StringIO()
    logger = StructuredLogger(stream=stream)

    logger.log(
        operation="build_output",
        architecture="aarch64",
        state="building",
        component="executor",
        message="cc -c main.c",
        level="debug",
    )
    logger.log(
        operation="stage_complete",
        architecture="aarch64",
        state="building",
        component="executor",
        message="Completed compile stage.",
    )

    lines = [json.loads(line) for line in stream.getvalue().splitlines()]
    assert [line["operation"] for line in lines] == ["build_output", "stage_complete"]
    assert lines[0]["level"] == "debug"
    assert [record["operation"] for record in logger.records] == ["stage_complete"]
