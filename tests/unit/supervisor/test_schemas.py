# tests/unit/supervisor/test_schemas.py — v1
"""Tests for supervisor/schemas.py."""

from __future__ import annotations

from qagate.core.models import WorkerJob, WorkerOutput
from qagate.supervisor.schemas import validate_job, validate_service_result, validate_worker_output


def _job(service: str = "info_worker", **kwargs) -> WorkerJob:
    fields = dict(job_id="j1", run_id="run_1", step_index=3, service=service)
    fields.update(kwargs)
    return WorkerJob(**fields)


def _space(**kwargs) -> dict:
    data = {"space_id": "space_kitchen", "label": "Kitchen", "category": "kitchen", "confidence": 0.9}
    data.update(kwargs)
    return data


class TestServiceResult:
    def test_unknown_service(self):
        check = validate_service_result(_job("painter", result={"x": 1}))
        assert not check.passed
        assert check.errors == ("Unknown service type: painter",)

    def test_completed_without_result(self):
        check = validate_service_result(_job(result={}))
        assert not check.passed

    def test_pending_without_result(self):
        assert validate_service_result(_job(status="running", result={})).passed

    def test_image_io(self):
        assert validate_service_result(_job("image_io", result={"images_count": 2, "artifact_ids": ["a", "b"]})).passed
        check = validate_service_result(_job("image_io", result={"images_count": "2"}))
        assert set(check.errors) == {"Missing images_count", "Missing or invalid artifact_ids array"}

    def test_info_worker_schema_invalid_flag(self):
        check = validate_service_result(
            _job(result={"artifact_id": "a1", "spaces_count": 3, "schema_valid": False}),
        )
        assert check.errors == ("Worker reported schema_valid=false",)

    def test_comparison(self):
        assert validate_service_result(
            _job("comparison", result={"pass": True, "recommended_next_step": "continue"}),
        ).passed
        assert not validate_service_result(_job("comparison", result={"pass": "yes"})).passed


class TestWorkerOutput:
    def test_valid_spaces(self):
        check = validate_worker_output("info_worker", {"spaces": [_space()], "model_used": "m"})
        assert check.passed

    def test_field_paths_in_errors(self):
        check = validate_worker_output(
            "info_worker",
            {"spaces": [_space(space_id="Kitchen", category="garage", confidence="high")], "model_used": "m"},
        )
        assert not check.passed
        joined = " ".join(check.errors)
        assert "spaces.0.space_id" in joined
        assert "spaces.0.category" in joined
        assert "spaces.0.confidence" in joined

    def test_comparison_fail_needs_failures(self):
        check = validate_worker_output("comparison", {"pass": False, "recommended_next_step": "retry"})
        assert not check.passed
        ok = validate_worker_output(
            "comparison", {"pass": False, "recommended_next_step": "retry", "failures": ["wall"]},
        )
        assert ok.passed

    def test_unknown_worker_needs_data(self):
        assert not validate_worker_output("custom", {}).passed
        assert validate_worker_output("custom", {"anything": 1}).passed


def test_validate_job_includes_outputs():
    job = _job(
        result={"artifact_id": "a1", "spaces_count": 1},
        outputs=[WorkerOutput(worker_type="info_worker", data={"spaces": [], "model_used": ""})],
    )
    checks = validate_job(job)
    assert [c.name for c in checks] == ["info_worker_result", "info_worker_output"]
    assert checks[0].passed
    assert not checks[1].passed
