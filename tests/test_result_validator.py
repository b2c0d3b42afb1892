"""Tests for the result validator: completeness, quality, anomalies and output."""

import json

import numpy as np
import pytest

from conftest import make_result
from physim.config import ResultValidatorConfig
from physim.physics_validator import PhysicsValidator
from physim.result_validator import (ResultValidator, classify_severity, classify_trend,
                                     describe, smoothness)
from physim.validation_types import ValidationCategory


@pytest.fixture
def validator():
    return ResultValidator()


class TestAnomalies:
    def test_single_spike_is_one_critical_anomaly(self, validator):
        times = np.arange(50) * 0.1
        x = np.zeros(50)
        x[25] = 10.0
        anomalies = validator.find_anomalies("x", x, times)
        assert len(anomalies) == 1
        assert anomalies[0]["type"] == "spike"
        assert anomalies[0]["index"] == 25
        assert anomalies[0]["time"] == pytest.approx(2.5)
        assert anomalies[0]["severity"] == "critical"

    def test_single_dip_is_a_drop(self, validator):
        times = np.arange(50) * 0.1
        x = np.ones(50)
        x[10] = -9.0
        anomalies = validator.find_anomalies("x", x, times)
        assert [a["type"] for a in anomalies] == ["drop"]

    def test_spike_lowers_the_anomaly_score(self, validator):
        times = np.arange(50) * 0.1
        x = np.zeros(50)
        x[25] = 10.0
        report = validator.validate(make_result(times, x=x))
        check = report.checks["anomalies"]
        assert check.metrics["by_severity"]["critical"] == 1
        assert check.score == pytest.approx(1.0 - 1.0 / 50)
        assert any("critical" in w for w in report.warnings)

    def test_smooth_series_has_none(self, validator, smooth_result):
        assert validator.find_anomalies("x", smooth_result.series("x"), smooth_result.times()) == []

    def test_severity_tiers(self):
        assert classify_severity(1.5) == "low"
        assert classify_severity(2.5) == "medium"
        assert classify_severity(4.0) == "high"
        assert classify_severity(6.0) == "critical"


class TestCompleteness:
    def test_nan_values_are_errors(self, validator):
        times = np.arange(20) * 0.1
        x = np.linspace(0.0, 1.0, 20)
        x[5] = np.nan
        report = validator.validate(make_result(times, x=x))
        completeness = report.checks["completeness"]
        assert completeness.metrics["non_finite"] == 1
        assert completeness.score == pytest.approx(0.95)
        assert any("NaN" in e for e in report.errors)

    def test_gaps_in_time(self, validator):
        times = np.concatenate([np.arange(10) * 0.1, [5.0]])
        report = validator.validate(make_result(times, x=np.ones(times.size)))
        assert report.checks["completeness"].metrics["gaps"] == 1

    def test_missing_values_are_counted(self, validator):
        result = make_result(np.arange(12) * 0.1, x=np.ones(12))
        result.time_series[3].variables["y"] = 1.0
        completeness = validator.validate(result).checks["completeness"]
        assert completeness.metrics["missing"] == 11
        assert completeness.metrics["non_finite"] == 0


class TestOutput:
    def test_too_few_points(self, validator):
        result = make_result(np.arange(5) * 0.1, x=np.ones(5))
        report = validator.validate(result)
        output = report.checks["output"]
        assert not output.passed
        assert output.score == pytest.approx(2 / 3)
        assert any("Only 5 data points" in w for w in report.warnings)

    def test_missing_metrics(self, validator, smooth_result):
        smooth_result.metrics = {}
        report = validator.validate(smooth_result)
        assert report.checks["output"].metrics["missing_metadata"] == ["metrics"]

    def test_min_points_is_configurable(self):
        result = make_result(np.arange(5) * 0.1, x=np.ones(5))
        validator = ResultValidator(ResultValidatorConfig(min_data_points=5))
        assert validator.validate(result).checks["output"].passed


class TestOverall:
    def test_smooth_result_succeeds(self, validator, smooth_result):
        report = validator.validate(smooth_result)
        assert report.success
        assert report.overall_score > 0.95
        assert set(report.checks) == {"completeness", "quality", "anomalies", "performance", "output"}
        assert report.recommendations == []

    def test_min_score_controls_success(self, smooth_result):
        strict = ResultValidator(ResultValidatorConfig(min_score=1.01))
        assert not strict.validate(smooth_result).success

    def test_statistics_and_trends(self, validator):
        times = np.arange(20) * 0.1
        report = validator.validate(make_result(times, x=times.copy(), y=np.sin(times * 10)))
        statistics = report.metrics.get_metric("statistics")
        trends = report.metrics.get_metric("trends")
        assert statistics["x"]["mean"] == pytest.approx(0.95)
        assert statistics["x"]["count"] == 20
        assert trends["x"]["trend"] == "increasing"
        assert trends["y"]["trend"] == "oscillating"

    def test_report_serialises(self, validator, smooth_result):
        plain = validator.validate(smooth_result).to_dict()
        assert plain["success"]
        assert "statistics" in plain["metrics"]["custom_metrics"]


class TestHelpers:
    def test_smoothness(self):
        assert smoothness(np.ones(10)) == 1.0
        assert smoothness(np.linspace(0.0, 1.0, 10)) == pytest.approx(1.0)

    def test_describe_constant_series(self):
        summary = describe(np.full(5, 2.0))
        assert summary["std"] == 0.0
        assert summary["confidence_interval"] == [2.0, 2.0]

    def test_flat_trend(self):
        assert classify_trend(np.ones(10))["trend"] == "stable"


class TestReportMerge:
    def test_merge_combines_checks_and_issues(self, smooth_result):
        report = ResultValidator().validate(make_result(np.arange(5) * 0.1, x=np.ones(5)))
        physics = PhysicsValidator().validate(smooth_result)
        report.merge(physics)
        assert "conservation" in report.checks
        assert report.get_issues_by_category(ValidationCategory.OUTPUT)
        assert report.metrics.get_metric("validation_metrics") is not None
        assert json.loads(report.to_json())["checks"]["output"]["passed"] is False
