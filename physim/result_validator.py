# -*- coding: utf-8 -*-
"""
Result Validator
Checks a simulation result as plain data, without physical meaning:
completeness, statistical quality, anomalies, performance and output shape,
plus per-variable descriptive statistics and trend classification.
"""

import time
from typing import Any, Callable, Dict, List, Optional

import numpy as np
from scipy import stats

from .config import RESULT_CHECK_WEIGHTS, SEVERITY_LEVELS, ResultValidatorConfig
from .integration_engine import TIME_SYMBOL
from .logging_utils import get_logger
from .simulation_state import SimulationResult
from .validation_types import (ValidationCategory, ValidationCheck, ValidationReport,
                               ValidationSeverity, weighted_score)

logger = get_logger(__name__)

_CATEGORIES = {
    'completeness': ValidationCategory.COMPLETENESS,
    'quality': ValidationCategory.DATA_QUALITY,
    'anomalies': ValidationCategory.ANOMALY,
    'performance': ValidationCategory.PERFORMANCE,
    'output': ValidationCategory.OUTPUT,
}

# Score penalty per anomaly, by severity tier
ANOMALY_PENALTY = {'low': 0.25, 'medium': 0.5, 'high': 0.75, 'critical': 1.0}

MAX_REPORTED_ANOMALIES = 100


def classify_severity(ratio: float) -> str:
    """Severity tier for a deviation expressed in standard deviations"""
    for tier, limit in SEVERITY_LEVELS.items():
        if ratio <= limit:
            return tier
    return 'critical'


def midpoint_deviation(values: np.ndarray) -> np.ndarray:
    """Signed distance of each interior point from its neighbours' midpoint"""
    return values[1:-1] - (values[:-2] + values[2:]) / 2


def smoothness(values: np.ndarray) -> float:
    """1 / (1 + mean|d2y| / mean|dy|); 1.0 for constant series"""
    if values.size < 3:
        return 1.0
    first = float(np.mean(np.abs(np.diff(values))))
    if first < 1e-15:
        return 1.0
    second = float(np.mean(np.abs(np.diff(values, n=2))))
    return 1.0 / (1.0 + second / first)


def classify_trend(values: np.ndarray) -> Dict[str, Any]:
    """Least-squares slope and r² with an increasing/decreasing/stable/oscillating label"""
    if values.size < 3 or np.ptp(values) == 0:
        return {'slope': 0.0, 'r_squared': 0.0, 'trend': 'stable'}
    fit = stats.linregress(np.arange(values.size), values)
    r_squared = float(fit.rvalue ** 2)
    differences = np.diff(values)
    signs = np.sign(differences[differences != 0])
    turns = int(np.count_nonzero(signs[1:] != signs[:-1])) if signs.size > 1 else 0
    if r_squared > 0.5:
        trend = 'increasing' if fit.slope > 0 else 'decreasing'
    elif turns >= 2:
        trend = 'oscillating'
    else:
        trend = 'stable'
    return {'slope': float(fit.slope), 'r_squared': r_squared, 'trend': trend, 'turning_points': turns}


def describe(values: np.ndarray) -> Dict[str, Any]:
    """Mean, standard deviation, skewness, kurtosis and a 95% confidence interval"""
    if values.size == 0:
        return {'count': 0}
    mean = float(np.mean(values))
    std = float(np.std(values, ddof=1)) if values.size > 1 else 0.0
    summary = {'count': int(values.size), 'mean': mean, 'std': std,
               'min': float(np.min(values)), 'max': float(np.max(values)),
               'skewness': 0.0, 'kurtosis': 0.0, 'confidence_interval': [mean, mean]}
    if values.size > 2 and std > 0:
        summary['skewness'] = float(stats.skew(values))
        summary['kurtosis'] = float(stats.kurtosis(values))
        low, high = stats.t.interval(0.95, values.size - 1, loc=mean, scale=stats.sem(values))
        summary['confidence_interval'] = [float(low), float(high)]
    return summary


class ResultValidator:
    """Scores the numerical quality of a simulation result"""

    def __init__(self, config: Optional[ResultValidatorConfig] = None):
        self.config = config or ResultValidatorConfig()
        self.checks: Dict[str, Callable] = {
            'completeness': self.check_completeness,
            'quality': self.check_quality,
            'anomalies': self.check_anomalies,
            'performance': self.check_performance,
            'output': self.check_output,
        }

    @staticmethod
    def _variable_series(result: SimulationResult) -> Dict[str, np.ndarray]:
        return {name: result.series(name) for name in result.variable_names() if name != TIME_SYMBOL}

    def validate(self, result: SimulationResult, ir: Any = None) -> ValidationReport:
        """Run every check; never raises"""
        start_time = time.perf_counter()
        report = ValidationReport(target_type='simulation_result')
        series = self._variable_series(result)

        for name, check_fn in self.checks.items():
            try:
                check = check_fn(result, series, report)
            except Exception as e:
                logger.warning(f"Result check '{name}' failed: {e}")
                report.add(ValidationSeverity.ERROR, _CATEGORIES[name], f"{name} check failed: {e}")
                check = ValidationCheck(name, passed=False, score=0.0, details=[str(e)])
            report.checks[name] = check
            report.metrics.validators_run.append(name)

        try:
            finite = {n: v[np.isfinite(v)] for n, v in series.items()}
            report.metrics.add_metric('statistics', {n: describe(v) for n, v in finite.items()})
            report.metrics.add_metric('trends', {n: classify_trend(v) for n, v in finite.items()})
        except Exception as e:
            report.add(ValidationSeverity.WARNING, ValidationCategory.GENERAL,
                       f"Statistical analysis failed: {e}")

        report.overall_score = weighted_score(report.check_scores(), RESULT_CHECK_WEIGHTS)
        report.success = report.overall_score >= self.config.min_score
        self._recommend(report)
        report.metrics.execution_time = time.perf_counter() - start_time
        logger.info(f"Result validation: score={report.overall_score:.3f}, success={report.success}")
        return report

    # ===============================================================================
    # Completeness
    # ===============================================================================

    def check_completeness(self, result, series, report) -> ValidationCheck:
        points = len(result.time_series)
        names = list(series)
        missing = sum(1 for s in result.time_series for n in names if n not in s.variables)
        values = np.concatenate(list(series.values())) if series else np.array([])
        non_finite = int(np.count_nonzero(~np.isfinite(values))) - missing
        absurd = int(np.count_nonzero(np.abs(values[np.isfinite(values)]) > self.config.max_abs_value))

        gaps = 0
        times = result.times()
        intervals = np.diff(times)
        if intervals.size > 1:
            median = float(np.median(intervals))
            if median > 0:
                gaps = int(np.count_nonzero(intervals > self.config.max_gap_factor * median))

        total_values = max(1, values.size)
        score = 1.0 - (missing + non_finite + absurd) / total_values - gaps / max(1, intervals.size)
        if missing:
            report.add(ValidationSeverity.WARNING, ValidationCategory.COMPLETENESS,
                       f"{missing} values missing from the time series")
        if non_finite:
            report.add(ValidationSeverity.ERROR, ValidationCategory.COMPLETENESS,
                       f"{non_finite} values are NaN or infinite",
                       "Reduce the time step or check for division by zero in the equations")
        if absurd:
            report.add(ValidationSeverity.WARNING, ValidationCategory.COMPLETENESS,
                       f"{absurd} values exceed {self.config.max_abs_value:g} in magnitude")
        if gaps:
            report.add(ValidationSeverity.WARNING, ValidationCategory.COMPLETENESS,
                       f"{gaps} gaps longer than {self.config.max_gap_factor:g}x the median step")
        return ValidationCheck(
            'completeness', passed=not (missing or non_finite or absurd or gaps), score=score,
            metrics={'data_points': points, 'variables': len(names), 'missing': missing,
                     'non_finite': non_finite, 'absurd_values': absurd, 'gaps': gaps})

    # ===============================================================================
    # Quality
    # ===============================================================================

    def check_quality(self, result, series, report) -> ValidationCheck:
        config = self.config
        outliers = total = 0
        noise_levels: Dict[str, float] = {}
        smooth_scores: Dict[str, float] = {}

        for name, raw in series.items():
            values = raw[np.isfinite(raw)]
            if values.size < 3:
                continue
            total += values.size
            q1, q3 = np.percentile(values, [25, 75])
            spread = config.outlier_iqr_factor * (q3 - q1)
            outliers += int(np.count_nonzero((values < q1 - spread) | (values > q3 + spread)))

            span = float(np.ptp(values))
            noise_levels[name] = float(np.mean(np.abs(midpoint_deviation(values)))) / span if span > 0 else 0.0
            smooth_scores[name] = smoothness(values)

        outlier_ratio = outliers / total if total else 0.0
        noise = max(noise_levels.values(), default=0.0)
        smooth = min(smooth_scores.values(), default=1.0)

        if outlier_ratio > config.max_outlier_ratio:
            report.add(ValidationSeverity.WARNING, ValidationCategory.DATA_QUALITY,
                       f"Outlier ratio {outlier_ratio:.1%} exceeds {config.max_outlier_ratio:.1%}")
        if noise > config.noise_threshold:
            variable = max(noise_levels, key=noise_levels.get)
            report.add(ValidationSeverity.WARNING, ValidationCategory.DATA_QUALITY,
                       f"{variable} is noisy (level {noise:.3f})", variable=variable)
        if smooth < config.smoothness_threshold:
            variable = min(smooth_scores, key=smooth_scores.get)
            report.add(ValidationSeverity.WARNING, ValidationCategory.DATA_QUALITY,
                       f"{variable} is not smooth (score {smooth:.3f})", variable=variable)

        score = ((1.0 - outlier_ratio) + (1.0 - min(1.0, noise)) + smooth) / 3
        return ValidationCheck(
            'quality',
            passed=(outlier_ratio <= config.max_outlier_ratio and noise <= config.noise_threshold
                    and smooth >= config.smoothness_threshold),
            score=score,
            metrics={'outlier_ratio': outlier_ratio, 'noise_level': noise, 'smoothness': smooth,
                     'noise_by_variable': noise_levels, 'smoothness_by_variable': smooth_scores})

    # ===============================================================================
    # Anomalies
    # ===============================================================================

    def find_anomalies(self, name: str, values: np.ndarray, times: np.ndarray) -> List[Dict[str, Any]]:
        """Spikes, drops and oscillations from neighbour-relative deviations"""
        finite = np.isfinite(values)
        if values.size < 3 or not finite.all():
            return []
        std = float(np.std(values))
        if std <= 0:
            return []
        deviation = midpoint_deviation(values)
        magnitude = np.abs(deviation)
        flagged = magnitude / std > 1.0
        anomalies: List[Dict[str, Any]] = []
        for offset in np.nonzero(flagged)[0]:
            sign = np.sign(deviation[offset])
            opposite = [j for j in (offset - 1, offset + 1)
                        if 0 <= j < flagged.size and flagged[j] and np.sign(deviation[j]) == -sign]
            # Neighbours of a single spike deviate by half as much; skip those echoes
            if any(magnitude[j] > 1.5 * magnitude[offset] for j in opposite):
                continue
            i = offset + 1
            extremum = (values[i] - values[i - 1]) * (values[i] - values[i + 1]) > 0
            if extremum and any(1.5 * magnitude[j] >= magnitude[offset] for j in opposite):
                kind = 'oscillation'
            else:
                kind = 'spike' if sign > 0 else 'drop'
            ratio = float(magnitude[offset] / std)
            anomalies.append({'variable': name, 'index': int(i), 'time': float(times[i]),
                              'type': kind, 'deviation': ratio,
                              'severity': classify_severity(ratio)})
        return anomalies

    def check_anomalies(self, result, series, report) -> ValidationCheck:
        times = result.times()
        anomalies: List[Dict[str, Any]] = []
        for name, values in series.items():
            anomalies.extend(self.find_anomalies(name, values, times))

        counts = {tier: 0 for tier in SEVERITY_LEVELS}
        for anomaly in anomalies:
            counts[anomaly['severity']] += 1
        penalty = sum(ANOMALY_PENALTY[tier] * count for tier, count in counts.items())
        score = 1.0 - penalty / max(1, len(result.time_series))

        if counts['critical'] or counts['high']:
            report.add(ValidationSeverity.WARNING, ValidationCategory.ANOMALY,
                       f"{counts['critical']} critical and {counts['high']} high severity anomalies",
                       "Inspect the flagged samples; the solver may be unstable")
        elif anomalies:
            report.add(ValidationSeverity.INFO, ValidationCategory.ANOMALY,
                       f"{len(anomalies)} minor anomalies detected")
        return ValidationCheck('anomalies', passed=not anomalies, score=score,
                               metrics={'count': len(anomalies), 'by_severity': counts,
                                        'anomalies': anomalies[:MAX_REPORTED_ANOMALIES]})

    # ===============================================================================
    # Performance and Output
    # ===============================================================================

    def check_performance(self, result, series, report) -> ValidationCheck:
        config = self.config
        processing_time = float(result.computation_time)
        memory_mb = len(result.time_series) * max(1, len(series)) * 8 / (1024 * 1024)
        times = result.times()
        simulated = float(times[-1] - times[0]) if times.size > 1 else 0.0
        cpu = min(1.0, processing_time / simulated) if simulated > 0 else 0.0

        def within(value: float, limit: float) -> float:
            return 1.0 if value <= limit else limit / value

        sub_scores = [within(processing_time, config.max_processing_time),
                      within(memory_mb, config.max_memory_mb),
                      within(cpu, config.max_cpu_utilization)]
        if processing_time > config.max_processing_time:
            report.add(ValidationSeverity.WARNING, ValidationCategory.PERFORMANCE,
                       f"Processing took {processing_time:.1f}s (limit {config.max_processing_time:g}s)")
        if memory_mb > config.max_memory_mb:
            report.add(ValidationSeverity.WARNING, ValidationCategory.PERFORMANCE,
                       f"Result occupies about {memory_mb:.1f} MB (limit {config.max_memory_mb:g} MB)")
        return ValidationCheck('performance', passed=min(sub_scores) == 1.0,
                               score=float(np.mean(sub_scores)),
                               metrics={'processing_time': processing_time, 'memory_mb': memory_mb,
                                        'cpu_utilization': cpu})

    def check_output(self, result, series, report) -> ValidationCheck:
        config = self.config
        non_empty = bool(result.time_series)
        missing_metadata = [key for key in config.required_metadata if not getattr(result, key, None)]
        enough_points = len(result.time_series) >= config.min_data_points
        if not non_empty:
            report.add(ValidationSeverity.ERROR, ValidationCategory.OUTPUT, "Time series is empty")
        if missing_metadata:
            report.add(ValidationSeverity.WARNING, ValidationCategory.OUTPUT,
                       f"Result is missing {', '.join(missing_metadata)}")
        if non_empty and not enough_points:
            report.add(ValidationSeverity.WARNING, ValidationCategory.OUTPUT,
                       f"Only {len(result.time_series)} data points "
                       f"(minimum {config.min_data_points})")
        passed = [non_empty, not missing_metadata, enough_points]
        return ValidationCheck('output', passed=all(passed), score=sum(passed) / len(passed),
                               metrics={'data_points': len(result.time_series),
                                        'variables': len(series),
                                        'missing_metadata': missing_metadata})

    # ===============================================================================
    # Recommendations
    # ===============================================================================

    @staticmethod
    def _recommend(report: ValidationReport):
        rules = {
            'completeness': "Check for missing or corrupted data points",
            'quality': "Reduce the time step to suppress noise and outliers",
            'anomalies': "Review detected anomalies and consider improving numerical stability",
            'performance': "Use a larger time step or shorter duration to reduce cost",
            'output': "Run longer or sample more often to meet the output requirements",
        }
        for name, check in report.checks.items():
            if not check.passed and name in rules:
                report.add_recommendation(rules[name])
