# -*- coding: utf-8 -*-
"""
Physics Validator
Audits a simulation time series against physical law: conservation of the
declared quantities, physical limits, numerical stability, dimensional
consistency of the IR and causality. Each audit yields a scored check and the
overall score is their weighted mean over the enabled checks.
"""

import time
from typing import Callable, Dict, List, Optional

import numpy as np

from .config import PHYSICS_CHECK_WEIGHTS, PhysicsValidatorConfig
from .integration_engine import TIME_SYMBOL
from .ir_builder import validate_ir
from .ir_types import PhysicsIR
from .logging_utils import get_logger
from .observables import OBSERVABLE_QUANTITIES
from .simulation_state import (SimulationResult, SimulationState, TimeSeriesSnapshot,
                               object_acceleration, object_names, object_position,
                               object_velocity, relative_deviations)
from .validation_types import (ConservationCheck, ValidationCategory, ValidationCheck,
                               ValidationReport, ValidationSeverity, weighted_score)

logger = get_logger(__name__)

TRIVIALLY_CONSERVED = ('mass', 'charge')
SPIKE_FACTOR = 10.0             # deviation over the series median that marks a kink

_CATEGORIES = {
    'conservation': ValidationCategory.CONSERVATION,
    'constraints': ValidationCategory.CONSTRAINTS,
    'stability': ValidationCategory.NUMERICAL_STABILITY,
    'dimensional': ValidationCategory.DIMENSIONAL_CONSISTENCY,
    'causality': ValidationCategory.CAUSALITY,
}


def _as_state(snapshot: TimeSeriesSnapshot) -> SimulationState:
    return SimulationState(time=snapshot.time, variables=snapshot.variables,
                           derivatives=snapshot.derivatives)


def unstable_point_ratio(values: np.ndarray, threshold: float) -> float:
    """Share of interior points that stray from their neighbours' midpoint

    A point strays when half its second difference exceeds `threshold` and it
    either flips curvature against the previous point or stands out at more than
    SPIKE_FACTOR times the series' median deviation. Smooth curved motion keeps
    a steady deviation and is not counted; zig-zags and isolated kinks are.
    """
    if values.size < 4:
        return 0.0
    curvature = values[2:] - 2 * values[1:-1] + values[:-2]
    deviation = np.abs(curvature) / 2
    alternating = np.zeros(curvature.size, dtype=bool)
    alternating[1:] = np.sign(curvature[1:]) * np.sign(curvature[:-1]) < 0
    spike = deviation > SPIKE_FACTOR * float(np.median(deviation))
    unstable = (deviation > threshold) & (alternating | spike)
    return float(np.count_nonzero(unstable)) / curvature.size


class PhysicsValidator:
    """Scores a simulation result against conservation laws and physical limits"""

    def __init__(self, config: Optional[PhysicsValidatorConfig] = None):
        self.config = config or PhysicsValidatorConfig()
        self.checks: Dict[str, Callable] = {
            'conservation': self.check_conservation,
            'constraints': self.check_constraints,
            'stability': self.check_stability,
            'dimensional': self.check_dimensional,
            'causality': self.check_causality,
        }

    def enabled_checks(self) -> List[str]:
        return [name for name in self.checks if getattr(self.config, f"enable_{name}")]

    def validate(self, result: SimulationResult, ir: Optional[PhysicsIR] = None) -> ValidationReport:
        """Run the enabled audits; never raises"""
        start_time = time.perf_counter()
        report = ValidationReport(target_type='simulation_result')

        if not result.time_series:
            report.add(ValidationSeverity.ERROR, ValidationCategory.GENERAL,
                       "Simulation result has no time series", "Run the simulation before validating")
            report.metrics.execution_time = time.perf_counter() - start_time
            return report

        for name in self.enabled_checks():
            try:
                check = self.checks[name](result, ir, report)
            except Exception as e:
                logger.warning(f"Physics check '{name}' failed: {e}")
                report.add(ValidationSeverity.ERROR, _CATEGORIES[name],
                           f"{name} check failed: {e}")
                check = ValidationCheck(name, passed=False, score=0.0, details=[str(e)])
            report.checks[name] = check
            report.metrics.validators_run.append(name)

        report.overall_score = weighted_score(report.check_scores(), PHYSICS_CHECK_WEIGHTS)
        report.success = (report.overall_score >= self.config.success_threshold
                          and not report.errors)
        report.metrics.execution_time = time.perf_counter() - start_time
        report.metrics.add_metric('validation_metrics', {
            'data_points': len(result.time_series),
            'checks_run': len(report.checks),
            'checks_passed': sum(1 for c in report.checks.values() if c.passed),
            'error_count': len(report.errors),
            'warning_count': len(report.warnings),
        })
        logger.info(f"Physics validation: score={report.overall_score:.3f}, success={report.success}")
        return report

    # ===============================================================================
    # Conservation
    # ===============================================================================

    def _threshold(self, quantity: str) -> float:
        return getattr(self.config, f"{quantity}_threshold", self.config.energy_threshold)

    def _declared_quantities(self, ir: Optional[PhysicsIR]) -> List[str]:
        if ir is None or not ir.system.conservation_laws:
            return list(OBSERVABLE_QUANTITIES)
        quantities: List[str] = []
        for law in ir.system.conservation_laws:
            if law.quantity not in quantities:
                quantities.append(law.quantity)
        return quantities

    def check_conservation(self, result, ir, report) -> ValidationCheck:
        details = []
        conservation: Dict[str, ConservationCheck] = {}
        for quantity in self._declared_quantities(ir):
            if quantity in TRIVIALLY_CONSERVED:
                conservation[quantity] = ConservationCheck(quantity, trivial=True)
                continue
            if quantity not in OBSERVABLE_QUANTITIES:
                details.append(f"{quantity}: no observable, skipped")
                continue
            series = result.series(quantity)
            threshold = self._threshold(quantity)
            final_dev, max_dev = relative_deviations(series)
            check = ConservationCheck(
                quantity=quantity,
                initial_value=float(series[0]),
                final_value=float(series[-1]),
                final_deviation=final_dev,
                max_deviation=max_dev,
                threshold=threshold,
                satisfied=max_dev <= threshold,
                score=max(0.0, 1.0 - max_dev / threshold),
            )
            conservation[quantity] = check
            details.append(f"{quantity}: max deviation {max_dev:.3e} (threshold {threshold:g})")
            if not check.satisfied:
                report.add(ValidationSeverity.WARNING, ValidationCategory.CONSERVATION,
                           f"{quantity} not conserved: max relative deviation {max_dev:.3%}",
                           "Reduce the time step or use the rk4 or adaptive solver",
                           quantity=quantity, max_deviation=max_dev)
                report.add_recommendation(f"Improve {quantity} conservation with a smaller "
                                          f"time step or a higher-order solver")

        scored = [c.score for c in conservation.values() if not c.trivial]
        score = float(np.mean(scored)) if scored else 1.0
        return ValidationCheck(
            'conservation',
            passed=all(c.satisfied for c in conservation.values()),
            score=score,
            metrics={name: c.to_dict() for name, c in conservation.items()},
            details=details,
        )

    # ===============================================================================
    # Physical Constraints
    # ===============================================================================

    def check_constraints(self, result, ir, report) -> ValidationCheck:
        config = self.config
        names = object_names(ir)
        counts = {'velocity': 0, 'acceleration': 0, 'position': 0, 'non_finite': 0}
        for snapshot in result.time_series:
            state = _as_state(snapshot)
            if not all(np.isfinite(v) for v in snapshot.variables.values()):
                counts['non_finite'] += 1
                continue
            for name in names:
                if np.linalg.norm(object_velocity(state, name)) >= config.max_velocity:
                    counts['velocity'] += 1
                if np.linalg.norm(object_acceleration(state, name)) >= config.max_acceleration:
                    counts['acceleration'] += 1
                if np.linalg.norm(object_position(state, name)) >= config.max_position:
                    counts['position'] += 1

        violations = sum(counts.values())
        ratio = violations / len(result.time_series)
        limits = {'velocity': config.max_velocity, 'acceleration': config.max_acceleration,
                  'position': config.max_position}
        for kind, count in counts.items():
            if not count:
                continue
            if kind == 'non_finite':
                message = f"{count} samples contain non-finite values"
            else:
                message = f"{kind} limit {limits[kind]:g} exceeded in {count} samples"
            report.add(ValidationSeverity.ERROR, ValidationCategory.CONSTRAINTS, message,
                       "Check equations and initial conditions for unphysical growth",
                       violations=count)
        if violations:
            report.add_recommendation("Check equations and initial conditions; values left physical limits")
        return ValidationCheck('constraints', passed=violations == 0, score=1.0 - ratio,
                               metrics={'violations': counts, 'violation_ratio': ratio})

    # ===============================================================================
    # Numerical Stability
    # ===============================================================================

    def check_stability(self, result, ir, report) -> ValidationCheck:
        config = self.config
        times = result.times()
        steps = np.diff(times)
        min_step = float(steps.min()) if steps.size else 0.0
        step_ok = steps.size == 0 or min_step > config.min_time_step
        if not step_ok:
            report.add(ValidationSeverity.ERROR, ValidationCategory.NUMERICAL_STABILITY,
                       f"Minimum step size {min_step:.3e} is below {config.min_time_step:g}",
                       "The integration collapsed its step size; use a different solver")

        convergence_ratios, oscillation_ratios = {}, {}
        for name in result.variable_names():
            if name == TIME_SYMBOL:
                continue
            values = result.series(name)
            if not np.all(np.isfinite(values)):
                continue
            convergence_ratios[name] = unstable_point_ratio(values, config.convergence_threshold)
            oscillation_ratios[name] = unstable_point_ratio(values, config.oscillation_threshold)

        worst_convergence = max(convergence_ratios.values(), default=0.0)
        worst_oscillation = max(oscillation_ratios.values(), default=0.0)
        convergence_ok = worst_convergence <= config.max_convergence_failure_ratio
        oscillation_ok = worst_oscillation <= config.max_oscillation_ratio

        if not convergence_ok:
            variable = max(convergence_ratios, key=convergence_ratios.get)
            report.add(ValidationSeverity.WARNING, ValidationCategory.NUMERICAL_STABILITY,
                       f"{variable} fails to converge smoothly at {worst_convergence:.1%} of points",
                       "Reduce the time step", variable=variable)
        if not oscillation_ok:
            variable = max(oscillation_ratios, key=oscillation_ratios.get)
            report.add(ValidationSeverity.WARNING, ValidationCategory.NUMERICAL_STABILITY,
                       f"{variable} shows spurious oscillation at {worst_oscillation:.1%} of points",
                       "Reduce the time step or switch to the adaptive solver", variable=variable)
        if not (convergence_ok and oscillation_ok):
            report.add_recommendation("Numerical noise detected: reduce the time step or use the adaptive solver")

        sub_scores = [1.0 if step_ok else 0.0,
                      1.0 if convergence_ok else max(0.0, 1.0 - worst_convergence),
                      1.0 if oscillation_ok else max(0.0, 1.0 - worst_oscillation)]
        return ValidationCheck(
            'stability',
            passed=step_ok and convergence_ok and oscillation_ok,
            score=float(np.mean(sub_scores)),
            metrics={'min_step_size': min_step,
                     'convergence_failure_ratio': worst_convergence,
                     'oscillation_ratio': worst_oscillation},
        )

    # ===============================================================================
    # Dimensional Consistency and Causality
    # ===============================================================================

    def check_dimensional(self, result, ir, report) -> ValidationCheck:
        if ir is None:
            return ValidationCheck('dimensional', details=["no IR supplied; nothing to check"])
        summary = validate_ir(ir)
        checked = summary.checks.get('equations_checked', 0)
        mismatches = summary.checks.get('dimensional_mismatches', 0)
        dimension_messages = [w for w in summary.warnings if w.startswith('Dimensional mismatch')]
        for message in dimension_messages:
            report.add(ValidationSeverity.WARNING, ValidationCategory.DIMENSIONAL_CONSISTENCY, message,
                       "Check the units declared for the parameters")
        if mismatches:
            report.add_recommendation("Review parameter units; some equations are dimensionally inconsistent")
        return ValidationCheck('dimensional', passed=mismatches == 0,
                               score=1.0 - mismatches / max(1, checked, mismatches),
                               metrics={'equations_checked': checked, 'mismatches': mismatches},
                               details=dimension_messages)

    def check_causality(self, result, ir, report) -> ValidationCheck:
        times = result.times()
        violations = int(np.count_nonzero(~np.isfinite(times)))
        finite = times[np.isfinite(times)]
        violations += int(np.count_nonzero(np.diff(finite) < 0))
        if violations:
            report.add(ValidationSeverity.ERROR, ValidationCategory.CAUSALITY,
                       f"Time goes backwards or is undefined at {violations} samples",
                       "Check the solver step handling")
            report.add_recommendation("Fix time stepping; the series is not monotonic in time")
        return ValidationCheck('causality', passed=violations == 0,
                               score=1.0 - violations / len(times),
                               metrics={'violations': violations})
