# -*- coding: utf-8 -*-
"""
Numerical Simulator
Advances the IR's equation system through time with a pluggable solver,
running event detection, state monitoring and a convergence check after every
step, and reports the collected time series with run metrics.
"""

import asyncio
import time
import warnings
from collections import OrderedDict
from typing import Any, Dict, List, Optional

import numpy as np
import psutil

from .config import MonitorConfig, SimulationConfig
from .event_detector import EventDetector
from .formula_engine import FormulaEngine
from .integration_engine import (TIME_SYMBOL, AdaptiveSolver, EquationSystem,
                                 IntegrationEngine, Solver)
from .ir_types import ParameterRole, PhysicsIR
from .logging_utils import get_logger
from .observables import ObservableCalculator
from .simulation_state import (ConvergenceInfo, SimulationResult, SimulationState,
                               TimeSeriesSnapshot, conservation_ratio)
from .state_monitor import StateMonitor

logger = get_logger(__name__)

_TIME_EPSILON = 1e-12


def _memory_mb() -> float:
    return psutil.Process().memory_info().rss / (1024 * 1024)


def stability_score(result: SimulationResult) -> float:
    """Mean smoothness of the variable series, from their second differences

    Each variable scores 1 / (1 + mean|d2y| / mean|dy|); constant series score 1.
    """
    if len(result.time_series) < 3:
        return 1.0
    scores = []
    for name in result.variable_names():
        if name == TIME_SYMBOL:
            continue
        values = result.series(name)
        if not np.all(np.isfinite(values)):
            scores.append(0.0)
            continue
        first = np.abs(np.diff(values))
        second = np.abs(np.diff(values, n=2))
        scale = float(first.mean())
        if scale < _TIME_EPSILON:
            scores.append(1.0)
            continue
        scores.append(1.0 / (1.0 + float(second.mean()) / scale))
    return float(np.mean(scores)) if scores else 1.0


class NumericalSimulator:
    """Discrete-time simulator over a PhysicsIR"""

    def __init__(self, integration_engine: Optional[IntegrationEngine] = None,
                 event_detector: Optional[EventDetector] = None,
                 monitor_config: Optional[MonitorConfig] = None,
                 engine: Optional[FormulaEngine] = None):
        self.integration_engine = integration_engine or IntegrationEngine()
        self.event_detector = event_detector or EventDetector()
        self.monitor_config = monitor_config or MonitorConfig()
        self.engine = engine or FormulaEngine()
        self.monitor: Optional[StateMonitor] = None

    # ===============================================================================
    # Initialisation
    # ===============================================================================

    def initialize_state(self, ir: PhysicsIR, system: Optional[EquationSystem] = None
                         ) -> SimulationState:
        """Seed variables from known parameters, zero for unknowns, then initial conditions"""
        variables: Dict[str, float] = {}
        given = set()
        for parameter in ir.system.parameters:
            if parameter.role == ParameterRole.UNKNOWN:
                variables[parameter.symbol] = 0.0
            else:
                variables[parameter.symbol] = float(parameter.numeric_value)
            if parameter.role == ParameterRole.GIVEN:
                given.add(parameter.symbol)

        for obj in ir.system.objects:
            for axis, position, velocity in zip('xyz', obj.position, obj.velocity):
                variables.setdefault(f"{obj.name}_{axis}", float(position))
                variables.setdefault(f"{obj.name}_v{axis}", float(velocity))

        for symbol, expression in ir.system.initial_conditions.items():
            if symbol not in given:
                variables[symbol] = self.engine.evaluate(expression, variables)

        variables[TIME_SYMBOL] = 0.0
        derivatives: Dict[str, float] = {}
        if system is not None:
            for state_symbol in system.states:
                variables.setdefault(state_symbol, 0.0)
            system.apply_algebraic(variables)
            y = system.state_vector(variables)
            derivatives = dict(zip(system.states, system.evaluate(0.0, y, variables).tolist()))
        return SimulationState(time=0.0, variables=variables, derivatives=derivatives)

    @staticmethod
    def _snapshot(state: SimulationState, observables: ObservableCalculator) -> TimeSeriesSnapshot:
        energy, momentum, angular = observables.compute(state)
        return TimeSeriesSnapshot(time=state.time, variables=dict(state.variables),
                                  derivatives=dict(state.derivatives), energy=energy,
                                  momentum=momentum, angular_momentum=angular)

    @staticmethod
    def _residual(old: SimulationState, new: SimulationState) -> float:
        changes = [abs(new.variables.get(s, 0.0) - value) for s, value in old.variables.items()
                   if s != TIME_SYMBOL]
        return float(max(changes)) if changes else 0.0

    # ===============================================================================
    # Run
    # ===============================================================================

    async def run(self, ir: PhysicsIR, config: Optional[SimulationConfig] = None) -> SimulationResult:
        """Simulate the IR; never raises, failures come back as success=False"""
        start_time = time.perf_counter()
        memory_start = _memory_mb()
        result = SimulationResult()
        messages: 'OrderedDict[str, None]' = OrderedDict()
        self.engine.drain_warnings()

        try:
            config = config or SimulationConfig.from_ir(ir)
            system, system_messages = EquationSystem.from_ir(ir, self.engine)
            messages.update(dict.fromkeys(system_messages))
            solver = self.integration_engine.create_solver(
                config.method, config.tolerance, config.min_time_step, config.max_time_step)
            adaptive = config.adaptive_step_size or isinstance(solver, AdaptiveSolver)
            observables = ObservableCalculator(ir, self.engine)
            self.monitor = StateMonitor(self.monitor_config) if config.enable_monitoring else None

            logger.info(f"Simulating '{ir.metadata.id}' with {solver.name}: "
                        f"{system.size} states, dt={config.time_step}, duration={config.duration}")

            state = self.initialize_state(ir, system)
            state.convergence = ConvergenceInfo(tolerance=config.tolerance)
            result.time_series.append(self._snapshot(state, observables))
            result.final_state = state

            loop_stats = await self._step_loop(ir, config, system, solver, adaptive, state,
                                               observables, result, messages)
            result.success = True
            result.metrics = self._calculate_metrics(result, solver, loop_stats)
            self.integration_engine.record_run(solver, time.perf_counter() - start_time, True)
        except Exception as e:
            logger.error(f"Simulation failed: {e}")
            result.success = False
            result.errors.append(f"Simulation failed: {e}")

        for message in self.engine.drain_warnings():
            messages[message] = None
        result.warnings = list(messages)
        result.computation_time = time.perf_counter() - start_time
        result.metrics['computation_time'] = result.computation_time
        result.metrics['memory_usage'] = max(0.0, _memory_mb() - memory_start)
        logger.info(f"Simulation finished: success={result.success}, "
                    f"{len(result.time_series)} samples, {len(result.events)} events, "
                    f"{result.computation_time:.3f}s")
        return result

    async def _step_loop(self, ir: PhysicsIR, config: SimulationConfig, system: EquationSystem,
                         solver: Solver, adaptive: bool, state: SimulationState,
                         observables: ObservableCalculator, result: SimulationResult,
                         messages: 'OrderedDict[str, None]') -> Dict[str, Any]:
        step_sizes: List[float] = []
        steps = 0
        finite_steps = 0
        reason = 'duration'

        while state.time < config.duration - _TIME_EPSILON:
            if steps >= config.max_iterations:
                reason = 'max_iterations'
                messages[f"Maximum iterations ({config.max_iterations}) reached "
                         f"at t={state.time:.4f}"] = None
                break

            dt = config.time_step
            if adaptive:
                dt = min(dt, solver.get_optimal_step_size(state))
            planned = dt
            # a remainder under the step floor is absorbed into this step
            remaining = config.duration - state.time
            final_step = remaining - dt < config.min_time_step
            if final_step:
                dt = remaining

            collapsed = False
            while not solver.is_stable(state, dt):
                dt /= 2
                if dt < config.min_time_step:
                    collapsed = True
                    break
            if collapsed:
                reason = 'unstable'
                message = (f"Step size fell below {config.min_time_step:g} at t={state.time:.4f}; "
                           f"simulation stopped early")
                logger.warning(message)
                warnings.warn(message)
                messages[message] = None
                break

            step_start = time.perf_counter()
            new_state = solver.step(state, dt, system)
            step_sizes.append(new_state.time - state.time)
            steps += 1

            if config.enable_event_detection:
                events = await self.event_detector.detect_events(state, new_state, ir)
                new_state.events = events
                result.events.extend(events)

            residual = self._residual(state, new_state)
            if all(np.isfinite(v) for v in new_state.variables.values()):
                finite_steps += 1
            # a clipped closing step moves too little to judge convergence by
            partial = final_step and dt < planned - config.min_time_step
            new_state.convergence = ConvergenceInfo(
                is_converged=residual < config.tolerance and not partial,
                residual=residual,
                tolerance=config.tolerance,
                convergence_rate=finite_steps / steps,
            )

            snapshot = self._snapshot(new_state, observables)
            if self.monitor is not None:
                self.monitor.update(new_state, time.perf_counter() - step_start,
                                    snapshot.energy, snapshot.momentum)
            result.time_series.append(snapshot)
            result.final_state = new_state
            state = new_state

            if steps % max(1, config.yield_interval) == 0:
                await asyncio.sleep(0)

            if state.convergence.is_converged and config.stop_on_convergence:
                reason = 'converged'
                logger.info(f"Converged at t={state.time:.4f} after {steps} steps")
                break

        result.events.sort(key=lambda event: event.time)
        return {'step_sizes': step_sizes, 'steps': steps, 'finite_steps': finite_steps,
                'terminated_reason': reason}

    # ===============================================================================
    # Metrics
    # ===============================================================================

    def _calculate_metrics(self, result: SimulationResult, solver: Solver,
                           loop_stats: Dict[str, Any]) -> Dict[str, Any]:
        step_sizes = np.array(loop_stats['step_sizes'], dtype=float)
        steps = loop_stats['steps']
        first, last = result.time_series[0], result.time_series[-1]
        converged = loop_stats['terminated_reason'] == 'converged'

        accuracy = max(0.0, 1.0 - 0.1 * len(result.errors))
        if step_sizes.size > 1:
            accuracy *= max(0.0, 1.0 - float(np.var(step_sizes)) * 1000)

        metrics = {
            'total_steps': steps,
            'average_step_size': float(step_sizes.mean()) if step_sizes.size else 0.0,
            'min_step_size': float(step_sizes.min()) if step_sizes.size else 0.0,
            'max_step_size': float(step_sizes.max()) if step_sizes.size else 0.0,
            'event_count': len(result.events),
            'converged': converged,
            'convergence_iterations': steps if converged else 0,
            'energy_conservation': conservation_ratio(first.energy, last.energy),
            'momentum_conservation': conservation_ratio(first.momentum, last.momentum),
            'angular_momentum_conservation': conservation_ratio(first.angular_momentum,
                                                                last.angular_momentum),
            'stability_score': stability_score(result),
            'convergence_rate': loop_stats['finite_steps'] / steps if steps else 1.0,
            'accuracy_score': accuracy,
            'adaptive_step_count': solver.stats.get('step_adjustments', 0),
            'method': solver.name,
            'terminated_reason': loop_stats['terminated_reason'],
            'solver_stats': dict(solver.stats),
        }
        if self.monitor is not None:
            report = self.monitor.generate_report()
            metrics['monitor'] = {
                'anomaly_count': report.anomaly_count,
                'stability_trend': report.stability_trend,
                'average_step_time': report.average_step_time,
                'recommendations': report.recommendations,
            }
        return metrics

    def run_sync(self, ir: PhysicsIR, config: Optional[SimulationConfig] = None) -> SimulationResult:
        return asyncio.run(self.run(ir, config))
