# -*- coding: utf-8 -*-
"""
Physics Module Library
Template table of physics sub-domains, the relevance scoring used to detect
them in a problem, and the enum-keyed factory that turns a template into an
immutable Module.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, FrozenSet, List, Optional, Tuple

from .dimensions import PHYSICS_CONSTANTS, DimensionCalculator
from .formula_engine import extract_variables, split_equation
from .ir_types import (ComplexityTier, ConservationLaw, Equation, Module, ModuleDomain,
                       Parameter, ParameterRole, PhysicalQuantity)

# ===============================================================================
# Module Types
# ===============================================================================

class ModuleType(Enum):
    """Physics domain tag of a module"""
    KINEMATICS = "kinematics"
    DYNAMICS = "dynamics"
    ENERGY = "energy"
    MOMENTUM = "momentum"
    OSCILLATION = "oscillation"
    WAVE = "wave"
    ACOUSTICS = "acoustics"
    GRAVITATION = "gravitation"
    FLUID = "fluid"
    PRESSURE = "pressure"
    SIMPLE_MACHINES = "simple_machines"
    THERMAL = "thermal"
    PHASE_CHANGE = "phase_change"
    BASIC_ELECTRICITY = "basic_electricity"
    ELECTROMAGNETIC = "electromagnetic"
    OPTICS = "optics"
    MODERN = "modern_physics"
    GENERIC = "generic"

    @classmethod
    def parse(cls, value: str) -> Optional['ModuleType']:
        try:
            return cls(str(value).lower())
        except ValueError:
            return None

# ===============================================================================
# Calibration Tables
# ===============================================================================

MODULE_SCORE_WEIGHTS: Dict[str, float] = {
    'parameters': 0.30,
    'system_type': 0.25,
    'keywords': 0.25,
    'formulas': 0.20,
}

DEFAULT_DETECTION_THRESHOLD = 0.7

# Cheap-to-misfire domains get a lower bar, core mechanics/EM/thermal a higher one
DETECTION_THRESHOLDS: Dict[ModuleType, float] = {
    ModuleType.ACOUSTICS: 0.6,
    ModuleType.PHASE_CHANGE: 0.6,
    ModuleType.SIMPLE_MACHINES: 0.6,
    ModuleType.PRESSURE: 0.6,
    ModuleType.BASIC_ELECTRICITY: 0.6,
    ModuleType.KINEMATICS: 0.7,
    ModuleType.OSCILLATION: 0.7,
    ModuleType.WAVE: 0.7,
    ModuleType.FLUID: 0.7,
    ModuleType.OPTICS: 0.7,
    ModuleType.MODERN: 0.7,
    ModuleType.GRAVITATION: 0.7,
    ModuleType.ENERGY: 0.75,
    ModuleType.MOMENTUM: 0.75,
    ModuleType.DYNAMICS: 0.75,
    ModuleType.THERMAL: 0.75,
    ModuleType.ELECTROMAGNETIC: 0.8,
}

# Secondary ordering used when dependencies leave ties
TYPE_PRIORITY: Dict[ModuleType, int] = {
    ModuleType.KINEMATICS: 0,
    ModuleType.DYNAMICS: 1,
    ModuleType.SIMPLE_MACHINES: 2,
    ModuleType.GRAVITATION: 3,
    ModuleType.ENERGY: 4,
    ModuleType.MOMENTUM: 5,
    ModuleType.OSCILLATION: 6,
    ModuleType.WAVE: 7,
    ModuleType.ACOUSTICS: 8,
    ModuleType.FLUID: 9,
    ModuleType.PRESSURE: 10,
    ModuleType.BASIC_ELECTRICITY: 11,
    ModuleType.ELECTROMAGNETIC: 12,
    ModuleType.OPTICS: 13,
    ModuleType.THERMAL: 14,
    ModuleType.PHASE_CHANGE: 15,
    ModuleType.MODERN: 16,
    ModuleType.GENERIC: 17,
}

# Related domains earn partial credit on the system-type signal
TYPE_FAMILIES: Dict[str, FrozenSet[ModuleType]] = {
    'mechanics': frozenset({ModuleType.KINEMATICS, ModuleType.DYNAMICS, ModuleType.ENERGY,
                            ModuleType.MOMENTUM, ModuleType.OSCILLATION, ModuleType.GRAVITATION,
                            ModuleType.SIMPLE_MACHINES}),
    'waves': frozenset({ModuleType.OSCILLATION, ModuleType.WAVE, ModuleType.ACOUSTICS,
                        ModuleType.OPTICS}),
    'electricity': frozenset({ModuleType.BASIC_ELECTRICITY, ModuleType.ELECTROMAGNETIC}),
    'thermo': frozenset({ModuleType.THERMAL, ModuleType.PHASE_CHANGE, ModuleType.PRESSURE,
                         ModuleType.FLUID}),
}
RELATED_TYPE_CREDIT = 0.4

SYNONYMS: Dict[str, Tuple[str, ...]] = {
    'fall': ('fall', 'drop', 'released from rest', 'let go'),
    'height': ('height', 'tall', 'above the ground', 'elevation'),
    'projectile': ('projectile', 'launched', 'thrown', 'trajectory', 'cannon'),
    'velocity': ('velocity', 'speed', 'fast'),
    'acceleration': ('acceleration', 'accelerat', 'decelerat'),
    'spring': ('spring', 'hooke', 'elastic'),
    'oscillation': ('oscillat', 'vibrat', 'harmonic', 'periodic', 'pendulum'),
    'wave': ('wave', 'wavelength', 'propagat'),
    'sound': ('sound', 'acoustic', 'decibel', 'echo', 'doppler'),
    'force': ('force', 'push', 'pull', 'newton'),
    'friction': ('friction', 'rough', 'sliding', 'coefficient of'),
    'energy': ('energy', 'joule'),
    'collision': ('collision', 'collide', 'impact', 'bounce'),
    'orbit': ('orbit', 'planet', 'satellite', 'gravitational'),
    'circuit': ('circuit', 'resistor', 'battery', 'ohm'),
    'charge': ('charge', 'coulomb', 'electron'),
    'magnetic': ('magnetic', 'magnet', 'tesla', 'lorentz'),
    'capacitor': ('capacitor', 'capacitance', 'farad'),
    'light': ('light', 'lens', 'mirror', 'refract', 'reflect'),
    'heat': ('heat', 'temperature', 'thermal', 'warm', 'cool'),
    'gas': ('gas', 'ideal gas', 'mole', 'piston'),
    'fluid': ('fluid', 'liquid', 'flow', 'pipe', 'bernoulli'),
    'pressure': ('pressure', 'buoyan', 'float', 'submerged', 'pascal'),
    'lever': ('lever', 'pulley', 'incline', 'mechanical advantage', 'wedge'),
    'quantum': ('quantum', 'photon', 'photoelectric', 'planck'),
    'nuclear': ('nuclear', 'decay', 'half-life', 'radioactive', 'isotope'),
}

SYMMETRY_TABLE: Dict[ModuleType, Tuple[str, ...]] = {
    ModuleType.KINEMATICS: ('time_translation', 'spatial_translation'),
    ModuleType.DYNAMICS: ('time_translation', 'spatial_translation'),
    ModuleType.ENERGY: ('time_translation',),
    ModuleType.MOMENTUM: ('spatial_translation',),
    ModuleType.OSCILLATION: ('time_translation', 'reflection'),
    ModuleType.WAVE: ('time_translation', 'spatial_translation'),
    ModuleType.ACOUSTICS: ('time_translation',),
    ModuleType.GRAVITATION: ('rotation', 'time_translation'),
    ModuleType.ELECTROMAGNETIC: ('gauge', 'time_translation'),
    ModuleType.BASIC_ELECTRICITY: ('time_translation',),
    ModuleType.OPTICS: ('reflection',),
    ModuleType.GENERIC: ('time_translation',),
}

# ===============================================================================
# Template Definitions
# ===============================================================================

@dataclass(frozen=True)
class ParameterTemplate:
    symbol: str
    default: float
    unit: str = ''
    role: ParameterRole = ParameterRole.GIVEN
    description: str = ''


@dataclass(frozen=True)
class ModuleTemplate:
    id: str
    module_type: ModuleType
    name: str
    keywords: Tuple[str, ...]
    formulas: Tuple[str, ...]
    parameters: Tuple[ParameterTemplate, ...]
    # Executable differential equations: text or (text, state symbols)
    equations: Tuple = ()
    dependencies: Tuple[str, ...] = ()
    conservation_laws: Tuple[Tuple[str, str], ...] = ()
    assumptions: Tuple[str, ...] = ()
    limitations: Tuple[str, ...] = ()
    complexity: ComplexityTier = ComplexityTier.BASIC
    aliases: Tuple[str, ...] = ()
    initial_conditions: Tuple[Tuple[str, str], ...] = ()
    spatial_dimensions: int = 1

    @property
    def symbols(self) -> FrozenSet[str]:
        return frozenset(p.symbol for p in self.parameters)

    @property
    def formula_tokens(self) -> FrozenSet[str]:
        tokens = set()
        for formula in self.formulas:
            parts = split_equation(formula)
            tokens.update(extract_variables(parts.rhs))
            if parts.target:
                tokens.add(parts.target)
            elif '=' in formula:
                tokens.update(extract_variables(formula.split('=', 1)[0]))
        return frozenset(tokens)


def _p(symbol, default, unit='', role='given', description=''):
    return ParameterTemplate(symbol, float(default), unit, ParameterRole(role), description)


U, D, C = 'unknown', 'derived', 'constant'

_G = _p('g', 9.8, 'm/s^2', C, 'gravitational acceleration')
_M = _p('m', 1.0, 'kg', description='mass')

TEMPLATES: Tuple[ModuleTemplate, ...] = (
    # --- kinematics -------------------------------------------------------------
    ModuleTemplate(
        'kinematics_linear', ModuleType.KINEMATICS, 'Uniformly accelerated linear motion',
        ('velocity', 'acceleration', 'displacement', 'uniform'),
        ('v = v0 + a*t', 'x = x0 + v0*t + 0.5*a*t**2', 'v**2 = v0**2 + 2*a*(x - x0)'),
        (_p('x0', 0, 'm', description='initial position'), _p('v0', 0, 'm/s', description='initial velocity'),
         _p('a', 0, 'm/s^2', description='acceleration'), _p('x', 0, 'm', U, 'position'),
         _p('v', 0, 'm/s', U, 'velocity'), _p('t', 0, 's', U, 'time')),
        assumptions=('constant acceleration', 'point particle'),
        aliases=('linear_motion', 'uniform_acceleration')),
    ModuleTemplate(
        'free_fall', ModuleType.KINEMATICS, 'Free fall from rest',
        ('free fall', 'fall', 'height', 'gravity'),
        ('h = 0.5*g*t**2', 'v = g*t', 'v**2 = 2*g*h', 't = sqrt(2*h/g)'),
        (_p('h', 10, 'm', description='height above ground'), _p('v', 0, 'm/s', U, 'downward speed'),
         _p('t', 0, 's', U, 'fall time'), _G, _M),
        equations=('dh/dt = -v*(h > 0)', 'dv/dt = g*(h > 0)'),
        dependencies=('kinematics_linear',),
        conservation_laws=(('energy', 'm*g*h + 0.5*m*v**2'),),
        assumptions=('no air resistance', 'uniform gravitational field', 'motion stops at the ground'),
        limitations=('vertical motion only',),
        aliases=('freefall', 'falling_body')),
    ModuleTemplate(
        'projectile_motion', ModuleType.KINEMATICS, 'Projectile motion',
        ('projectile', 'angle', 'range', 'horizontal'),
        ('vx = v0*cos(theta)', 'vy0 = v0*sin(theta)', 'R = v0**2*sin(2*theta)/g',
         'H = v0**2*sin(theta)**2/(2*g)', 'T_f = 2*v0*sin(theta)/g'),
        (_p('v0', 10, 'm/s', description='launch speed'), _p('theta', 0.7853981633974483, 'rad', description='launch angle'),
         _p('x', 0, 'm', U), _p('y', 0, 'm', U), _p('vx', 0, 'm/s', U), _p('vy', 0, 'm/s', U),
         _p('vy0', 0, 'm/s', D), _p('R', 0, 'm', D, 'range'), _p('H', 0, 'm', D, 'peak height'),
         _p('T_f', 0, 's', D, 'flight time'), _G, _M),
        equations=('dx/dt = vx*(y >= 0)', 'dy/dt = vy*(y >= 0)', 'dvy/dt = -g*(y >= 0)'),
        dependencies=('kinematics_linear',),
        conservation_laws=(('energy', 'm*g*y + 0.5*m*(vx**2 + vy**2)'),),
        assumptions=('no air resistance', 'flat ground'),
        complexity=ComplexityTier.INTERMEDIATE,
        initial_conditions=(('vx', 'v0*cos(theta)'), ('vy', 'v0*sin(theta)')),
        spatial_dimensions=2),
    ModuleTemplate(
        'relative_motion', ModuleType.KINEMATICS, 'Relative motion',
        ('relative', 'frame', 'river', 'boat'),
        ('v_rel = v1 - v2', 'x_rel = x1 - x2'),
        (_p('v1', 0, 'm/s'), _p('v2', 0, 'm/s'), _p('v_rel', 0, 'm/s', D), _p('x1', 0, 'm'),
         _p('x2', 0, 'm'), _p('x_rel', 0, 'm', D)),
        assumptions=('Galilean relativity',)),
    ModuleTemplate(
        'circular_motion', ModuleType.KINEMATICS, 'Uniform circular motion',
        ('circular', 'centripetal', 'radius', 'revolution'),
        ('omega = v/r', 'a_c = v**2/r', 'T = 2*pi*r/v', 'F_c = m*v**2/r'),
        (_p('r', 1, 'm', description='radius'), _p('v', 1, 'm/s', description='tangential speed'),
         _p('omega', 0, 'rad/s', D), _p('a_c', 0, 'm/s^2', D), _p('T', 0, 's', D), _p('F_c', 0, 'N', D),
         _p('phi', 0, 'rad', U, 'angular position'), _M),
        equations=('dphi/dt = v/r',),
        conservation_laws=(('angular_momentum', 'm*v*r'),),
        assumptions=('constant speed',), spatial_dimensions=2),
    # --- dynamics ---------------------------------------------------------------
    ModuleTemplate(
        'newton_dynamics', ModuleType.DYNAMICS, "Newton's second law",
        ('force', 'acceleration', 'mass', 'net force'),
        ('F = m*a', 'a = F/m', 'p = m*v'),
        (_p('F', 10, 'N', description='net force'), _M, _p('a', 0, 'm/s^2', D),
         _p('v', 0, 'm/s', U), _p('x', 0, 'm', U), _p('p', 0, 'kg*m/s', D)),
        equations=('dx/dt = v', 'dv/dt = F/m'),
        assumptions=('inertial frame', 'constant mass'),
        aliases=('dynamics', 'newton')),
    ModuleTemplate(
        'friction', ModuleType.DYNAMICS, 'Kinetic friction',
        ('friction', 'slide', 'surface', 'coefficient'),
        ('f = mu*m*g', 'a = -mu*g'),
        (_p('mu', 0.2, '', description='coefficient of kinetic friction'), _M, _G,
         _p('f', 0, 'N', D), _p('v', 5, 'm/s', description='initial speed'), _p('x', 0, 'm', U)),
        equations=('dx/dt = v*(v > 0)', 'dv/dt = -mu*g*(v > 0)'),
        dependencies=('newton_dynamics',),
        assumptions=('Coulomb friction',), limitations=('kinetic regime only',)),
    ModuleTemplate(
        'rigid_body', ModuleType.DYNAMICS, 'Rigid body rotation',
        ('torque', 'rotation', 'moment of inertia', 'angular'),
        ('tau = I_m*alpha', 'L = I_m*omega', 'K_rot = 0.5*I_m*omega**2'),
        (_p('tau', 1, 'N*m', description='torque'), _p('I_m', 1, 'kg*m^2', description='moment of inertia'),
         _p('alpha', 0, 'rad/s^2', D), _p('omega', 0, 'rad/s', U), _p('phi', 0, 'rad', U),
         _p('L', 0, 'J*s', D), _p('K_rot', 0, 'J', D)),
        equations=('dphi/dt = omega', 'domega/dt = tau/I_m'),
        assumptions=('fixed rotation axis',), complexity=ComplexityTier.INTERMEDIATE),
    ModuleTemplate(
        'fluid_mechanics', ModuleType.FLUID, 'Fluid flow',
        ('fluid', 'flow', 'pipe', 'continuity'),
        ('Q = A_p*v', 'P = P0 + rho*g*h'),
        (_p('rho', 1000, 'kg/m^3', description='density'), _p('A_p', 0.01, 'm^2', description='cross-section'),
         _p('v', 1, 'm/s'), _p('Q', 0, 'm^3/s', D), _p('P0', 101325, 'Pa'), _p('P', 0, 'Pa', D),
         _p('h', 1, 'm'), _G),
        conservation_laws=(('mass', 'rho*A_p*v'),),
        assumptions=('incompressible fluid', 'steady flow'), complexity=ComplexityTier.INTERMEDIATE),
    ModuleTemplate(
        'pressure_buoyancy', ModuleType.PRESSURE, 'Pressure and buoyancy',
        ('pressure', 'buoyancy', 'density', 'depth'),
        ('P = rho*g*h', 'F_b = rho*g*V'),
        (_p('rho', 1000, 'kg/m^3'), _p('h', 1, 'm', description='depth'), _p('V', 0.001, 'm^3'),
         _p('P', 0, 'Pa', D), _p('F_b', 0, 'N', D), _G),
        assumptions=('static fluid',), aliases=('pressure', 'buoyancy')),
    # --- energy and momentum ----------------------------------------------------
    ModuleTemplate(
        'work_energy', ModuleType.ENERGY, 'Work-energy theorem',
        ('work', 'kinetic energy', 'energy'),
        ('W = F*d', 'K = 0.5*m*v**2', 'W = K - K0'),
        (_p('F', 1, 'N'), _p('d', 1, 'm', description='displacement'), _p('W', 0, 'J', D),
         _p('K', 0, 'J', D), _p('K0', 0, 'J'), _p('v', 0, 'm/s', U), _M),
        aliases=('work',)),
    ModuleTemplate(
        'mechanical_energy_conservation', ModuleType.ENERGY, 'Conservation of mechanical energy',
        ('energy', 'conservation', 'potential energy', 'kinetic energy'),
        ('E = m*g*h + 0.5*m*v**2', 'U_g = m*g*h', 'K = 0.5*m*v**2'),
        (_M, _G, _p('h', 1, 'm'), _p('v', 0, 'm/s', U), _p('E', 0, 'J', D), _p('U_g', 0, 'J', D),
         _p('K', 0, 'J', D)),
        conservation_laws=(('energy', 'm*g*h + 0.5*m*v**2'),),
        assumptions=('no non-conservative forces',), aliases=('energy_conservation', 'energy')),
    ModuleTemplate(
        'elastic_potential_energy', ModuleType.ENERGY, 'Elastic potential energy',
        ('spring', 'elastic', 'compression', 'potential energy'),
        ('U_s = 0.5*k*x**2', 'F_s = -k*x'),
        (_p('k', 100, 'N/m', description='spring constant'), _p('x', 0.1, 'm', description='deformation'),
         _p('U_s', 0, 'J', D), _p('F_s', 0, 'N', D)),
        assumptions=("Hooke's law holds",)),
    ModuleTemplate(
        'power_efficiency', ModuleType.ENERGY, 'Power and efficiency',
        ('power', 'efficiency', 'watt'),
        ('P = W/t', 'eta = P_out/P_in'),
        (_p('W', 100, 'J'), _p('t', 1, 's'), _p('P', 0, 'W', D), _p('P_out', 0, 'W'),
         _p('P_in', 1, 'W'), _p('eta', 0, '', D, 'efficiency')),
        aliases=('power',)),
    ModuleTemplate(
        'momentum', ModuleType.MOMENTUM, 'Linear momentum and collisions',
        ('momentum', 'collision', 'impulse'),
        ('p = m*v', 'J_imp = F*dt_c', 'p_total = m1*v1 + m2*v2'),
        (_p('m1', 1, 'kg'), _p('m2', 1, 'kg'), _p('v1', 1, 'm/s'), _p('v2', 0, 'm/s'),
         _p('p_total', 0, 'kg*m/s', D), _M, _p('v', 0, 'm/s'), _p('p', 0, 'kg*m/s', D)),
        conservation_laws=(('momentum', 'm1*v1 + m2*v2'),),
        assumptions=('isolated system',), aliases=('collision', 'collisions')),
    # --- oscillation and waves --------------------------------------------------
    ModuleTemplate(
        'oscillation', ModuleType.OSCILLATION, 'Simple harmonic oscillator',
        ('oscillation', 'spring', 'period', 'amplitude'),
        ('omega = sqrt(k/m)', 'T = 2*pi*sqrt(m/k)', 'x = A*cos(omega*t)', 'E_tot = 0.5*k*A**2'),
        (_p('k', 100, 'N/m', description='spring constant'), _p('m', 0.5, 'kg', description='mass'),
         _p('A', 0.1, 'm', description='amplitude'), _p('x', 0, 'm', U, 'displacement'),
         _p('v', 0, 'm/s', U, 'velocity'), _p('omega', 0, 'rad/s', D), _p('T', 0, 's', D),
         _p('E_tot', 0, 'J', D)),
        equations=(('d2x/dt2 = -(k/m)*x', ('x', 'v')),),
        conservation_laws=(('energy', '0.5*k*x**2 + 0.5*m*v**2'),),
        assumptions=('small amplitude', 'no damping'),
        aliases=('simple_harmonic_motion', 'shm', 'oscillator', 'spring_mass'),
        initial_conditions=(('x', 'A'),)),
    ModuleTemplate(
        'damped_oscillation', ModuleType.OSCILLATION, 'Damped oscillator',
        ('damped', 'damping', 'friction', 'decay'),
        ('gamma_d = b/(2*m)', 'omega_d = sqrt(k/m - gamma_d**2)'),
        (_p('k', 100, 'N/m'), _p('m', 0.5, 'kg'), _p('b', 0.5, 'kg/s', description='damping coefficient'),
         _p('A', 0.1, 'm'), _p('x', 0, 'm', U), _p('v', 0, 'm/s', U), _p('gamma_d', 0, '1/s', D),
         _p('omega_d', 0, 'rad/s', D)),
        equations=(('d2x/dt2 = -(k/m)*x - (b/m)*v', ('x', 'v')),),
        assumptions=('linear damping',), limitations=('energy is dissipated',),
        complexity=ComplexityTier.INTERMEDIATE, initial_conditions=(('x', 'A'),)),
    ModuleTemplate(
        'mechanical_waves', ModuleType.WAVE, 'Mechanical waves',
        ('wave', 'wavelength', 'frequency', 'string'),
        ('v_w = lam*f', 'omega = 2*pi*f', 'y = A*sin(k*x - omega*t)'),
        (_p('A', 0.02, 'm'), _p('omega', 20, 'rad/s'), _p('k', 0.5, '1/m', description='wave number'),
         _p('f', 0, 'Hz', D), _p('lam', 0, 'm', D, 'wavelength'), _p('v_w', 0, 'm/s', D),
         _p('y', 0, 'm', U), _p('x', 0, 'm')),
        aliases=('wave', 'waves')),
    ModuleTemplate(
        'wave_interference', ModuleType.WAVE, 'Wave interference',
        ('interference', 'superposition', 'standing wave', 'path difference'),
        ('delta = 2*pi*d_path/lam', 'A_r = 2*A*cos(delta/2)'),
        (_p('A', 0.02, 'm'), _p('d_path', 0, 'm'), _p('lam', 1, 'm'), _p('delta', 0, 'rad', D),
         _p('A_r', 0, 'm', D)),
        dependencies=('mechanical_waves',), complexity=ComplexityTier.INTERMEDIATE),
    ModuleTemplate(
        'sound_waves', ModuleType.ACOUSTICS, 'Sound',
        ('sound', 'frequency', 'loudness'),
        ('v_s = lam*f', 'beta_db = 10*log10(I_s/I_0)'),
        (_p('v_s', 343, 'm/s', description='speed of sound'), _p('f', 440, 'Hz'), _p('lam', 0, 'm', D),
         _p('I_s', 1e-6, 'W/m^2'), _p('I_0', 1e-12, 'W/m^2', C), _p('beta_db', 0, '', D)),
        aliases=('acoustics', 'sound')),
    # --- gravitation ------------------------------------------------------------
    ModuleTemplate(
        'gravitation', ModuleType.GRAVITATION, 'Universal gravitation',
        ('gravitational', 'orbit', 'planet', 'satellite'),
        ('F_g = G*M*m/r**2', 'v_orb = sqrt(G*M/r)', 'g_r = G*M/r**2'),
        (_p('G', PHYSICS_CONSTANTS['G'].value, 'm^3/(kg*s^2)', C), _p('M', 5.972e24, 'kg'),
         _M, _p('r', 6.371e6, 'm'), _p('F_g', 0, 'N', D), _p('v_orb', 0, 'm/s', D), _p('g_r', 0, 'm/s^2', D)),
        conservation_laws=(('angular_momentum', 'm*v_orb*r'),),
        assumptions=('point masses',), aliases=('gravity', 'orbital_motion')),
    ModuleTemplate(
        'astrophysics', ModuleType.GRAVITATION, 'Astrophysics',
        ('star', 'escape velocity', 'luminosity', 'galaxy'),
        ('v_esc = sqrt(2*G*M/r)', 'L_star = 4*pi*r**2*sigma*T_s**4'),
        (_p('G', PHYSICS_CONSTANTS['G'].value, 'm^3/(kg*s^2)', C), _p('M', 1.989e30, 'kg'),
         _p('r', 6.96e8, 'm'), _p('sigma', PHYSICS_CONSTANTS['sigma'].value, 'W/(m^2*K^4)', C),
         _p('T_s', 5778, 'K'), _p('v_esc', 0, 'm/s', D), _p('L_star', 0, 'W', D)),
        dependencies=('gravitation',), complexity=ComplexityTier.ADVANCED),
    # --- electricity and magnetism ----------------------------------------------
    ModuleTemplate(
        'dc_circuit', ModuleType.BASIC_ELECTRICITY, 'DC circuit',
        ('circuit', 'resistance', 'current', 'voltage'),
        ('V = I*R', 'P = I*V'),
        (_p('V', 0, 'V', D), _p('I', 1, 'A'), _p('R', 1, 'ohm'), _p('P', 0, 'W', D)),
        assumptions=('ohmic resistors',), aliases=('basic_electricity', 'circuit', 'circuits')),
    ModuleTemplate(
        'electrostatics', ModuleType.ELECTROMAGNETIC, 'Electrostatics',
        ('charge', 'electric field', 'coulomb'),
        ('F_e = k_e*q1*q2/r**2', 'E = k_e*q/r**2', 'V_e = k_e*q/r'),
        (_p('k_e', 8.9875517923e9, 'N*m^2/C^2', C), _p('q1', 1e-6, 'C'), _p('q2', 1e-6, 'C'),
         _p('q', 1, 'C'), _p('r', 1, 'm'), _p('F_e', 0, 'N', D), _p('E', 0, 'V/m', D),
         _p('V_e', 0, 'V', D)),
        conservation_laws=(('charge', 'q1 + q2'),), aliases=('electrostatic',)),
    ModuleTemplate(
        'capacitor', ModuleType.ELECTROMAGNETIC, 'Capacitor',
        ('capacitor', 'capacitance', 'discharge'),
        ('C_cap = Q/V', 'U_c = 0.5*C_cap*V**2', 'tau_rc = R*C_cap'),
        (_p('C_cap', 1e-6, 'F'), _p('R', 1000, 'ohm'), _p('Q', 1e-5, 'C', description='stored charge'),
         _p('V', 10, 'V'), _p('U_c', 0, 'J', D), _p('tau_rc', 0, 's', D)),
        equations=('dQ/dt = -Q/(R*C_cap)',),
        dependencies=('electrostatics',), limitations=('discharge only',)),
    ModuleTemplate(
        'motion_in_electric_field', ModuleType.ELECTROMAGNETIC, 'Charged particle in electric field',
        ('electric field', 'charged particle', 'accelerated'),
        ('F = q*E', 'a = q*E/m'),
        (_p('q', 1, 'C'), _p('E', 1, 'V/m'), _M, _p('a', 0, 'm/s^2', D), _p('v', 0, 'm/s', U),
         _p('x', 0, 'm', U), _p('F', 0, 'N', D)),
        equations=('dx/dt = v', 'dv/dt = q*E/m'),
        dependencies=('electrostatics',)),
    ModuleTemplate(
        'magnetism', ModuleType.ELECTROMAGNETIC, 'Magnetic force',
        ('magnetic', 'wire', 'field'),
        ('F_m = B*I*l_w', 'B_wire = mu_0*I/(2*pi*r)'),
        (_p('B', 1, 'T'), _p('I', 1, 'A'), _p('l_w', 1, 'm'), _p('r', 0.1, 'm'),
         _p('mu_0', PHYSICS_CONSTANTS['mu_0'].value, 'H/m', C), _p('F_m', 0, 'N', D),
         _p('B_wire', 0, 'T', D))),
    ModuleTemplate(
        'motion_in_magnetic_field', ModuleType.ELECTROMAGNETIC, 'Charged particle in magnetic field',
        ('magnetic', 'cyclotron', 'lorentz', 'charged particle'),
        ('r_c = m*v0/(q*B)', 'T_c = 2*pi*m/(q*B)'),
        (_p('q', 1, 'C'), _p('B', 1, 'T'), _M, _p('v0', 1, 'm/s'), _p('vx', 0, 'm/s', U),
         _p('vy', 0, 'm/s', U), _p('x', 0, 'm', U), _p('y', 0, 'm', U), _p('r_c', 0, 'm', D),
         _p('T_c', 0, 's', D)),
        equations=('dx/dt = vx', 'dy/dt = vy', 'dvx/dt = q*B*vy/m', 'dvy/dt = -q*B*vx/m'),
        conservation_laws=(('energy', '0.5*m*(vx**2 + vy**2)'),),
        complexity=ComplexityTier.INTERMEDIATE, initial_conditions=(('vx', 'v0'),),
        spatial_dimensions=2),
    ModuleTemplate(
        'hall_effect', ModuleType.ELECTROMAGNETIC, 'Hall effect',
        ('hall', 'carrier density', 'semiconductor'),
        ('V_H = I*B/(n_c*q*t_s)',),
        (_p('I', 1, 'A'), _p('B', 1, 'T'), _p('n_c', 1e28, '1/m^3'), _p('q', 1.602176634e-19, 'C'),
         _p('t_s', 1e-3, 'm'), _p('V_H', 0, 'V', D)),
        dependencies=('magnetism',), complexity=ComplexityTier.ADVANCED),
    ModuleTemplate(
        'electromagnetic_induction', ModuleType.ELECTROMAGNETIC, 'Electromagnetic induction',
        ('induction', 'flux', 'faraday', 'emf'),
        ('Phi = B*A_c', 'emf = N_t*B*A_c*omega'),
        (_p('B', 1, 'T'), _p('A_c', 0.01, 'm^2'), _p('N_t', 100, ''), _p('omega', 10, 'rad/s'),
         _p('Phi', 0, 'Wb', D), _p('emf', 0, 'V', D)),
        dependencies=('magnetism',)),
    ModuleTemplate(
        'self_mutual_inductance', ModuleType.ELECTROMAGNETIC, 'Inductance',
        ('inductance', 'inductor', 'coil'),
        ('U_L = 0.5*L_ind*I**2', 'tau_l = L_ind/R'),
        (_p('L_ind', 0.1, 'H'), _p('I', 1, 'A'), _p('R', 10, 'ohm'), _p('U_L', 0, 'J', D),
         _p('tau_l', 0, 's', D)),
        equations=('dI/dt = -I*R/L_ind',),
        dependencies=('electromagnetic_induction',)),
    ModuleTemplate(
        'electromagnetic_waves', ModuleType.ELECTROMAGNETIC, 'Electromagnetic waves',
        ('electromagnetic wave', 'radio', 'microwave', 'spectrum'),
        ('c = lam*f', 'E_p = h*f'),
        (_p('c', PHYSICS_CONSTANTS['c'].value, 'm/s', C), _p('h', PHYSICS_CONSTANTS['h'].value, 'J*s', C),
         _p('f', 1e9, 'Hz'), _p('lam', 0, 'm', D), _p('E_p', 0, 'J', D))),
    ModuleTemplate(
        'ac_circuit', ModuleType.ELECTROMAGNETIC, 'AC circuit',
        ('alternating', 'impedance', 'rms', 'reactance'),
        ('X_L = omega*L_ind', 'X_C = 1/(omega*C_cap)', 'Z = sqrt(R**2 + (X_L - X_C)**2)', 'I_rms = V_rms/Z'),
        (_p('R', 10, 'ohm'), _p('L_ind', 0.1, 'H'), _p('C_cap', 1e-4, 'F'), _p('omega', 314, 'rad/s'),
         _p('V_rms', 220, 'V'), _p('X_L', 0, 'ohm', D), _p('X_C', 0, 'ohm', D), _p('Z', 0, 'ohm', D),
         _p('I_rms', 0, 'A', D)),
        dependencies=('dc_circuit',), complexity=ComplexityTier.INTERMEDIATE),
    # --- optics -----------------------------------------------------------------
    ModuleTemplate(
        'geometric_optics', ModuleType.OPTICS, 'Geometric optics',
        ('lens', 'mirror', 'focal', 'image'),
        ('1/f_l = 1/d_o + 1/d_i', 'M_opt = -d_i/d_o', 'n1*sin(theta1) = n2*sin(theta2)'),
        (_p('f_l', 0.1, 'm', description='focal length'), _p('d_o', 0.3, 'm'), _p('d_i', 0, 'm', D),
         _p('M_opt', 0, '', D), _p('n1', 1.0, ''), _p('n2', 1.5, ''), _p('theta1', 0.5, 'rad'),
         _p('theta2', 0, 'rad', D)),
        aliases=('optics', 'refraction', 'reflection')),
    ModuleTemplate(
        'physical_optics', ModuleType.OPTICS, 'Interference and diffraction of light',
        ('diffraction', 'double slit', 'fringe'),
        ('y_fringe = m_order*lam*L_s/d_s',),
        (_p('lam', 5e-7, 'm'), _p('L_s', 1, 'm'), _p('d_s', 1e-4, 'm'), _p('m_order', 1, ''),
         _p('y_fringe', 0, 'm', D)),
        dependencies=('geometric_optics',)),
    ModuleTemplate(
        'light_polarization', ModuleType.OPTICS, 'Polarization',
        ('polarization', 'polarizer', 'malus'),
        ('I_out = I_in*cos(theta)**2',),
        (_p('I_in', 1, 'W/m^2'), _p('theta', 0, 'rad'), _p('I_out', 0, 'W/m^2', D))),
    ModuleTemplate(
        'laser', ModuleType.OPTICS, 'Laser',
        ('laser', 'coherent', 'stimulated emission'),
        ('E_p = h*c/lam', 'N_ph = P_l/E_p'),
        (_p('h', PHYSICS_CONSTANTS['h'].value, 'J*s', C), _p('c', PHYSICS_CONSTANTS['c'].value, 'm/s', C),
         _p('lam', 6.33e-7, 'm'), _p('P_l', 1e-3, 'W'), _p('E_p', 0, 'J', D), _p('N_ph', 0, '1/s', D)),
        complexity=ComplexityTier.ADVANCED),
    # --- thermal ----------------------------------------------------------------
    ModuleTemplate(
        'thermal', ModuleType.THERMAL, 'Heat transfer',
        ('heat', 'temperature', 'specific heat', 'cooling'),
        ('Q_h = m*c_p*dT', 'P_cool = k_c*(T - T_env)'),
        (_M, _p('c_p', 4186, 'J/(kg*K)', description='specific heat'), _p('dT', 10, 'K'),
         _p('Q_h', 0, 'J', D), _p('T', 350, 'K', description='body temperature'),
         _p('T_env', 293, 'K'), _p('k_c', 0.1, '1/s', description='cooling constant')),
        equations=('dT/dt = -k_c*(T - T_env)',),
        assumptions=("Newton's law of cooling",), aliases=('heat', 'heat_transfer')),
    ModuleTemplate(
        'ideal_gas', ModuleType.THERMAL, 'Ideal gas',
        ('gas', 'ideal gas', 'volume', 'mole'),
        ('P = n*R*T/V', 'U_int = 1.5*n*R*T'),
        (_p('n', 1, 'mol'), _p('R', PHYSICS_CONSTANTS['R'].value, 'J/(mol*K)', C), _p('T', 300, 'K'),
         _p('V', 0.0224, 'm^3'), _p('P', 0, 'Pa', D), _p('U_int', 0, 'J', D)),
        assumptions=('ideal gas',), aliases=('gas',)),
    ModuleTemplate(
        'first_law_thermodynamics', ModuleType.THERMAL, 'First law of thermodynamics',
        ('first law', 'internal energy', 'work done by gas'),
        ('dU = Q - W',),
        (_p('Q', 100, 'J'), _p('W', 40, 'J'), _p('dU', 0, 'J', D)),
        dependencies=('ideal_gas',),
        conservation_laws=(('energy', 'Q - W - dU'),), aliases=('thermodynamics',)),
    ModuleTemplate(
        'heat_engine_efficiency', ModuleType.THERMAL, 'Heat engines',
        ('engine', 'carnot', 'efficiency', 'reservoir'),
        ('eta_c = 1 - T_c/T_h', 'W_out = eta_c*Q_in'),
        (_p('T_h', 500, 'K'), _p('T_c', 300, 'K'), _p('Q_in', 1000, 'J'), _p('eta_c', 0, '', D),
         _p('W_out', 0, 'J', D)),
        dependencies=('first_law_thermodynamics',)),
    ModuleTemplate(
        'phase_change', ModuleType.PHASE_CHANGE, 'Phase change',
        ('melting', 'boiling', 'latent heat', 'freez'),
        ('Q_l = m*L_f',),
        (_M, _p('L_f', 334000, 'J/kg', description='latent heat'), _p('Q_l', 0, 'J', D)),
        aliases=('phase_transition', 'latent_heat')),
    # --- simple machines --------------------------------------------------------
    ModuleTemplate(
        'simple_machines', ModuleType.SIMPLE_MACHINES, 'Simple machines',
        ('lever', 'pulley', 'mechanical advantage', 'incline'),
        ('MA = F_out/F_in', 'F_in*d_in = F_out*d_out'),
        (_p('F_in', 10, 'N'), _p('F_out', 0, 'N', D), _p('d_in', 1, 'm'), _p('d_out', 0.5, 'm'),
         _p('MA', 0, '', D)),
        assumptions=('ideal machine',), aliases=('lever', 'pulley', 'machines')),
    # --- modern physics ---------------------------------------------------------
    ModuleTemplate(
        'modern_physics', ModuleType.MODERN, 'Photoelectric effect',
        ('photoelectric', 'photon', 'work function', 'threshold frequency'),
        ('E_p = h*f', 'K_max = h*f - phi_w'),
        (_p('h', PHYSICS_CONSTANTS['h'].value, 'J*s', C), _p('f', 1e15, 'Hz'),
         _p('phi_w', 3.2e-19, 'J', description='work function'), _p('E_p', 0, 'J', D),
         _p('K_max', 0, 'J', D)),
        assumptions=('photon picture of light',), aliases=('photoelectric', 'quantum')),
    ModuleTemplate(
        'atomic_structure', ModuleType.MODERN, 'Bohr atom',
        ('bohr', 'energy level', 'hydrogen', 'spectral line'),
        ('E_n = -13.6/n_q**2',),
        (_p('n_q', 1, '', description='principal quantum number'), _p('E_n', 0, 'eV', D))),
    ModuleTemplate(
        'quantum_mechanics_basics', ModuleType.MODERN, 'de Broglie wavelength',
        ('de broglie', 'uncertainty', 'wave function', 'matter wave'),
        ('lam_db = h/p',),
        (_p('h', PHYSICS_CONSTANTS['h'].value, 'J*s', C), _p('p', 1e-24, 'kg*m/s'),
         _p('lam_db', 0, 'm', D)),
        complexity=ComplexityTier.ADVANCED),
    ModuleTemplate(
        'nuclear_physics', ModuleType.MODERN, 'Radioactive decay',
        ('nuclear', 'decay', 'half-life', 'radioactive'),
        ('t_half = 0.6931471805599453/decay_const', 'E_b = dm*c**2'),
        (_p('N', 1000, '', description='number of nuclei'), _p('decay_const', 0.1, '1/s'),
         _p('t_half', 0, 's', D), _p('dm', 0, 'kg'), _p('c', PHYSICS_CONSTANTS['c'].value, 'm/s', C),
         _p('E_b', 0, 'J', D)),
        equations=('dN/dt = -decay_const*N',),
        aliases=('nuclear', 'radioactivity')),
    ModuleTemplate(
        'solid_state_physics', ModuleType.MODERN, 'Solid state physics',
        ('band gap', 'crystal', 'lattice', 'conductivity'),
        ('sigma_c = n_c*q*mu_e',),
        (_p('n_c', 1e28, '1/m^3'), _p('q', 1.602176634e-19, 'C'), _p('mu_e', 0.01, 'm^2/(V*s)'),
         _p('sigma_c', 0, 'S/m', D)),
        complexity=ComplexityTier.ADVANCED),
)

TEMPLATE_INDEX: Dict[str, ModuleTemplate] = {t.id: t for t in TEMPLATES}

GENERIC_TEMPLATE = ModuleTemplate(
    'generic', ModuleType.GENERIC, 'Generic physics system',
    (), (), (),
    assumptions=('classical physics applies',),
    limitations=('no domain-specific equations',))

# ===============================================================================
# Relevance Scoring
# ===============================================================================

@dataclass(frozen=True)
class ProblemProfile:
    """The signals module detection compares templates against"""
    symbols: FrozenSet[str]
    system_type: str
    text: str

    @property
    def tokens(self) -> FrozenSet[str]:
        return frozenset(re.findall(r'[A-Za-z_][A-Za-z_0-9]*', self.text))


@dataclass
class ModuleMatch:
    template: ModuleTemplate
    score: float
    threshold: float
    signals: Dict[str, float] = field(default_factory=dict)

    @property
    def selected(self) -> bool:
        return self.score >= self.threshold


def detection_threshold(module_type: ModuleType) -> float:
    return DETECTION_THRESHOLDS.get(module_type, DEFAULT_DETECTION_THRESHOLD)


def _type_signal(template: ModuleTemplate, system_type: str) -> float:
    wanted = system_type.lower().strip()
    if not wanted:
        return 0.0
    if wanted in (template.module_type.value, template.id) or wanted in template.aliases:
        return 1.0
    wanted_type = ModuleType.parse(wanted)
    if wanted_type is None:
        for other in TEMPLATES:
            if wanted == other.id or wanted in other.aliases:
                wanted_type = other.module_type
                break
    if wanted_type is None:
        return 0.0
    for family in TYPE_FAMILIES.values():
        if wanted_type in family and template.module_type in family:
            return RELATED_TYPE_CREDIT
    return 0.0


def _keyword_signal(template: ModuleTemplate, text: str) -> float:
    lowered = text.lower()
    if not lowered or not template.keywords:
        return 0.0
    hits = 0
    for keyword in template.keywords:
        variants = SYNONYMS.get(keyword, ()) + (keyword,)
        if any(variant in lowered for variant in variants):
            hits += 1
    # Two independent hits saturate the signal
    return min(1.0, hits / 2.0)


def score_template(template: ModuleTemplate, profile: ProblemProfile) -> ModuleMatch:
    """Weighted blend of parameter, system-type, keyword and formula signals"""
    symbols = template.symbols
    if symbols and profile.symbols:
        overlap = len(symbols & profile.symbols) / min(len(symbols), len(profile.symbols))
    else:
        overlap = 0.0

    formula_tokens = template.formula_tokens
    if formula_tokens:
        known = profile.symbols | profile.tokens
        formula_overlap = len(formula_tokens & known) / len(formula_tokens)
    else:
        formula_overlap = 0.0

    signals = {
        'parameters': overlap,
        'system_type': _type_signal(template, profile.system_type),
        'keywords': _keyword_signal(template, profile.text),
        'formulas': formula_overlap,
    }
    score = sum(MODULE_SCORE_WEIGHTS[name] * value for name, value in signals.items())
    return ModuleMatch(template, round(score, 6), detection_threshold(template.module_type), signals)


def match_templates(profile: ProblemProfile,
                    templates: Tuple[ModuleTemplate, ...] = TEMPLATES) -> List[ModuleMatch]:
    """Score every template, best first"""
    matches = [score_template(t, profile) for t in templates]
    matches.sort(key=lambda m: (-m.score, m.template.id))
    return matches

# ===============================================================================
# Module Factory
# ===============================================================================

def _template_parameters(template: ModuleTemplate,
                         problem_parameters: Dict[str, Parameter]) -> Tuple[Parameter, ...]:
    """Template parameters with problem values where the problem supplies them"""
    parameters = []
    for spec in template.parameters:
        existing = problem_parameters.get(spec.symbol)
        if existing is not None:
            parameters.append(existing)
            continue
        dimension = DimensionCalculator.unit_to_dimension(spec.unit)
        parameters.append(Parameter(
            symbol=spec.symbol,
            value=PhysicalQuantity(spec.default, spec.unit, dimension),
            role=spec.role,
            description=spec.description or f"{spec.symbol} ({template.name})",
        ))
    return tuple(parameters)


def _template_equations(template: ModuleTemplate) -> Tuple[Equation, ...]:
    equations: List[Equation] = []
    for index, entry in enumerate(template.equations):
        text, states = (entry, None) if isinstance(entry, str) else entry
        equations.append(Equation.from_string(f"{template.id}_ode{index}", text, states))

    driven = {s for eq in equations for s in eq.state_variables}
    seen = set()
    for index, formula in enumerate(template.formulas):
        parts = split_equation(formula)
        if parts.target is None or parts.target in driven or parts.target in seen:
            continue
        seen.add(parts.target)
        equations.append(Equation.from_string(f"{template.id}_eq{index}", formula))
    return tuple(equations)


def _base_module(template: ModuleTemplate, problem_parameters: Dict[str, Parameter],
                 score: float, domain: ModuleDomain,
                 extra_laws: Tuple[Tuple[str, str], ...] = (),
                 extra_assumptions: Tuple[str, ...] = ()) -> Module:
    parameters = _template_parameters(template, problem_parameters)
    laws = tuple(
        ConservationLaw(quantity=q, expression=expr, module_id=template.id,
                        description=f"{q} conservation in {template.name}")
        for q, expr in template.conservation_laws + extra_laws
    )
    outputs = tuple(p.symbol for p in parameters
                    if p.role in (ParameterRole.UNKNOWN, ParameterRole.DERIVED))
    assumptions = template.assumptions + tuple(a for a in extra_assumptions if a not in template.assumptions)
    return Module(
        id=template.id,
        type=template.module_type.value,
        name=template.name,
        description=template.name,
        parameters=parameters,
        equations=_template_equations(template),
        dependencies=template.dependencies,
        outputs=outputs,
        conservation_laws=laws,
        assumptions=assumptions,
        limitations=template.limitations,
        complexity=template.complexity,
        domain=domain,
        initial_conditions=template.initial_conditions,
        score=score,
    )


def _build_mechanics_module(template, problem_parameters, score):
    scale = 'astronomical' if template.module_type == ModuleType.GRAVITATION else 'macroscopic'
    static = not template.equations
    domain = ModuleDomain(template.spatial_dimensions, 'static' if static else 'dynamic', scale)
    return _base_module(template, problem_parameters, score, domain,
                        extra_assumptions=('classical mechanics applies',))


def _build_oscillatory_module(template, problem_parameters, score):
    domain = ModuleDomain(template.spatial_dimensions, 'periodic', 'macroscopic')
    return _base_module(template, problem_parameters, score, domain)


def _build_field_module(template, problem_parameters, score):
    # Charge conservation holds for every electromagnetic module
    laws = () if any(q == 'charge' for q, _ in template.conservation_laws) else (('charge', ''),)
    temporal = 'dynamic' if template.equations else 'static'
    scale = 'microscopic' if template.id in ('hall_effect',) else 'macroscopic'
    domain = ModuleDomain(max(template.spatial_dimensions, 3), temporal, scale)
    return _base_module(template, problem_parameters, score, domain, extra_laws=laws)


def _build_optics_module(template, problem_parameters, score):
    domain = ModuleDomain(max(template.spatial_dimensions, 2), 'static', 'macroscopic')
    return _base_module(template, problem_parameters, score, domain,
                        extra_assumptions=('ray or paraxial approximation',))


def _build_thermal_module(template, problem_parameters, score):
    temporal = 'dynamic' if template.equations else 'static'
    domain = ModuleDomain(0, temporal, 'macroscopic')
    return _base_module(template, problem_parameters, score, domain,
                        extra_assumptions=('thermodynamic equilibrium between steps',))


def _build_quantum_module(template, problem_parameters, score):
    temporal = 'dynamic' if template.equations else 'static'
    domain = ModuleDomain(3, temporal, 'microscopic')
    return _base_module(template, problem_parameters, score, domain)


def _build_generic_module(template, problem_parameters, score):
    return Module(
        id=template.id,
        type=ModuleType.GENERIC.value,
        name=template.name,
        description='Fallback module used when no template matched',
        parameters=tuple(problem_parameters.values()),
        equations=(),
        outputs=tuple(sym for sym, p in problem_parameters.items() if p.role == ParameterRole.UNKNOWN),
        assumptions=template.assumptions,
        limitations=template.limitations,
        domain=ModuleDomain(),
        score=score,
    )


ModuleConstructor = Callable[[ModuleTemplate, Dict[str, Parameter], float], Module]

MODULE_CONSTRUCTORS: Dict[ModuleType, ModuleConstructor] = {
    ModuleType.KINEMATICS: _build_mechanics_module,
    ModuleType.DYNAMICS: _build_mechanics_module,
    ModuleType.ENERGY: _build_mechanics_module,
    ModuleType.MOMENTUM: _build_mechanics_module,
    ModuleType.GRAVITATION: _build_mechanics_module,
    ModuleType.FLUID: _build_mechanics_module,
    ModuleType.PRESSURE: _build_mechanics_module,
    ModuleType.SIMPLE_MACHINES: _build_mechanics_module,
    ModuleType.OSCILLATION: _build_oscillatory_module,
    ModuleType.WAVE: _build_oscillatory_module,
    ModuleType.ACOUSTICS: _build_oscillatory_module,
    ModuleType.BASIC_ELECTRICITY: _build_field_module,
    ModuleType.ELECTROMAGNETIC: _build_field_module,
    ModuleType.OPTICS: _build_optics_module,
    ModuleType.THERMAL: _build_thermal_module,
    ModuleType.PHASE_CHANGE: _build_thermal_module,
    ModuleType.MODERN: _build_quantum_module,
    ModuleType.GENERIC: _build_generic_module,
}


def create_module(template: ModuleTemplate, problem_parameters: Dict[str, Parameter],
                  score: float = 0.0) -> Module:
    """Build an immutable Module from a template via its type's constructor"""
    return MODULE_CONSTRUCTORS[template.module_type](template, problem_parameters, score)


def create_generic_module(problem_parameters: Dict[str, Parameter]) -> Module:
    return create_module(GENERIC_TEMPLATE, problem_parameters, 0.0)
