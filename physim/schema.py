# -*- coding: utf-8 -*-
"""
Declarative problem model accepted by the IR builder.

Every section is optional so that partially generated models still convert;
the builder fills whatever is missing with fallback objects.
"""

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class _Lenient(BaseModel):
    model_config = ConfigDict(extra='allow', populate_by_name=True)


class ProblemMetadata(_Lenient):
    id: Optional[str] = None
    title: str = ''
    description: str = ''
    problem_text: str = Field('', alias='problemText')
    difficulty: str = 'unknown'
    topics: List[str] = Field(default_factory=list)


class ParameterSpec(_Lenient):
    symbol: str
    value: Optional[float] = None
    unit: str = ''
    role: str = 'given'
    description: str = ''
    dimension: Optional[str] = None
    dependencies: List[str] = Field(default_factory=list)

    @field_validator('value', mode='before')
    @classmethod
    def _unwrap_quantity(cls, v: Any):
        # {value, unit} quantities are flattened; the unit is picked up below
        if isinstance(v, dict):
            return v.get('value')
        return v

    @field_validator('role', mode='before')
    @classmethod
    def _normalise_role(cls, v: Any):
        return str(v or 'given').lower()

    @model_validator(mode='before')
    @classmethod
    def _unit_from_quantity(cls, data: Any):
        if isinstance(data, dict):
            raw_value = data.get('value')
            if isinstance(raw_value, dict) and not data.get('unit'):
                data = {**data, 'unit': raw_value.get('unit', '')}
        return data


class ObjectSpec(_Lenient):
    name: str = Field('object', alias='id')
    type: str = 'particle'
    mass: Optional[float] = None
    position: Optional[List[float]] = None
    velocity: Optional[List[float]] = None
    properties: Dict[str, Any] = Field(default_factory=dict)

    @field_validator('mass', mode='before')
    @classmethod
    def _unwrap_mass(cls, v: Any):
        if isinstance(v, dict):
            return v.get('value')
        return v

    @field_validator('position', 'velocity', mode='before')
    @classmethod
    def _vector(cls, v: Any):
        if isinstance(v, dict):
            return [v.get('x', 0.0), v.get('y', 0.0), v.get('z', 0.0)]
        return v


def parameter_items(v: Any):
    """Parameters given as a mapping {"h": {"value": 20, "unit": "m"}} as a list of specs"""
    if isinstance(v, dict):
        items = []
        for symbol, spec in v.items():
            if isinstance(spec, dict):
                items.append({'symbol': symbol, **spec})
            else:
                items.append({'symbol': symbol, 'value': spec})
        return items
    return v


class ConstraintSpec(_Lenient):
    type: str = 'physical'
    expression: str = ''
    tolerance: float = 0.01
    priority: str = 'medium'
    description: str = ''


class SystemSpec(_Lenient):
    type: str = 'generic'
    parameters: List[ParameterSpec] = Field(default_factory=list)
    objects: List[ObjectSpec] = Field(default_factory=list)
    constraints: List[ConstraintSpec] = Field(default_factory=list)
    environment: Dict[str, Any] = Field(default_factory=dict)

    @field_validator('parameters', mode='before')
    @classmethod
    def _parameters_from_mapping(cls, v: Any):
        return parameter_items(v)


class SimulationSpec(_Lenient):
    duration: Optional[float] = None
    time_step: Optional[float] = Field(None, alias='timeStep')
    solver: Optional[str] = None
    precision: Optional[str] = None
    tolerance: Optional[float] = None
    max_iterations: Optional[int] = Field(None, alias='maxIterations')
    adaptive_step_size: Optional[bool] = Field(None, alias='adaptiveStepSize')


class OutputSpec(_Lenient):
    variables: List[str] = Field(default_factory=list)
    plots: List[Union[str, Dict[str, Any]]] = Field(default_factory=list)
    format: str = 'time_series'


class DeclarativeModel(_Lenient):
    metadata: Optional[ProblemMetadata] = None
    system: Optional[SystemSpec] = None
    simulation: Optional[SimulationSpec] = None
    output: Optional[OutputSpec] = None
