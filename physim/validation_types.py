# -*- coding: utf-8 -*-
"""
Shared validation data types: severities, categories, issues, uniform checks
and the report both validators return.
"""

import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .ir_types import to_plain

# ===============================================================================
# Core Validation Enums
# ===============================================================================

class ValidationSeverity(Enum):
    """Issue severity levels"""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ValidationCategory(Enum):
    """Validation category types"""
    CONSERVATION = "conservation"
    CONSTRAINTS = "constraints"
    NUMERICAL_STABILITY = "stability"
    DIMENSIONAL_CONSISTENCY = "dimensional"
    CAUSALITY = "causality"
    COMPLETENESS = "completeness"
    DATA_QUALITY = "quality"
    ANOMALY = "anomalies"
    PERFORMANCE = "performance"
    OUTPUT = "output"
    GENERAL = "general"

# ===============================================================================
# Core Validation Data Structures
# ===============================================================================

@dataclass
class ValidationIssue:
    """A single finding with a suggested fix"""
    severity: ValidationSeverity
    category: ValidationCategory
    message: str
    suggestion: str = ''
    element_name: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'severity': self.severity.value,
            'category': self.category.value,
            'message': self.message,
            'suggestion': self.suggestion,
            'element_name': self.element_name,
            'details': self.details,
            'timestamp': self.timestamp
        }


@dataclass
class ValidationCheck:
    """Uniform outcome of one audit: pass flag, 0-1 score and supporting metrics"""
    name: str
    passed: bool = True
    score: float = 1.0
    metrics: Dict[str, Any] = field(default_factory=dict)
    details: List[str] = field(default_factory=list)
    enabled: bool = True

    def __post_init__(self):
        self.score = float(min(1.0, max(0.0, self.score)))

    def to_dict(self) -> Dict[str, Any]:
        return to_plain(self)


@dataclass
class ConservationCheck:
    """Initial/final comparison of one conserved quantity"""
    quantity: str
    initial_value: float = 0.0
    final_value: float = 0.0
    final_deviation: float = 0.0
    max_deviation: float = 0.0
    threshold: float = 0.01
    satisfied: bool = True
    score: float = 1.0
    trivial: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return to_plain(self)


@dataclass
class ValidationMetrics:
    """Validation performance and quality metrics"""
    execution_time: float = 0.0
    validators_run: List[str] = field(default_factory=list)
    issues_by_severity: Dict[str, int] = field(default_factory=dict)
    custom_metrics: Dict[str, Any] = field(default_factory=dict)

    def add_metric(self, name: str, value: Any):
        self.custom_metrics[name] = value

    def get_metric(self, name: str, default: Any = None) -> Any:
        return self.custom_metrics.get(name, default)


@dataclass
class ValidationReport:
    """Scored validation report shared by the physics and result validators"""
    success: bool = False
    overall_score: float = 0.0
    checks: Dict[str, ValidationCheck] = field(default_factory=dict)
    issues: List[ValidationIssue] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    metrics: ValidationMetrics = field(default_factory=ValidationMetrics)
    target_type: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

    def add_issue(self, issue: ValidationIssue):
        """Add validation issue and update statistics"""
        self.issues.append(issue)
        severity_key = issue.severity.value
        self.metrics.issues_by_severity[severity_key] = self.metrics.issues_by_severity.get(severity_key, 0) + 1

    def add(self, severity: ValidationSeverity, category: ValidationCategory, message: str,
            suggestion: str = '', **details):
        self.add_issue(ValidationIssue(severity, category, message, suggestion, details=details or None))

    def add_recommendation(self, text: str):
        if text and text not in self.recommendations:
            self.recommendations.append(text)

    def merge(self, other: 'ValidationReport'):
        """Merge another validation report into this one"""
        for issue in other.issues:
            self.add_issue(issue)
        self.checks.update(other.checks)
        for text in other.recommendations:
            self.add_recommendation(text)
        self.metrics.custom_metrics.update(other.metrics.custom_metrics)
        self.metrics.validators_run.extend(other.metrics.validators_run)

    @property
    def errors(self) -> List[str]:
        return [i.message for i in self.issues
                if i.severity in (ValidationSeverity.ERROR, ValidationSeverity.CRITICAL)]

    @property
    def warnings(self) -> List[str]:
        return [i.message for i in self.issues if i.severity == ValidationSeverity.WARNING]

    def get_issues_by_category(self, category: ValidationCategory) -> List[ValidationIssue]:
        return [issue for issue in self.issues if issue.category == category]

    def check_scores(self) -> Dict[str, float]:
        return {name: check.score for name, check in self.checks.items() if check.enabled}

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'overall_score': self.overall_score,
            'checks': {name: check.to_dict() for name, check in self.checks.items()},
            'errors': self.errors,
            'warnings': self.warnings,
            'recommendations': list(self.recommendations),
            'issues': [issue.to_dict() for issue in self.issues],
            'target_type': self.target_type,
            'timestamp': self.timestamp,
            'metrics': {
                'execution_time': self.metrics.execution_time,
                'validators_run': self.metrics.validators_run,
                'issues_by_severity': self.metrics.issues_by_severity,
                'custom_metrics': to_plain(self.metrics.custom_metrics)
            }
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, default=str)


def weighted_score(scores: Dict[str, float], weights: Dict[str, float]) -> float:
    """Weighted mean over the checks present, with weights renormalised to 1"""
    total_weight = sum(weights[name] for name in scores if name in weights)
    if total_weight <= 0:
        return 0.0
    return sum(weights[name] * score for name, score in scores.items() if name in weights) / total_weight
