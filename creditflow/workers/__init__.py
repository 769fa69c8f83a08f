"""
Stage Consumers

Risk assessment and decision stages, and the worker pool that runs them.
"""

from .decision import DecisionConsumer
from .risk_assessment import RiskAssessmentConsumer
from .runner import ConsumerGroupRunner, PipelineWorker, build_consumers, build_runners
from .stage import DeadLetterRouter, StageConsumer, StageOutcome, StageResult

__all__ = [
    "DecisionConsumer",
    "RiskAssessmentConsumer",
    "ConsumerGroupRunner",
    "PipelineWorker",
    "build_consumers",
    "build_runners",
    "DeadLetterRouter",
    "StageConsumer",
    "StageOutcome",
    "StageResult",
]
