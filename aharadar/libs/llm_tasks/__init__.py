"""LLM task executors producing validated, versioned JSON outputs."""

from .aggregate_summary import AggregateSummaryInput, AggregateSummaryItem, ClusterMember, aggregate_summary
from .catchup_pack import (
    CatchupPackCandidate,
    CatchupPackSelectInput,
    CatchupPackTargets,
    CatchupPackTierInput,
    select_catchup_pack,
    tier_catchup_pack,
)
from .deep_summary import DeepSummaryCandidateInput, deep_summarize_candidate
from .manual_summary import ManualSummaryInput, manual_summarize
from .runner import TaskCallResult, TaskSpec, execute_task, run_with_single_retry
from .schemas import (
    AggregateSummaryOutput,
    CatchupPackOutput,
    CatchupPackSelectOutput,
    DeepSummaryOutput,
    ManualSummaryOutput,
    TriageOutput,
)
from .triage import TRIAGE_JSON_SCHEMA, BatchTriageResult, TriageCandidateInput, triage_batch, triage_candidate

__all__ = [
    "AggregateSummaryInput",
    "AggregateSummaryItem",
    "AggregateSummaryOutput",
    "BatchTriageResult",
    "CatchupPackCandidate",
    "CatchupPackOutput",
    "CatchupPackSelectInput",
    "CatchupPackSelectOutput",
    "CatchupPackTargets",
    "CatchupPackTierInput",
    "ClusterMember",
    "DeepSummaryCandidateInput",
    "DeepSummaryOutput",
    "ManualSummaryInput",
    "ManualSummaryOutput",
    "TRIAGE_JSON_SCHEMA",
    "TaskCallResult",
    "TaskSpec",
    "TriageCandidateInput",
    "TriageOutput",
    "aggregate_summary",
    "deep_summarize_candidate",
    "execute_task",
    "manual_summarize",
    "run_with_single_retry",
    "select_catchup_pack",
    "tier_catchup_pack",
    "triage_batch",
    "triage_candidate",
]
