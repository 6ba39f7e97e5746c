from holder_rewards.distribution.builder import BatchBuilder
from holder_rewards.distribution.converter import AssetConverter
from holder_rewards.distribution.cycle import DistributionCycle, run_cycle
from holder_rewards.distribution.planner import DistributionPlanner
from holder_rewards.distribution.submission import SubmissionEngine, classify_exception

__all__ = [
    "AssetConverter",
    "BatchBuilder",
    "DistributionCycle",
    "DistributionPlanner",
    "SubmissionEngine",
    "classify_exception",
    "run_cycle",
]
