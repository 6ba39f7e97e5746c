from holder_rewards.policy.eligibility import EligibilityFilter

__all__ = ["EligibilityFilter"]
