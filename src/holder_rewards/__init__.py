"""holder_rewards - fee conversion and proportional reward distribution for SPL token holders."""

__version__ = "0.1.0"
