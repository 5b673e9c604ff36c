"""StakeDrop bridge: a no-loss lottery coordinated across a privacy chain and a settlement chain."""

__version__ = "0.1.0"
