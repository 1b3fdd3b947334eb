"""SweepGraph: static reachability analysis and safe dead-code removal."""

__version__ = "0.3.0"
