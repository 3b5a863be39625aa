"""
CogniMap Learning Progression Engine
A dependency graph of learning units that unlocks modules as their
prerequisites are completed, grows on demand, and nests deep-study
sub-graphs under milestone units.
"""

__version__ = "0.1.0"
