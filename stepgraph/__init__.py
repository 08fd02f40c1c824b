"""stepgraph: step transition graphs for fluent Go state machines."""

__version__ = "0.1.0"
