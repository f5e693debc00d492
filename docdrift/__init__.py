"""docdrift: detect and prioritise drift between source code and its documentation."""

__version__ = "1.0.0"
