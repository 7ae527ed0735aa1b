"""notegraph: cached link-graph operations over a vault of Markdown notes."""

__version__ = "0.1.0"
