"""crash-analysis-mcp: evidence-driven AI crash analysis over structured dump reports."""

__version__ = "0.1.0"
