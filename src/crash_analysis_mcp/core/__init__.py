"""Core report query and AI analysis engine for crash-analysis-mcp."""
