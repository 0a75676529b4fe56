"""Evidence-driven AI analysis engine."""
