"""Command line interface for genai."""
