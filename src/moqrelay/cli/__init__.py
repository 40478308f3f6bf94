"""Command-line interface for moqrelay."""
