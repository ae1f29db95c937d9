"""Command-line interface for opencode-session-repair."""
