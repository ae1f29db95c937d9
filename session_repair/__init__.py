"""Detect and repair OpenCode sessions blocked by unverifiable reasoning signatures."""
