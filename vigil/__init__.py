"""Vigil — scheduling and execution engine for recurring monitoring tasks."""
