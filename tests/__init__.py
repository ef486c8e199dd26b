"""Tests for context-fusion."""
