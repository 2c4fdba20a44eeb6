"""Completion providers, prompts and the suggestion pipeline."""
