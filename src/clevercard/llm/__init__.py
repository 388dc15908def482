"""OpenAI-compatible AI client."""
