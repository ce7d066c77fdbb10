"""API key lifecycle for the chat API."""
