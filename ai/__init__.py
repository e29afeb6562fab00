"""AI collaborators: the LLM oracle used to evaluate applications."""
