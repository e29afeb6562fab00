"""Request-scoped pipelines for search, signals, resume indexing, evaluation and ranking.

Each step is callable independently, from the API or from scripts.
"""
