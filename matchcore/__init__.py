"""Backend package: DB models, entity store, pipelines, API.

This package holds the candidate search index, the behavioral signal
aggregation and the evaluation/ranking pipeline.
"""
