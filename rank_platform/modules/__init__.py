"""Geo-grid scan pipeline: grid, sampling, aggregation, trends, presentation."""
