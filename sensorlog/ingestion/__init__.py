"""Ingestion pipeline: parsing, batched inserts and embedding."""
