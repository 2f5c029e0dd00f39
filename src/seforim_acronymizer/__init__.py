"""
seforim-acronymizer: Acronym enrichment for Seforim library titles.

A batch job that asks an LLM for attested acronym variants of book titles
and table-of-contents entries, paces and retries around upstream rate
limits, and stores results in a local SQLite database.
"""

__version__ = "0.1.0"
