"""Summary Module - conversation titles."""

from chorus.summary.generator import DEFAULT_SUMMARY, SummaryGenerator, clean_title

__all__ = ["DEFAULT_SUMMARY", "SummaryGenerator", "clean_title"]
