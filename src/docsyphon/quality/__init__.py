"""Proposal quality: text heuristics, enrichment, ruleset review, post-processing and optional LLM rewrites."""
