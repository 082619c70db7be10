"""Span helpers for asserting on identity lookups."""

from .telemetry import SpanAnalyzer, analyze_spans, clear_spans, telemetry_setup

__all__ = ["SpanAnalyzer", "analyze_spans", "clear_spans", "telemetry_setup"]
