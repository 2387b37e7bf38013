"""Inference service boundary and adapters."""

from research_agent.llm.inference import InferenceResult, InferenceService, parse_json_payload

__all__ = ["InferenceResult", "InferenceService", "parse_json_payload"]
