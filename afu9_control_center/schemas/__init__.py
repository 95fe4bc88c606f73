"""Request schemas for the HTTP API."""

from .loop_v1 import NextStepRequest, PublishRequest, StepRequest, VerdictRequest

__all__ = ["NextStepRequest", "PublishRequest", "StepRequest", "VerdictRequest"]
