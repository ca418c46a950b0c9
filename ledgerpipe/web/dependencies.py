"""Shared dependency providers for ledgerpipe routes."""

from __future__ import annotations

from fastapi import Request

from ledgerpipe.context import PipelineContext


def get_pipeline(request: Request) -> PipelineContext:
    """Pipeline context built by the application lifespan."""
    return request.app.state.pipeline
