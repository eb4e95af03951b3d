# AI Services Package
# Gemini model gateway used by the tool-calling agent

from app.services.ai.gemini_gateway import (
    GeminiConfig,
    GeminiGateway,
    ModelReply,
    ProviderError,
    build_system_prompt,
    render_results_summary,
)

__all__ = [
    "GeminiConfig",
    "GeminiGateway",
    "ModelReply",
    "ProviderError",
    "build_system_prompt",
    "render_results_summary",
]
