"""
Tests for the Gemini gateway: prompt building, response parsing, request
configuration and error translation.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from google.genai import types as genai_types

from app.core.config import Settings
from app.services.ai.gemini_gateway import (
    GeminiConfig,
    GeminiGateway,
    ModelReply,
    NO_TOOLS_LINE,
    PROMPT_HEADER,
    ProviderError,
    build_system_prompt,
    model_turn,
    render_results_summary,
    user_turn,
)
from app.services.tools.schema import ToolDescriptor, ToolExecutionResult
from tests.utils.tool_doubles import make_descriptor, tool_call


# =============================================================================
# Fixtures
# =============================================================================

def make_response(*parts, usage=True):
    return genai_types.GenerateContentResponse(
        candidates=[
            genai_types.Candidate(content=genai_types.Content(role="model", parts=list(parts)))
        ],
        usage_metadata=genai_types.GenerateContentResponseUsageMetadata(
            prompt_token_count=120,
            candidates_token_count=30,
            total_token_count=150,
        ) if usage else None,
    )


@pytest.fixture
def config():
    return GeminiConfig(api_key="test-key", request_timeout=5)


@pytest.fixture
def mock_client():
    client = MagicMock()
    client.aio.models.generate_content = AsyncMock()
    return client


@pytest.fixture
def gateway(config, mock_client):
    return GeminiGateway(config, client=mock_client)


# =============================================================================
# Prompt and turns
# =============================================================================

class TestSystemPrompt:

    def test_lists_every_tool_and_directives(self):
        prompt = build_system_prompt([
            make_descriptor("create_github_issue", description="Create a GitHub issue"),
            make_descriptor("post_slack_message", description="Post to Slack"),
        ])

        assert prompt.startswith(PROMPT_HEADER)
        assert "- create_github_issue: Create a GitHub issue" in prompt
        assert "- post_slack_message: Post to Slack" in prompt
        assert "Never ask for permission" in prompt
        assert NO_TOOLS_LINE not in prompt

    def test_no_tools(self):
        prompt = build_system_prompt([])

        assert prompt.startswith(PROMPT_HEADER)
        assert NO_TOOLS_LINE in prompt

    def test_deterministic(self):
        descriptors = [make_descriptor("a"), make_descriptor("b")]

        assert build_system_prompt(descriptors) == build_system_prompt(list(descriptors))


class TestTurns:

    def test_user_turn_shape(self):
        assert user_turn("hi") == {"role": "user", "parts": [{"text": "hi"}]}

    def test_model_turn_with_text(self):
        assert model_turn(ModelReply(text="hello")) == {"role": "model", "parts": [{"text": "hello"}]}

    def test_model_turn_with_only_tool_requests(self):
        turn = model_turn(ModelReply(tool_requests=[
            tool_call("create_jira_issue", summary="Fix login"),
            tool_call("get_project_context"),
        ]))

        assert turn["parts"][0]["text"] == (
            'Requested tools: create_jira_issue(summary="Fix login"), get_project_context()'
        )


class TestResultsSummary:

    def test_renders_success_and_failure_and_original_request(self):
        summary = render_results_summary(
            [
                ToolExecutionResult.succeeded("create_github_issue", {"number": 7}),
                ToolExecutionResult.failed("post_slack_message", "not_in_channel"),
            ],
            "file it and tell the team",
        )

        assert summary.startswith("Here are the latest tool results:")
        assert "Tool create_github_issue succeeded with payload:" in summary
        assert '"number": 7' in summary
        assert "Tool post_slack_message failed with reason: not_in_channel" in summary
        assert 'The original request was: "file it and tell the team"' in summary
        assert "final answer" in summary


# =============================================================================
# Response parsing
# =============================================================================

class TestParseResponse:

    def test_text_only(self):
        parsed = GeminiGateway.parse_response(make_response(genai_types.Part(text="All done.")))

        assert parsed.text == "All done."
        assert parsed.tool_requests == []
        assert parsed.usage == {"prompt_tokens": 120, "completion_tokens": 30, "tokens_used": 150}

    def test_text_and_function_calls(self):
        parsed = GeminiGateway.parse_response(make_response(
            genai_types.Part(text="Creating it now."),
            genai_types.Part(function_call=genai_types.FunctionCall(
                name="create_github_issue", args={"title": "Login bug", "labels": ["bug"]}
            )),
            genai_types.Part(function_call=genai_types.FunctionCall(name="get_project_context", args=None)),
        ))

        assert parsed.text == "Creating it now."
        assert [r.name for r in parsed.tool_requests] == ["create_github_issue", "get_project_context"]
        assert parsed.tool_requests[0].args == {"title": "Login bug", "labels": ["bug"]}
        assert parsed.tool_requests[1].args == {}

    def test_no_candidates_is_empty_reply(self):
        response = genai_types.GenerateContentResponse(candidates=[])

        parsed = GeminiGateway.parse_response(response)

        assert parsed.text == ""
        assert parsed.tool_requests == []

    def test_malformed_object_is_empty_reply(self):
        parsed = GeminiGateway.parse_response(object())

        assert parsed == ModelReply()

    def test_missing_usage(self):
        parsed = GeminiGateway.parse_response(make_response(genai_types.Part(text="x"), usage=False))

        assert parsed.usage is None


# =============================================================================
# Requests
# =============================================================================

class TestSend:

    @pytest.mark.asyncio
    async def test_converse_sends_history_message_and_tools(self, gateway, mock_client):
        mock_client.aio.models.generate_content.return_value = make_response(genai_types.Part(text="ok"))
        history = [user_turn("earlier"), {"role": "model", "parts": [{"text": "answer"}]}]
        descriptors = [make_descriptor("create_jira_issue", {"summary": {"type": "string"}}, ["summary"])]

        reply = await gateway.converse("new message", history, descriptors)

        assert reply.text == "ok"
        kwargs = mock_client.aio.models.generate_content.call_args.kwargs
        assert kwargs["model"] == "gemini-2.5-pro"
        contents = kwargs["contents"]
        assert [c.role for c in contents] == ["user", "model", "user"]
        assert contents[-1].parts[0].text == "new message"

        request_config = kwargs["config"]
        assert request_config.system_instruction.startswith(PROMPT_HEADER)
        assert request_config.temperature == 0.7
        assert request_config.tools[0].function_declarations[0].name == "create_jira_issue"
        assert request_config.automatic_function_calling.disable is True

    @pytest.mark.asyncio
    async def test_no_tools_means_no_tool_config(self, gateway, mock_client):
        mock_client.aio.models.generate_content.return_value = make_response(genai_types.Part(text="4"))

        await gateway.converse("What's 2+2?", [], [])

        request_config = mock_client.aio.models.generate_content.call_args.kwargs["config"]
        assert not request_config.tools

    @pytest.mark.asyncio
    async def test_continue_conversation_sends_summary_as_user_turn(self, gateway, mock_client):
        mock_client.aio.models.generate_content.return_value = make_response(genai_types.Part(text="done"))

        await gateway.continue_conversation("Here are the latest tool results: ...", [user_turn("go")], [])

        contents = mock_client.aio.models.generate_content.call_args.kwargs["contents"]
        assert contents[-1].role == "user"
        assert contents[-1].parts[0].text.startswith("Here are the latest tool results")

    @pytest.mark.asyncio
    async def test_sdk_exception_becomes_provider_error(self, gateway, mock_client):
        mock_client.aio.models.generate_content.side_effect = RuntimeError("quota exceeded")

        with pytest.raises(ProviderError) as exc_info:
            await gateway.converse("hi", [], [])

        assert str(exc_info.value) == "LLM API error (gemini): [RuntimeError] quota exceeded"
        assert exc_info.value.error_type == "RuntimeError"
        assert exc_info.value.provider == "gemini"

    @pytest.mark.asyncio
    async def test_request_building_failure_becomes_provider_error(self, gateway, mock_client):
        malformed_history = [{"role": "user", "parts": ["bare string instead of a part"]}]

        with pytest.raises(ProviderError) as exc_info:
            await gateway.converse("hi", malformed_history, [])

        assert exc_info.value.error_type == "AttributeError"
        mock_client.aio.models.generate_content.assert_not_called()

    @pytest.mark.asyncio
    async def test_rejected_tool_declaration_becomes_provider_error(self, gateway, mock_client):
        descriptor = ToolDescriptor(
            name="create_jira_issue",
            description="Create a Jira issue",
            parameters={
                "$schema": "http://json-schema.org/draft-07/schema#",
                "type": "object",
                "properties": {"summary": {"type": "string"}},
                "required": ["summary"],
            },
        )

        with pytest.raises(ProviderError) as exc_info:
            await gateway.converse("hi", [], [descriptor])

        assert exc_info.value.error_type == "ValidationError"
        mock_client.aio.models.generate_content.assert_not_called()

    @pytest.mark.asyncio
    async def test_timeout_becomes_provider_error(self, mock_client):
        async def hang(**kwargs):
            await asyncio.sleep(2)

        mock_client.aio.models.generate_content.side_effect = hang
        gateway = GeminiGateway(GeminiConfig(api_key="k", request_timeout=0.05), client=mock_client)

        with pytest.raises(ProviderError) as exc_info:
            await gateway.converse("hi", [], [])

        assert exc_info.value.error_type == "TimeoutError"


# =============================================================================
# Configuration
# =============================================================================

class TestGeminiConfig:

    def test_none_without_api_key(self):
        assert GeminiConfig.from_settings(Settings(_env_file=None, GOOGLE_API_KEY=None)) is None

    def test_reads_generation_settings(self):
        settings = Settings(_env_file=None, GOOGLE_API_KEY="abc", GEMINI_MODEL="gemini-2.5-flash", GEMINI_TOP_K=20)

        config = GeminiConfig.from_settings(settings)

        assert config.api_key == "abc"
        assert config.model == "gemini-2.5-flash"
        assert config.top_k == 20
        assert config.max_output_tokens == 8192
