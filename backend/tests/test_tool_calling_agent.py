"""
Tests for the bounded tool-calling loop.

Covers the short-circuit path, multi-round tool use, failures fed back to the
model, the round cap and provider errors.
"""

import pytest

from app.services.ai.gemini_gateway import ProviderError
from app.services.tools.agent import ToolCallingAgent, FALLBACK_TEXT
from app.services.tools.registry import ToolRegistry
from tests.utils.tool_doubles import ScriptedGateway, make_descriptor, reply, tool_call


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def issue_registry():
    registry = ToolRegistry()

    @registry.register(make_descriptor("create_issue", {"title": {"type": "string"}}, ["title"]))
    async def create_issue(title):
        return {"id": 42}

    return registry


@pytest.fixture
def rate_limited_registry():
    registry = ToolRegistry()

    @registry.register(make_descriptor("create_issue", {"title": {"type": "string"}}, ["title"]))
    async def create_issue(title):
        raise RuntimeError("rate limited")

    return registry


# =============================================================================
# Short-circuit
# =============================================================================

class TestNoTools:

    @pytest.mark.asyncio
    async def test_plain_answer_with_zero_tools(self):
        gateway = ScriptedGateway([reply("4", usage={"tokens_used": 12})])
        agent = ToolCallingAgent(gateway, ToolRegistry(), max_rounds=6)

        outcome = await agent.run("What's 2+2?")

        assert outcome.final_text == "4"
        assert outcome.tool_calls == []
        assert outcome.tool_results == []
        assert outcome.rounds == 1
        assert outcome.usage == {"tokens_used": 12}
        assert outcome.max_rounds_reached is False
        assert len(gateway.calls) == 1
        assert gateway.calls[0]["descriptors"] == []

    @pytest.mark.asyncio
    async def test_first_reply_without_tools_is_returned_verbatim(self, issue_registry):
        text = "  Sure, nothing to do here.\n"
        gateway = ScriptedGateway([reply(text)])
        agent = ToolCallingAgent(gateway, issue_registry)

        outcome = await agent.run("hello")

        assert outcome.final_text == text
        assert outcome.tool_calls == []
        assert outcome.tool_results == []
        assert len(gateway.calls) == 1

    @pytest.mark.asyncio
    async def test_empty_reply_falls_back_to_generic_text(self):
        gateway = ScriptedGateway([reply("")])
        agent = ToolCallingAgent(gateway, ToolRegistry())

        outcome = await agent.run("hello")

        assert outcome.final_text == FALLBACK_TEXT


# =============================================================================
# Tool rounds
# =============================================================================

class TestToolRounds:

    @pytest.mark.asyncio
    async def test_single_tool_round_then_answer(self, issue_registry):
        gateway = ScriptedGateway([
            reply("", tool_call("create_issue", title="X")),
            reply("Created issue #42"),
        ])
        agent = ToolCallingAgent(gateway, issue_registry)

        outcome = await agent.run("create an issue titled X")

        assert outcome.final_text == "Created issue #42"
        assert [c.to_record() for c in outcome.tool_calls] == [{"name": "create_issue", "args": {"title": "X"}}]
        assert [r.to_record() for r in outcome.tool_results] == [
            {"name": "create_issue", "success": True, "result": {"id": 42}}
        ]
        assert outcome.rounds == 2

        summary = gateway.calls[1]["message"]
        assert gateway.calls[1]["kind"] == "continue"
        assert "Tool create_issue succeeded with payload" in summary
        assert '"id": 42' in summary
        assert 'The original request was: "create an issue titled X"' in summary

    @pytest.mark.asyncio
    async def test_tool_failure_is_reported_and_model_text_passed_through(self, rate_limited_registry):
        model_text = "I couldn't create the issue because the tracker is rate limiting requests."
        gateway = ScriptedGateway([
            reply("", tool_call("create_issue", title="X")),
            reply(model_text),
        ])
        agent = ToolCallingAgent(gateway, rate_limited_registry)

        outcome = await agent.run("create an issue titled X")

        assert [r.to_record() for r in outcome.tool_results] == [
            {"name": "create_issue", "success": False, "error": "rate limited"}
        ]
        assert "Tool create_issue failed with reason: rate limited" in gateway.calls[1]["message"]
        assert outcome.final_text == model_text

    @pytest.mark.asyncio
    async def test_calls_and_results_accumulate_across_rounds(self, echo_registry):
        gateway = ScriptedGateway([
            reply("Creating the issue first.", tool_call("create_github_issue", title="Login bug")),
            reply(
                "",
                tool_call("add_notion_task", task="Login bug", link_url="https://github.com/acme/app/issues/42"),
                tool_call("post_slack_message", text="Filed #42"),
            ),
            reply("Done: issue #42 and a Notion task. Slack posting failed (channel_not_found)."),
        ])
        agent = ToolCallingAgent(gateway, echo_registry)

        outcome = await agent.run("file the login bug everywhere")

        assert [c.name for c in outcome.tool_calls] == ["create_github_issue", "add_notion_task", "post_slack_message"]
        assert [r.success for r in outcome.tool_results] == [True, True, False]
        assert outcome.tool_results[2].error == "channel_not_found"
        assert outcome.final_text.startswith("Done: issue #42")
        assert outcome.rounds == 3

    @pytest.mark.asyncio
    async def test_usage_reports_latest_non_empty_usage(self, issue_registry):
        gateway = ScriptedGateway([
            reply("", tool_call("create_issue", title="X"), usage={"tokens_used": 10}),
            reply("done", usage=None),
        ])
        agent = ToolCallingAgent(gateway, issue_registry)

        outcome = await agent.run("go")

        assert outcome.usage == {"tokens_used": 10}

    @pytest.mark.asyncio
    async def test_history_is_threaded_without_mutating_caller_list(self, issue_registry):
        prior = [
            {"role": "user", "parts": [{"text": "earlier question"}]},
            {"role": "model", "parts": [{"text": "earlier answer"}]},
        ]
        prior_copy = [dict(entry) for entry in prior]
        gateway = ScriptedGateway([
            reply("", tool_call("create_issue", title="X")),
            reply("Created issue #42"),
        ])
        agent = ToolCallingAgent(gateway, issue_registry)

        await agent.run("create an issue titled X", prior)

        assert prior == prior_copy
        assert gateway.calls[0]["history_snapshot"] == prior_copy

        second_history = gateway.calls[1]["history_snapshot"]
        assert second_history[:2] == prior_copy
        assert second_history[2] == {"role": "user", "parts": [{"text": "create an issue titled X"}]}
        assert second_history[3]["role"] == "model"
        assert second_history[3]["parts"][0]["text"] == 'Requested tools: create_issue(title="X")'


# =============================================================================
# Round cap
# =============================================================================

class TestRoundCap:

    @pytest.mark.asyncio
    async def test_cap_forces_stop_and_keeps_last_text(self, issue_registry):
        gateway = ScriptedGateway([
            reply("Working on it", tool_call("create_issue", title="1")),
            reply("", tool_call("create_issue", title="2")),
            reply("never requested"),
        ])
        agent = ToolCallingAgent(gateway, issue_registry, max_rounds=2)

        outcome = await agent.run("loop forever")

        assert outcome.max_rounds_reached is True
        assert outcome.final_text == "Working on it"
        assert len(outcome.tool_calls) == 2
        assert len(outcome.tool_results) == 2
        assert outcome.rounds == 2
        assert len(gateway.calls) == 2

    @pytest.mark.asyncio
    async def test_cap_with_no_text_uses_fallback(self, issue_registry):
        gateway = ScriptedGateway([
            reply("", tool_call("create_issue", title="1")),
            reply("", tool_call("create_issue", title="2")),
        ])
        agent = ToolCallingAgent(gateway, issue_registry, max_rounds=2)

        outcome = await agent.run("loop forever")

        assert outcome.final_text == FALLBACK_TEXT
        assert outcome.max_rounds_reached is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("max_rounds", [1, 3, 6])
    async def test_model_that_always_requests_tools_terminates(self, issue_registry, max_rounds):
        replies = [reply("", tool_call("create_issue", title=str(i))) for i in range(max_rounds + 5)]
        gateway = ScriptedGateway(replies)
        agent = ToolCallingAgent(gateway, issue_registry, max_rounds=max_rounds)

        outcome = await agent.run("spin")

        assert len(gateway.calls) == max_rounds
        assert len(outcome.tool_results) == max_rounds
        assert outcome.max_rounds_reached is True

    @pytest.mark.parametrize("max_rounds", [0, -1])
    def test_max_rounds_must_be_positive(self, issue_registry, max_rounds):
        with pytest.raises(ValueError):
            ToolCallingAgent(ScriptedGateway([]), issue_registry, max_rounds=max_rounds)


# =============================================================================
# Provider errors
# =============================================================================

class TestProviderErrors:

    @pytest.mark.asyncio
    async def test_first_call_error_propagates(self, issue_registry):
        error = ProviderError("LLM API error (gemini): [ServerError] 503 UNAVAILABLE", error_type="ServerError")
        gateway = ScriptedGateway([error])
        agent = ToolCallingAgent(gateway, issue_registry)

        with pytest.raises(ProviderError) as exc_info:
            await agent.run("hello")

        assert exc_info.value is error

    @pytest.mark.asyncio
    async def test_error_after_tool_round_propagates_without_retry(self, issue_registry):
        gateway = ScriptedGateway([
            reply("", tool_call("create_issue", title="X")),
            ProviderError("LLM API error (gemini): Request timed out after 120s", error_type="TimeoutError"),
            reply("should never be used"),
        ])
        agent = ToolCallingAgent(gateway, issue_registry)

        with pytest.raises(ProviderError):
            await agent.run("create an issue titled X")

        assert len(gateway.calls) == 2
