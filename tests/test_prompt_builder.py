"""Tests for prompt construction."""

import json

from claude_local_proxy.core.prompt_builder import (
    TRANSCRIPT_HEADER,
    TRANSCRIPT_INSTRUCTION,
    build_conversation,
    build_prompt,
    build_stream_input,
    build_tool_instruction,
    render_block,
    render_message,
)

READ_TOOL = {
    "name": "Read",
    "description": "Reads a file",
    "input_schema": {"type": "object", "properties": {"file_path": {"type": "string"}}},
}


class TestRendering:
    def test_text_block(self):
        assert render_block({"type": "text", "text": "hello"}) == "hello"

    def test_tool_use_block_includes_serialized_input(self):
        rendered = render_block({"type": "tool_use", "name": "Read", "input": {"file_path": "/a"}})
        assert "Read" in rendered
        assert '{"file_path":"/a"}' in rendered

    def test_tool_result_short_content(self):
        rendered = render_block({"type": "tool_result", "tool_use_id": "toolu_9", "content": "ok"})
        assert "toolu_9" in rendered
        assert "ok" in rendered
        assert "truncated" not in rendered

    def test_tool_result_long_content_is_truncated(self):
        content = "x" * 600
        rendered = render_block({"type": "tool_result", "tool_use_id": "t", "content": content})
        assert "x" * 500 in rendered
        assert "x" * 501 not in rendered
        assert "truncated" in rendered

    def test_tool_result_structured_content_is_serialized(self):
        rendered = render_block({
            "type": "tool_result",
            "tool_use_id": "t",
            "content": [{"type": "text", "text": "file body"}],
        })
        assert '"file body"' in rendered

    def test_unknown_blocks_dropped(self):
        message = {
            "role": "user",
            "content": [
                {"type": "text", "text": "one"},
                {"type": "image", "source": {}},
                {"type": "text", "text": "two"},
            ],
        }
        assert render_message(message) == "one\ntwo"


class TestConversation:
    def test_empty(self):
        assert build_conversation([]) == ""
        assert build_prompt([], None) == ""

    def test_single_message_returned_directly(self):
        assert build_conversation([{"role": "user", "content": "hello"}]) == "hello"

    def test_multiple_messages_become_transcript(self):
        prompt = build_conversation([
            {"role": "user", "content": "first question"},
            {"role": "assistant", "content": [{"type": "text", "text": "first answer"}]},
            {"role": "user", "content": "follow up"},
        ])

        assert prompt.startswith(TRANSCRIPT_HEADER)
        assert "User: first question\n\n" in prompt
        assert "Assistant: first answer\n\n" in prompt
        assert prompt.endswith(TRANSCRIPT_INSTRUCTION + "follow up")
        assert prompt.index("first question") < prompt.index("first answer") < prompt.index("follow up")
        assert "User: follow up" not in prompt


class TestToolInstruction:
    def test_no_tools_no_instruction(self):
        assert build_tool_instruction(None) == ""
        assert build_tool_instruction([]) == ""

    def test_instruction_precedes_user_message(self):
        prompt = build_prompt([{"role": "user", "content": "read my file"}], [READ_TOOL])

        tools_json = json.dumps([READ_TOOL], indent=2)
        assert prompt.startswith("[PROXY MODE]")
        assert tools_json in prompt
        assert prompt.endswith("read my file")
        assert prompt.index(tools_json) < prompt.index("read my file")

    def test_same_prompt_for_both_paths(self):
        messages = [{"role": "user", "content": "hi"}]
        prompt = build_prompt(messages, [READ_TOOL])
        assert build_stream_input(prompt) == {
            "type": "user",
            "message": {"role": "user", "content": prompt},
        }
