from tidebot.agent.context import SECTION_SEPARATOR, ContextBuilder


def _write_skill(root, name, body, frontmatter=""):
    skill_dir = root / "skills" / name
    skill_dir.mkdir(parents=True)
    text = f"---\n{frontmatter}\n---\n{body}" if frontmatter else body
    (skill_dir / "SKILL.md").write_text(text, encoding="utf-8")


def test_empty_workspace_prompt_has_identity_only(workspace):
    prompt = ContextBuilder(workspace).build_system_prompt()

    assert prompt.startswith("# tidebot")
    assert SECTION_SEPARATOR not in prompt
    assert "# Memory" not in prompt
    assert "# Skills" not in prompt


def test_sections_appear_in_order(workspace):
    (workspace / "SOUL.md").write_text("Be kind.", encoding="utf-8")
    (workspace / "AGENTS.md").write_text("Agent rules.", encoding="utf-8")
    builder = ContextBuilder(workspace)
    builder.memory.write_long_term("User likes tea.")
    _write_skill(workspace, "pinned", "Pinned body.", 'description: Pinned\nalways: true')
    _write_skill(workspace, "weather", "Weather body.", "description: Check the weather")
    _write_skill(workspace, "notes", "Notes body.", "description: Take notes")

    prompt = builder.build_system_prompt(skill_names=["notes"])
    sections = prompt.split(SECTION_SEPARATOR)

    assert sections[0].startswith("# tidebot")
    assert sections[1].index("## AGENTS.md") < sections[1].index("## SOUL.md")
    assert sections[2] == "# Memory\n\n## Long-term Memory\nUser likes tea."
    assert sections[3].startswith("# Active Skills") and "Pinned body." in sections[3]
    assert sections[4].startswith("# Requested Skills") and "Notes body." in sections[4]
    assert sections[5].startswith("# Skills")
    assert "<name>weather</name>" in sections[5]
    assert "<name>pinned</name>" not in sections[5]
    assert "<name>notes</name>" not in sections[5]


def test_unavailable_skill_is_marked(workspace):
    _write_skill(
        workspace,
        "gh",
        "Use gh.",
        'description: GitHub\nmetadata: {"requires": {"bins": ["definitely-not-a-binary-xyz"]}}',
    )
    summary = ContextBuilder(workspace).skills.build_skills_summary()

    assert '<skill available="false">' in summary
    assert "CLI: definitely-not-a-binary-xyz" in summary


def test_folded_description_and_yaml_metadata(workspace):
    _write_skill(
        workspace,
        "weather",
        "Use wttr.in.",
        "description: >\n  Fetch current weather via wttr.in\nmetadata:\n  requires:\n    env: [TIDEBOT_TEST_MISSING_ENV]",
    )
    summary = ContextBuilder(workspace).skills.build_skills_summary()

    assert "<description>Fetch current weather via wttr.in</description>" in summary
    assert "ENV: TIDEBOT_TEST_MISSING_ENV" in summary


def test_json_string_metadata_and_bad_frontmatter(workspace):
    _write_skill(
        workspace,
        "pinned",
        "Pinned body.",
        'metadata: \'{"tidebot": {"always": true}}\'',
    )
    _write_skill(workspace, "broken", "Broken body.", "description: [unclosed")
    skills = ContextBuilder(workspace).skills

    assert skills.get_always_skills() == ["pinned"]
    assert skills.get_skill_metadata("broken") == {}
    assert skills.load_skills_for_context(["broken"]) == "### Skill: broken\n\nBroken body."


def test_build_messages_layout(workspace):
    builder = ContextBuilder(workspace)
    history = [{"role": "user", "content": "earlier"}]

    messages = builder.build_messages(history, "now", channel="telegram", chat_id="42")

    assert [m["role"] for m in messages] == ["system", "user", "user"]
    assert messages[0]["content"].endswith("## Current Session\nChannel: telegram\nChat ID: 42")
    assert messages[1] == {"role": "user", "content": "earlier"}
    assert messages[2] == {"role": "user", "content": "now"}


def test_image_media_becomes_data_uri(workspace):
    image = workspace / "cat.png"
    image.write_bytes(b"\x89PNG\r\n")
    notes = workspace / "notes.txt"
    notes.write_text("x", encoding="utf-8")

    messages = ContextBuilder(workspace).build_messages([], "look", media=[image, notes])
    content = messages[-1]["content"]

    assert len(content) == 2
    assert content[0]["type"] == "image_url"
    assert content[0]["image_url"]["url"].startswith("data:image/png;base64,")
    assert content[1] == {"type": "text", "text": "look"}


def test_non_image_media_keeps_plain_text(workspace):
    notes = workspace / "notes.txt"
    notes.write_text("x", encoding="utf-8")

    messages = ContextBuilder(workspace).build_messages([], "read", media=[notes])

    assert messages[-1]["content"] == "read"


def test_assistant_and_tool_messages():
    messages: list = []
    ContextBuilder.add_assistant_message(messages, None, [{"id": "c1"}])
    ContextBuilder.add_assistant_message(messages, "plain")
    ContextBuilder.add_tool_result(messages, "c1", "exec", "output")

    assert messages[0] == {"role": "assistant", "content": "", "tool_calls": [{"id": "c1"}]}
    assert messages[1] == {"role": "assistant", "content": "plain"}
    assert messages[2] == {"role": "tool", "tool_call_id": "c1", "name": "exec", "content": "output"}
