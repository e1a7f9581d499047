"""Round prompt text and parsing of a single markdown reply."""

import json
import re
from collections.abc import Mapping

from fat.discussion import ThreadSnapshot
from fat.models import DiscussionMessage, Reply, RoundMeta

_SECTIONS = {"ANSWER": "answer", "RATIONALE": "rationale", "DISCUSSION": "discussion"}
_WITH_RE = re.compile(r"^##\s+With\s+(.+?)\s*$", re.IGNORECASE)

_ROUND1_TASK = """\
This is round 1 - provide your initial answer to the question.

Focus on:
- Answering the question directly and completely
- Using your unique perspective and expertise
- Being concise but thorough (<300 words)
"""

_REFINE_TASK = """\
This is round {round} of {total} - refine your answer based on:
1. Gaps or weaknesses in other agents' answers
2. Discussion points directed at you
3. New perspectives you can contribute

Refine your ANSWER by:
- Incorporating valid points from other agents
- Addressing feedback directed at you
- Maintaining your core perspective while filling gaps
- NOT simply copying other agents' work

In DISCUSSION messages:
- Point out logical flaws, contradictions, or reasoning errors
- Challenge assumptions that don't align with the question context
- Flag violations of the original prompt's requirements (format, length, structure, etc.)
- Provide 1-2 specific, actionable messages (20-50 words each)
"""

_FORMAT = """\
--- RESPONSE FORMAT ---

Respond in this EXACT format:

# ANSWER

{answer_hint} (<300 words)
IMPORTANT: Include ONLY the raw answer here - no scaffolding, disclaimers, or meta-commentary.
Save explanations for the RATIONALE section.

# RATIONALE

(Optional) {rationale_hint}
Use EXACTLY '# RATIONALE' (single #), NOT '### Rationale' or any other format
"""

_DISCUSSION_FORMAT = """
# DISCUSSION

(Optional - only if you have substantive feedback)

## With [AgentName]

[One specific, actionable suggestion, 20-50 words]

IMPORTANT RULES:
- Omit DISCUSSION section entirely if no substantive feedback
- Each message must suggest a specific improvement or ask a clarifying question
- Do NOT include prefixes like "To AgentName:" - just the message content
- Be constructive, not just praise or criticism
"""


def _answer_block(header: str, reply: Reply) -> str:
    answer = reply.answer.strip() or "(No answer provided)"
    block = f"{header}\n\n{answer}\n\n"
    if reply.rationale.strip():
        block += f"### Rationale\n\n{reply.rationale.strip()}\n\n"
    return block


def _latest(messages: tuple[DiscussionMessage, ...], sender: str) -> DiscussionMessage | None:
    for msg in reversed(messages):
        if msg.sender == sender:
            return msg
    return None


def format_round_prompt(
    agent_id: str,
    agent_name: str,
    question: str,
    meta: RoundMeta,
    replies: Mapping[str, Reply],
    discussion: ThreadSnapshot,
) -> str:
    """Build the prompt one agent sees in one round.

    Round 1 carries only the question. Later rounds add the agent's own
    previous answer, every other agent's latest answer, and the latest message
    in each direction of every thread the agent takes part in.
    """
    others = ", ".join(meta.other_agents) if meta.other_agents else "none"
    parts = [
        f"You are {agent_name} in a {len(meta.other_agents) + 1}-agent collaboration. "
        f"Other agents: {others}. Round {meta.round} of {meta.total_rounds}.\n\n",
        f"# QUESTION\n\n{question}\n\n",
    ]

    if meta.round > 1:
        parts.append("# REPLIES from previous round:\n\n")
        if not replies:
            parts.append("(No replies available)\n\n")
        else:
            own = replies.get(agent_id)
            if own is not None:
                parts.append(_answer_block(f"## Your previous answer ({agent_name})", own))
            for other_id in sorted(replies):
                if other_id != agent_id:
                    parts.append(_answer_block(f"## {other_id}", replies[other_id]))

        threads = {other: msgs for other, msgs in discussion.get(agent_id, {}).items() if msgs}
        if threads:
            parts.append("# DISCUSSION\n\n")
            for other_id in sorted(threads):
                msgs = threads[other_id]
                parts.append(f"## With {other_id}\n\n")
                for msg in (_latest(msgs, agent_id), _latest(msgs, other_id)):
                    if msg is not None and msg.message.strip():
                        parts.append(f"{msg.sender}: {msg.message.strip()}\n\n")

    parts.append("--- YOUR TASK ---\n\n")
    if meta.round == 1:
        parts.append(_ROUND1_TASK + "\n")
        parts.append(_FORMAT.format(
            answer_hint="Your answer to the question",
            rationale_hint="Brief explanation of your approach or reasoning",
        ))
    else:
        parts.append(_REFINE_TASK.format(round=meta.round, total=meta.total_rounds) + "\n")
        parts.append(_FORMAT.format(
            answer_hint="Your refined answer (incorporate feedback, address gaps)",
            rationale_hint="Brief explanation of changes made",
        ))
        parts.append(_DISCUSSION_FORMAT)

    return "".join(parts)


def _unwrap_json(content: str) -> str:
    """Reasoning models sometimes return JSON with content/text fields."""
    trimmed = content.strip()
    if not trimmed.startswith(("[", "{")):
        return content
    try:
        data = json.loads(trimmed)
    except json.JSONDecodeError:
        return content

    if isinstance(data, list):
        texts = [
            item.get("content") or item.get("text")
            for item in data
            if isinstance(item, dict)
        ]
        joined = "\n".join(t for t in texts if isinstance(t, str) and t)
        return joined.strip() or content
    if isinstance(data, dict):
        for key in ("content", "text", "answer"):
            value = data.get(key)
            if isinstance(value, str) and value:
                return value
    return content


def _heading(line: str) -> str | None:
    """Section name for '# ANSWER'-style headings, also accepting '### Answer'."""
    if line.startswith("# "):
        return _SECTIONS.get(line[2:].strip().upper(), "")
    if line.startswith("### "):
        return _SECTIONS.get(line[4:].strip().upper())
    return None


def parse_reply(content: str) -> Reply:
    """Split a markdown reply into answer, rationale and discussion targets.

    A reply with no recognised headings at all becomes a rationale-only
    reply, so a model that ignored the format still leaves a trace.
    """
    text = _unwrap_json(content)
    answer = ""
    rationale = ""
    discussion: dict[str, str] = {}
    found_any = False

    section = ""
    target = ""
    buffer: list[str] = []

    def flush() -> None:
        nonlocal answer, rationale
        body = "\n".join(buffer).strip()
        buffer.clear()
        if not body:
            return
        if section == "answer":
            answer = body
        elif section == "rationale":
            rationale = body
        elif section == "discussion" and target:
            discussion[target] = body

    for line in text.splitlines():
        stripped = line.strip()

        heading = _heading(stripped)
        if heading is not None:
            flush()
            section, target = heading, ""
            found_any = found_any or bool(heading)
            continue

        if section == "discussion" and stripped.startswith("## "):
            flush()
            match = _WITH_RE.match(stripped)
            target = match.group(1).strip("[]* ") if match else ""
            continue

        if section:
            buffer.append(line)

    flush()

    if not found_any and text.strip():
        rationale = text.strip()

    return Reply(answer=answer, rationale=rationale, discussion=discussion, raw_content=content)
