"""
Turn guard for false "I have no tools" replies.

Some models answer a request for an action with a refusal such as "I don't
have access to the internet" even though tools were offered. The guard
spots that text, asks the loop to retry once from a fresh context with a
corrective nudge, and on a repeat gives up with a canned explanation.

One guard is created per inbound message.
"""

import enum
import re
from typing import Protocol

DEFAULT_NO_TOOLS_PATTERNS = [
    r"\b(i|we)\s+(do not|don't|dont|cannot|can't|cant|am unable to|am not able to)\s+"
    r"(have\s+)?(access|the ability|permission|tools?|capabilit(y|ies))\b",
    r"\b(i|we)\s+(do not|don't|dont)\s+have\s+(any\s+)?(tools?|functions?|internet|web|browsing|file\s*system|shell|terminal)\b",
    r"\bno\s+(tools?|functions?)\s+(are\s+)?(available|provided|enabled)\b",
    r"\b(tools?|functions?)\s+(are|is)\s+(not\s+available|unavailable|disabled)\b",
    r"\b(i|we)\s+(can't|cannot|am unable to|am not able to)\s+"
    r"(browse|access the (internet|web)|search the (internet|web)|run (commands|code)|execute (commands|code)|read files|write files)\b",
    r"\bas an ai( language model)?,?\s+i\s+(can't|cannot|don't|do not)\b",
    r"\bwithout (access to|the ability to use) (tools|the internet|external)",
]

CORRECTION_MESSAGE = (
    "Correction: tools ARE available in this session ({tools}). "
    "Do not claim you lack tools, access, or capabilities. "
    "Call the appropriate tool now to complete the user's request."
)

TOOLS_AVAILABLE_RESPONSE = (
    "I do have tools available ({tools}), but I failed to use them for this request. "
    "Please try rephrasing it, or name the tool you want me to use."
)


class NoToolsClaimClassifier(Protocol):
    """Decides whether a reply claims that tools are unavailable."""

    def __call__(self, content: str) -> bool: ...


class PatternClassifier:
    """Case-insensitive regex matcher over the reply text."""

    def __init__(self, patterns: list[str] | None = None, extra_patterns: list[str] | None = None):
        source = DEFAULT_NO_TOOLS_PATTERNS if patterns is None else patterns
        self.patterns = [re.compile(p, re.IGNORECASE) for p in [*source, *(extra_patterns or [])]]

    def __call__(self, content: str) -> bool:
        return any(p.search(content) for p in self.patterns)


class GuardState(enum.Enum):
    NO_CLAIM = "no_claim"
    RETRIED = "retried"
    TERMINAL = "terminal"


class TurnGuard:
    """
    Per-turn decision procedure: NO_CLAIM → RETRIED → TERMINAL.

    The loop calls should_retry_after_false_no_tools_claim() for every
    response without tool calls. A True result means "rebuild the turn
    from scratch and retry"; afterwards `terminal` says whether to stop
    with tools_available_response() instead of accepting the content.
    """

    def __init__(
        self,
        model: str,
        tool_names: list[str],
        max_iterations: int,
        classifier: NoToolsClaimClassifier | None = None,
    ):
        self.model = model
        self.tool_names = sorted(tool_names)
        self.max_iterations = max_iterations
        self.classifier = classifier or PatternClassifier()
        self.state = GuardState.NO_CLAIM

    def reset(self) -> None:
        self.state = GuardState.NO_CLAIM

    @property
    def terminal(self) -> bool:
        return self.state is GuardState.TERMINAL

    @property
    def tools_text(self) -> str:
        return ", ".join(self.tool_names) if self.tool_names else "(none)"

    def is_false_no_tools_claim(self, content: str | None) -> bool:
        if not content or not self.tool_names:
            return False
        return self.classifier(content)

    def should_retry_after_false_no_tools_claim(
        self, content: str | None, iteration: int, made_tool_calls: bool = False
    ) -> bool:
        """
        Return True exactly once per turn, on the first false claim.

        A second claim (or a first claim on the last iteration, where no
        retry is possible) moves the guard to TERMINAL and returns False.
        """
        if made_tool_calls or not self.is_false_no_tools_claim(content):
            return False
        if self.state is GuardState.NO_CLAIM and iteration < self.max_iterations:
            self.state = GuardState.RETRIED
            return True
        self.state = GuardState.TERMINAL
        return False

    def correction_message(self) -> dict[str, str]:
        return {"role": "user", "content": CORRECTION_MESSAGE.format(tools=self.tools_text)}

    def tools_available_response(self) -> str:
        return TOOLS_AVAILABLE_RESPONSE.format(tools=self.tools_text)
