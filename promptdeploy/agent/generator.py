"""Source generation for the pipeline's first stage.

Responsibilities:
- Ask the LLM for a single self-contained page component
- Strip markdown code fences the model may add despite instructions

Fence stripping is a best-effort text transform, not a parser. Known
wrapping variants live in the test fixtures; anything else passes through
unchanged.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod

from promptdeploy.agent.prompts import SYSTEM_PROMPT, format_generate_prompt
from promptdeploy.config import Settings, get_settings
from promptdeploy.errors import GenerationFailure
from promptdeploy.llm.router import ModelRouter
from promptdeploy.schemas import LLMMessage


logger = logging.getLogger(__name__)

# A line holding nothing but a fence marker and an optional info string
_FENCE_LINE_RE = re.compile(r"^\s*(```|~~~)[\w.+#-]*\s*$")
# A fenced block anywhere in the text, e.g. after a line of prose
_FENCED_BLOCK_RE = re.compile(
    r"^(?P<fence>```|~~~)[\w.+#-]*[ \t]*\r?\n(?P<body>.*?)\r?\n[ \t]*(?P=fence)[ \t]*$",
    re.DOTALL | re.MULTILINE,
)
# First lines that mean the text already is source, not prose
_CODE_STARTS = ("'use client'", "\"use client\"", "import ", "export ", "//", "/*")


def strip_code_fences(text: str) -> str:
    """Remove markdown code-fence wrapping from generated source.

    Handles a leading fence (with or without language tag), a matching
    closing fence, prose before or after a fenced block, and a response
    truncated before its closing fence.
    """
    text = text.strip()
    if not text:
        return ""

    lines = text.splitlines()
    if _FENCE_LINE_RE.match(lines[0]):
        body = lines[1:]
        for index, line in enumerate(body):
            if _FENCE_LINE_RE.match(line):
                body = body[:index]
                break
        return "\n".join(body).strip()

    match = None if lines[0].lstrip().startswith(_CODE_STARTS) else _FENCED_BLOCK_RE.search(text)
    if match:
        return match.group("body").strip()

    if _FENCE_LINE_RE.match(lines[-1]):
        lines = lines[:-1]
    return "\n".join(lines).strip()


class CodeGenerator(ABC):
    """Turns a prompt into application source text."""

    @abstractmethod
    async def generate(self, prompt: str) -> str:
        """Return fence-free source for a single page.

        Raises:
            GenerationFailure: If no usable source came back
        """
        ...

    async def close(self) -> None:
        """Release any held connections."""
        return None


class LLMCodeGenerator(CodeGenerator):
    """CodeGenerator backed by the model router."""

    def __init__(self, router: ModelRouter | None = None, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self.router = router or ModelRouter(self.settings)

    async def generate(self, prompt: str) -> str:
        messages = [
            LLMMessage(role="system", content=SYSTEM_PROMPT),
            LLMMessage(role="user", content=format_generate_prompt(prompt)),
        ]

        response, provider = await self.router.chat_completion(
            messages=messages,
            temperature=self.settings.generation_temperature,
            max_tokens=self.settings.generation_max_tokens,
        )

        if response.finish_reason == "error" or not response.content:
            error = (response.raw_response or {}).get("error", "empty response")
            raise GenerationFailure(f"Code generation failed: {error}")

        source = strip_code_fences(response.content)
        if not source:
            raise GenerationFailure("Code generation failed: response contained no code")

        logger.info(f"Generated {len(source)} characters via {provider}/{response.model}")
        return source

    async def close(self) -> None:
        await self.router.close()
