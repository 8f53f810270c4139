"""Prompt templates for code generation.

The generator asks for one self-contained Next.js page. The model is told
not to wrap its answer in markdown, but the generator strips fences anyway.
"""

from __future__ import annotations

# =============================================================================
# System Prompt
# =============================================================================

SYSTEM_PROMPT = """You are an expert frontend engineer. You write complete, \
working Next.js applications that compile on the first try."""


# =============================================================================
# Generation Prompt
# =============================================================================

GENERATE_APP_PROMPT = """Create a complete, beautiful, production-ready Next.js application for: "{prompt}"

Requirements:
- Modern Next.js 14 with App Router
- TypeScript
- Tailwind CSS for styling
- Make it fully functional and interactive
- Include proper styling and responsive design
- All code should be in a single page.tsx file for simplicity

IMPORTANT: Return ONLY the raw TypeScript React code. Do not include any markdown formatting, \
code block markers (like ```), or explanations. The response should start directly with either \
'use client' or import statements."""


def format_generate_prompt(prompt: str) -> str:
    """Format the generation prompt for a user request."""
    return GENERATE_APP_PROMPT.format(prompt=prompt)
