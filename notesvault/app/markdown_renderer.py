"""Line oriented markdown to HTML rendering for note previews.

Fenced code blocks are cut out first, the rest is handled one line at a time.
Inline markup is replaced in a fixed order; every replacement is parked behind
a NUL-delimited placeholder so later patterns never see already rendered HTML.
"""

from __future__ import annotations

import html
import logging
import re
from dataclasses import dataclass
from typing import Callable, List, Optional

from pygments import highlight
from pygments.formatters.html import HtmlFormatter
from pygments.lexers import TextLexer, get_lexer_by_name
from pygments.util import ClassNotFound

from notesvault.server.shell import ExecResult

logger = logging.getLogger(__name__)

CODE_BLOCK_PATTERN = re.compile(r"```(\w+)?\n([\s\S]*?)```")
IMAGE_PATTERN = re.compile(r"!\[([^\]]*)\]\(([^)]+)\)")
NUMBERED_PATTERN = re.compile(r"^(\d+)\. (.*)$")
BOLD_ITALIC_PATTERN = re.compile(r"\*\*\*(.*?)\*\*\*")
BOLD_PATTERN = re.compile(r"\*\*(.*?)\*\*")
ITALIC_PATTERN = re.compile(r"\*(.*?)\*")
INLINE_CODE_PATTERN = re.compile(r"`([^`]+)`")
LINK_PATTERN = re.compile(r"\[([^\]]+)\]\(([^)]+)\)")
WIKI_LINK_PATTERN = re.compile(r"\[\[([^\]]+)\]\]")
PLACEHOLDER_PATTERN = re.compile(r"\x00(\d+)\x00")
URL_SCHEME_PATTERN = re.compile(r"^([a-zA-Z][a-zA-Z0-9+.-]*):")

SAFE_LINK_SCHEMES = {"http", "https", "mailto"}

SCRIPT_LANGUAGES = {"js", "javascript", "sh", "bash", "shell"}

_FORMATTER = HtmlFormatter(nowrap=True)


@dataclass
class CodeBlock:
    index: int
    language: str
    code: str
    start: int
    end: int

    @property
    def is_script(self) -> bool:
        return self.language.lower() in SCRIPT_LANGUAGES


def extract_code_blocks(text: str) -> List[CodeBlock]:
    blocks: List[CodeBlock] = []
    for index, match in enumerate(CODE_BLOCK_PATTERN.finditer(text)):
        blocks.append(
            CodeBlock(
                index=index,
                language=match.group(1) or "text",
                code=match.group(2).strip(),
                start=match.start(),
                end=match.end(),
            )
        )
    return blocks


def _highlight(code: str, language: str) -> str:
    try:
        lexer = get_lexer_by_name(language)
    except ClassNotFound:
        lexer = TextLexer()
    return highlight(code, lexer, _FORMATTER).rstrip("\n")


def _render_code_block(block: CodeBlock) -> str:
    language = html.escape(block.language)
    header = f'<span class="language">{language}</span>'
    output = ""
    if block.is_script:
        header += f'<button class="run-script" data-index="{block.index}">Run</button>'
        output = f'<div class="script-output" data-index="{block.index}" hidden></div>'
    return (
        f'<div class="code-block" data-index="{block.index}" data-language="{language}">'
        f'<div class="code-header">{header}</div>'
        f"<pre><code>{_highlight(block.code, block.language)}</code></pre>"
        f"{output}</div>"
    )


class _Inline:
    def __init__(self) -> None:
        self.fragments: List[str] = []

    def park(self, fragment: str) -> str:
        self.fragments.append(fragment)
        return f"\x00{len(self.fragments) - 1}\x00"

    def restore(self, text: str) -> str:
        # Parked fragments may themselves contain placeholders.
        while PLACEHOLDER_PATTERN.search(text):
            text = PLACEHOLDER_PATTERN.sub(lambda m: self.fragments[int(m.group(1))], text)
        return text


def is_safe_href(href: str) -> bool:
    """Allow web, mail, anchor and relative links; reject script-capable schemes."""
    compact = "".join(ch for ch in href if ch.isprintable() and not ch.isspace())
    match = URL_SCHEME_PATTERN.match(compact)
    return match is None or match.group(1).lower() in SAFE_LINK_SCHEMES


def _render_link(match: "re.Match[str]", inline: _Inline) -> str:
    label, href = match.group(1), match.group(2).strip()
    if not is_safe_href(href):
        logger.debug("Dropping link with unsafe href %r", href)
        return inline.park(label)
    return inline.park(f'<a href="{href}" target="_blank" rel="noopener noreferrer">{label}</a>')


def render_inline(text: str) -> str:
    inline = _Inline()
    out = html.escape(text)
    out = BOLD_ITALIC_PATTERN.sub(lambda m: inline.park(f"<strong><em>{m.group(1)}</em></strong>"), out)
    out = BOLD_PATTERN.sub(lambda m: inline.park(f"<strong>{m.group(1)}</strong>"), out)
    out = ITALIC_PATTERN.sub(lambda m: inline.park(f"<em>{m.group(1)}</em>"), out)
    out = INLINE_CODE_PATTERN.sub(lambda m: inline.park(f"<code>{m.group(1)}</code>"), out)
    out = LINK_PATTERN.sub(lambda m: _render_link(m, inline), out)
    out = WIKI_LINK_PATTERN.sub(
        lambda m: inline.park(
            f'<a class="internal-link" href="#internal:{m.group(1)}" data-note="{m.group(1)}">{m.group(1)}</a>'
        ),
        out,
    )
    return inline.restore(out)


def _render_plain_line(line: str) -> str:
    parts: List[str] = []
    last = 0
    for match in IMAGE_PATTERN.finditer(line):
        if match.start() > last:
            parts.append(render_inline(line[last:match.start()]))
        alt = html.escape(match.group(1))
        src = html.escape(match.group(2))
        parts.append(f'<img class="image" src="{src}" alt="{alt}">')
        last = match.end()
    if last < len(line):
        parts.append(render_inline(line[last:]))
    return f'<div class="line">{"".join(parts)}</div>'


def render_line(line: str, line_number: int) -> str:
    if line.startswith("# "):
        return f"<h1>{html.escape(line[2:])}</h1>"
    if line.startswith("## "):
        return f"<h2>{html.escape(line[3:])}</h2>"
    if line.startswith("### "):
        return f"<h3>{html.escape(line[4:])}</h3>"
    if line.startswith("- [ ] ") or line.startswith("- [x] "):
        checked = line.startswith("- [x] ")
        state = " checked" if checked else ""
        css = ' class="done"' if checked else ""
        return (
            f'<div class="task"><input type="checkbox" data-line="{line_number}"{state}>'
            f"<span{css}>{render_inline(line[6:])}</span></div>"
        )
    if line.startswith("- "):
        return f'<li class="bullet">{render_inline(line[2:])}</li>'
    numbered = NUMBERED_PATTERN.match(line)
    if numbered:
        return f'<li class="numbered" value="{numbered.group(1)}">{render_inline(numbered.group(2))}</li>'
    if line.startswith("> "):
        return f"<blockquote>{render_inline(line[2:])}</blockquote>"
    return _render_plain_line(line)


def _render_text(segment: str, first_line: int) -> str:
    return "".join(
        render_line(line, first_line + offset) for offset, line in enumerate(segment.split("\n"))
    )


def render(text: str) -> str:
    """Render a note to HTML; checkbox lines carry their document line index."""
    parts: List[str] = []
    last = 0
    for block in extract_code_blocks(text):
        if block.start > last:
            parts.append(_render_text(text[last:block.start], text.count("\n", 0, last)))
        parts.append(_render_code_block(block))
        last = block.end
    if last < len(text):
        parts.append(_render_text(text[last:], text.count("\n", 0, last)))
    return f'<div class="markdown">{"".join(parts)}</div>'


def run_code_block(text: str, index: int, executor: Callable[[str], ExecResult]) -> dict:
    """Execute one script block; failures come back as that block's output."""
    blocks = extract_code_blocks(text)
    block: Optional[CodeBlock] = blocks[index] if 0 <= index < len(blocks) else None
    if block is None:
        return {"index": index, "success": False, "output": f"Error: no code block #{index}"}
    if not block.is_script:
        return {"index": index, "success": False, "output": f"Error: {block.language} blocks cannot be run"}
    try:
        result = executor(block.code)
    except Exception as exc:
        logger.warning("Code block %d raised: %s", index, exc)
        return {"index": index, "success": False, "output": f"Error: {exc}"}
    if result.ok:
        return {"index": index, "success": True, "output": result.output or "Command executed successfully"}
    return {"index": index, "success": False, "output": f"Error: {result.error}"}
