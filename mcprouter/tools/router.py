"""Rule-based command router — fast regex matching for management commands.
Falls through to the LLM planner for anything it can't match.
"""
import re
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from ..decisions import (
    Decision, InstallProviderDeps, ListProviders, ProviderStatus, RemoveProvider, SetProviderEnabled,
)

logger = logging.getLogger(__name__)

CANCEL_FLOW = "cancel_flow"


@dataclass
class CommandMatch:
    decision: Optional[Decision] = None
    command: str = ""  # set for non-decision commands such as CANCEL_FLOW


_RULES: List[Tuple[re.Pattern, Callable[[re.Match], CommandMatch]]] = []

_TARGET = r"(?:mcp\s+)?(?:provider|server)"


def _strip_punctuation(text: str) -> str:
    """Strip trailing punctuation and quotes from text."""
    return text.rstrip(".!?,;:").strip().strip("'\"`")


def _build_rules():
    global _RULES

    rules = [
        # ── Listing / status ────────────────────────────
        (rf"^(?:list|show)(?:\s+(?:all|the))?\s+(?:mcp\s+)?(?:providers|servers)$",
         lambda m: CommandMatch(ListProviders())),

        (rf"^{_TARGET}s?\s+status$",
         lambda m: CommandMatch(ProviderStatus())),

        # ── Enable / disable ────────────────────────────
        (rf"^(?:enable|activate)\s+{_TARGET}\s+(\S+)$",
         lambda m: CommandMatch(SetProviderEnabled(_strip_punctuation(m.group(1)), True))),

        (rf"^(?:disable|deactivate)\s+{_TARGET}\s+(\S+)$",
         lambda m: CommandMatch(SetProviderEnabled(_strip_punctuation(m.group(1)), False))),

        # ── Remove (optionally with files) ──────────────
        (rf"^(?:remove|delete|uninstall)\s+{_TARGET}\s+(\S+?)(\s+(?:and|with)\s+(?:delete\s+|remove\s+)?(?:its\s+|the\s+)?files)?$",
         lambda m: CommandMatch(RemoveProvider(_strip_punctuation(m.group(1)), delete_files=bool(m.group(2))))),

        # ── Install dependencies ────────────────────────
        (rf"^install\s+(?:dependencies\s+for\s+)?{_TARGET}\s+(\S+)$",
         lambda m: CommandMatch(InstallProviderDeps(_strip_punctuation(m.group(1))))),

        # ── Leave an active flow ────────────────────────
        (r"^(?:cancel|exit|quit|stop|abort)\s+(?:the\s+)?flow$",
         lambda m: CommandMatch(command=CANCEL_FLOW)),
    ]

    _RULES.clear()
    for pattern, extractor in rules:
        _RULES.append((re.compile(pattern, re.IGNORECASE), extractor))


def route(text: str) -> Optional[CommandMatch]:
    """Match text against command patterns. Returns CommandMatch or None."""
    text = _strip_punctuation(text.strip())
    for regex, extractor in _RULES:
        match = regex.match(text)
        if match:
            result = extractor(match)
            if result.decision is not None and not getattr(result.decision, "provider_id", "x"):
                continue
            logger.info(f"Command matched: '{text}' -> {result.decision or result.command}")
            return result
    return None


_build_rules()
