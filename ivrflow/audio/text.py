"""
Prompt text extraction.

Speaking nodes keep their prompt under different keys depending on the
editor that wrote them; each type has a fixed priority order and the
first non-empty value wins.
"""

from typing import Dict, Optional, Tuple

from ..config import SPEAKING_NODE_TYPES, NodeType
from ..models import Node


TEXT_FIELDS: Dict[NodeType, Tuple[str, ...]] = {
    NodeType.GREETING: ("messageText", "text", "message"),
    NodeType.AUDIO: ("messageText", "text", "message"),
    NodeType.INPUT: ("prompt", "message", "messageText", "text"),
    NodeType.END: ("message", "messageText", "text"),
}

DEFAULT_TEXT_FIELDS = ("messageText", "message", "text", "prompt")


def extract_prompt_text(node: Node) -> Optional[str]:
    """First non-empty prompt field of ``node``, stripped."""
    for key in TEXT_FIELDS.get(node.type, DEFAULT_TEXT_FIELDS):
        value = node.data.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def needs_audio(node: Node, force_regenerate: bool = False) -> bool:
    """Whether the audio pipeline should synthesize a prompt for ``node``."""
    if node.type not in SPEAKING_NODE_TYPES:
        return False
    if node.data.get("mode") == "upload":
        return False
    if extract_prompt_text(node) is None:
        return False
    return force_regenerate or not node.effective_audio_url
