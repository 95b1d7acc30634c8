"""
Node Type Definitions.

Complete definitions for all node types a workflow may contain: their
outcome handles and the properties authors configure on them.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ..config import ConditionOperator, InputMode, NodeCategory, NodeType


PHONE_PATTERN = r"^\+?[1-9]\d{1,14}$"
HTTP_URL_PATTERN = r"^https?://.+"
STREAM_URL_PATTERN = r"^(wss?|https?)://.+"

DIGIT_HANDLES = ["1", "2", "3", "4", "5", "6", "7", "8", "9", "0", "*", "#"]


@dataclass
class NodeProperty:
    """Definition of a configurable node property.

    ``aliases`` lists alternate keys accepted in the data bag, tried after
    ``name``. ``required_when`` makes the property required only when other
    data keys hold the given values; ``satisfied_by`` names keys whose
    presence lifts the requirement.
    """

    name: str
    kind: str = "string"  # string, number, boolean, url, phone, select, object
    required: bool = False
    default_value: Any = None
    description: str = ""
    aliases: Tuple[str, ...] = ()
    options: Optional[List[str]] = None
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    pattern: Optional[str] = None
    required_when: Optional[Dict[str, Any]] = None
    satisfied_by: Tuple[str, ...] = ()

    def keys(self) -> Tuple[str, ...]:
        return (self.name,) + self.aliases

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind,
            "required": self.required,
            "default": self.default_value,
            "description": self.description,
            "options": self.options,
            "min": self.minimum,
            "max": self.maximum,
        }


@dataclass
class NodeDefinition:
    """Definition of a node type."""

    type: NodeType
    category: NodeCategory
    name: str
    description: str
    handles: List[str] = field(default_factory=list)
    properties: List[NodeProperty] = field(default_factory=list)

    # Accepts arbitrary handles (speech keywords) in addition to ``handles``
    open_handles: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "category": self.category.value,
            "name": self.name,
            "description": self.description,
            "handles": self.handles,
            "openHandles": self.open_handles,
            "properties": [p.to_dict() for p in self.properties],
        }


# =============================================================================
# Shared properties
# =============================================================================


def _voice_properties() -> List[NodeProperty]:
    return [
        NodeProperty(name="voice", description="Voice used for speech"),
        NodeProperty(name="language", description="Speech language, e.g. en-GB"),
        NodeProperty(name="audioUrl", kind="url", pattern=HTTP_URL_PATTERN, description="Pre-rendered audio"),
    ]


# =============================================================================
# Interaction Nodes
# =============================================================================

_MESSAGE_PROPERTIES = [
    NodeProperty(
        name="messageText",
        aliases=("text", "message"),
        required_when={"mode": "tts"},
        satisfied_by=("audioUrl",),
        min_length=1,
        max_length=500,
        description="Message spoken to the caller",
    ),
    NodeProperty(name="mode", kind="select", options=["tts", "upload"], default_value="tts"),
    NodeProperty(name="timeoutSeconds", kind="number", aliases=("timeout",), minimum=1, maximum=60),
    NodeProperty(name="maxRetries", kind="number", aliases=("max_retries",), minimum=1, maximum=10),
] + _voice_properties()

INTERACTION_NODES = [
    NodeDefinition(
        type=NodeType.GREETING,
        category=NodeCategory.INTERACTION,
        name="Greeting",
        description="Welcome message played when the call is answered",
        handles=["next"],
        properties=list(_MESSAGE_PROPERTIES),
    ),
    NodeDefinition(
        type=NodeType.AUDIO,
        category=NodeCategory.INTERACTION,
        name="Audio Message",
        description="Play a synthesized or uploaded audio message",
        handles=["next"],
        properties=list(_MESSAGE_PROPERTIES),
    ),
    NodeDefinition(
        type=NodeType.INPUT,
        category=NodeCategory.INTERACTION,
        name="User Input",
        description="Collect DTMF digits or speech from the caller",
        handles=DIGIT_HANDLES + ["timeout", "no_match"],
        open_handles=True,
        properties=[
            NodeProperty(
                name="prompt",
                aliases=("message", "messageText", "text"),
                max_length=500,
                description="Prompt spoken before collecting input",
            ),
            NodeProperty(
                name="inputType",
                kind="select",
                aliases=("input_type",),
                options=[m.value for m in InputMode],
                default_value=InputMode.DTMF.value,
            ),
            NodeProperty(name="numDigits", kind="number", aliases=("num_digits",), minimum=1, maximum=20),
            NodeProperty(
                name="timeoutSeconds",
                kind="number",
                aliases=("timeout", "timeout_seconds"),
                minimum=1,
                maximum=60,
                default_value=10,
            ),
            NodeProperty(
                name="maxAttempts",
                kind="number",
                aliases=("max_attempts", "maxRetries"),
                minimum=1,
                maximum=10,
                default_value=3,
            ),
            NodeProperty(name="finishOnKey", aliases=("finish_on_key",), max_length=1),
            NodeProperty(name="saveAs", aliases=("save_as",), max_length=100),
            NodeProperty(name="invalidMessage", aliases=("invalidInputMessage", "invalid_message"), max_length=200),
        ]
        + _voice_properties(),
    ),
]


# =============================================================================
# Logic Nodes
# =============================================================================

LOGIC_NODES = [
    NodeDefinition(
        type=NodeType.CONDITIONAL,
        category=NodeCategory.LOGIC,
        name="Conditional",
        description="Route the call based on a variable comparison",
        handles=["true", "false"],
        properties=[
            NodeProperty(name="variable", required=True, min_length=1, max_length=100),
            NodeProperty(
                name="operator",
                kind="select",
                options=[o.value for o in ConditionOperator],
                default_value=ConditionOperator.EQUALS.value,
            ),
            NodeProperty(name="value", max_length=200),
        ],
    ),
    NodeDefinition(
        type=NodeType.REPEAT,
        category=NodeCategory.LOGIC,
        name="Repeat",
        description="Replay the previous prompt a bounded number of times",
        handles=["repeat", "fallback", "max_reached"],
        properties=[
            NodeProperty(
                name="maxRepeats",
                kind="number",
                aliases=("max_repeats",),
                required=True,
                minimum=1,
                maximum=10,
                default_value=3,
            ),
            NodeProperty(name="repeatMessage", aliases=("repeat_message",), max_length=200),
            NodeProperty(name="fallbackNodeId", aliases=("fallback_node_id",)),
            NodeProperty(name="fallbackMessage", aliases=("fallback_message",), max_length=200),
            NodeProperty(name="replayLastPrompt", kind="boolean", default_value=True),
        ],
    ),
    NodeDefinition(
        type=NodeType.SET_VARIABLE,
        category=NodeCategory.DATA,
        name="Set Variable",
        description="Store a value in the call's variables",
        handles=["next"],
        properties=[
            NodeProperty(name="variable", required=True, min_length=1, max_length=100),
            NodeProperty(name="value", kind="object"),
        ],
    ),
]


# =============================================================================
# Action Nodes
# =============================================================================

ACTION_NODES = [
    NodeDefinition(
        type=NodeType.VOICEMAIL,
        category=NodeCategory.ACTION,
        name="Voicemail",
        description="Record a voicemail message",
        handles=["completed"],
        properties=[
            NodeProperty(
                name="text",
                aliases=("message", "prompt", "messageText"),
                min_length=1,
                max_length=500,
                default_value="Please leave your message after the beep.",
            ),
            NodeProperty(
                name="maxLength",
                kind="number",
                aliases=("max_length",),
                minimum=1,
                maximum=300,
                default_value=60,
            ),
            NodeProperty(name="playBeep", kind="boolean", default_value=True),
            NodeProperty(name="transcribe", kind="boolean", default_value=True),
            NodeProperty(name="mailbox", default_value="general"),
        ]
        + _voice_properties(),
    ),
    NodeDefinition(
        type=NodeType.TRANSFER,
        category=NodeCategory.ACTION,
        name="Transfer",
        description="Transfer the call to another number",
        handles=["answered", "busy", "no_answer", "failed"],
        properties=[
            NodeProperty(
                name="destination",
                kind="phone",
                required=True,
                pattern=PHONE_PATTERN,
                description="Destination number in E.164 format",
            ),
            NodeProperty(name="callerId", kind="phone", aliases=("caller_id",), pattern=PHONE_PATTERN),
            NodeProperty(name="timeout", kind="number", minimum=10, maximum=120, default_value=30),
            NodeProperty(name="record", kind="boolean", default_value=False),
            NodeProperty(name="announceText", aliases=("announce_text",), max_length=500),
        ],
    ),
    NodeDefinition(
        type=NodeType.END,
        category=NodeCategory.ACTION,
        name="End",
        description="Say goodbye and end the call",
        handles=[],
        properties=[
            NodeProperty(name="text", aliases=("message", "messageText"), max_length=500),
            NodeProperty(name="reason"),
        ]
        + _voice_properties(),
    ),
    NodeDefinition(
        type=NodeType.QUEUE,
        category=NodeCategory.ACTION,
        name="Queue",
        description="Place the caller in a hold queue",
        handles=["next"],
        properties=[
            NodeProperty(name="queueName", aliases=("queue_name",), required=True, min_length=1, max_length=64),
            NodeProperty(name="waitUrl", kind="url", aliases=("wait_url",), pattern=HTTP_URL_PATTERN),
        ],
    ),
    NodeDefinition(
        type=NodeType.SMS,
        category=NodeCategory.ACTION,
        name="SMS",
        description="Send a text message to the caller",
        handles=["next"],
        properties=[
            NodeProperty(name="message", required=True, min_length=1, max_length=1600),
            NodeProperty(name="to", kind="phone", pattern=PHONE_PATTERN),
            NodeProperty(name="from", kind="phone", aliases=("fromNumber",), pattern=PHONE_PATTERN),
        ],
    ),
]


# =============================================================================
# Service Nodes
# =============================================================================

SERVICE_NODES = [
    NodeDefinition(
        type=NodeType.AI_ASSISTANT,
        category=NodeCategory.SERVICE,
        name="AI Assistant",
        description="Connect the caller to a conversational agent",
        handles=["completed", "transferred", "error"],
        properties=[
            NodeProperty(
                name="streamUrl",
                kind="url",
                aliases=("stream_url",),
                required=True,
                pattern=STREAM_URL_PATTERN,
            ),
            NodeProperty(name="welcomeMessage", aliases=("welcome_message",), max_length=500),
            NodeProperty(
                name="maxDuration",
                kind="number",
                aliases=("max_duration",),
                minimum=60,
                maximum=1800,
                default_value=300,
            ),
            NodeProperty(name="contextData", kind="object"),
        ],
    ),
    NodeDefinition(
        type=NodeType.API_CALL,
        category=NodeCategory.SERVICE,
        name="API Call",
        description="Call an external HTTP endpoint and store the response",
        handles=["success", "error"],
        properties=[
            NodeProperty(name="url", kind="url", required=True, pattern=HTTP_URL_PATTERN),
            NodeProperty(
                name="method",
                kind="select",
                options=["GET", "POST", "PUT", "PATCH", "DELETE"],
                default_value="GET",
            ),
            NodeProperty(name="timeout", kind="number", minimum=1, maximum=30),
            NodeProperty(name="outputVariable", aliases=("output_variable",), max_length=100),
            NodeProperty(name="headers", kind="object"),
            NodeProperty(name="body", kind="object"),
        ],
    ),
]


ALL_NODES = INTERACTION_NODES + LOGIC_NODES + ACTION_NODES + SERVICE_NODES
