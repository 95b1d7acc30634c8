"""
Configuration for the IVR workflow engine.
"""

from enum import Enum
from functools import lru_cache
from typing import Dict

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class NodeCategory(str, Enum):
    """Node category types."""

    INTERACTION = "interaction"
    LOGIC = "logic"
    ACTION = "action"
    SERVICE = "service"
    DATA = "data"


class NodeType(str, Enum):
    """Available node types."""

    # Interaction
    GREETING = "greeting"
    AUDIO = "audio"
    INPUT = "input"

    # Logic
    CONDITIONAL = "conditional"
    REPEAT = "repeat"
    SET_VARIABLE = "set_variable"

    # Actions
    VOICEMAIL = "voicemail"
    TRANSFER = "transfer"
    END = "end"
    QUEUE = "queue"
    SMS = "sms"

    # Services
    AI_ASSISTANT = "ai_assistant"
    API_CALL = "api_call"


# Nodes that may serve as the entry point of a call
ENTRY_NODE_TYPES = (NodeType.GREETING, NodeType.AUDIO)

# Nodes whose prompt is pre-synthesized by the audio pipeline
SPEAKING_NODE_TYPES = (
    NodeType.GREETING,
    NodeType.AUDIO,
    NodeType.INPUT,
    NodeType.VOICEMAIL,
    NodeType.END,
)


class EdgeHandle(str, Enum):
    """Well-known outcome labels carried on edges."""

    NEXT = "next"
    TRUE = "true"
    FALSE = "false"
    TIMEOUT = "timeout"
    NO_MATCH = "no_match"
    ANSWERED = "answered"
    BUSY = "busy"
    NO_ANSWER = "no_answer"
    FAILED = "failed"
    COMPLETED = "completed"
    TRANSFERRED = "transferred"
    ERROR = "error"
    SUCCESS = "success"
    FALLBACK = "fallback"
    MAX_REACHED = "max_reached"


class ConditionOperator(str, Enum):
    """Operators understood by conditional nodes."""

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    EXISTS = "exists"
    REGEX = "regex"


class WorkflowStatus(str, Enum):
    """Workflow status values."""

    DRAFT = "draft"
    ACTIVE = "active"
    INACTIVE = "inactive"


class TTSStatus(str, Enum):
    """Audio generation status tracked on a workflow."""

    NONE = "none"
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


class ExecutionStatus(str, Enum):
    """Lifecycle of a per-call execution."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


class AudioJobStatus(str, Enum):
    """Audio job status values."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"
    CANCELLED = "cancelled"


class InputMode(str, Enum):
    """Input collection modes for input nodes."""

    DTMF = "dtmf"
    SPEECH = "speech"
    BOTH = "dtmf speech"


# Call statuses reported by the platform that terminate a call
TERMINAL_CALL_STATUSES = {"completed", "busy", "no-answer", "canceled", "failed"}


class TelephonyConfig(BaseSettings):
    """Telephony platform configuration."""

    model_config = SettingsConfigDict(env_prefix="TELEPHONY_")

    public_base_url: str = Field(
        default="",
        description="Absolute prefix for continuation URLs (empty for relative URLs)",
    )
    auth_token: str = Field(default="", description="Webhook signing key")
    validate_signatures: bool = Field(default=False, description="Reject unsigned webhooks")

    # Called number to tenant id, e.g. {"+441234567890": "acme"}
    tenant_numbers: Dict[str, str] = Field(default_factory=dict)

    default_voice: str = Field(default="alice", description="Platform voice for <Say>")
    default_language: str = Field(default="en-GB", description="Default speech language")

    apology_message: str = Field(
        default="We are sorry, an error occurred. Goodbye.",
        description="Spoken before hanging up on fatal errors",
    )
    invalid_input_message: str = Field(
        default="Invalid input. Please try again.",
        description="Spoken before re-prompting an input node",
    )
    transfer_unavailable_message: str = Field(
        default="We are unable to transfer your call right now.",
    )


class ExecutionConfig(BaseSettings):
    """Execution safety limits."""

    model_config = SettingsConfigDict(env_prefix="EXECUTION_")

    max_node_executions: int = Field(default=200, description="Max node visits per call")
    max_loop_iterations: int = Field(default=50, description="Max detected loop iterations")
    max_call_duration_s: int = Field(default=1800, description="Max call duration")

    # Loop detection window
    loop_window: int = Field(default=10, description="Recent visits inspected for loops")
    loop_threshold: int = Field(default=5, description="Visits to one node that count as a loop")

    stale_cleanup_interval_s: int = Field(default=3600, description="Stale execution sweep")
    api_call_timeout_s: float = Field(default=5.0, description="Timeout for api_call nodes")


class AudioConfig(BaseSettings):
    """Audio asset pipeline configuration."""

    model_config = SettingsConfigDict(env_prefix="AUDIO_")

    # Synthesis
    synthesis_url: str = Field(default="http://localhost:4000", description="TTS service URL")
    synthesis_provider: str = Field(default="edge", description="TTS provider name")
    synthesis_timeout_s: float = Field(default=30.0, description="Per-call synthesis timeout")
    synthesis_max_attempts: int = Field(default=3, ge=1, description="Synthesis attempts per node")
    synthesis_backoff_base_s: float = Field(default=1.0, ge=0, description="Exponential backoff base")

    # Node-level retry (upload and write-back)
    node_max_attempts: int = Field(default=3, ge=1)
    node_retry_delay_s: float = Field(default=2.0, ge=0)

    # Job lifecycle
    job_timeout_s: float = Field(default=600.0, description="Whole-job timeout")
    max_job_age_s: int = Field(default=86400, description="Finished job retention")

    # Asset storage
    storage_url: str = Field(default="http://localhost:4100", description="Asset storage URL")
    storage_folder: str = Field(default="ivr-audio", description="Upload folder")

    default_voice: str = Field(default="en-GB-SoniaNeural")
    default_language: str = Field(default="en-GB")

    # Neural voice ids mapped to platform-native voices for degraded playback
    voice_map: Dict[str, str] = Field(
        default_factory=lambda: {
            "en-GB-SoniaNeural": "Polly.Amy",
            "en-GB-RyanNeural": "Polly.Brian",
            "en-GB-LibbyNeural": "Polly.Emma",
            "en-GB-ThomasNeural": "Polly.Joey",
            "hi-IN-SwaraNeural": "Polly.Aditi",
            "hi-IN-MadhurNeural": "Polly.Aditi",
            "ta-IN-PallaviNeural": "Polly.Aditi",
            "ta-IN-ValluvarNeural": "Polly.Aditi",
        }
    )
    fallback_voice: str = Field(default="Polly.Amy")


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Service configuration
    service_name: str = Field(default="ivrflow", description="Service name")
    host: str = Field(default="0.0.0.0", description="Host to bind")
    port: int = Field(default=8095, ge=1024, le=65535, description="Port")
    debug: bool = Field(default=False, description="Debug mode")
    log_level: str = Field(default="info", description="Log level")
    log_format: str = Field(default="json", description="json or console")

    # Sub-configurations
    telephony: TelephonyConfig = Field(default_factory=TelephonyConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    audio: AudioConfig = Field(default_factory=AudioConfig)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings."""
    return Settings()
