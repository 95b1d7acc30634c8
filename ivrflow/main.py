"""
IVR Workflow Engine service.

Webhook Endpoints:
- /ivr/welcome, /ivr/next-step, /ivr/handle-input: call progression
- /ivr/dial-complete, /ivr/recording-complete, /ivr/ai-complete: action outcomes
- /ivr/call-status: call lifecycle

Management Endpoints:
- /workflows: CRUD, graph replacement, status, validation
- /workflows/{id}/generate-audio, /tts-*: audio jobs
- /executions, /active-calls: live calls
"""

from .api import create_app
from .config import get_settings

app = create_app()


# =============================================================================
# Main
# =============================================================================


def main() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "ivrflow.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    main()
