"""FastAPI dependencies for services created in the application lifespan.

Every dependency reads an object the lifespan stored on app.state, so tests
can inject fakes by assigning app.state attributes directly.
"""

from fastapi import Request

from vibra.services.image_service import ImageService
from vibra.services.playback import PlaybackOrchestrator
from vibra.services.prompt_selector import PromptSelector


def get_image_service(request: Request) -> ImageService:
    return request.app.state.image_service


def get_playback_orchestrator(request: Request) -> PlaybackOrchestrator:
    return request.app.state.playback


def get_prompt_selector(request: Request) -> PromptSelector:
    return request.app.state.prompt_selector
