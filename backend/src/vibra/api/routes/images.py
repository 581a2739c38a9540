"""Generated image API endpoints.

This module implements REST endpoints for generated images:
- POST /images/generate - Generate one image now (song or genre scoped)
- GET /images/playback - Images for a track of a given genre and duration
- GET /images/playback/songs/{song_id} - Images for a catalog song
- GET /images/by-song/{song_id} - Paginated active images of a song
- GET /images - Paginated active images, optionally filtered by genre
- GET /images/stats - Aggregate counts by genre and generator
- GET /images/{image_id} - Single active image
- DELETE /images/{image_id} - Soft delete

Playback endpoints never wait for generation: they return what the pool has
now, plus a flag saying more images are being produced.
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, Field, model_validator

from vibra.api.dependencies import get_image_service, get_playback_orchestrator
from vibra.api.errors import to_http_error
from vibra.models.generated_image import GeneratedImage
from vibra.models.prompt import PromptCategory
from vibra.services.image_service import ImageService, page_count
from vibra.services.playback import PlaybackOrchestrator, PlaybackResult

logger = structlog.get_logger()
router = APIRouter(prefix="/images", tags=["images"])

MAX_PAGE_SIZE = 100


# Request/Response Models


class GenerateImageRequest(BaseModel):
    """Request model for on-demand generation. Either song_id or genre is required."""

    song_id: Optional[UUID] = Field(default=None, description="Catalog song to generate for")
    genre: Optional[str] = Field(
        default=None,
        description="Genre to generate for (overrides the song's genre)",
        min_length=1,
        max_length=100,
    )
    category: Optional[PromptCategory] = Field(
        default=None, description="Restrict prompt selection to one category"
    )

    @model_validator(mode="after")
    def require_song_or_genre(self) -> "GenerateImageRequest":
        if self.song_id is None and not self.genre:
            raise ValueError("Either song_id or genre is required")
        return self


class ImageDTO(BaseModel):
    """Data Transfer Object for generated images in API responses."""

    id: UUID
    song_id: Optional[UUID] = None
    genre: str
    image_url: str = Field(..., description="Owned storage URL of the full image")
    thumbnail_url: str = Field(..., description="Owned storage URL of the 400x400 thumbnail")
    storage_key: str
    storage_folder: str
    prompt_text: str
    prompt_id: Optional[UUID] = None
    prompt_category: Optional[str] = None
    generator_name: str
    processing_time_ms: int
    metadata: dict[str, Any] = Field(default_factory=dict)
    is_active: bool
    created_at: datetime

    @classmethod
    def from_model(cls, image: GeneratedImage) -> "ImageDTO":
        return cls(
            id=image.id,
            song_id=image.song_id,
            genre=image.genre,
            image_url=image.image_url,
            thumbnail_url=image.thumbnail_url,
            storage_key=image.storage_key,
            storage_folder=image.storage_folder,
            prompt_text=image.prompt_text,
            prompt_id=image.prompt_id,
            prompt_category=image.prompt_category,
            generator_name=image.generator_name,
            processing_time_ms=image.processing_time_ms,
            metadata=image.generation_metadata or {},
            is_active=image.is_active,
            created_at=image.created_at,
        )


class ImagesPage(BaseModel):
    """Response model for paginated image lists."""

    images: list[ImageDTO]
    total: int = Field(..., description="Total matching images across all pages")
    page: int
    limit: int
    pages: int


class PlaybackImageDTO(ImageDTO):
    source: str = Field(..., description="precached or fallback-random")


class PlaybackResponse(BaseModel):
    """Response model for playback image requests."""

    genre: str
    duration_seconds: float
    song_id: Optional[UUID] = None
    images: list[PlaybackImageDTO]
    breakdown: dict[str, Any]
    generating: bool = Field(..., description="True while better images are being generated")

    @classmethod
    def from_result(cls, result: PlaybackResult) -> "PlaybackResponse":
        return cls(
            genre=result.genre,
            duration_seconds=result.duration_seconds,
            song_id=result.song_id,
            images=[
                PlaybackImageDTO(**ImageDTO.from_model(item.image).model_dump(), source=item.source)
                for item in result.images
            ],
            breakdown=result.breakdown,
            generating=result.generating,
        )


class GenreCount(BaseModel):
    genre: str
    count: int


class GeneratorCount(BaseModel):
    generator: str
    count: int


class ImageStatsResponse(BaseModel):
    """Response model for image statistics."""

    total: int
    avg_processing_time_ms: int
    unique_songs: int
    unique_genres: int
    by_genre: list[GenreCount]
    by_generator: list[GeneratorCount]


# API Endpoints


@router.post("/generate", response_model=ImageDTO, status_code=status.HTTP_201_CREATED)
async def generate_image(
    request: GenerateImageRequest,
    image_service: ImageService = Depends(get_image_service),
) -> ImageDTO:
    """Generate one image synchronously with the on-demand generator.

    Returns:
        201 with the created image record

    Raises:
        HTTPException 404: Song not found, or no active prompt for the genre
        HTTPException 422: Neither song_id nor genre given
        HTTPException 502: Generator or storage failed after its retry budget
    """
    try:
        image = await image_service.generate_image(
            song_id=request.song_id, genre=request.genre, category=request.category
        )
    except Exception as e:
        raise to_http_error(
            e,
            "image.generate.failed",
            song_id=str(request.song_id) if request.song_id else None,
            genre=request.genre,
        )

    logger.info("image.generate.completed", image_id=str(image.id), genre=image.genre)
    return ImageDTO.from_model(image)


@router.get("/playback", response_model=PlaybackResponse)
async def get_playback_images(
    genre: str = Query(..., min_length=1, max_length=100),
    duration_seconds: float = Query(..., gt=0, allow_inf_nan=False),
    playback: PlaybackOrchestrator = Depends(get_playback_orchestrator),
) -> PlaybackResponse:
    """Images for a track of the given genre and duration.

    Durations above MAX_PLAYBACK_DURATION_SECONDS are rejected with 422.

    Example:
        GET /images/playback?genre=Rock&duration_seconds=200

        Response 200:
        {
            "genre": "Rock",
            "duration_seconds": 200,
            "images": [{"id": "...", "source": "precached", ...}],
            "breakdown": {"total_needed": 40, ...},
            "generating": true
        }
    """
    try:
        result = await playback.get_images_for_playback(genre, duration_seconds)
    except Exception as e:
        raise to_http_error(e, "playback.request.failed", genre=genre)
    return PlaybackResponse.from_result(result)


@router.get("/playback/songs/{song_id}", response_model=PlaybackResponse)
async def get_playback_images_for_song(
    song_id: UUID,
    playback: PlaybackOrchestrator = Depends(get_playback_orchestrator),
) -> PlaybackResponse:
    """Images for a catalog song (genre and duration looked up from the catalog)."""
    try:
        result = await playback.get_images_for_song(song_id)
    except Exception as e:
        raise to_http_error(e, "playback.request.failed", song_id=str(song_id))
    return PlaybackResponse.from_result(result)


@router.get("/by-song/{song_id}", response_model=ImagesPage)
async def get_images_by_song(
    song_id: UUID,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=MAX_PAGE_SIZE),
    image_service: ImageService = Depends(get_image_service),
) -> ImagesPage:
    """Paginated active images generated for one song, newest first."""
    try:
        images, total = await image_service.get_images_by_song(song_id, page=page, limit=limit)
    except Exception as e:
        raise to_http_error(e, "image.list.failed", song_id=str(song_id))

    return ImagesPage(
        images=[ImageDTO.from_model(image) for image in images],
        total=total,
        page=page,
        limit=limit,
        pages=page_count(total, limit),
    )


@router.get("", response_model=ImagesPage)
async def list_images(
    genre: Optional[str] = Query(default=None, max_length=100),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=MAX_PAGE_SIZE),
    image_service: ImageService = Depends(get_image_service),
) -> ImagesPage:
    """Paginated active images, optionally filtered by genre, newest first."""
    try:
        images, total = await image_service.list_images(genre=genre, page=page, limit=limit)
    except Exception as e:
        raise to_http_error(e, "image.list.failed", genre=genre)

    return ImagesPage(
        images=[ImageDTO.from_model(image) for image in images],
        total=total,
        page=page,
        limit=limit,
        pages=page_count(total, limit),
    )


@router.get("/stats", response_model=ImageStatsResponse)
async def get_image_stats(
    image_service: ImageService = Depends(get_image_service),
) -> ImageStatsResponse:
    """Aggregate counts over active images."""
    try:
        stats = await image_service.get_stats()
    except Exception as e:
        raise to_http_error(e, "image.stats.failed")
    return ImageStatsResponse(**stats)


@router.get("/{image_id}", response_model=ImageDTO)
async def get_image(
    image_id: UUID,
    image_service: ImageService = Depends(get_image_service),
) -> ImageDTO:
    try:
        image = await image_service.get_image(image_id)
    except Exception as e:
        raise to_http_error(e, "image.get.failed", image_id=str(image_id))
    return ImageDTO.from_model(image)


@router.delete("/{image_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_image(
    image_id: UUID,
    image_service: ImageService = Depends(get_image_service),
) -> Response:
    """Soft delete an image. The stored file is kept."""
    try:
        await image_service.deactivate_image(image_id)
    except Exception as e:
        raise to_http_error(e, "image.delete.failed", image_id=str(image_id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)
