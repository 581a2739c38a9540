"""Cloudinary client for uploading generated images and deriving variant URLs."""

import hashlib
import re
import time
from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from vibra.services.exceptions import (
    StorageAuthError,
    StorageError,
    StorageTransientError,
    StorageValidationError,
)

logger = structlog.get_logger(__name__)

THUMBNAIL_SIZE = 400
PREVIEW_SIZE = 800
FULL_SIZE = 1200


@dataclass(frozen=True)
class UploadResult:
    """Location of an uploaded image in owned storage."""

    url: str
    thumbnail_url: str
    key: str
    folder: str
    width: int
    height: int


def slugify_genre(genre: str) -> str:
    """Turn a genre label into a folder-safe slug ("Hip Hop" -> "hip-hop")."""
    slug = re.sub(r"[^a-z0-9]+", "-", genre.strip().lower()).strip("-")
    return slug or "unknown"


class CloudinaryUploader:
    """Image upload client using the Cloudinary REST API.

    Uploads are signed with the API secret. Every generated image lands under
    "{root_folder}/{genre-slug}" so a genre's images can be listed or purged as a unit.
    """

    def __init__(
        self,
        cloud_name: str,
        api_key: str,
        api_secret: str,
        http_client: httpx.AsyncClient,
        root_folder: str = "vibra/ai-generated",
        timeout: float = 30.0,
    ):
        """Initialize Cloudinary client.

        Args:
            cloud_name: Cloudinary cloud name (from CLOUDINARY_CLOUD_NAME env var)
            api_key: Cloudinary API key
            api_secret: Cloudinary API secret used to sign requests
            http_client: Shared HTTP client (owned by the application lifespan)
            root_folder: Folder prefix for every generated image
            timeout: Per-request timeout in seconds for upload and destroy calls
        """
        self.cloud_name = cloud_name
        self.api_key = api_key
        self.api_secret = api_secret
        self.http_client = http_client
        self.root_folder = root_folder.strip("/")
        self.timeout = timeout
        self.base_url = f"https://api.cloudinary.com/v1_1/{cloud_name}/image"
        self.delivery_url = f"https://res.cloudinary.com/{cloud_name}/image/upload"

    def folder_for_genre(self, genre: str) -> str:
        return f"{self.root_folder}/{slugify_genre(genre)}"

    def sign(self, params: dict[str, Any]) -> str:
        """Compute the request signature.

        Parameters are sorted by name, joined as "k=v&k2=v2", suffixed with the
        API secret and hashed with SHA-1.
        """
        to_sign = "&".join(f"{k}={params[k]}" for k in sorted(params) if params[k] != "")
        return hashlib.sha1(f"{to_sign}{self.api_secret}".encode("utf-8")).hexdigest()

    def _signed_form(self, params: dict[str, Any]) -> dict[str, str]:
        params = {**params, "timestamp": int(time.time())}
        form = {k: str(v) for k, v in params.items()}
        form["signature"] = self.sign(params)
        form["api_key"] = self.api_key
        return form

    async def upload_image(self, data: bytes, genre: str) -> UploadResult:
        """Upload image bytes into the genre's folder.

        Args:
            data: Raw image bytes (downloaded provider output)
            genre: Genre used to derive the destination folder

        Returns:
            UploadResult with secure URL, 400x400 thumbnail URL and public id

        Raises:
            StorageTransientError: Network timeout, rate limit (429), service unavailable (5xx)
            StorageAuthError: Invalid credentials (401, 403)
            StorageValidationError: Bad request (400)
        """
        folder = self.folder_for_genre(genre)
        form = self._signed_form({"folder": folder, "overwrite": "false"})

        try:
            response = await self.http_client.post(
                f"{self.base_url}/upload",
                data=form,
                files={"file": ("image.png", data, "image/png")},
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise StorageTransientError(f"Upload timeout: {str(e)}")
        except httpx.HTTPError as e:
            raise StorageTransientError(f"Network error: {str(e)}")

        self._raise_for_status(response)
        result = response.json()

        public_id = result["public_id"]
        logger.info("storage.uploaded", public_id=public_id, folder=folder, bytes=len(data))

        return UploadResult(
            url=result["secure_url"],
            thumbnail_url=self.thumbnail_url(public_id),
            key=public_id,
            folder=folder,
            width=int(result.get("width") or 0),
            height=int(result.get("height") or 0),
        )

    async def delete_image(self, key: str) -> bool:
        """Delete an uploaded image.

        Returns:
            True if Cloudinary reports "ok", False if the image was not found
        """
        form = self._signed_form({"public_id": key})

        try:
            response = await self.http_client.post(
                f"{self.base_url}/destroy", data=form, timeout=self.timeout
            )
        except httpx.TimeoutException as e:
            raise StorageTransientError(f"Delete timeout: {str(e)}")
        except httpx.HTTPError as e:
            raise StorageTransientError(f"Network error: {str(e)}")

        self._raise_for_status(response)

        if response.json().get("result") == "ok":
            logger.info("storage.deleted", public_id=key)
            return True

        logger.warning("storage.delete.not_found", public_id=key)
        return False

    def _raise_for_status(self, response: httpx.Response) -> None:
        # Error classification
        if response.status_code == 429:
            raise StorageTransientError(f"Rate limit exceeded: {response.text}")
        elif response.status_code >= 500:
            raise StorageTransientError(
                f"Service unavailable ({response.status_code}): {response.text}"
            )
        elif response.status_code in (401, 403):
            raise StorageAuthError(
                f"Cloudinary rejected credentials ({response.status_code}). "
                "Check CLOUDINARY_API_KEY and CLOUDINARY_API_SECRET in .env file."
            )
        elif response.status_code == 400:
            raise StorageValidationError(f"Bad request: {response.text}")
        elif response.status_code >= 300:
            raise StorageError(f"Unexpected response ({response.status_code}): {response.text}")

    def transformed_url(self, key: str, size: int, quality: str = "auto") -> str:
        """Delivery URL for a square crop of the image."""
        transformation = f"c_fill,f_auto,h_{size},q_{quality},w_{size}"
        return f"{self.delivery_url}/{transformation}/{key}"

    def thumbnail_url(self, key: str) -> str:
        return self.transformed_url(key, THUMBNAIL_SIZE)

    def preview_url(self, key: str) -> str:
        return self.transformed_url(key, PREVIEW_SIZE, quality="auto:good")

    def full_size_url(self, key: str) -> str:
        return self.transformed_url(key, FULL_SIZE, quality="auto:best")

    def owns_url(self, url: str) -> bool:
        """True if url is served from this account's delivery domain."""
        return url.startswith(f"https://res.cloudinary.com/{self.cloud_name}/")
