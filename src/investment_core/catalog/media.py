"""Media uploads for product creation.

Files are pushed to the media host before the product document is written;
the product stores only the returned URLs. Any upload failure aborts the
whole creation.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Mapping, Protocol, Sequence, Union

from investment_core.errors import UploadError, ValidationError

log = logging.getLogger(__name__)

MAX_GALLERY_IMAGES = 10

# field -> (resource kind, folder on the media host)
MEDIA_FIELDS: dict[str, tuple[str, str]] = {
    "coverImage": ("image", "investment-products/images"),
    "albumArt": ("image", "investment-products/images"),
    "posterImage": ("image", "investment-products/images"),
    "videoThumbnail": ("image", "investment-products/images"),
    "galleryImages": ("image", "investment-products/gallery"),
    "videoFile": ("video", "investment-products/videos"),
    "demoTrack": ("audio", "investment-products/audio"),
    "fullTrack": ("audio", "investment-products/audio"),
}
MULTI_FIELDS = {"galleryImages"}

PathLike = Union[str, Path]


class MediaUploader(Protocol):
    def upload(self, path: Path, resource_kind: str, folder: str) -> str:
        """Upload a local file and return its durable https URL."""
        ...


class HttpMediaUploader:
    """Upload files to an HTTP media host (Cloudinary-style unsigned upload).

    Args:
        upload_url: Upload endpoint; `{resource_type}` is substituted when
            present (audio is sent as "video", as such hosts expect).
        upload_preset: Preset/token sent with every upload.
        timeout: Request timeout in seconds.
    """

    def __init__(self, upload_url: str, upload_preset: str = "", timeout: float = 120.0) -> None:
        if not upload_url:
            raise RuntimeError("MEDIA_UPLOAD_URL is required to upload product media.")
        self.upload_url = upload_url
        self.upload_preset = upload_preset
        self.timeout = timeout

    def upload(self, path: Path, resource_kind: str, folder: str) -> str:
        import requests  # type: ignore[import-untyped]  # local import to avoid requiring type stubs at module import

        resource_type = "video" if resource_kind == "audio" else resource_kind
        url = self.upload_url.format(resource_type=resource_type)
        data = {"folder": folder, "resource_type": resource_type}
        if self.upload_preset:
            data["upload_preset"] = self.upload_preset

        with path.open("rb") as fh:
            resp = requests.post(url, data=data, files={"file": (path.name, fh)}, timeout=self.timeout)
        resp.raise_for_status()

        secure_url = resp.json().get("secure_url")
        if not secure_url:
            raise RuntimeError(f"Media host returned no secure_url for {path.name}")
        return str(secure_url)


def upload_media(
    uploader: MediaUploader,
    files: Mapping[str, Union[PathLike, Sequence[PathLike]]],
) -> dict[str, Union[str, list[str]]]:
    """Upload every file in `files` and return the resulting URL fields.

    Args:
        uploader: Media host client.
        files: Mapping of media field name to a path (or, for
            `galleryImages`, a list of paths; only the first 10 are used).

    Returns:
        Mapping of field name to URL (list of URLs for gallery images).

    Raises:
        ValidationError: for an unknown media field.
        UploadError: if any upload fails; no partial result is returned.
    """
    unknown = sorted(set(files) - set(MEDIA_FIELDS))
    if unknown:
        raise ValidationError("Unknown media fields", [f"{f}: not a media field" for f in unknown])

    out: dict[str, Union[str, list[str]]] = {}
    for field_name, value in files.items():
        kind, folder = MEDIA_FIELDS[field_name]
        if isinstance(value, (str, Path)):
            paths = [Path(value)]
        else:
            paths = [Path(v) for v in value]
        if not paths:
            continue

        if field_name in MULTI_FIELDS:
            paths = paths[:MAX_GALLERY_IMAGES]
        else:
            paths = paths[:1]

        urls: list[str] = []
        for path in paths:
            try:
                urls.append(uploader.upload(path, kind, folder))
            except Exception as e:
                log.error("Upload of %s (%s) failed: %s", path, field_name, e)
                raise UploadError(f"File upload failed: {e}") from e

        out[field_name] = urls if field_name in MULTI_FIELDS else urls[0]

    log.info("Uploaded %d media fields", len(out))
    return out
