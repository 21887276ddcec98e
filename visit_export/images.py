from __future__ import annotations

import io
import logging
import os
import tempfile
from dataclasses import dataclass, field
from typing import List, Optional, Tuple
from urllib.parse import unquote, urlparse

from PIL import Image, ImageOps

from .config import config_value
from .errors import ContractViolationError, PhotoUnavailableError
from .records import PhotoReference
from .retry import RetryPolicy, with_retry
from .storage_paths import (
    fetch_stored_photo,
    looks_like_url,
    parse_storage_url,
    path_candidates,
    storage_hosts,
)

logger = logging.getLogger(__name__)

RESAMPLING = getattr(getattr(Image, "Resampling", Image), "LANCZOS", Image.BICUBIC)
IMAGE_ERRORS = (OSError, ValueError, SyntaxError, Image.DecompressionBombError)


@dataclass
class ImageAsset:
    data: bytes
    ext: str
    width: int
    height: int
    source: str = ""
    attempts: List[dict] = field(default_factory=list)

    @property
    def mime(self) -> str:
        return "image/png" if self.ext == "png" else "image/jpeg"


def detect_image_ext(data) -> Optional[str]:
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "png"
    if data.startswith(b"\xff\xd8\xff"):
        return "jpeg"
    if data.startswith(b"GIF8"):
        return "gif"
    if data.startswith(b"BM"):
        return "bmp"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "webp"
    return None


def fit_within(size, max_edge) -> Tuple[int, int]:
    width, height = size
    longest = max(width, height, 1)
    scale = min(1.0, float(max_edge) / longest)
    return max(1, int(round(width * scale))), max(1, int(round(height * scale)))


def _oriented(img):
    try:
        return ImageOps.exif_transpose(img)
    except Exception:
        # Broken EXIF blocks: fall back to the plain decode.
        return img


def encode_jpeg_thumbnail(data, max_edge, quality) -> ImageAsset:
    """Decode, draw onto a fresh RGB canvas no larger than max_edge, encode as JPEG."""
    with Image.open(io.BytesIO(data)) as img:
        img.load()
        frame = _oriented(img)
        width, height = fit_within(frame.size, max_edge)
        frame = frame.convert("RGBA")
        if frame.size != (width, height):
            frame = frame.resize((width, height), RESAMPLING)
        canvas = Image.new("RGB", (width, height), (255, 255, 255))
        canvas.paste(frame, (0, 0), frame)
        output = io.BytesIO()
        canvas.save(output, format="JPEG", quality=int(quality), optimize=True)
    return ImageAsset(data=output.getvalue(), ext="jpeg", width=width, height=height)


def _read_local(url):
    parsed = urlparse(url)
    path = unquote(parsed.path) if parsed.scheme == "file" else url
    with open(path, "rb") as handle:
        return handle.read()


def _remove_quietly(path):
    try:
        os.remove(path)
    except OSError:
        pass


class ImageNormalizer:
    """Turns one photo slot into small JPEG bytes, or raises PhotoUnavailableError."""

    name = "base"

    def __init__(self, backend, buckets=("submissions", "photos"), max_edge=260, quality=55,
                 policy: Optional[RetryPolicy] = None, known_hosts=()):
        self.backend = backend
        self.buckets = list(buckets)
        self.max_edge = int(max_edge)
        self.quality = int(quality)
        self.policy = policy or RetryPolicy()
        self.known_hosts = tuple(known_hosts)

    def normalize(self, ref: PhotoReference) -> ImageAsset:
        raise NotImplementedError

    def fetch_source(self, ref: PhotoReference):
        """Raw bytes for a slot: stored path first, then the direct URL."""
        attempts = []
        errors = []
        if ref.path:
            try:
                stored = fetch_stored_photo(
                    self.backend, ref.path, ref.slot + 1, self.buckets,
                    policy=self.policy, known_hosts=self.known_hosts,
                )
            except PhotoUnavailableError as exc:
                attempts.extend(exc.attempts)
                errors.append(str(exc))
            except ContractViolationError as exc:
                logger.error("photo %d: %s", ref.slot + 1, exc)
                attempts.append({"path": ref.path, "ok": False, "error": str(exc)})
                errors.append(str(exc))
            else:
                attempts.extend(stored.attempts)
                return stored.data, "storage:{0}:{1}".format(stored.bucket, stored.path), attempts

        if ref.url:
            url = ref.url.strip()
            label = "fetch({0})".format(url)
            try:
                if url.startswith("file://") or not looks_like_url(url):
                    data = _read_local(url)
                else:
                    data, _content_type = with_retry(
                        lambda: self.backend.fetch_url(url), self.policy, label
                    )
            except Exception as exc:
                attempts.append({"url": url, "ok": False, "error": str(exc)})
                errors.append(str(exc))
            else:
                if data:
                    attempts.append({"url": url, "ok": True, "error": ""})
                    return data, "url:{0}".format(url), attempts
                attempts.append({"url": url, "ok": False, "error": "0 bytes"})
                errors.append("{0} -> 0 bytes".format(label))

        raise PhotoUnavailableError(
            "; ".join(errors) or "photo {0}: no reference".format(ref.slot + 1),
            attempts=attempts,
        )

    def _encode(self, data, source, attempts):
        try:
            asset = encode_jpeg_thumbnail(data, self.max_edge, self.quality)
        except IMAGE_ERRORS as exc:
            raise PhotoUnavailableError(
                "could not decode {0}: {1}".format(source, exc), attempts=attempts
            ) from exc
        asset.source = source
        asset.attempts = attempts
        return asset


class RasterNormalizer(ImageNormalizer):
    """In-process decode and re-encode."""

    name = "raster"

    def normalize(self, ref):
        data, source, attempts = self.fetch_source(ref)
        return self._encode(data, source, attempts)


class FileResizeNormalizer(ImageNormalizer):
    """Resize through temp files, keeping only one decoded frame in memory."""

    name = "file"

    def resize_file(self, src_path):
        temp_file = tempfile.NamedTemporaryFile(prefix="visit_export_img_", suffix=".jpg", delete=False)
        out_path = temp_file.name
        temp_file.close()
        try:
            with Image.open(src_path) as img:
                # JPEG decoders can scale down while decoding.
                img.draft("RGB", (self.max_edge * 2, self.max_edge * 2))
                frame = _oriented(img)
                frame.thumbnail((self.max_edge, self.max_edge), RESAMPLING)
                if frame.mode != "RGB":
                    frame = frame.convert("RGB")
                frame.save(out_path, format="JPEG", quality=self.quality, optimize=True)
                width, height = frame.size
        except BaseException:
            _remove_quietly(out_path)
            raise
        return out_path, width, height

    def normalize(self, ref):
        data, source, attempts = self.fetch_source(ref)
        temp_file = tempfile.NamedTemporaryFile(prefix="visit_export_src_", suffix=".bin", delete=False)
        src_path = temp_file.name
        out_path = None
        try:
            temp_file.write(data)
            temp_file.close()
            out_path, width, height = self.resize_file(src_path)
            with open(out_path, "rb") as handle:
                encoded = handle.read()
        except IMAGE_ERRORS as exc:
            raise PhotoUnavailableError(
                "could not resize {0}: {1}".format(source, exc), attempts=attempts
            ) from exc
        finally:
            temp_file.close()
            _remove_quietly(src_path)
            if out_path:
                _remove_quietly(out_path)
        return ImageAsset(
            data=encoded, ext="jpeg", width=width, height=height, source=source, attempts=attempts
        )


class RemoteTransformNormalizer(ImageNormalizer):
    """Ask the storage render endpoint for a resized copy; download the original if it fails."""

    name = "remote"
    resize_mode = "contain"

    def _render_targets(self, ref):
        for value in (ref.path, ref.url):
            if not value:
                continue
            if looks_like_url(value):
                parsed = parse_storage_url(value, self.known_hosts)
                if parsed:
                    yield parsed
                continue
            for bucket in self.buckets:
                for candidate in path_candidates(value, ref.slot + 1):
                    yield bucket, candidate

    def normalize(self, ref):
        attempts = []
        for bucket, key in self._render_targets(ref):
            label = "render({0}/{1})".format(bucket, key)
            try:
                data = with_retry(
                    lambda b=bucket, k=key: self.backend.render_image(
                        b, k, self.max_edge, self.quality, self.resize_mode
                    ),
                    self.policy,
                    label,
                )
            except Exception as exc:
                attempts.append({"bucket": bucket, "path": key, "method": "render", "ok": False, "error": str(exc)})
                continue
            attempts.append({"bucket": bucket, "path": key, "method": "render", "ok": True, "error": ""})
            source = "render:{0}:{1}".format(bucket, key)
            # The endpoint may hand back WebP; re-encode anything that is not already JPEG.
            if detect_image_ext(data) == "jpeg":
                try:
                    with Image.open(io.BytesIO(data)) as img:
                        width, height = img.size
                except IMAGE_ERRORS:
                    continue
                if max(width, height) <= self.max_edge:
                    return ImageAsset(data=data, ext="jpeg", width=width, height=height,
                                      source=source, attempts=attempts)
            try:
                return self._encode(data, source, attempts)
            except PhotoUnavailableError:
                continue

        logger.info("photo %d: render endpoint unavailable, downloading original", ref.slot + 1)
        data, source, fetch_attempts = self.fetch_source(ref)
        return self._encode(data, source, attempts + fetch_attempts)


NORMALIZERS = {
    "raster": RasterNormalizer,
    "canvas": RasterNormalizer,
    "file": FileResizeNormalizer,
    "native": FileResizeNormalizer,
    "remote": RemoteTransformNormalizer,
    "transform": RemoteTransformNormalizer,
}


def select_normalizer(kind, backend, config=None, policy=None) -> ImageNormalizer:
    key = (kind or "raster").strip().lower()
    if key not in NORMALIZERS:
        raise ValueError("unknown image normalizer {0!r}".format(kind))
    return NORMALIZERS[key](
        backend,
        buckets=config_value(config, "PHOTO_BUCKETS"),
        max_edge=config_value(config, "PHOTO_MAX_EDGE"),
        quality=config_value(config, "PHOTO_JPEG_QUALITY"),
        policy=policy or RetryPolicy.from_config(config),
        known_hosts=storage_hosts(config),
    )
