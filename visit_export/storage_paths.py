from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple
from urllib.parse import unquote, urlparse

from .config import config_value
from .errors import ContractViolationError, PhotoUnavailableError
from .records import has_image_extension
from .retry import NO_RETRY, with_retry

logger = logging.getLogger(__name__)

STORAGE_HOST_SUFFIX = "supabase.co"
SYNTHESIZED_SUFFIXES = (".jpg", ".jpeg", ".png")


@dataclass
class StoredPhoto:
    data: bytes
    bucket: str
    path: str
    method: str
    attempts: List[dict] = field(default_factory=list)


def looks_like_url(value) -> bool:
    return bool(re.match(r"^https?:", (value or "").strip(), flags=re.IGNORECASE))


def storage_hosts(config=None) -> Tuple[str, ...]:
    """Hostnames besides *.supabase.co that serve our storage objects."""
    supabase_url = config_value(config, "SUPABASE_URL")
    if not supabase_url:
        return ()
    host = urlparse(supabase_url).hostname
    return (host,) if host else ()


def _is_storage_host(hostname, known_hosts=()):
    host = (hostname or "").lower()
    if not host:
        return False
    if host == STORAGE_HOST_SUFFIX or host.endswith("." + STORAGE_HOST_SUFFIX):
        return True
    return host in {h.lower() for h in known_hosts if h}


def parse_storage_url(url, known_hosts=()) -> Optional[Tuple[str, str]]:
    """Split a storage object URL into (bucket, key); None for anything else."""
    try:
        parsed = urlparse((url or "").strip())
    except ValueError:
        return None
    if not _is_storage_host(parsed.hostname, known_hosts):
        return None
    parts = [part for part in parsed.path.split("/") if part]
    if "object" not in parts:
        return None
    object_idx = parts.index("object")
    # /storage/v1/object/<public|sign|authenticated>/<bucket>/<key...>
    if len(parts) < object_idx + 4:
        return None
    bucket = unquote(parts[object_idx + 2])
    key = "/".join(unquote(part) for part in parts[object_idx + 3:])
    if not bucket or not key:
        return None
    return bucket, key


def path_candidates(reference, slot) -> List[str]:
    """Storage keys to probe for one photo slot (slot is 1-based)."""
    raw = (reference or "").strip()
    if not raw:
        return []
    candidates = [raw]
    if not has_image_extension(raw):
        prefix = raw.rstrip("/")
        for suffix in SYNTHESIZED_SUFFIXES:
            candidates.append("{0}/photo{1}{2}".format(prefix, slot, suffix))

    seen = set()
    ordered = []
    for candidate in candidates:
        if candidate not in seen:
            seen.add(candidate)
            ordered.append(candidate)
    return ordered


def fetch_stored_photo(backend, reference, slot, buckets, policy=NO_RETRY, known_hosts=()) -> StoredPhoto:
    raw = (reference or "").strip()
    attempts = []

    if looks_like_url(raw):
        parsed = parse_storage_url(raw, known_hosts)
        if parsed is None:
            raise ContractViolationError(
                "photo {0}: unrecognized storage host in {1!r}".format(slot, raw)
            )
        bucket, key = parsed
        label = "download({0}/{1})".format(bucket, key)
        try:
            data = with_retry(lambda: backend.download(bucket, key), policy, label)
        except Exception as exc:
            attempts.append({"bucket": bucket, "path": key, "ok": False, "error": str(exc)})
            raise PhotoUnavailableError(
                "photo {0}: {1} failed".format(slot, label), attempts=attempts
            ) from exc
        attempts.append({"bucket": bucket, "path": key, "ok": True, "error": ""})
        return StoredPhoto(data=data, bucket=bucket, path=key, method="storage_url", attempts=attempts)

    for bucket in buckets:
        for candidate in path_candidates(raw, slot):
            label = "download({0}/{1})".format(bucket, candidate)
            try:
                data = with_retry(
                    lambda b=bucket, c=candidate: backend.download(b, c), policy, label
                )
            except Exception as exc:
                attempts.append({"bucket": bucket, "path": candidate, "ok": False, "error": str(exc)})
                continue
            if not data:
                attempts.append({"bucket": bucket, "path": candidate, "ok": False, "error": "0 bytes"})
                continue
            attempts.append({"bucket": bucket, "path": candidate, "ok": True, "error": ""})
            method = "verbatim" if candidate == raw else "synthesized"
            logger.debug("photo %s resolved via %s/%s (%s)", slot, bucket, candidate, method)
            return StoredPhoto(data=data, bucket=bucket, path=candidate, method=method, attempts=attempts)

    raise PhotoUnavailableError(
        "photo {0}: no bucket/path candidate for {1!r} in buckets=[{2}]".format(
            slot, raw, ", ".join(buckets)
        ),
        attempts=attempts,
    )
