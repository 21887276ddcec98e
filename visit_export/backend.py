"""Narrow boundary around the hosted database, auth and storage APIs.

Everything the export and preview pipelines need from the outside world
goes through a backend object with the methods below. ``SupabaseBackend``
is the production implementation; tests use an in-memory fake with the
same surface.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Tuple
from urllib.parse import quote

import requests
from supabase import Client, create_client

from .config import config_value
from .errors import ConfigurationError, PhotoUnavailableError, PreviewError, TransientError
from .records import SubmissionRecord
from .retry import is_retryable_status

logger = logging.getLogger(__name__)

MESSAGE_TABLES = {
    "submission_message": ("submission_messages", "attachment_path"),
    "direct_message": ("direct_messages", "attachment_url"),
}


@dataclass(frozen=True)
class AuthedUser:
    id: str
    email: Optional[str] = None


@dataclass(frozen=True)
class MessageRow:
    id: str
    team_id: Optional[str]
    attachment: str
    attachment_type: str


def encode_storage_path(path: str) -> str:
    return "/".join(quote(segment, safe="") for segment in (path or "").split("/"))


def _row_data(response):
    # maybe_single() returns None instead of an empty response on some client versions.
    if response is None:
        return None
    data = getattr(response, "data", None)
    if isinstance(data, list):
        return data[0] if data else None
    return data


class SupabaseBackend:
    def __init__(self, url, service_key, timeout=20.0, client: Optional[Client] = None, session=None):
        if not url or not service_key:
            raise ConfigurationError(
                "SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set"
            )
        self.url = url.rstrip("/")
        self.service_key = service_key
        self.timeout = timeout
        self.client = client or create_client(self.url, service_key)
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, config) -> "SupabaseBackend":
        return cls(
            config_value(config, "SUPABASE_URL"),
            config_value(config, "SUPABASE_SERVICE_ROLE_KEY"),
            timeout=float(config_value(config, "HTTP_TIMEOUT_SECONDS")),
        )

    @property
    def _storage_headers(self):
        return {
            "authorization": "Bearer {0}".format(self.service_key),
            "apikey": self.service_key,
        }

    # -- auth -------------------------------------------------------------

    def get_user(self, token) -> Optional[AuthedUser]:
        try:
            response = self.client.auth.get_user(token)
        except Exception as exc:
            logger.info("token rejected: %s", exc)
            return None
        user = getattr(response, "user", None)
        user_id = getattr(user, "id", None)
        if not user_id:
            return None
        return AuthedUser(id=str(user_id), email=getattr(user, "email", None))

    # -- relational -------------------------------------------------------

    def get_submission(self, submission_id) -> Optional[SubmissionRecord]:
        response = (
            self.client.table("submissions")
            .select("*")
            .eq("id", submission_id)
            .maybe_single()
            .execute()
        )
        row = _row_data(response)
        if not row:
            return None
        return SubmissionRecord.from_row(row)

    def get_message(self, kind, message_id) -> Optional[MessageRow]:
        table, column = MESSAGE_TABLES[kind]
        response = (
            self.client.table(table)
            .select("id,team_id,{0},attachment_type".format(column))
            .eq("id", message_id)
            .maybe_single()
            .execute()
        )
        row = _row_data(response)
        if not row:
            return None
        return MessageRow(
            id=str(row.get("id") or message_id),
            team_id=row.get("team_id"),
            attachment=str(row.get(column) or "").strip(),
            attachment_type=str(row.get("attachment_type") or ""),
        )

    def is_team_member(self, team_id, user_id) -> bool:
        response = (
            self.client.table("team_members")
            .select("team_id,user_id")
            .eq("team_id", team_id)
            .eq("user_id", user_id)
            .maybe_single()
            .execute()
        )
        return bool(_row_data(response))

    # -- storage ----------------------------------------------------------

    def _get(self, url, label, params=None, headers=None):
        response = self.session.get(url, params=params, headers=headers, timeout=self.timeout)
        if is_retryable_status(response.status_code):
            raise TransientError("{0} -> {1}".format(label, response.status_code), response.status_code)
        if response.status_code >= 400:
            raise PhotoUnavailableError("{0} -> {1}".format(label, response.status_code))
        if not response.content:
            raise PhotoUnavailableError("{0} -> 0 bytes".format(label))
        return response

    def download(self, bucket, path) -> bytes:
        url = "{0}/storage/v1/object/authenticated/{1}/{2}".format(
            self.url, bucket, encode_storage_path(path)
        )
        label = "download({0}/{1})".format(bucket, path)
        return self._get(url, label, headers=self._storage_headers).content

    def render_image(self, bucket, path, width, quality, resize="contain") -> bytes:
        url = "{0}/storage/v1/render/image/authenticated/{1}/{2}".format(
            self.url, bucket, encode_storage_path(path)
        )
        params = {"width": int(width), "quality": int(quality), "resize": resize}
        label = "render({0}/{1})".format(bucket, path)
        return self._get(url, label, params=params, headers=self._storage_headers).content

    def fetch_url(self, url) -> Tuple[bytes, str]:
        response = self._get(url, "fetch({0})".format(url))
        return response.content, response.headers.get("content-type", "")

    def create_signed_url(self, bucket, path, ttl) -> str:
        try:
            signed = self.client.storage.from_(bucket).create_signed_url(path, int(ttl))
        except Exception as exc:
            raise PreviewError("create_signed_url failed: {0}".format(exc)) from exc
        url = None
        if isinstance(signed, dict):
            url = signed.get("signedURL") or signed.get("signedUrl") or signed.get("signed_url")
        if not url:
            raise PreviewError("create_signed_url failed for {0}/{1}".format(bucket, path))
        if url.startswith("/"):
            url = "{0}/storage/v1{1}".format(self.url, url)
        return url
