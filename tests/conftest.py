import io

import pytest
from openpyxl import Workbook
from openpyxl.drawing.image import Image as XLImage
from PIL import Image

from visit_export.backend import AuthedUser, MessageRow
from visit_export.errors import PhotoUnavailableError, TransientError
from visit_export.records import SubmissionRecord
from visit_export.retry import RetryPolicy

SUPABASE_URL = "https://proj.supabase.co"
TEAM_ID = "team-1"
MEMBER_TOKEN = "member-token"
OUTSIDER_TOKEN = "outsider-token"


def make_image(fmt="JPEG", size=(800, 600), color=(200, 40, 40), mode="RGB"):
    img = Image.new(mode, size, color)
    output = io.BytesIO()
    img.save(output, format=fmt)
    return output.getvalue()


def make_xlsx(rows, images=()):
    """``images`` is a list of (cell, png_bytes) anchors on the first sheet."""
    wb = Workbook()
    ws = wb.active
    ws.title = "Visits"
    for row in rows:
        ws.append(row)
    for cell, data in images:
        ws.add_image(XLImage(io.BytesIO(data)), cell)
    output = io.BytesIO()
    wb.save(output)
    return output.getvalue()


class FakeBackend:
    """In-memory stand-in for the database, auth and storage APIs."""

    def __init__(self):
        self.users = {
            MEMBER_TOKEN: AuthedUser(id="user-1", email="rep@example.com"),
            OUTSIDER_TOKEN: AuthedUser(id="user-2", email="other@example.com"),
        }
        self.members = {(TEAM_ID, "user-1")}
        self.submissions = {}
        self.messages = {}
        self.objects = {}
        self.urls = {}
        self.rendered = {}
        self.failures = {}
        self.calls = []

    def _fail_once(self, key):
        queue = self.failures.get(key)
        if queue:
            raise queue.pop(0)

    def get_user(self, token):
        return self.users.get(token)

    def get_submission(self, submission_id):
        row = self.submissions.get(submission_id)
        return SubmissionRecord.from_row(row) if row else None

    def get_message(self, kind, message_id):
        return self.messages.get((kind, message_id))

    def is_team_member(self, team_id, user_id):
        return (team_id, user_id) in self.members

    def download(self, bucket, path):
        self.calls.append(("download", bucket, path))
        self._fail_once(("download", bucket, path))
        data = self.objects.get((bucket, path))
        if not data:
            raise PhotoUnavailableError("download({0}/{1}) -> 404".format(bucket, path))
        return data

    def render_image(self, bucket, path, width, quality, resize="contain"):
        self.calls.append(("render", bucket, path))
        data = self.rendered.get((bucket, path))
        if data is None:
            raise TransientError("render({0}/{1}) -> 503".format(bucket, path), 503)
        return data

    def fetch_url(self, url):
        self.calls.append(("fetch", url))
        self._fail_once(("fetch", url))
        data = self.urls.get(url)
        if not data:
            raise PhotoUnavailableError("fetch({0}) -> 404".format(url))
        return data, "image/jpeg"

    def create_signed_url(self, bucket, path, ttl):
        self.calls.append(("sign", bucket, path))
        return "{0}/storage/v1/object/sign/{1}/{2}?token=abc".format(SUPABASE_URL, bucket, path)

    def add_message(self, kind, message_id, attachment, attachment_type, team_id=TEAM_ID):
        self.messages[(kind, message_id)] = MessageRow(
            id=message_id, team_id=team_id, attachment=attachment, attachment_type=attachment_type
        )

    def call_kinds(self):
        return [call[0] for call in self.calls]


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def fast_policy():
    return RetryPolicy(max_attempts=3, base_delay=0.0)


@pytest.fixture
def image_factory():
    return make_image


@pytest.fixture
def xlsx_factory():
    return make_xlsx


@pytest.fixture
def jpeg_bytes():
    return make_image("JPEG", (800, 600))


@pytest.fixture
def png_bytes():
    return make_image("PNG", (120, 90), color=(20, 120, 220))


@pytest.fixture
def submission_row():
    return {
        "id": "sub-42",
        "team_id": TEAM_ID,
        "date": "2024-05-01",
        "brand": "Acme Cola",
        "store_site": "Store 12",
        "store_location": "Main St #5",
        "location": "Aisle 4",
        "conditions": "Clean",
        "price_per_unit": 2.5,
        "shelf_space": "2 ft",
        "on_shelf": 14,
        "tags": ["promo", "endcap"],
        "notes": "Needs restock",
        "priority_level": 1,
    }


@pytest.fixture
def app_config():
    return {
        "SUPABASE_URL": SUPABASE_URL,
        "RETRY_BASE_DELAY_SECONDS": 0.0,
        "IMAGE_NORMALIZER": "raster",
    }
