import base64
import json
import os

import httpx
import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

# Required settings must exist BEFORE importing app
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("FACILITATOR_SIGNER", "0xFacilitatorSigner")
os.environ.setdefault("WALLET_ADDRESS", "0xWalletAddress")
os.environ.setdefault("PROVIDER_API_KEY", "test-provider-key")

from app.main import app
from app.config import Settings
from app.context import AppContext
from app.database import Base, get_db
from app.errors import StorageError
from app.services.route_registry import RouteDefinition, RouteRegistry, TranscodeStep


# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

WALLET = "0x1111111111111111111111111111111111111111"
TOKEN = "0x2222222222222222222222222222222222222222"
PAYER = "0x3333333333333333333333333333333333333333"
TX_HASH = "0x" + "ab" * 32

FACILITATOR_HOST = "facilitator.test"
PROVIDER_HOST = "provider.test"
DOWNLOAD_HOST = "cdn.provider.test"
RESULT_URL = f"https://{DOWNLOAD_HOST}/files/out.png"
CDN_URL = "https://media.example.com"


def make_route(**overrides) -> RouteDefinition:
    """A /fox image route priced at 10 tokens; override any field."""
    fields = {
        "route": "/fox",
        "quality": "low",
        "default": True,
        "model": "fal-ai/flux/schnell",
        "cost": "10",
        "description": "Generate a fox picture",
        "response_url_path": "images.0.url",
        "default_prompt": "a red fox",
        "media_type": "image",
        "output_extension": "png",
        "request_params": {"num_images": 1, "image_size": "square"},
    }
    fields.update(overrides)
    return RouteDefinition(**fields)


FOX_LOW = make_route()
FOX_HIGH = make_route(
    quality="high",
    default=False,
    path="/fox/high",
    model="fal-ai/flux/dev",
    cost="25.5",
)
GIF_LOW = make_route(
    route="/gif",
    model="fal-ai/fast-animatediff/turbo/text-to-video",
    cost="1",
    response_url_path="video.url",
    default_prompt="a dancing fox",
    media_type="gif",
    output_extension="gif",
    post_process=TranscodeStep(input_extension="mp4", args=["-vf", "fps=10", "-loop", "0"]),
)


def encode_payment(payload) -> str:
    """Build an X-PAYMENT header value."""
    return base64.b64encode(json.dumps(payload).encode()).decode()


PAYMENT_HEADER_VALUE = encode_payment({
    "x402Version": 1,
    "scheme": "permit",
    "network": "base",
    "payload": {"signature": "0xsig", "owner": PAYER},
})


class FakeUpstream:
    """httpx.MockTransport handler standing in for facilitator, provider, and provider CDN."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.unreachable: set[str] = set()
        self.verify_status = 200
        self.verify_body = {"isValid": True, "payer": PAYER}
        self.settle_status = 200
        self.settle_body = {"success": True, "network": "base", "transaction": TX_HASH, "payer": PAYER}
        self.provider_status = 200
        self.provider_body = {"images": [{"url": RESULT_URL}]}
        self.download_status = 200
        self.download_body = b"\x89PNG\r\n\x1a\nfake-image-bytes"

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host = request.url.host
        if host in self.unreachable:
            raise httpx.ConnectError("connection refused", request=request)

        if host == FACILITATOR_HOST:
            if request.url.path.endswith("/verify"):
                return httpx.Response(self.verify_status, json=self.verify_body)
            if request.url.path.endswith("/settle"):
                return httpx.Response(self.settle_status, json=self.settle_body)
        if host == PROVIDER_HOST:
            if isinstance(self.provider_body, (dict, list)):
                return httpx.Response(self.provider_status, json=self.provider_body)
            return httpx.Response(self.provider_status, text=self.provider_body)
        if host == DOWNLOAD_HOST:
            return httpx.Response(self.download_status, content=self.download_body)
        return httpx.Response(404, text="not found")

    def calls(self, host: str, path_suffix: str = "") -> list[httpx.Request]:
        return [
            r for r in self.requests
            if r.url.host == host and r.url.path.endswith(path_suffix)
        ]

    @staticmethod
    def json_body(request: httpx.Request) -> dict:
        return json.loads(request.content)


class FakeObjectStore:
    """In-memory object store with the same interface as ObjectStore."""

    def __init__(self, cdn_url: str = CDN_URL):
        self.cdn_url = cdn_url
        self.objects: dict[str, tuple[bytes, str]] = {}
        self.put_calls = 0
        self.delete_calls = 0
        self.fail_put = False
        self.fail_delete_keys: set[str] = set()

    async def put(self, key: str, data: bytes, content_type: str) -> None:
        self.put_calls += 1
        if self.fail_put:
            raise StorageError("S3 upload failed: simulated")
        self.objects[key] = (data, content_type)

    async def delete(self, key: str) -> None:
        self.delete_calls += 1
        if key in self.fail_delete_keys:
            raise StorageError("S3 delete failed: simulated")
        self.objects.pop(key, None)

    def public_url(self, key: str) -> str:
        return f"{self.cdn_url}/{key}"


@pytest.fixture
def test_settings(tmp_path):
    """Settings tuned for tests: 2-decimal token, fake hosts, scratch under tmp_path."""
    settings = Settings()
    settings.WALLET_ADDRESS = WALLET
    settings.FACILITATOR_SIGNER = "0xFacilitatorSigner"
    settings.FACILITATOR_URL = f"https://{FACILITATOR_HOST}"
    settings.PAYMENT_NETWORK = "base"
    settings.PAYMENT_TOKEN_ADDRESS = TOKEN
    settings.PAYMENT_TOKEN_SYMBOL = "FOXY"
    settings.PAYMENT_TOKEN_DECIMALS = 2
    settings.PAYMENT_TOKEN_NAME = "Foxy"
    settings.PAYMENT_TOKEN_VERSION = "1"
    settings.PAYMENT_TIMEOUT_SECONDS = 300
    settings.X402_TEST_MODE = False
    settings.PROVIDER_BASE_URL = f"https://{PROVIDER_HOST}"
    settings.PROVIDER_API_KEY = "test-provider-key"
    settings.PROVIDER_AUTH_SCHEME = "Key"
    settings.TRANSCODER_BIN = "ffmpeg"
    settings.SCRATCH_DIR = str(tmp_path / "scratch")
    return settings


@pytest.fixture
async def test_db():
    """Create a fresh test database for each test."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)
    async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async def override_get_db():
        async with async_session() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db

    yield async_session

    app.dependency_overrides.clear()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
async def http_client(upstream):
    async with httpx.AsyncClient(transport=httpx.MockTransport(upstream)) as client:
        yield client


@pytest.fixture
def object_store():
    return FakeObjectStore()


@pytest.fixture
def registry():
    return RouteRegistry([FOX_LOW, FOX_HIGH, GIF_LOW], decimals=2)


@pytest.fixture
async def context(test_settings, http_client, test_db, object_store, registry):
    """Application context wired to fakes and installed on the app."""
    ctx = AppContext(
        settings=test_settings,
        http_client=http_client,
        session_factory=test_db,
        object_store=object_store,
        registry=registry,
    )
    app.state.context = ctx
    yield ctx
    del app.state.context


@pytest.fixture
async def client(context):
    """Create an async test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
