"""Tests for Client composition and ClientBuilder."""

from __future__ import annotations

import asyncio
import dataclasses
import gzip
import io
import json

import httpx
import pytest

from hookhttp.client import Client, ClientBuilder
from hookhttp.context import CancelToken, ExecutionContext
from hookhttp.exceptions import (
    CancellationError,
    DuplicateHookNameError,
    HookAbortError,
    HookHttpError,
    MiddlewareError,
    TransportError,
)
from hookhttp.hooks import CUSTOM_HOOK_BASE, HookPoint, HookResult
from hookhttp.hooks.builtin import CircuitBreaker, CircuitOpenError
from hookhttp.middleware import NextFn, timeout_middleware
from hookhttp.models import (
    ClientConfig,
    CompressionConfig,
    Request,
    Response,
    RetryConfig,
)
from hookhttp.providers.httpx_provider import HttpxProvider
from hookhttp.streaming import ChunkedHandler


def _json_handler(status_code: int = 200):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            status_code,
            json={"method": request.method, "path": request.url.path},
        )

    return handler


# ---------------------------------------------------------------------------
# Request pipeline
# ---------------------------------------------------------------------------


class TestRequest:
    @pytest.mark.asyncio
    async def test_verb_helpers(self, make_client, fake_provider) -> None:
        client = make_client(fake_provider)

        for verb in ("get", "post", "put", "patch", "delete", "head", "options"):
            await getattr(client, verb)("/thing")

        assert [r.method for r in fake_provider.requests] == [
            "GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS",
        ]

    @pytest.mark.asyncio
    async def test_http_error_status_is_returned(self, make_client, make_provider) -> None:
        client = make_client(make_provider(lambda req: Response(404, body=b"missing")))
        response = await client.get("/missing")
        assert response.status_code == 404
        assert not response.ok

    @pytest.mark.asyncio
    async def test_default_and_call_headers_merged(self, make_client, fake_provider) -> None:
        client = make_client(fake_provider, headers={"X-Client": "hookhttp", "Accept": "text/plain"})
        await client.get("/", headers={"accept": "application/json"})
        headers = fake_provider.requests[0].headers
        assert headers["x-client"] == "hookhttp"
        assert headers.get_list("accept") == ["application/json"]

    @pytest.mark.asyncio
    async def test_set_headers_and_timeout(self, make_client, fake_provider) -> None:
        client = make_client(fake_provider)
        client.set_headers({"Authorization": "Bearer abc"}).set_timeout(3.5)

        await client.get("/")

        request = fake_provider.requests[0]
        assert request.headers["authorization"] == "Bearer abc"
        assert request.timeout == 3.5

    @pytest.mark.asyncio
    async def test_lifecycle_order(self, make_client, fake_provider) -> None:
        log: list[str] = []
        client = make_client(fake_provider)

        async def outer(ctx: ExecutionContext, request: Request, next: NextFn) -> Response:
            log.append("mw:in")
            response = await next(request)
            log.append("mw:out")
            return response

        client.add_middleware(outer)
        client.register_hook(HookPoint.BEFORE_REQUEST, lambda ctx: log.append("before"))
        client.register_hook(HookPoint.AFTER_RESPONSE, lambda ctx: log.append("after"))

        await client.get("/")

        assert log == ["mw:in", "before", "after", "mw:out"]

    @pytest.mark.asyncio
    async def test_context_populated(self, make_client, fake_provider) -> None:
        contexts: list[ExecutionContext] = []
        client = make_client(fake_provider)
        client.register_hook(HookPoint.AFTER_RESPONSE, contexts.append)

        await client.post("/items", body={"name": "x"})

        ctx = contexts[0]
        assert ctx.method == "POST"
        assert ctx.target == "/items"
        assert ctx.args == {"body": {"name": "x"}}
        assert ctx.duration is not None
        assert ctx.error is None
        assert ctx.response is not None and ctx.response.status_code == 200

    @pytest.mark.asyncio
    async def test_duration_unset_before_provider_call(self, make_client, fake_provider) -> None:
        durations: list[float | None] = []
        client = make_client(fake_provider)
        client.register_hook(HookPoint.BEFORE_REQUEST, lambda ctx: durations.append(ctx.duration))
        await client.get("/")
        assert durations == [None]


class TestErrors:
    @pytest.mark.asyncio
    async def test_before_hook_veto(self, make_client, fake_provider) -> None:
        veto = PermissionError("blocked by policy")
        client = make_client(fake_provider)
        client.register_hook(HookPoint.BEFORE_REQUEST, lambda ctx: HookResult.abort(veto))

        with pytest.raises(HookAbortError) as exc_info:
            await client.delete("/users/1")

        error = exc_info.value
        assert error.hook_error is veto
        assert error.__cause__ is veto
        assert (error.method, error.target) == ("DELETE", "/users/1")
        assert fake_provider.requests == []

    @pytest.mark.asyncio
    async def test_provider_error_wrapped_with_operation(self, make_client, make_provider) -> None:
        def responder(request: Request) -> Response:
            raise TransportError("connection refused")

        errors: list[BaseException | None] = []
        client = make_client(make_provider(responder))
        client.register_hook(HookPoint.ON_ERROR, lambda ctx: errors.append(ctx.error))

        with pytest.raises(TransportError) as exc_info:
            await client.get("/down")

        assert exc_info.value.code == "transport"
        assert str(exc_info.value) == "GET /down: connection refused"
        assert errors == [exc_info.value]

    @pytest.mark.asyncio
    async def test_foreign_provider_error_becomes_transport_error(self, make_client, make_provider) -> None:
        def responder(request: Request) -> Response:
            raise OSError("socket closed")

        client = make_client(make_provider(responder))
        with pytest.raises(TransportError) as exc_info:
            await client.get("/")
        assert isinstance(exc_info.value.__cause__, OSError)

    @pytest.mark.asyncio
    async def test_middleware_exception_wrapped(self, make_client, fake_provider) -> None:
        async def broken(ctx: ExecutionContext, request: Request, next: NextFn) -> Response:
            raise KeyError("tenant")

        client = make_client(fake_provider)
        client.add_middleware(broken)

        with pytest.raises(MiddlewareError) as exc_info:
            await client.get("/")
        assert exc_info.value.code == "middleware"
        assert isinstance(exc_info.value.__cause__, KeyError)

    @pytest.mark.asyncio
    async def test_error_hook_failure_does_not_mask_error(self, make_client, make_provider) -> None:
        def responder(request: Request) -> Response:
            raise TransportError("connection refused")

        def broken_hook(ctx: ExecutionContext) -> None:
            raise RuntimeError("metrics backend down")

        client = make_client(make_provider(responder))
        client.register_hook(HookPoint.ON_ERROR, broken_hook)

        with pytest.raises(TransportError):
            await client.get("/")

    @pytest.mark.asyncio
    async def test_after_hook_rejection(self, make_client, fake_provider) -> None:
        client = make_client(fake_provider)
        client.register_hook(
            HookPoint.AFTER_RESPONSE, lambda ctx: HookResult.abort(ValueError("bad payload"))
        )
        with pytest.raises(HookAbortError):
            await client.get("/")

    @pytest.mark.asyncio
    async def test_after_hook_stop_without_error_keeps_response(self, make_client, fake_provider) -> None:
        later: list[str] = []
        client = make_client(fake_provider)
        client.register_hook(HookPoint.AFTER_RESPONSE, lambda ctx: HookResult(proceed=False))
        client.register_hook(HookPoint.AFTER_RESPONSE, lambda ctx: later.append("x"))

        response = await client.get("/")

        assert response.status_code == 200
        assert later == []

    def test_root_code_of_wrapped_error(self) -> None:
        outer = TransportError("provider call failed", method="GET", target="/")
        outer.__cause__ = CancellationError()
        assert outer.root_code == "cancelled"


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_aborts_in_flight_call(self, make_client, make_provider) -> None:
        client = make_client(make_provider(delay=10))

        async def run() -> None:
            token = CancelToken()
            asyncio.get_running_loop().call_later(0.05, token.cancel)
            await client.get("/slow", token=token)

        with pytest.raises(CancellationError) as exc_info:
            await asyncio.wait_for(run(), timeout=5)
        assert exc_info.value.target == "/slow"

    @pytest.mark.asyncio
    async def test_pre_cancelled_token(self, make_client, fake_provider) -> None:
        client = make_client(fake_provider)

        token = CancelToken()
        token.cancel()

        with pytest.raises(CancellationError):
            await client.get("/", token=token)
        assert fake_provider.requests == []

    @pytest.mark.asyncio
    async def test_deadline(self, make_client, make_provider) -> None:
        client = make_client(make_provider(delay=10))

        with pytest.raises(CancellationError) as exc_info:
            await asyncio.wait_for(client.get("/", token=CancelToken(timeout=0.05)), timeout=5)
        assert exc_info.value.deadline_exceeded


class TestCompression:
    @pytest.mark.asyncio
    async def test_request_compressed_and_response_decoded(self, make_provider) -> None:
        payload = json.dumps({"rows": list(range(1000))}).encode()
        seen: list[Request] = []

        def responder(request: Request) -> Response:
            seen.append(request)
            return Response(200, headers={"Content-Encoding": "gzip"}, body=gzip.compress(payload))

        client = Client(
            ClientConfig(compression=CompressionConfig(threshold=100)),
            provider=make_provider(responder),
        )

        response = await client.post("/bulk", body=payload)

        assert seen[0].headers["content-encoding"] == "gzip"
        assert gzip.decompress(seen[0].body) == payload
        assert response.body == payload
        assert "content-encoding" not in response.headers
        stats = client.statistics
        assert stats.requests_compressed == 1
        assert stats.responses_decompressed == 1

    @pytest.mark.asyncio
    async def test_after_hooks_see_encoded_body(self, make_provider) -> None:
        encoded = gzip.compress(b"hello" * 100)
        bodies: list[bytes] = []
        client = Client(
            provider=make_provider(
                lambda req: Response(200, headers={"Content-Encoding": "gzip"}, body=encoded)
            )
        )
        client.register_hook(HookPoint.AFTER_RESPONSE, lambda ctx: bodies.append(ctx.response.body))

        response = await client.get("/")

        assert bodies == [encoded]
        assert response.body == b"hello" * 100


class TestRetry:
    @pytest.mark.asyncio
    async def test_retry_config_installs_middleware(self, make_provider) -> None:
        statuses = iter([503, 503, 200])
        provider = make_provider(lambda req: Response(next(statuses)))
        client = Client(
            ClientConfig(
                retry=RetryConfig(max_retries=3, initial_interval=0.0),
                compression=CompressionConfig(enabled_types=[]),
            ),
            provider=provider,
        )

        response = await client.get("/flaky")

        assert response.status_code == 200
        assert len(provider.requests) == 3

class TestRetryWithCompression:
    @pytest.mark.asyncio
    async def test_every_attempt_sends_a_consistent_encoded_body(self, make_provider) -> None:
        payload = b"x" * 2000
        statuses = iter([503, 200])
        provider = make_provider(lambda req: Response(next(statuses)))
        client = Client(
            ClientConfig(
                compression=CompressionConfig(threshold=10),
                retry=RetryConfig(max_retries=1, initial_interval=0.0),
            ),
            provider=provider,
            middleware=[timeout_middleware(5)],
        )

        response = await client.post("/bulk", body=payload)

        assert response.status_code == 200
        assert len(provider.requests) == 2
        for sent in provider.requests:
            assert sent.headers["content-encoding"] == "gzip"
            assert gzip.decompress(sent.body) == payload
            assert sent.headers["content-length"] == str(len(sent.body))
            assert sent.timeout == 5
        assert client.statistics.requests_compressed == 2

    @pytest.mark.asyncio
    async def test_caller_headers_not_modified(self, make_provider) -> None:
        headers = {"X-Trace": "t-1"}
        provider = make_provider()
        client = Client(ClientConfig(compression=CompressionConfig(threshold=10)), provider=provider)

        await client.post("/bulk", body=b"y" * 500, headers=headers)

        assert headers == {"X-Trace": "t-1"}
        assert provider.requests[0].headers["x-trace"] == "t-1"


class TestContextReplacement:
    @pytest.mark.asyncio
    async def test_replacement_reaches_after_response(self, make_client, fake_provider) -> None:
        seen: list[ExecutionContext] = []
        replacements: list[ExecutionContext] = []
        client = make_client(fake_provider)

        def swap(ctx: ExecutionContext) -> HookResult:
            replacement = dataclasses.replace(ctx, metadata={"tenant": "acme"})
            replacements.append(replacement)
            return HookResult.ok(replacement)

        client.register_hook(HookPoint.BEFORE_REQUEST, swap)
        client.register_hook(HookPoint.AFTER_RESPONSE, seen.append)

        await client.get("/users")

        assert seen == replacements
        assert seen[0] is replacements[0]
        assert seen[0].metadata == {"tenant": "acme"}
        assert seen[0].response is not None
        assert seen[0].duration is not None

    @pytest.mark.asyncio
    async def test_replacement_reaches_on_error(self, make_client, make_provider) -> None:
        def responder(request: Request) -> Response:
            raise TransportError("connection refused")

        seen: list[ExecutionContext] = []
        client = make_client(make_provider(responder))
        client.register_hook(
            HookPoint.BEFORE_REQUEST,
            lambda ctx: HookResult.ok(dataclasses.replace(ctx, metadata={"attempt": "swapped"})),
        )
        client.register_hook(HookPoint.ON_ERROR, seen.append)

        with pytest.raises(TransportError):
            await client.get("/")

        assert len(seen) == 1
        assert seen[0].metadata == {"attempt": "swapped"}
        assert isinstance(seen[0].error, TransportError)

    @pytest.mark.asyncio
    async def test_stream_after_hook_sees_replacement(self, make_client, make_provider) -> None:
        seen: list[dict] = []
        client = make_client(make_provider(chunks=[b"a"]))
        client.register_hook(
            HookPoint.BEFORE_STREAM,
            lambda ctx: HookResult.ok(dataclasses.replace(ctx, metadata={"feed": "prices"})),
        )
        client.register_hook(HookPoint.AFTER_STREAM, lambda ctx: seen.append(ctx.metadata))

        await client.stream("GET", "/events", ChunkedHandler())

        assert seen == [{"feed": "prices"}]


class TestUpload:
    @pytest.mark.asyncio
    async def test_async_iterable_source(self, make_client, fake_provider) -> None:
        async def parts():
            for part in (b"alpha,", b"beta,", b"gamma"):
                yield part

        client = make_client(fake_provider)

        response = await client.upload("PUT", "/files/a.csv", parts(), content_type="text/csv")

        assert response.status_code == 200
        assert fake_provider.uploads == [b"alpha,beta,gamma"]
        assert fake_provider.requests[0].headers["content-type"] == "text/csv"

    @pytest.mark.asyncio
    async def test_iterable_and_file_sources(self, make_client, fake_provider) -> None:
        client = make_client(fake_provider)

        await client.upload("POST", "/a", [b"one", b"two"])
        await client.upload("POST", "/b", io.BytesIO(b"z" * 10), chunk_size=4)

        assert fake_provider.uploads == [b"onetwo", b"z" * 10]

    @pytest.mark.asyncio
    async def test_hooks_run_and_body_not_compressed(self, make_provider) -> None:
        points: list[str] = []
        provider = make_provider()
        client = Client(ClientConfig(compression=CompressionConfig(threshold=1)), provider=provider)
        client.register_hook(HookPoint.BEFORE_REQUEST, lambda ctx: points.append(ctx.operation))
        client.register_hook(HookPoint.AFTER_RESPONSE, lambda ctx: points.append("after"))

        await client.upload("PUT", "/blob", [b"a" * 4096])

        assert points == ["upload", "after"]
        assert "content-encoding" not in provider.requests[0].headers
        assert provider.uploads == [b"a" * 4096]

    @pytest.mark.asyncio
    async def test_middleware_bypassed(self, make_client, fake_provider) -> None:
        calls: list[str] = []

        async def record(ctx: ExecutionContext, request: Request, next: NextFn) -> Response:
            calls.append(request.url)
            return await next(request)

        client = make_client(fake_provider)
        client.add_middleware(record)

        await client.upload("PUT", "/blob", [b"data"])

        assert calls == []

    @pytest.mark.asyncio
    async def test_before_hook_veto(self, make_client, fake_provider) -> None:
        client = make_client(fake_provider)
        client.register_hook(HookPoint.BEFORE_REQUEST, lambda ctx: HookResult.abort())

        with pytest.raises(HookAbortError) as exc_info:
            await client.upload("PUT", "/blob", [b"data"])

        assert exc_info.value.target == "/blob"
        assert fake_provider.uploads == []


class TestStreamAndBatch:
    @pytest.mark.asyncio
    async def test_stream_uses_client_hooks(self, make_client, make_provider) -> None:
        points: list[int] = []
        client = make_client(make_provider(chunks=[b"a", b"b"]))
        client.register_hook(HookPoint.BEFORE_STREAM, lambda ctx: points.append(ctx.hook_point))
        client.register_hook(HookPoint.AFTER_STREAM, lambda ctx: points.append(ctx.hook_point))
        handler = ChunkedHandler()

        result = await client.stream("GET", "/events", handler)

        assert handler.data == b"ab"
        assert result.completed
        assert points == [HookPoint.BEFORE_STREAM, HookPoint.AFTER_STREAM]

    @pytest.mark.asyncio
    async def test_batch_runs_through_pipeline(self, make_client, fake_provider) -> None:
        before: list[str] = []
        client = make_client(fake_provider)
        client.register_hook(HookPoint.BEFORE_REQUEST, lambda ctx: before.append(ctx.target))

        results = await client.batch().add("GET", "/a").add("GET", "/b").execute()

        assert sorted(before) == ["/a", "/b"]
        assert all(r.ok for r in results)


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------


class TestClientBuilder:
    @pytest.mark.asyncio
    async def test_builds_with_transport(self) -> None:
        client = (
            ClientBuilder()
            .with_base_url("https://api.example.com")
            .with_timeout(5)
            .with_headers({"X-App": "test"})
            .with_transport(httpx.MockTransport(_json_handler()))
            .build()
        )

        async with client:
            response = await client.get("/users")

        assert response.json() == {"method": "GET", "path": "/users"}
        assert client.config.timeout == 5
        assert isinstance(client.provider, HttpxProvider)

    @pytest.mark.asyncio
    async def test_registers_hooks_and_middleware(self, fake_provider) -> None:
        calls: list[str] = []

        async def mw(ctx: ExecutionContext, request: Request, next: NextFn) -> Response:
            calls.append("mw")
            return await next(request)

        client = (
            ClientBuilder()
            .with_provider(fake_provider)
            .with_hook(HookPoint.BEFORE_REQUEST, lambda ctx: calls.append("hook"))
            .with_custom_hook(CUSTOM_HOOK_BASE + 1, "audit", lambda ctx: calls.append("custom"))
            .with_middleware(mw)
            .build()
        )

        await client.get("/")
        client.hook_manager.dispatch(CUSTOM_HOOK_BASE + 1, ExecutionContext())

        assert calls == ["mw", "hook", "custom"]
        assert client.get_hook_manager() is client.hook_manager
        assert len(client.middleware) == 1

    def test_duplicate_custom_hook_fails_build(self, fake_provider) -> None:
        builder = (
            ClientBuilder()
            .with_provider(fake_provider)
            .with_custom_hook(CUSTOM_HOOK_BASE, "audit", lambda ctx: None)
            .with_custom_hook(CUSTOM_HOOK_BASE, "audit", lambda ctx: None)
        )
        with pytest.raises(DuplicateHookNameError):
            builder.build()

    def test_batch_concurrency_and_retry(self, fake_provider) -> None:
        client = (
            ClientBuilder()
            .with_provider(fake_provider)
            .with_batch_concurrency(2)
            .with_retry()
            .build()
        )
        assert client.config.batch.concurrency_limit == 2
        assert client.config.retry is not None
        assert len(client.middleware) == 1

    def test_clients_do_not_share_state(self, fake_provider) -> None:
        first = ClientBuilder().with_provider(fake_provider).build()
        second = ClientBuilder().with_provider(fake_provider).build()
        first.register_hook(HookPoint.BEFORE_REQUEST, lambda ctx: None)
        assert not second.hook_manager.has_hooks(HookPoint.BEFORE_REQUEST)

    @pytest.mark.asyncio
    async def test_circuit_breaker_integration(self, make_provider) -> None:
        provider = make_provider(lambda req: Response(500))
        client = ClientBuilder().with_provider(provider).build()
        CircuitBreaker(max_failures=2).install(client.hook_manager)

        await client.get("/")
        await client.get("/")
        with pytest.raises(HookAbortError) as exc_info:
            await client.get("/")
        assert isinstance(exc_info.value.hook_error, CircuitOpenError)
        assert exc_info.value.root_code == "circuit_open"
        assert len(provider.requests) == 2

    @pytest.mark.asyncio
    async def test_close_closes_provider(self, fake_provider) -> None:
        client = ClientBuilder().with_provider(fake_provider).build()

        async with client:
            pass

        assert fake_provider.closed

    def test_all_errors_share_base(self) -> None:
        assert issubclass(MiddlewareError, HookHttpError)
