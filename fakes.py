"""Local aiohttp servers standing in for Clerk and a debuggable Chrome in tests."""

import asyncio
import base64
import json
import threading
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from aiohttp import WSMsgType, web
from aiohttp.test_utils import TestServer


def make_jwt(payload: dict) -> str:
    def b64(data: dict) -> str:
        return base64.urlsafe_b64encode(json.dumps(data).encode()).decode().rstrip("=")
    return f"{b64({'alg': 'RS256', 'typ': 'JWT'})}.{b64(payload)}.signature"


def server_url(server: TestServer) -> str:
    return f"http://{server.host}:{server.port}"


class FakeClerk:
    """The Clerk tokens endpoint: fixed status, body and Set-Cookie headers."""

    def __init__(self, status: int = 200, body: Any = None, set_cookies=()):
        self.status = status
        self.body = body if body is not None else {"object": "token", "jwt": make_jwt({"sub": "user_1"})}
        self.set_cookies = list(set_cookies)
        self.requests = []

    async def handle(self, request: web.Request) -> web.Response:
        self.requests.append({
            "sid": request.match_info["sid"],
            "cookie": request.headers.get("Cookie", ""),
            "query": dict(request.query),
            "origin": request.headers.get("Origin"),
        })
        text = self.body if isinstance(self.body, str) else json.dumps(self.body)
        resp = web.Response(status=self.status, text=text, content_type="application/json")
        for header in self.set_cookies:
            resp.headers.add("Set-Cookie", header)
        return resp

    def server(self) -> TestServer:
        app = web.Application()
        app.router.add_post("/v1/client/sessions/{sid}/tokens", self.handle)
        return TestServer(app)


class FakeChrome:
    """
    A DevTools endpoint: /json lists tabs, /devtools/page/{id} answers
    Network.enable, Network.getCookies and Runtime.evaluate.

    ``tabs`` entries are dicts of url/title/type; the websocket URL is filled
    in from the server address. ``silent`` makes every channel accept
    requests and never answer.
    """

    def __init__(
        self,
        tabs: Optional[list[dict]] = None,
        cookies: Optional[list[dict]] = None,
        page_session_id: Any = "",
        evaluate_exception: Optional[str] = None,
        network_enable_error: bool = False,
        silent: bool = False,
        json_status: int = 200,
        json_body: Any = None,
    ):
        self.tabs = tabs if tabs is not None else []
        self.cookies = cookies or []
        self.page_session_id = page_session_id
        self.evaluate_exception = evaluate_exception
        self.network_enable_error = network_enable_error
        self.silent = silent
        self.json_status = json_status
        self.json_body = json_body
        self.requests: list[dict] = []
        self.json_hits = 0

    async def handle_json(self, request: web.Request) -> web.Response:
        self.json_hits += 1
        if self.json_body is not None:
            return web.json_response(self.json_body, status=self.json_status)
        listing = []
        for index, tab in enumerate(self.tabs):
            entry = {"id": str(index), "type": "page", **tab}
            if "webSocketDebuggerUrl" not in tab:
                entry["webSocketDebuggerUrl"] = f"ws://{request.host}/devtools/page/{index}"
            listing.append(entry)
        return web.json_response(listing, status=self.json_status)

    def result_for(self, message: dict) -> dict:
        method = message.get("method")
        if method == "Network.enable":
            if self.network_enable_error:
                return {"error": {"code": -32601, "message": "'Network.enable' wasn't found"}}
            return {"result": {}}
        if method == "Network.getCookies":
            return {"result": {"cookies": self.cookies}}
        if method == "Runtime.evaluate":
            if self.evaluate_exception:
                return {"result": {
                    "result": {"type": "object", "subtype": "error"},
                    "exceptionDetails": {"text": "Uncaught", "exception": {"description": self.evaluate_exception}},
                }}
            return {"result": {"result": {"type": "string", "value": self.page_session_id}}}
        return {"error": {"code": -32601, "message": f"'{method}' wasn't found"}}

    async def handle_ws(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        async for msg in ws:
            if msg.type != WSMsgType.TEXT:
                continue
            message = json.loads(msg.data)
            self.requests.append(message)
            if self.silent:
                continue
            # An unrelated event first, as Chrome does once Network is enabled
            await ws.send_str(json.dumps({"method": "Network.dataReceived", "params": {}}))
            await ws.send_str(json.dumps({"id": message["id"], **self.result_for(message)}))
        return ws

    def server(self) -> TestServer:
        app = web.Application()
        app.router.add_get("/json", self.handle_json)
        app.router.add_get("/devtools/page/{id}", self.handle_ws)
        return TestServer(app)

    def methods(self) -> list[str]:
        return [r["method"] for r in self.requests]


async def closed_port() -> int:
    """A local port with nothing listening on it."""
    server = await asyncio.start_server(lambda r, w: None, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    server.close()
    await server.wait_closed()
    return port


@contextmanager
def serve_in_thread(app: web.Application) -> Iterator[str]:
    """Serve an app on its own loop so synchronous callers (the CLI) can reach it."""
    loop = asyncio.new_event_loop()
    runner = web.AppRunner(app)
    started = threading.Event()
    ports = []

    def run():
        asyncio.set_event_loop(loop)
        loop.run_until_complete(runner.setup())
        loop.run_until_complete(web.TCPSite(runner, "127.0.0.1", 0).start())
        ports.append(runner.addresses[0][1])
        started.set()
        loop.run_forever()

    thread = threading.Thread(target=run, daemon=True)
    thread.start()
    assert started.wait(10), "server thread did not start"
    try:
        yield f"http://127.0.0.1:{ports[0]}"
    finally:
        asyncio.run_coroutine_threadsafe(runner.cleanup(), loop).result(10)
        loop.call_soon_threadsafe(loop.stop)
        thread.join(10)
        loop.close()
