import json
import unittest

from aiohttp import web
from aiohttp.test_utils import TestServer

from core.identity import create_signer
from transports.xmtp_bridge import BridgeError, XmtpBridgeClient

PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"


class FakeBridge:
    def __init__(self):
        self.requests = []
        self.sent = []
        self.app = web.Application()
        routes = [
            web.get("/v1/identity/challenge", self.challenge),
            web.post("/v1/client", self.create_client),
            web.post("/v1/conversations/sync", self.sync),
            web.get("/v1/messages/stream", self.stream),
            web.get("/v1/conversations/{id}", self.conversation),
            web.post("/v1/conversations/{id}/messages", self.send),
            web.get("/v1/conversations/{id}/members", self.members),
            web.get("/v1/inboxes/lookup", self.lookup),
            web.post("/v1/inboxes/state", self.inbox_state),
            web.post("/v1/key-packages/status", self.key_packages),
        ]
        self.app.add_routes(routes)

    def _record(self, request, body=None):
        self.requests.append(
            (request.method, request.path, dict(request.query), request.headers.get("Authorization"), body)
        )

    async def challenge(self, request):
        self._record(request)
        return web.json_response({"message": "sign me"})

    async def create_client(self, request):
        body = await request.json()
        self._record(request, body)
        return web.json_response(
            {"inbox_id": "bot-inbox", "sdk_version": "3.2.1", "session_token": "tok"}
        )

    async def sync(self, request):
        self._record(request)
        return web.json_response({})

    async def stream(self, request):
        self._record(request)
        resp = web.StreamResponse()
        resp.content_type = "application/x-ndjson"
        await resp.prepare(request)
        lines = [
            {"sender_inbox_id": "a", "conversation_id": "c1", "content_type": {"type_id": "text"}, "content": "/kc"},
            None,
            "null",
            "[1, 2]",
            {"sender_inbox_id": "b", "conversation_id": "c2", "content_type": {"type_id": "reaction"}, "content": {}},
        ]
        for line in lines:
            if line is None:
                chunk = b"\n"
            elif isinstance(line, str):
                chunk = line.encode() + b"\n"
            else:
                chunk = json.dumps(line).encode() + b"\n"
            await resp.write(chunk)
        await resp.write(b"{not json\n")
        await resp.write_eof()
        return resp

    async def conversation(self, request):
        self._record(request)
        if request.match_info["id"] == "missing":
            return web.json_response({"error": "conversation not found"}, status=404)
        return web.json_response({"id": request.match_info["id"]})

    async def send(self, request):
        body = await request.json()
        self._record(request, body)
        self.sent.append((request.match_info["id"], body["content"]))
        return web.json_response({"id": "msg-1"})

    async def members(self, request):
        self._record(request)
        return web.json_response([{"inbox_id": "m1"}, {"inbox_id": "m2"}])

    async def lookup(self, request):
        self._record(request)
        if request.query["identifier"] == "0xboom":
            return web.json_response({"error": "resolver unavailable"}, status=502)
        inbox = "resolved" if request.query["identifier"] == "0xknown" else None
        return web.json_response({"inbox_id": inbox})

    async def inbox_state(self, request):
        body = await request.json()
        self._record(request, body)
        return web.json_response(
            [
                {
                    "inbox_id": body["inbox_ids"][0],
                    "identifiers": [{"identifier": "0xaddr", "kind": "ethereum"}],
                    "installations": [{"id": "i1"}, {"id": "i2"}, {"id": "i3"}],
                }
            ]
        )

    async def key_packages(self, request):
        body = await request.json()
        self._record(request, body)
        return web.json_response(
            {
                "i1": {"lifetime": {"not_before": 1700000000, "not_after": 1800000000}, "validation_error": None},
                "i2": {"lifetime": None, "validation_error": "bad signature"},
                "i3": None,
            }
        )


class XmtpBridgeClientTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.bridge = FakeBridge()
        self.server = TestServer(self.bridge.app)
        await self.server.start_server()
        self.client = XmtpBridgeClient(
            f"http://{self.server.host}:{self.server.port}/", env="dev", request_timeout=5
        )

    async def asyncTearDown(self):
        await self.client.close()
        await self.server.close()

    async def _connect(self):
        signer = create_signer(PRIVATE_KEY)
        return await self.client.connect(signer, bytes(32))

    async def test_connect_signs_challenge_and_stores_session(self):
        inbox_id = await self._connect()
        self.assertEqual(inbox_id, "bot-inbox")
        self.assertEqual(self.client.sdk_version, "3.2.1")

        method, path, query, _, _ = self.bridge.requests[0]
        self.assertEqual((method, path), ("GET", "/v1/identity/challenge"))
        self.assertEqual(query, {"address": "0x2c7536e3605d9c16a7a3d7b1898e529396a65c23", "env": "dev"})

        _, _, _, _, body = self.bridge.requests[1]
        self.assertEqual(body["db_encryption_key"], "00" * 32)
        self.assertTrue(body["signature"].startswith("0x"))

        await self.client.sync_conversations()
        self.assertEqual(self.bridge.requests[-1][3], "Bearer tok")

    async def test_stream_skips_blank_malformed_and_non_object_lines(self):
        await self._connect()
        with self.assertLogs("transports.xmtp_bridge", level="WARNING") as logs:
            messages = [message async for message in self.client.stream_all_messages()]
        self.assertEqual(len(messages), 2)
        self.assertEqual(messages[0].content, "/kc")
        self.assertTrue(messages[0].is_text)
        self.assertEqual(messages[1].content_type_id, "reaction")
        self.assertFalse(messages[1].is_text)
        skipped = [line for line in logs.output if "non-object" in line]
        self.assertEqual(len(skipped), 2)
        self.assertIn("null", skipped[0])

    async def test_conversation_lookup_send_and_members(self):
        await self._connect()
        self.assertIsNone(await self.client.get_conversation_by_id("missing"))

        conversation = await self.client.get_conversation_by_id("c1")
        await conversation.send("hello")
        self.assertEqual(self.bridge.sent, [("c1", "hello")])

        members = await conversation.members()
        self.assertEqual([member.inbox_id for member in members], ["m1", "m2"])

    async def test_inbox_lookup(self):
        await self._connect()
        self.assertEqual(await self.client.get_inbox_id_by_identifier("0xknown"), "resolved")
        self.assertIsNone(await self.client.get_inbox_id_by_identifier("0xunknown"))
        with self.assertRaises(BridgeError) as ctx:
            await self.client.get_inbox_id_by_identifier("0xboom")
        self.assertEqual(str(ctx.exception), "resolver unavailable")
        self.assertEqual(ctx.exception.status, 502)

    async def test_inbox_state_and_key_packages(self):
        await self._connect()
        states = await self.client.inbox_state_from_inbox_ids(["target"], True)
        self.assertEqual(self.bridge.requests[-1][4], {"inbox_ids": ["target"], "refresh_from_network": True})
        self.assertEqual(states[0].identifiers[0].identifier, "0xaddr")
        self.assertEqual([i.id for i in states[0].installations], ["i1", "i2", "i3"])

        statuses = await self.client.get_key_package_statuses_for_installation_ids(["i1", "i2", "i3"])
        self.assertEqual(list(statuses), ["i1", "i2", "i3"])
        self.assertEqual(statuses["i1"].lifetime.not_after, 1800000000)
        self.assertIsNone(statuses["i1"].validation_error)
        self.assertEqual(statuses["i2"].validation_error, "bad signature")
        self.assertIsNone(statuses["i3"])

    async def test_unreachable_bridge_raises_bridge_error(self):
        client = XmtpBridgeClient("http://127.0.0.1:1", request_timeout=2)
        try:
            with self.assertRaises(BridgeError):
                await client.sync_conversations()
        finally:
            await client.close()

    async def test_request_timeout_none_disables_the_session_cap(self):
        client = XmtpBridgeClient("http://127.0.0.1:1", request_timeout=None)
        try:
            self.assertIsNone(client._get_session().timeout.total)
        finally:
            await client.close()
