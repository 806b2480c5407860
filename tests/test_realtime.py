import asyncio
import importlib.util
import json
import sys
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

_MISSING_DEPS = any(
    importlib.util.find_spec(name) is None for name in ("pydantic", "websockets")
)

if not _MISSING_DEPS:
    from agriconnect.application.services.live_service import LiveListing, LiveListings
    from agriconnect.domain.normalizers import normalize_listing
    from agriconnect.domain.realtime_sync import apply_change, apply_detail_change
    from agriconnect.infra.realtime import RealtimeClient, parse_change_payload
    from agriconnect.schemas import ChangeEvent, ChangeType, ListingCriteria


class FakeSocket:
    def __init__(self) -> None:
        self.sent = []
        self.closed = False
        self._incoming = asyncio.Queue()

    async def send(self, data: str) -> None:
        self.sent.append(json.loads(data))

    def push(self, message: dict) -> None:
        self._incoming.put_nowait(json.dumps(message))

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._incoming.get()
        if item is None:
            raise StopAsyncIteration
        return item

    async def close(self) -> None:
        self.closed = True
        self._incoming.put_nowait(None)


def _connector(socket):
    async def connect(url):
        return socket

    return connect


def _change(kind, new=None, old=None):
    return ChangeEvent(type=kind, table="farm_produce", new=new or {}, old=old or {})


def _postgres_change(topic, kind, record=None, old_record=None):
    return {
        "topic": topic,
        "event": "postgres_changes",
        "payload": {
            "data": {
                "type": kind,
                "table": "farm_produce",
                "schema": "public",
                "record": record,
                "old_record": old_record,
                "commit_timestamp": "2025-01-01T00:00:00Z",
            }
        },
    }


@unittest.skipUnless(not _MISSING_DEPS, "pydantic/websockets are not installed")
class ApplyChangeTests(unittest.TestCase):
    def setUp(self) -> None:
        self.rows = [
            normalize_listing({"id": "1", "crop_name": "Beans", "is_available": True}),
            normalize_listing({"id": "2", "crop_name": "Maize", "is_available": True}),
        ]

    def test_delete_removes_matching_row_without_mutating_input(self) -> None:
        result = apply_change(self.rows, _change(ChangeType.DELETE, old={"id": "1"}))
        self.assertEqual([row.id for row in result], ["2"])
        self.assertEqual(len(self.rows), 2)

    def test_insert_of_available_row_is_prepended(self) -> None:
        result = apply_change(
            self.rows,
            _change(ChangeType.INSERT, new={"id": "3", "crop_name": "Cassava", "is_available": True}),
        )
        self.assertEqual([row.id for row in result], ["3", "1", "2"])

    def test_update_replaces_in_place(self) -> None:
        result = apply_change(
            self.rows,
            _change(
                ChangeType.UPDATE,
                new={"id": "2", "crop_name": "Maize", "price_per_unit": 900, "is_available": True},
            ),
        )
        self.assertEqual([row.id for row in result], ["1", "2"])
        self.assertEqual(result[1].price_per_unit, 900.0)
        self.assertEqual(self.rows[1].price_per_unit, 0.0)

    def test_update_to_unavailable_removes_row(self) -> None:
        result = apply_change(
            self.rows, _change(ChangeType.UPDATE, new={"id": "1", "is_available": False})
        )
        self.assertEqual([row.id for row in result], ["2"])

    def test_insert_of_unavailable_row_is_ignored(self) -> None:
        result = apply_change(
            self.rows, _change(ChangeType.INSERT, new={"id": "9", "is_available": False})
        )
        self.assertEqual([row.id for row in result], ["1", "2"])

    def test_stale_update_applied_last_wins(self) -> None:
        newer = _change(ChangeType.UPDATE, new={"id": "1", "price_per_unit": 500, "is_available": True})
        stale = _change(ChangeType.UPDATE, new={"id": "1", "price_per_unit": 400, "is_available": True})
        result = apply_change(apply_change(self.rows, newer), stale)
        self.assertEqual(result[0].price_per_unit, 400.0)

    def test_detail_delete_clears_listing(self) -> None:
        self.assertIsNone(
            apply_detail_change(self.rows[0], _change(ChangeType.DELETE, old={"id": "1"}))
        )

    def test_live_listings_snapshot_respects_criteria(self) -> None:
        live = LiveListings(self.rows, ListingCriteria(query="cassava"))
        self.assertEqual(live.snapshot(), [])
        snapshot = live.apply(
            _change(ChangeType.INSERT, new={"id": "3", "crop_name": "Cassava", "is_available": True})
        )
        self.assertEqual([row.id for row in snapshot], ["3"])
        self.assertEqual(len(live.rows), 3)

    def test_live_listing_reports_deletion(self) -> None:
        live = LiveListing(self.rows[0])
        live.apply(_change(ChangeType.DELETE, old={"id": "1"}))
        self.assertIsNone(live.listing)
        self.assertEqual(live.message, "Product has been deleted")


@unittest.skipUnless(not _MISSING_DEPS, "pydantic/websockets are not installed")
class ChangePayloadTests(unittest.TestCase):
    def test_parses_delete_with_old_record(self) -> None:
        event = parse_change_payload(
            {"data": {"type": "DELETE", "table": "farm_produce", "old_record": {"id": 7}}}
        )
        self.assertEqual(event.type, ChangeType.DELETE)
        self.assertEqual(event.row_id, "7")
        self.assertEqual(event.new, {})

    def test_unknown_type_is_ignored(self) -> None:
        self.assertIsNone(parse_change_payload({"data": {"type": "TRUNCATE"}}))
        self.assertIsNone(parse_change_payload("not a payload"))


@unittest.skipUnless(not _MISSING_DEPS, "pydantic/websockets are not installed")
class RealtimeClientTests(unittest.IsolatedAsyncioTestCase):
    async def test_subscription_joins_yields_and_leaves(self) -> None:
        socket = FakeSocket()
        client = RealtimeClient(
            "ws://backend.test/realtime/v1/websocket",
            connect=_connector(socket),
            heartbeat_interval=3600,
        )
        async with client.subscribe("products", table="farm_produce") as sub:
            join = socket.sent[0]
            self.assertEqual(join["event"], "phx_join")
            self.assertEqual(join["topic"], "realtime:products")
            change = join["payload"]["config"]["postgres_changes"][0]
            self.assertEqual(change, {"event": "*", "schema": "public", "table": "farm_produce"})

            socket.push(
                _postgres_change(
                    "realtime:products", "INSERT", record={"id": "5", "is_available": True}
                )
            )
            socket.push(
                _postgres_change("realtime:other", "INSERT", record={"id": "6"})
            )
            socket.push(
                _postgres_change("realtime:products", "DELETE", old_record={"id": "5"})
            )
            first = await asyncio.wait_for(sub.__anext__(), timeout=1)
            second = await asyncio.wait_for(sub.__anext__(), timeout=1)

        self.assertEqual(first.type, ChangeType.INSERT)
        self.assertEqual(first.row_id, "5")
        self.assertEqual(second.type, ChangeType.DELETE)
        self.assertTrue(sub.closed)
        self.assertEqual(socket.sent[-1]["event"], "phx_leave")
        await client.close()
        self.assertTrue(socket.closed)

    async def test_filter_is_sent_with_join(self) -> None:
        socket = FakeSocket()
        client = RealtimeClient("ws://x", connect=_connector(socket), heartbeat_interval=3600)
        async with client.subscribe("product-1", table="farm_produce", filter="id=eq.1"):
            change = socket.sent[0]["payload"]["config"]["postgres_changes"][0]
            self.assertEqual(change["filter"], "id=eq.1")
        await client.close()

    async def test_rejected_join_ends_stream(self) -> None:
        socket = FakeSocket()
        client = RealtimeClient("ws://x", connect=_connector(socket), heartbeat_interval=3600)
        async with client.subscribe("products", table="farm_produce") as sub:
            socket.push(
                {
                    "topic": "realtime:products",
                    "event": "phx_reply",
                    "payload": {"status": "error", "response": {"reason": "denied"}},
                }
            )
            events = [event async for event in sub]
        self.assertEqual(events, [])
        await client.close()

    async def test_connection_close_ends_stream(self) -> None:
        socket = FakeSocket()
        client = RealtimeClient("ws://x", connect=_connector(socket), heartbeat_interval=3600)
        async with client.subscribe("products", table="farm_produce") as sub:
            await socket.close()
            events = [event async for event in sub]
        self.assertEqual(events, [])
        await client.close()

    async def test_detail_feed_reloads_similar_on_category_change(self) -> None:
        socket = FakeSocket()
        client = RealtimeClient("ws://x", connect=_connector(socket), heartbeat_interval=3600)
        listing = normalize_listing(
            {"id": "1", "crop_name": "Beans", "crop_category": "legume", "is_available": True}
        )
        reloaded = [normalize_listing({"id": "7", "crop_category": "legume", "is_available": True})]
        calls = []

        async def reload_similar(row):
            calls.append(row.id)
            return reloaded

        live = LiveListing(listing)
        feed = live.follow(client, reload_similar)
        first = asyncio.create_task(feed.__anext__())
        while len(socket.sent) < 2:
            await asyncio.sleep(0)
        topics = {
            message["payload"]["config"]["postgres_changes"][0]["filter"]: message["topic"]
            for message in socket.sent
        }
        self.assertEqual(set(topics), {"id=eq.1", "crop_category=eq.legume"})

        socket.push(
            _postgres_change(
                topics["crop_category=eq.legume"],
                "INSERT",
                record={"id": "7", "crop_category": "legume", "is_available": True},
            )
        )
        kind, rows = await asyncio.wait_for(first, timeout=1)
        self.assertEqual(kind, "similar")
        self.assertEqual([row.id for row in rows], ["7"])
        self.assertEqual(calls, ["1"])

        socket.push(_postgres_change(topics["id=eq.1"], "DELETE", old_record={"id": "1"}))
        kind, current = await asyncio.wait_for(feed.__anext__(), timeout=1)
        self.assertEqual(kind, "listing")
        self.assertIsNone(current)
        self.assertEqual(live.message, "Product has been deleted")
        with self.assertRaises(StopAsyncIteration):
            await asyncio.wait_for(feed.__anext__(), timeout=1)
        leaves = [m for m in socket.sent if m["event"] == "phx_leave"]
        self.assertEqual(len(leaves), 2)
        await client.close()

    async def test_reconnect_keeps_a_single_heartbeat(self) -> None:
        sockets = [FakeSocket(), FakeSocket()]
        remaining = list(sockets)

        async def connect(url):
            return remaining.pop(0)

        client = RealtimeClient("ws://x", connect=connect, heartbeat_interval=0.01)
        async with client.subscribe("products", table="farm_produce") as sub:
            first_heartbeat = client._heartbeat
            await sockets[0].close()
            events = [event async for event in sub]
        self.assertEqual(events, [])
        await asyncio.wait({first_heartbeat}, timeout=1)
        self.assertTrue(first_heartbeat.done())

        async with client.subscribe("products", table="farm_produce"):
            await asyncio.sleep(0.1)
            loops = [
                task
                for task in asyncio.all_tasks()
                if task.get_coro().__qualname__.endswith("_heartbeat_loop")
            ]
            self.assertEqual(len(loops), 1)
        heartbeats = [m for m in sockets[1].sent if m["event"] == "heartbeat"]
        self.assertGreater(len(heartbeats), 0)
        self.assertLessEqual(len(heartbeats), 12)
        await client.close()


if __name__ == "__main__":
    unittest.main()
