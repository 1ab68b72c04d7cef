"""Tests for DispatchEngine."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from app.xlsbot.dispatch.engine import DispatchEngine
from app.xlsbot.dispatch.errors import ContextStoreError, FetchError, RetriggerLimitError, UnknownTriggerError
from app.xlsbot.dispatch.models import FileAttachment, PlainText, SpecialForm, keyword, special
from app.xlsbot.media.fetch import AttachmentFetcher
from app.xlsbot.state.context_store import person_scope


class TestConstruction:
    def test_duplicate_keys_rejected(self, store) -> None:
        with pytest.raises(ValueError, match="Duplicate"):
            DispatchEngine(
                [keyword("a", handler=AsyncMock()), keyword("a", "b", handler=AsyncMock())],
                store=store,
            )

    def test_registry_is_ordered(self, store) -> None:
        specs = [keyword("x", handler=AsyncMock()), keyword("y", handler=AsyncMock())]
        engine = DispatchEngine(specs, store=store)
        assert [s.key for s in engine.registry] == ["x", "y"]


class TestDispatch:
    @pytest.mark.asyncio
    async def test_handler_gets_event_and_replies(self, store, sender, make_event) -> None:
        async def greet(event, ctx):
            await ctx.reply(f"hello {event.person_display_name}")

        engine = DispatchEngine([keyword("hi", handler=greet)], store=store, sender=sender)
        await engine.dispatch(make_event("hi"))
        assert sender.sent == [("conv-1", PlainText("hello Ada"))]

    @pytest.mark.asyncio
    async def test_no_match_is_silent(self, store, sender, make_event) -> None:
        handler = AsyncMock()
        engine = DispatchEngine([keyword("hi", handler=handler)], store=store, sender=sender)
        await engine.dispatch(make_event("bye"))
        handler.assert_not_awaited()
        assert sender.sent == []

    @pytest.mark.asyncio
    async def test_every_match_fires_in_order(self, store, sender, make_event) -> None:
        calls: list[str] = []

        def first(event, ctx):
            calls.append("first")

        async def second(event, ctx):
            calls.append("second")

        engine = DispatchEngine(
            [keyword("go", handler=first, key="one"), keyword("go", handler=second, key="two")],
            store=store,
            sender=sender,
        )
        await engine.dispatch(make_event("go"))
        assert calls == ["first", "second"]

    @pytest.mark.asyncio
    async def test_explicit_sender_wins(self, store, sender, make_event) -> None:
        other = AsyncMock()
        engine = DispatchEngine(
            [keyword("hi", handler=lambda e, c: c.reply("x"))], store=store, sender=sender,
        )
        await engine.dispatch(make_event("hi"), other)
        other.send.assert_awaited_once_with("conv-1", PlainText("x"))
        assert sender.sent == []

    @pytest.mark.asyncio
    async def test_missing_sender_raises(self, store, make_event) -> None:
        engine = DispatchEngine([keyword("hi", handler=AsyncMock())], store=store)
        with pytest.raises(RuntimeError, match="sender"):
            await engine.dispatch(make_event("hi"))

    @pytest.mark.asyncio
    async def test_handler_error_propagates(self, store, sender, make_event) -> None:
        async def boom(event, ctx):
            raise RuntimeError("boom")

        engine = DispatchEngine([keyword("hi", handler=boom)], store=store, sender=sender)
        with pytest.raises(RuntimeError, match="boom"):
            await engine.dispatch(make_event("hi"))

    @pytest.mark.asyncio
    async def test_store_error_aborts_dispatch(self, sender, make_event) -> None:
        broken = AsyncMock()
        broken.save.side_effect = ContextStoreError("disk gone")
        later = AsyncMock()

        async def saves(event, ctx):
            await ctx.contexts.save("flag")

        engine = DispatchEngine(
            [keyword("go", handler=saves, key="a"), keyword("go", handler=later, key="b")],
            store=broken,
            sender=sender,
        )
        with pytest.raises(ContextStoreError):
            await engine.dispatch(make_event("go"))
        later.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_contexts_scoped_to_conversation(self, store, sender, make_event) -> None:
        async def mark(event, ctx):
            await ctx.contexts.save("seen", {"by": event.person_id})

        engine = DispatchEngine([keyword("mark", handler=mark)], store=store, sender=sender)
        await engine.dispatch(make_event("mark", conversation_id="A"))
        assert await store.list_active("A") == ["seen"]
        assert await store.list_active("B") == []


class TestRetrigger:
    @pytest.mark.asyncio
    async def test_runs_target_inline(self, store, sender, make_event) -> None:
        async def chips(event, ctx):
            await ctx.reply("chips")

        async def hi(event, ctx):
            await ctx.reply("hi")
            await ctx.retrigger("chips")
            await ctx.reply("after")

        engine = DispatchEngine(
            [keyword("hi", handler=hi), keyword("chips", handler=chips)],
            store=store,
            sender=sender,
        )
        await engine.dispatch(make_event("hi"))
        assert sender.texts() == ["hi", "chips", "after"]

    @pytest.mark.asyncio
    async def test_special_trigger_reachable_by_key(self, store, sender, make_event) -> None:
        upload = AsyncMock()

        async def go(event, ctx):
            await ctx.retrigger(SpecialForm.FILE_UPLOAD.value)

        engine = DispatchEngine(
            [keyword("go", handler=go), special(SpecialForm.FILE_UPLOAD, handler=upload)],
            store=store,
            sender=sender,
        )
        event = make_event("go")
        await engine.dispatch(event)
        upload.assert_awaited_once()
        assert upload.await_args.args[0] is event

    @pytest.mark.asyncio
    async def test_unknown_key(self, store, sender, make_event) -> None:
        async def go(event, ctx):
            await ctx.retrigger("nope")

        engine = DispatchEngine([keyword("go", handler=go)], store=store, sender=sender)
        with pytest.raises(UnknownTriggerError) as info:
            await engine.dispatch(make_event("go"))
        assert info.value.key == "nope"
        assert isinstance(info.value, LookupError)

    @pytest.mark.asyncio
    async def test_self_retrigger_hits_depth_limit(self, store, sender, make_event) -> None:
        depths: list[int] = []

        async def loop(event, ctx):
            depths.append(ctx.depth)
            await ctx.retrigger("loop")

        engine = DispatchEngine(
            [keyword("loop", handler=loop)], store=store, sender=sender, max_retrigger_depth=3,
        )
        with pytest.raises(RetriggerLimitError):
            await engine.dispatch(make_event("loop"))
        assert depths == [0, 1, 2, 3]


class TestReplies:
    @pytest.mark.asyncio
    async def test_reply_random_uses_engine_rng(self, store, sender, rng, make_event) -> None:
        options = ("a", "b", "c")

        async def pick(event, ctx):
            await ctx.reply_random(options)

        engine = DispatchEngine([keyword("pick", handler=pick)], store=store, sender=sender, rng=rng)
        await engine.dispatch(make_event("pick"))
        assert sender.texts()[0] in options

    @pytest.mark.asyncio
    async def test_fetch_without_fetcher(self, store, sender, make_event) -> None:
        async def fetch(event, ctx):
            await ctx.fetch_attachment(event.attachment_refs[0])

        from app.xlsbot.dispatch.models import AttachmentRef

        engine = DispatchEngine(
            [special(SpecialForm.FILE_UPLOAD, handler=fetch)], store=store, sender=sender,
        )
        event = make_event(attachment_refs=(AttachmentRef("data:,x"),))
        with pytest.raises(RuntimeError, match="fetcher"):
            await engine.dispatch(event)

    @pytest.mark.asyncio
    async def test_help_entries(self, store, sender, make_event) -> None:
        entries = []

        async def help_(event, ctx):
            entries.extend(ctx.help_entries())

        engine = DispatchEngine(
            [keyword("help", handler=help_, help_text="Lists things")], store=store, sender=sender,
        )
        await engine.dispatch(make_event("help"))
        assert entries == [("help", "Lists things")]


class TestPersonData:
    @pytest.mark.asyncio
    async def test_shared_across_conversations(self, store, sender, make_event) -> None:
        seen = []

        async def save(event, ctx):
            await ctx.save_data("prefs", {"theme": "dark"})

        async def load(event, ctx):
            seen.append(await ctx.get_data("prefs"))

        engine = DispatchEngine(
            [keyword("save", handler=save), keyword("load", handler=load)], store=store, sender=sender,
        )
        await engine.dispatch(make_event("save", conversation_id="room-a"))
        await engine.dispatch(make_event("load", conversation_id="room-b"))
        await engine.dispatch(make_event("load", conversation_id="room-b", person_id="user-2"))
        assert seen == [{"theme": "dark"}, None]
        assert await store.list_active("room-a") == []
        assert await store.list_active(person_scope("user-1")) == ["prefs"]

    @pytest.mark.asyncio
    async def test_delete(self, store, sender, make_event) -> None:
        async def cycle(event, ctx):
            await ctx.save_data("k", 1)
            await ctx.delete_data("k")
            assert await ctx.get_data("k") is None

        engine = DispatchEngine([keyword("go", handler=cycle)], store=store, sender=sender)
        await engine.dispatch(make_event("go"))
        assert await store.list_active(person_scope("user-1")) == []

    @pytest.mark.asyncio
    async def test_needs_person_id(self, store, sender, make_event) -> None:
        async def save(event, ctx):
            await ctx.save_data("k", 1)

        engine = DispatchEngine([keyword("go", handler=save)], store=store, sender=sender)
        with pytest.raises(ValueError, match="person_id"):
            await engine.dispatch(make_event("go", person_id=""))


class TestFetchJson:
    @pytest.mark.asyncio
    async def test_decodes_body(self, store, sender, make_event) -> None:
        got = []

        async def load(event, ctx):
            got.append(await ctx.fetch_json('data:application/json,{"n":%201}'))

        engine = DispatchEngine(
            [keyword("go", handler=load)], store=store, sender=sender,
            fetcher=AttachmentFetcher(max_bytes=1024),
        )
        await engine.dispatch(make_event("go"))
        assert got == [{"n": 1}]

    @pytest.mark.asyncio
    async def test_not_json(self, store, sender, make_event) -> None:
        async def load(event, ctx):
            await ctx.fetch_json("data:text/plain,hello")

        engine = DispatchEngine(
            [keyword("go", handler=load)], store=store, sender=sender,
            fetcher=AttachmentFetcher(max_bytes=1024),
        )
        with pytest.raises(FetchError, match="not JSON"):
            await engine.dispatch(make_event("go"))


class TestSubmit:
    @pytest.mark.asyncio
    async def test_failure_in_one_conversation_does_not_affect_another(
        self, store, sender, make_event,
    ) -> None:
        async def handler(event, ctx):
            if event.conversation_id == "bad":
                raise RuntimeError("bad conversation")
            await asyncio.sleep(0)
            await ctx.reply(FileAttachment(filename="x.txt", data=b"x"))

        engine = DispatchEngine([keyword("go", handler=handler)], store=store, sender=sender)
        bad = engine.submit(make_event("go", conversation_id="bad"))
        good = engine.submit(make_event("go", conversation_id="good"))
        await engine.drain()
        assert bad.exception() is not None
        assert good.exception() is None
        assert [cid for cid, _ in sender.sent] == ["good"]
        assert engine.in_flight == 0
