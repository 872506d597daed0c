import asyncio
from datetime import datetime, timezone

from telegram import CallbackQuery, Chat, InlineQuery, Message, PreCheckoutQuery, Update, User

from bot_dispatch.kinds import HandlerDescriptor, UpdateKind
from bot_dispatch.registry import Registry
from bot_dispatch.router import Router, classify, extract_key

USER = User(id=1, first_name="Ann", is_bot=False)
CHAT = Chat(id=1, type="private")


def make_message(text=None, message_id=1):
    return Message(
        message_id=message_id,
        date=datetime(2024, 1, 1, tzinfo=timezone.utc),
        chat=CHAT,
        from_user=USER,
        text=text,
    )


def make_callback(data):
    return CallbackQuery(id="cb-1", from_user=USER, chat_instance="instance", data=data)


def make_inline(query_id):
    return InlineQuery(id=query_id, from_user=USER, query="cats", offset="")


def make_pre_checkout():
    return PreCheckoutQuery(
        id="pc-1", from_user=USER, currency="USD", total_amount=100, invoice_payload="order-1"
    )


class Recorder:
    """Collects handler calls and hook reports."""

    def __init__(self):
        self.calls = []
        self.errors = []

    def handler(self, name, fail=False):
        async def invoke(client, payload, stopping):
            self.calls.append((name, payload))
            if fail:
                raise RuntimeError(f"{name} failed")

        return invoke

    async def hook(self, client, error, kind):
        self.errors.append((kind, str(error)))


def make_router(recorder, registry):
    return Router(registry, client=object(), stopping=asyncio.Event(), error_hook=recorder.hook)


def route(router, update):
    return asyncio.run(router.route(update))


def test_command_prefix_invokes_handler_with_full_message():
    recorder = Recorder()
    registry = Registry()
    registry.register(HandlerDescriptor(UpdateKind.MESSAGE, recorder.handler("start"), key="/start"))
    message = make_message("/start extra")

    kind = route(make_router(recorder, registry), Update(update_id=1, message=message))

    assert kind is UpdateKind.MESSAGE
    assert recorder.calls == [("start", message)]
    assert recorder.errors == []


def test_callback_prefix_match_and_silent_miss():
    recorder = Recorder()
    registry = Registry()
    registry.register(HandlerDescriptor(UpdateKind.CALLBACK, recorder.handler("act"), key="act-"))
    router = make_router(recorder, registry)

    route(router, Update(update_id=1, callback_query=make_callback("act-42")))
    route(router, Update(update_id=2, callback_query=make_callback("xyz")))

    assert [name for name, _ in recorder.calls] == ["act"]
    assert recorder.errors == []


def test_inline_queries_are_matched_by_id():
    recorder = Recorder()
    registry = Registry()
    registry.register(HandlerDescriptor(UpdateKind.INLINE, recorder.handler("search"), key="q-"))
    query = make_inline("q-17")

    route(make_router(recorder, registry), Update(update_id=1, inline_query=query))

    assert recorder.calls == [("search", query)]


def test_missing_pre_checkout_handler_drops_silently():
    recorder = Recorder()

    kind = route(
        make_router(recorder, Registry()),
        Update(update_id=1, pre_checkout_query=make_pre_checkout()),
    )

    assert kind is UpdateKind.PRE_CHECKOUT
    assert recorder.calls == []
    assert recorder.errors == []


def test_pre_checkout_handler_is_invoked():
    recorder = Recorder()
    registry = Registry()
    registry.register(HandlerDescriptor(UpdateKind.PRE_CHECKOUT, recorder.handler("pay")))
    query = make_pre_checkout()

    route(make_router(recorder, registry), Update(update_id=1, pre_checkout_query=query))

    assert recorder.calls == [("pay", query)]


def test_unmatched_handlers_all_run_in_order_despite_failure():
    recorder = Recorder()
    registry = Registry()
    registry.register(HandlerDescriptor(UpdateKind.UNMATCHED, recorder.handler("h1", fail=True)))
    registry.register(HandlerDescriptor(UpdateKind.UNMATCHED, recorder.handler("h2")))
    update = Update(update_id=7)

    kind = route(make_router(recorder, registry), update)

    assert kind is UpdateKind.UNMATCHED
    assert recorder.calls == [("h1", update), ("h2", update)]
    assert recorder.errors == [(UpdateKind.UNMATCHED, "h1 failed")]


def test_edited_message_handlers_run_concurrently():
    registry = Registry()
    released = asyncio.Event()
    finished = []

    async def waiter(client, message, stopping):
        await released.wait()
        finished.append("waiter")

    async def releaser(client, message, stopping):
        released.set()
        finished.append("releaser")

    registry.register(HandlerDescriptor(UpdateKind.EDITED_MESSAGE, waiter))
    registry.register(HandlerDescriptor(UpdateKind.EDITED_MESSAGE, releaser))
    router = Router(registry, client=None, stopping=asyncio.Event())
    update = Update(update_id=1, edited_message=make_message("changed"))

    async def scenario():
        await asyncio.wait_for(router.route(update), timeout=1)

    asyncio.run(scenario())

    assert finished == ["releaser", "waiter"]


def test_handler_failure_is_reported_once_and_routing_continues():
    recorder = Recorder()
    registry = Registry()
    registry.register(HandlerDescriptor(UpdateKind.MESSAGE, recorder.handler("boom", fail=True), key="/boom"))
    registry.register(HandlerDescriptor(UpdateKind.MESSAGE, recorder.handler("ok"), key="/ok"))
    router = make_router(recorder, registry)

    route(router, Update(update_id=1, message=make_message("/boom")))
    route(router, Update(update_id=2, message=make_message("/ok", message_id=2)))

    assert [name for name, _ in recorder.calls] == ["boom", "ok"]
    assert recorder.errors == [(UpdateKind.MESSAGE, "boom failed")]


def test_failing_error_hook_is_contained():
    registry = Registry()

    async def failing(client, payload, stopping):
        raise ValueError("handler")

    async def broken_hook(client, error, kind):
        raise RuntimeError("hook")

    registry.register(HandlerDescriptor(UpdateKind.MESSAGE, failing, key="/x"))
    router = Router(registry, client=None, stopping=asyncio.Event(), error_hook=broken_hook)

    assert route(router, Update(update_id=1, message=make_message("/x"))) is UpdateKind.MESSAGE


def test_default_hook_logs_handler_errors(caplog):
    registry = Registry()

    async def failing(client, payload, stopping):
        raise ValueError("kaboom")

    registry.register(HandlerDescriptor(UpdateKind.MESSAGE, failing, key="/x"))
    router = Router(registry, client=None, stopping=asyncio.Event())

    route(router, Update(update_id=1, message=make_message("/x")))

    assert "kaboom" in caplog.text


def test_keyed_miss_does_not_fall_back_to_unmatched_handlers():
    recorder = Recorder()
    registry = Registry()
    registry.register(HandlerDescriptor(UpdateKind.UNMATCHED, recorder.handler("fallback")))

    route(make_router(recorder, registry), Update(update_id=1, message=make_message("/unknown")))

    assert recorder.calls == []


def test_messages_without_text_are_dropped():
    recorder = Recorder()
    registry = Registry()
    registry.register(HandlerDescriptor(UpdateKind.MESSAGE, recorder.handler("any"), key="/"))

    kind = route(make_router(recorder, registry), Update(update_id=1, message=make_message(None)))

    assert kind is UpdateKind.MESSAGE
    assert recorder.calls == []


def test_stopping_event_is_passed_to_handlers():
    registry = Registry()
    seen = []

    async def handler(client, message, stopping):
        seen.append((client, stopping))

    registry.register(HandlerDescriptor(UpdateKind.MESSAGE, handler, key="/s"))
    client = object()
    stopping = asyncio.Event()
    router = Router(registry, client=client, stopping=stopping)

    route(router, Update(update_id=1, message=make_message("/s")))

    assert seen == [(client, stopping)]


def test_closed_router_drops_updates():
    recorder = Recorder()
    registry = Registry()
    registry.register(HandlerDescriptor(UpdateKind.UNMATCHED, recorder.handler("h")))
    router = make_router(recorder, registry)
    router.close()

    assert route(router, Update(update_id=1)) is None
    assert recorder.calls == []


def test_classification_follows_fixed_precedence():
    message = make_message("/start")
    edited = make_message("edited", message_id=2)
    query = make_callback("act-1")

    assert classify(Update(update_id=1, message=message, callback_query=query)) == (
        UpdateKind.MESSAGE,
        message,
    )
    assert classify(Update(update_id=2, edited_message=edited, callback_query=query)) == (
        UpdateKind.EDITED_MESSAGE,
        edited,
    )
    assert classify(
        Update(update_id=3, inline_query=make_inline("i"), pre_checkout_query=make_pre_checkout())
    )[0] is UpdateKind.INLINE

    empty = Update(update_id=4)
    assert classify(empty) == (UpdateKind.UNMATCHED, empty)


def test_extract_key_reads_kind_specific_field():
    assert extract_key(UpdateKind.MESSAGE, make_message("/help")) == "/help"
    assert extract_key(UpdateKind.CALLBACK, make_callback("act-9")) == "act-9"
    assert extract_key(UpdateKind.INLINE, make_inline("abc")) == "abc"
    assert extract_key(UpdateKind.PRE_CHECKOUT, make_pre_checkout()) is None
