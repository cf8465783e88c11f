"""Tests for CommandController routing, authorization and chat replies."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import pytest

from fakes import FakeAnswerer, FakeCapture, FakeExtractor, FakeReplier, message

from controllers.command_controller import NETWORK_RETRY_TEXT, CommandController
from models.errors import TransportDeliveryError
from services.batch_pipeline import BatchPipeline
from services.openai.text_extractor import EXTRACTION_DISABLED_TEXT


class FakeTransport:
    """Records Bot API calls; optionally fails the first ``fail_times`` sends."""

    def __init__(self, fail_times: int = 0, transient: bool = True) -> None:
        self.sent: List[tuple] = []
        self.fail_times = fail_times
        self.transient = transient

    async def send_message(self, chat_id: str, text: str) -> dict:
        if self.fail_times:
            self.fail_times -= 1
            raise TransportDeliveryError("connect timeout", transient=self.transient)
        self.sent.append(("text", chat_id, text))
        return {"message_id": len(self.sent)}

    async def send_photo(self, chat_id: str, path: Path, caption: Optional[str] = None) -> dict:
        self.sent.append(("photo", chat_id, caption))
        return {}

    async def send_document(self, chat_id: str, path: Path, caption: Optional[str] = None) -> dict:
        self.sent.append(("document", chat_id))
        return {}

    async def delete_message(self, chat_id: str, message_id: int) -> bool:
        self.sent.append(("delete", chat_id, message_id))
        return True


@pytest.fixture
def capture(tmp_path: Path) -> FakeCapture:
    return FakeCapture(tmp_path)


def build_controller(settings, store, capture, extractor=None, answerer=None, transport=None) -> CommandController:
    extractor = extractor or FakeExtractor()
    answerer = answerer or FakeAnswerer("final answer")
    pipeline = BatchPipeline(store, extractor, answerer)
    return CommandController(
        settings,
        store,
        capture,
        extractor,
        answerer,
        pipeline,
        transport or FakeTransport(),
        network_retry_delay=0,
    )


@pytest.mark.asyncio
class TestAuthorization:
    async def test_unknown_chat_is_silently_dropped(self, settings, store, capture) -> None:
        controller = build_controller(settings, store, capture)
        replier = FakeReplier()

        for text in ("1", "0", "ss", "/help"):
            await controller.handle(message(text, chat_id="999"), replier)

        assert replier.events == []
        assert len(store) == 0
        assert capture.count == 0


@pytest.mark.asyncio
class TestStacking:
    async def test_digit_captures_into_matching_slot(self, settings, store, capture) -> None:
        controller = build_controller(settings, store, capture)
        replier = FakeReplier()

        await controller.handle(message("3"), replier)

        session = store.get("7")
        assert session is not None
        assert session.slots[2] == capture.directory / "capture-1.jpg"
        assert replier.texts[0] == "📸 Taking screenshot #3..."
        assert ("photo", session.slots[2], "Screenshot #3") in replier.events
        assert "1 screenshot(s) stored" in replier.texts[-1]

    async def test_repeated_digit_overwrites_and_releases(self, settings, store, capture, releaser) -> None:
        controller = build_controller(settings, store, capture)
        replier = FakeReplier()

        await controller.handle(message("2"), replier)
        await controller.handle(message("2"), replier)

        session = store.get("7")
        assert session.slots[1] == capture.directory / "capture-2.jpg"
        assert releaser.released == [capture.directory / "capture-1.jpg"]
        assert session.capture_count() == 1

    async def test_capture_failure_is_reported(self, settings, store, capture) -> None:
        controller = build_controller(settings, store, capture)
        capture.fail = True
        replier = FakeReplier()

        await controller.handle(message("4"), replier)

        assert replier.texts[-1].startswith("❌ Failed to process command 4:")
        assert store.get("7").is_empty()

    async def test_zero_without_captures(self, settings, store, capture) -> None:
        controller = build_controller(settings, store, capture)
        replier = FakeReplier()

        await controller.handle(message("0"), replier)

        assert replier.texts == ["❌ No screenshots to process. Take screenshots first using numbers 1-9."]

    async def test_zero_runs_batch_and_clears_session(self, settings, store, capture) -> None:
        answerer = FakeAnswerer("final answer")
        controller = build_controller(settings, store, capture, answerer=answerer)
        replier = FakeReplier()
        await controller.handle(message("1"), replier)
        await controller.handle(message("5"), replier)
        replier.events.clear()

        await controller.handle(message("0"), replier)

        texts = replier.texts
        assert texts[0].startswith("⏳ Starting to process 2 screenshots")
        assert "final answer" in texts
        assert any("• Total screenshots: 2" in text for text in texts)
        assert texts[-1].startswith("✅ Processing complete!")
        processing_id = replier.events[0][2]
        assert replier.events[-1] == ("delete", processing_id)
        assert len(answerer.calls) == 1
        assert store.get("7").is_empty()

    async def test_combined_text_echo_only_when_answering(self, settings, store, capture) -> None:
        replier = FakeReplier()
        for enabled in (True, False):
            controller = build_controller(settings, store, capture, answerer=FakeAnswerer(enabled=enabled))
            await controller.handle(message("1"), replier)
            replier.events.clear()

            await controller.handle(message("0"), replier)

            echoed = any(text.startswith("✅ All Extracted Text:") for text in replier.texts)
            assert echoed is enabled

    async def test_users_have_independent_sessions(self, settings, store, capture) -> None:
        controller = build_controller(settings, store, capture)
        replier = FakeReplier()

        await controller.handle(message("1", user_id="a"), replier)
        await controller.handle(message("2", user_id="b"), replier)

        assert store.get("a").slots[0] is not None
        assert store.get("a").slots[1] is None
        assert store.get("b").slots[1] is not None
        assert store.get("b").slots[0] is None

    async def test_status_lists_slots(self, settings, store, capture) -> None:
        controller = build_controller(settings, store, capture)
        replier = FakeReplier()
        await controller.handle(message("6"), replier)
        await controller.handle(message("2"), replier)

        await controller.handle(message("/status"), replier)

        assert replier.texts[-1].startswith("📊 2 screenshot(s) stored: #2, #6")


@pytest.mark.asyncio
class TestSingleShot:
    async def test_single_shot_delivers_text_and_answer_then_cleans_up(self, settings, store, capture) -> None:
        controller = build_controller(settings, store, capture, answerer=FakeAnswerer("B"))
        replier = FakeReplier()

        await controller.handle(message("SS"), replier)

        path = capture.directory / "capture-1.jpg"
        kinds = [event[0] for event in replier.events]
        assert kinds == ["text", "photo", "document", "text", "text", "delete"]
        assert replier.texts[1] == "Extracted text:\n\ntext of capture-1.jpg"
        assert replier.texts[2] == "Answer:\n\nB"
        assert not path.exists()
        assert len(store) == 0

    async def test_single_shot_extraction_failure_skips_answer(self, settings, store, capture) -> None:
        answerer = FakeAnswerer()
        extractor = FakeExtractor(failing={"capture-1.jpg"})
        controller = build_controller(settings, store, capture, extractor=extractor, answerer=answerer)
        replier = FakeReplier()

        await controller.handle(message("ss"), replier)

        assert "Extracted text:\n\nFailed to extract text" in replier.texts
        assert answerer.calls == []

    async def test_single_shot_with_extraction_disabled_still_answers(self, settings, store, capture) -> None:
        answerer = FakeAnswerer("B")
        extractor = FakeExtractor(enabled=False)
        controller = build_controller(settings, store, capture, extractor=extractor, answerer=answerer)
        replier = FakeReplier()

        await controller.handle(message("ss"), replier)

        assert not any(text.startswith("Extracted text:") for text in replier.texts)
        assert answerer.calls == [EXTRACTION_DISABLED_TEXT]
        assert "Answer:\n\nB" in replier.texts

    async def test_single_shot_capture_failure(self, settings, store, capture) -> None:
        controller = build_controller(settings, store, capture)
        capture.fail = True
        replier = FakeReplier()

        await controller.handle(message("ss"), replier)

        assert replier.texts[-1] == "Failed to process screenshot."

    async def test_keyword_inside_other_words_is_ignored(self, settings, store, capture) -> None:
        controller = build_controller(settings, store, capture)
        replier = FakeReplier()

        await controller.handle(message("please process this"), replier)
        await controller.handle(message("12"), replier)

        assert replier.events == []
        assert capture.count == 0


@pytest.mark.asyncio
class TestDispatch:
    def _update(self, text: str, chat_id: int = 42) -> dict:
        return {
            "update_id": 10,
            "message": {
                "message_id": 5,
                "chat": {"id": chat_id, "type": "private"},
                "from": {"id": 7, "username": "tester"},
                "text": text,
            },
        }

    async def test_dispatch_replies_through_transport(self, settings, store, capture) -> None:
        transport = FakeTransport()
        controller = build_controller(settings, store, capture, transport=transport)

        await controller.dispatch(self._update("/help"))

        assert transport.sent[0][0:2] == ("text", "42")

    async def test_dispatch_ignores_malformed_and_non_text(self, settings, store, capture) -> None:
        transport = FakeTransport()
        controller = build_controller(settings, store, capture, transport=transport)

        await controller.dispatch({"nope": True})
        await controller.dispatch({"update_id": 3})

        assert transport.sent == []

    async def test_transient_delivery_error_sends_one_retry_notice(self, settings, store, capture) -> None:
        transport = FakeTransport(fail_times=1)
        controller = build_controller(settings, store, capture, transport=transport)

        await controller.dispatch(self._update("/help"))

        assert transport.sent == [("text", "42", NETWORK_RETRY_TEXT)]

    async def test_permanent_delivery_error_is_only_logged(self, settings, store, capture) -> None:
        transport = FakeTransport(fail_times=1, transient=False)
        controller = build_controller(settings, store, capture, transport=transport)

        await controller.dispatch(self._update("/help"))

        assert transport.sent == []
