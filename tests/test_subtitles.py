from fakes import ManualClock
from mock_interview.orchestrator.schemas import ConversationMessage, Speaker
from mock_interview.voice.subtitles import SubtitleQueue, chunk_message


def _message(text: str, message_id: str = "m1") -> ConversationMessage:
    return ConversationMessage(id=message_id, speaker=Speaker.RECRUITER, text=text, timestamp_ms=0)


def test_chunks_close_at_sentence_ends() -> None:
    chunks = chunk_message(_message("Hello there. How are you today?"))

    assert [c.text for c in chunks] == ["Hello there.", "How are you today?"]
    assert [c.id for c in chunks] == ["m1-0", "m1-1"]
    assert all(c.speaker == Speaker.RECRUITER for c in chunks)
    assert [c.duration_ms for c in chunks] == [1500, 1500]


def test_long_text_is_cut_on_the_word_that_overflows() -> None:
    chunks = chunk_message(_message(" ".join(["alpha"] * 15)))

    assert [len(c.text) for c in chunks] == [65, 23]
    assert chunks[0].duration_ms == 65 * 60
    assert chunks[1].duration_ms == 1500


def test_queue_shows_chunks_in_order_with_a_gap(clock: ManualClock) -> None:
    queue = SubtitleQueue(clock)

    queue.push_message(_message("Hello there. How are you today?"))
    assert queue.current.text == "Hello there."
    assert queue.pending == 1

    queue.push_message(_message("Fine.", message_id="m2"))
    assert queue.current.text == "Hello there."
    assert queue.pending == 2

    clock.advance(1_500)
    assert queue.current is None
    clock.advance(200)
    assert queue.current.text == "How are you today?"

    clock.advance(1_700)
    assert queue.current.id == "m2-0"

    clock.advance(1_700)
    assert queue.current is None
    assert queue.pending == 0

    queue.push_message(_message("Next one.", message_id="m3"))
    assert queue.current.id == "m3-0"


def test_clear_drops_everything(clock: ManualClock) -> None:
    queue = SubtitleQueue(clock)
    queue.push_message(_message("One. Two. Three."))

    queue.clear()
    clock.advance(10_000)

    assert queue.current is None
    assert queue.pending == 0
