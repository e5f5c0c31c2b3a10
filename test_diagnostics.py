from diagnostics import DiagnosticChannel, parse_stack_location, selection_range
from models import Diagnostic


def error_payload(message="boom", stack=""):
    return {"type": "playground_error", "message": message, "stack": stack}


class FaultCounter:
    def __init__(self):
        self.faults = []

    def __call__(self, diagnostic):
        self.faults.append(diagnostic)


def test_live_sender_message_becomes_diagnostic():
    counter = FaultCounter()
    channel = DiagnosticChannel(on_runtime_fault=counter)
    channel.open("run-1", script_line_offset=20, script_line_count=3)

    accepted = channel.deliver("run-1", error_payload("boom", "Error: boom\n    at about:srcdoc:22:5"))

    assert accepted
    assert channel.current == Diagnostic(
        message="boom", line=2, column=5, stack="Error: boom\n    at about:srcdoc:22:5"
    )
    assert len(counter.faults) == 1


def test_each_message_counts_and_last_one_wins():
    counter = FaultCounter()
    channel = DiagnosticChannel(on_runtime_fault=counter)
    channel.open("run-1")

    channel.deliver("run-1", error_payload("first"))
    channel.deliver("run-1", error_payload("second"))

    assert channel.current.message == "second"
    assert channel.current.stack is None
    assert len(counter.faults) == 2


def test_stale_and_foreign_senders_are_ignored():
    counter = FaultCounter()
    channel = DiagnosticChannel(on_runtime_fault=counter)
    channel.open("run-1")
    channel.open("run-2")

    assert not channel.deliver("run-1", error_payload("late"))
    assert not channel.deliver("somebody-else", error_payload("spoof"))
    assert channel.current is None
    assert counter.faults == []


def test_closed_channel_accepts_nothing():
    counter = FaultCounter()
    channel = DiagnosticChannel(on_runtime_fault=counter)
    channel.open("run-1")
    channel.close()

    assert not channel.deliver("run-1", error_payload())
    assert counter.faults == []


def test_unrecognised_shapes_are_dropped():
    counter = FaultCounter()
    channel = DiagnosticChannel(on_runtime_fault=counter)
    channel.open("run-1")

    for payload in [
        {"type": "something_else", "message": "x", "stack": ""},
        {"type": "playground_error"},
        "playground_error",
        None,
        [1, 2, 3],
    ]:
        assert not channel.deliver("run-1", payload)

    assert channel.current is None
    assert counter.faults == []


def test_post_and_clear():
    channel = DiagnosticChannel()
    channel.post(Diagnostic(message="Possible CSS brace mismatch detected"))
    assert channel.current.message == "Possible CSS brace mismatch detected"

    channel.clear()
    assert channel.current is None


def test_stack_location_skips_wrapper_frames():
    stack = (
        "Error: boom\n"
        "    at report (about:srcdoc:15:3)\n"
        "    at about:srcdoc:31:9"
    )
    assert parse_stack_location(stack, script_line_offset=29, script_line_count=4) == (2, 9)


def test_stack_location_without_user_frames():
    assert parse_stack_location("", 10, 2) == (None, None)
    assert parse_stack_location(None, 10, 2) == (None, None)
    assert parse_stack_location("Error\n    at about:srcdoc:3:1", 10, 2) == (None, None)
    assert parse_stack_location("Error\n    at about:srcdoc:13:1", 10, 2) == (None, None)


def test_selection_range_counts_newlines():
    source = "ab\ncde\nf"

    assert selection_range(source, 1, 1) == (0, 2)
    assert selection_range(source, 2, 2) == (4, 6)
    assert selection_range(source, 3) == (7, 8)


def test_selection_range_clamps_out_of_range_positions():
    source = "ab\ncde"

    assert selection_range(source, 9, 1) == (3, 6)
    assert selection_range(source, 1, 50) == (2, 2)
