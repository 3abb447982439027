import io

from gst_stand import StatusScreen, format_ms, safe_stat_size
from gst_recorder.worker_protocol import ErrorEvent, LevelEvent


def test_format_ms():
    assert format_ms(0) == "00:00.000"
    assert format_ms(61_234) == "01:01.234"
    assert format_ms(-5) == "00:00.000"


def test_safe_stat_size(tmp_path):
    path = tmp_path / "a.ogg"
    path.write_bytes(b"12345")
    assert safe_stat_size(str(path)) == 5
    assert safe_stat_size(str(tmp_path / "missing.ogg")) == 0


def test_status_screen_tracks_levels_and_errors(tmp_path):
    out = io.StringIO()
    screen = StatusScreen(str(tmp_path / "x.ogg"), out, clear=True)

    screen.on_event(LevelEvent(-12.3456, None, ts=1))
    screen.on_event(ErrorEvent("GStreamer error", {"message": "boom"}))
    screen.render()
    screen.render()

    lines = screen.lines()
    assert lines[1] == "Mic level: -12.346"
    assert lines[2] == "Monitor level: -"
    assert lines[3] == "Size: 0"
    assert len(screen.errors) == 1
    assert out.getvalue().count("\x1b[5F\x1b[0J") == 1
