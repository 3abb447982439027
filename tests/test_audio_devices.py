from gst_recorder import audio_devices
from gst_recorder.audio_devices import AudioSource, SourceInventory, parse_source_rows, pick_source


PACTL_OUTPUT = """\
47\talsa_output.pci-0000_00_1f.3.analog-stereo.monitor\tPipeWire\ts32le 2ch 48000Hz\tSUSPENDED
48\talsa_input.pci-0000_00_1f.3.analog-stereo\tPipeWire\ts32le 2ch 48000Hz\tIDLE
52\talsa_input.usb-Blue_Yeti-00.analog-stereo\tPipeWire\ts16le 2ch 48000Hz\tRUNNING
60\tbluez_output.AA_BB.1.monitor\tPipeWire\ts16le 2ch 48000Hz\tRUNNING
"""


def _runner(output: str):
    calls = []

    def run(command, timeout):
        calls.append((tuple(command), timeout))
        return output

    run.calls = calls
    return run


def test_parse_source_rows_reads_name_and_state():
    sources = parse_source_rows(PACTL_OUTPUT + "\n   \n")

    assert [s.name for s in sources] == [
        "alsa_output.pci-0000_00_1f.3.analog-stereo.monitor",
        "alsa_input.pci-0000_00_1f.3.analog-stereo",
        "alsa_input.usb-Blue_Yeti-00.analog-stereo",
        "bluez_output.AA_BB.1.monitor",
    ]
    assert sources[0].state == "SUSPENDED"
    assert sources[0].is_monitor is True
    assert sources[1].is_monitor is False
    assert sources[2].index == "52"
    assert sources[2].driver == "PipeWire"


def test_parse_source_rows_skips_rows_without_name():
    assert parse_source_rows("7\n") == []
    assert parse_source_rows("") == []


def test_state_is_upper_cased():
    sources = parse_source_rows("1 mic.input module running\n")
    assert sources[0].state == "RUNNING"


def test_pick_source_priority():
    running = AudioSource("b", "RUNNING")
    idle = AudioSource("a", "IDLE")
    suspended = AudioSource("c", "SUSPENDED")

    assert pick_source([idle, suspended, running]) == "b"
    assert pick_source([suspended, idle]) == "a"
    assert pick_source([suspended, AudioSource("d", "SUSPENDED")]) == "c"
    assert pick_source([]) == ""


def test_pick_source_takes_first_of_equal_state():
    assert pick_source([AudioSource("x", "IDLE"), AudioSource("y", "IDLE")]) == "x"


def test_inventory_splits_mics_and_monitors():
    inventory = SourceInventory(timeout=1.5, runner=_runner(PACTL_OUTPUT))

    listing = inventory.list_sources()

    assert listing.mic_sources == [
        "alsa_input.pci-0000_00_1f.3.analog-stereo",
        "alsa_input.usb-Blue_Yeti-00.analog-stereo",
    ]
    assert listing.monitor_sources == [
        "alsa_output.pci-0000_00_1f.3.analog-stereo.monitor",
        "bluez_output.AA_BB.1.monitor",
    ]
    assert listing.as_dict()["micSources"] == listing.mic_sources


def test_inventory_picks_per_pool():
    runner = _runner(PACTL_OUTPUT)
    inventory = SourceInventory(timeout=1.5, runner=runner)

    assert inventory.pick_mic() == "alsa_input.usb-Blue_Yeti-00.analog-stereo"
    assert inventory.pick_monitor() == "bluez_output.AA_BB.1.monitor"
    # Every selection re-queries the audio server.
    assert len(runner.calls) == 2
    assert runner.calls[0] == (("pactl", "list", "short", "sources"), 1.5)


def test_suspended_only_monitor_falls_through_to_first():
    output = "3\tsink.monitor\tPipeWire\ts16le 2ch 48000Hz\tSUSPENDED\n"
    assert audio_devices.pick_monitor(runner=_runner(output)) == "sink.monitor"
    assert audio_devices.pick_mic(runner=_runner(output)) == ""


def test_failed_query_yields_empty(monkeypatch):
    def boom(command, timeout):
        raise OSError("pactl vanished")

    assert audio_devices.query_sources(runner=boom) == []
    assert SourceInventory(runner=boom).pick_mic() == ""


def test_run_listing_handles_missing_binary(monkeypatch):
    def missing(*args, **kwargs):
        raise FileNotFoundError("pactl")

    monkeypatch.setattr(audio_devices.subprocess, "run", missing)
    assert audio_devices._run_listing(["pactl"], 1.0) == ""


def test_run_listing_handles_timeout(monkeypatch):
    def slow(*args, **kwargs):
        raise audio_devices.subprocess.TimeoutExpired(cmd="pactl", timeout=kwargs["timeout"])

    monkeypatch.setattr(audio_devices.subprocess, "run", slow)
    assert audio_devices._run_listing(["pactl"], 0.1) == ""


def test_run_listing_ignores_failed_exit(monkeypatch):
    class Result:
        returncode = 1
        stdout = "1\tmic\tx\tRUNNING\n"

    monkeypatch.setattr(audio_devices.subprocess, "run", lambda *a, **k: Result())
    assert audio_devices._run_listing(["pactl"], 1.0) == ""


def test_run_listing_decodes_leniently(monkeypatch):
    seen = {}

    class Result:
        returncode = 0
        stdout = "3\talsa_input.mic�\tPipeWire\ts16le 1ch 48000Hz\tRUNNING\n"

    def run(*args, **kwargs):
        seen.update(kwargs)
        return Result()

    monkeypatch.setattr(audio_devices.subprocess, "run", run)

    output = audio_devices._run_listing(["pactl"], 1.0)

    assert seen["errors"] == "replace"
    assert parse_source_rows(output)[0].name == "alsa_input.mic�"


def test_undecodable_output_yields_empty():
    def garbled(command, timeout):
        return b"3\talsa_input.mic\xff\tRUNNING\n".decode("utf-8")

    assert audio_devices.query_sources(runner=garbled) == []
    assert SourceInventory(runner=garbled).pick_mic() == ""
