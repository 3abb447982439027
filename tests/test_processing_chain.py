import pytest

from gst_recorder.processing_chain import (
    MissingCapabilityError,
    ProcessingMode,
    require_chain,
    resolve_chain,
)


@pytest.mark.parametrize("capable", [True, False])
def test_none_is_always_passthrough(capable):
    chain = resolve_chain("none", capable)
    assert chain.passthrough is True
    assert chain.describe() == "identity"


@pytest.mark.parametrize("mode", ["normalize", "voice"])
def test_enhanced_modes_fall_back_without_capability(mode):
    chain = resolve_chain(mode, False)
    assert chain.passthrough is True
    assert chain.mode is ProcessingMode(mode)


def test_normalize_chain_contents():
    text = resolve_chain("normalize", True).describe()
    assert text.startswith(
        "audioconvert ! audioresample ! audio/x-raw,format=S16LE,channels=1,rate=48000 ! webrtcdsp"
    )
    assert "gain-control=1" in text
    assert "limiter=1" in text
    assert "noise-suppression" not in text
    assert "high-pass-filter" not in text


def test_voice_chain_extends_normalize():
    voice = resolve_chain("voice", True).describe()
    assert "noise-suppression=1 noise-suppression-level=3" in voice
    assert "high-pass-filter=1" in voice
    assert "gain-control=1 limiter=1 target-level-dbfs=1 compression-gain-db=24" in voice


def test_resolution_is_deterministic():
    assert resolve_chain("voice", True) == resolve_chain(ProcessingMode.VOICE, True)


@pytest.mark.parametrize("raw", ["", None, "loud", "VOICE "])
def test_mode_parse(raw):
    expected = ProcessingMode.VOICE if raw == "VOICE " else ProcessingMode.NONE
    assert ProcessingMode.parse(raw) is expected


def test_unknown_mode_is_passthrough():
    assert resolve_chain("karaoke", True).passthrough is True


def test_require_chain_is_strict():
    with pytest.raises(MissingCapabilityError):
        require_chain("voice", False)
    assert require_chain("none", False).passthrough is True
    assert require_chain("normalize", True).passthrough is False
