import os

import pytest

from conftest import KEY_URI_A, KEY_URI_B, SEGMENT_BASE, ZERO_IV, FakeHttpClient, encrypt
from pluto_recorder.downloader.m3u8_parser import parse_media
from pluto_recorder.downloader.segment_decryptor import (
    DecryptionError,
    SegmentDecryptor,
    decrypt_segment,
    normalize_key_bytes,
    segment_iv,
)
from pluto_recorder.models import KeyRecord, MediaPlaylist, MediaSegment
from pluto_recorder.utils.http_client import DownloadError

ZERO_KEY = bytes(16)
KEY_B = bytes(range(16))


def playlist_text(entries) -> str:
    lines = ["#EXTM3U", "#EXT-X-MEDIA-SEQUENCE:0"]
    for entry in entries:
        if entry.startswith("#"):
            lines.append(entry)
        else:
            lines.extend(["#EXTINF:5.0,", f"{SEGMENT_BASE}/{entry}"])
    return "\n".join(lines) + "\n"


def key_tag(uri: str, iv: str = ZERO_IV) -> str:
    return f'#EXT-X-KEY:METHOD=AES-128,URI="{uri}",IV={iv}'


def output_path(root, key_name: str, filename: str) -> str:
    return os.path.join(str(root), "FNN", key_name, "show", "clip1", filename)


def read(path: str) -> bytes:
    with open(path, "rb") as handle:
        return handle.read()


def test_known_vector_decrypts():
    plaintext = bytes(16)
    ciphertext = encrypt(plaintext, ZERO_KEY)
    assert ciphertext[:16].hex() == "66e94bd4ef8a2c3b884cfa59ca342b2e"
    assert decrypt_segment(ciphertext, ZERO_KEY, bytes(16)) == plaintext


def test_wrong_iv_corrupts_plaintext_or_raises():
    plaintext = b"transport stream payload"
    ciphertext = encrypt(plaintext, ZERO_KEY)
    wrong_iv = bytes([1]) + bytes(15)
    try:
        result = decrypt_segment(ciphertext, ZERO_KEY, wrong_iv)
    except DecryptionError:
        return
    assert result != plaintext
    assert result[16:] == plaintext[16:]


def test_truncated_ciphertext_raises():
    ciphertext = encrypt(b"payload", ZERO_KEY)
    with pytest.raises(DecryptionError):
        decrypt_segment(ciphertext[:-1], ZERO_KEY, bytes(16))


def test_normalize_key_bytes():
    assert normalize_key_bytes(KEY_B) == KEY_B
    assert normalize_key_bytes(KEY_B.hex().encode()) == KEY_B
    with pytest.raises(DecryptionError):
        normalize_key_bytes(b"short")


def test_process_writes_decrypted_segments(tmp_path):
    client = FakeHttpClient(
        {
            KEY_URI_A: ZERO_KEY,
            KEY_URI_B: KEY_B,
            f"{SEGMENT_BASE}/seg-1.ts": encrypt(b"first segment", ZERO_KEY),
            f"{SEGMENT_BASE}/seg-2.ts": encrypt(b"second segment", ZERO_KEY),
            f"{SEGMENT_BASE}/seg-3.ts": encrypt(b"third segment", KEY_B),
        }
    )
    text = playlist_text([key_tag(KEY_URI_A), "seg-1.ts", "seg-2.ts", key_tag(KEY_URI_B), "seg-3.ts"])
    decryptor = SegmentDecryptor(client, output_root=str(tmp_path))

    report = decryptor.process(text, "FNN")

    assert report.ok
    assert report.written == 3
    assert read(output_path(tmp_path, "epochA", "seg-1.ts")) == b"first segment"
    assert read(output_path(tmp_path, "epochA", "seg-2.ts")) == b"second segment"
    assert read(output_path(tmp_path, "epochB", "seg-3.ts")) == b"third segment"
    assert client.count(KEY_URI_A) == 1
    assert client.count(KEY_URI_B) == 1
    assert not any(name.endswith(".part") for _, _, files in os.walk(tmp_path) for name in files)


def test_second_run_is_idempotent(tmp_path):
    client = FakeHttpClient(
        {
            KEY_URI_A: ZERO_KEY,
            f"{SEGMENT_BASE}/seg-1.ts": encrypt(b"one", ZERO_KEY),
            f"{SEGMENT_BASE}/seg-2.ts": encrypt(b"two", ZERO_KEY),
        }
    )
    text = playlist_text([key_tag(KEY_URI_A), "seg-1.ts", "seg-2.ts"])
    decryptor = SegmentDecryptor(client, output_root=str(tmp_path))

    first = decryptor.process(text, "FNN")
    calls_after_first = len(client.calls)
    second = decryptor.process(text, "FNN")

    assert first.written == 2
    assert second.ok
    assert second.written == 0
    assert second.skipped == 2
    assert len(client.calls) == calls_after_first


def test_failed_segment_does_not_stop_the_run(tmp_path):
    client = FakeHttpClient(
        {
            KEY_URI_A: ZERO_KEY,
            f"{SEGMENT_BASE}/seg-1.ts": DownloadError("connection reset"),
            f"{SEGMENT_BASE}/seg-2.ts": b"odd length",
            f"{SEGMENT_BASE}/seg-3.ts": encrypt(b"three", ZERO_KEY),
        }
    )
    text = playlist_text([key_tag(KEY_URI_A), "seg-1.ts", "seg-2.ts", "seg-3.ts", "seg-4.ts"])
    decryptor = SegmentDecryptor(client, output_root=str(tmp_path))

    report = decryptor.process(text, "FNN")

    assert not report.ok
    assert report.written == 1
    assert [failure.url for failure in report.failed] == [
        f"{SEGMENT_BASE}/seg-1.ts",
        f"{SEGMENT_BASE}/seg-2.ts",
        f"{SEGMENT_BASE}/seg-4.ts",
    ]
    assert read(output_path(tmp_path, "epochA", "seg-3.ts")) == b"three"
    assert not os.path.exists(output_path(tmp_path, "epochA", "seg-1.ts"))
    assert not os.path.exists(output_path(tmp_path, "epochA", "seg-2.ts"))


def test_failed_key_fetch_is_retried_for_next_segment(tmp_path):
    client = FakeHttpClient(
        {
            KEY_URI_A: b"bad",
            f"{SEGMENT_BASE}/seg-1.ts": encrypt(b"one", ZERO_KEY),
            f"{SEGMENT_BASE}/seg-2.ts": encrypt(b"two", ZERO_KEY),
        }
    )
    text = playlist_text([key_tag(KEY_URI_A), "seg-1.ts", "seg-2.ts"])

    report = SegmentDecryptor(client, output_root=str(tmp_path)).process(text, "FNN")

    assert len(report.failed) == 2
    assert client.count(KEY_URI_A) == 2


def test_unencrypted_segments_are_copied(tmp_path):
    client = FakeHttpClient({f"{SEGMENT_BASE}/seg-1.ts": b"clear bytes"})
    report = SegmentDecryptor(client, output_root=str(tmp_path)).process(playlist_text(["seg-1.ts"]), "FNN")
    assert report.written == 1
    assert read(output_path(tmp_path, "unencrypted", "seg-1.ts")) == b"clear bytes"


def test_iv_falls_back_to_media_sequence(tmp_path):
    sequence_iv = (0).to_bytes(16, "big")
    client = FakeHttpClient(
        {
            KEY_URI_A: ZERO_KEY,
            f"{SEGMENT_BASE}/seg-1.ts": encrypt(b"sequenced", ZERO_KEY, sequence_iv),
        }
    )
    text = playlist_text([f'#EXT-X-KEY:METHOD=AES-128,URI="{KEY_URI_A}"', "seg-1.ts"])
    report = SegmentDecryptor(client, output_root=str(tmp_path)).process(text, "FNN")
    assert report.ok
    assert read(output_path(tmp_path, "epochA", "seg-1.ts")) == b"sequenced"


def test_negative_media_sequence_falls_back_to_zero_iv(tmp_path):
    client = FakeHttpClient(
        {
            KEY_URI_A: ZERO_KEY,
            f"{SEGMENT_BASE}/seg-1.ts": encrypt(b"sequenced", ZERO_KEY, bytes(16)),
        }
    )
    text = playlist_text([f'#EXT-X-KEY:METHOD=AES-128,URI="{KEY_URI_A}"', "seg-1.ts"])
    text = text.replace("#EXT-X-MEDIA-SEQUENCE:0", "#EXT-X-MEDIA-SEQUENCE:-1")
    report = SegmentDecryptor(client, output_root=str(tmp_path)).process(text, "FNN")
    assert report.ok
    assert read(output_path(tmp_path, "epochA", "seg-1.ts")) == b"sequenced"


def test_unusable_sequence_iv_is_a_segment_failure(tmp_path):
    key = KeyRecord(name="epochA", uri=KEY_URI_A)
    segments = [
        MediaSegment(url=f"{SEGMENT_BASE}/seg-1.ts", sequence=-1, key=key),
        MediaSegment(url=f"{SEGMENT_BASE}/seg-2.ts", sequence=1, key=key),
    ]
    client = FakeHttpClient(
        {
            KEY_URI_A: ZERO_KEY,
            f"{SEGMENT_BASE}/seg-1.ts": encrypt(b"first", ZERO_KEY),
            f"{SEGMENT_BASE}/seg-2.ts": encrypt(b"second", ZERO_KEY, (1).to_bytes(16, "big")),
        }
    )
    playlist = MediaPlaylist(segments=segments, keys=[key])

    report = SegmentDecryptor(client, output_root=str(tmp_path)).process_playlist(playlist, "FNN")

    assert report.written == 1
    assert [failure.url for failure in report.failed] == [f"{SEGMENT_BASE}/seg-1.ts"]
    assert read(output_path(tmp_path, "epochA", "seg-2.ts")) == b"second"
    with pytest.raises(DecryptionError):
        segment_iv(segments[0])


def test_parallel_workers_fetch_each_key_once(tmp_path):
    names = [f"seg-{index}.ts" for index in range(8)]
    responses = {KEY_URI_A: ZERO_KEY}
    for name in names:
        responses[f"{SEGMENT_BASE}/{name}"] = encrypt(name.encode(), ZERO_KEY)
    client = FakeHttpClient(responses)
    text = playlist_text([key_tag(KEY_URI_A), *names, names[0]])

    report = SegmentDecryptor(client, output_root=str(tmp_path), workers=4).process(text, "FNN")

    assert report.written == 8
    assert report.skipped == 1
    assert client.count(KEY_URI_A) == 1
    assert client.count(f"{SEGMENT_BASE}/seg-0.ts") == 1
    for name in names:
        assert read(output_path(tmp_path, "epochA", name)) == name.encode()


def test_empty_playlist_is_nothing_to_do(tmp_path):
    client = FakeHttpClient()
    report = SegmentDecryptor(client, output_root=str(tmp_path)).process("#EXTM3U\n", "FNN")
    assert report.ok
    assert report.total == 0
    assert client.calls == []


def test_unwritable_output_root_raises(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_bytes(b"")
    client = FakeHttpClient({f"{SEGMENT_BASE}/seg-1.ts": b"clear"})
    decryptor = SegmentDecryptor(client, output_root=str(blocker))
    with pytest.raises(OSError):
        decryptor.process(playlist_text(["seg-1.ts"]), "FNN")


def test_write_failure_stops_sibling_fetches_before_closing(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_bytes(b"")
    names = [f"seg-{index}.ts" for index in range(8)]
    client = FakeHttpClient({f"{SEGMENT_BASE}/{name}": b"clear" for name in names})
    decryptor = SegmentDecryptor(client, output_root=str(blocker), workers=3)

    with pytest.raises(OSError):
        decryptor.process(playlist_text(names), "FNN")

    assert client.closed
    assert client.calls_after_close == []
    assert len(client.calls) < len(names)


def test_segment_path_is_deterministic(tmp_path):
    client = FakeHttpClient()
    decryptor = SegmentDecryptor(client, output_root=str(tmp_path))
    text = playlist_text([key_tag(KEY_URI_A), "seg-1.ts"])
    first = parse_media(text).segments[0]
    second = parse_media(text).segments[0]
    assert decryptor.segment_path(first, "FNN") == decryptor.segment_path(second, "FNN")
    assert decryptor.segment_path(first, "FNN") == output_path(tmp_path, "epochA", "seg-1.ts")
