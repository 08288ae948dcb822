from __future__ import annotations

import hashlib

from scribedesk.core.checksum import sha256_bytes, sha256_file, validate_checksum


def test_file_and_bytes_agree(tmp_path):
    p = tmp_path / "audio.wav"
    payload = b"RIFF" + bytes(range(256)) * 100
    p.write_bytes(payload)
    assert sha256_file(str(p)) == sha256_bytes(payload) == hashlib.sha256(payload).hexdigest()


def test_validate_checksum(tmp_path):
    p = tmp_path / "clip.mp3"
    p.write_bytes(b"abc")
    good = hashlib.sha256(b"abc").hexdigest()
    assert validate_checksum(str(p), good)
    assert validate_checksum(str(p), good.upper())
    assert not validate_checksum(str(p), "0" * 64)
    assert not validate_checksum(str(p), "")
    assert not validate_checksum(str(tmp_path / "missing"), good)
