import os

import pytest

from raintorrent.storage import FileStorage, OSFile, PaddingFile, Storage


def test_padding_file_reads_zeros():
    f = PaddingFile(10)
    assert f.read_at(5, 3) == bytes(5)


def test_root_dir_is_absolute(tmp_path):
    storage = FileStorage(str(tmp_path / "dl"), 0o755)
    assert isinstance(storage, Storage)
    assert os.path.isabs(storage.root_dir())
    assert storage.root_dir() == str(tmp_path / "dl")


def test_open_creates_file_with_size(tmp_path):
    storage = FileStorage(str(tmp_path), 0o755)
    f, exists = storage.open("dir/sub/file.bin", 100)
    try:
        assert exists is False
        assert os.path.getsize(tmp_path / "dir" / "sub" / "file.bin") == 100
        assert f.read_at(100, 0) == bytes(100)
    finally:
        f.close()


def test_reopen_reports_existing_and_resizes(tmp_path):
    storage = FileStorage(str(tmp_path), 0o755)
    f, _ = storage.open("file.bin", 10)
    f.close()
    f, exists = storage.open("file.bin", 20)
    f.close()
    assert exists is True
    assert os.path.getsize(tmp_path / "file.bin") == 20


def test_write_read_round_trip(tmp_path):
    storage = FileStorage(str(tmp_path), 0o755)
    f, _ = storage.open("data", 32)
    try:
        payload = b"hello torrent"
        assert f.write_at(payload, 5) == len(payload)
        assert f.read_at(len(payload), 5) == payload
        assert f.read_at(5, 0) == bytes(5)
    finally:
        f.close()


def test_read_past_end_raises(tmp_path):
    storage = FileStorage(str(tmp_path), 0o755)
    f, _ = storage.open("small", 4)
    try:
        with pytest.raises(EOFError):
            f.read_at(8, 0)
    finally:
        f.close()


def test_absolute_name_stays_under_root(tmp_path):
    storage = FileStorage(str(tmp_path), 0o755)
    f, _ = storage.open("/nested/file", 1)
    f.close()
    assert os.path.exists(tmp_path / "nested" / "file")
    assert f.path.startswith(storage.root_dir())


def test_created_file_has_no_exec_bits(tmp_path):
    storage = FileStorage(str(tmp_path), 0o777)
    f, _ = storage.open("noexec", 1)
    f.close()
    assert os.stat(tmp_path / "noexec").st_mode & 0o111 == 0


def test_osfile_close_is_idempotent(tmp_path):
    path = tmp_path / "raw"
    fd = os.open(str(path), os.O_RDWR | os.O_CREAT, 0o644)
    f = OSFile(fd, str(path))
    f.close()
    f.close()
    assert f.fd == -1