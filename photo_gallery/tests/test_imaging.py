import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from PIL import Image

from imaging import ImageInfo, read_image_info


def test_local_file(tmp_path):
    path = tmp_path / "photo.png"
    Image.new("RGB", (120, 80)).save(path)
    info = read_image_info(str(path))
    assert (info.width, info.height) == (120, 80)
    assert info.size == path.stat().st_size


def test_file_uri(tmp_path):
    path = tmp_path / "photo.jpg"
    Image.new("RGB", (10, 20)).save(path)
    info = read_image_info(f"file://{path}")
    assert (info.width, info.height) == (10, 20)


def test_remote_uri_unknown():
    assert read_image_info("ph://asset/123") == ImageInfo()


def test_unreadable_file_keeps_size(tmp_path):
    path = tmp_path / "broken.jpg"
    path.write_bytes(b"not an image")
    info = read_image_info(str(path))
    assert info == ImageInfo(width=0, height=0, size=12)
