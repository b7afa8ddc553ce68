import io

import cv2
import numpy as np
import pytest
from PIL import Image

from bp_image import MAX_IMAGE_BYTES, PixelBuffer
from bp_models import InputImageError


def _encoded_bgr(width=5, height=4, bgr=(255, 0, 0)):
    image = np.zeros((height, width, 3), dtype=np.uint8)
    image[:, :] = bgr
    ok, encoded = cv2.imencode(".png", image)
    assert ok
    return encoded.tobytes()


def test_decode_converts_to_rgba():
    buffer = PixelBuffer.from_bytes(_encoded_bgr())
    assert buffer.size == (5, 4)
    assert buffer.pixels[0, 0].tolist() == [0, 0, 255, 255]


def test_grayscale_source_is_expanded():
    buffer = PixelBuffer.from_cv2(np.full((3, 2), 40, dtype=np.uint8))
    assert buffer.pixels[1, 1].tolist() == [40, 40, 40, 255]


@pytest.mark.parametrize("payload", [b"", b"definitely not an image"])
def test_bad_payloads(payload):
    with pytest.raises(InputImageError):
        PixelBuffer.from_bytes(payload)


def test_oversized_payload_is_rejected_before_decoding():
    with pytest.raises(InputImageError, match="limit"):
        PixelBuffer.from_bytes(b"\0" * (MAX_IMAGE_BYTES + 1))


def test_missing_file(tmp_path):
    with pytest.raises(InputImageError):
        PixelBuffer.from_file(tmp_path / "nope.png")


def test_file_round_trip(tmp_path):
    path = tmp_path / "display.png"
    path.write_bytes(_encoded_bgr(bgr=(10, 20, 30)))
    buffer = PixelBuffer.from_file(path)
    assert buffer.pixels[2, 3].tolist() == [30, 20, 10, 255]


def test_buffers_are_read_only():
    buffer = PixelBuffer.from_rgba(np.zeros((2, 2, 4), dtype=np.uint8))
    with pytest.raises(ValueError):
        buffer.pixels[0, 0, 0] = 1


@pytest.mark.parametrize(
    "pixels",
    [
        np.zeros((2, 2, 3), dtype=np.uint8),
        np.zeros((2, 2, 4), dtype=np.float32),
        np.zeros((0, 2, 4), dtype=np.uint8),
    ],
)
def test_invalid_buffers(pixels):
    with pytest.raises(ValueError):
        PixelBuffer(pixels)


def test_pil_transport():
    rgba = np.zeros((3, 4, 4), dtype=np.uint8)
    rgba[..., 0] = 200
    rgba[..., 3] = 255
    image = PixelBuffer.from_rgba(rgba).to_pil()
    assert image.mode == "RGBA"
    assert image.size == (4, 3)
    assert image.getpixel((0, 0)) == (200, 0, 0, 255)


def _portrait_jpeg_stored_sideways():
    # 40x20 landscape pixels, left half dark, tagged "rotate 90 CW to display".
    image = Image.new("RGB", (40, 20), (230, 230, 230))
    image.paste((10, 10, 10), (0, 0, 20, 20))
    exif = Image.Exif()
    exif[0x0112] = 6
    payload = io.BytesIO()
    image.save(payload, format="JPEG", quality=95, exif=exif.tobytes())
    return payload.getvalue()


def test_decode_applies_exif_orientation():
    buffer = PixelBuffer.from_bytes(_portrait_jpeg_stored_sideways())
    assert buffer.size == (20, 40)
    assert buffer.pixels[5, 10, 0] < 60
    assert buffer.pixels[34, 10, 0] > 190


def test_decoded_alpha_is_opaque():
    rgba = np.zeros((3, 3, 4), dtype=np.uint8)
    rgba[..., 3] = 0
    ok, encoded = cv2.imencode(".png", rgba)
    assert ok
    assert PixelBuffer.from_bytes(encoded.tobytes()).alpha.min() == 255


def test_unsupported_sample_type_is_an_input_error():
    with pytest.raises(InputImageError, match="float32"):
        PixelBuffer.from_cv2(np.zeros((2, 2, 3), dtype=np.float32))
