import json
import os

import pytest
from click.testing import CliRunner
from PIL import Image

from cli import cli
from debug_tool import DebugTool


@pytest.fixture
def runner():
    return CliRunner()


def test_detect_json(runner, card_image):
    with runner.isolated_filesystem():
        Image.fromarray(card_image).save("card.png")
        result = runner.invoke(cli, ["detect", "card.png", "--json", "--backend", "software"])
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data['success'] is True
        assert data['method'] == 'quadrilateral'
        assert data['image_dimensions'] == {'width': 400, 'height': 300}


def test_detect_text_output(runner, blank_image):
    with runner.isolated_filesystem():
        Image.fromarray(blank_image(400, 300)).save("blank.png")
        result = runner.invoke(cli, ["detect", "blank.png"])
        assert result.exit_code == 0, result.output
        assert "centered guess" in result.stdout


def test_detect_missing_file(runner):
    with runner.isolated_filesystem():
        result = runner.invoke(cli, ["detect", "nope.png"])
        assert result.exit_code == 2


def test_process_writes_outputs(runner, card_image):
    with runner.isolated_filesystem():
        Image.fromarray(card_image).save("card.png")
        result = runner.invoke(cli, ["process", "card.png", "-o", "out"])
        assert result.exit_code == 0, result.output
        assert os.path.exists(os.path.join("out", "card_card.png"))
        assert os.path.exists(os.path.join("out", "card_overlay.png"))
        assert os.path.exists(os.path.join("out", "card_threshold.png"))


def test_process_unreadable_image(runner):
    with runner.isolated_filesystem():
        with open("broken.png", "wb") as handle:
            handle.write(b"not a png")
        result = runner.invoke(cli, ["process", "broken.png", "-o", "out"])
        assert result.exit_code == 1
        assert "Could not read the image" in result.stdout


def test_batch_writes_report(runner, card_image):
    with runner.isolated_filesystem():
        os.makedirs("photos")
        Image.fromarray(card_image).save(os.path.join("photos", "one.png"))
        Image.fromarray(card_image).save(os.path.join("photos", "two.png"))
        result = runner.invoke(cli, ["batch", "photos", "-o", "out"])
        assert result.exit_code == 0, result.output
        assert os.path.exists(os.path.join("out", "batch_report.csv"))
        assert "Files processed: 2" in result.stdout


def test_batch_on_empty_directory(runner):
    with runner.isolated_filesystem():
        os.makedirs("photos")
        result = runner.invoke(cli, ["batch", "photos", "-o", "out"])
        assert result.exit_code == 1


def test_debug_saves_intermediate_images(runner, card_image):
    with runner.isolated_filesystem():
        Image.fromarray(card_image).save("card.png")
        result = runner.invoke(cli, ["debug", "card.png", "-o", "debug"])
        assert result.exit_code == 0, result.output
        for kind in ("color_mask", "sobel_mask", "canny_mask", "hough_lines", "overlay", "card"):
            assert os.path.exists(os.path.join("debug", f"card_{kind}.png"))


def test_config_command(runner):
    with runner.isolated_filesystem():
        result = runner.invoke(cli, ["config"])
        assert result.exit_code == 0
        assert "1.586" in result.stdout


def test_debug_tool_skips_unreadable_image(tmp_path):
    broken = tmp_path / "broken.png"
    broken.write_bytes(b"not a png")
    output_dir = tmp_path / "debug"
    assert DebugTool().debug_image(str(broken), str(output_dir)) == {}
    assert not output_dir.exists()
