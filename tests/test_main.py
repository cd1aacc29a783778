"""
Tests for the command line entry point
"""

import pytest
from PIL import Image

from main import EXIT_FAILURES, EXIT_OK, EXIT_USAGE, build_parser, main


@pytest.fixture
def workdir(tmp_path, monkeypatch, png_bytes):
    """Working directory with one PNG and a home without config"""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    (tmp_path / "home").mkdir()
    (tmp_path / "in").mkdir()
    (tmp_path / "in" / "a.png").write_bytes(png_bytes)
    return tmp_path


class TestParser:
    """Test argument parsing"""

    def test_defaults(self):
        args = build_parser().parse_args([])
        assert args.paths == ["."]
        assert args.output == "."
        assert args.format == "{name}_{profile}"
        assert args.width == 0 and args.height == 0
        assert args.log_level is None

    def test_flags(self):
        args = build_parser().parse_args(
            ["--width", "10", "--input-profile", "srgb", "--rewrite", "--log-level", "debug", "x"]
        )
        assert args.width == 10
        assert args.input_profile == "srgb"
        assert args.rewrite is True
        assert args.log_level == "DEBUG"
        assert args.paths == ["x"]


class TestMain:
    """Test main"""

    def test_cli_profile(self, workdir):
        """Test flags alone render a thumbnail next to the input"""
        assert main(["--width", "16", "in"]) == EXIT_OK
        out = Image.open(workdir / "in" / "a_thumbnail.png")
        assert out.size == (16, 12)

    def test_output_directory(self, workdir):
        assert main(["--width", "16", "--output", "out", "in"]) == EXIT_OK
        assert (workdir / "out" / "in" / "a_thumbnail.png").exists()

    def test_config_file(self, workdir):
        """Test a config file found in the working directory"""
        (workdir / "sharpei.yaml").write_text(
            "profiles:\n  small:\n    width: 8\n    type: webp\n"
        )
        assert main(["in"]) == EXIT_OK
        assert (workdir / "in" / "a_small.webp").exists()

    def test_config_and_flags(self, workdir):
        (workdir / "c.yaml").write_text("profiles: {}\n")
        assert main(["--config", "c.yaml", "--width", "10", "in"]) == EXIT_USAGE

    def test_no_config(self, workdir):
        assert main(["in"]) == EXIT_USAGE

    def test_missing_path(self, workdir):
        assert main(["--width", "10", "nope"]) == EXIT_USAGE

    def test_no_images(self, workdir):
        (workdir / "docs").mkdir()
        (workdir / "docs" / "readme.txt").write_text("hi")
        assert main(["--width", "10", "docs"]) == EXIT_OK

    def test_failures_reported(self, workdir):
        """Test a corrupt image makes the run fail"""
        (workdir / "in" / "broken.png").write_bytes(b"garbage")
        assert main(["--width", "16", "in"]) == EXIT_FAILURES
        assert (workdir / "in" / "a_thumbnail.png").exists()

    def test_bad_usage(self, workdir):
        with pytest.raises(SystemExit) as exc_info:
            main(["--width", "wide"])
        assert exc_info.value.code == EXIT_USAGE
