# SPDX-FileCopyrightText: 2024-present barrettMCW <mjbarrett@mcw.edu>
#
# SPDX-License-Identifier: MIT
"""Tests for the macenko-norm command line interface."""

import numpy as np
import pytest
from PIL import Image

from conftest import synthesize_he
from macenko_norm import cli


@pytest.fixture
def image_files(tmp_path, he_like_image, rng):
    source = synthesize_he(rng, 32, 40, strength=0.6)
    source_path = tmp_path / "source.png"
    target_path = tmp_path / "target.png"
    Image.fromarray(source).save(source_path)
    Image.fromarray(he_like_image).save(target_path)
    return source_path, target_path


class TestMain:
    def test_writes_normalized_image(self, image_files, tmp_path):
        source_path, target_path = image_files
        out = tmp_path / "out.png"
        assert cli.main([str(source_path), str(target_path), "-o", str(out)]) == 0
        result = np.asarray(Image.open(out))
        assert result.shape == (32, 40, 3)
        assert result.dtype == np.uint8

    def test_matches_library_call(self, image_files, tmp_path):
        from macenko_norm import NormalizationConfig, normalize

        source_path, target_path = image_files
        out = tmp_path / "out.png"
        argv = [str(source_path), str(target_path), "-o", str(out), "--beta", "0.2"]
        assert cli.main(argv) == 0
        expected = normalize(
            cli.read_image(source_path),
            cli.read_image(target_path),
            NormalizationConfig(beta=0.2),
        )
        np.testing.assert_array_equal(np.asarray(Image.open(out)), expected)

    def test_rgba_input_converted(self, image_files, tmp_path):
        source_path, target_path = image_files
        rgba_path = tmp_path / "source_rgba.png"
        Image.open(source_path).convert("RGBA").save(rgba_path)
        out = tmp_path / "out.png"
        assert cli.main([str(rgba_path), str(target_path), "-o", str(out)]) == 0
        assert np.asarray(Image.open(out)).shape == (32, 40, 3)

    def test_permutation_option(self, image_files, tmp_path):
        source_path, target_path = image_files
        out = tmp_path / "out.png"
        argv = [str(source_path), str(target_path), "-o", str(out), "--permutation", "1,0,2"]
        assert cli.main(argv) == 0
        assert out.exists()

    def test_verbose_shows_comparison(self, image_files, tmp_path, monkeypatch):
        import macenko_norm.visualize as visualize

        shown = []
        monkeypatch.setattr(visualize, "show_comparison", lambda *images: shown.append(images))
        source_path, target_path = image_files
        out = tmp_path / "out.png"
        assert cli.main([str(source_path), str(target_path), "-o", str(out), "-v"]) == 0
        assert len(shown) == 1
        assert len(shown[0]) == 3

    def test_missing_file_fails(self, image_files, tmp_path, caplog):
        _, target_path = image_files
        out = tmp_path / "out.png"
        code = cli.main([str(tmp_path / "nope.png"), str(target_path), "-o", str(out)])
        assert code == 1
        assert not out.exists()
        assert "Normalization failed" in caplog.text

    def test_blank_target_fails(self, image_files, tmp_path, caplog):
        source_path, _ = image_files
        blank = tmp_path / "blank.png"
        Image.fromarray(np.full((8, 8, 3), 255, dtype=np.uint8)).save(blank)
        out = tmp_path / "out.png"
        assert cli.main([str(source_path), str(blank), "-o", str(out)]) == 1
        assert "no tissue" in caplog.text

    def test_invalid_parameter_fails(self, image_files, tmp_path, caplog):
        source_path, target_path = image_files
        out = tmp_path / "out.png"
        argv = [str(source_path), str(target_path), "-o", str(out), "--alpha", "75"]
        assert cli.main(argv) == 1
        assert "Invalid parameters" in caplog.text

    def test_invalid_permutation_fails(self, image_files, tmp_path):
        source_path, target_path = image_files
        out = tmp_path / "out.png"
        argv = [str(source_path), str(target_path), "-o", str(out), "--permutation", "0,0"]
        assert cli.main(argv) == 1

    def test_malformed_permutation_is_usage_error(self, image_files, tmp_path):
        source_path, target_path = image_files
        with pytest.raises(SystemExit) as excinfo:
            cli.main([str(source_path), str(target_path), "-o", "x.png", "--permutation", "a,b"])
        assert excinfo.value.code == 2

    def test_output_required(self, image_files):
        source_path, target_path = image_files
        with pytest.raises(SystemExit) as excinfo:
            cli.main([str(source_path), str(target_path)])
        assert excinfo.value.code == 2


class TestBuildParser:
    def test_defaults_unset(self):
        args = cli.build_parser().parse_args(["s.png", "t.png", "-o", "o.png"])
        assert args.io is None
        assert args.beta is None
        assert args.alpha is None
        assert args.verbose is False
        assert args.permutation is None

    def test_parses_permutation(self):
        args = cli.build_parser().parse_args(
            ["s.png", "t.png", "-o", "o.png", "--permutation", "1,0,2"]
        )
        assert args.permutation == [1, 0, 2]
