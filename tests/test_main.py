"""
Tests for the command-line driver and logging setup.
"""
import logging

import numpy as np
import pytest
import yaml

from panogeo.main import main
from panogeo.utils.logger import get_log_file_path, setup_logger


@pytest.fixture(autouse=True)
def reset_logger():
    """main() attaches handlers to the package logger; drop them between tests"""
    yield
    for name in ("panogeo", "panogeo.test"):
        log = logging.getLogger(name)
        for handler in list(log.handlers):
            handler.close()
            log.removeHandler(handler)


@pytest.fixture
def job_file(tmp_path, rng):
    points_a = rng.uniform(60, 600, size=(30, 2))
    job = {
        "images": [
            {"id": "left", "width": 640, "height": 480},
            {"id": "right", "width": 640, "height": 480},
        ],
        "pairs": [
            {"a": "left", "b": "right",
             "points_a": points_a.tolist(),
             "points_b": (points_a - [40.0, 5.0]).tolist()},
        ],
    }
    path = tmp_path / "job.yaml"
    path.write_text(yaml.safe_dump(job))
    return path


def test_main_writes_transforms(job_file, tmp_path):
    output = tmp_path / "result.yaml"

    assert main([str(job_file), "--seed", "1", "--output", str(output)]) == 0

    report = yaml.safe_load(output.read_text())
    assert report["model"] == "affine"
    # estimated transforms can land a hair past an integer, which ceil rounds up
    box = report["bounding_box"]
    assert (box["xmin"], box["ymin"]) == (0, 0)
    assert box["xmax"] in (680, 681) and box["ymax"] in (485, 486)
    assert [t["image"] for t in report["transforms"]] == ["left", "right"]
    np.testing.assert_allclose(report["transforms"][1]["absolute"],
                               [[1.0, 0.0, 40.0], [0.0, 1.0, 5.0], [0.0, 0.0, 1.0]], atol=1e-6)


def test_main_prints_to_stdout(job_file, capsys):
    assert main([str(job_file), "--model", "homography", "--seed", "2"]) == 0
    report = yaml.safe_load(capsys.readouterr().out)
    assert report["model"] == "homography"


def test_main_rejects_single_image_job(tmp_path):
    path = tmp_path / "job.yaml"
    path.write_text(yaml.safe_dump({"images": [{"id": "only", "width": 10, "height": 10}]}))
    assert main([str(path)]) == 1


def test_main_reports_estimation_failure(tmp_path):
    path = tmp_path / "job.yaml"
    path.write_text(yaml.safe_dump({
        "images": [{"id": "a", "width": 10, "height": 10}, {"id": "b", "width": 10, "height": 10}],
        "pairs": [],
    }))
    assert main([str(path)]) == 1


def test_setup_logger_with_file(tmp_path):
    log_file = tmp_path / "logs" / "run.log"
    log = setup_logger("panogeo.test", log_file=log_file)
    log.info("written to the file")

    assert get_log_file_path() == log_file
    assert "written to the file" in log_file.read_text()
