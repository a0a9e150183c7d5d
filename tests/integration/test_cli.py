"""
Integration tests for the command-line interface: fit, reconstruct and
bicluster extraction through files.
"""

import json

import numpy as np
import pytest
import yaml

from approx_fabia.cli import main
from tests.conftest import events_named


@pytest.fixture
def data_file(bicluster_data, tmp_path):
    path = tmp_path / "X.npy"
    np.save(path, bicluster_data['X'])
    return path


def test_run_writes_model_and_metadata(data_file, bicluster_data, tmp_path, capsys):
    out = tmp_path / "model"
    code = main(["run", "--data", str(data_file), "--out", str(out),
                 "--factors", "2", "--cycles", "20", "--workers", "2", "--seed", "3"])
    assert code == 0

    n, l = bicluster_data['n'], bicluster_data['l']
    assert np.load(out / "L.npy").shape == (n, 2)
    assert np.load(out / "Z.npy").shape == (2, l)
    assert np.load(out / "Psi.npy").shape == (n,)
    assert np.load(out / "lapla.npy").shape == (2, l)
    assert np.load(out / "mean.npy").shape == (n,)

    meta = json.loads((out / "METADATA.json").read_text())
    assert meta["n_factors"] == 2
    assert meta["n_workers"] == 2
    assert meta["seed"] == 3
    assert meta["outcome"] == "success"
    assert meta["n_iter"] == 20
    assert meta["shapes"] == {"L": [n, 2], "Z": [2, l]}

    logged = capsys.readouterr().out
    assert len(events_named(logged, "run_start")) == 1
    assert events_named(logged, "run_done")[0]["outcome"] == "success"


def test_run_reads_yaml_config(data_file, tmp_path):
    cfg_path = tmp_path / "fabia.yaml"
    cfg_path.write_text(yaml.safe_dump({"n_factors": 3, "cycles": 5, "alpha": 0.2,
                                        "dtype": "float64", "scale": True}))
    out = tmp_path / "model"
    # command-line flags take precedence over the file
    assert main(["run", "--data", str(data_file), "--out", str(out),
                 "--config", str(cfg_path), "--cycles", "4"]) == 0

    meta = json.loads((out / "METADATA.json").read_text())
    assert meta["n_factors"] == 3
    assert meta["cycles"] == 4
    assert meta["alpha"] == 0.2
    assert meta["scale"] is True
    assert np.load(out / "L.npy").dtype == np.float64


def test_run_writes_csv_dashboard(data_file, tmp_path):
    csv_path = tmp_path / "metrics.csv"
    assert main(["run", "--data", str(data_file), "--out", str(tmp_path / "model"),
                 "--factors", "2", "--cycles", "4", "--verbose", "2", "--csv", str(csv_path)]) == 0
    lines = csv_path.read_text().splitlines()
    assert lines[0] == "time,step,metric,value"
    assert {line.split(",")[1] for line in lines[1:]} == {"2", "4"}


def test_reconstruct_and_biclusters(data_file, bicluster_data, tmp_path):
    model = tmp_path / "model"
    assert main(["run", "--data", str(data_file), "--out", str(model),
                 "--factors", "2", "--cycles", "10"]) == 0

    recon = tmp_path / "X_hat.npy"
    assert main(["reconstruct", "--loadings", str(model / "L.npy"), "--factors", str(model / "Z.npy"),
                 "--mean", str(model / "mean.npy"), "--out", str(recon)]) == 0
    L, Z, mean = (np.load(model / f) for f in ("L.npy", "Z.npy", "mean.npy"))
    X_hat = np.load(recon)
    assert X_hat.shape == bicluster_data['X'].shape
    np.testing.assert_allclose(X_hat, L.astype(float) @ Z.astype(float) + mean.astype(float)[:, None])

    bic_path = tmp_path / "biclusters.json"
    assert main(["biclusters", "--loadings", str(model / "L.npy"), "--factors", str(model / "Z.npy"),
                 "--thres-l", "0.2", "--thres-z", "0.4", "--out", str(bic_path)]) == 0
    bics = json.loads(bic_path.read_text())
    assert [b["factor"] for b in bics] == [0, 1]
    for b in bics:
        assert set(b) == {"factor", "variables", "samples"}


def test_missing_subcommand_exits():
    with pytest.raises(SystemExit):
        main([])
