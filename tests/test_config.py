"""
YAML run configuration and the file-driven fit.
"""

import numpy as np
import pytest

from TabFit.evaluators.force import ForceMatchingEvaluator
from TabFit.trainers.lsq import RunFit, TerminationReason
from TabFit.utils.config import FitConfig, LoadFitConfig
from TabFit.utils.configio import Configuration, WriteConfigurations
from TabFit.utils.ffio import ReadPotTable, WritePotTable
from TabFit.potentials.schema import BuildSchema
from TabFit.potentials.table import PotentialTable


class TestLoad:

    def test_fields_and_relative_paths(self, tmp_path):
        path = tmp_path / "fit.yaml"
        path.write_text(
            "potential_file: start.pot\n"
            "config_file: train.config\n"
            "output_file: /abs/end.pot\n"
            "model: pair\n"
            "elements: [Ar]\n"
            "invariant_patterns: ['pair_1']\n"
            "weights: {energy: 10.0}\n"
            "optimizer: {fd_step: 1.0e-5}\n"
            "iteration_budget: 7\n"
        )
        cfg = LoadFitConfig(path)
        assert isinstance(cfg, FitConfig)
        assert cfg.potential_file == str(tmp_path / "start.pot")
        assert cfg.config_file == str(tmp_path / "train.config")
        assert cfg.output_file == "/abs/end.pot"
        assert cfg.elements == ["Ar"]
        assert cfg.weights == {"energy": 10.0}
        assert cfg.optimizer == {"fd_step": 1e-5}
        assert cfg.iteration_budget == 7
        assert cfg.tolerance == 1e-6

    def test_unknown_key(self, tmp_path):
        path = tmp_path / "fit.yaml"
        path.write_text("potential_file: a\nconfig_file: b\nlearning_rate: 0.1\n")
        with pytest.raises(KeyError, match="learning_rate"):
            LoadFitConfig(path)

    def test_required_files(self, tmp_path):
        path = tmp_path / "fit.yaml"
        path.write_text("model: pair\n")
        with pytest.raises(ValueError):
            LoadFitConfig(path)

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "fit.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError):
            LoadFitConfig(path)


class TestRunFit:

    def test_recovers_reference_energy(self, tmp_path):
        # reference data generated with phi(r) = (3 - r)^2, fit starts from a scaled copy
        r = np.linspace(1.0, 3.0, 9)
        exact = PotentialTable.load([(1.0, 3.0, 9)], [np.concatenate([[-4.0, 0.0], (3.0 - r) ** 2])],
                                    has_gradients=True, schema=BuildSchema("pair", 1))
        rng = np.random.default_rng(7)
        configs = []
        for _ in range(3):
            pos = rng.uniform(0.0, 7.0, size=(6, 3))
            cfg = Configuration(natoms=6, useforce=True, elements=["Ar"], box=np.eye(3) * 7.0,
                                energy=0.0, types=np.zeros(6, dtype=int), positions=pos,
                                forces=np.zeros((6, 3)))
            configs.append(cfg)

        ev = ForceMatchingEvaluator(exact, configs, ["Ar"])
        for k, cfg in enumerate(configs):
            cfg.energy, cfg.forces, _ = ev.predict(exact, k)

        start = exact.copy()
        start.set_values(np.concatenate([[-4.0, 0.0], 0.8 * (3.0 - r) ** 2]))
        start.rebuild_spline_cache()
        WritePotTable(str(tmp_path / "start.pot"), start, gradient=[0], model="pair", elements=["Ar"])
        WriteConfigurations(tmp_path / "train.config", configs)

        fit_cfg = FitConfig(potential_file=str(tmp_path / "start.pot"),
                            config_file=str(tmp_path / "train.config"),
                            output_file=str(tmp_path / "end.pot"),
                            iteration_budget=30, tolerance=1e-10)
        result = RunFit(fit_cfg)

        assert result.final_cost < result.history[0]
        assert result.termination_reason in set(TerminationReason)
        written = ReadPotTable(str(tmp_path / "end.pot"))
        assert written.elements == ["Ar"]
        assert np.array_equal(written.table.values, result.final_table.values)
        # the cutoff value is pinned
        assert written.table.value_at(0, 8) == pytest.approx(0.0)
