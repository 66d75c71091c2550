# TabFit/utils/config.py
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml


@dataclass
class FitConfig:
    """
    Settings of one fitting run.

    Parameters
    ----------
    potential_file : str
        Starting potential table.
    config_file : str
        Reference configurations.
    output_file : str, optional
        Where the fitted table is written (nothing is written if None).
    model : str, optional
        Schema preset ("pair", "eam", ...). If None the model and elements
        from the table header are used.
    elements : list of str
        Global element order; defaults to the "#C" header of the table.
    invariant_patterns : list of str
        Function-name patterns (glob or "re:" regex).
    invariant_mode : {"freeze", "train"}
        Whether the patterns select invariant or free functions.
    pin_last, clamp_first_role, pin_embedding_last
        PinningPolicy fields.
    weights : dict
        EvaluatorWeights fields (force, energy, stress).
    optimizer : dict
        LSQConfig overrides.
    iteration_budget : int
    tolerance : float
        Relative cost improvement below which an iteration counts as converged.
    check_gauge : bool
        Require embedding functions to sample density 1.0.
    """
    potential_file: str = ""
    config_file: str = ""
    output_file: Optional[str] = None
    model: Optional[str] = None
    elements: List[str] = field(default_factory=list)
    invariant_patterns: List[str] = field(default_factory=list)
    invariant_mode: str = "freeze"
    pin_last: Dict[str, bool] = field(default_factory=dict)
    clamp_first_role: Optional[str] = "meam_f"
    pin_embedding_last: bool = False
    weights: Dict[str, float] = field(default_factory=dict)
    optimizer: Dict[str, Any] = field(default_factory=dict)
    iteration_budget: int = 100
    tolerance: float = 1e-6
    check_gauge: bool = False


def LoadFitConfig(path: Union[str, Path]) -> FitConfig:
    """
    Read a FitConfig from a YAML mapping.

    Relative file paths are resolved against the directory of the YAML file.

    Raises
    ------
    KeyError
        For keys that are not FitConfig fields.
    ValueError
        If the document is not a mapping or lacks the input files.
    """
    path = Path(path)
    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at top level, got {type(data).__name__}")

    known = {f.name for f in fields(FitConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise KeyError(f"{path}: unknown configuration key(s) {unknown}. Allowed: {sorted(known)}")

    cfg = FitConfig(**data)
    if not cfg.potential_file or not cfg.config_file:
        raise ValueError(f"{path}: 'potential_file' and 'config_file' are required")

    base = path.parent
    for attr in ("potential_file", "config_file", "output_file"):
        value = getattr(cfg, attr)
        if value is not None and not Path(value).is_absolute():
            setattr(cfg, attr, str(base / value))
    return cfg
